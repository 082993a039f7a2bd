import logging
from typing import Optional

from supabase import Client, create_client

from .config import PCIConfig, load_config

logger = logging.getLogger(__name__)

_client: Optional[Client] = None


def get_supabase(config: Optional[PCIConfig] = None) -> Optional[Client]:
    """
    Get the shared Supabase client, creating it on first use.
    Returns None when Supabase is not configured.
    """
    global _client

    if _client is not None:
        return _client

    config = config or load_config()
    if not config.supabase_url:
        logger.warning("SUPABASE_URL not set. Supabase storage will be disabled.")
        return None
    if not config.supabase_key:
        logger.warning("No Supabase key found. Supabase storage will be disabled.")
        return None

    _client = create_client(config.supabase_url, config.supabase_key)
    return _client


def reset_supabase() -> None:
    """Drop the cached client (used when configuration changes)."""
    global _client
    _client = None
