"""
PCI Engine Configuration

Process-level configuration loaded from the environment (and a .env file when
present). Account-level settings such as hourly rates live in the store and
are resolved by settings_loader; nothing here is read by the pure engines.
"""

import logging
import os
from typing import Mapping, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ValidationError

logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class PCIConfig(BaseModel):
    storage_backend: str = "memory"  # memory | supabase
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    kv_table: str = "kv_store"
    log_level: str = "INFO"
    fallback_hourly_rate: float = Field(default=66.0, ge=0)
    vendor_markup: float = Field(default=1.3, ge=0)
    low_aas_threshold: float = Field(default=85.0, ge=0, le=100)
    high_cost_threshold: float = Field(default=10000.0, ge=0)


def _env_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValidationError(f"{name} must be a number, got {raw!r}", target=name)


def load_config(env: Optional[Mapping[str, str]] = None) -> PCIConfig:
    """
    Build the process configuration.

    Args:
        env: Mapping to read instead of os.environ (tests pass a dict)

    Returns:
        PCIConfig
    """
    if env is None:
        load_dotenv()
        env = os.environ

    backend = (env.get("PCI_STORAGE_BACKEND") or "memory").lower()
    if backend not in ("memory", "supabase"):
        raise ValidationError(
            f"PCI_STORAGE_BACKEND must be 'memory' or 'supabase', got {backend!r}",
            target="PCI_STORAGE_BACKEND",
        )

    return PCIConfig(
        storage_backend=backend,
        supabase_url=env.get("SUPABASE_URL") or env.get("NEXT_PUBLIC_SUPABASE_URL"),
        # Service role key gives full access; fall back to the anon key
        supabase_key=env.get("SUPABASE_SERVICE_ROLE_KEY") or env.get("SUPABASE_ANON_KEY"),
        kv_table=env.get("PCI_KV_TABLE") or "kv_store",
        log_level=(env.get("PCI_LOG_LEVEL") or "INFO").upper(),
        fallback_hourly_rate=_env_float(env, "PCI_FALLBACK_HOURLY_RATE", 66.0),
        vendor_markup=_env_float(env, "PCI_VENDOR_MARKUP", 1.3),
        low_aas_threshold=_env_float(env, "PCI_LOW_AAS_THRESHOLD", 85.0),
        high_cost_threshold=_env_float(env, "PCI_HIGH_COST_THRESHOLD", 10000.0),
    )


def configure_logging(level: Optional[str] = None) -> None:
    """Configure root logging for scripts and workers."""
    if level is None:
        level = load_config().log_level
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        force=True,
    )
