"""
Settings Loader

Per-account settings (hourly rate, unit-to-hour ratio, currency, industry
preset) and the single rate-resolution rule used by every cost calculation.

Settings are read from the store on every call; callers pass the returned
object explicitly into the pure engines so one aggregation sees one snapshot.
"""

import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from .audit_recorder import AuditRecorder, require_user
from .errors import StorageError, ValidationError, from_pydantic
from .kv_store import KVStore, settings_key
from .models import AuditAction, EntityType, Settings, utc_now

logger = logging.getLogger(__name__)

# Last-resort rate when neither the task nor the account sets one
FALLBACK_HOURLY_RATE = 66.0

DEFAULT_SETTINGS = {
    "hourlyRate": 66.0,
    "unitToHourRatio": 1.5,
    "currency": "USD",
    "industryPreset": "general",
}

INDUSTRY_PRESETS: Dict[str, Dict[str, Any]] = {
    "general": {"ratio": 1.5, "rate": 66.0, "description": "Standard software development projects"},
    "fintech": {"ratio": 1.8, "rate": 95.0, "description": "High complexity, regulatory compliance"},
    "healthcare": {"ratio": 1.7, "rate": 88.0, "description": "HIPAA compliance, medical accuracy"},
    "ecommerce": {"ratio": 1.4, "rate": 72.0, "description": "Transaction systems, inventory management"},
    "enterprise": {"ratio": 1.6, "rate": 85.0, "description": "Large-scale systems, multiple integrations"},
    "ai-ml": {"ratio": 2.0, "rate": 110.0, "description": "Machine learning, data science projects"},
}

SETTINGS_FIELDS = {"default_hourly_rate", "unit_to_hour_ratio", "currency", "industry_preset"}


def default_settings(user_id: Optional[str] = None) -> Settings:
    return Settings.model_validate({**DEFAULT_SETTINGS, "userId": user_id})


def get_settings(store: KVStore, user_id: str) -> Settings:
    """
    Get account settings, falling back to system defaults.

    Args:
        store: Key-value store
        user_id: Account ID

    Returns:
        Settings (defaults are returned, not persisted, when none are stored)
    """
    require_user(user_id)
    raw = store.get(settings_key(user_id))
    if raw is None:
        return default_settings(user_id)
    try:
        return Settings.model_validate({**DEFAULT_SETTINGS, **raw, "userId": user_id})
    except PydanticValidationError as e:
        raise StorageError(f"Stored settings for {user_id} are invalid", details=str(e)) from e


def update_settings(
    store: KVStore,
    recorder: AuditRecorder,
    user_id: str,
    updates: Dict[str, Any],
) -> Settings:
    """
    Apply settings updates and record them in the audit log.

    Args:
        updates: Field names (snake_case or stored camelCase) to new values

    Raises:
        ValidationError: unknown field or out-of-range value
    """
    require_user(user_id)
    fields = {_settings_field(name): value for name, value in (updates or {}).items()}

    with store.lock_for(settings_key(user_id)):
        current = get_settings(store, user_id)
        data = current.model_dump()
        data.update(fields)
        data["updated_at"] = utc_now()

        try:
            updated = Settings.model_validate(data)
        except PydanticValidationError as e:
            raise from_pydantic(e, target="settings") from e

        before = current.to_dict()
        after = updated.to_dict()
        recorder.commit(
            settings_key(user_id), after,
            user_id=user_id,
            action=AuditAction.UPDATE,
            entity_type=EntityType.SETTINGS,
            entity_id=user_id,
            changes={"before": before, "after": after},
        )
    logger.info(f"Settings updated for {user_id}: {sorted(fields)}")
    return updated


def apply_industry_preset(store: KVStore, recorder: AuditRecorder, user_id: str, preset: str) -> Settings:
    """Set ratio and hourly rate from a named industry preset."""
    preset_data = INDUSTRY_PRESETS.get(preset)
    if preset_data is None:
        raise ValidationError(
            f"Unknown industry preset '{preset}'. Choose one of: {', '.join(INDUSTRY_PRESETS)}",
            target="industry_preset",
        )
    return update_settings(store, recorder, user_id, {
        "industry_preset": preset,
        "unit_to_hour_ratio": preset_data["ratio"],
        "default_hourly_rate": preset_data["rate"],
    })


def _settings_field(name: str) -> str:
    aliases = {
        "hourlyRate": "default_hourly_rate",
        "defaultHourlyRate": "default_hourly_rate",
        "hourly_rate": "default_hourly_rate",
        "unitToHourRatio": "unit_to_hour_ratio",
        "industryPreset": "industry_preset",
    }
    field = aliases.get(name, name)
    if field not in SETTINGS_FIELDS:
        raise ValidationError(f"Unknown settings field '{name}'", target=name)
    return field


# =============================================================================
# RATE RESOLUTION
# =============================================================================

def resolve_rate(task: Any, settings: Optional[Settings], fallback: float = FALLBACK_HOURLY_RATE) -> float:
    """
    Effective hourly rate for a task.

    Precedence (first value that is set wins; an explicit 0 counts as set):
        1. task.hourly_rate
        2. settings.default_hourly_rate
        3. fallback (FALLBACK_HOURLY_RATE)
    """
    task_rate = getattr(task, "hourly_rate", None)
    if task_rate is not None:
        return float(task_rate)
    if settings is not None and settings.default_hourly_rate is not None:
        return float(settings.default_hourly_rate)
    return float(fallback)


def units_to_hours(units: float, settings: Settings) -> float:
    """Hours estimate for a number of PCI units (presentation only, not pricing)."""
    return units * settings.unit_to_hour_ratio
