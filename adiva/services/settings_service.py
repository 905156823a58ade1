import copy
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from adiva.extensions import db, cache
from adiva.models import AdminSettings, utcnow
from adiva.services.model_catalog import MODEL_CATALOG
from adiva.utils.errors import ValidationError
from adiva.utils.logger import logger

SETTINGS_KEY = "global"
CACHE_KEY = f"admin_settings:{SETTINGS_KEY}"

DEFAULT_SETTINGS: Dict[str, Any] = {
    "defaultModel": "gpt-5-nano",
    "allowedModels": ["gpt-5-nano", "claude-sonnet-4-20250514"],
    "systemPromptTemplate": "",
    "maxTokens": 2000,
    "rateLimits": {
        "requestsPerMinute": 60,
        "tokensPerMinute": 60000,
    },
    "featureToggles": {
        "imageUpload": True,
        "analytics": True,
    },
    "guestLimits": {
        "maxChats": 5,
    },
}

DEFAULT_GUEST_MAX_CHATS = 5

# (path, min, max) for every numeric setting
_INT_RANGES = (
    (("maxTokens",), 1, 200000),
    (("rateLimits", "requestsPerMinute"), 1, 10000),
    (("rateLimits", "tokensPerMinute"), 1, 1000000),
    (("guestLimits", "maxChats"), 1, 100),
)
_BOOL_FIELDS = (
    ("featureToggles", "imageUpload"),
    ("featureToggles", "analytics"),
)
MAX_TEMPLATE_LENGTH = 10000


@dataclass(frozen=True)
class PolicySettings:
    """Read-only view of the global admin settings for one request."""
    default_model: Optional[str]
    allowed_models: Tuple[str, ...]
    system_prompt_template: str
    max_tokens: Optional[int]
    requests_per_minute: int
    tokens_per_minute: int
    image_upload_enabled: bool
    analytics_enabled: bool
    guest_max_chats: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PolicySettings":
        rate_limits = data.get("rateLimits") or {}
        toggles = data.get("featureToggles") or {}
        guest_limits = data.get("guestLimits") or {}
        max_chats = guest_limits.get("maxChats")
        return cls(
            default_model=data.get("defaultModel") or None,
            allowed_models=tuple(data.get("allowedModels") or ()),
            system_prompt_template=data.get("systemPromptTemplate") or "",
            max_tokens=data.get("maxTokens") or None,
            requests_per_minute=rate_limits.get("requestsPerMinute", 60),
            tokens_per_minute=rate_limits.get("tokensPerMinute", 60000),
            image_upload_enabled=toggles.get("imageUpload") is not False,
            analytics_enabled=toggles.get("analytics") is not False,
            guest_max_chats=DEFAULT_GUEST_MAX_CHATS if max_chats is None else max_chats,
        )


def _deep_merge(base: Dict[str, Any], updates: Dict[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _lookup(data, path):
    for part in path:
        if not isinstance(data, dict) or part not in data:
            return None, False
        data = data[part]
    return data, True


def validate_settings_update(updates: Any) -> None:
    """
    Validate a partial settings update.

    Raises:
        ValidationError: describing the first offending field
    """
    if not isinstance(updates, dict):
        raise ValidationError("Settings must be an object")

    unknown = set(updates) - set(DEFAULT_SETTINGS)
    if unknown:
        raise ValidationError(f"Unknown settings: {', '.join(sorted(unknown))}")

    for section in ("rateLimits", "featureToggles", "guestLimits"):
        if section in updates and not isinstance(updates[section], dict):
            raise ValidationError(f"'{section}' must be an object")

    for path, low, high in _INT_RANGES:
        value, present = _lookup(updates, path)
        if not present:
            continue
        name = ".".join(path)
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValidationError(f"'{name}' must be an integer")
        if not low <= value <= high:
            raise ValidationError(f"'{name}' must be between {low} and {high}")

    for path in _BOOL_FIELDS:
        value, present = _lookup(updates, path)
        if present and not isinstance(value, bool):
            raise ValidationError(f"'{'.'.join(path)}' must be a boolean")

    if "defaultModel" in updates:
        default_model = updates["defaultModel"]
        if not isinstance(default_model, str):
            raise ValidationError("'defaultModel' must be a string")
        if default_model and default_model not in MODEL_CATALOG:
            raise ValidationError(f"Unknown model '{default_model}'")

    if "allowedModels" in updates:
        models = updates["allowedModels"]
        if not isinstance(models, list) or not all(isinstance(m, str) and m for m in models):
            raise ValidationError("'allowedModels' must be a list of model ids")
        unknown_models = [m for m in models if m not in MODEL_CATALOG]
        if unknown_models:
            raise ValidationError(f"Unknown models: {', '.join(unknown_models)}")

    if "systemPromptTemplate" in updates:
        template = updates["systemPromptTemplate"]
        if not isinstance(template, str):
            raise ValidationError("'systemPromptTemplate' must be a string")
        if len(template) > MAX_TEMPLATE_LENGTH:
            raise ValidationError(
                f"System prompt template cannot exceed {MAX_TEMPLATE_LENGTH:,} characters"
            )


class SettingsService:
    """Loads, caches and updates the global admin settings."""

    @staticmethod
    def _get_or_create_record() -> AdminSettings:
        record = db.session.execute(
            select(AdminSettings).filter_by(key=SETTINGS_KEY)
        ).scalar_one_or_none()
        if record is not None:
            return record

        record = AdminSettings(key=SETTINGS_KEY, settings=copy.deepcopy(DEFAULT_SETTINGS))
        db.session.add(record)
        try:
            db.session.commit()
            logger.info("Created default admin settings")
        except IntegrityError:
            # Another request created it first
            db.session.rollback()
            record = db.session.execute(
                select(AdminSettings).filter_by(key=SETTINGS_KEY)
            ).scalar_one()
        return record

    @staticmethod
    def get_settings_dict() -> Dict[str, Any]:
        """Raw settings document, served from cache when possible."""
        cached = cache.get(CACHE_KEY)
        if cached is not None:
            return cached

        settings = copy.deepcopy(SettingsService._get_or_create_record().settings)
        cache.set(CACHE_KEY, settings, timeout=current_app.config["SETTINGS_CACHE_TIMEOUT"])
        return settings

    @staticmethod
    def get_policy() -> PolicySettings:
        return PolicySettings.from_dict(SettingsService.get_settings_dict())

    @staticmethod
    def get_record() -> AdminSettings:
        return SettingsService._get_or_create_record()

    @staticmethod
    def update_settings(updates: Dict[str, Any], user) -> AdminSettings:
        """
        Validate and merge an update into the stored settings.

        Args:
            updates: Partial settings document (camelCase keys)
            user: Admin performing the change

        Returns:
            The updated AdminSettings record
        """
        validate_settings_update(updates)

        record = SettingsService._get_or_create_record()
        record.settings = _deep_merge(record.settings or {}, updates)
        record.updated_by = user.id
        record.updated_at = utcnow()
        db.session.commit()

        cache.delete(CACHE_KEY)
        logger.info(f"Admin settings updated by user {user.id}: {sorted(updates)}")
        return record
