from __future__ import annotations

"""
Structural checks for tracked events.

Runs before consent gating and sanitization so malformed events never enter
the queue or the sanitizer.
"""

import json
import re
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from quietstats.core.errors import ConfigError, InvalidEventName, InvalidProperties


IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
MAX_EVENT_NAME_LENGTH = 100
MAX_PROPERTY_VALUE_LENGTH = 1000
MAX_PROPERTIES_COUNT = 100

_BOOLEAN_FLAGS = ("consent_required", "hash_user_ids", "automatic_page_views")


def canonical_string(value: Any) -> str:
    """String form used for the length bound (structured values as compact JSON)."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, ensure_ascii=False, separators=(",", ":"), default=str)
    return str(value)


def validate_event_name(event_name: Any) -> None:
    if not event_name or not isinstance(event_name, str):
        raise InvalidEventName("Event name must be a non-empty string")
    if len(event_name) > MAX_EVENT_NAME_LENGTH:
        raise InvalidEventName(f"Event name must not exceed {MAX_EVENT_NAME_LENGTH} characters", length=len(event_name))
    if not IDENTIFIER_PATTERN.match(event_name):
        raise InvalidEventName("Event name must contain only letters, numbers, and underscores")


def validate_property_value(key: str, value: Any) -> None:
    if value is None:
        raise InvalidProperties(f'Property "{key}" cannot be null', key=key)
    if callable(value):
        raise InvalidProperties(f'Property "{key}" cannot be a function', key=key)
    if len(canonical_string(value)) > MAX_PROPERTY_VALUE_LENGTH:
        raise InvalidProperties(f'Property "{key}" value must not exceed {MAX_PROPERTY_VALUE_LENGTH} characters', key=key)


def validate_properties(properties: Any) -> None:
    if properties is None or not isinstance(properties, Mapping):
        raise InvalidProperties("Properties must be a non-null object")
    if len(properties) > MAX_PROPERTIES_COUNT:
        raise InvalidProperties(f"Properties count must not exceed {MAX_PROPERTIES_COUNT}", count=len(properties))
    for key, value in properties.items():
        if not isinstance(key, str) or not IDENTIFIER_PATTERN.match(key) or len(key) > MAX_EVENT_NAME_LENGTH:
            raise InvalidProperties(f'Property key "{key}" must contain only letters, numbers, and underscores')
        validate_property_value(key, value)


def validate_event(event_name: Any, properties: Any) -> None:
    """Raise InvalidEventName / InvalidProperties; no side effects."""
    validate_event_name(event_name)
    validate_properties(properties)


def validate_tracker_config(cfg: Mapping[str, Any]) -> None:
    if cfg is None or not isinstance(cfg, Mapping):
        raise ConfigError("Configuration must be a non-null object")
    site_id = cfg.get("site_id")
    if not site_id or not isinstance(site_id, str):
        raise ConfigError("site_id is required and must be a string")
    endpoint = cfg.get("endpoint")
    if endpoint:
        parts = urlsplit(str(endpoint))
        if not parts.scheme or not parts.netloc:
            raise ConfigError("Invalid API endpoint URL")
        if parts.scheme != "https":
            raise ConfigError("API endpoint must use HTTPS")
    for flag in _BOOLEAN_FLAGS:
        if flag in cfg and not isinstance(cfg[flag], bool):
            raise ConfigError(f"{flag} must be a boolean value")
