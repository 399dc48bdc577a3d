from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict

from quietstats.core.ops_log import redact


class Severity(str, Enum):
    INFO = "INFO"
    WARN = "WARN"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class QuietstatsError(Exception):
    code: str
    user_message: str
    severity: Severity = Severity.ERROR
    recoverable: bool = True
    context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        super().__init__(self.code)

    def __str__(self) -> str:
        return self.user_message

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "user_message": self.user_message,
            "severity": self.severity.value,
            "recoverable": bool(self.recoverable),
            "context": redact(self.context or {}),
        }


# ---- Input ----
class ValidationError(QuietstatsError):
    def __init__(self, user_message: str = "Invalid request.", *, code: str = "validation_error", **ctx: Any):
        super().__init__(code, user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class InvalidEventName(ValidationError):
    def __init__(self, user_message: str = "Invalid event name.", **ctx: Any):
        super().__init__(user_message, code="invalid_event_name", **ctx)


class InvalidProperties(ValidationError):
    def __init__(self, user_message: str = "Invalid event properties.", **ctx: Any):
        super().__init__(user_message, code="invalid_properties", **ctx)


# ---- Core ----
class ConfigError(QuietstatsError):
    def __init__(self, user_message: str = "Configuration error.", **ctx: Any):
        super().__init__("config_error", user_message, severity=Severity.CRITICAL, recoverable=False, context=ctx)


class CryptoError(QuietstatsError):
    def __init__(self, user_message: str = "Decryption failed.", **ctx: Any):
        super().__init__("crypto_error", user_message, severity=Severity.ERROR, recoverable=False, context=ctx)


class DeliveryError(QuietstatsError):
    def __init__(self, user_message: str = "Event delivery failed.", **ctx: Any):
        super().__init__("delivery_error", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class RetentionSweepError(QuietstatsError):
    def __init__(self, user_message: str = "Retention sweep failed for site.", **ctx: Any):
        super().__init__("retention_sweep_error", user_message, severity=Severity.ERROR, recoverable=True, context=ctx)


class SiteAlreadyExistsError(QuietstatsError):
    def __init__(self, user_message: str = "Site already exists.", **ctx: Any):
        super().__init__("site_exists", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class SiteNotFoundError(QuietstatsError):
    def __init__(self, user_message: str = "Site not found.", **ctx: Any):
        super().__init__("site_not_found", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


# ---- Web ----
class RateLimitError(QuietstatsError):
    def __init__(self, user_message: str = "Rate limit exceeded.", **ctx: Any):
        super().__init__("rate_limited", user_message, severity=Severity.WARN, recoverable=True, context=ctx)


class PayloadTooLargeError(QuietstatsError):
    def __init__(self, user_message: str = "Payload too large.", **ctx: Any):
        super().__init__("payload_too_large", user_message, severity=Severity.WARN, recoverable=False, context=ctx)


class OriginNotAllowedError(QuietstatsError):
    def __init__(self, user_message: str = "Origin not allowed.", **ctx: Any):
        super().__init__("origin_not_allowed", user_message, severity=Severity.WARN, recoverable=False, context=ctx)
