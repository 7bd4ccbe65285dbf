"""
Credential redaction and audit logging utilities.

SECURITY REQUIREMENTS:
- Tokens NEVER appear in logs (access_token, refresh_token, code, keys)
- ALLOWED in logs: user_id, provider, account_email, external_account_id
- All credential operations logged for audit trail

Audit Events:
- credential.authorization_started
- credential.stored
- credential.refreshed
- credential.revoked
- credential.accessed
- credential.error

Usage:
    from src.credentials.redaction import CredentialAuditLogger, AuditEventType

    audit = CredentialAuditLogger(user_id)
    audit.log(
        event_type=AuditEventType.CREDENTIAL_STORED,
        provider="google",
        metadata={"scope_count": 2},
    )
"""

import logging
import re
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

REDACTED_VALUE = "[REDACTED]"


class AuditEventType(str, Enum):
    """Credential audit event types."""
    AUTHORIZATION_STARTED = "credential.authorization_started"
    CREDENTIAL_STORED = "credential.stored"
    CREDENTIAL_REFRESHED = "credential.refreshed"
    CREDENTIAL_REVOKED = "credential.revoked"
    CREDENTIAL_ACCESSED = "credential.accessed"
    CREDENTIAL_ERROR = "credential.error"


# Token shapes issued by supported providers
CREDENTIAL_SECRET_PATTERNS = [
    re.compile(r"ya29\.[a-zA-Z0-9_-]+"),  # Google access tokens
    re.compile(r"1//[a-zA-Z0-9_-]{20,}"),  # Google refresh tokens
    re.compile(r"EAA[a-zA-Z0-9]{20,}"),  # Facebook tokens
    re.compile(r"EwB[a-zA-Z0-9+/=_-]{20,}"),  # Microsoft tokens
]

# Keep the prefix (group 1), redact what follows it
PREFIXED_SECRET_PATTERNS = [
    re.compile(r"(?i)(bearer\s+)[a-zA-Z0-9._~+/=-]+"),
    re.compile(r"(?i)((?:access_token|refresh_token|client_secret|code)=)[^&\s\"']+"),
]

SECRET_KEY_PATTERNS = (
    "token", "secret", "credential", "bearer", "oauth",
    "api_key", "apikey", "password", "authorization", "encryption_key",
)

# Exact key names that look secret but are safe metadata
ALLOWED_KEYS = frozenset({
    "user_id",
    "provider",
    "account_email",
    "external_account_id",
    "has_refresh_token",
    "credential_id",
    "token_type",
})


def is_credential_secret_key(key: str) -> bool:
    """
    Check if a key name indicates a credential secret.

    Args:
        key: The key name to check

    Returns:
        True if the key likely contains a secret
    """
    key_lower = key.lower()
    if key_lower in ALLOWED_KEYS:
        return False
    if key_lower in ("code", "iv", "state"):
        return True
    return any(pattern in key_lower for pattern in SECRET_KEY_PATTERNS)


def redact_credential_value(value: Any) -> Any:
    """
    Redact secret patterns from a credential value.

    Args:
        value: The value to redact

    Returns:
        Redacted value
    """
    if not isinstance(value, str):
        return value

    result = value
    for pattern in CREDENTIAL_SECRET_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    for pattern in PREFIXED_SECRET_PATTERNS:
        result = pattern.sub(lambda m: m.group(1) + REDACTED_VALUE, result)
    return result


def redact_credential_data(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact credential secrets from a data structure.

    SECURITY:
    - Always use this before logging credential-related data
    - user_id, provider and account_email are NOT redacted

    Args:
        data: Dictionary, list, or other data structure

    Returns:
        Copy of data with secrets redacted
    """
    # Prevent infinite recursion
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_credential_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_credential_data(value, _depth + 1)
        return result

    if isinstance(data, (list, tuple)):
        return [redact_credential_data(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_credential_value(data)

    return data


class CredentialAuditLogger:
    """
    Structured audit logger for credential operations.

    SECURITY:
    - Tokens are NEVER logged
    - metadata is redacted before it reaches the log record
    """

    def __init__(self, user_id: str):
        self.user_id = user_id
        self.logger = logging.getLogger("credentials.audit")

    def log(
        self,
        event_type: AuditEventType,
        provider: str,
        credential_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """
        Log an audit event.

        Args:
            event_type: Type of audit event
            provider: OAuth provider name
            credential_id: Credential row id, when one exists
            metadata: Additional context (will be redacted)
        """
        safe_metadata = redact_credential_data(metadata) if metadata else {}

        audit_record = {
            "event_type": event_type.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "user_id": self.user_id,
            "credential_id": credential_id,
            "provider": provider,
            **safe_metadata,
        }

        self.logger.info(
            f"Credential audit: {event_type.value}",
            extra=audit_record
        )

    def log_error(
        self,
        provider: str,
        error: str,
        credential_id: Optional[str] = None,
    ) -> None:
        """Log a credential error. The message is redacted."""
        self.log(
            event_type=AuditEventType.CREDENTIAL_ERROR,
            provider=provider,
            credential_id=credential_id,
            metadata={"error": redact_credential_value(error)},
        )


class CredentialLoggingFilter(logging.Filter):
    """
    Logging filter that redacts credential secrets from log records.

    Usage:
        handler.addFilter(CredentialLoggingFilter())
    """

    # Standard LogRecord attributes that are never secrets
    _RESERVED = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None)))

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = redact_credential_value(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = redact_credential_data(record.args)
            elif isinstance(record.args, tuple):
                record.args = tuple(
                    redact_credential_value(arg) if isinstance(arg, str) else arg
                    for arg in record.args
                )

        # Extra fields
        for key in list(record.__dict__.keys()):
            if key in self._RESERVED:
                continue
            value = record.__dict__[key]
            if is_credential_secret_key(key):
                record.__dict__[key] = REDACTED_VALUE
            elif isinstance(value, (str, dict, list)):
                record.__dict__[key] = redact_credential_data(value)

        return True


def setup_credential_logging() -> None:
    """
    Configure credential-safe logging.

    Call this during application startup so every credential logger has
    the redaction filter applied.
    """
    redaction_filter = CredentialLoggingFilter()

    # Logger filters do not apply to records propagated from child loggers,
    # so the filter goes on the handlers as well.
    for handler in logging.getLogger().handlers:
        handler.addFilter(redaction_filter)

    for logger_name in ("credentials.audit", "src.credentials"):
        logging.getLogger(logger_name).addFilter(redaction_filter)

    logger.info("Credential logging configured with redaction filter")
