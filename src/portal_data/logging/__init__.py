"""
Logging Utilities

Provides log sanitization and secret redaction for provider settings.
"""

from src.portal_data.logging.sanitizer import (
    REDACTION_PLACEHOLDER,
    SanitizingFilter,
    configure_sanitized_logging,
    get_sanitized_logger,
    is_redacted,
    redact_connection_string,
    redact_secrets,
)

__all__ = [
    "REDACTION_PLACEHOLDER",
    "SanitizingFilter",
    "configure_sanitized_logging",
    "get_sanitized_logger",
    "is_redacted",
    "redact_connection_string",
    "redact_secrets",
]
