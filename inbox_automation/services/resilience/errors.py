"""
Upstream error taxonomy for mail-provider calls.

Every raw failure coming out of the provider client is mapped onto a closed
set of kinds. Retryability travels with the classified error so callers can
branch on it instead of guessing from exception types.
"""

import socket
from enum import Enum

import requests

from inbox_automation.services.google_gmail_service import (
    PERMISSION_REASONS,
    QUOTA_REASONS,
    RATE_LIMIT_REASONS,
    GoogleGmailError,
)


class MailErrorKind(str, Enum):
    RATE_LIMITED = "rate_limited"
    QUOTA_EXCEEDED = "quota_exceeded"
    INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
    INVALID_TOKEN = "invalid_token"
    NETWORK_ERROR = "network_error"
    NOT_FOUND = "not_found"
    UNKNOWN = "unknown"


class MailServiceError(Exception):
    """Classified mail-provider failure."""

    def __init__(
        self,
        kind: MailErrorKind,
        message: str,
        retryable: bool = False,
        retry_after: float | None = None,
        original: BaseException | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.retryable = retryable
        self.retry_after = retry_after
        self.original = original

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "retryable": self.retryable,
            "retry_after": self.retry_after,
        }


_SERVER_ERROR_CODES = {500, 502, 503, 504}


def classify_error(error: BaseException) -> MailServiceError:
    """Map any raw upstream exception onto the closed taxonomy."""
    if isinstance(error, MailServiceError):
        return error

    if isinstance(error, GoogleGmailError):
        return _classify_gmail_error(error)

    if isinstance(error, (requests.Timeout, TimeoutError)):
        return MailServiceError(
            MailErrorKind.NETWORK_ERROR, "Request timed out", retryable=True, original=error
        )

    if isinstance(error, (requests.ConnectionError, ConnectionError, socket.gaierror)):
        return MailServiceError(
            MailErrorKind.NETWORK_ERROR, "Network connection failed", retryable=True, original=error
        )

    return MailServiceError(
        MailErrorKind.UNKNOWN,
        str(error) or "Unknown error occurred",
        retryable=False,
        original=error,
    )


def _classify_gmail_error(error: GoogleGmailError) -> MailServiceError:
    status_code = error.status_code
    message = str(error)
    lowered = message.lower()
    reasons = {reason.lower() for reason in error.reasons}

    if status_code is None and error.error_code == "network_error":
        return MailServiceError(
            MailErrorKind.NETWORK_ERROR, "Network connection failed", retryable=True, original=error
        )

    if status_code == 429 or reasons & RATE_LIMIT_REASONS:
        return MailServiceError(
            MailErrorKind.RATE_LIMITED,
            "Rate limit exceeded",
            retryable=True,
            retry_after=error.retry_after,
            original=error,
        )

    if status_code == 403:
        if reasons & PERMISSION_REASONS or "insufficient" in lowered or "scope" in lowered:
            return MailServiceError(
                MailErrorKind.INSUFFICIENT_PERMISSIONS,
                "Insufficient permissions or scope",
                original=error,
            )
        if reasons & QUOTA_REASONS or "quota" in lowered:
            return MailServiceError(
                MailErrorKind.QUOTA_EXCEEDED,
                "API quota exceeded",
                retryable=True,
                retry_after=error.retry_after,
                original=error,
            )

    if status_code == 401:
        return MailServiceError(
            MailErrorKind.INVALID_TOKEN, "Invalid or expired access token", original=error
        )

    if status_code == 404:
        return MailServiceError(MailErrorKind.NOT_FOUND, "Resource not found", original=error)

    if status_code in _SERVER_ERROR_CODES:
        return MailServiceError(
            MailErrorKind.NETWORK_ERROR, "Server error", retryable=True, original=error
        )

    return MailServiceError(MailErrorKind.UNKNOWN, message or "Gmail API error", original=error)
