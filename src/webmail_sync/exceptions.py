"""Custom exceptions for Webmail Sync."""

from __future__ import annotations


class WebmailSyncError(Exception):
    """Base exception for all Webmail Sync errors."""


class NotAuthenticated(WebmailSyncError):
    """Raised when an operation runs without a signed-in user."""

    def __init__(self, message: str = "Not authenticated. Please sign in.") -> None:
        super().__init__(message)


class AuthExpired(WebmailSyncError):
    """Raised when no usable access token is left after a refresh attempt."""

    def __init__(self, message: str = "Gmail access expired. Please sign in again.") -> None:
        super().__init__(message)


class SyncFailed(WebmailSyncError):
    """Raised when Gmail rejects a list request with a non-401 error."""

    def __init__(self, status_text: str) -> None:
        super().__init__(f"Failed to sync emails: {status_text}")
        self.status_text = status_text


class GmailAPIError(WebmailSyncError):
    """Exception raised for Gmail API related errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class GmailTimeoutError(GmailAPIError):
    """Raised when a Gmail API call exceeds its timeout."""


class EmailNotFound(WebmailSyncError):
    """Raised when an email does not exist or belongs to another user."""

    def __init__(self, message: str = "Email not found or unauthorized") -> None:
        super().__init__(message)


class ConfigurationError(WebmailSyncError):
    """Exception raised for configuration related errors."""
