"""Gmail REST API access and message parsing."""

from .client import GmailClient

__all__ = ["GmailClient"]
