"""Local mail store.

This package persists users, emails, threads, attachments and per-user sync
cursors, and serves the filtered listings the UI reads.
"""

from .repository import MailStore

__all__ = ["MailStore"]
