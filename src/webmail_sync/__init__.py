"""Webmail Sync - Gmail synchronization and mail-state reconciliation.

This package pulls mail from the Gmail REST API into a local store, keeps
per-thread aggregates current, and mirrors local read/star changes back to
Gmail on a best-effort basis.
"""

__version__ = "0.1.0"
__author__ = "Trickl"

from webmail_sync.config import OAuthClientConfig, Settings, get_settings

__all__ = ["OAuthClientConfig", "Settings", "get_settings", "__version__", "__author__"]
