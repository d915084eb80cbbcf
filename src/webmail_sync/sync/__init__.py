"""Mailbox synchronization: Gmail to local store, and local flags back to Gmail."""

from .engine import SyncEngine
from .outbound import LabelChange, OutboundSync
from .threads import ThreadAggregator, summarize_thread

__all__ = ["LabelChange", "OutboundSync", "SyncEngine", "ThreadAggregator", "summarize_thread"]
