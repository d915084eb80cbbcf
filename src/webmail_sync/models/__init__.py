"""Data models for Webmail Sync.

This module contains Pydantic models for Gmail payloads and local records.
"""

from webmail_sync.models.gmail import (
    GmailMessage,
    MessageHeader,
    MessageList,
    MessageRef,
    MimePart,
    PartBody,
)
from webmail_sync.models.records import (
    AttachmentRecord,
    EmailBody,
    EmailDetail,
    EmailPage,
    EmailRecord,
    LabelFlags,
    MailView,
    SendResult,
    SyncResult,
    SyncState,
    SyncStatus,
    ThreadRecord,
    UserAccount,
)

__all__ = [
    "AttachmentRecord",
    "EmailBody",
    "EmailDetail",
    "EmailPage",
    "EmailRecord",
    "GmailMessage",
    "LabelFlags",
    "MailView",
    "MessageHeader",
    "MessageList",
    "MessageRef",
    "MimePart",
    "PartBody",
    "SendResult",
    "SyncResult",
    "SyncState",
    "SyncStatus",
    "ThreadRecord",
    "UserAccount",
]
