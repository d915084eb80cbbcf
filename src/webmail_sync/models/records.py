"""Local store records and operation results."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from pydantic import BaseModel, Field


class SyncStatus(str, Enum):
    """Sync status of an email row or of a user's sync cursor."""

    SYNCED = "synced"
    PARTIAL = "partial"
    COMPLETE = "complete"


class MailView(str, Enum):
    """Folder-like views offered by the email listing."""

    INBOX = "inbox"
    SENT = "sent"
    DRAFTS = "drafts"
    ARCHIVE = "archive"
    TRASH = "trash"
    ALL = "all"


@dataclass(frozen=True)
class LabelFlags:
    """Boolean state derived from Gmail label ids."""

    read: bool
    starred: bool
    important: bool
    spam: bool
    trash: bool
    draft: bool


@dataclass(frozen=True)
class EmailBody:
    """Decoded message bodies."""

    html: str | None = None
    plain_text: str | None = None


class UserAccount(BaseModel):
    """A signed-in user and the Google OAuth credential stored with it."""

    id: str = Field(description="Local user id")
    email: str | None = Field(default=None, description="User's own address")
    name: str | None = None
    google_access_token: str | None = None
    google_refresh_token: str | None = None
    token_expires_at: int | None = Field(
        default=None, description="Access token expiry in epoch seconds"
    )


class EmailRecord(BaseModel):
    """A normalized Gmail message as stored locally."""

    id: int | None = Field(default=None, description="Local row id")
    user_id: str | None = None

    gmail_id: str = Field(description="Gmail message id")
    gmail_thread_id: str = Field(description="Gmail thread id")

    subject: str = ""
    snippet: str = ""
    internal_date: int = Field(default=0, description="Milliseconds since epoch")
    history_id: str = ""
    size_estimate: int = 0

    from_name: str = ""
    from_email: str = ""
    to: list[str] = Field(default_factory=list)
    cc: list[str] | None = None
    bcc: list[str] | None = None
    reply_to: str | None = None

    body_html: str | None = None
    body_plain: str | None = None

    is_read: bool = True
    is_starred: bool = False
    is_important: bool = False
    is_spam: bool = False
    is_trash: bool = False
    is_draft: bool = False
    is_inbox: bool = True
    is_sent: bool = False
    has_attachments: bool = False

    last_synced_at: int = Field(default=0, description="Milliseconds since epoch")
    sync_status: SyncStatus = SyncStatus.SYNCED


class AttachmentRecord(BaseModel):
    """Attachment metadata for one email."""

    id: int | None = None
    email_id: int | None = None
    gmail_attachment_id: str
    filename: str
    mime_type: str = "application/octet-stream"
    size: int = 0
    content_id: str | None = None


class ThreadRecord(BaseModel):
    """Per-thread aggregate over a user's emails."""

    id: int | None = None
    user_id: str | None = None
    gmail_thread_id: str
    subject: str = ""
    snippet: str = ""
    last_message_date: int = 0
    message_count: int = 0
    participant_emails: list[str] = Field(default_factory=list)
    is_read: bool = True
    has_attachments: bool = False


class SyncState(BaseModel):
    """A user's sync cursor."""

    user_id: str
    last_history_id: str = ""
    last_sync_time: int = 0
    next_page_token: str | None = None
    sync_status: SyncStatus = SyncStatus.COMPLETE


class SyncResult(BaseModel):
    """Outcome of one sync batch."""

    synced: int = 0
    has_more: bool = False
    error: str | None = None
    error_code: str | None = None


class SendResult(BaseModel):
    """Outcome of sending a message."""

    success: bool
    message_id: str | None = None
    error: str | None = None


class EmailDetail(BaseModel):
    """An email together with its attachments."""

    email: EmailRecord
    attachments: list[AttachmentRecord] = Field(default_factory=list)


class EmailPage(BaseModel):
    """One page of an email listing."""

    emails: list[EmailRecord] = Field(default_factory=list)
    total_count: int = 0
    page: int = 1
    page_size: int = 50
    total_pages: int = 0
    has_next: bool = False
    has_prev: bool = False
