"""Helpers for turning Gmail API messages into local records.

Everything here is pure: no I/O and no shared state, so the functions can be
unit tested without a client or a store.
"""

from __future__ import annotations

import base64
import binascii
import time
from email.utils import parseaddr

from webmail_sync.models import (
    AttachmentRecord,
    EmailBody,
    EmailRecord,
    GmailMessage,
    LabelFlags,
    MimePart,
    SyncStatus,
)

NO_SUBJECT = "(no subject)"


def parse_sender(from_header: str | None) -> tuple[str, str]:
    """Split a From header into ``(display_name, address)``.

    Without an angle-bracket address the whole value is used for both.
    """

    value = (from_header or "").strip()
    if "<" in value:
        name, addr = parseaddr(value)
        if addr:
            name = name.strip().strip('"').strip()
            return (name or addr, addr)
    return (value, value)


def parse_address_list(value: str | None) -> list[str]:
    """Split a comma separated header into trimmed, non-empty entries."""

    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]


def decode_base64url(data: str) -> str:
    """Decode Gmail's base64url body data as UTF-8.

    Returns an empty string when the data cannot be decoded.
    """

    std = data.translate(str.maketrans("-_", "+/"))
    std += "=" * (-len(std) % 4)
    try:
        return base64.b64decode(std, validate=True).decode("utf-8")
    except (binascii.Error, ValueError):
        # UnicodeDecodeError is a ValueError.
        return ""


def extract_body(payload: MimePart | None) -> EmailBody:
    """Find the first ``text/html`` and first ``text/plain`` bodies in the tree."""

    if payload is None:
        return EmailBody()

    html: str | None = None
    plain: str | None = None
    for part in payload.walk():
        data = part.body.data
        if not data:
            continue
        mime = part.mime_type.lower()
        if mime == "text/html" and html is None:
            html = decode_base64url(data)
        elif mime == "text/plain" and plain is None:
            plain = decode_base64url(data)
        if html is not None and plain is not None:
            break

    return EmailBody(html=html, plain_text=plain)


def _content_id(part: MimePart) -> str | None:
    raw = part.header("Content-ID")
    if not raw:
        return None
    return raw.strip().strip("<>") or None


def extract_attachments(payload: MimePart | None) -> list[AttachmentRecord]:
    """Collect every part carrying both an attachment id and a filename.

    Order follows the depth-first walk; repeated attachment ids are kept.
    """

    if payload is None:
        return []

    return [
        AttachmentRecord(
            gmail_attachment_id=part.body.attachment_id,
            filename=part.filename,
            mime_type=part.mime_type or "application/octet-stream",
            size=part.body.size,
            content_id=_content_id(part),
        )
        for part in payload.walk()
        if part.body.attachment_id and part.filename
    ]


def map_labels_to_flags(label_ids: list[str] | None) -> LabelFlags:
    """Derive boolean state from Gmail label ids.

    A missing label array means read and nothing else.
    """

    labels = set(label_ids or [])
    return LabelFlags(
        read="UNREAD" not in labels,
        starred="STARRED" in labels,
        important="IMPORTANT" in labels,
        spam="SPAM" in labels,
        trash="TRASH" in labels,
        draft="DRAFT" in labels,
    )


def is_in_inbox(label_ids: list[str] | None) -> bool:
    """Whether the message carries the INBOX label (assumed when labels are absent)."""

    if label_ids is None:
        return True
    return "INBOX" in label_ids


def is_sent(label_ids: list[str] | None) -> bool:
    return "SENT" in (label_ids or [])


def message_to_email(message: GmailMessage, *, synced_at_ms: int | None = None) -> EmailRecord:
    """Convert a Gmail API message (format=full) to an EmailRecord.

    Args:
        message: Parsed Gmail API message.
        synced_at_ms: Sync timestamp; defaults to the current time.

    Returns:
        EmailRecord: Normalized record without a row id.
    """

    from_name, from_email = parse_sender(message.header("From"))
    body = extract_body(message.payload)
    flags = map_labels_to_flags(message.label_ids)

    cc_raw = message.header("Cc")
    bcc_raw = message.header("Bcc")

    return EmailRecord(
        gmail_id=message.id,
        gmail_thread_id=message.thread_id or message.id,
        subject=message.header("Subject") or NO_SUBJECT,
        snippet=message.snippet,
        internal_date=message.internal_date,
        history_id=message.history_id,
        size_estimate=message.size_estimate,
        from_name=from_name,
        from_email=from_email,
        to=parse_address_list(message.header("To")),
        cc=parse_address_list(cc_raw) if cc_raw is not None else None,
        bcc=parse_address_list(bcc_raw) if bcc_raw is not None else None,
        reply_to=message.header("Reply-To") or None,
        body_html=body.html,
        body_plain=body.plain_text,
        is_read=flags.read,
        is_starred=flags.starred,
        is_important=flags.important,
        is_spam=flags.spam,
        is_trash=flags.trash,
        is_draft=flags.draft,
        is_inbox=is_in_inbox(message.label_ids),
        is_sent=is_sent(message.label_ids),
        has_attachments=bool(extract_attachments(message.payload)),
        last_synced_at=synced_at_ms if synced_at_ms is not None else int(time.time() * 1000),
        sync_status=SyncStatus.SYNCED,
    )
