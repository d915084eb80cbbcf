"""Composing and sending mail.

Outgoing messages are multipart/alternative with a plain part and an HTML
part derived from it. After Gmail accepts a message it is fetched back and
stored like any synced message; failing to do so does not fail the send.
"""

from __future__ import annotations

import asyncio
import base64
import secrets
import sqlite3
from dataclasses import dataclass
from datetime import tzinfo
from email.message import EmailMessage

import structlog

from webmail_sync.exceptions import NotAuthenticated, WebmailSyncError
from webmail_sync.gmail.client import GmailClient
from webmail_sync.gmail.formatting import format_full_date, format_recipients
from webmail_sync.gmail.parsing import parse_address_list
from webmail_sync.models import EmailRecord, SendResult
from webmail_sync.store import MailStore
from webmail_sync.sync.engine import SyncEngine

logger = structlog.get_logger()


@dataclass(frozen=True)
class ComposeDraft:
    """Prefilled compose fields for a reply or forward."""

    to: str
    cc: str
    subject: str
    body: str


def new_boundary() -> str:
    return f"boundary_{secrets.token_hex(16)}"


def plain_to_html(body: str) -> str:
    return body.replace("\n", "<br>")


def build_mime_message(
    *,
    to: str,
    subject: str,
    body: str,
    cc: str | None = None,
    bcc: str | None = None,
    sender: str | None = None,
    boundary: str | None = None,
) -> bytes:
    """Build a multipart/alternative message with plain and HTML parts."""

    msg = EmailMessage()
    if sender:
        msg["From"] = sender
    msg["To"] = to
    if cc:
        msg["Cc"] = cc
    if bcc:
        msg["Bcc"] = bcc
    msg["Subject"] = subject

    msg.set_content(body)
    msg.add_alternative(plain_to_html(body), subtype="html")
    msg.set_boundary(boundary or new_boundary())
    return msg.as_bytes()


def encode_raw(message: bytes) -> str:
    """base64url encode a message for the Gmail send endpoint."""
    return base64.urlsafe_b64encode(message).decode("ascii").rstrip("=")


def _prefixed(prefix: str, subject: str) -> str:
    return subject if subject.startswith(prefix) else f"{prefix} {subject}"


def _quoted(email: EmailRecord, tz: tzinfo | None) -> str:
    quoted = "\n> ".join(email.body_plain.split("\n")) if email.body_plain else email.snippet
    return (
        f"\n\nOn {format_full_date(email.internal_date, tz)}, "
        f"{email.from_name} <{email.from_email}> wrote:\n> {quoted}"
    )


def build_reply(email: EmailRecord, tz: tzinfo | None = None) -> ComposeDraft:
    return ComposeDraft(
        to=email.from_email,
        cc="",
        subject=_prefixed("Re:", email.subject),
        body=_quoted(email, tz),
    )


def build_reply_all(
    email: EmailRecord,
    self_address: str | None,
    tz: tzinfo | None = None,
) -> ComposeDraft:
    """Reply to the sender and every other recipient except ourselves."""

    recipients: list[str] = []
    for addr in [email.from_email, *email.to, *(email.cc or [])]:
        if addr and addr != self_address and addr not in recipients:
            recipients.append(addr)

    return ComposeDraft(
        to=recipients[0] if recipients else "",
        cc=", ".join(recipients[1:]),
        subject=_prefixed("Re:", email.subject),
        body=_quoted(email, tz),
    )


def build_forward(email: EmailRecord, tz: tzinfo | None = None) -> ComposeDraft:
    body = (
        "\n\n---------- Forwarded message ---------\n"
        f"From: {email.from_name} <{email.from_email}>\n"
        f"Date: {format_full_date(email.internal_date, tz)}\n"
        f"Subject: {email.subject}\n"
        f"To: {format_recipients(email.to)}\n\n"
        f"{email.body_plain or email.snippet}"
    )
    return ComposeDraft(to="", cc="", subject=_prefixed("Fwd:", email.subject), body=body)


class ComposeService:
    """Sends mail through Gmail and records the sent message locally."""

    def __init__(self, store: MailStore, gmail: GmailClient, engine: SyncEngine) -> None:
        self._store = store
        self._gmail = gmail
        self._engine = engine

    async def send_email(
        self,
        user_id: str | None,
        *,
        to: str,
        subject: str,
        body: str,
        cc: str | None = None,
        bcc: str | None = None,
    ) -> SendResult:
        """Send a message.

        Returns:
            SendResult: ``success`` with the Gmail message id, or an error
            message. Provider and token failures never raise.

        Raises:
            NotAuthenticated: If there is no signed-in user.
        """

        if not user_id:
            raise NotAuthenticated()
        user = self._store.get_user(user_id)
        if user is None:
            raise NotAuthenticated()

        if not parse_address_list(to):
            return SendResult(success=False, error="At least one recipient is required")

        try:
            mime = build_mime_message(
                to=to,
                cc=cc,
                bcc=bcc,
                subject=subject,
                body=body,
                sender=user.email,
            )
        except ValueError as exc:
            # EmailMessage rejects header values containing CR or LF.
            logger.warning("send_email_invalid_message", user_id=user_id, error=str(exc))
            return SendResult(success=False, error=f"Invalid message: {exc}")
        raw = encode_raw(mime)

        try:
            sent = await self._gmail.send_message(user_id, raw)
        except WebmailSyncError as exc:
            logger.warning("send_email_failed", user_id=user_id, error=str(exc))
            return SendResult(success=False, error=str(exc))

        logger.info("email_sent", user_id=user_id, message_id=sent.id)
        await self._record_sent(user_id, sent.id)
        return SendResult(success=True, message_id=sent.id)

    async def _record_sent(self, user_id: str, message_id: str) -> None:
        try:
            message = await self._gmail.get_message(user_id, message_id, format="full")
            await asyncio.to_thread(self._engine.ingest_messages, user_id, [message])
        except (WebmailSyncError, sqlite3.Error) as exc:
            logger.warning("sent_email_record_failed", message_id=message_id, error=str(exc))
