"""Mailbox operations for the signed-in user.

``Mailbox`` wires the store, token manager, Gmail client, sync engine,
outbound label mirror and compose service together and exposes the
operations a UI calls. Queries return empty results without a session;
mutations and actions raise NotAuthenticated.
"""

from __future__ import annotations

from datetime import tzinfo
from typing import Literal

import httpx
import structlog

from webmail_sync.auth import TokenManager
from webmail_sync.compose import ComposeDraft, ComposeService, build_forward, build_reply, build_reply_all
from webmail_sync.config import Settings
from webmail_sync.exceptions import EmailNotFound, NotAuthenticated
from webmail_sync.gmail.client import GmailClient
from webmail_sync.models import (
    EmailDetail,
    EmailPage,
    EmailRecord,
    MailView,
    SendResult,
    SyncResult,
    SyncState,
    ThreadRecord,
    UserAccount,
)
from webmail_sync.store import MailStore
from webmail_sync.sync.engine import SyncEngine
from webmail_sync.sync.outbound import LabelChange, OutboundSync

logger = structlog.get_logger()

DraftMode = Literal["reply", "reply_all", "forward"]


class Mailbox:
    """UI-facing mail operations bound to one session user."""

    def __init__(
        self,
        store: MailStore,
        gmail: GmailClient,
        token_manager: TokenManager,
        settings: Settings | None = None,
        *,
        user_id: str | None = None,
        outbound: OutboundSync | None = None,
    ) -> None:
        from webmail_sync.config import get_settings

        self.settings = settings or get_settings()
        self.store = store
        self.gmail = gmail
        self.tokens = token_manager
        self.user_id = user_id
        self.engine = SyncEngine(store, gmail, token_manager, self.settings)
        self.compose = ComposeService(store, gmail, self.engine)
        self.outbound = outbound or OutboundSync(gmail, max_pending=self.settings.outbound_queue_size)

    @classmethod
    def from_settings(
        cls,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> Mailbox:
        """Build a mailbox and its collaborators from settings."""
        from webmail_sync.config import get_settings

        settings = settings or get_settings()
        store = MailStore(settings.db_path)
        store.initialize()
        tokens = TokenManager(store, settings.oauth_client())
        gmail = GmailClient(tokens, settings, transport=transport)
        return cls(store, gmail, tokens, settings, user_id=settings.user_id)

    async def __aenter__(self) -> Mailbox:
        self.outbound.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def close(self) -> None:
        """Drain pending label changes and release the HTTP client."""
        await self.outbound.stop(self.settings.outbound_drain_timeout_seconds)
        await self.gmail.aclose()

    # Session

    def sign_in(self, user: UserAccount) -> None:
        """Store a user's credential issued by the auth provider and use it as the session."""
        self.store.upsert_user(user)
        self.user_id = user.id
        logger.info("user_signed_in", user_id=user.id)

    def current_user(self) -> UserAccount | None:
        if not self.user_id:
            return None
        return self.store.get_user(self.user_id)

    def _require_user(self) -> UserAccount:
        user = self.current_user()
        if user is None:
            raise NotAuthenticated()
        return user

    def _owned_email(self, user: UserAccount, email_id: int) -> EmailRecord:
        email = self.store.get_email(email_id)
        if email is None or email.user_id != user.id:
            raise EmailNotFound()
        return email

    # Actions

    async def sync_emails(self, continue_paging: bool = False) -> SyncResult:
        """Sync the newest page, or the next page when ``continue_paging`` is set."""
        return await self.engine.sync_emails(self.user_id, continue_paging=continue_paging)

    async def send_email(
        self,
        to: str,
        subject: str,
        body: str,
        cc: str | None = None,
        bcc: str | None = None,
    ) -> SendResult:
        return await self.compose.send_email(
            self.user_id, to=to, cc=cc, bcc=bcc, subject=subject, body=body
        )

    # Mutations

    def mark_as_read(self, email_id: int, is_read: bool) -> dict[str, bool]:
        """Set the read flag locally and queue the change for Gmail."""

        user = self._require_user()
        email = self._owned_email(user, email_id)
        self.store.set_read(email_id, is_read)
        self.outbound.enqueue(LabelChange.for_read_state(user.id, email.gmail_id, is_read))
        return {"success": True}

    def toggle_star(self, email_id: int, is_starred: bool) -> dict[str, bool]:
        """Set the starred flag locally and queue the change for Gmail."""

        user = self._require_user()
        email = self._owned_email(user, email_id)
        self.store.set_starred(email_id, is_starred)
        self.outbound.enqueue(LabelChange.for_star_state(user.id, email.gmail_id, is_starred))
        return {"success": True}

    # Queries

    def list_emails(
        self,
        view: MailView | str = MailView.INBOX,
        page: int = 1,
        page_size: int = 50,
    ) -> EmailPage:
        user = self.current_user()
        if user is None:
            return EmailPage(page=1, page_size=page_size)
        return self.store.list_emails(user.id, MailView(view), page=page, page_size=page_size)

    def get_email(self, email_id: int) -> EmailDetail | None:
        user = self.current_user()
        if user is None:
            return None
        email = self.store.get_email(email_id)
        if email is None or email.user_id != user.id:
            return None
        return EmailDetail(email=email, attachments=self.store.list_attachments(email_id))

    def get_thread_emails(self, gmail_thread_id: str) -> list[EmailRecord]:
        user = self.current_user()
        if user is None:
            return []
        return self.store.list_emails_by_thread(user.id, gmail_thread_id)

    def list_threads(self, limit: int = 50) -> list[ThreadRecord]:
        user = self.current_user()
        if user is None:
            return []
        return self.store.list_threads(user.id, limit=limit)

    def search_emails(self, term: str, limit: int = 50) -> list[EmailRecord]:
        user = self.current_user()
        if user is None:
            return []
        return self.store.search_emails(user.id, term, limit=limit)

    def get_sync_state(self) -> SyncState | None:
        user = self.current_user()
        if user is None:
            return None
        return self.store.get_sync_state(user.id)

    def draft_response(
        self,
        email_id: int,
        mode: DraftMode = "reply",
        tz: tzinfo | None = None,
    ) -> ComposeDraft:
        """Prefill a reply, reply-all or forward for one of the user's emails."""

        user = self._require_user()
        email = self._owned_email(user, email_id)
        if mode == "reply":
            return build_reply(email, tz)
        if mode == "reply_all":
            return build_reply_all(email, user.email, tz)
        return build_forward(email, tz)
