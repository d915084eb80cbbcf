"""Gmail to local store synchronization.

One call to ``SyncEngine.sync_emails`` processes one page of Gmail's message
list: it fetches every message on the page in parallel, normalizes and upserts
them with their attachments, recomputes the touched threads and records the
user's sync cursor.
"""

from __future__ import annotations

import asyncio
import sqlite3
import time

import structlog

from webmail_sync.auth import TokenManager
from webmail_sync.config import Settings
from webmail_sync.exceptions import (
    AuthExpired,
    GmailAPIError,
    NotAuthenticated,
    SyncFailed,
    WebmailSyncError,
)
from webmail_sync.gmail.client import GmailClient
from webmail_sync.gmail.parsing import extract_attachments, message_to_email
from webmail_sync.models import GmailMessage, MessageList, SyncResult, SyncState, SyncStatus
from webmail_sync.store import MailStore
from webmail_sync.sync.threads import ThreadAggregator

logger = structlog.get_logger()


def _latest_history_id(candidates: list[str]) -> str:
    numeric = [c for c in candidates if c and c.isdigit()]
    if numeric:
        return max(numeric, key=int)
    return next((c for c in candidates if c), "")


class SyncEngine:
    """Pulls Gmail messages into the local store."""

    def __init__(
        self,
        store: MailStore,
        gmail: GmailClient,
        token_manager: TokenManager,
        settings: Settings | None = None,
    ) -> None:
        from webmail_sync.config import get_settings

        self.settings = settings or get_settings()
        self._store = store
        self._gmail = gmail
        self._tokens = token_manager

    async def sync_emails(self, user_id: str | None, continue_paging: bool = False) -> SyncResult:
        """Sync one page of the user's mailbox.

        Args:
            user_id: Signed-in user, or None when there is no session.
            continue_paging: Resume from the stored page token instead of
                requesting the newest page.

        Returns:
            SyncResult: Count of processed messages and whether more pages
            exist. Token and listing failures are reported in ``error``.

        Raises:
            NotAuthenticated: If there is no signed-in user.
        """

        if not user_id or self._store.get_user(user_id) is None:
            raise NotAuthenticated()

        try:
            await self._tokens.get_valid_access_token(user_id)
        except AuthExpired as exc:
            return self._failed(user_id, exc, "auth_expired")

        previous = self._store.get_sync_state(user_id)
        page_token = previous.next_page_token if (continue_paging and previous) else None

        try:
            listing = await self._list_page(user_id, page_token)
        except AuthExpired as exc:
            return self._failed(user_id, exc, "auth_expired")
        except SyncFailed as exc:
            return self._failed(user_id, exc, "sync_failed")

        messages = await self._fetch_details(user_id, listing)
        synced = await asyncio.to_thread(self.ingest_messages, user_id, messages)

        history_id = _latest_history_id(
            [listing.history_id or "", *(m.history_id for m in messages)]
        ) or (previous.last_history_id if previous else "")
        await asyncio.to_thread(
            self._store.upsert_sync_state,
            SyncState(
                user_id=user_id,
                last_history_id=history_id,
                last_sync_time=int(time.time() * 1000),
                next_page_token=listing.next_page_token,
                sync_status=SyncStatus.PARTIAL if listing.next_page_token else SyncStatus.COMPLETE,
            )
        )

        result = SyncResult(synced=synced, has_more=listing.next_page_token is not None)
        logger.info(
            "sync_batch_completed",
            user_id=user_id,
            listed=len(listing.messages),
            synced=result.synced,
            has_more=result.has_more,
        )
        return result

    def ingest_messages(self, user_id: str, messages: list[GmailMessage]) -> int:
        """Upsert messages, their attachments and their threads.

        Blocks on the store; async callers run it with ``asyncio.to_thread``.

        Returns:
            Number of messages stored.
        """

        aggregator = ThreadAggregator()
        stored = 0

        for message in messages:
            record = message_to_email(message)
            try:
                email_id = self._store.upsert_email(user_id, record)
            except sqlite3.Error as exc:
                logger.error("email_upsert_failed", gmail_id=message.id, error=str(exc))
                continue

            try:
                self._store.replace_attachments(email_id, extract_attachments(message.payload))
            except sqlite3.Error as exc:
                logger.error("attachment_upsert_failed", gmail_id=message.id, error=str(exc))

            aggregator.add(record)
            stored += 1

        for thread_id in aggregator.thread_ids:
            try:
                summary = aggregator.merge(
                    thread_id,
                    stored_members=self._store.list_emails_by_thread(user_id, thread_id),
                    previous=self._store.get_thread(user_id, thread_id),
                )
                self._store.upsert_thread(user_id, summary)
            except sqlite3.Error as exc:
                logger.error("thread_upsert_failed", thread_id=thread_id, error=str(exc))

        return stored

    async def _list_page(self, user_id: str, page_token: str | None) -> MessageList:
        try:
            return await self._gmail.list_messages(
                user_id,
                max_results=self.settings.gmail_page_size,
                page_token=page_token,
            )
        except AuthExpired:
            raise
        except GmailAPIError as exc:
            raise SyncFailed(str(exc)) from exc

    async def _fetch_details(self, user_id: str, listing: MessageList) -> list[GmailMessage]:
        results = await asyncio.gather(
            *(self._fetch_one(user_id, ref.id) for ref in listing.messages)
        )
        return [m for m in results if m is not None]

    async def _fetch_one(self, user_id: str, message_id: str) -> GmailMessage | None:
        try:
            return await self._gmail.get_message(user_id, message_id, format="full")
        except WebmailSyncError as exc:
            logger.warning("message_fetch_failed", message_id=message_id, error=str(exc))
            return None

    def _failed(self, user_id: str, exc: WebmailSyncError, code: str) -> SyncResult:
        logger.warning("sync_failed", user_id=user_id, error_code=code, error=str(exc))
        return SyncResult(synced=0, has_more=False, error=str(exc), error_code=code)
