"""Best-effort mirroring of local read/star changes to Gmail.

Local flag changes are written to the store first and then queued here. A
background worker sends each queued change to Gmail once. Failures are logged
and counted, never retried and never rolled back locally; the next sync pulls
Gmail's state again.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from webmail_sync.exceptions import WebmailSyncError
from webmail_sync.gmail.client import GmailClient

logger = structlog.get_logger()


@dataclass(frozen=True)
class LabelChange:
    """One label modification to mirror onto a Gmail message."""

    user_id: str
    gmail_id: str
    add_label_ids: tuple[str, ...] = ()
    remove_label_ids: tuple[str, ...] = ()

    @classmethod
    def for_read_state(cls, user_id: str, gmail_id: str, is_read: bool) -> LabelChange:
        if is_read:
            return cls(user_id, gmail_id, remove_label_ids=("UNREAD",))
        return cls(user_id, gmail_id, add_label_ids=("UNREAD",))

    @classmethod
    def for_star_state(cls, user_id: str, gmail_id: str, is_starred: bool) -> LabelChange:
        if is_starred:
            return cls(user_id, gmail_id, add_label_ids=("STARRED",))
        return cls(user_id, gmail_id, remove_label_ids=("STARRED",))


class OutboundSync:
    """Bounded queue of label changes consumed by one background worker."""

    def __init__(self, gmail: GmailClient, *, max_pending: int = 100) -> None:
        self._gmail = gmail
        self._queue: asyncio.Queue[LabelChange] = asyncio.Queue(maxsize=max_pending)
        self._worker: asyncio.Task[None] | None = None
        self.processed = 0
        self.failed = 0
        self.dropped = 0

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Start the worker on the running event loop."""

        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="outbound-label-sync")
        logger.info("outbound_sync_started")

    def enqueue(self, change: LabelChange) -> bool:
        """Queue a change without waiting.

        The worker is started on first use when called from a running event
        loop.

        Returns:
            False if the queue is full and the change was dropped.
        """

        if not self.running:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                logger.debug("outbound_enqueue_without_loop", gmail_id=change.gmail_id)
            else:
                self.start()

        try:
            self._queue.put_nowait(change)
        except asyncio.QueueFull:
            self.dropped += 1
            logger.warning(
                "outbound_queue_full",
                gmail_id=change.gmail_id,
                add=list(change.add_label_ids),
                remove=list(change.remove_label_ids),
            )
            return False
        return True

    async def drain(self, timeout: float | None = None) -> None:
        """Wait until every queued change has been attempted."""

        await asyncio.wait_for(self._queue.join(), timeout)

    async def stop(self, timeout: float | None = None) -> None:
        """Drain pending changes, then stop the worker.

        Changes still queued after the drain are discarded and counted in
        ``dropped``.
        """

        if self.running:
            try:
                await self.drain(timeout)
            except asyncio.TimeoutError:
                logger.warning("outbound_drain_timed_out", pending=self.pending)

        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

        while not self._queue.empty():
            change = self._queue.get_nowait()
            self._queue.task_done()
            self.dropped += 1
            logger.warning(
                "outbound_change_discarded",
                gmail_id=change.gmail_id,
                add=list(change.add_label_ids),
                remove=list(change.remove_label_ids),
            )

        logger.info(
            "outbound_sync_stopped",
            processed=self.processed,
            failed=self.failed,
            dropped=self.dropped,
        )

    async def _run(self) -> None:
        while True:
            change = await self._queue.get()
            try:
                await self._propagate(change)
            finally:
                self._queue.task_done()

    async def _propagate(self, change: LabelChange) -> None:
        try:
            await self._gmail.modify_labels(
                change.user_id,
                change.gmail_id,
                add_label_ids=list(change.add_label_ids),
                remove_label_ids=list(change.remove_label_ids),
            )
        except WebmailSyncError as exc:
            self.failed += 1
            logger.warning("outbound_label_sync_failed", gmail_id=change.gmail_id, error=str(exc))
            return
        except Exception as exc:  # noqa: BLE001
            self.failed += 1
            logger.exception("outbound_label_sync_crashed", gmail_id=change.gmail_id, error=str(exc))
            return

        self.processed += 1
