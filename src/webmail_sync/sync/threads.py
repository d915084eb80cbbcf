"""Per-thread aggregation over synced emails."""

from __future__ import annotations

from collections.abc import Iterable

from webmail_sync.models import EmailRecord, ThreadRecord


def summarize_thread(gmail_thread_id: str, members: Iterable[EmailRecord]) -> ThreadRecord:
    """Build a thread aggregate from its complete member set.

    Subject and snippet come from the newest message. The thread is read only
    if every member is read, and has attachments if any member does.

    Raises:
        ValueError: If ``members`` is empty.
    """

    emails = list(members)
    if not emails:
        raise ValueError(f"thread {gmail_thread_id} has no messages")

    latest = max(emails, key=lambda e: (e.internal_date, e.gmail_id))

    participants: set[str] = set()
    for e in emails:
        participants.update(a for a in [e.from_email, *e.to, *(e.cc or [])] if a)

    return ThreadRecord(
        gmail_thread_id=gmail_thread_id,
        subject=latest.subject,
        snippet=latest.snippet,
        last_message_date=latest.internal_date,
        message_count=len(emails),
        participant_emails=sorted(participants),
        is_read=all(e.is_read for e in emails),
        has_attachments=any(e.has_attachments for e in emails),
    )


class ThreadAggregator:
    """Collects the messages of one sync batch, grouped by thread.

    A batch may hold only some of a thread's messages, so ``merge`` combines
    the batch with the thread's stored members before summarizing.
    """

    def __init__(self) -> None:
        self._threads: dict[str, dict[str, EmailRecord]] = {}

    def add(self, email: EmailRecord) -> None:
        self._threads.setdefault(email.gmail_thread_id, {})[email.gmail_id] = email

    @property
    def thread_ids(self) -> list[str]:
        return list(self._threads)

    def __len__(self) -> int:
        return len(self._threads)

    def merge(
        self,
        gmail_thread_id: str,
        stored_members: Iterable[EmailRecord] = (),
        previous: ThreadRecord | None = None,
    ) -> ThreadRecord:
        """Summarize a thread from its stored members overlaid with this batch.

        Args:
            gmail_thread_id: Thread to summarize.
            stored_members: Emails of the thread already in the store.
            previous: Existing thread row, whose identity is kept.

        Returns:
            ThreadRecord recomputed from the full member set.
        """

        members = {e.gmail_id: e for e in stored_members}
        members.update(self._threads.get(gmail_thread_id, {}))

        summary = summarize_thread(gmail_thread_id, members.values())
        if previous is not None:
            summary.id = previous.id
            summary.user_id = previous.user_id
        return summary
