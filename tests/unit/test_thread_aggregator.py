"""Unit tests for thread aggregation."""

import pytest

from webmail_sync.models import EmailRecord, ThreadRecord
from webmail_sync.sync import ThreadAggregator, summarize_thread


def _email(gmail_id: str, thread_id: str = "t1", **fields) -> EmailRecord:
    defaults = {
        "subject": f"subject {gmail_id}",
        "snippet": f"snippet {gmail_id}",
        "from_email": "alice@example.com",
        "to": ["me@example.com"],
    }
    defaults.update(fields)
    return EmailRecord(gmail_id=gmail_id, gmail_thread_id=thread_id, **defaults)


class TestSummarizeThread:
    def test_latest_message_supplies_subject_and_snippet(self) -> None:
        thread = summarize_thread(
            "t1",
            [
                _email("b", internal_date=2000),
                _email("a", internal_date=1000),
            ],
        )

        assert thread.subject == "subject b"
        assert thread.snippet == "snippet b"
        assert thread.last_message_date == 2000
        assert thread.message_count == 2

    def test_unread_member_makes_thread_unread(self) -> None:
        """Test that a thread is read only when all members are read."""
        thread = summarize_thread(
            "t1",
            [
                _email("a", internal_date=1000, is_read=False),
                _email("b", internal_date=2000, is_read=True, has_attachments=True),
            ],
        )

        assert thread.is_read is False
        assert thread.has_attachments is True

    def test_all_read_without_attachments(self) -> None:
        thread = summarize_thread("t1", [_email("a"), _email("b")])

        assert thread.is_read is True
        assert thread.has_attachments is False

    def test_participants_are_unique_and_sorted(self) -> None:
        thread = summarize_thread(
            "t1",
            [
                _email("a", from_email="zed@example.com", to=["me@example.com"], cc=["amy@example.com"]),
                _email("b", from_email="me@example.com", to=["zed@example.com"]),
            ],
        )

        assert thread.participant_emails == ["amy@example.com", "me@example.com", "zed@example.com"]

    def test_equal_dates_break_ties_by_message_id(self) -> None:
        thread = summarize_thread("t1", [_email("b", internal_date=5), _email("a", internal_date=5)])

        assert thread.subject == "subject b"

    def test_empty_thread_is_rejected(self) -> None:
        with pytest.raises(ValueError):
            summarize_thread("t1", [])


class TestThreadAggregator:
    def test_groups_batch_by_thread(self) -> None:
        aggregator = ThreadAggregator()
        aggregator.add(_email("a", "t1"))
        aggregator.add(_email("b", "t2"))
        aggregator.add(_email("c", "t1"))

        assert len(aggregator) == 2
        assert aggregator.thread_ids == ["t1", "t2"]

    def test_merge_combines_batch_with_stored_members(self) -> None:
        """Test that a partial batch is summarized over the full member set."""
        aggregator = ThreadAggregator()
        aggregator.add(_email("b", internal_date=2000, is_read=True))

        stored = [_email("a", internal_date=1000, is_read=False)]
        thread = aggregator.merge("t1", stored)

        assert thread.message_count == 2
        assert thread.last_message_date == 2000
        assert thread.is_read is False

    def test_batch_version_overrides_stored_version(self) -> None:
        aggregator = ThreadAggregator()
        aggregator.add(_email("a", internal_date=1000, is_read=True))

        thread = aggregator.merge("t1", [_email("a", internal_date=1000, is_read=False)])

        assert thread.message_count == 1
        assert thread.is_read is True

    def test_merge_keeps_previous_row_identity(self) -> None:
        aggregator = ThreadAggregator()
        aggregator.add(_email("a"))
        previous = ThreadRecord(id=7, user_id="user-1", gmail_thread_id="t1", message_count=5)

        thread = aggregator.merge("t1", previous=previous)

        assert thread.id == 7
        assert thread.user_id == "user-1"
        assert thread.message_count == 1
