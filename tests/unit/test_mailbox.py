"""Unit tests for the mailbox service."""

from __future__ import annotations

import time
from datetime import timezone

import pytest

from webmail_sync.exceptions import EmailNotFound, NotAuthenticated
from webmail_sync.mailbox import Mailbox
from webmail_sync.models import EmailRecord, MailView, UserAccount


class TestSession:
    @pytest.mark.asyncio
    async def test_queries_are_empty_without_session(self, settings, fake_gmail) -> None:
        async with Mailbox.from_settings(
            settings.model_copy(update={"user_id": None}), transport=fake_gmail.transport
        ) as mailbox:
            assert mailbox.current_user() is None
            assert mailbox.list_emails().emails == []
            assert mailbox.get_email(1) is None
            assert mailbox.get_thread_emails("t1") == []
            assert mailbox.list_threads() == []
            assert mailbox.search_emails("x") == []
            assert mailbox.get_sync_state() is None

    @pytest.mark.asyncio
    async def test_mutations_require_session(self, settings, fake_gmail) -> None:
        async with Mailbox.from_settings(
            settings.model_copy(update={"user_id": None}), transport=fake_gmail.transport
        ) as mailbox:
            with pytest.raises(NotAuthenticated):
                mailbox.mark_as_read(1, True)
            with pytest.raises(NotAuthenticated):
                mailbox.toggle_star(1, True)
            with pytest.raises(NotAuthenticated):
                await mailbox.sync_emails()
            with pytest.raises(NotAuthenticated):
                await mailbox.send_email(to="bob@example.com", subject="Hi", body="x")

    @pytest.mark.asyncio
    async def test_sign_in_starts_session(self, settings, fake_gmail) -> None:
        async with Mailbox.from_settings(
            settings.model_copy(update={"user_id": None}), transport=fake_gmail.transport
        ) as mailbox:
            mailbox.sign_in(
                UserAccount(
                    id="user-9",
                    email="nine@example.com",
                    google_access_token="token",
                    google_refresh_token="refresh",
                    token_expires_at=int(time.time()) + 3600,
                )
            )

            assert mailbox.user_id == "user-9"
            assert mailbox.current_user().email == "nine@example.com"


class TestMailboxOperations:
    @pytest.mark.asyncio
    async def test_mark_as_read_updates_locally_and_mirrors_to_gmail(
        self, settings, user, fake_gmail, make_message
    ) -> None:
        fake_gmail.add(make_message("m1", labels=("INBOX", "UNREAD")))

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            await mailbox.sync_emails()
            [email] = mailbox.list_emails(MailView.INBOX).emails
            assert email.is_read is False

            assert mailbox.mark_as_read(email.id, True) == {"success": True}
            assert mailbox.get_email(email.id).email.is_read is True

            await mailbox.outbound.drain(timeout=5)

        assert fake_gmail.modify_calls == [("m1", {"removeLabelIds": ["UNREAD"]})]

    @pytest.mark.asyncio
    async def test_change_is_mirrored_without_context_manager(
        self, settings, user, fake_gmail, make_message
    ) -> None:
        """Test that close() delivers a change made on a mailbox never entered with async with."""
        fake_gmail.add(make_message("m1", labels=("INBOX", "UNREAD")))
        mailbox = Mailbox.from_settings(settings, transport=fake_gmail.transport)

        await mailbox.sync_emails()
        [email] = mailbox.list_emails().emails
        mailbox.mark_as_read(email.id, True)
        await mailbox.close()

        assert fake_gmail.modify_calls == [("m1", {"removeLabelIds": ["UNREAD"]})]
        assert mailbox.outbound.pending == 0
        assert mailbox.outbound.dropped == 0

    @pytest.mark.asyncio
    async def test_toggle_star_mirrors_to_gmail(self, settings, user, fake_gmail, make_message) -> None:
        fake_gmail.add(make_message("m1"))

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            await mailbox.sync_emails()
            [email] = mailbox.list_emails().emails
            mailbox.toggle_star(email.id, True)
            assert mailbox.get_email(email.id).email.is_starred is True

        assert fake_gmail.modify_calls == [("m1", {"addLabelIds": ["STARRED"]})]

    @pytest.mark.asyncio
    async def test_local_change_survives_gmail_failure(self, settings, user, fake_gmail, make_message) -> None:
        """Test that a failed label mirror leaves the local flag in place."""
        fake_gmail.add(make_message("m1", labels=("INBOX", "UNREAD")))
        fake_gmail.modify_status = 503

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            await mailbox.sync_emails()
            [email] = mailbox.list_emails().emails
            mailbox.mark_as_read(email.id, True)
            await mailbox.outbound.drain(timeout=5)

            assert mailbox.outbound.failed == 1
            assert mailbox.get_email(email.id).email.is_read is True

    @pytest.mark.asyncio
    async def test_other_users_email_is_not_found(self, settings, user, store, fake_gmail) -> None:
        other_id = store.upsert_email("user-2", EmailRecord(gmail_id="x", gmail_thread_id="x"))

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            assert mailbox.get_email(other_id) is None
            with pytest.raises(EmailNotFound):
                mailbox.mark_as_read(other_id, True)
            with pytest.raises(EmailNotFound):
                mailbox.toggle_star(999, True)

        assert fake_gmail.modify_calls == []

    @pytest.mark.asyncio
    async def test_queries_after_sync(self, settings, user, fake_gmail, make_message) -> None:
        fake_gmail.add(make_message("a", "t1", internal_date=1000, subject="Quarterly report"))
        fake_gmail.add(
            make_message(
                "b",
                "t1",
                internal_date=2000,
                subject="Re: Quarterly report",
                attachments=[{"filename": "q3.xlsx", "attachmentId": "att-1"}],
            )
        )
        fake_gmail.add(make_message("c", internal_date=3000, subject="Lunch", labels=("CATEGORY_SOCIAL",)))

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            result = await mailbox.sync_emails()
            assert result.synced == 3

            assert [e.gmail_id for e in mailbox.list_emails(MailView.INBOX).emails] == ["b", "a"]
            assert [e.gmail_id for e in mailbox.list_emails("archive").emails] == ["c"]
            assert [e.gmail_id for e in mailbox.get_thread_emails("t1")] == ["a", "b"]
            assert [e.gmail_id for e in mailbox.search_emails("quarterly")] == ["b", "a"]
            assert [t.gmail_thread_id for t in mailbox.list_threads()] == ["c", "t1"]
            assert mailbox.get_sync_state().last_history_id == "9000"

            b = mailbox.store.get_email_by_gmail_id(user.id, "b")
            detail = mailbox.get_email(b.id)
            assert [a.filename for a in detail.attachments] == ["q3.xlsx"]

    @pytest.mark.asyncio
    async def test_draft_response_modes(self, settings, user, fake_gmail, make_message) -> None:
        fake_gmail.add(make_message("m1", subject="Plans", to="me@example.com, bob@example.com"))

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            await mailbox.sync_emails()
            [email] = mailbox.list_emails().emails

            reply = mailbox.draft_response(email.id, "reply", tz=timezone.utc)
            reply_all = mailbox.draft_response(email.id, "reply_all", tz=timezone.utc)
            forward = mailbox.draft_response(email.id, "forward", tz=timezone.utc)

        assert (reply.to, reply.subject) == ("alice@example.com", "Re: Plans")
        assert (reply_all.to, reply_all.cc) == ("alice@example.com", "bob@example.com")
        assert (forward.to, forward.subject) == ("", "Fwd: Plans")

    @pytest.mark.asyncio
    async def test_send_email_appears_in_sent_view(self, settings, user, fake_gmail) -> None:
        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            result = await mailbox.send_email(to="bob@example.com", subject="Hi", body="Hello")

            assert result.success is True
            assert [e.gmail_id for e in mailbox.list_emails(MailView.SENT).emails] == ["sent-1"]
