"""End-to-end mailbox scenarios against an in-memory Gmail API.

These tests drive the full stack (token refresh, Gmail client, sync engine,
store, outbound label mirror) through ``Mailbox`` with only the HTTP layer
replaced.
"""

import time

import pytest

from webmail_sync.mailbox import Mailbox
from webmail_sync.models import MailView, SyncStatus


@pytest.mark.integration
class TestGmailIntegration:
    """Integration tests for Gmail sync."""

    @pytest.mark.asyncio
    async def test_full_mailbox_sync_in_pages(
        self, settings, store, user, fake_gmail, make_message, refresh_calls
    ) -> None:
        """Test paging through a mailbox with an access token about to expire."""
        store.upsert_user(user.model_copy(update={"token_expires_at": int(time.time()) + 60}))
        for i in range(5):
            fake_gmail.add(
                make_message(
                    f"m{i}",
                    f"t{i % 2}",
                    internal_date=1000 * (i + 1),
                    labels=("INBOX", "UNREAD") if i % 2 else ("INBOX",),
                )
            )

        async with Mailbox.from_settings(
            settings.model_copy(update={"gmail_page_size": 2}), transport=fake_gmail.transport
        ) as mailbox:
            results = [await mailbox.sync_emails()]
            while results[-1].has_more:
                results.append(await mailbox.sync_emails(continue_paging=True))

            assert [r.synced for r in results] == [2, 2, 1]
            assert mailbox.get_sync_state().sync_status == SyncStatus.COMPLETE
            assert mailbox.list_emails(MailView.INBOX).total_count == 5

            threads = {t.gmail_thread_id: t for t in mailbox.list_threads()}
            assert threads["t0"].message_count == 3
            assert threads["t0"].is_read is True
            assert threads["t1"].message_count == 2
            assert threads["t1"].is_read is False
            assert threads["t0"].last_message_date == 5000

        assert refresh_calls == ["refresh-1"]
        assert {r.headers["Authorization"] for r in fake_gmail.requests} == {"Bearer access-refreshed-1"}

    @pytest.mark.asyncio
    async def test_read_flag_round_trip_with_remote_state(
        self, settings, user, fake_gmail, make_message
    ) -> None:
        """Test that a mirrored read flag matches Gmail on the next sync."""
        fake_gmail.add(make_message("m1", labels=("INBOX", "UNREAD")))

        async with Mailbox.from_settings(settings, transport=fake_gmail.transport) as mailbox:
            await mailbox.sync_emails()
            [email] = mailbox.list_emails().emails
            mailbox.mark_as_read(email.id, True)
            await mailbox.outbound.drain(timeout=5)

            # Apply the mirrored change to the remote copy, then pull again.
            fake_gmail.messages["m1"]["labelIds"] = ["INBOX"]
            await mailbox.sync_emails()

            assert mailbox.get_email(email.id).email.is_read is True
            assert mailbox.store.count_emails(user.id) == 1
