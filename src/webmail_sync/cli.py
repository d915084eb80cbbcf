"""Command-line interface for Webmail Sync.

This module provides the main entry point for the CLI application.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import structlog

from webmail_sync import __version__
from webmail_sync.config import Settings, get_settings
from webmail_sync.exceptions import WebmailSyncError
from webmail_sync.gmail.formatting import format_full_date, format_recipients, format_relative_time
from webmail_sync.mailbox import Mailbox
from webmail_sync.models import EmailRecord, MailView, UserAccount

logger = structlog.get_logger()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="webmail-sync", description="Webmail Sync")
    parser.add_argument(
        "--db",
        type=Path,
        default=None,
        help="Path to the SQLite mail store (default: settings db_path)",
    )
    parser.add_argument(
        "--user",
        default=None,
        help="Signed-in user id (default: settings user_id)",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    login_parser = subparsers.add_parser(
        "login",
        help="Store a Google credential issued by the auth provider",
    )
    login_parser.add_argument("--user-id", required=True, help="Local user id")
    login_parser.add_argument("--email", default=None, help="User's own address")
    login_parser.add_argument("--name", default=None, help="Display name")
    login_parser.add_argument("--access-token", required=True)
    login_parser.add_argument("--refresh-token", default=None)
    login_parser.add_argument(
        "--expires-at",
        type=int,
        required=True,
        help="Access token expiry in epoch seconds",
    )

    sync_parser = subparsers.add_parser("sync", help="Pull one page of mail from Gmail")
    sync_parser.add_argument(
        "--continue",
        dest="continue_paging",
        action="store_true",
        help="Resume from the stored page token instead of fetching the newest page",
    )

    list_parser = subparsers.add_parser("list", help="List emails in a view")
    list_parser.add_argument(
        "--view",
        choices=[v.value for v in MailView],
        default=MailView.INBOX.value,
    )
    list_parser.add_argument("--page", type=int, default=1)
    list_parser.add_argument("--page-size", type=int, default=50)

    show_parser = subparsers.add_parser("show", help="Show one email")
    show_parser.add_argument("email_id", type=int)

    thread_parser = subparsers.add_parser("thread", help="Show every email in a thread")
    thread_parser.add_argument("thread_id")

    search_parser = subparsers.add_parser("search", help="Search subjects, snippets and senders")
    search_parser.add_argument("term")
    search_parser.add_argument("--limit", type=int, default=50, help="Max results")

    send_parser = subparsers.add_parser("send", help="Send an email")
    send_parser.add_argument("--to", required=True)
    send_parser.add_argument("--cc", default=None)
    send_parser.add_argument("--bcc", default=None)
    send_parser.add_argument("--subject", default="")
    send_parser.add_argument("--body", default="")

    read_parser = subparsers.add_parser("mark-read", help="Mark an email read or unread")
    read_parser.add_argument("email_id", type=int)
    read_parser.add_argument("--unread", action="store_true")

    star_parser = subparsers.add_parser("star", help="Star or unstar an email")
    star_parser.add_argument("email_id", type=int)
    star_parser.add_argument("--unstar", action="store_true")

    subparsers.add_parser("status", help="Show the sync cursor")

    return parser


def _resolve_settings(args: argparse.Namespace) -> Settings:
    settings = get_settings()
    overrides: dict[str, object] = {}
    if args.db is not None:
        overrides["db_path"] = args.db
    if args.user is not None:
        overrides["user_id"] = args.user
    return settings.model_copy(update=overrides) if overrides else settings


def _print_email_line(email: EmailRecord) -> None:
    read = "READ" if email.is_read else "UNREAD"
    star = "*" if email.is_starred else " "
    when = format_relative_time(email.internal_date)
    print(f"{email.id}\t{read}\t{star}\t{when}\t{email.from_name}\t{email.subject}")


async def _run(args: argparse.Namespace, settings: Settings) -> int:
    async with Mailbox.from_settings(settings) as mailbox:
        if args.command == "login":
            mailbox.sign_in(
                UserAccount(
                    id=args.user_id,
                    email=args.email,
                    name=args.name,
                    google_access_token=args.access_token,
                    google_refresh_token=args.refresh_token,
                    token_expires_at=args.expires_at,
                )
            )
            print(f"Stored credential for {args.user_id}")
            return 0

        if args.command == "sync":
            result = await mailbox.sync_emails(continue_paging=args.continue_paging)
            if result.error:
                print(f"Sync failed: {result.error}", file=sys.stderr)
                return 1
            more = " (more available, use --continue)" if result.has_more else ""
            print(f"Synced {result.synced} messages{more}")
            return 0

        if args.command == "list":
            page = mailbox.list_emails(args.view, page=args.page, page_size=args.page_size)
            for email in page.emails:
                _print_email_line(email)
            print(f"Page {page.page}/{max(page.total_pages, 1)} ({page.total_count} emails)")
            return 0

        if args.command == "show":
            detail = mailbox.get_email(args.email_id)
            if detail is None:
                print("Email not found", file=sys.stderr)
                return 1
            email = detail.email
            print(f"From: {email.from_name} <{email.from_email}>")
            print(f"To: {format_recipients(email.to)}")
            if email.cc:
                print(f"Cc: {format_recipients(email.cc)}")
            print(f"Date: {format_full_date(email.internal_date)}")
            print(f"Subject: {email.subject}")
            for attachment in detail.attachments:
                print(f"Attachment: {attachment.filename} ({attachment.mime_type}, {attachment.size} bytes)")
            print()
            print(email.body_plain or email.snippet)
            return 0

        if args.command == "thread":
            for email in mailbox.get_thread_emails(args.thread_id):
                _print_email_line(email)
            return 0

        if args.command == "search":
            for email in mailbox.search_emails(args.term, limit=args.limit):
                _print_email_line(email)
            return 0

        if args.command == "send":
            sent = await mailbox.send_email(
                args.to, args.subject, args.body, cc=args.cc, bcc=args.bcc
            )
            if not sent.success:
                print(f"Send failed: {sent.error}", file=sys.stderr)
                return 1
            print(f"Sent message {sent.message_id}")
            return 0

        if args.command == "mark-read":
            mailbox.mark_as_read(args.email_id, not args.unread)
            return 0

        if args.command == "star":
            mailbox.toggle_star(args.email_id, not args.unstar)
            return 0

        if args.command == "status":
            state = mailbox.get_sync_state()
            if state is None:
                print("Never synced")
                return 0
            print(f"Status: {state.sync_status.value}")
            print(f"Last history id: {state.last_history_id}")
            print(f"Last sync: {format_full_date(state.last_sync_time)}")
            print(f"Next page token: {state.next_page_token or '-'}")
            return 0

    logger.error("unknown_command", command=args.command)
    return 2


def main(args: list[str] | None = None) -> int:
    """Main entry point for the Webmail Sync CLI.

    Args:
        args: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    if args is None:
        args = sys.argv[1:]

    settings = get_settings()

    # Configure logging
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
    )

    logger.info("webmail_sync_started", version=__version__, debug=settings.debug)

    parser = _build_parser()
    parsed = parser.parse_args(args)

    try:
        return asyncio.run(_run(parsed, _resolve_settings(parsed)))
    except WebmailSyncError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
