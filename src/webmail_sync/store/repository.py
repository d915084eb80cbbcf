"""SQLite-backed store for synced mail.

Rows are keyed by Gmail's ids scoped to the owning user, so writing the same
message or thread twice updates the existing row instead of adding a new one.
"""

from __future__ import annotations

import json
import math
import sqlite3
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import structlog

from webmail_sync.exceptions import ConfigurationError
from webmail_sync.models import (
    AttachmentRecord,
    EmailPage,
    EmailRecord,
    MailView,
    SyncState,
    SyncStatus,
    ThreadRecord,
    UserAccount,
)

logger = structlog.get_logger()


_SCHEMA_VERSION = 1

_EMAIL_COLUMNS = (
    "gmail_id",
    "gmail_thread_id",
    "subject",
    "snippet",
    "internal_date",
    "history_id",
    "size_estimate",
    "from_name",
    "from_email",
    "to_json",
    "cc_json",
    "bcc_json",
    "reply_to",
    "body_html",
    "body_plain",
    "is_read",
    "is_starred",
    "is_important",
    "is_spam",
    "is_trash",
    "is_draft",
    "is_inbox",
    "is_sent",
    "has_attachments",
    "last_synced_at",
    "sync_status",
)

_VIEW_FILTERS: dict[MailView, str] = {
    MailView.INBOX: "is_inbox = 1 AND is_spam = 0 AND is_trash = 0",
    MailView.SENT: "is_sent = 1 AND is_trash = 0",
    MailView.DRAFTS: "is_draft = 1 AND is_trash = 0",
    MailView.ARCHIVE: (
        "is_inbox = 0 AND is_spam = 0 AND is_trash = 0 AND is_draft = 0 AND is_sent = 0"
    ),
    MailView.TRASH: "is_trash = 1",
    MailView.ALL: "is_spam = 0 AND is_trash = 0",
}


def _now_ms() -> int:
    return int(time.time() * 1000)


class MailStore:
    """Repository for users, emails, threads, attachments and sync state."""

    def __init__(self, db_path: Path) -> None:
        """Create a store.

        Args:
            db_path: Path to the SQLite database file.
        """

        self._db_path = db_path

    def initialize(self) -> None:
        """Create or upgrade the store schema."""

        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL;")

            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS _schema_meta (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                );
                """
            )

            current_version = self._get_schema_version(conn)
            if current_version is None:
                self._create_schema_v1(conn)
                self._set_schema_version(conn, _SCHEMA_VERSION)
                conn.commit()
                logger.info("mail_store_schema_created", version=_SCHEMA_VERSION)
                return

            if current_version != _SCHEMA_VERSION:
                raise ConfigurationError(
                    f"Unsupported schema version {current_version} in {self._db_path}; "
                    f"expected {_SCHEMA_VERSION}"
                )

    # Users

    def upsert_user(self, user: UserAccount) -> None:
        """Insert or replace a user and its OAuth credential."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO users (
                    id, email, name, google_access_token, google_refresh_token, token_expires_at
                )
                VALUES (
                    :id, :email, :name, :google_access_token, :google_refresh_token,
                    :token_expires_at
                )
                ON CONFLICT(id) DO UPDATE SET
                    email=excluded.email,
                    name=excluded.name,
                    google_access_token=excluded.google_access_token,
                    google_refresh_token=excluded.google_refresh_token,
                    token_expires_at=excluded.token_expires_at
                """,
                user.model_dump(),
            )
            conn.commit()

    def get_user(self, user_id: str) -> UserAccount | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
        if row is None:
            return None
        return UserAccount(**dict(row))

    def update_user_tokens(
        self,
        user_id: str,
        *,
        access_token: str,
        expires_at: int,
        refresh_token: str | None = None,
    ) -> None:
        """Store a refreshed access token; the refresh token is kept unless replaced."""

        with self._connect() as conn:
            conn.execute(
                """
                UPDATE users SET
                    google_access_token = ?,
                    token_expires_at = ?,
                    google_refresh_token = COALESCE(?, google_refresh_token)
                WHERE id = ?
                """,
                (access_token, expires_at, refresh_token, user_id),
            )
            conn.commit()

    # Emails

    def upsert_email(self, user_id: str, email: EmailRecord) -> int:
        """Insert an email or update the row with the same Gmail id.

        Returns:
            The local row id, unchanged across updates.
        """

        params = self._email_params(email)
        params["user_id"] = user_id
        columns = ", ".join(("user_id",) + _EMAIL_COLUMNS)
        values = ", ".join(f":{c}" for c in ("user_id",) + _EMAIL_COLUMNS)
        updates = ",\n".join(f"{c}=excluded.{c}" for c in _EMAIL_COLUMNS if c != "gmail_id")

        with self._connect() as conn:
            conn.execute(
                f"""
                INSERT INTO emails ({columns})
                VALUES ({values})
                ON CONFLICT(user_id, gmail_id) DO UPDATE SET
                {updates}
                """,
                params,
            )
            (email_id,) = conn.execute(
                "SELECT id FROM emails WHERE user_id = ? AND gmail_id = ?",
                (user_id, email.gmail_id),
            ).fetchone()
            conn.commit()

        return int(email_id)

    def get_email(self, email_id: int) -> EmailRecord | None:
        with self._connect() as conn:
            row = conn.execute("SELECT * FROM emails WHERE id = ?", (email_id,)).fetchone()
        return self._row_to_email(row) if row is not None else None

    def get_email_by_gmail_id(self, user_id: str, gmail_id: str) -> EmailRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM emails WHERE user_id = ? AND gmail_id = ?",
                (user_id, gmail_id),
            ).fetchone()
        return self._row_to_email(row) if row is not None else None

    def list_emails_by_thread(self, user_id: str, gmail_thread_id: str) -> list[EmailRecord]:
        """Return a user's emails in one thread, oldest first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM emails
                WHERE user_id = ? AND gmail_thread_id = ?
                ORDER BY internal_date ASC, id ASC
                """,
                (user_id, gmail_thread_id),
            ).fetchall()
        return [self._row_to_email(row) for row in rows]

    def list_emails(
        self,
        user_id: str,
        view: MailView = MailView.INBOX,
        page: int = 1,
        page_size: int = 50,
    ) -> EmailPage:
        """Return one page of a view, newest first."""

        page = max(page, 1)
        page_size = max(page_size, 1)
        where = _VIEW_FILTERS[MailView(view)]

        with self._connect() as conn:
            (total,) = conn.execute(
                f"SELECT COUNT(*) FROM emails WHERE user_id = ? AND {where}",
                (user_id,),
            ).fetchone()
            rows = conn.execute(
                f"""
                SELECT * FROM emails
                WHERE user_id = ? AND {where}
                ORDER BY internal_date DESC, id DESC
                LIMIT ? OFFSET ?
                """,
                (user_id, page_size, (page - 1) * page_size),
            ).fetchall()

        total_pages = math.ceil(total / page_size)
        return EmailPage(
            emails=[self._row_to_email(row) for row in rows],
            total_count=int(total),
            page=page,
            page_size=page_size,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )

    def search_emails(self, user_id: str, term: str, limit: int = 50) -> list[EmailRecord]:
        """Case-insensitive substring search over subject, snippet and sender."""

        escaped = term.lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
        pattern = f"%{escaped}%"

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM emails
                WHERE user_id = :user_id AND is_spam = 0 AND is_trash = 0
                  AND (
                    lower(subject) LIKE :p ESCAPE '\\'
                    OR lower(snippet) LIKE :p ESCAPE '\\'
                    OR lower(from_name) LIKE :p ESCAPE '\\'
                    OR lower(from_email) LIKE :p ESCAPE '\\'
                  )
                ORDER BY internal_date DESC, id DESC
                LIMIT :limit
                """,
                {"user_id": user_id, "p": pattern, "limit": limit},
            ).fetchall()
        return [self._row_to_email(row) for row in rows]

    def set_read(self, email_id: int, is_read: bool) -> None:
        self._set_flag(email_id, "is_read", is_read)

    def set_starred(self, email_id: int, is_starred: bool) -> None:
        self._set_flag(email_id, "is_starred", is_starred)

    def count_emails(self, user_id: str) -> int:
        with self._connect() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM emails WHERE user_id = ?", (user_id,)
            ).fetchone()
        return int(count)

    # Attachments

    def replace_attachments(self, email_id: int, attachments: list[AttachmentRecord]) -> None:
        """Make ``attachments`` the complete attachment set of one email."""

        with self._connect() as conn:
            conn.execute("DELETE FROM attachments WHERE email_id = ?", (email_id,))
            conn.executemany(
                """
                INSERT INTO attachments (
                    email_id, gmail_attachment_id, filename, mime_type, size, content_id
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (email_id, a.gmail_attachment_id, a.filename, a.mime_type, a.size, a.content_id)
                    for a in attachments
                ],
            )
            conn.commit()

    def list_attachments(self, email_id: int) -> list[AttachmentRecord]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT * FROM attachments WHERE email_id = ? ORDER BY id ASC",
                (email_id,),
            ).fetchall()
        return [AttachmentRecord(**dict(row)) for row in rows]

    # Threads

    def upsert_thread(self, user_id: str, thread: ThreadRecord) -> int:
        """Insert a thread or update the row with the same Gmail thread id."""

        params = thread.model_dump(exclude={"id", "participant_emails"})
        params["user_id"] = user_id
        params["participant_emails_json"] = json.dumps(thread.participant_emails)

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO threads (
                    user_id, gmail_thread_id, subject, snippet, last_message_date,
                    message_count, participant_emails_json, is_read, has_attachments
                )
                VALUES (
                    :user_id, :gmail_thread_id, :subject, :snippet, :last_message_date,
                    :message_count, :participant_emails_json, :is_read, :has_attachments
                )
                ON CONFLICT(user_id, gmail_thread_id) DO UPDATE SET
                    subject=excluded.subject,
                    snippet=excluded.snippet,
                    last_message_date=excluded.last_message_date,
                    message_count=excluded.message_count,
                    participant_emails_json=excluded.participant_emails_json,
                    is_read=excluded.is_read,
                    has_attachments=excluded.has_attachments
                """,
                params,
            )
            (thread_id,) = conn.execute(
                "SELECT id FROM threads WHERE user_id = ? AND gmail_thread_id = ?",
                (user_id, thread.gmail_thread_id),
            ).fetchone()
            conn.commit()

        return int(thread_id)

    def get_thread(self, user_id: str, gmail_thread_id: str) -> ThreadRecord | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM threads WHERE user_id = ? AND gmail_thread_id = ?",
                (user_id, gmail_thread_id),
            ).fetchone()
        return self._row_to_thread(row) if row is not None else None

    def list_threads(self, user_id: str, limit: int = 50) -> list[ThreadRecord]:
        """Return a user's threads, most recent activity first."""

        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT * FROM threads
                WHERE user_id = ?
                ORDER BY last_message_date DESC, id DESC
                LIMIT ?
                """,
                (user_id, limit),
            ).fetchall()
        return [self._row_to_thread(row) for row in rows]

    def count_threads(self, user_id: str) -> int:
        with self._connect() as conn:
            (count,) = conn.execute(
                "SELECT COUNT(*) FROM threads WHERE user_id = ?", (user_id,)
            ).fetchone()
        return int(count)

    # Sync state

    def get_sync_state(self, user_id: str) -> SyncState | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM sync_state WHERE user_id = ?", (user_id,)
            ).fetchone()
        if row is None:
            return None
        return SyncState(**dict(row))

    def upsert_sync_state(self, state: SyncState) -> None:
        """Write the user's single sync cursor row."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO sync_state (
                    user_id, last_history_id, last_sync_time, next_page_token, sync_status
                )
                VALUES (:user_id, :last_history_id, :last_sync_time, :next_page_token, :sync_status)
                ON CONFLICT(user_id) DO UPDATE SET
                    last_history_id=excluded.last_history_id,
                    last_sync_time=excluded.last_sync_time,
                    next_page_token=excluded.next_page_token,
                    sync_status=excluded.sync_status
                """,
                {
                    "user_id": state.user_id,
                    "last_history_id": state.last_history_id,
                    "last_sync_time": state.last_sync_time or _now_ms(),
                    "next_page_token": state.next_page_token,
                    "sync_status": SyncStatus(state.sync_status).value,
                },
            )
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        try:
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA foreign_keys=ON;")
            yield conn
        finally:
            conn.close()

    def _set_flag(self, email_id: int, column: str, value: bool) -> None:
        with self._connect() as conn:
            conn.execute(
                f"UPDATE emails SET {column} = ? WHERE id = ?",
                (1 if value else 0, email_id),
            )
            conn.commit()

    def _get_schema_version(self, conn: sqlite3.Connection) -> int | None:
        row = conn.execute(
            "SELECT value FROM _schema_meta WHERE key = 'schema_version'"
        ).fetchone()
        if row is None:
            return None
        return int(row[0])

    def _set_schema_version(self, conn: sqlite3.Connection, version: int) -> None:
        conn.execute(
            "INSERT OR REPLACE INTO _schema_meta(key, value) VALUES('schema_version', ?) ",
            (str(version),),
        )

    def _create_schema_v1(self, conn: sqlite3.Connection) -> None:
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS users (
                id TEXT PRIMARY KEY,
                email TEXT,
                name TEXT,
                google_access_token TEXT,
                google_refresh_token TEXT,
                token_expires_at INTEGER
            );

            CREATE TABLE IF NOT EXISTS emails (
                id INTEGER PRIMARY KEY,
                user_id TEXT NOT NULL,
                gmail_id TEXT NOT NULL,
                gmail_thread_id TEXT NOT NULL,
                subject TEXT NOT NULL,
                snippet TEXT NOT NULL,
                internal_date INTEGER NOT NULL,
                history_id TEXT NOT NULL,
                size_estimate INTEGER NOT NULL,
                from_name TEXT NOT NULL,
                from_email TEXT NOT NULL,
                to_json TEXT NOT NULL,
                cc_json TEXT,
                bcc_json TEXT,
                reply_to TEXT,
                body_html TEXT,
                body_plain TEXT,
                is_read INTEGER NOT NULL,
                is_starred INTEGER NOT NULL,
                is_important INTEGER NOT NULL,
                is_spam INTEGER NOT NULL,
                is_trash INTEGER NOT NULL,
                is_draft INTEGER NOT NULL,
                is_inbox INTEGER NOT NULL,
                is_sent INTEGER NOT NULL,
                has_attachments INTEGER NOT NULL,
                last_synced_at INTEGER NOT NULL,
                sync_status TEXT NOT NULL,
                UNIQUE(user_id, gmail_id)
            );

            CREATE INDEX IF NOT EXISTS idx_emails_thread
                ON emails(user_id, gmail_thread_id);

            CREATE INDEX IF NOT EXISTS idx_emails_user_date
                ON emails(user_id, internal_date);

            CREATE TABLE IF NOT EXISTS attachments (
                id INTEGER PRIMARY KEY,
                email_id INTEGER NOT NULL REFERENCES emails(id) ON DELETE CASCADE,
                gmail_attachment_id TEXT NOT NULL,
                filename TEXT NOT NULL,
                mime_type TEXT NOT NULL,
                size INTEGER NOT NULL,
                content_id TEXT
            );

            CREATE INDEX IF NOT EXISTS idx_attachments_email
                ON attachments(email_id);

            CREATE TABLE IF NOT EXISTS threads (
                id INTEGER PRIMARY KEY,
                user_id TEXT NOT NULL,
                gmail_thread_id TEXT NOT NULL,
                subject TEXT NOT NULL,
                snippet TEXT NOT NULL,
                last_message_date INTEGER NOT NULL,
                message_count INTEGER NOT NULL,
                participant_emails_json TEXT NOT NULL,
                is_read INTEGER NOT NULL,
                has_attachments INTEGER NOT NULL,
                UNIQUE(user_id, gmail_thread_id)
            );

            CREATE INDEX IF NOT EXISTS idx_threads_user_date
                ON threads(user_id, last_message_date);

            CREATE TABLE IF NOT EXISTS sync_state (
                user_id TEXT PRIMARY KEY,
                last_history_id TEXT NOT NULL,
                last_sync_time INTEGER NOT NULL,
                next_page_token TEXT,
                sync_status TEXT NOT NULL
            );
            """
        )

    def _email_params(self, email: EmailRecord) -> dict[str, Any]:
        return {
            "gmail_id": email.gmail_id,
            "gmail_thread_id": email.gmail_thread_id,
            "subject": email.subject,
            "snippet": email.snippet,
            "internal_date": email.internal_date,
            "history_id": email.history_id,
            "size_estimate": email.size_estimate,
            "from_name": email.from_name,
            "from_email": email.from_email,
            "to_json": json.dumps(email.to),
            "cc_json": json.dumps(email.cc) if email.cc is not None else None,
            "bcc_json": json.dumps(email.bcc) if email.bcc is not None else None,
            "reply_to": email.reply_to,
            "body_html": email.body_html,
            "body_plain": email.body_plain,
            "is_read": 1 if email.is_read else 0,
            "is_starred": 1 if email.is_starred else 0,
            "is_important": 1 if email.is_important else 0,
            "is_spam": 1 if email.is_spam else 0,
            "is_trash": 1 if email.is_trash else 0,
            "is_draft": 1 if email.is_draft else 0,
            "is_inbox": 1 if email.is_inbox else 0,
            "is_sent": 1 if email.is_sent else 0,
            "has_attachments": 1 if email.has_attachments else 0,
            "last_synced_at": email.last_synced_at or _now_ms(),
            "sync_status": SyncStatus(email.sync_status).value,
        }

    def _row_to_email(self, row: sqlite3.Row) -> EmailRecord:
        return EmailRecord(
            id=row["id"],
            user_id=row["user_id"],
            gmail_id=row["gmail_id"],
            gmail_thread_id=row["gmail_thread_id"],
            subject=row["subject"],
            snippet=row["snippet"],
            internal_date=row["internal_date"],
            history_id=row["history_id"],
            size_estimate=row["size_estimate"],
            from_name=row["from_name"],
            from_email=row["from_email"],
            to=json.loads(row["to_json"]),
            cc=json.loads(row["cc_json"]) if row["cc_json"] is not None else None,
            bcc=json.loads(row["bcc_json"]) if row["bcc_json"] is not None else None,
            reply_to=row["reply_to"],
            body_html=row["body_html"],
            body_plain=row["body_plain"],
            is_read=bool(row["is_read"]),
            is_starred=bool(row["is_starred"]),
            is_important=bool(row["is_important"]),
            is_spam=bool(row["is_spam"]),
            is_trash=bool(row["is_trash"]),
            is_draft=bool(row["is_draft"]),
            is_inbox=bool(row["is_inbox"]),
            is_sent=bool(row["is_sent"]),
            has_attachments=bool(row["has_attachments"]),
            last_synced_at=row["last_synced_at"],
            sync_status=SyncStatus(row["sync_status"]),
        )

    def _row_to_thread(self, row: sqlite3.Row) -> ThreadRecord:
        return ThreadRecord(
            id=row["id"],
            user_id=row["user_id"],
            gmail_thread_id=row["gmail_thread_id"],
            subject=row["subject"],
            snippet=row["snippet"],
            last_message_date=row["last_message_date"],
            message_count=row["message_count"],
            participant_emails=json.loads(row["participant_emails_json"]),
            is_read=bool(row["is_read"]),
            has_attachments=bool(row["has_attachments"]),
        )
