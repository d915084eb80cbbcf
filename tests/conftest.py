"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import base64
import json
import time
from email import message_from_bytes
from typing import Any, Callable

import httpx
import pytest

from webmail_sync.auth import RefreshedToken, TokenManager
from webmail_sync.config import Settings
from webmail_sync.models import UserAccount
from webmail_sync.store import MailStore

USER_ID = "user-1"


def b64url(text: str) -> str:
    return base64.urlsafe_b64encode(text.encode("utf-8")).decode("ascii").rstrip("=")


def build_message(
    message_id: str,
    thread_id: str | None = None,
    *,
    internal_date: int = 1000,
    labels: tuple[str, ...] | list[str] | None = ("INBOX",),
    subject: str = "Hello",
    sender: str = '"Alice" <alice@example.com>',
    to: str = "me@example.com",
    cc: str | None = None,
    plain: str | None = "hello",
    html: str | None = None,
    attachments: list[dict[str, Any]] | None = None,
    history_id: str = "100",
    snippet: str | None = None,
) -> dict[str, Any]:
    """Build a Gmail API message in format=full."""

    headers = [
        {"name": "From", "value": sender},
        {"name": "To", "value": to},
        {"name": "Subject", "value": subject},
    ]
    if cc is not None:
        headers.append({"name": "Cc", "value": cc})

    alternatives = []
    if plain is not None:
        alternatives.append(
            {"partId": "0.0", "mimeType": "text/plain", "filename": "", "body": {"size": len(plain), "data": b64url(plain)}}
        )
    if html is not None:
        alternatives.append(
            {"partId": "0.1", "mimeType": "text/html", "filename": "", "body": {"size": len(html), "data": b64url(html)}}
        )

    parts: list[dict[str, Any]] = [
        {"partId": "0", "mimeType": "multipart/alternative", "filename": "", "body": {"size": 0}, "parts": alternatives}
    ]
    for i, attachment in enumerate(attachments or [], start=1):
        parts.append(
            {
                "partId": str(i),
                "mimeType": attachment.get("mimeType", "application/pdf"),
                "filename": attachment["filename"],
                "headers": attachment.get("headers", []),
                "body": {"attachmentId": attachment["attachmentId"], "size": attachment.get("size", 1024)},
            }
        )

    message: dict[str, Any] = {
        "id": message_id,
        "threadId": thread_id or message_id,
        "snippet": snippet if snippet is not None else (plain or "")[:100],
        "historyId": history_id,
        "internalDate": str(internal_date),
        "sizeEstimate": 2048,
        "payload": {
            "partId": "",
            "mimeType": "multipart/mixed",
            "filename": "",
            "headers": headers,
            "body": {"size": 0},
            "parts": parts,
        },
    }
    if labels is not None:
        message["labelIds"] = list(labels)
    return message


class FakeGmail:
    """In-memory stand-in for the Gmail REST API behind httpx.MockTransport."""

    def __init__(self) -> None:
        self.messages: dict[str, dict[str, Any]] = {}
        self.order: list[str] = []
        self.requests: list[httpx.Request] = []
        self.rejected_tokens: set[str] = set()
        self.reject_all_tokens = False
        self.list_statuses: list[int] = []
        self.send_statuses: list[int] = []
        self.modify_status = 200
        self.failing_ids: set[str] = set()
        self.modify_calls: list[tuple[str, dict[str, Any]]] = []
        self.sent_raw: list[str] = []
        self.history_id: str | None = "9000"

    def add(self, message: dict[str, Any]) -> None:
        """Add a message; later additions are listed first (newest first)."""
        self.messages[message["id"]] = message
        self.order.insert(0, message["id"])

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)

    def list_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method == "GET" and r.url.path.endswith("/messages")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        token = request.headers.get("Authorization", "").removeprefix("Bearer ")
        if self.reject_all_tokens or token in self.rejected_tokens:
            return httpx.Response(401, json={"error": {"code": 401}})

        tail = request.url.path.split("/users/me/", 1)[1]

        if request.method == "GET" and tail == "messages":
            if self.list_statuses:
                status = self.list_statuses.pop(0)
                if status != 200:
                    return httpx.Response(status)
            return httpx.Response(200, json=self._list_page(request))

        if request.method == "GET" and tail.startswith("messages/"):
            message_id = tail.split("/")[1]
            if message_id in self.failing_ids or message_id not in self.messages:
                return httpx.Response(404, json={"error": {"code": 404}})
            return httpx.Response(200, json=self.messages[message_id])

        if request.method == "POST" and tail == "messages/send":
            if self.send_statuses:
                status = self.send_statuses.pop(0)
                if status != 200:
                    return httpx.Response(status)
            raw = json.loads(request.content)["raw"]
            self.sent_raw.append(raw)
            message_id = f"sent-{len(self.sent_raw)}"
            self.messages[message_id] = self._sent_message(message_id, raw)
            return httpx.Response(200, json={"id": message_id, "threadId": message_id})

        if request.method == "POST" and tail.endswith("/modify"):
            if self.modify_status != 200:
                return httpx.Response(self.modify_status)
            message_id = tail.split("/")[1]
            self.modify_calls.append((message_id, json.loads(request.content)))
            return httpx.Response(200, json={"id": message_id})

        return httpx.Response(404)

    def _list_page(self, request: httpx.Request) -> dict[str, Any]:
        max_results = int(request.url.params["maxResults"])
        page_token = request.url.params.get("pageToken")
        start = int(page_token) if page_token else 0
        ids = self.order[start : start + max_results]

        body: dict[str, Any] = {
            "messages": [{"id": i, "threadId": self.messages[i]["threadId"]} for i in ids],
            "resultSizeEstimate": len(self.order),
        }
        if self.history_id is not None:
            body["historyId"] = self.history_id
        if start + max_results < len(self.order):
            body["nextPageToken"] = str(start + max_results)
        return body

    def _sent_message(self, message_id: str, raw: str) -> dict[str, Any]:
        parsed = message_from_bytes(base64.urlsafe_b64decode(raw + "=" * (-len(raw) % 4)))
        return build_message(
            message_id,
            internal_date=int(time.time() * 1000),
            labels=["SENT"],
            subject=parsed["Subject"] or "",
            sender=parsed["From"] or "me@example.com",
            to=parsed["To"] or "",
        )


@pytest.fixture
def settings(tmp_path) -> Settings:
    """Provide settings pointing at a temporary store."""
    return Settings(
        google_client_id="client-id",
        google_client_secret="client-secret",
        db_path=tmp_path / "mail.sqlite3",
        user_id=USER_ID,
        gmail_page_size=50,
        log_level="DEBUG",
    )


@pytest.fixture
def store(settings: Settings) -> MailStore:
    store = MailStore(settings.db_path)
    store.initialize()
    return store


@pytest.fixture
def user(store: MailStore) -> UserAccount:
    """A signed-in user whose access token is valid for an hour."""
    account = UserAccount(
        id=USER_ID,
        email="me@example.com",
        name="Me",
        google_access_token="access-1",
        google_refresh_token="refresh-1",
        token_expires_at=int(time.time()) + 3600,
    )
    store.upsert_user(account)
    return account


@pytest.fixture
def refresh_calls(monkeypatch: pytest.MonkeyPatch) -> list[str]:
    """Replace the token endpoint exchange with a local fake.

    Each refresh returns ``access-refreshed-N`` valid for an hour.
    """
    calls: list[str] = []

    def fake_exchange(self: TokenManager, refresh_token: str) -> RefreshedToken:
        calls.append(refresh_token)
        return RefreshedToken(
            access_token=f"access-refreshed-{len(calls)}",
            expires_at=int(time.time()) + 3600,
        )

    monkeypatch.setattr(TokenManager, "_exchange_refresh_token", fake_exchange)
    return calls


@pytest.fixture
def fake_gmail() -> FakeGmail:
    return FakeGmail()


@pytest.fixture
def make_message() -> Callable[..., dict[str, Any]]:
    """Provide the Gmail message builder."""
    return build_message


@pytest.fixture
def encode_b64url() -> Callable[[str], str]:
    return b64url
