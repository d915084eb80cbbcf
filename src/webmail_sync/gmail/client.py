"""Gmail API client implementation.

This module provides an async client for the Gmail REST endpoints the sync
engine, the outbound label mirror and compose/send rely on.

Notes:
    Every call carries a bearer token from the TokenManager. A 401 on a call
    made with a token that looked valid triggers exactly one forced refresh
    and one retry of that call; a second 401 raises AuthExpired.
"""

from __future__ import annotations

from typing import Any, TypeVar

import httpx
import structlog
from pydantic import BaseModel

from webmail_sync.auth import TokenManager
from webmail_sync.config import Settings
from webmail_sync.exceptions import AuthExpired, GmailAPIError, GmailTimeoutError
from webmail_sync.models import GmailMessage, MessageList, MessageRef

logger = structlog.get_logger()

_ModelT = TypeVar("_ModelT", bound=BaseModel)


def _parse(response: httpx.Response, model: type[_ModelT]) -> _ModelT:
    """Validate a JSON response body into ``model``.

    Raises:
        GmailAPIError: If the body is not JSON or does not match ``model``.
    """

    # pydantic's ValidationError and json's JSONDecodeError are both ValueErrors.
    try:
        return model.model_validate(response.json())
    except ValueError as exc:
        logger.warning(
            "gmail_response_invalid",
            path=response.request.url.path,
            status_code=response.status_code,
            error=str(exc),
        )
        raise GmailAPIError(
            f"Invalid response from Gmail: {model.__name__}",
            status_code=response.status_code,
        ) from exc


class GmailClient:
    """Gmail API client for message listing, retrieval, sending and labelling."""

    def __init__(
        self,
        token_manager: TokenManager,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize Gmail client.

        Args:
            token_manager: Source of access tokens.
            settings: Application settings. If None, uses default settings.
            transport: Optional httpx transport, e.g. a MockTransport in tests.
        """
        from webmail_sync.config import get_settings

        self.settings = settings or get_settings()
        self._tokens = token_manager
        self._http = httpx.AsyncClient(
            base_url=self.settings.gmail_api_base_url.rstrip("/") + "/",
            timeout=self.settings.http_timeout_seconds,
            transport=transport,
        )
        logger.info("gmail_client_initialized", base_url=self.settings.gmail_api_base_url)

    async def __aenter__(self) -> GmailClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._http.aclose()

    async def list_messages(
        self,
        user_id: str,
        *,
        max_results: int,
        page_token: str | None = None,
    ) -> MessageList:
        """List one page of message ids, newest first.

        Raises:
            AuthExpired: If no usable token remains.
            GmailAPIError: If Gmail answers with any other error.
        """

        params: dict[str, Any] = {"maxResults": max_results}
        if page_token:
            params["pageToken"] = page_token

        logger.info("listing_messages", user_id=user_id, max_results=max_results, page_token=page_token)
        response = await self._request(user_id, "GET", "messages", params=params)
        return _parse(response, MessageList)

    async def get_message(
        self,
        user_id: str,
        message_id: str,
        *,
        format: str = "full",
        metadata_headers: list[str] | None = None,
    ) -> GmailMessage:
        """Get a specific message by ID.

        Args:
            user_id: Local id of the mailbox owner.
            message_id: The Gmail message ID.
            format: ``full`` or ``metadata``.
            metadata_headers: Headers to include with ``format=metadata``.

        Returns:
            Parsed message.
        """

        params: dict[str, Any] = {"format": format}
        if metadata_headers:
            params["metadataHeaders"] = metadata_headers

        logger.debug("getting_message", message_id=message_id, format=format)
        response = await self._request(user_id, "GET", f"messages/{message_id}", params=params)
        return _parse(response, GmailMessage)

    async def send_message(self, user_id: str, raw: str) -> MessageRef:
        """Send a base64url encoded RFC 2822 message."""

        response = await self._request(user_id, "POST", "messages/send", json={"raw": raw})
        return _parse(response, MessageRef)

    async def modify_labels(
        self,
        user_id: str,
        message_id: str,
        *,
        add_label_ids: list[str] | None = None,
        remove_label_ids: list[str] | None = None,
    ) -> None:
        """Add and/or remove labels on one message."""

        body: dict[str, list[str]] = {}
        if add_label_ids:
            body["addLabelIds"] = add_label_ids
        if remove_label_ids:
            body["removeLabelIds"] = remove_label_ids

        await self._request(user_id, "POST", f"messages/{message_id}/modify", json=body)
        logger.info(
            "gmail_labels_modified",
            message_id=message_id,
            add=add_label_ids,
            remove=remove_label_ids,
        )

    async def download_attachment(self, user_id: str, message_id: str, attachment_id: str) -> bytes:
        """Fetch attachment bytes. Only attachment metadata is synced for now."""

        raise NotImplementedError("Attachment download not yet implemented")

    async def _request(
        self,
        user_id: str,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> httpx.Response:
        token = await self._tokens.get_valid_access_token(user_id)
        response = await self._send(method, path, token, params=params, json=json)

        if response.status_code == 401:
            logger.warning("gmail_unauthorized_refreshing", method=method, path=path)
            token = await self._tokens.force_refresh(user_id, stale_token=token)
            response = await self._send(method, path, token, params=params, json=json)
            if response.status_code == 401:
                logger.warning("gmail_unauthorized_after_refresh", method=method, path=path)
                raise AuthExpired()

        if response.is_error:
            reason = response.reason_phrase or str(response.status_code)
            logger.warning(
                "gmail_request_failed",
                method=method,
                path=path,
                status_code=response.status_code,
                reason=reason,
            )
            raise GmailAPIError(reason, status_code=response.status_code)

        return response

    async def _send(
        self,
        method: str,
        path: str,
        token: str,
        *,
        params: dict[str, Any] | None,
        json: dict[str, Any] | None,
    ) -> httpx.Response:
        try:
            return await self._http.request(
                method,
                path,
                params=params,
                json=json,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.TimeoutException as exc:
            raise GmailTimeoutError(f"Gmail request timed out: {method} {path}") from exc
        except httpx.HTTPError as exc:
            raise GmailAPIError(f"Gmail request failed: {exc}") from exc
