"""Pydantic models for Gmail API payloads.

Gmail returns messages as a recursive MIME tree whose nested fields are all
optional. These models give that tree a fixed shape so the transform code can
walk it without probing raw dictionaries.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class MessageHeader(BaseModel):
    """A single RFC 5322 header as reported by Gmail."""

    name: str
    value: str = ""


class PartBody(BaseModel):
    """Body of a MIME part: inline base64url data or an attachment reference."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    attachment_id: str | None = Field(default=None, alias="attachmentId")
    size: int = Field(default=0, description="Body size in bytes")
    data: str | None = Field(default=None, description="base64url encoded body data")


class MimePart(BaseModel):
    """One node of a message's MIME tree."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    part_id: str | None = Field(default=None, alias="partId")
    mime_type: str = Field(default="", alias="mimeType")
    filename: str = ""
    headers: list[MessageHeader] = Field(default_factory=list)
    body: PartBody = Field(default_factory=PartBody)
    parts: list[MimePart] = Field(default_factory=list)

    @field_validator("headers", "parts", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v

    @field_validator("body", mode="before")
    @classmethod
    def _none_body(cls, v: Any) -> Any:
        return {} if v is None else v

    @field_validator("filename", "mime_type", mode="before")
    @classmethod
    def _none_string(cls, v: Any) -> Any:
        return "" if v is None else v

    def header(self, name: str) -> str | None:
        """Return the first header matching ``name`` (case-insensitive)."""
        wanted = name.lower()
        for h in self.headers:
            if h.name.lower() == wanted:
                return h.value
        return None

    def walk(self) -> Iterator[MimePart]:
        """Yield this part and every descendant, depth-first, left to right."""
        yield self
        for child in self.parts:
            yield from child.walk()


class GmailMessage(BaseModel):
    """A message returned by ``users.messages.get``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    thread_id: str = Field(default="", alias="threadId")
    label_ids: list[str] | None = Field(default=None, alias="labelIds")
    snippet: str = ""
    history_id: str = Field(default="", alias="historyId")
    internal_date: int = Field(
        default=0,
        alias="internalDate",
        description="Milliseconds since epoch assigned by Gmail",
    )
    size_estimate: int = Field(default=0, alias="sizeEstimate")
    payload: MimePart | None = None

    def header(self, name: str) -> str | None:
        """Return a top-level header value, or None when absent."""
        if self.payload is None:
            return None
        return self.payload.header(name)


class MessageRef(BaseModel):
    """Message id pair returned by ``users.messages.list``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    thread_id: str | None = Field(default=None, alias="threadId")


class MessageList(BaseModel):
    """One page of ``users.messages.list``."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    messages: list[MessageRef] = Field(default_factory=list)
    next_page_token: str | None = Field(default=None, alias="nextPageToken")
    result_size_estimate: int = Field(default=0, alias="resultSizeEstimate")
    history_id: str | None = Field(default=None, alias="historyId")

    @field_validator("messages", mode="before")
    @classmethod
    def _none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v
