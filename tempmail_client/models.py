"""Data models for accounts, sessions, providers and messages.

Field names are snake_case in Python and camelCase on the wire and in
persisted state (``providerId``, ``hydra:member`` aside), so every model
uses the camel alias generator with ``populate_by_name``.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, computed_field
from pydantic.alias_generators import to_camel

_CAMEL = {"alias_generator": to_camel, "populate_by_name": True}

PAGE_SIZE = 30


class ProviderConfig(BaseModel):
    """A backend instance offering the mail REST API."""

    model_config = _CAMEL

    id: str = Field(description="Stable provider identifier (e.g. duckmail)")
    name: str = Field(description="Display name")
    base_url: str = Field(description="API base URL without trailing slash")


class Account(BaseModel):
    """A mailbox account as returned by ``GET /me``, plus local credentials."""

    model_config = {**_CAMEL, "extra": "ignore"}

    id: str
    address: str
    password: str | None = Field(
        default=None,
        description="Only retained when the user opted to persist it",
    )
    token: str | None = Field(default=None, description="Short-lived bearer token")
    provider_id: str | None = None
    quota: int | None = None
    used: int | None = None
    is_disabled: bool = False
    is_deleted: bool = False
    created_at: str | None = None
    updated_at: str | None = None

    @property
    def has_credentials(self) -> bool:
        return bool(self.token or self.password)

    def same_mailbox(self, other: Account) -> bool:
        """Accounts are unique per (address, provider)."""
        return self.address == other.address and self.provider_id == other.provider_id


class SessionState(BaseModel):
    """The set of known accounts, the active account and its token.

    ``is_authenticated`` is derived so it can never disagree with
    ``token`` and ``current_account``.
    """

    model_config = _CAMEL

    token: str | None = None
    current_account: Account | None = None
    accounts: list[Account] = Field(default_factory=list)

    @computed_field(alias="isAuthenticated")  # type: ignore[prop-decorator]
    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and self.current_account is not None

    @property
    def is_empty(self) -> bool:
        return not self.accounts and self.current_account is None and self.token is None


class TokenGrant(BaseModel):
    """Response of ``POST /token``."""

    token: str
    id: str


class Domain(BaseModel):
    """A mail domain offered by a provider."""

    model_config = {**_CAMEL, "extra": "allow"}

    id: str | None = None
    domain: str
    is_active: bool = True
    is_private: bool = False
    is_verified: bool | None = None
    provider_id: str | None = None
    provider_name: str | None = None


class MessageAddress(BaseModel):
    address: str
    name: str = ""


class Message(BaseModel):
    """Inbox listing entry. Identity is ``id``; ``seen`` is the only field we mutate."""

    model_config = {**_CAMEL, "extra": "allow"}

    id: str
    msgid: str | None = None
    sender: MessageAddress | None = Field(default=None, alias="from")
    to: list[MessageAddress] = Field(default_factory=list)
    subject: str = ""
    intro: str = ""
    seen: bool = False
    is_deleted: bool = False
    has_attachments: bool = False
    size: int = 0
    download_url: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


class Attachment(BaseModel):
    model_config = {**_CAMEL, "extra": "allow"}

    id: str
    filename: str
    content_type: str = "application/octet-stream"
    size: int = 0
    download_url: str | None = None


class MessageDetail(Message):
    """Full message as returned by ``GET /messages/{id}``."""

    cc: list[MessageAddress] = Field(default_factory=list)
    bcc: list[MessageAddress] = Field(default_factory=list)
    text: str = ""
    html: list[str] = Field(default_factory=list)
    attachments: list[Attachment] = Field(default_factory=list)


class MessagePage(BaseModel):
    """One page of ``GET /messages``."""

    messages: list[Message]
    total: int
    has_more: bool

    @classmethod
    def from_payload(cls, payload: dict[str, Any], page: int) -> MessagePage:
        messages = [Message.model_validate(m) for m in payload.get("hydra:member") or []]
        total = int(payload.get("hydra:totalItems") or 0)
        has_more = len(messages) == PAGE_SIZE and page * PAGE_SIZE < total
        return cls(messages=messages, total=total, has_more=has_more)
