"""Shared test fixtures for the tempmail_client test suite."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from tempmail_client.api_client import ApiClient
from tempmail_client.config import HttpConfig, RetryConfig
from tempmail_client.endpoints import MailApi
from tempmail_client.models import Account, Message, TokenGrant
from tempmail_client.providers import ProviderRegistry
from tempmail_client.storage import MemoryStorage

DUCKMAIL = "https://api.duckmail.sbs"
MAILTM = "https://api.mail.tm"


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def registry(storage: MemoryStorage) -> ProviderRegistry:
    return ProviderRegistry(storage)


@pytest.fixture
def retry_config() -> RetryConfig:
    return RetryConfig(max_retries=3, initial_wait_seconds=1.0, max_wait_seconds=30.0, multiplier=2.0)


@pytest.fixture
def sleeps() -> list[float]:
    """Backoff waits requested by the client under test, in order."""
    return []


@pytest.fixture
def fake_sleep(sleeps: list[float]):
    async def _sleep(seconds: float) -> None:
        sleeps.append(float(seconds))

    return _sleep


@pytest.fixture
def api_client(
    registry: ProviderRegistry,
    storage: MemoryStorage,
    retry_config: RetryConfig,
    fake_sleep,
) -> ApiClient:
    return ApiClient(
        HttpConfig(timeout_seconds=5.0),
        retry_config,
        registry,
        storage,
        sleep=fake_sleep,
    )


@pytest.fixture
def mail_api(api_client: ApiClient, registry: ProviderRegistry) -> MailApi:
    return MailApi(api_client, registry)


@pytest.fixture
def account_factory():
    """Factory to create Account instances with overrides."""

    def _make(n: int = 1, **overrides) -> Account:
        defaults = dict(
            id=f"acc-{n}",
            address=f"user{n}@duckmail.sbs",
            provider_id="duckmail",
            quota=40_000_000,
            used=0,
        )
        defaults.update(overrides)
        return Account(**defaults)

    return _make


@pytest.fixture
def message_factory():
    def _make(msg_id: str, **overrides) -> Message:
        defaults = dict(
            id=msg_id,
            subject=f"Subject {msg_id}",
            intro="hello",
        )
        defaults.update(overrides)
        return Message(**defaults)

    return _make


@pytest.fixture
def mock_api() -> AsyncMock:
    """A MailApi double whose token exchange and profile fetch succeed."""
    api = AsyncMock(spec=MailApi)
    api.get_token = AsyncMock(return_value=TokenGrant(token="tok-new", id="acc-1"))
    api.get_me = AsyncMock(
        side_effect=lambda token, provider_id, refresh=True: Account(
            id="acc-1",
            address="user1@duckmail.sbs",
            provider_id=provider_id,
        )
    )
    api.create_account = AsyncMock()
    api.delete_account = AsyncMock()
    return api
