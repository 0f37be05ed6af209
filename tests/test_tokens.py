"""Tests for tempmail_client.tokens."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tempmail_client.errors import (
    AuthExpiredError,
    InvalidCredentialsError,
    TokenInvalidError,
    TransientNetworkError,
)
from tempmail_client.models import SessionState, TokenGrant
from tempmail_client.storage import MemoryStorage
from tempmail_client.tokens import TokenManager


@pytest.fixture
def seeded_storage(storage: MemoryStorage, account_factory) -> MemoryStorage:
    current = account_factory(1, token="tok-old", password="pw1")
    other = account_factory(2, token="tok-2")
    storage.save_session(SessionState(token="tok-old", current_account=current, accounts=[current, other]))
    return storage


class TestAcquireAndValidate:
    @pytest.mark.asyncio
    async def test_acquire(self, mock_api: AsyncMock, storage: MemoryStorage):
        manager = TokenManager(mock_api, storage)
        grant = await manager.acquire_token("a@duckmail.sbs", "pw", "duckmail")
        assert grant.token == "tok-new"
        mock_api.get_token.assert_awaited_once_with("a@duckmail.sbs", "pw", "duckmail")

    @pytest.mark.asyncio
    async def test_bad_credentials(self, mock_api: AsyncMock, storage: MemoryStorage):
        mock_api.get_token.side_effect = AuthExpiredError("Invalid credentials.")
        manager = TokenManager(mock_api, storage)

        with pytest.raises(InvalidCredentialsError) as exc_info:
            await manager.acquire_token("a@duckmail.sbs", "bad", "duckmail")
        assert exc_info.value.status == 401

    @pytest.mark.asyncio
    async def test_network_errors_propagate_unchanged(self, mock_api: AsyncMock, storage: MemoryStorage):
        mock_api.get_token.side_effect = TransientNetworkError("down", status=0)
        manager = TokenManager(mock_api, storage)

        with pytest.raises(TransientNetworkError):
            await manager.acquire_token("a@duckmail.sbs", "pw", "duckmail")

    @pytest.mark.asyncio
    async def test_validate(self, mock_api: AsyncMock, storage: MemoryStorage):
        manager = TokenManager(mock_api, storage)
        account = await manager.validate_token("tok", "duckmail")
        assert account.id == "acc-1"
        mock_api.get_me.assert_awaited_once_with("tok", "duckmail", refresh=False)

    @pytest.mark.asyncio
    async def test_validate_rejected(self, mock_api: AsyncMock, storage: MemoryStorage):
        mock_api.get_me.side_effect = AuthExpiredError()
        manager = TokenManager(mock_api, storage)

        with pytest.raises(TokenInvalidError):
            await manager.validate_token("tok", "duckmail")


class TestRefresh:
    @pytest.mark.asyncio
    async def test_refresh_persists_and_notifies(self, mock_api: AsyncMock, seeded_storage: MemoryStorage):
        manager = TokenManager(mock_api, seeded_storage)
        listener = MagicMock()
        manager.add_listener(listener)

        token = await manager.refresh_if_needed()

        assert token == "tok-new"
        mock_api.get_token.assert_awaited_once_with("user1@duckmail.sbs", "pw1", "duckmail")
        state = seeded_storage.load_session()
        assert state.token == "tok-new"
        assert state.current_account.token == "tok-new"
        assert [a.token for a in state.accounts] == ["tok-new", "tok-2"]
        listener.assert_called_once()
        assert listener.call_args.args[0] == "tok-new"

    @pytest.mark.asyncio
    async def test_no_password_skips_network(self, mock_api: AsyncMock, storage: MemoryStorage, account_factory):
        current = account_factory(1, token="tok-old")
        storage.save_session(SessionState(token="tok-old", current_account=current, accounts=[current]))
        manager = TokenManager(mock_api, storage)

        assert await manager.refresh_if_needed() is None
        mock_api.get_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_session_skips_network(self, mock_api: AsyncMock, storage: MemoryStorage):
        manager = TokenManager(mock_api, storage)
        assert await manager.refresh_if_needed() is None
        mock_api.get_token.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_exchange(
        self, mock_api: AsyncMock, seeded_storage: MemoryStorage
    ):
        release = asyncio.Event()

        async def slow_token(address, password, provider_id):
            await release.wait()
            return TokenGrant(token="tok-shared", id="acc-1")

        mock_api.get_token.side_effect = slow_token
        manager = TokenManager(mock_api, seeded_storage)

        callers = [asyncio.ensure_future(manager.refresh_if_needed()) for _ in range(5)]
        await asyncio.sleep(0)
        assert manager.refresh_pending
        release.set()
        results = await asyncio.gather(*callers)

        assert results == ["tok-shared"] * 5
        assert mock_api.get_token.await_count == 1
        assert not manager.refresh_pending

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_failure(
        self, mock_api: AsyncMock, seeded_storage: MemoryStorage
    ):
        release = asyncio.Event()

        async def rejected(address, password, provider_id):
            await release.wait()
            raise AuthExpiredError("Invalid credentials.")

        mock_api.get_token.side_effect = rejected
        manager = TokenManager(mock_api, seeded_storage)

        callers = [asyncio.ensure_future(manager.refresh_if_needed()) for _ in range(3)]
        await asyncio.sleep(0)
        release.set()
        results = await asyncio.gather(*callers, return_exceptions=True)

        assert all(isinstance(r, InvalidCredentialsError) for r in results)
        assert mock_api.get_token.await_count == 1
        assert not manager.refresh_pending

    @pytest.mark.asyncio
    async def test_guard_cleared_between_refreshes(self, mock_api: AsyncMock, seeded_storage: MemoryStorage):
        manager = TokenManager(mock_api, seeded_storage)

        await manager.refresh_if_needed()
        await manager.refresh_if_needed()

        assert mock_api.get_token.await_count == 2

    @pytest.mark.asyncio
    async def test_listener_unsubscribe(self, mock_api: AsyncMock, seeded_storage: MemoryStorage):
        manager = TokenManager(mock_api, seeded_storage)
        listener = MagicMock()
        unsubscribe = manager.add_listener(listener)
        unsubscribe()

        await manager.refresh_if_needed()
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_refresh(
        self, mock_api: AsyncMock, seeded_storage: MemoryStorage
    ):
        manager = TokenManager(mock_api, seeded_storage)
        manager.add_listener(MagicMock(side_effect=RuntimeError("listener bug")))

        assert await manager.refresh_if_needed() == "tok-new"
