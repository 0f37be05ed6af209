"""Acquire, validate and refresh bearer tokens.

At most one credential exchange for a refresh is in flight per manager:
concurrent callers of :meth:`TokenManager.refresh_if_needed` all await the
same pending task.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import structlog

from .endpoints import MailApi
from .errors import AuthExpiredError, InvalidCredentialsError, TokenInvalidError
from .models import Account, TokenGrant
from .storage import DEFAULT_PROVIDER_ID, Storage

logger = structlog.get_logger()

TokenListener = Callable[[str, Account], None]


class TokenManager:
    """Issues and validates tokens and owns the refresh guard.

    On a successful refresh the new token is written to the persisted
    session, then listeners are told so in-memory holders can resync.
    """

    def __init__(
        self,
        api: MailApi,
        storage: Storage,
        default_provider: str = DEFAULT_PROVIDER_ID,
    ) -> None:
        self._api = api
        self._storage = storage
        self._default_provider = default_provider
        self._pending: asyncio.Task[str | None] | None = None
        self._listeners: list[TokenListener] = []

    def add_listener(self, listener: TokenListener) -> Callable[[], None]:
        """Call *listener(token, account)* after each refresh; returns an unsubscribe."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    @property
    def refresh_pending(self) -> bool:
        return self._pending is not None

    async def acquire_token(self, address: str, password: str, provider_id: str) -> TokenGrant:
        """Exchange credentials for a token.  One attempt, no retries."""
        try:
            grant = await self._api.get_token(address, password, provider_id)
        except AuthExpiredError as exc:
            raise InvalidCredentialsError(exc.message, payload=exc.payload) from exc
        logger.info("token_acquired", address=address, provider=provider_id)
        return grant

    async def validate_token(self, token: str, provider_id: str) -> Account:
        """Fetch the profile for *token*; raises :class:`TokenInvalidError` if rejected."""
        try:
            return await self._api.get_me(token, provider_id, refresh=False)
        except AuthExpiredError as exc:
            raise TokenInvalidError(exc.message, payload=exc.payload) from exc

    async def refresh_if_needed(self) -> str | None:
        """Re-issue the active account's token, sharing one in-flight attempt.

        Returns None without touching the network when there is no active
        account or no stored password for it.
        """
        if self._pending is None:
            self._pending = asyncio.ensure_future(self._refresh())
        else:
            logger.debug("token_refresh_joined")
        # Shielded so one cancelled caller does not cancel everyone's refresh
        return await asyncio.shield(self._pending)

    async def _refresh(self) -> str | None:
        try:
            state = self._storage.load_session(self._default_provider)
            account = state.current_account if state else None
            if account is None or not account.password:
                logger.info("token_refresh_skipped", reason="no_stored_password")
                return None

            provider_id = account.provider_id or self._default_provider
            grant = await self.acquire_token(account.address, account.password, provider_id)
            refreshed = self._persist(grant.token, account)
            logger.info("token_refreshed", address=account.address, provider=provider_id)
            self._notify(grant.token, refreshed)
            return grant.token
        finally:
            self._pending = None

    def _persist(self, token: str, account: Account) -> Account:
        state = self._storage.load_session(self._default_provider)
        refreshed = account.model_copy(update={"token": token})
        if state is None:
            return refreshed

        state.accounts = [refreshed if a.same_mailbox(account) else a for a in state.accounts]
        if state.current_account is not None and state.current_account.same_mailbox(account):
            state.current_account = refreshed
            state.token = token
        self._storage.save_session(state)
        return refreshed

    def _notify(self, token: str, account: Account) -> None:
        for listener in list(self._listeners):
            try:
                listener(token, account)
            except Exception:
                logger.exception("token_listener_failed")
