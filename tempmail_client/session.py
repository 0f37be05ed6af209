"""Known accounts, the active account and its token.

Every state transition replaces :attr:`SessionStore.state` in one
synchronous step, persists it through the storage port and notifies
subscribers.  Async mutations (login, register, switch, delete) run one
at a time when ``serialize_mutations`` is on.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import Callable

import structlog

from .endpoints import MailApi
from .errors import (
    AccountNotFoundError,
    ApiError,
    AuthExpiredError,
    CredentialsMissingError,
    TempMailError,
)
from .models import Account, SessionState
from .providers import ProviderRegistry
from .storage import Storage
from .tokens import TokenManager

logger = structlog.get_logger()

SessionListener = Callable[[SessionState], None]


def _upsert(accounts: list[Account], account: Account) -> list[Account]:
    """Replace the entry for the same mailbox in place, or append."""
    if any(a.same_mailbox(account) for a in accounts):
        return [account if a.same_mailbox(account) else a for a in accounts]
    return [*accounts, account]


class SessionStore:
    """Multi-account session with provider-aware credential handling."""

    def __init__(
        self,
        api: MailApi,
        tokens: TokenManager,
        registry: ProviderRegistry,
        storage: Storage,
        *,
        remember_passwords: bool = True,
        serialize_mutations: bool = True,
    ) -> None:
        self._api = api
        self._tokens = tokens
        self._registry = registry
        self._storage = storage
        self._remember_passwords = remember_passwords
        self._mutex: asyncio.Lock | None = asyncio.Lock() if serialize_mutations else None
        self._listeners: list[SessionListener] = []

        self._state = storage.load_session(registry.default_provider_id) or SessionState()
        if self._state.accounts:
            logger.info(
                "session_restored",
                accounts=len(self._state.accounts),
                authenticated=self._state.is_authenticated,
            )
        tokens.add_listener(self._on_token_refreshed)

    # ------------------------------------------------------------------
    # State access
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def current_account(self) -> Account | None:
        return self._state.current_account

    @property
    def token(self) -> str | None:
        return self._state.token

    @property
    def accounts(self) -> list[Account]:
        return list(self._state.accounts)

    def provider_of(self, account: Account) -> str:
        return account.provider_id or self._registry.default_provider_id

    def accounts_for_provider(self, provider_id: str) -> list[Account]:
        return [a for a in self._state.accounts if self.provider_of(a) == provider_id]

    def current_provider_accounts(self) -> list[Account]:
        current = self._state.current_account
        if current is None:
            return []
        return self.accounts_for_provider(self.provider_of(current))

    def subscribe(self, listener: SessionListener) -> Callable[[], None]:
        """Call *listener(state)* after every transition; returns an unsubscribe."""
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def login(self, address: str, password: str) -> Account:
        async with self._exclusive():
            return await self._login(address, password)

    async def register(self, address: str, password: str) -> Account:
        async with self._exclusive():
            provider_id = self._registry.infer_provider_from_address(address)
            await self._api.create_account(address, password, provider_id)
            logger.info("account_registered", address=address, provider=provider_id)
            return await self._login(address, password)

    def logout(self) -> None:
        """Drop the current account from the session.

        With no current account only the token is cleared.  Otherwise the
        first remaining account becomes current, with its own token if any.
        """
        state = self._state
        current = state.current_account
        if current is None:
            self._commit(SessionState(accounts=state.accounts))
            return

        remaining = [a for a in state.accounts if a.id != current.id]
        if not remaining:
            logger.info("session_logged_out", address=current.address)
            self._commit(SessionState())
            return

        next_account = remaining[0]
        logger.info("session_logged_out", address=current.address, next=next_account.address)
        self._commit(
            SessionState(token=next_account.token, current_account=next_account, accounts=remaining)
        )

    async def delete_account(self, account_id: str) -> None:
        async with self._exclusive():
            await self._delete_account(account_id)

    async def switch_account(self, account: Account) -> Account:
        async with self._exclusive():
            return await self._switch_account(account)

    def add_account(self, account: Account, token: str, password: str | None = None) -> Account:
        """Record an account registered elsewhere and make it current.

        An existing entry for the same mailbox is replaced rather than duplicated.
        """
        added = account.model_copy(
            update={
                "token": token,
                "password": password if self._remember_passwords else None,
                "provider_id": self._registry.infer_provider_from_address(account.address),
            }
        )
        self._commit(
            SessionState(token=token, current_account=added, accounts=_upsert(self._state.accounts, added))
        )
        return added

    # ------------------------------------------------------------------
    # Implementation
    # ------------------------------------------------------------------

    def _exclusive(self) -> contextlib.AbstractAsyncContextManager:
        return self._mutex if self._mutex is not None else contextlib.nullcontext()

    async def _login(self, address: str, password: str) -> Account:
        provider_id = self._registry.infer_provider_from_address(address)
        grant = await self._tokens.acquire_token(address, password, provider_id)
        profile = await self._tokens.validate_token(grant.token, provider_id)
        account = self._with_auth(profile, grant.token, password, provider_id)

        accounts = _upsert(self._state.accounts, account)
        self._commit(SessionState(token=grant.token, current_account=account, accounts=accounts))
        logger.info("session_logged_in", address=address, provider=provider_id)
        return account

    async def _switch_account(self, account: Account) -> Account:
        if not account.has_credentials:
            logger.warning("switch_credentials_missing", address=account.address)
            raise CredentialsMissingError("Missing login credentials, please log in again")

        provider_id = self.provider_of(account)
        logger.info("session_switching", address=account.address, provider=provider_id)

        if account.token:
            try:
                profile = await self._tokens.validate_token(account.token, provider_id)
            except AuthExpiredError as exc:
                logger.warning("switch_token_invalid", address=account.address)
                if not account.password:
                    self._clear_account_token(account)
                    raise AuthExpiredError("Token expired, please log in again") from exc
                try:
                    return await self._reauthenticate(account, provider_id)
                except ApiError as refresh_exc:
                    self._clear_account_token(account)
                    raise AuthExpiredError(
                        "Token expired and could not be refreshed, please log in again"
                    ) from refresh_exc
            return self._apply_switch(self._with_auth(profile, account.token, account.password, provider_id))

        try:
            return await self._reauthenticate(account, provider_id)
        except ApiError as exc:
            raise AuthExpiredError("Could not obtain login credentials, please log in again") from exc

    async def _reauthenticate(self, account: Account, provider_id: str) -> Account:
        if not account.password:
            raise CredentialsMissingError("Missing login credentials, please log in again")
        grant = await self._tokens.acquire_token(account.address, account.password, provider_id)
        profile = await self._tokens.validate_token(grant.token, provider_id)
        return self._apply_switch(self._with_auth(profile, grant.token, account.password, provider_id))

    def _apply_switch(self, account: Account) -> Account:
        accounts = _upsert(self._state.accounts, account)
        self._commit(SessionState(token=account.token, current_account=account, accounts=accounts))
        logger.info("session_switched", address=account.address)
        return account

    def _clear_account_token(self, account: Account) -> None:
        """Forget a rejected token for *account* only; the session stays as it was."""
        state = self._state
        accounts: list[Account] = []
        current = state.current_account
        for entry in state.accounts:
            if entry.same_mailbox(account):
                cleared = entry.model_copy(update={"token": None})
                if entry is current:
                    current = cleared
                entry = cleared
            accounts.append(entry)
        self._commit(SessionState(token=state.token, current_account=current, accounts=accounts))

    async def _delete_account(self, account_id: str) -> None:
        state = self._state
        target = next((a for a in state.accounts if a.id == account_id), None)
        if target is None:
            raise AccountNotFoundError(f"Unknown account {account_id!r}")

        provider_id = self.provider_of(target)
        is_current = state.current_account is not None and state.current_account.id == account_id
        token = state.token if is_current else target.token

        if token is None and target.password:
            token = (await self._tokens.acquire_token(target.address, target.password, provider_id)).token
        if token is None:
            raise CredentialsMissingError(
                "Missing the credentials needed to delete this account, log in to it first"
            )

        try:
            await self._api.delete_account(token, account_id, provider_id, refresh=is_current)
        except AuthExpiredError:
            # A stale token of a non-current account can be re-issued once
            if is_current or not target.password:
                raise
            grant = await self._tokens.acquire_token(target.address, target.password, provider_id)
            await self._api.delete_account(grant.token, account_id, provider_id, refresh=False)
        logger.info("account_deleted", address=target.address, provider=provider_id)

        state = self._state
        remaining = [a for a in state.accounts if a.id != account_id]
        if not is_current:
            self._commit(
                SessionState(token=state.token, current_account=state.current_account, accounts=remaining)
            )
            return

        if not remaining:
            self._commit(SessionState())
            return

        self._commit(SessionState(accounts=remaining))
        candidate = next((a for a in remaining if a.has_credentials), remaining[0])
        try:
            await self._switch_account(candidate)
        except TempMailError as exc:
            logger.warning("auto_switch_failed", address=candidate.address, error=str(exc))

    def _with_auth(
        self,
        profile: Account,
        token: str,
        password: str | None,
        provider_id: str,
    ) -> Account:
        return profile.model_copy(
            update={
                "token": token,
                "password": password if self._remember_passwords else None,
                "provider_id": provider_id,
            }
        )

    def _commit(self, state: SessionState) -> None:
        self._state = state
        self._storage.save_session(state)
        for listener in list(self._listeners):
            try:
                listener(state)
            except Exception:
                logger.exception("session_listener_failed")

    def _on_token_refreshed(self, token: str, account: Account) -> None:
        restored = self._storage.load_session(self._registry.default_provider_id)
        if restored is None:
            return
        logger.debug("session_resynced", address=account.address)
        self._commit(restored)
