"""Interval polling of the active inbox with snapshot diffing.

The first fetch after starting (or after the active account changes) only
primes the snapshot: it emits an update event but no new-message events.
Later fetches emit one new-message event per message id not present in the
previous snapshot, in backend order.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

import structlog

from .config import PollerConfig
from .endpoints import MailApi
from .models import Account, Message, SessionState
from .session import SessionStore

logger = structlog.get_logger()

NewMessageCallback = Callable[[Message], "Awaitable[Any] | Any"]
UpdateCallback = Callable[[list[Message]], "Awaitable[Any] | Any"]

AccountKey = tuple[str, str | None]


def _account_key(account: Account | None) -> AccountKey | None:
    if account is None:
        return None
    return (account.id, account.provider_id)


def snapshot_changed(previous: Sequence[Message], current: Sequence[Message]) -> bool:
    """True if the length differs or any position holds a different id."""
    if len(previous) != len(current):
        return True
    return any(p.id != c.id for p, c in zip(previous, current))


def added_messages(previous: Sequence[Message], current: Sequence[Message]) -> list[Message]:
    known = {m.id for m in previous}
    return [m for m in current if m.id not in known]


class MailPoller:
    """Polls page 1 of the active account's inbox on a fixed interval."""

    def __init__(
        self,
        api: MailApi,
        session: SessionStore,
        config: PollerConfig,
        *,
        on_new_message: NewMessageCallback | None = None,
        on_messages_update: UpdateCallback | None = None,
    ) -> None:
        self._api = api
        self._session = session
        self._config = config
        self._on_new_message = on_new_message
        self._on_messages_update = on_messages_update

        self._enabled = False
        self._primed = False
        self._snapshot: list[Message] = []
        self._account: AccountKey | None = None
        self._checking = False
        self._timer: asyncio.Task[None] | None = None
        self._inflight: asyncio.Task[None] | None = None
        self._unsubscribe: Callable[[], None] | None = None

    # ------------------------------------------------------------------
    # Public properties
    # ------------------------------------------------------------------

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def primed(self) -> bool:
        return self._primed

    @property
    def snapshot(self) -> list[Message]:
        return list(self._snapshot)

    @property
    def is_checking(self) -> bool:
        return self._checking

    @property
    def interval_seconds(self) -> float:
        return self._config.interval_seconds

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def enable(self) -> None:
        """Allow :meth:`check` to poll and follow session changes (no timer)."""
        if self._enabled:
            return
        self._enabled = True
        self._unsubscribe = self._session.subscribe(self._on_session_change)

    def disable(self) -> None:
        """Stop polling and forget the snapshot so the next enable re-primes."""
        self._enabled = False
        self._reset(None)
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def start(self) -> None:
        """Enable polling on the configured interval; the first check runs immediately.

        Needs a running event loop.
        """
        self.enable()
        if self._timer is None or self._timer.done():
            self._timer = asyncio.create_task(self._run())
            logger.info("mail_poller_started", interval_seconds=self._config.interval_seconds)

    async def stop(self) -> None:
        """Disable and cancel the timer.

        An in-flight fetch is not aborted; its result is discarded.
        """
        timer = self._timer
        self.disable()
        if timer is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await timer
        logger.info("mail_poller_stopped")

    async def __aenter__(self) -> MailPoller:
        self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    async def _run(self) -> None:
        while self._enabled:
            self._schedule_check()
            await asyncio.sleep(self._config.interval_seconds)

    def _schedule_check(self) -> None:
        if self._inflight is not None and not self._inflight.done():
            logger.debug("mail_poll_skipped", reason="fetch_outstanding")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # Session changed from synchronous code; the next tick primes instead
            return
        self._inflight = loop.create_task(self.check())

    async def wait_inflight(self) -> None:
        """Wait for the currently scheduled check, if any, to finish."""
        if self._inflight is not None:
            await self._inflight

    def _on_session_change(self, state: SessionState) -> None:
        key = _account_key(state.current_account) if state.is_authenticated else None
        if key == self._account:
            return
        self._reset(key)
        if self._enabled and key is not None:
            # Authentication became available or the account changed: prime now
            self._schedule_check()

    def _reset(self, key: AccountKey | None) -> None:
        self._account = key
        self._primed = False
        self._snapshot = []

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def check(self) -> None:
        """Run one poll cycle.  Errors are logged and swallowed."""
        state = self._session.state
        account, token = state.current_account, state.token
        if not self._enabled or account is None or token is None or self._checking:
            return

        key = _account_key(account)
        if key != self._account:
            self._reset(key)

        provider_id = self._session.provider_of(account)
        self._checking = True
        try:
            page = await self._api.get_messages(token, 1, provider_id)
        except Exception as exc:
            logger.warning("mail_poll_failed", error=str(exc), error_class=type(exc).__name__)
            return
        finally:
            self._checking = False

        if not self._enabled or key != self._account:
            logger.debug("mail_poll_discarded", reason="stopped_or_switched")
            return
        await self._apply(page.messages)

    async def _apply(self, messages: list[Message]) -> None:
        if not self._primed:
            self._snapshot = list(messages)
            self._primed = True
            logger.debug("mail_poller_primed", count=len(messages))
            await self._emit(self._on_messages_update, list(messages))
            return

        previous = self._snapshot
        self._snapshot = list(messages)

        for message in added_messages(previous, messages):
            logger.info("new_message", message_id=message.id, subject=message.subject)
            await self._emit(self._on_new_message, message)

        if snapshot_changed(previous, messages):
            await self._emit(self._on_messages_update, list(messages))

    async def _emit(self, callback: Callable[[Any], Any] | None, arg: Any) -> None:
        if callback is None:
            return
        try:
            result = callback(arg)
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("mail_poller_callback_failed")
