"""Top-level client wiring the mail API, token manager and session store."""

from __future__ import annotations

import asyncio

import structlog

from .api_client import ApiClient
from .config import ClientConfig
from .endpoints import MailApi
from .errors import CredentialsMissingError
from .models import Domain, MessageDetail, MessagePage
from .poller import MailPoller, NewMessageCallback, UpdateCallback
from .providers import ProviderRegistry
from .retry import SleepFn
from .session import SessionStore
from .storage import JsonFileStorage, MemoryStorage, Storage
from .tokens import TokenManager

logger = structlog.get_logger()


def build_storage(config: ClientConfig) -> Storage:
    if config.storage.path is not None:
        return JsonFileStorage(config.storage.path)
    return MemoryStorage()


class TempMailClient:
    """Entry point for applications.

    Usage::

        async with TempMailClient(ClientConfig()) as client:
            await client.session.login("me@duckmail.sbs", "secret")
            page = await client.list_messages()
    """

    def __init__(
        self,
        config: ClientConfig,
        storage: Storage | None = None,
        *,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.storage = storage if storage is not None else build_storage(config)
        self.registry = ProviderRegistry(self.storage, config.default_provider)
        self.http = ApiClient(
            config.http,
            config.retry,
            self.registry,
            self.storage,
            api_key=config.api_key.get_secret_value() if config.api_key else None,
            sleep=sleep,
        )
        self.api = MailApi(self.http, self.registry)
        self.tokens = TokenManager(self.api, self.storage, config.default_provider)
        self.http.set_token_refresher(self.tokens.refresh_if_needed)
        self.session = SessionStore(
            self.api,
            self.tokens,
            self.registry,
            self.storage,
            remember_passwords=config.remember_passwords,
            serialize_mutations=config.serialize_mutations,
        )

    async def start(self) -> None:
        await self.http.start()

    async def stop(self) -> None:
        await self.http.stop()

    async def __aenter__(self) -> TempMailClient:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def create_poller(
        self,
        *,
        on_new_message: NewMessageCallback | None = None,
        on_messages_update: UpdateCallback | None = None,
    ) -> MailPoller:
        return MailPoller(
            self.api,
            self.session,
            self.config.poller,
            on_new_message=on_new_message,
            on_messages_update=on_messages_update,
        )

    # ------------------------------------------------------------------
    # Operations on the active account
    # ------------------------------------------------------------------

    def _active(self) -> tuple[str, str]:
        state = self.session.state
        account, token = state.current_account, state.token
        if account is None or token is None:
            raise CredentialsMissingError("Not logged in")
        return token, self.session.provider_of(account)

    async def list_messages(self, page: int = 1) -> MessagePage:
        token, provider_id = self._active()
        return await self.api.get_messages(token, page, provider_id)

    async def get_message(self, message_id: str) -> MessageDetail:
        token, provider_id = self._active()
        return await self.api.get_message(token, message_id, provider_id)

    async def mark_message_read(self, message_id: str) -> bool:
        token, provider_id = self._active()
        return await self.api.mark_message_read(token, message_id, provider_id)

    async def delete_message(self, message_id: str) -> None:
        token, provider_id = self._active()
        await self.api.delete_message(token, message_id, provider_id)
        logger.info("message_deleted", message_id=message_id)

    async def fetch_domains(self) -> list[Domain]:
        return await self.api.fetch_all_domains()
