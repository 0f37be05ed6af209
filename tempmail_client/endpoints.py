"""Typed wrappers for the disposable-mail REST endpoints."""

from __future__ import annotations

import asyncio

import structlog

from .api_client import ApiClient, ApiRequest, AuthMode, decode_body
from .errors import ApiError
from .models import Account, Domain, MessageDetail, MessagePage, TokenGrant
from .providers import ProviderRegistry, domains_from_payload

logger = structlog.get_logger()

MERGE_PATCH = "application/merge-patch+json"


class MailApi:
    """One method per endpoint.  Bearer calls take the token explicitly."""

    def __init__(self, client: ApiClient, registry: ProviderRegistry) -> None:
        self._client = client
        self._registry = registry

    # ------------------------------------------------------------------
    # Accounts and tokens
    # ------------------------------------------------------------------

    async def get_token(self, address: str, password: str, provider_id: str) -> TokenGrant:
        response = await self._client.call(
            ApiRequest(
                "POST",
                "/token",
                provider_id=provider_id,
                json_body={"address": address, "password": password},
                retry=False,
            )
        )
        return TokenGrant.model_validate(response.json())

    async def create_account(self, address: str, password: str, provider_id: str) -> Account:
        logger.info("account_creating", address=address, provider=provider_id)
        response = await self._client.call(
            ApiRequest(
                "POST",
                "/accounts",
                provider_id=provider_id,
                auth=AuthMode.API_KEY,
                json_body={"address": address, "password": password},
                retry=False,
            )
        )
        return Account.model_validate({**response.json(), "providerId": provider_id})

    async def get_me(self, token: str, provider_id: str, *, refresh: bool = True) -> Account:
        response = await self._client.call(
            ApiRequest(
                "GET",
                "/me",
                provider_id=provider_id,
                auth=AuthMode.BEARER,
                token=token,
                refresh_on_expiry=refresh,
            )
        )
        return Account.model_validate({**response.json(), "providerId": provider_id})

    async def delete_account(
        self,
        token: str,
        account_id: str,
        provider_id: str,
        *,
        refresh: bool = True,
    ) -> None:
        await self._client.call(
            ApiRequest(
                "DELETE",
                f"/accounts/{account_id}",
                provider_id=provider_id,
                auth=AuthMode.BEARER,
                token=token,
                refresh_on_expiry=refresh,
            )
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def get_messages(self, token: str, page: int, provider_id: str) -> MessagePage:
        response = await self._client.call(
            ApiRequest(
                "GET",
                "/messages",
                provider_id=provider_id,
                auth=AuthMode.BEARER,
                token=token,
                params={"page": page},
            )
        )
        payload = decode_body(response)
        if not isinstance(payload, dict):
            if payload is not None:
                logger.warning("messages_payload_invalid", provider=provider_id, page=page)
            payload = {}
        result = MessagePage.from_payload(payload, page)
        logger.debug(
            "messages_fetched",
            page=page,
            count=len(result.messages),
            total=result.total,
            has_more=result.has_more,
        )
        return result

    async def get_message(self, token: str, message_id: str, provider_id: str) -> MessageDetail:
        response = await self._client.call(
            ApiRequest(
                "GET",
                f"/messages/{message_id}",
                provider_id=provider_id,
                auth=AuthMode.BEARER,
                token=token,
            )
        )
        return MessageDetail.model_validate(response.json())

    async def mark_message_read(self, token: str, message_id: str, provider_id: str) -> bool:
        response = await self._client.call(
            ApiRequest(
                "PATCH",
                f"/messages/{message_id}",
                provider_id=provider_id,
                auth=AuthMode.BEARER,
                token=token,
                json_body={"seen": True},
                content_type=MERGE_PATCH,
            )
        )
        body = decode_body(response)
        # Some providers answer 200/204 without a JSON body
        if isinstance(body, dict) and "seen" in body:
            return bool(body["seen"])
        return True

    async def delete_message(self, token: str, message_id: str, provider_id: str) -> None:
        await self._client.call(
            ApiRequest(
                "DELETE",
                f"/messages/{message_id}",
                provider_id=provider_id,
                auth=AuthMode.BEARER,
                token=token,
            )
        )

    # ------------------------------------------------------------------
    # Domains
    # ------------------------------------------------------------------

    async def fetch_domains(self, provider_id: str) -> list[Domain]:
        """Usable domains of one provider; failures yield an empty list."""
        try:
            response = await self._client.call(
                ApiRequest(
                    "GET",
                    "/domains",
                    provider_id=provider_id,
                    auth=AuthMode.API_KEY,
                    headers={"Cache-Control": "no-cache"},
                )
            )
        except ApiError as exc:
            logger.warning("domains_fetch_failed", provider=provider_id, status=exc.status, error=str(exc))
            return []

        payload = decode_body(response)
        members = payload.get("hydra:member") if isinstance(payload, dict) else None
        if not isinstance(members, list):
            logger.error("domains_payload_invalid", provider=provider_id)
            return []
        return domains_from_payload(provider_id, members)

    async def fetch_all_domains(self) -> list[Domain]:
        """Domains of every enabled provider, fetched concurrently.

        The result also refreshes the domain cache used to infer an
        address's provider.
        """
        providers = self._registry.list_enabled_providers()
        results = await asyncio.gather(*(self.fetch_domains(p.id) for p in providers))

        domains: list[Domain] = []
        for provider, provider_domains in zip(providers, results):
            for domain in provider_domains:
                domains.append(
                    domain.model_copy(update={"provider_id": provider.id, "provider_name": provider.name})
                )

        self._registry.cache_domains(domains)
        logger.info("domains_fetched", providers=len(providers), domains=len(domains))
        return domains
