"""Provider registry mapping provider ids and email domains to API endpoints."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog

from .models import Domain, ProviderConfig
from .storage import DEFAULT_PROVIDER_ID, Storage

logger = structlog.get_logger()

PRESET_PROVIDERS: tuple[ProviderConfig, ...] = (
    ProviderConfig(id="duckmail", name="DuckMail", base_url="https://api.duckmail.sbs"),
    ProviderConfig(id="mailtm", name="Mail.tm", base_url="https://api.mail.tm"),
)

# Domains whose provider is known without consulting the domain cache
KNOWN_DOMAIN_PROVIDERS: dict[str, str] = {
    "1secmail.com": "mailtm",
}


# ------------------------------------------------------------------
# Per-provider domain handling
# ------------------------------------------------------------------

DomainFilter = Callable[[dict[str, Any]], bool]
DomainNormalizer = Callable[[dict[str, Any]], dict[str, Any]]


def _duckmail_domain_usable(raw: dict[str, Any]) -> bool:
    """DuckMail lists private and pending domains; only verified, active ones work."""
    return bool(raw.get("isVerified")) and bool(raw.get("isActive"))


def _duckmail_normalize(raw: dict[str, Any]) -> dict[str, Any]:
    is_public = raw.get("isPublic")
    return {
        **raw,
        "domain": raw.get("domainName") or raw.get("domain"),
        "isPrivate": bool(raw.get("isPrivate")) or is_public is False,
    }


def _keep_all(raw: dict[str, Any]) -> bool:
    return True


def _default_normalize(raw: dict[str, Any]) -> dict[str, Any]:
    return {**raw, "domain": raw.get("domain") or raw.get("domainName")}


DOMAIN_FILTERS: dict[str, DomainFilter] = {"duckmail": _duckmail_domain_usable}
DOMAIN_NORMALIZERS: dict[str, DomainNormalizer] = {"duckmail": _duckmail_normalize}


def domains_from_payload(provider_id: str, members: list[dict[str, Any]]) -> list[Domain]:
    """Apply *provider_id*'s filter and normalizer to raw ``/domains`` members."""
    usable = DOMAIN_FILTERS.get(provider_id, _keep_all)
    normalize = DOMAIN_NORMALIZERS.get(provider_id, _default_normalize)

    domains: list[Domain] = []
    for raw in members:
        if not isinstance(raw, dict):
            continue
        if not usable(raw):
            logger.debug("domain_filtered_out", provider=provider_id, domain=raw.get("domainName"))
            continue
        normalized = normalize(raw)
        if not normalized.get("domain"):
            continue
        domains.append(Domain.model_validate({**normalized, "providerId": provider_id}))
    return domains


class ProviderRegistry:
    """Resolves providers from the fixed presets plus user-defined ones.

    Custom providers, the disabled set and the domain cache are read from
    *storage* on every lookup so edits made elsewhere are picked up.
    """

    def __init__(self, storage: Storage, default_provider: str = DEFAULT_PROVIDER_ID) -> None:
        self._storage = storage
        self._default_provider = default_provider

    @property
    def default_provider_id(self) -> str:
        return self._default_provider

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def custom_providers(self) -> list[ProviderConfig]:
        providers: list[ProviderConfig] = []
        for raw in self._storage.load_custom_providers():
            try:
                providers.append(ProviderConfig.model_validate(raw))
            except ValueError:
                logger.warning("custom_provider_invalid", provider=raw.get("id"))
        return providers

    def all_providers(self) -> list[ProviderConfig]:
        return [*PRESET_PROVIDERS, *self.custom_providers()]

    def resolve_provider(self, provider_id: str | None) -> ProviderConfig:
        """Return the provider for *provider_id*, falling back to the first preset."""
        provider_id = provider_id or self._default_provider
        for provider in self.all_providers():
            if provider.id == provider_id:
                return provider
        logger.debug("provider_unknown", provider=provider_id, fallback=PRESET_PROVIDERS[0].id)
        return PRESET_PROVIDERS[0]

    def infer_provider_from_address(self, email: str) -> str:
        """Guess the provider owning *email* without network I/O."""
        _, _, domain = email.partition("@")
        domain = domain.strip().lower()
        if not domain:
            return self._default_provider

        if domain in KNOWN_DOMAIN_PROVIDERS:
            return KNOWN_DOMAIN_PROVIDERS[domain]

        for cached in self._storage.load_cached_domains():
            if str(cached.get("domain", "")).lower() == domain and cached.get("providerId"):
                return str(cached["providerId"])

        logger.debug("domain_provider_unknown", domain=domain, fallback=self._default_provider)
        return self._default_provider

    def list_enabled_providers(self) -> list[ProviderConfig]:
        disabled = set(self._storage.load_disabled_providers())
        return [p for p in self.all_providers() if p.id not in disabled]

    def enabled_provider_ids(self) -> set[str]:
        return {p.id for p in self.list_enabled_providers()}

    # ------------------------------------------------------------------
    # User-maintained configuration
    # ------------------------------------------------------------------

    def add_custom_provider(self, provider: ProviderConfig) -> None:
        """Add or replace a custom provider.  Preset ids cannot be shadowed."""
        if any(p.id == provider.id for p in PRESET_PROVIDERS):
            raise ValueError(f"Provider id {provider.id!r} is reserved for a preset")
        providers = [p for p in self.custom_providers() if p.id != provider.id]
        providers.append(provider)
        self._storage.save_custom_providers([p.model_dump(by_alias=True) for p in providers])
        logger.info("custom_provider_saved", provider=provider.id)

    def remove_custom_provider(self, provider_id: str) -> None:
        providers = [p for p in self.custom_providers() if p.id != provider_id]
        self._storage.save_custom_providers([p.model_dump(by_alias=True) for p in providers])

    def set_provider_enabled(self, provider_id: str, enabled: bool) -> None:
        disabled = [p for p in self._storage.load_disabled_providers() if p != provider_id]
        if not enabled:
            disabled.append(provider_id)
        self._storage.save_disabled_providers(disabled)

    # ------------------------------------------------------------------
    # Domain cache
    # ------------------------------------------------------------------

    def cache_domains(self, domains: list[Domain]) -> None:
        self._storage.save_cached_domains(
            [{"domain": d.domain, "providerId": d.provider_id} for d in domains]
        )

    def cached_domains(self) -> list[dict[str, Any]]:
        return self._storage.load_cached_domains()
