"""Tests for tempmail_client.providers."""

from __future__ import annotations

import pytest

from tempmail_client.models import Domain, ProviderConfig
from tempmail_client.providers import (
    PRESET_PROVIDERS,
    ProviderRegistry,
    domains_from_payload,
)
from tempmail_client.storage import MemoryStorage


class TestResolveProvider:
    def test_presets(self, registry: ProviderRegistry):
        assert registry.resolve_provider("duckmail").base_url == "https://api.duckmail.sbs"
        assert registry.resolve_provider("mailtm").base_url == "https://api.mail.tm"

    def test_none_uses_default(self, registry: ProviderRegistry):
        assert registry.resolve_provider(None).id == "duckmail"

    def test_unknown_falls_back_to_first_preset(self, registry: ProviderRegistry):
        assert registry.resolve_provider("nope") == PRESET_PROVIDERS[0]

    def test_custom_provider(self, registry: ProviderRegistry):
        registry.add_custom_provider(ProviderConfig(id="self", name="Self", base_url="https://mail.local"))
        assert registry.resolve_provider("self").base_url == "https://mail.local"

    def test_custom_cannot_shadow_preset(self, registry: ProviderRegistry):
        with pytest.raises(ValueError):
            registry.add_custom_provider(ProviderConfig(id="mailtm", name="X", base_url="https://x"))

    def test_custom_replace_and_remove(self, registry: ProviderRegistry):
        registry.add_custom_provider(ProviderConfig(id="self", name="One", base_url="https://one"))
        registry.add_custom_provider(ProviderConfig(id="self", name="Two", base_url="https://two"))
        assert [p.name for p in registry.custom_providers()] == ["Two"]

        registry.remove_custom_provider("self")
        assert registry.custom_providers() == []


class TestInferProvider:
    def test_known_domain_table(self, registry: ProviderRegistry):
        assert registry.infer_provider_from_address("someone@1secmail.com") == "mailtm"

    def test_cached_domain(self, registry: ProviderRegistry):
        registry.cache_domains([Domain(domain="Cached.Example", provider_id="mailtm")])
        assert registry.infer_provider_from_address("a@cached.example") == "mailtm"

    def test_unknown_domain_uses_default(self, registry: ProviderRegistry):
        assert registry.infer_provider_from_address("a@nowhere.test") == "duckmail"

    def test_malformed_address(self, registry: ProviderRegistry):
        assert registry.infer_provider_from_address("no-at-sign") == "duckmail"

    def test_configured_default(self, storage: MemoryStorage):
        registry = ProviderRegistry(storage, default_provider="mailtm")
        assert registry.infer_provider_from_address("a@nowhere.test") == "mailtm"


class TestEnabledProviders:
    def test_mailtm_disabled_by_default(self, registry: ProviderRegistry):
        assert [p.id for p in registry.list_enabled_providers()] == ["duckmail"]

    def test_enable_and_disable(self, registry: ProviderRegistry):
        registry.set_provider_enabled("mailtm", True)
        assert registry.enabled_provider_ids() == {"duckmail", "mailtm"}

        registry.set_provider_enabled("duckmail", False)
        assert registry.enabled_provider_ids() == {"mailtm"}


class TestDomainsFromPayload:
    def test_duckmail_filters_unverified_and_inactive(self):
        members = [
            {"id": "1", "domainName": "good.sbs", "isVerified": True, "isActive": True, "isPublic": True},
            {"id": "2", "domainName": "pending.sbs", "isVerified": False, "isActive": True},
            {"id": "3", "domainName": "off.sbs", "isVerified": True, "isActive": False},
            {"id": "4", "domainName": "mine.sbs", "isVerified": True, "isActive": True, "isPublic": False},
        ]
        domains = domains_from_payload("duckmail", members)

        assert [d.domain for d in domains] == ["good.sbs", "mine.sbs"]
        assert [d.is_private for d in domains] == [False, True]
        assert all(d.provider_id == "duckmail" for d in domains)

    def test_other_providers_keep_all(self):
        members = [
            {"id": "1", "domain": "mail.tm", "isActive": True, "isPrivate": False},
            {"id": "2", "domain": "old.tm", "isActive": False, "isPrivate": False},
        ]
        domains = domains_from_payload("mailtm", members)
        assert [d.domain for d in domains] == ["mail.tm", "old.tm"]

    def test_entries_without_domain_dropped(self):
        assert domains_from_payload("mailtm", [{"id": "1"}, "junk"]) == []
