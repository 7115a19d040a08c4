"""
Tests for the TokenProvider façade.

Tests cover:
- cache behaviour in front of the vault
- legacy environment fallback
- store / rotate / delete through service names
- rotation reporting for mapped services only
"""
import asyncio
from datetime import timedelta

import pytest

from tourguide_vault.cache import TokenCache
from tourguide_vault.provider import SERVICES, TokenProvider, build_token_provider
from tourguide_vault.vault import InMemoryStore, LocalFileStore
from tourguide_vault.vault.exceptions import DecryptionError, NotFoundError
from tourguide_vault.vault.rotation import SecretType

from conftest import START, TEST_SCRYPT_N, make_config


@pytest.fixture
def environ():
    return {}


@pytest.fixture
def provider(counting_store, token_cache, environ):
    return TokenProvider(counting_store, token_cache, environ=environ)


class TestGetToken:
    @pytest.mark.asyncio
    async def test_cache_hits_store_once_per_ttl(self, provider, counting_store, monotonic):
        await provider.store_token("openai", "sk-test")
        provider.cache.clear()

        assert await provider.get_token("openai") == "sk-test"
        assert await provider.get_token("openai") == "sk-test"
        assert counting_store.get_calls == 1

        monotonic.advance(301)
        assert await provider.get_token("openai") == "sk-test"
        assert counting_store.get_calls == 2

    @pytest.mark.asyncio
    async def test_store_token_primes_cache(self, provider, counting_store):
        await provider.store_token("openai", "sk-test")
        assert await provider.get_token("openai") == "sk-test"
        assert counting_store.get_calls == 0

    @pytest.mark.asyncio
    async def test_legacy_environment_fallback(self, provider, environ):
        environ["SENDGRID_API_KEY"] = "SG.legacy"
        assert await provider.get_token("sendgrid") == "SG.legacy"

    @pytest.mark.asyncio
    async def test_vault_wins_over_legacy(self, provider, environ):
        environ["OPENAI_API_KEY"] = "sk-legacy"
        await provider.store_token("openai", "sk-vault")
        provider.cache.clear()
        assert await provider.get_token("openai") == "sk-vault"

    @pytest.mark.asyncio
    async def test_missing_everything(self, provider):
        with pytest.raises(NotFoundError):
            await provider.get_token("unknown_service")
        with pytest.raises(NotFoundError):
            await provider.get_token("openai")

    @pytest.mark.asyncio
    async def test_empty_legacy_value_is_missing(self, provider, environ):
        environ["OPENAI_API_KEY"] = ""
        with pytest.raises(NotFoundError):
            await provider.get_token("openai")

    @pytest.mark.asyncio
    async def test_deleted_secret_falls_back_to_legacy(self, provider, counting_store, environ):
        secret_id = await provider.store_token("openai", "sk-vault")
        await counting_store.delete_secret(secret_id)
        provider.cache.clear()
        environ["OPENAI_API_KEY"] = "sk-legacy"

        assert await provider.get_token("openai") == "sk-legacy"
        assert "openai" not in provider.mapped_services

    @pytest.mark.asyncio
    async def test_decryption_error_is_not_swallowed(self, provider, counting_store, environ):
        secret_id = await provider.store_token("openai", "sk-vault")
        counting_store._document.secrets[secret_id].encrypted_data.auth_tag = "00" * 16
        provider.cache.clear()
        environ["OPENAI_API_KEY"] = "sk-legacy"

        with pytest.raises(DecryptionError):
            await provider.get_token("openai")

    @pytest.mark.asyncio
    async def test_stale_token_is_still_served(self, provider, clock, monotonic):
        await provider.store_token("openai", "sk-test")
        clock.advance(days=120)
        monotonic.advance(301)
        assert await provider.get_token("openai") == "sk-test"


class TestStoreToken:
    @pytest.mark.asyncio
    async def test_store_creates_mapping(self, provider, counting_store):
        secret_id = await provider.store_token("openai", "sk-test")
        assert provider.mapped_services == {"openai": secret_id}
        assert await counting_store.get_secret(secret_id) == "sk-test"

    @pytest.mark.asyncio
    async def test_store_again_updates_in_place(self, provider, counting_store):
        first = await provider.store_token("openai", "sk-1")
        second = await provider.store_token("openai", "sk-2")
        assert first == second
        assert await provider.get_token("openai") == "sk-2"
        assert len(await counting_store.list_secrets()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "service_name,secret_type",
        [
            ("openai", SecretType.API_KEY),
            ("auth_jwt", SecretType.JWT_SECRET),
            ("data_encryption", SecretType.ENCRYPTION_KEY),
            ("weather", SecretType.API_KEY),
        ],
    )
    async def test_secret_type_per_service(self, provider, counting_store, service_name, secret_type):
        secret_id = await provider.store_token(service_name, "value")
        stats = await counting_store.get_secret_stats(secret_id)
        assert stats.type is secret_type

    @pytest.mark.asyncio
    async def test_concurrent_stores_create_one_secret(self, provider, counting_store):
        await asyncio.gather(*(provider.store_token("openai", f"sk-{i}") for i in range(10)))
        assert len(await counting_store.list_secrets()) == 1


class TestRotateToken:
    @pytest.mark.asyncio
    async def test_rotate_remaps_and_recaches(self, provider, counting_store):
        old_id = await provider.store_token("openai", "sk-old")
        new_id = await provider.rotate_token("openai", "sk-new")

        assert new_id != old_id
        assert provider.mapped_services["openai"] == new_id
        assert await provider.get_token("openai") == "sk-new"
        assert counting_store.get_calls == 0
        old = await counting_store.get_secret_stats(old_id)
        assert old.rotated_to == new_id

    @pytest.mark.asyncio
    async def test_rotate_unmapped_service(self, provider, environ):
        environ["OPENAI_API_KEY"] = "sk-legacy"
        with pytest.raises(NotFoundError):
            await provider.rotate_token("openai", "sk-new")

    @pytest.mark.asyncio
    async def test_state_cycle(self, provider, clock):
        await provider.store_token("auth_jwt", "jwt-1")
        await provider.store_token("openai", "sk-1")
        assert await provider.get_tokens_needing_rotation() == []

        clock.advance(days=91)
        due = await provider.get_tokens_needing_rotation()
        assert [r.service_name for r in due] == ["openai"]

        await provider.rotate_token("openai", "sk-2")
        assert await provider.get_tokens_needing_rotation() == []

        await provider.delete_token("openai")
        assert "openai" not in provider.mapped_services
        with pytest.raises(NotFoundError):
            await provider.get_token("openai")


class TestRotationReport:
    @pytest.mark.asyncio
    async def test_only_mapped_secrets_reported(self, provider, counting_store, clock):
        secret_id = await provider.store_token("openai", "sk-test")
        await counting_store.store_secret("api_key", "misc_partner", "unmapped")
        clock.advance(days=90)

        report = await provider.get_tokens_needing_rotation()
        assert len(report) == 1
        entry = report[0]
        assert entry.service_name == "openai"
        assert entry.secret_id == secret_id
        assert entry.last_used == START
        assert entry.rotation_due == START + timedelta(days=90)


class TestInitialize:
    @pytest.mark.asyncio
    async def test_mapping_built_from_existing_secrets(self, counting_store, token_cache):
        jwt_id = await counting_store.store_secret("jwt_secret", "auth_jwt", "jwt-1")
        await counting_store.store_secret("api_key", "not_a_service", "x")

        provider = TokenProvider(counting_store, token_cache, environ={})
        await provider.initialize()
        assert provider.mapped_services == {"auth_jwt": jwt_id}
        assert await provider.get_token("auth_jwt") == "jwt-1"

    @pytest.mark.asyncio
    async def test_superseded_secrets_not_mapped(self, counting_store, token_cache):
        old_id = await counting_store.store_secret("api_key", "openai", "sk-old")
        new_id = await counting_store.rotate_secret(old_id, "sk-new")

        provider = TokenProvider(counting_store, token_cache, environ={})
        await provider.initialize()
        assert provider.mapped_services == {"openai": new_id}

    @pytest.mark.asyncio
    async def test_mapping_survives_restart(self, tmp_path, clock, monotonic):
        config = make_config(backend="local", vault_path=tmp_path / "vault.enc")
        first = TokenProvider(LocalFileStore(config, clock=clock), environ={})
        await first.store_token("google_maps", "maps-1")
        await first.rotate_token("google_maps", "maps-2")

        second = TokenProvider(
            LocalFileStore(config, clock=clock), TokenCache(clock=monotonic), environ={},
        )
        assert await second.get_token("google_maps") == "maps-2"

    @pytest.mark.asyncio
    async def test_custom_service_survives_restart(self, tmp_path, clock, monotonic):
        config = make_config(backend="local", vault_path=tmp_path / "vault.enc")
        first = TokenProvider(LocalFileStore(config, clock=clock), environ={})
        secret_id = await first.store_token("stripe", "sk-stripe-1")

        second = TokenProvider(
            LocalFileStore(config, clock=clock), TokenCache(clock=monotonic), environ={},
        )
        assert await second.get_token("stripe") == "sk-stripe-1"
        assert await second.store_token("stripe", "sk-stripe-2") == secret_id
        assert len(await second.store.list_secrets()) == 1
        new_id = await second.rotate_token("stripe", "sk-stripe-3")

        third = TokenProvider(
            LocalFileStore(config, clock=clock), TokenCache(clock=monotonic), environ={},
        )
        await third.initialize()
        assert third.mapped_services == {"stripe": new_id}
        assert await third.get_token("stripe") == "sk-stripe-3"

    @pytest.mark.asyncio
    async def test_initialize_is_idempotent(self, provider, counting_store, monkeypatch):
        calls = []
        real_list = counting_store.list_secrets

        async def counting_list(*args, **kwargs):
            calls.append(1)
            return await real_list(*args, **kwargs)

        monkeypatch.setattr(counting_store, "list_secrets", counting_list)
        await asyncio.gather(*(provider.initialize() for _ in range(5)))
        await provider.initialize()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_import_from_environment(self, counting_store, token_cache):
        environ = {"OPENAI_API_KEY": "sk-env", "JWT_SECRET": "jwt-env", "UNRELATED": "x"}
        provider = TokenProvider(
            counting_store, token_cache, import_env_secrets=True, environ=environ,
        )
        await provider.initialize()

        assert set(provider.mapped_services) == {"openai", "auth_jwt"}
        summaries = {s.name: s for s in await counting_store.list_secrets()}
        assert summaries["auth_jwt"].type is SecretType.JWT_SECRET
        record = counting_store._document.secrets[provider.mapped_services["openai"]]
        assert record.metadata.extra == {"source": "environment_import"}
        assert await provider.get_token("openai") == "sk-env"

    @pytest.mark.asyncio
    async def test_import_skips_mapped_services(self, provider, counting_store, environ):
        await provider.store_token("openai", "sk-vault")
        environ["OPENAI_API_KEY"] = "sk-env"
        environ["SENDGRID_API_KEY"] = "SG.env"

        imported = await provider.import_from_environment()
        assert [item["name"] for item in imported] == ["sendgrid"]
        assert len(await counting_store.list_secrets()) == 2


class TestBuildTokenProvider:
    @pytest.mark.asyncio
    async def test_build_from_environment(self):
        environ = {
            "VAULT_BACKEND": "in-memory",
            "VAULT_ENCRYPTION_KEY": "test-passphrase",
            "VAULT_SALT": "test-salt",
            "VAULT_SCRYPT_N": str(TEST_SCRYPT_N),
            "TOKEN_CACHE_TTL": "60",
            "SENDGRID_API_KEY": "SG.legacy",
        }
        provider = build_token_provider(environ=environ)
        assert isinstance(provider.store, InMemoryStore)
        assert provider.cache.ttl == 60
        assert await provider.get_token("sendgrid") == "SG.legacy"

    def test_known_services(self):
        assert set(SERVICES) == {
            "openai", "google_maps", "auth_jwt", "data_encryption", "sendgrid",
        }


class TestServiceShortcuts:
    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "method,service_name",
        [
            ("get_openai_token", "openai"),
            ("get_google_maps_token", "google_maps"),
            ("get_jwt_secret", "auth_jwt"),
            ("get_encryption_key", "data_encryption"),
            ("get_sendgrid_token", "sendgrid"),
        ],
    )
    async def test_shortcut_reads_its_service(self, provider, method, service_name):
        await provider.store_token(service_name, f"{service_name}-value")
        assert await getattr(provider, method)() == f"{service_name}-value"

    @pytest.mark.asyncio
    async def test_shortcut_uses_legacy_fallback(self, provider, environ):
        environ["JWT_SECRET"] = "jwt-legacy"
        assert await provider.get_jwt_secret() == "jwt-legacy"
