"""Shared fixtures for the vault test-suite."""
from datetime import datetime, timedelta, timezone

import pytest

from tourguide_vault.cache import TokenCache
from tourguide_vault.vault import InMemoryStore, LocalFileStore, VaultConfig

# cheap scrypt cost so the suite stays fast
TEST_SCRYPT_N = 2 ** 10

START = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable UTC clock for the store."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeMonotonic:
    """Settable monotonic clock for the token cache."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class CountingStore(InMemoryStore):
    """In-memory store that counts vault reads."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.get_calls = 0

    async def get_secret(self, secret_id: str) -> str:
        self.get_calls += 1
        return await super().get_secret(secret_id)


def make_config(**overrides) -> VaultConfig:
    options = {
        "backend": "in-memory",
        "passphrase": "test-passphrase",
        "salt": "test-salt",
        "scrypt_n": TEST_SCRYPT_N,
    }
    options.update(overrides)
    return VaultConfig(**options)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def monotonic():
    return FakeMonotonic()


@pytest.fixture
def config(tmp_path):
    return make_config(vault_path=tmp_path / "vault.enc")


@pytest.fixture
def memory_store(config, clock):
    return InMemoryStore(config, clock=clock)


@pytest.fixture
def local_store(config, clock):
    return LocalFileStore(config, clock=clock)


@pytest.fixture
def counting_store(config, clock):
    return CountingStore(config, clock=clock)


@pytest.fixture
def token_cache(monotonic):
    return TokenCache(ttl=300, clock=monotonic)
