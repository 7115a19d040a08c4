"""Factory for creating secret store instances.

The backend is chosen once, from ``VaultConfig.backend``, when the store is
built; stores never re-check it per call.
"""
import logging
from typing import Optional

from .config import VaultBackend, VaultConfig
from .local import LocalFileStore
from .remote import RemoteStore
from .store import Clock, InMemoryStore, SecretStore

logger = logging.getLogger("tourguide.vault")

_BACKENDS: dict[VaultBackend, type[SecretStore]] = {
    VaultBackend.LOCAL: LocalFileStore,
    VaultBackend.MEMORY: InMemoryStore,
    VaultBackend.REMOTE: RemoteStore,
}


def create_store(config: VaultConfig, *, clock: Optional[Clock] = None) -> SecretStore:
    """Build the secret store selected by ``config.backend``.

    Args:
        config: Validated vault configuration.
        clock: Optional replacement for the UTC clock (tests).

    Returns:
        An uninitialized SecretStore.
    """
    store_cls = _BACKENDS[config.backend]
    logger.info("Using %s for vault backend %r", store_cls.__name__, config.backend.value)
    return store_cls(config, clock=clock)
