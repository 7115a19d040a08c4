"""
TokenProvider — the entry point the rest of the application uses for secrets.

Maps logical service names ("openai", "auth_jwt", ...) to vault secret
ids, serves tokens through a short-TTL cache, and falls back to the legacy
environment variables for services that have not been moved into the
vault yet.

Lookup order for ``get_token()``: cache → vault → legacy environment.
"""
import os
import asyncio
import logging
from collections.abc import Mapping
from typing import NamedTuple, Optional

from .cache import TokenCache
from .vault.config import VaultConfig
from .vault.exceptions import NotFoundError
from .vault.factory import create_store
from .vault.models import RotationReport, SecretSummary
from .vault.rotation import SecretType
from .vault.store import Clock, SecretStore

logger = logging.getLogger("tourguide.vault")


class ServiceDefinition(NamedTuple):
    """How a logical service maps onto the vault and legacy configuration."""

    env_var: str
    secret_type: SecretType


SERVICES: dict[str, ServiceDefinition] = {
    "openai": ServiceDefinition("OPENAI_API_KEY", SecretType.API_KEY),
    "google_maps": ServiceDefinition("GOOGLE_MAPS_API_KEY", SecretType.API_KEY),
    "auth_jwt": ServiceDefinition("JWT_SECRET", SecretType.JWT_SECRET),
    "data_encryption": ServiceDefinition("ENCRYPTION_KEY", SecretType.ENCRYPTION_KEY),
    "sendgrid": ServiceDefinition("SENDGRID_API_KEY", SecretType.API_KEY),
}


# metadata source tag on records created through the provider
PROVIDER_SOURCE = "provider"
ENVIRONMENT_SOURCE = "environment_import"


def _printable(service_name: str) -> str:
    """Strip line breaks so caller-supplied names cannot forge log lines."""
    return service_name.replace("\n", "").replace("\r", "")


class TokenProvider:
    """Cached, service-oriented façade over a :class:`SecretStore`.

    Build one per process (see :func:`build_token_provider`) and pass it to
    whatever needs tokens.
    """

    def __init__(
        self,
        store: SecretStore,
        cache: Optional[TokenCache] = None,
        *,
        import_env_secrets: bool = False,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self._store = store
        self._cache = cache if cache is not None else TokenCache()
        self._import_env_secrets = import_env_secrets
        self._environ = os.environ if environ is None else environ
        self._mapping: dict[str, str] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()
        self._write_lock = asyncio.Lock()

    @property
    def store(self) -> SecretStore:
        return self._store

    @property
    def cache(self) -> TokenCache:
        return self._cache

    @property
    def mapped_services(self) -> dict[str, str]:
        """Copy of the current ``service_name -> secret_id`` mapping."""
        return dict(self._mapping)

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Initialize the store and build the service mapping. Idempotent."""
        async with self._init_lock:
            if self._initialized:
                return
            await self._store.initialize()
            await self._load_mappings()
            if self._import_env_secrets:
                await self._import_from_environment()
            self._initialized = True
            logger.info(
                "Token provider initialized: %d mapped service(s)", len(self._mapping),
            )

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    async def _load_mappings(self) -> None:
        """Map each service to its newest non-superseded secret.

        Known services match by name; any other name is mapped only when the
        record was created through the provider.
        """
        chosen: dict[str, SecretSummary] = {}
        for summary in await self._store.list_secrets():
            if summary.rotated_to:
                continue
            if (
                summary.name not in SERVICES
                and summary.extra.get("source") != PROVIDER_SOURCE
            ):
                continue
            current = chosen.get(summary.name)
            if current is None or summary.created_at >= current.created_at:
                chosen[summary.name] = summary
        self._mapping = {name: s.secret_id for name, s in chosen.items()}

    async def _import_from_environment(self) -> list[dict[str, str]]:
        imported = []
        for service_name, service in SERVICES.items():
            value = self._environ.get(service.env_var)
            if not value or service_name in self._mapping:
                continue
            secret_id = await self._store.store_secret(
                service.secret_type,
                service_name,
                value,
                {"source": ENVIRONMENT_SOURCE},
            )
            self._mapping[service_name] = secret_id
            imported.append({"name": service_name, "secret_id": secret_id})
        if imported:
            logger.info(
                "Imported %d secret(s) from environment: %s",
                len(imported), [item["name"] for item in imported],
            )
        return imported

    async def import_from_environment(self) -> list[dict[str, str]]:
        """Copy legacy environment values into the vault.

        Services that already have a vault secret are skipped.

        Returns:
            ``[{"name": service_name, "secret_id": id}, ...]`` for each import.
        """
        await self._ensure_initialized()
        async with self._write_lock:
            return await self._import_from_environment()

    # ------------------------------------------------------------------
    # Token access
    # ------------------------------------------------------------------

    def _legacy_lookup(self, service_name: str) -> Optional[str]:
        service = SERVICES.get(service_name)
        if service is None:
            return None
        return self._environ.get(service.env_var) or None

    async def get_token(self, service_name: str) -> str:
        """Return the token for a service.

        Raises:
            NotFoundError: If neither the vault nor the legacy environment has it.
            DecryptionError: If the vault copy does not authenticate.
        """
        await self._ensure_initialized()
        cached = self._cache.get(service_name)
        if cached is not None:
            return cached

        secret_id = self._mapping.get(service_name)
        if secret_id is not None:
            try:
                token = await self._store.get_secret(secret_id)
            except NotFoundError:
                logger.warning(
                    "Mapped secret for %s is gone (id=%s); trying legacy configuration",
                    _printable(service_name), secret_id,
                )
                if self._mapping.get(service_name) == secret_id:
                    del self._mapping[service_name]
            else:
                self._cache.put(service_name, token)
                return token

        token = self._legacy_lookup(service_name)
        if token is not None:
            logger.debug("Serving %s from legacy configuration", _printable(service_name))
            self._cache.put(service_name, token)
            return token

        raise NotFoundError(f"Token not found for service: {_printable(service_name)}")

    async def get_openai_token(self) -> str:
        return await self.get_token("openai")

    async def get_google_maps_token(self) -> str:
        return await self.get_token("google_maps")

    async def get_jwt_secret(self) -> str:
        return await self.get_token("auth_jwt")

    async def get_encryption_key(self) -> str:
        return await self.get_token("data_encryption")

    async def get_sendgrid_token(self) -> str:
        return await self.get_token("sendgrid")

    async def store_token(self, service_name: str, token: str) -> str:
        """Store (or replace) the token for a service.

        Returns:
            The secret id now mapped to the service.
        """
        await self._ensure_initialized()
        service = SERVICES.get(service_name)
        secret_type = service.secret_type if service else SecretType.API_KEY
        async with self._write_lock:
            secret_id = self._mapping.get(service_name)
            if secret_id is not None:
                await self._store.update_secret(secret_id, token)
            else:
                secret_id = await self._store.store_secret(
                    secret_type, service_name, token, {"source": PROVIDER_SOURCE},
                )
                self._mapping[service_name] = secret_id
            self._cache.put(service_name, token)
        logger.info("Stored token for %s (id=%s)", _printable(service_name), secret_id)
        return secret_id

    async def rotate_token(self, service_name: str, new_token: str) -> str:
        """Rotate the token for a mapped service.

        Returns:
            The successor secret id.

        Raises:
            NotFoundError: If the service has no vault secret.
        """
        await self._ensure_initialized()
        async with self._write_lock:
            secret_id = self._mapping.get(service_name)
            if secret_id is None:
                raise NotFoundError(
                    f"No existing token found for {_printable(service_name)}"
                )
            new_id = await self._store.rotate_secret(secret_id, new_token)
            self._mapping[service_name] = new_id
            self._cache.put(service_name, new_token)
        logger.info(
            "Rotated token for %s (id=%s -> id=%s)",
            _printable(service_name), secret_id, new_id,
        )
        return new_id

    async def delete_token(self, service_name: str) -> None:
        """Delete a service's vault secret and unmap it.

        Raises:
            NotFoundError: If the service has no vault secret.
        """
        await self._ensure_initialized()
        async with self._write_lock:
            secret_id = self._mapping.get(service_name)
            if secret_id is None:
                raise NotFoundError(
                    f"No existing token found for {_printable(service_name)}"
                )
            await self._store.delete_secret(secret_id)
            del self._mapping[service_name]
            self._cache.invalidate(service_name)
        logger.info("Deleted token for %s (id=%s)", _printable(service_name), secret_id)

    async def get_tokens_needing_rotation(self) -> list[RotationReport]:
        """Mapped services whose vault secret is due for rotation.

        Secrets not mapped to a service are left out.
        """
        await self._ensure_initialized()
        services_by_id = {secret_id: name for name, secret_id in self._mapping.items()}
        return [
            RotationReport(
                service_name=services_by_id[summary.secret_id],
                secret_id=summary.secret_id,
                last_used=summary.last_used,
                rotation_due=summary.rotation_due,
            )
            for summary in await self._store.get_secrets_needing_rotation()
            if summary.secret_id in services_by_id
        ]


def build_token_provider(
    config: Optional[VaultConfig] = None,
    *,
    clock: Optional[Clock] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> TokenProvider:
    """Construct the store, cache and provider for one process.

    Args:
        config: Vault configuration; read from the environment when omitted.
        clock: Optional replacement for the store's UTC clock (tests).
        environ: Mapping used for legacy lookups instead of ``os.environ``.

    Returns:
        An uninitialized TokenProvider; call ``initialize()`` at startup.
    """
    if config is None:
        config = VaultConfig.from_env(environ)
    return TokenProvider(
        create_store(config, clock=clock),
        TokenCache(ttl=config.token_cache_ttl),
        import_env_secrets=config.import_env_secrets,
        environ=environ,
    )
