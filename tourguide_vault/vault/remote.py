"""
RemoteStore — the vault envelope kept behind an HTTP endpoint.

This is the pluggable contract for network-backed vaults, not an
integration with any particular secret manager: the endpoint is expected
to return the envelope JSON on ``GET`` (404 when none exists yet) and to
accept a replacement on ``PUT``.

Every request is bounded by a timeout. The default comes from
``VaultConfig.remote_timeout``; callers can tighten it for a block of
operations with :meth:`RemoteStore.request_timeout`. Expired deadlines raise
``BackendTimeoutError``; error statuses and connection failures raise
``BackendError``.
"""
import asyncio
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

import aiohttp

from .config import VaultConfig
from .crypto import dump_envelope, load_envelope, open_envelope, seal_document
from .exceptions import BackendError, BackendTimeoutError, ConfigurationError
from .models import VaultDocument
from .store import Clock, SecretStore

logger = logging.getLogger("tourguide.vault")


class RemoteStore(SecretStore):
    """Secret store whose envelope lives at a remote URL."""

    def __init__(
        self,
        config: VaultConfig,
        *,
        endpoint: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(config, clock=clock)
        self._endpoint = endpoint or config.remote_endpoint
        if not self._endpoint:
            raise ConfigurationError("Remote vault backend requires an endpoint")
        if token is None and config.remote_token is not None:
            token = config.remote_token.get_secret_value()
        self._token = token
        self._timeout = timeout or config.remote_timeout
        self._timeout_override: ContextVar[Optional[float]] = ContextVar(
            "remote_vault_timeout", default=None,
        )

    @property
    def backend_name(self) -> str:
        return f"remote:{self._endpoint}"

    @contextmanager
    def request_timeout(self, seconds: float) -> Iterator[None]:
        """Bound every request made inside the block by ``seconds``."""
        if seconds <= 0:
            raise ValueError("timeout must be positive")
        token = self._timeout_override.set(seconds)
        try:
            yield
        finally:
            self._timeout_override.reset(token)

    async def _request(self, method: str, data: Optional[bytes] = None) -> Optional[bytes]:
        seconds = self._timeout_override.get() or self._timeout
        headers = {"Content-Type": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=seconds),
            ) as session:
                async with session.request(
                    method, self._endpoint, data=data, headers=headers,
                ) as response:
                    if method == "GET" and response.status == 404:
                        return None
                    response.raise_for_status()
                    return await response.read()
        except asyncio.TimeoutError as err:
            raise BackendTimeoutError(
                f"Remote vault {method} exceeded {seconds}s deadline"
            ) from err
        except aiohttp.ClientResponseError as err:
            raise BackendError(
                f"Remote vault {method} failed with HTTP {err.status}"
            ) from err
        except aiohttp.ClientError as err:
            raise BackendError(
                f"Remote vault {method} failed: {type(err).__name__}"
            ) from err

    async def _load(self, envelope_key: bytes) -> Optional[VaultDocument]:
        body = await self._request("GET")
        if body is None:
            return None
        return open_envelope(load_envelope(body), envelope_key)

    async def _write(self, document: VaultDocument, envelope_key: bytes) -> None:
        await self._request("PUT", dump_envelope(seal_document(document, envelope_key)))
        logger.debug("Remote vault written: %s", self._endpoint)
