"""
SecretStore — Encrypted secret records with usage tracking and rotation.

Provides the backend-agnostic store API:
- ``store_secret(type, name, value)`` — encrypt and persist a new secret
- ``get_secret(secret_id)`` — decrypt a secret and record the access
- ``update_secret`` / ``rotate_secret`` / ``delete_secret`` — lifecycle
- ``list_secrets()`` / ``get_secrets_needing_rotation()`` — metadata only

Backends subclass :class:`SecretStore` and only implement loading and
writing of the whole vault document.

Security Note:
    Never log plaintext or ciphertext values. Only log secret ids, types,
    names and counts. Decrypted values exist in process memory only for the
    duration of the call that returns them.
"""
import asyncio
import logging
import secrets
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Optional, Union

from .config import VaultConfig
from .crypto import (
    ENVELOPE_CONTEXT,
    SECRET_CONTEXT,
    decrypt_text,
    derive_key,
    derive_subkey,
    encrypt,
)
from .exceptions import ConfigurationError, DecryptionError, NotFoundError
from .models import (
    MANAGED_METADATA_KEYS,
    RotationEvent,
    SecretMetadata,
    SecretRecord,
    SecretSummary,
    VaultDocument,
)
from .rotation import (
    SecretType,
    calculate_next_rotation_date,
    days_until_rotation,
    is_rotation_needed,
    type_name,
    utcnow,
)

logger = logging.getLogger("tourguide.vault")

Clock = Callable[[], datetime]


def _rotation_pending(meta: SecretMetadata, now: datetime) -> bool:
    return meta.rotated_to is None and is_rotation_needed(meta.rotation_due, now)


def _check_metadata(metadata: Optional[dict[str, Any]]) -> dict[str, Any]:
    """Reject caller metadata that would overwrite managed bookkeeping."""
    if not metadata:
        return {}
    reserved = sorted(MANAGED_METADATA_KEYS.intersection(metadata))
    if reserved:
        raise ValueError(f"Metadata keys are managed by the vault: {reserved}")
    return dict(metadata)


class SecretStore(ABC):
    """Encrypted store of secret records.

    The whole vault is held decrypted-at-the-envelope-level in memory as a
    :class:`VaultDocument`; individual secret values stay encrypted with
    their own IV until :meth:`get_secret` is called.

    Every operation runs under one per-instance lock covering
    decrypt → mutate → encrypt → write. Mutations are applied to a working
    copy of the document which only replaces the live one after the backend
    write succeeds.
    """

    def __init__(self, config: VaultConfig, *, clock: Optional[Clock] = None):
        self._config = config
        self._clock: Clock = clock or utcnow
        self._lock = asyncio.Lock()
        self._initialized = False
        self._document: Optional[VaultDocument] = None
        self._secret_key: Optional[bytes] = None
        self._envelope_key: Optional[bytes] = None

    # ------------------------------------------------------------------
    # Backend hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _load(self, envelope_key: bytes) -> Optional[VaultDocument]:
        """Read and decrypt the vault; return None if none exists yet."""

    @abstractmethod
    async def _write(self, document: VaultDocument, envelope_key: bytes) -> None:
        """Encrypt and persist the whole vault."""

    @property
    def backend_name(self) -> str:
        return type(self).__name__

    # ------------------------------------------------------------------
    # Initialization
    # ------------------------------------------------------------------

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def _derive_keys(self, passphrase: Optional[str], salt: Optional[str]) -> tuple[bytes, bytes]:
        """Run scrypt off the event loop and split the result per purpose."""
        master_key = await asyncio.to_thread(
            derive_key,
            passphrase,
            salt,
            n=self._config.scrypt_n,
            r=self._config.scrypt_r,
            p=self._config.scrypt_p,
        )
        return (
            derive_subkey(master_key, SECRET_CONTEXT),
            derive_subkey(master_key, ENVELOPE_CONTEXT),
        )

    async def initialize(self) -> None:
        """Derive keys and load (or create) the vault. Idempotent.

        Raises:
            ConfigurationError: If the passphrase or salt is missing.
            DecryptionError: If an existing vault cannot be authenticated.
        """
        async with self._lock:
            if self._initialized:
                return
            passphrase = self._config.passphrase
            if passphrase is None:
                raise ConfigurationError("Vault encryption configuration missing")
            secret_key, envelope_key = await self._derive_keys(
                passphrase.get_secret_value(), self._config.salt,
            )
            document = await self._load(envelope_key)
            self._secret_key = secret_key
            self._envelope_key = envelope_key
            if document is None:
                document = VaultDocument.empty(self._clock())
                await self._write(document, envelope_key)
                logger.info("Created new vault (%s)", self.backend_name)
            self._document = document
            self._initialized = True
            logger.info(
                "Vault initialized (%s): %d secret(s)",
                self.backend_name, len(document.secrets),
            )

    async def _ensure_initialized(self) -> None:
        if not self._initialized:
            await self.initialize()

    # ------------------------------------------------------------------
    # Internal helpers (call with the lock held)
    # ------------------------------------------------------------------

    def _working_copy(self) -> VaultDocument:
        return self._document.model_copy(deep=True)

    @staticmethod
    def _require(document: VaultDocument, secret_id: str) -> SecretRecord:
        record = document.secrets.get(secret_id)
        if record is None:
            raise NotFoundError(f"Secret not found: {secret_id}")
        return record

    def _new_secret_id(self, document: VaultDocument) -> str:
        while True:
            secret_id = secrets.token_hex(8)
            if secret_id not in document.secrets:
                return secret_id

    async def _commit(self, document: VaultDocument, now: datetime) -> None:
        document.metadata.updated_at = now
        await self._write(document, self._envelope_key)
        self._document = document

    def _summary(self, secret_id: str, record: SecretRecord, now: datetime) -> SecretSummary:
        meta = record.metadata
        return SecretSummary(
            secret_id=secret_id,
            type=record.type,
            name=record.name,
            created_at=meta.created_at,
            updated_at=meta.updated_at,
            last_used=meta.last_used,
            usage_count=meta.usage_count,
            rotation_due=meta.rotation_due,
            needs_rotation=_rotation_pending(meta, now),
            days_until_rotation=days_until_rotation(meta.rotation_due, now),
            rotated_to=meta.rotated_to,
            rotated_from=meta.rotated_from,
            extra=meta.extra,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def store_secret(
        self,
        secret_type: Union[SecretType, str],
        name: str,
        value: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Encrypt and persist a new secret.

        Args:
            secret_type: One of :class:`SecretType`; decides the rotation interval.
            name: Logical label (e.g. "openai").
            value: Secret value to encrypt.
            metadata: Extra caller metadata stored with the record.

        Returns:
            The new secret id.

        Raises:
            ValueError: If the type is unknown or metadata uses managed keys.
        """
        secret_type = SecretType(secret_type)
        extra = _check_metadata(metadata)
        await self._ensure_initialized()
        async with self._lock:
            document = self._working_copy()
            now = self._clock()
            secret_id = self._new_secret_id(document)
            document.secrets[secret_id] = SecretRecord(
                type=secret_type,
                name=name,
                encrypted_data=encrypt(value, self._secret_key),
                metadata=SecretMetadata(
                    created_at=now,
                    updated_at=now,
                    last_used=now,
                    usage_count=0,
                    rotation_due=calculate_next_rotation_date(secret_type, now),
                    **extra,
                ),
            )
            await self._commit(document, now)
        logger.debug(
            "Vault store: id=%s type=%s name=%s", secret_id, secret_type.value, name,
        )
        return secret_id

    async def get_secret(self, secret_id: str) -> str:
        """Decrypt and return a secret, recording the access.

        Past-due secrets are still returned; a warning is logged.

        Raises:
            NotFoundError: If the id is unknown.
            DecryptionError: If the stored payload does not authenticate.
        """
        await self._ensure_initialized()
        async with self._lock:
            document = self._working_copy()
            record = self._require(document, secret_id)
            value = decrypt_text(record.encrypted_data, self._secret_key)
            now = self._clock()
            record.metadata.last_used = now
            record.metadata.usage_count += 1
            await self._commit(document, now)
        if _rotation_pending(record.metadata, now):
            logger.warning(
                "Secret needs rotation: id=%s type=%s name=%s due=%s",
                secret_id, type_name(record.type), record.name,
                record.metadata.rotation_due.isoformat(),
            )
        return value

    async def update_secret(
        self,
        secret_id: str,
        new_value: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> None:
        """Re-encrypt a secret in place and push its rotation due date out.

        Raises:
            NotFoundError: If the id is unknown.
            ValueError: If metadata uses managed keys.
        """
        extra = _check_metadata(metadata)
        await self._ensure_initialized()
        async with self._lock:
            document = self._working_copy()
            record = self._require(document, secret_id)
            now = self._clock()
            record.encrypted_data = encrypt(new_value, self._secret_key)
            record.metadata = SecretMetadata.model_validate({
                **record.metadata.model_dump(),
                **extra,
                "updated_at": now,
                "rotation_due": calculate_next_rotation_date(record.type, now),
            })
            await self._commit(document, now)
        logger.debug("Vault update: id=%s", secret_id)

    async def rotate_secret(self, secret_id: str, new_value: str) -> str:
        """Supersede a secret with a new record holding ``new_value``.

        The old record is kept, gains a rotation history entry and points to
        its successor through ``rotated_to``; the successor points back
        through ``rotated_from``.

        Returns:
            The successor's secret id.

        Raises:
            NotFoundError: If the id is unknown.
            ValueError: If the secret was already rotated.
        """
        await self._ensure_initialized()
        async with self._lock:
            document = self._working_copy()
            old = self._require(document, secret_id)
            if old.metadata.rotated_to:
                raise ValueError(
                    f"Secret {secret_id} was already rotated to {old.metadata.rotated_to}"
                )
            now = self._clock()
            old.metadata.rotation_history.append(
                RotationEvent(
                    rotated_at=now,
                    previous_rotation_due=old.metadata.rotation_due,
                )
            )
            new_id = self._new_secret_id(document)
            document.secrets[new_id] = SecretRecord(
                type=old.type,
                name=old.name,
                encrypted_data=encrypt(new_value, self._secret_key),
                metadata=SecretMetadata(
                    created_at=now,
                    updated_at=now,
                    last_used=now,
                    usage_count=0,
                    rotation_due=calculate_next_rotation_date(old.type, now),
                    rotation_history=[
                        event.model_copy() for event in old.metadata.rotation_history
                    ],
                    rotated_from=secret_id,
                    **old.metadata.extra,
                ),
            )
            old.metadata.rotated_to = new_id
            old.metadata.updated_at = now
            await self._commit(document, now)
        logger.info(
            "Vault rotate: id=%s -> id=%s type=%s name=%s",
            secret_id, new_id, type_name(old.type), old.name,
        )
        return new_id

    async def delete_secret(self, secret_id: str) -> None:
        """Remove a secret.

        Raises:
            NotFoundError: If the id is unknown.
        """
        await self._ensure_initialized()
        async with self._lock:
            document = self._working_copy()
            self._require(document, secret_id)
            del document.secrets[secret_id]
            await self._commit(document, self._clock())
        logger.info("Vault delete: id=%s", secret_id)

    async def list_secrets(
        self,
        type_filter: Union[SecretType, str, None] = None,
    ) -> list[SecretSummary]:
        """List metadata for every secret, optionally of one type.

        Returns:
            Summaries with a ``needs_rotation`` flag; never values or ciphertext.
        """
        wanted = SecretType(type_filter) if type_filter is not None else None
        await self._ensure_initialized()
        async with self._lock:
            now = self._clock()
            return [
                self._summary(secret_id, record, now)
                for secret_id, record in self._document.secrets.items()
                if wanted is None or record.type == wanted
            ]

    async def get_secrets_needing_rotation(self) -> list[SecretSummary]:
        """Secrets whose rotation due date has been reached.

        Superseded records (``rotated_to`` set) are never reported: their
        successor carries the schedule and they cannot be rotated again.
        """
        return [s for s in await self.list_secrets() if s.needs_rotation]

    async def get_secret_stats(self, secret_id: str) -> SecretSummary:
        """Usage and rotation statistics for one secret (no access recorded).

        Raises:
            NotFoundError: If the id is unknown.
        """
        await self._ensure_initialized()
        async with self._lock:
            record = self._require(self._document, secret_id)
            return self._summary(secret_id, record, self._clock())

    async def validate_secret(self, secret_id: str) -> bool:
        """Check that a secret exists and its payload authenticates."""
        await self._ensure_initialized()
        async with self._lock:
            try:
                record = self._require(self._document, secret_id)
                decrypt_text(record.encrypted_data, self._secret_key)
            except (NotFoundError, DecryptionError) as err:
                logger.debug("Vault validate failed: id=%s: %s", secret_id, err)
                return False
        return True

    async def rekey(self, passphrase: str, salt: str) -> int:
        """Re-encrypt every secret and the envelope under a new passphrase.

        Every payload is re-encrypted before anything is written; the store
        only switches keys after the backend write succeeds.

        Returns:
            Number of secrets re-encrypted.

        Raises:
            ConfigurationError: If the new passphrase or salt is missing.
            DecryptionError: If any stored payload does not authenticate.
        """
        await self._ensure_initialized()
        secret_key, envelope_key = await self._derive_keys(passphrase, salt)
        async with self._lock:
            document = self._working_copy()
            for record in document.secrets.values():
                value = decrypt_text(record.encrypted_data, self._secret_key)
                record.encrypted_data = encrypt(value, secret_key)
            document.metadata.updated_at = self._clock()
            await self._write(document, envelope_key)
            self._document = document
            self._secret_key = secret_key
            self._envelope_key = envelope_key
            return len(document.secrets)


class InMemoryStore(SecretStore):
    """Ephemeral store for tests and development.

    Values are still encrypted per record; nothing is written anywhere.
    """

    async def _load(self, envelope_key: bytes) -> Optional[VaultDocument]:
        return None

    async def _write(self, document: VaultDocument, envelope_key: bytes) -> None:
        return None
