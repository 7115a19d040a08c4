"""
Vault Crypto Core — Key derivation, encryption/decryption, and serialization.

Implements the two sealing layers of the vault:
- Secret layer: HKDF(scrypt(passphrase, salt), "vault-secret") → AES-GCM → encryptedData
- Envelope layer: HKDF(scrypt(passphrase, salt), "vault-envelope") → AES-GCM → vault file

Security Note:
    Never log plaintext or ciphertext values.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import logging
from typing import Union

import orjson
from pydantic import ValidationError
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import ConfigurationError, DecryptionError
from .models import EncryptedPayload, VaultDocument, VaultEnvelope

logger = logging.getLogger("tourguide.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM tag
KEY_LENGTH = 32  # AES-256

ENVELOPE_VERSION = 1
ENVELOPE_CONTEXT = "vault-envelope"
SECRET_CONTEXT = "vault-secret"


def _to_bytes(value: Union[str, bytes]) -> bytes:
    if isinstance(value, bytes):
        return value
    return value.encode("utf-8")


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(
    passphrase: Union[str, bytes, None],
    salt: Union[str, bytes, None],
    *,
    n: int = 2 ** 14,
    r: int = 8,
    p: int = 1,
) -> bytes:
    """Derive a 32-byte key from a passphrase using scrypt.

    Args:
        passphrase: Operator-supplied passphrase.
        salt: Operator-supplied salt.
        n: scrypt CPU/memory cost (power of two).
        r: scrypt block size.
        p: scrypt parallelization.

    Returns:
        32-byte derived key.

    Raises:
        ConfigurationError: If passphrase or salt is missing.
    """
    if not passphrase or not salt:
        raise ConfigurationError("Encryption configuration missing")
    kdf = Scrypt(salt=_to_bytes(salt), length=KEY_LENGTH, n=n, r=r, p=p)
    return kdf.derive(_to_bytes(passphrase))


def derive_subkey(master_key: bytes, context: str) -> bytes:
    """Derive a purpose-bound 32-byte key using HKDF-SHA256.

    Args:
        master_key: Output of :func:`derive_key`.
        context: Context string for domain separation (e.g. "vault-secret").

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # master key is already salted by scrypt
        info=context.encode("utf-8"),
    )
    return hkdf.derive(master_key)


# ---------------------------------------------------------------------------
# Authenticated encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: Union[str, bytes], key: bytes) -> EncryptedPayload:
    """Encrypt plaintext with AES-256-GCM under a fresh random IV.

    Args:
        plaintext: Data to encrypt; text is encoded as UTF-8.
        key: 32-byte key.

    Returns:
        EncryptedPayload with hex-encoded ciphertext, iv and auth tag.
    """
    nonce = os.urandom(NONCE_SIZE)
    sealed = AESGCM(key).encrypt(nonce, _to_bytes(plaintext), None)
    return EncryptedPayload(
        encrypted=sealed[:-TAG_SIZE].hex(),
        iv=nonce.hex(),
        auth_tag=sealed[-TAG_SIZE:].hex(),
    )


def decrypt(payload: EncryptedPayload, key: bytes) -> bytes:
    """Verify and decrypt an EncryptedPayload.

    Args:
        payload: Output of :func:`encrypt`.
        key: 32-byte key.

    Returns:
        Decrypted plaintext bytes.

    Raises:
        DecryptionError: On tag mismatch, wrong key or malformed input.
    """
    try:
        nonce = bytes.fromhex(payload.iv)
        ciphertext = bytes.fromhex(payload.encrypted)
        tag = bytes.fromhex(payload.auth_tag)
    except ValueError as err:
        raise DecryptionError("Encrypted payload is not valid hex") from err
    if len(tag) != TAG_SIZE:
        raise DecryptionError(
            f"Authentication tag must be {TAG_SIZE} bytes, got {len(tag)}"
        )
    if len(nonce) < 8:
        raise DecryptionError(f"IV too short: {len(nonce)} bytes")
    try:
        return AESGCM(key).decrypt(nonce, ciphertext + tag, None)
    except InvalidTag as err:
        raise DecryptionError(
            "Authentication failed: payload was tampered with or the key is wrong"
        ) from err


def decrypt_text(payload: EncryptedPayload, key: bytes) -> str:
    """Decrypt a payload that holds UTF-8 text."""
    data = decrypt(payload, key)
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise DecryptionError("Decrypted payload is not valid UTF-8") from err


# ---------------------------------------------------------------------------
# Vault document serialization
# ---------------------------------------------------------------------------

def serialize_document(document: VaultDocument) -> bytes:
    """Serialize a vault document to orjson bytes using the on-disk key names."""
    return orjson.dumps(
        document.model_dump(mode="json", by_alias=True, exclude_none=True)
    )


def deserialize_document(data: bytes) -> VaultDocument:
    """Parse orjson bytes back into a VaultDocument.

    Raises:
        DecryptionError: If the bytes are not a well-formed vault document.
    """
    try:
        return VaultDocument.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise DecryptionError("Vault contents are malformed") from err


def seal_document(document: VaultDocument, key: bytes) -> VaultEnvelope:
    """Serialize and encrypt a whole vault into its envelope."""
    payload = encrypt(serialize_document(document), key)
    return VaultEnvelope(
        encrypted=payload.encrypted,
        iv=payload.iv,
        auth_tag=payload.auth_tag,
        version=ENVELOPE_VERSION,
    )


def open_envelope(envelope: VaultEnvelope, key: bytes) -> VaultDocument:
    """Decrypt and parse a vault envelope.

    Raises:
        DecryptionError: On unsupported version, tampering or malformed contents.
    """
    if envelope.version != ENVELOPE_VERSION:
        raise DecryptionError(
            f"Unsupported vault envelope version: {envelope.version}"
        )
    return deserialize_document(decrypt(envelope, key))


def dump_envelope(envelope: VaultEnvelope) -> bytes:
    """Encode an envelope as the JSON stored in the vault file."""
    return orjson.dumps(envelope.model_dump(mode="json", by_alias=True))


def load_envelope(data: Union[str, bytes]) -> VaultEnvelope:
    """Parse the JSON stored in a vault file.

    Raises:
        DecryptionError: If the file is not a vault envelope.
    """
    try:
        return VaultEnvelope.model_validate(orjson.loads(data))
    except (orjson.JSONDecodeError, ValidationError) as err:
        raise DecryptionError("Vault file is not a valid envelope") from err
