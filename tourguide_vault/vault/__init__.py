"""Secrets Vault — encrypted-at-rest storage of API keys and signing secrets.

Security Note (Threat Model):
    Secret values are decrypted in process memory only while a caller
    holds them. The derived vault keys stay in memory for the lifetime of
    the store; a memory dump of the process could expose them. This is an
    accepted limitation — mitigation requires HSM/secure enclave
    integration which is out of scope.
"""

from .config import VaultBackend, VaultConfig, generate_salt
from .exceptions import (
    BackendError,
    BackendTimeoutError,
    ConfigurationError,
    DecryptionError,
    NotFoundError,
    VaultError,
)
from .factory import create_store
from .key_rotation import rotate_vault_key
from .local import LocalFileStore
from .models import RotationReport, SecretSummary
from .remote import RemoteStore
from .rotation import (
    ROTATION_INTERVALS,
    SecretType,
    calculate_next_rotation_date,
    is_rotation_needed,
)
from .store import InMemoryStore, SecretStore

__all__ = [
    "SecretStore",
    "InMemoryStore",
    "LocalFileStore",
    "RemoteStore",
    "create_store",
    "rotate_vault_key",
    "VaultBackend",
    "VaultConfig",
    "generate_salt",
    "SecretType",
    "ROTATION_INTERVALS",
    "calculate_next_rotation_date",
    "is_rotation_needed",
    "SecretSummary",
    "RotationReport",
    "VaultError",
    "BackendError",
    "ConfigurationError",
    "NotFoundError",
    "DecryptionError",
    "BackendTimeoutError",
]
