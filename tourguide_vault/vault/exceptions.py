"""Vault error taxonomy.

Messages never carry plaintext, ciphertext or key material; only ids,
types and names.
"""


class VaultError(Exception):
    """Base class for every vault error."""


class ConfigurationError(VaultError):
    """Encryption passphrase, salt or backend settings are missing or invalid."""


class NotFoundError(VaultError):
    """A secret id or a service mapping does not exist."""


class DecryptionError(VaultError):
    """Authentication tag did not verify or the payload is malformed."""


class BackendError(VaultError):
    """A remote backend could not be reached or answered with an error status."""


class BackendTimeoutError(BackendError, TimeoutError):
    """A remote backend call exceeded the caller's deadline."""
