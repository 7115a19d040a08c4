"""
Vault Configuration — Validated settings for the secrets vault.

Reads settings from environment variables:
    VAULT_BACKEND          = local | in-memory | remote (default: local)
    VAULT_ENCRYPTION_KEY   = <passphrase fed to scrypt>
    VAULT_SALT             = <salt fed to scrypt>
    VAULT_PATH             = <vault file, default ~/.tourguideai/vault.enc>
    VAULT_REMOTE_ENDPOINT  = <URL of the remote envelope>
    VAULT_REMOTE_TOKEN     = <bearer token for the remote endpoint>
    VAULT_REMOTE_TIMEOUT   = <seconds, default 10>
    VAULT_SCRYPT_N         = <scrypt cost, default 16384>
    TOKEN_CACHE_TTL        = <seconds, default 300>
    IMPORT_ENV_SECRETS     = true | false

Security Note:
    Never log the passphrase or salt. The passphrase is held as a
    ``SecretStr`` so it does not show up in reprs.
"""
import os
import base64
import secrets
import logging
from enum import Enum
from pathlib import Path
from typing import Optional
from collections.abc import Mapping

from pydantic import BaseModel, Field, SecretStr, field_validator, model_validator

from .exceptions import ConfigurationError

logger = logging.getLogger("tourguide.vault")

DEFAULT_VAULT_PATH = Path.home() / ".tourguideai" / "vault.enc"

_TRUTHY = ("1", "true", "yes", "on")


class VaultBackend(str, Enum):
    """Storage backends a vault can be persisted to."""

    LOCAL = "local"
    MEMORY = "in-memory"
    REMOTE = "remote"


def generate_salt() -> str:
    """Generate a random 16-byte salt and return it as a base64 string.

    This is a utility for operators provisioning a new vault.

    Returns:
        Base64-encoded salt string.
    """
    return base64.b64encode(secrets.token_bytes(16)).decode("ascii")


class VaultConfig(BaseModel):
    """Validated vault configuration.

    Every recognised option is listed here with its default; nothing is
    filled in lazily at call time.
    """

    backend: VaultBackend = VaultBackend.LOCAL
    passphrase: Optional[SecretStr] = None
    salt: Optional[str] = None
    vault_path: Path = DEFAULT_VAULT_PATH
    remote_endpoint: Optional[str] = None
    remote_token: Optional[SecretStr] = None
    remote_timeout: float = Field(default=10.0, gt=0)
    scrypt_n: int = Field(default=2 ** 14, ge=2)
    scrypt_r: int = Field(default=8, ge=1)
    scrypt_p: int = Field(default=1, ge=1)
    token_cache_ttl: float = Field(default=300.0, gt=0)
    import_env_secrets: bool = False

    @field_validator("scrypt_n")
    @classmethod
    def validate_scrypt_n(cls, v: int) -> int:
        """scrypt requires the cost parameter to be a power of two."""
        if v & (v - 1):
            raise ValueError(f"scrypt_n must be a power of two, got {v}")
        return v

    @model_validator(mode="after")
    def validate_encryption_settings(self) -> "VaultConfig":
        """Refuse to build a config that would leave the vault unencrypted."""
        if self.passphrase is None or not self.passphrase.get_secret_value():
            raise ConfigurationError(
                "Vault encryption passphrase is missing (set VAULT_ENCRYPTION_KEY)"
            )
        if not self.salt:
            raise ConfigurationError(
                "Vault encryption salt is missing (set VAULT_SALT)"
            )
        if self.backend is VaultBackend.REMOTE and not self.remote_endpoint:
            raise ConfigurationError(
                "Remote vault backend requires VAULT_REMOTE_ENDPOINT"
            )
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultConfig":
        """Create VaultConfig by loading values from environment.

        Args:
            environ: Mapping to read from instead of ``os.environ``.

        Returns:
            Populated VaultConfig instance.

        Raises:
            ConfigurationError: If passphrase, salt or a backend setting is missing.
        """
        env = os.environ if environ is None else environ
        options: dict = {
            "backend": env.get("VAULT_BACKEND", VaultBackend.LOCAL.value),
            "passphrase": env.get("VAULT_ENCRYPTION_KEY"),
            "salt": env.get("VAULT_SALT"),
            "remote_endpoint": env.get("VAULT_REMOTE_ENDPOINT"),
            "remote_token": env.get("VAULT_REMOTE_TOKEN"),
            "import_env_secrets": env.get("IMPORT_ENV_SECRETS", "").lower() in _TRUTHY,
        }
        if env.get("VAULT_PATH"):
            options["vault_path"] = Path(env["VAULT_PATH"]).expanduser()
        if env.get("VAULT_REMOTE_TIMEOUT"):
            options["remote_timeout"] = float(env["VAULT_REMOTE_TIMEOUT"])
        if env.get("VAULT_SCRYPT_N"):
            options["scrypt_n"] = int(env["VAULT_SCRYPT_N"])
        if env.get("TOKEN_CACHE_TTL"):
            options["token_cache_ttl"] = float(env["TOKEN_CACHE_TTL"])
        config = cls(**options)
        logger.debug(
            "Loaded vault config: backend=%s path=%s",
            config.backend.value, config.vault_path,
        )
        return config
