"""
Vault Key Rotation — re-encryption of a whole vault under a new passphrase.

Secret rotation (new values for API keys and the like) is handled by
``SecretStore.rotate_secret``. This module rotates the passphrase the vault
itself is sealed with: every secret payload and the envelope are
re-encrypted under keys derived from the new passphrase and salt.

The operation is all-or-nothing: if any secret fails to authenticate the
vault is left untouched under the old keys.

Security Note:
    Plaintext exists in memory only during re-encryption of each record.
    Never log the passphrase, salt, plaintext or ciphertext values.
    After rotating, update VAULT_ENCRYPTION_KEY and VAULT_SALT before the
    next process start.
"""
import logging

from .store import SecretStore

logger = logging.getLogger("tourguide.vault")


async def rotate_vault_key(store: SecretStore, passphrase: str, salt: str) -> dict:
    """Re-encrypt every secret and the envelope under a new passphrase.

    Args:
        store: Store to re-key; initialized on demand.
        passphrase: New vault passphrase.
        salt: New scrypt salt.

    Returns:
        Stats dict with key ``rotated``: the number of secrets re-encrypted.
        The operation is all-or-nothing, so this is every record in the vault.

    Raises:
        ConfigurationError: If the new passphrase or salt is missing.
        DecryptionError: If a stored secret does not authenticate.
    """
    logger.info("Starting vault key rotation (%s)", store.backend_name)
    try:
        rotated = await store.rekey(passphrase, salt)
    except Exception as err:
        logger.error("Vault key rotation aborted: %s", type(err).__name__)
        raise
    stats = {"rotated": rotated}
    logger.info("Vault key rotation complete: %s", stats)
    return stats
