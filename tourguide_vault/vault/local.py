"""
LocalFileStore — the whole vault sealed into one file on disk.

File format (JSON):
    {"encrypted": <hex>, "iv": <hex>, "authTag": <hex>, "version": 1}

Every mutation re-encrypts the full vault and replaces the file atomically
(temp file in the same directory, fsync, rename), so a crash mid-write
leaves the previous vault intact.
"""
import os
import stat
import asyncio
import logging
import tempfile
from pathlib import Path
from typing import Optional, Union

from .config import VaultConfig
from .crypto import dump_envelope, load_envelope, open_envelope, seal_document
from .models import VaultDocument
from .store import Clock, SecretStore

logger = logging.getLogger("tourguide.vault")


class LocalFileStore(SecretStore):
    """Secret store persisted as a single encrypted envelope file."""

    def __init__(
        self,
        config: VaultConfig,
        *,
        path: Union[str, Path, None] = None,
        clock: Optional[Clock] = None,
    ):
        super().__init__(config, clock=clock)
        self._path = Path(path or config.vault_path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def backend_name(self) -> str:
        return f"local:{self._path}"

    def _read(self, envelope_key: bytes) -> Optional[VaultDocument]:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        if not self._path.exists():
            return None
        envelope = load_envelope(self._path.read_bytes())
        return open_envelope(envelope, envelope_key)

    def _write_atomic(self, data: bytes) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(
            dir=self._path.parent, prefix=f".{self._path.name}.", suffix=".tmp",
        )
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
                fh.flush()
                os.fsync(fh.fileno())
            os.chmod(tmp_name, stat.S_IRUSR | stat.S_IWUSR)  # 600
            os.replace(tmp_name, self._path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

    async def _load(self, envelope_key: bytes) -> Optional[VaultDocument]:
        return await asyncio.to_thread(self._read, envelope_key)

    async def _write(self, document: VaultDocument, envelope_key: bytes) -> None:
        data = dump_envelope(seal_document(document, envelope_key))
        await asyncio.to_thread(self._write_atomic, data)
        logger.debug("Vault file written: %s", self._path)
