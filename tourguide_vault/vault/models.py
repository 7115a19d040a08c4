"""Vault data models.

Field names are snake_case in Python and camelCase on disk
(``authTag``, ``rotationDue``, ...). None of these models ever holds a
decrypted secret value.
"""
from datetime import datetime
from typing import Annotated, Any, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from .rotation import SecretType

# known types resolve to SecretType; unknown strings from older vault files
# are kept as-is and rotate on the default interval
StoredSecretType = Annotated[Union[SecretType, str], Field(union_mode="left_to_right")]


class VaultModel(BaseModel):
    """Base for every persisted vault structure."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class EncryptedPayload(VaultModel):
    """Hex-encoded AES-GCM output."""

    encrypted: str
    iv: str
    auth_tag: str


class VaultEnvelope(EncryptedPayload):
    """Vault file contents: the whole encrypted vault plus a format version."""

    version: int = 1


class RotationEvent(VaultModel):
    rotated_at: datetime
    previous_rotation_due: Optional[datetime] = None


class SecretMetadata(VaultModel):
    """Usage and rotation bookkeeping for one secret.

    Extra keys supplied by callers (e.g. ``source``) are kept alongside the
    managed fields.
    """

    model_config = ConfigDict(extra="allow")

    created_at: datetime
    updated_at: Optional[datetime] = None
    last_used: datetime
    usage_count: int = Field(default=0, ge=0)
    rotation_due: datetime
    rotation_history: list[RotationEvent] = Field(default_factory=list)
    rotated_to: Optional[str] = None
    rotated_from: Optional[str] = None

    @model_validator(mode="after")
    def fill_updated_at(self) -> "SecretMetadata":
        """Vaults written before ``updatedAt`` existed default it to ``createdAt``."""
        if self.updated_at is None:
            self.updated_at = self.created_at
        return self

    @property
    def extra(self) -> dict:
        """Caller-supplied metadata keys."""
        return dict(self.__pydantic_extra__ or {})


# keys callers may not set through the metadata argument
MANAGED_METADATA_KEYS = frozenset(
    {name for name in SecretMetadata.model_fields}
    | {to_camel(name) for name in SecretMetadata.model_fields}
)


class SecretRecord(VaultModel):
    type: StoredSecretType
    name: str
    encrypted_data: EncryptedPayload
    metadata: SecretMetadata


class DocumentMetadata(VaultModel):
    created_at: datetime
    updated_at: datetime


class VaultDocument(VaultModel):
    """Decrypted contents of a vault: every record keyed by secret id."""

    secrets: dict[str, SecretRecord] = Field(default_factory=dict)
    metadata: DocumentMetadata

    @classmethod
    def empty(cls, now: datetime) -> "VaultDocument":
        return cls(metadata=DocumentMetadata(created_at=now, updated_at=now))


class SecretSummary(VaultModel):
    """Metadata-only view of a secret returned by listings and stats."""

    model_config = ConfigDict(frozen=True)

    secret_id: str
    type: StoredSecretType
    name: str
    created_at: datetime
    updated_at: datetime
    last_used: datetime
    usage_count: int
    rotation_due: datetime
    needs_rotation: bool
    days_until_rotation: float
    rotated_to: Optional[str] = None
    rotated_from: Optional[str] = None
    extra: dict[str, Any] = Field(default_factory=dict)


class RotationReport(VaultModel):
    """A provider-managed token whose rotation is due."""

    model_config = ConfigDict(frozen=True)

    service_name: str
    secret_id: str
    last_used: datetime
    rotation_due: datetime
