"""Vault Models — records, fingerprints and the transient value types.

Persisted records (``VaultNote``, ``VaultFile``) are frozen pydantic models;
every change produces a new instance, so a snapshot handed to a caller can
never be altered behind its back.

Security Note:
    Payload fields (note ``content``, file ``data``, revealed plaintext) are
    excluded from ``repr``. Logging a model prints metadata only.
"""
from abc import abstractmethod
from enum import Enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import ClassVar, NamedTuple, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

ANONYMOUS_OWNER = "anonymous"
DEFAULT_MIME_TYPE = "application/octet-stream"


def utcnow() -> datetime:
    """Timezone-aware current time, the only clock used for records."""
    return datetime.now(timezone.utc)


class ItemKind(str, Enum):
    """The two record kinds held by a vault."""

    NOTE = "note"
    FILE = "file"

    @property
    def scope_tag(self) -> str:
        """Gateway tag that scopes ciphertext to this record kind."""
        return f"vault-{self.value}"


class Fingerprint(NamedTuple):
    """(kind, id) pair keying the decrypted cache and the status tracker."""

    kind: ItemKind
    id: int

    def __str__(self) -> str:
        return f"{self.kind.value}-{self.id}"


class OperationStatus(str, Enum):
    """In-flight operation labels shown while a gateway call is pending."""

    ENCRYPTING = "encrypting"
    DECRYPTING = "decrypting"
    SAVING = "saving"
    UPDATING = "updating"
    DELETING = "deleting"


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------

class VaultItem(BaseModel):
    """Attributes shared by notes and files.

    ``id`` stays ``None`` until the persistence layer assigns one. When
    ``encrypted`` is true the payload field holds gateway ciphertext and
    must only be interpreted after a successful decrypt.
    """

    model_config = ConfigDict(frozen=True)

    kind: ClassVar[ItemKind]
    payload_field: ClassVar[str]

    id: Optional[int] = None
    tags: tuple[str, ...] = ()
    encrypted: bool = False
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    last_accessed: Optional[datetime] = None
    favorite: bool = False
    owner: str = ANONYMOUS_OWNER

    @property
    @abstractmethod
    def label(self) -> str:
        """Title of a note or name of a file."""

    @property
    def payload(self) -> Union[str, bytes]:
        return getattr(self, self.payload_field)

    @property
    def fingerprint(self) -> Fingerprint:
        if self.id is None:
            raise ValueError(
                f"{self.kind.value} {self.label!r} has not been persisted yet"
            )
        return Fingerprint(self.kind, self.id)


class VaultNote(VaultItem):
    """A text note; ``content`` is plaintext only when ``encrypted`` is false."""

    kind: ClassVar[ItemKind] = ItemKind.NOTE
    payload_field: ClassVar[str] = "content"

    title: str
    content: str = Field(default="", repr=False)

    @property
    def label(self) -> str:
        return self.title


class VaultFile(VaultItem):
    """A binary file; persisted files always carry ciphertext in ``data``."""

    kind: ClassVar[ItemKind] = ItemKind.FILE
    payload_field: ClassVar[str] = "data"

    name: str
    mime_type: str = DEFAULT_MIME_TYPE
    size: int = Field(default=0, ge=0)
    data: bytes = Field(default=b"", repr=False)

    @property
    def label(self) -> str:
        return self.name


ITEM_MODELS: dict[ItemKind, type[VaultItem]] = {
    ItemKind.NOTE: VaultNote,
    ItemKind.FILE: VaultFile,
}


# ---------------------------------------------------------------------------
# Drafts (payloads that have not been persisted yet)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class NoteDraft:
    title: str
    content: str = field(repr=False)

    kind: ClassVar[ItemKind] = ItemKind.NOTE

    @property
    def label(self) -> str:
        return self.title

    @property
    def payload(self) -> str:
        return self.content


@dataclass(frozen=True)
class FileDraft:
    name: str
    data: bytes = field(repr=False)
    mime_type: str = DEFAULT_MIME_TYPE

    kind: ClassVar[ItemKind] = ItemKind.FILE

    @property
    def label(self) -> str:
        return self.name

    @property
    def payload(self) -> bytes:
        return self.data

    @property
    def size(self) -> int:
        return len(self.data)


Draft = Union[NoteDraft, FileDraft]


# ---------------------------------------------------------------------------
# Revealed content
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextContent:
    """Plaintext of a revealed note."""

    text: str = field(repr=False)


@dataclass(frozen=True)
class BinaryContent:
    """Plaintext bytes of a revealed file."""

    data: bytes = field(repr=False)

    def __len__(self) -> int:
        return len(self.data)


RevealedContent = Union[TextContent, BinaryContent]


def wrap_content(kind: ItemKind, value: Union[str, bytes]) -> RevealedContent:
    """Tag a raw plaintext value with the variant its record kind implies.

    Raises:
        TypeError: If the value type does not match the record kind.
    """
    if kind is ItemKind.NOTE:
        if not isinstance(value, str):
            raise TypeError(f"note plaintext must be str, got {type(value).__name__}")
        return TextContent(value)
    if not isinstance(value, (bytes, bytearray)):
        raise TypeError(f"file plaintext must be bytes, got {type(value).__name__}")
    return BinaryContent(bytes(value))


# ---------------------------------------------------------------------------
# Observability records
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Notification:
    """A user-visible, non-fatal message (the UI renders it as a toast)."""

    level: str
    title: str
    message: str
    error: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class AuditEvent:
    """Metadata-only trace of a vault operation."""

    action: str
    kind: Optional[ItemKind]
    item_id: Optional[int]
    outcome: str
    owner: str = ANONYMOUS_OWNER
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class DownloadedFile:
    name: str
    mime_type: str
    data: bytes = field(repr=False)
