"""
Vault Storage — Persistence Gateway interface and an in-memory document store.

Records are addressed by (kind, integer id); ids are assigned by the store on
first save. The store treats payloads as opaque: whatever the Session Store
hands over (ciphertext, or plaintext for a degraded note) is kept verbatim.

Security Note:
    Never log record payloads. Only log kinds, ids and owners.
"""
import logging
from datetime import datetime
from typing import Any, Mapping, Optional, Protocol, runtime_checkable

import orjson

from ..errors import NotFound
from ..filters import collect_tags
from ..models import ITEM_MODELS, ItemKind, VaultItem, utcnow
from .crypto import unwrap_bytes, wrap_bytes

logger = logging.getLogger("vault_session.vault")

_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})


@runtime_checkable
class PersistenceGateway(Protocol):
    """CRUD over notes and files, addressed by integer id."""

    async def add(self, item: VaultItem) -> int:
        ...

    async def get(self, kind: ItemKind, item_id: int) -> Optional[VaultItem]:
        ...

    async def update(
        self, kind: ItemKind, item_id: int, changes: Mapping[str, Any]
    ) -> None:
        ...

    async def mark_accessed(
        self, kind: ItemKind, item_id: int, when: datetime
    ) -> None:
        ...

    async def delete(self, kind: ItemKind, item_id: int) -> None:
        ...

    async def list_items(
        self, kind: ItemKind, owner: Optional[str] = None
    ) -> list[VaultItem]:
        ...

    async def all_tags(self, owner: Optional[str] = None) -> list[str]:
        ...


# ---------------------------------------------------------------------------
# Document encoding
# ---------------------------------------------------------------------------

def _encode_default(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return wrap_bytes(bytes(value))
    raise TypeError(f"Type is not JSON serializable: {type(value).__name__}")


def encode_document(item: VaultItem) -> bytes:
    """Serialize a record to an orjson document (bytes wrapped as base64)."""
    return orjson.dumps(item.model_dump(), default=_encode_default)


def decode_document(kind: ItemKind, document: bytes) -> VaultItem:
    """Rebuild a record of ``kind`` from an ``encode_document`` payload."""
    raw = orjson.loads(document)
    return ITEM_MODELS[kind].model_validate(
        {name: unwrap_bytes(value) for name, value in raw.items()}
    )


class MemoryStorage:
    """Process-local document store implementing ``PersistenceGateway``.

    Each record is held as an encoded document, so what callers receive is
    always a fresh copy; nothing they do to a returned model reaches the
    store. Ids are a per-kind sequence starting at 1 and never reused.
    """

    def __init__(self) -> None:
        self._tables: dict[ItemKind, dict[int, bytes]] = {kind: {} for kind in ItemKind}
        self._sequence: dict[ItemKind, int] = {kind: 0 for kind in ItemKind}

    def __len__(self) -> int:
        return sum(len(table) for table in self._tables.values())

    def _load(self, kind: ItemKind, item_id: int) -> VaultItem:
        document = self._tables[kind].get(item_id)
        if document is None:
            raise NotFound(f"{kind.value} {item_id} does not exist")
        return decode_document(kind, document)

    def _save(self, item: VaultItem) -> None:
        self._tables[item.kind][item.id] = encode_document(item)

    async def add(self, item: VaultItem) -> int:
        """Store a new record and return its assigned id.

        ``created_at`` and ``updated_at`` are stamped by the store.
        """
        kind = item.kind
        self._sequence[kind] += 1
        item_id = self._sequence[kind]
        now = utcnow()
        self._save(item.model_copy(
            update={"id": item_id, "created_at": now, "updated_at": now},
        ))
        logger.debug("Stored %s %d for owner=%s", kind.value, item_id, item.owner)
        return item_id

    async def get(self, kind: ItemKind, item_id: int) -> Optional[VaultItem]:
        document = self._tables[ItemKind(kind)].get(item_id)
        if document is None:
            return None
        return decode_document(ItemKind(kind), document)

    async def update(
        self, kind: ItemKind, item_id: int, changes: Mapping[str, Any]
    ) -> None:
        """Apply field changes and refresh ``updated_at``.

        Raises:
            NotFound: If no record with ``item_id`` exists.
            ValueError: If ``changes`` touches ``id`` or ``created_at``.
        """
        kind = ItemKind(kind)
        frozen = _IMMUTABLE_FIELDS & set(changes)
        if frozen:
            raise ValueError(f"Cannot change {sorted(frozen)} of a stored record")
        current = self._load(kind, item_id)
        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = utcnow()
        self._save(ITEM_MODELS[kind].model_validate(data))

    async def mark_accessed(
        self, kind: ItemKind, item_id: int, when: datetime
    ) -> None:
        """Record a read without touching ``updated_at``."""
        kind = ItemKind(kind)
        current = self._load(kind, item_id)
        self._save(current.model_copy(update={"last_accessed": when}))

    async def delete(self, kind: ItemKind, item_id: int) -> None:
        """Remove a record; deleting a missing id is a no-op."""
        if self._tables[ItemKind(kind)].pop(item_id, None) is None:
            logger.debug("Delete of missing %s %s ignored", ItemKind(kind).value, item_id)

    async def list_items(
        self, kind: ItemKind, owner: Optional[str] = None
    ) -> list[VaultItem]:
        kind = ItemKind(kind)
        items = [
            decode_document(kind, self._tables[kind][item_id])
            for item_id in sorted(self._tables[kind])
        ]
        if owner is not None:
            items = [item for item in items if item.owner == owner]
        return items

    async def all_tags(self, owner: Optional[str] = None) -> list[str]:
        notes = await self.list_items(ItemKind.NOTE, owner)
        files = await self.list_items(ItemKind.FILE, owner)
        return collect_tags(notes, files)

    def clear(self) -> None:
        for table in self._tables.values():
            table.clear()
