"""In-memory session data: the decrypted content cache and the status tracker.

Neither structure is ever serialized. Both are dict-like, keyed by
``Fingerprint`` (the tracker also accepts synthetic string keys for records
that have no id yet), and their ``repr`` lists keys only.
"""
from collections.abc import Iterator, MutableMapping
from contextlib import contextmanager
from typing import Any, Optional, Union

from .models import (
    BinaryContent,
    Fingerprint,
    OperationStatus,
    RevealedContent,
    TextContent,
)

TrackerKey = Union[Fingerprint, str]


class DecryptedCache(MutableMapping[Fingerprint, RevealedContent]):
    """Fingerprint -> revealed plaintext.

    Supports exactly insert, remove-one, remove-all and lookup. There is no
    expiry logic here; eviction is always commanded by the Session Store.
    Values must be ``TextContent`` or ``BinaryContent``; which one comes
    back is implied by the fingerprint kind, so callers branch with
    ``isinstance`` instead of probing raw types.
    """

    def __init__(self) -> None:
        self._objects: dict[Fingerprint, RevealedContent] = {}

    def __repr__(self) -> str:
        return f'<DecryptedCache entries={[str(k) for k in self._objects]}>'

    # --- Serialization guards ---

    def __getstate__(self) -> Any:
        raise TypeError("decrypted content must never be serialized")

    def __reduce_ex__(self, protocol: Any) -> Any:
        raise TypeError("decrypted content must never be serialized")

    # --- Properties ---

    @property
    def empty(self) -> bool:
        return not bool(self._objects)

    # --- Operations ---

    def insert(self, key: Fingerprint, value: RevealedContent) -> None:
        if not isinstance(value, (TextContent, BinaryContent)):
            raise TypeError(
                f"cache values must be TextContent or BinaryContent, "
                f"got {type(value).__name__}"
            )
        self._objects[key] = value

    def lookup(self, key: Fingerprint) -> Optional[RevealedContent]:
        return self._objects.get(key)

    def remove(self, key: Fingerprint) -> bool:
        """Drop one entry; returns whether anything was removed."""
        return self._objects.pop(key, None) is not None

    def purge(self) -> int:
        """Drop every entry at once; returns how many were held."""
        count = len(self._objects)
        self._objects = {}
        return count

    # --- Magic Methods ---

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self) -> Iterator[Fingerprint]:
        return iter(list(self._objects))

    def __contains__(self, key: object) -> bool:
        return key in self._objects

    def __getitem__(self, key: Fingerprint) -> RevealedContent:
        return self._objects[key]

    def __setitem__(self, key: Fingerprint, value: RevealedContent) -> None:
        self.insert(key, value)

    def __delitem__(self, key: Fingerprint) -> None:
        del self._objects[key]


class OperationTracker(MutableMapping[TrackerKey, OperationStatus]):
    """Key -> label of the operation currently in flight for it.

    One label per key; setting a new one overwrites (last writer wins).
    Purely observational: nothing in the store consults it for correctness.
    """

    def __init__(self) -> None:
        self._data: dict[TrackerKey, OperationStatus] = {}

    def __repr__(self) -> str:
        active = {str(k): v.value for k, v in self._data.items()}
        return f'<OperationTracker active={active!r}>'

    def status(self, key: TrackerKey) -> Optional[OperationStatus]:
        return self._data.get(key)

    def clear_key(self, key: TrackerKey) -> None:
        self._data.pop(key, None)

    @contextmanager
    def track(self, key: TrackerKey, status: OperationStatus) -> Iterator[None]:
        """Mark ``key`` for the duration of the block, whatever its outcome."""
        self._data[key] = OperationStatus(status)
        try:
            yield
        finally:
            self._data.pop(key, None)

    def __len__(self) -> int:
        return len(self._data)

    def __iter__(self) -> Iterator[TrackerKey]:
        return iter(list(self._data))

    def __contains__(self, key: object) -> bool:
        return key in self._data

    def __getitem__(self, key: TrackerKey) -> OperationStatus:
        return self._data[key]

    def __setitem__(self, key: TrackerKey, value: OperationStatus) -> None:
        self._data[key] = OperationStatus(value)

    def __delitem__(self, key: TrackerKey) -> None:
        del self._data[key]
