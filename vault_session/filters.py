"""Filter Pipeline and derived read models.

Everything here is a pure function over snapshots of the full collections.
Only titles, file names and tags are consulted; payloads (ciphertext or not)
are never read, so search runs without materializing plaintext.
"""
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import NamedTuple

from .models import Fingerprint, VaultFile, VaultItem, VaultNote

RECENT_LIMIT = 5


class FilteredView(NamedTuple):
    """Visible subset of the vault; a projection with no lifecycle of its own."""

    notes: tuple[VaultNote, ...]
    files: tuple[VaultFile, ...]


def matches_search(item: VaultItem, term: str) -> bool:
    """Case-insensitive substring match on title or name; empty matches all."""
    if not term:
        return True
    return term.casefold() in item.label.casefold()


def matches_tags(item: VaultItem, selected: Iterable[str]) -> bool:
    """True if the item carries any selected tag; empty selection matches all."""
    wanted = set(selected)
    if not wanted:
        return True
    return any(tag in wanted for tag in item.tags)


def apply_filters(
    notes: Sequence[VaultNote],
    files: Sequence[VaultFile],
    search_term: str = "",
    selected_tags: Sequence[str] = (),
) -> FilteredView:
    """Derive the visible notes and files.

    An item is visible when it satisfies both the search predicate and the
    tag predicate. Inputs are not mutated; order is preserved.

    Args:
        notes: Full note collection.
        files: Full file collection.
        search_term: Free-text term matched against title/name.
        selected_tags: Tags to match (logical OR between them).

    Returns:
        FilteredView with the visible notes and files.
    """
    term = (search_term or "").strip()
    tags = tuple(selected_tags or ())

    def visible(item: VaultItem) -> bool:
        return matches_search(item, term) and matches_tags(item, tags)

    return FilteredView(
        notes=tuple(n for n in notes if visible(n)),
        files=tuple(f for f in files if visible(f)),
    )


def collect_tags(*collections: Iterable[VaultItem]) -> list[str]:
    """Sorted, de-duplicated tags across the given collections."""
    seen: set[str] = set()
    for collection in collections:
        for item in collection:
            seen.update(item.tags)
    return sorted(seen)


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def format_file_size(size: int) -> str:
    """Human readable size, e.g. ``1.5 KB``."""
    if size <= 0:
        return "0 Bytes"
    units = ("Bytes", "KB", "MB", "GB", "TB")
    exp = 0
    while size >= 1024 ** (exp + 1) and exp < len(units) - 1:
        exp += 1
    value = round(size / 1024 ** exp, 2)
    return f"{value:g} {units[exp]}"


@dataclass(frozen=True)
class VaultStats:
    total_notes: int = 0
    encrypted_notes: int = 0
    total_files: int = 0
    encrypted_files: int = 0
    favorites: int = 0
    storage_bytes: int = 0
    recently_accessed: tuple[Fingerprint, ...] = field(default_factory=tuple)

    @property
    def storage_used(self) -> str:
        return format_file_size(self.storage_bytes)


def vault_stats(
    notes: Sequence[VaultNote],
    files: Sequence[VaultFile],
    recent_limit: int = RECENT_LIMIT,
) -> VaultStats:
    """Summarize the full collections (not the filtered view)."""
    accessed = [
        item for item in (*notes, *files)
        if item.last_accessed is not None and item.id is not None
    ]
    accessed.sort(key=lambda item: item.last_accessed, reverse=True)
    return VaultStats(
        total_notes=len(notes),
        encrypted_notes=sum(1 for n in notes if n.encrypted),
        total_files=len(files),
        encrypted_files=sum(1 for f in files if f.encrypted),
        favorites=sum(1 for item in (*notes, *files) if item.favorite),
        storage_bytes=sum(f.size for f in files),
        recently_accessed=tuple(
            item.fingerprint for item in accessed[:recent_limit]
        ),
    )
