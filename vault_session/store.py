"""
SessionStore — authoritative in-memory state of an unlocked vault.

Provides the public API of the session core:
- ``create_item`` / ``update_item`` / ``delete_item`` — encrypt, persist, commit
- ``reveal_item`` / ``hide_item`` — populate or evict decrypted content
- ``toggle_favorite`` — flip and persist the favorite flag
- ``set_search_term`` / ``set_tag_filter`` — drive the filtered view
- ``purge_decrypted_cache`` — drop every revealed plaintext at once
- ``refresh`` — reload the owner's records from persistence

State transitions are synchronous: each committed change recomputes the
filtered view and notifies subscribers before control returns. Async
operations suspend only at gateway and persistence calls.

Every failure is recovered here: it is logged, turned into a
``Notification`` and the operation returns ``None`` (or ``False``); nothing
escapes as an unhandled exception.

Security Note:
    Never log plaintext or ciphertext values. Only log fingerprints, titles,
    owners, counts and error kinds.
"""
import asyncio
import functools
import logging
import uuid
from collections import OrderedDict, deque
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Mapping, Optional, Sequence, Union

from .data import DecryptedCache, OperationTracker
from .errors import (
    DecryptionFailed,
    EncryptionFailed,
    GatewayUnavailable,
    NotFound,
    PersistenceFailed,
    VaultError,
)
from .filters import FilteredView, VaultStats, apply_filters, collect_tags, vault_stats
from .models import (
    ANONYMOUS_OWNER,
    DEFAULT_MIME_TYPE,
    AuditEvent,
    BinaryContent,
    DownloadedFile,
    Draft,
    FileDraft,
    Fingerprint,
    ItemKind,
    NoteDraft,
    Notification,
    OperationStatus,
    RevealedContent,
    VaultFile,
    VaultItem,
    VaultNote,
    utcnow,
    wrap_content,
)
from .vault.config import VaultConfig
from .vault.gateway import AeadEncryptionGateway, EncryptionGateway, Err
from .vault.storage import PersistenceGateway

logger = logging.getLogger("vault_session")

Listener = Callable[["SessionStore"], None]

# fields a caller may change through update_item, per kind
_UPDATABLE = {
    ItemKind.NOTE: frozenset({"title", "content", "tags"}),
    ItemKind.FILE: frozenset({"name", "data", "mime_type", "tags"}),
}

_PAYLOAD_TYPES = {
    ItemKind.NOTE: str,
    ItemKind.FILE: (bytes, bytearray),
}

# finished request ids remembered for retry-safe creates
REQUEST_HISTORY_SIZE = 256


def _gateway_error(
    result: Any, error_cls: type[VaultError], default: str
) -> VaultError:
    """The VaultError behind a failed gateway result, wrapping bare reasons."""
    error = getattr(result, "error", None)
    if isinstance(error, VaultError):
        return error
    return error_cls(str(error or default))


def resolve_owner(claims: Optional[Mapping[str, Any]]) -> str:
    """Owner id from an authenticated principal's claims.

    Returns the ``sub`` claim, or ``"anonymous"`` when there is no
    authenticated principal.
    """
    if claims:
        subject = claims.get("sub")
        if subject:
            return str(subject)
    return ANONYMOUS_OWNER


def _normalize_tags(tags: Optional[Sequence[str]]) -> tuple[str, ...]:
    if tags is None:
        return ()
    if isinstance(tags, str):
        raise TypeError("tags must be a sequence of strings, not a string")
    return tuple(str(tag).strip() for tag in tags if str(tag).strip())


class SessionStore:
    """Single source of truth for one vault session.

    Owns the full note and file collections, the decrypted content cache
    and the operation tracker. Collaborators (encryption and persistence)
    are injected.
    """

    def __init__(
        self,
        encryption: EncryptionGateway,
        storage: PersistenceGateway,
        owner: Optional[str] = None,
        *,
        audit_size: int = 200,
        notification_size: int = 50,
        on_notify: Optional[Callable[[Notification], None]] = None,
    ):
        self._encryption = encryption
        self._storage = storage
        self._owner = owner or ANONYMOUS_OWNER
        self._notes: tuple[VaultNote, ...] = ()
        self._files: tuple[VaultFile, ...] = ()
        self._view = FilteredView((), ())
        self._search_term = ""
        self._selected_tags: tuple[str, ...] = ()
        self._all_tags: list[str] = []
        self._loading = 0
        self._error: Optional[str] = None
        self._closed = False
        self._cache = DecryptedCache()
        self._tracker = OperationTracker()
        self._reveals: dict[Fingerprint, asyncio.Future] = {}
        self._creates: dict[str, asyncio.Future] = {}
        self._created: "OrderedDict[str, Fingerprint]" = OrderedDict()
        self._hide_requested: set[Fingerprint] = set()
        self._listeners: list[Listener] = []
        self._on_notify = on_notify
        self.notifications: deque[Notification] = deque(maxlen=notification_size)
        self.audit_log: deque[AuditEvent] = deque(maxlen=audit_size)

    def __repr__(self) -> str:
        return (
            f'<SessionStore owner={self._owner!r} notes={len(self._notes)} '
            f'files={len(self._files)} revealed={len(self._cache)}>'
        )

    @classmethod
    def from_config(
        cls,
        config: VaultConfig,
        storage: PersistenceGateway,
        owner: Optional[str] = None,
        authenticated: bool = False,
        **kwargs: Any,
    ) -> "SessionStore":
        """Build a store around the AEAD reference gateway."""
        return cls(
            AeadEncryptionGateway.from_config(config, authenticated=authenticated),
            storage,
            owner,
            audit_size=config.audit_size,
            notification_size=config.notification_size,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def owner(self) -> str:
        return self._owner

    @property
    def encryption(self) -> EncryptionGateway:
        return self._encryption

    @property
    def storage(self) -> PersistenceGateway:
        return self._storage

    @property
    def notes(self) -> tuple[VaultNote, ...]:
        return self._notes

    @property
    def files(self) -> tuple[VaultFile, ...]:
        return self._files

    @property
    def view(self) -> FilteredView:
        return self._view

    @property
    def visible_notes(self) -> tuple[VaultNote, ...]:
        return self._view.notes

    @property
    def visible_files(self) -> tuple[VaultFile, ...]:
        return self._view.files

    @property
    def search_term(self) -> str:
        return self._search_term

    @property
    def selected_tags(self) -> tuple[str, ...]:
        return self._selected_tags

    @property
    def all_tags(self) -> list[str]:
        return list(self._all_tags)

    @property
    def loading(self) -> bool:
        return self._loading > 0

    @property
    def error(self) -> Optional[str]:
        return self._error

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cache(self) -> DecryptedCache:
        return self._cache

    @property
    def tracker(self) -> OperationTracker:
        return self._tracker

    def get_item(self, kind: ItemKind, item_id: int) -> Optional[VaultItem]:
        kind = ItemKind(kind)
        for item in self._collection(kind):
            if item.id == item_id:
                return item
        return None

    def is_revealed(self, kind: ItemKind, item_id: int) -> bool:
        return Fingerprint(ItemKind(kind), item_id) in self._cache

    def get_revealed(self, kind: ItemKind, item_id: int) -> Optional[RevealedContent]:
        return self._cache.lookup(Fingerprint(ItemKind(kind), item_id))

    def stats(self) -> VaultStats:
        return vault_stats(self._notes, self._files)

    # ------------------------------------------------------------------
    # Subscriptions and notifications
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener(store)`` after every committed state change.

        Returns:
            A callable that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception:
                logger.exception("State listener %r failed", listener)

    def notify(
        self,
        level: str,
        title: str,
        message: str,
        error: Union[VaultError, str, None] = None,
    ) -> Notification:
        """Queue a user-visible message and hand it to ``on_notify``."""
        if isinstance(error, VaultError):
            error = error.kind
        notification = Notification(level, title, message, error)
        self.notifications.append(notification)
        if level == "error":
            self._error = message
        if self._on_notify is not None:
            try:
                self._on_notify(notification)
            except Exception:
                logger.exception("Notification handler failed")
        return notification

    def clear_error(self) -> None:
        self._error = None

    def _fail(self, title: str, err: VaultError) -> None:
        logger.warning("%s: %s (%s)", title, err.kind, err)
        self.notify("error", title, str(err) or err.kind, err)

    def _audit(
        self,
        action: str,
        kind: Optional[ItemKind],
        item_id: Optional[int],
        outcome: str,
    ) -> None:
        self.audit_log.append(
            AuditEvent(action, kind, item_id, outcome, owner=self._owner)
        )

    # ------------------------------------------------------------------
    # State transitions (synchronous)
    # ------------------------------------------------------------------

    def _collection(self, kind: ItemKind) -> tuple:
        return self._notes if kind is ItemKind.NOTE else self._files

    def _commit(
        self,
        notes: Optional[Sequence[VaultNote]] = None,
        files: Optional[Sequence[VaultFile]] = None,
        all_tags: Optional[Sequence[str]] = None,
    ) -> None:
        if notes is not None:
            self._notes = tuple(notes)
        if files is not None:
            self._files = tuple(files)
        if all_tags is None:
            all_tags = collect_tags(self._notes, self._files)
        self._all_tags = list(all_tags)
        self._recompute()
        self._emit()

    def _recompute(self) -> None:
        self._view = apply_filters(
            self._notes, self._files, self._search_term, self._selected_tags,
        )

    def _put(self, item: VaultItem) -> None:
        """Replace the item with the same id, or append it."""
        collection = list(self._collection(item.kind))
        for index, existing in enumerate(collection):
            if existing.id == item.id:
                collection[index] = item
                break
        else:
            collection.append(item)
        if item.kind is ItemKind.NOTE:
            self._commit(notes=collection)
        else:
            self._commit(files=collection)

    def _drop(self, kind: ItemKind, item_id: int) -> None:
        remaining = [i for i in self._collection(kind) if i.id != item_id]
        fingerprint = Fingerprint(kind, item_id)
        self._cache.remove(fingerprint)
        self._tracker.clear_key(fingerprint)
        self._hide_requested.discard(fingerprint)
        for request_id in [r for r, fp in self._created.items() if fp == fingerprint]:
            del self._created[request_id]
        if kind is ItemKind.NOTE:
            self._commit(notes=remaining)
        else:
            self._commit(files=remaining)

    @contextmanager
    def _busy(self) -> Iterator[None]:
        self._loading += 1
        try:
            yield
        finally:
            self._loading -= 1

    # ------------------------------------------------------------------
    # Collaborator helpers
    # ------------------------------------------------------------------

    async def _persist(self, call: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Await a persistence call, mapping foreign errors to PersistenceFailed."""
        try:
            return await call(*args)
        except VaultError:
            raise
        except Exception as err:
            raise PersistenceFailed(
                f"Storage error in {getattr(call, '__name__', 'call')}: {err}"
            ) from err

    async def _encrypt(self, kind: ItemKind, payload: Union[str, bytes]) -> Union[str, bytes]:
        try:
            result = await self._encryption.encrypt(payload, [kind.scope_tag])
        except VaultError:
            raise
        except Exception as err:
            raise EncryptionFailed(f"Encryption gateway error: {err}") from err
        if isinstance(result, Err) or not getattr(result, "success", False):
            raise _gateway_error(result, EncryptionFailed, "encryption failed")
        value = getattr(result, "value", None)
        if not isinstance(value, _PAYLOAD_TYPES[kind]):
            raise EncryptionFailed(
                f"Encryption gateway returned {type(value).__name__} for a {kind.value}"
            )
        if value == payload:
            raise EncryptionFailed("Encryption gateway returned the payload unchanged")
        return value if kind is ItemKind.NOTE else bytes(value)

    async def _decrypt(self, kind: ItemKind, ciphertext: Union[str, bytes]) -> RevealedContent:
        try:
            result = await self._encryption.decrypt(ciphertext, [kind.scope_tag])
        except VaultError:
            raise
        except Exception as err:
            raise DecryptionFailed(f"Decryption gateway error: {err}") from err
        if isinstance(result, Err) or not getattr(result, "success", False):
            raise _gateway_error(result, DecryptionFailed, "decryption failed")
        try:
            return wrap_content(kind, getattr(result, "value", None))
        except TypeError as err:
            raise DecryptionFailed(str(err)) from err

    async def _seal_payload(
        self, kind: ItemKind, payload: Union[str, bytes], label: str
    ) -> tuple[Union[str, bytes], bool]:
        """Encrypt a payload; notes fall back to plaintext, files never do.

        Returns:
            Tuple of (stored_payload, encrypted).

        Raises:
            GatewayUnavailable, EncryptionFailed: For files, always on failure.
        """
        try:
            return await self._encrypt(kind, payload), True
        except (GatewayUnavailable, EncryptionFailed) as err:
            if kind is ItemKind.FILE:
                raise
            logger.warning("Note %r saved without encryption: %s", label, err.kind)
            self.notify(
                "warning",
                "Saved without encryption",
                f'Note "{label}" was saved unencrypted: {err}',
                err,
            )
            return payload, False

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def refresh(self) -> bool:
        """Reload the owner's notes, files and tags from persistence.

        Revealed entries whose record no longer exists are evicted.

        Returns:
            True on success, False if persistence failed (state unchanged).
        """
        with self._busy():
            try:
                notes, files, tags = await asyncio.gather(
                    self._persist(self._storage.list_items, ItemKind.NOTE, self._owner),
                    self._persist(self._storage.list_items, ItemKind.FILE, self._owner),
                    self._persist(self._storage.all_tags, self._owner),
                )
            except VaultError as err:
                self._fail("Failed to load vault", err)
                return False
        live = {item.fingerprint for item in (*notes, *files)}
        for fingerprint in self._cache:
            if fingerprint not in live:
                self._cache.remove(fingerprint)
        self._error = None
        self._commit(notes=notes, files=files, all_tags=tags)
        logger.info(
            "Vault loaded for owner=%s: %d note(s), %d file(s)",
            self._owner, len(notes), len(files),
        )
        return True

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _validate_draft(self, kind: ItemKind, draft: Draft) -> None:
        """Raise on programming errors before any async work starts.

        Raises:
            ValueError: If the draft kind mismatches or its label is empty.
            TypeError: If the payload has the wrong type for its kind.
        """
        if draft.kind is not kind:
            raise ValueError(
                f"{type(draft).__name__} cannot create a {kind.value}"
            )
        if not draft.label or not draft.label.strip():
            raise ValueError(f"{kind.value.capitalize()} title cannot be empty")
        if kind is ItemKind.NOTE and not isinstance(draft.payload, str):
            raise TypeError("note content must be str")
        if kind is ItemKind.FILE and not isinstance(draft.payload, (bytes, bytearray)):
            raise TypeError("file data must be bytes")

    async def create_item(
        self,
        kind: ItemKind,
        payload: Draft,
        tags: Optional[Sequence[str]] = None,
        *,
        request_id: Optional[str] = None,
    ) -> Optional[VaultItem]:
        """Encrypt, persist and commit a new note or file.

        A note whose encryption fails is still saved, flagged
        ``encrypted=False``, with a warning. A file whose encryption fails is
        not written at all.

        Args:
            kind: Record kind to create.
            payload: ``NoteDraft`` or ``FileDraft`` matching ``kind``.
            tags: Tags for the new record.
            request_id: Retry key. A repeated call with the same key awaits
                (or returns) the first call's result instead of writing again.

        Returns:
            The persisted record, or None if the operation failed.
        """
        kind = ItemKind(kind)
        self._validate_draft(kind, payload)
        tags = _normalize_tags(tags)

        if request_id is None:
            return await self._create(kind, payload, tags, f"pending-{uuid.uuid4().hex}")

        done = self._created.get(request_id)
        if done is not None:
            existing = self.get_item(*done)
            if existing is not None:
                logger.debug("Create %s already completed as %s", request_id, done)
                return existing
        pending = self._creates.get(request_id)
        if pending is None:
            pending = asyncio.ensure_future(
                self._create(kind, payload, tags, f"pending-{request_id}", request_id)
            )
            self._creates[request_id] = pending
            pending.add_done_callback(
                functools.partial(self._forget, self._creates, request_id)
            )
        else:
            logger.debug("Create %s coalesced with pending call", request_id)
        return await asyncio.shield(pending)

    async def _create(
        self,
        kind: ItemKind,
        draft: Draft,
        tags: tuple[str, ...],
        pending_key: str,
        request_id: Optional[str] = None,
    ) -> Optional[VaultItem]:
        with self._busy():
            try:
                with self._tracker.track(pending_key, OperationStatus.ENCRYPTING):
                    stored, encrypted = await self._seal_payload(
                        kind, draft.payload, draft.label,
                    )
                if kind is ItemKind.NOTE:
                    record: VaultItem = VaultNote(
                        title=draft.title,
                        content=stored,
                        encrypted=encrypted,
                        tags=tags,
                        owner=self._owner,
                    )
                else:
                    record = VaultFile(
                        name=draft.name,
                        mime_type=draft.mime_type or DEFAULT_MIME_TYPE,
                        size=draft.size,
                        data=stored,
                        encrypted=True,
                        tags=tags,
                        owner=self._owner,
                    )
                with self._tracker.track(pending_key, OperationStatus.SAVING):
                    item_id = await self._persist(self._storage.add, record)
                    saved = await self._persist(self._storage.get, kind, item_id)
                if saved is None:
                    raise PersistenceFailed(
                        f"{kind.value} {item_id} missing right after save"
                    )
            except VaultError as err:
                self._audit("create", kind, None, err.kind)
                title = "Failed to upload file" if kind is ItemKind.FILE else "Failed to create note"
                self._fail(title, err)
                return None

        self._put(saved)
        if request_id is not None:
            self._remember(request_id, saved.fingerprint)
        state = "encrypted" if saved.encrypted else "saved"
        self._audit("create", kind, saved.id, state)
        logger.info("Created %s for owner=%s (%s)", saved.fingerprint, self._owner, state)
        self.notify(
            "info", "Success",
            f'{kind.value.capitalize()} "{saved.label}" created and {state}.',
        )
        return saved

    async def create_note(
        self,
        title: str,
        content: str,
        tags: Optional[Sequence[str]] = None,
        *,
        request_id: Optional[str] = None,
    ) -> Optional[VaultNote]:
        return await self.create_item(
            ItemKind.NOTE, NoteDraft(title, content), tags, request_id=request_id,
        )

    async def upload_file(
        self,
        name: str,
        data: bytes,
        mime_type: str = DEFAULT_MIME_TYPE,
        tags: Optional[Sequence[str]] = None,
        *,
        request_id: Optional[str] = None,
    ) -> Optional[VaultFile]:
        return await self.create_item(
            ItemKind.FILE, FileDraft(name, data, mime_type), tags, request_id=request_id,
        )

    def _remember(self, request_id: str, fingerprint: Fingerprint) -> None:
        self._created[request_id] = fingerprint
        self._created.move_to_end(request_id)
        while len(self._created) > REQUEST_HISTORY_SIZE:
            self._created.popitem(last=False)

    @staticmethod
    def _forget(registry: dict, key: Any, future: asyncio.Future) -> None:
        if registry.get(key) is future:
            del registry[key]

    # ------------------------------------------------------------------
    # Update
    # ------------------------------------------------------------------

    async def update_item(
        self, kind: ItemKind, item_id: int, **changes: Any
    ) -> Optional[VaultItem]:
        """Re-encrypt a changed payload and persist new field values.

        Notes accept ``title``, ``content`` and ``tags``; files accept
        ``name``, ``data``, ``mime_type`` and ``tags``. The id and
        ``created_at`` are preserved; ``updated_at`` is refreshed. A changed
        payload evicts any revealed plaintext of the old one.

        Returns:
            The updated record, or None if the operation failed.

        Raises:
            ValueError: If ``changes`` names a field that cannot be updated.
        """
        kind = ItemKind(kind)
        unknown = set(changes) - _UPDATABLE[kind]
        if unknown:
            raise ValueError(f"Cannot update {sorted(unknown)} of a {kind.value}")
        fingerprint = Fingerprint(kind, item_id)
        title = f"Failed to update {kind.value}"
        current = self.get_item(kind, item_id)
        if current is None:
            self._fail(title, NotFound(f"{kind.value} {item_id} does not exist"))
            return None

        updates = dict(changes)
        if "tags" in updates:
            updates["tags"] = _normalize_tags(updates["tags"])
        for name in ("title", "name"):
            if name in updates and not str(updates[name]).strip():
                raise ValueError(f"{kind.value.capitalize()} {name} cannot be empty")
        label = updates.get("title") or updates.get("name") or current.label
        payload_changed = current.payload_field in updates
        if payload_changed:
            plaintext = updates[current.payload_field]
            if kind is ItemKind.NOTE and not isinstance(plaintext, str):
                raise TypeError("note content must be str")
            if kind is ItemKind.FILE and not isinstance(plaintext, (bytes, bytearray)):
                raise TypeError("file data must be bytes")

        with self._busy():
            try:
                if payload_changed:
                    with self._tracker.track(fingerprint, OperationStatus.ENCRYPTING):
                        stored, encrypted = await self._seal_payload(kind, plaintext, label)
                    updates[current.payload_field] = stored
                    updates["encrypted"] = encrypted
                    if kind is ItemKind.FILE:
                        updates["size"] = len(plaintext)
                with self._tracker.track(fingerprint, OperationStatus.UPDATING):
                    await self._persist(self._storage.update, kind, item_id, updates)
                    saved = await self._persist(self._storage.get, kind, item_id)
                if saved is None:
                    raise NotFound(f"{kind.value} {item_id} does not exist")
            except VaultError as err:
                self._audit("update", kind, item_id, err.kind)
                self._fail(title, err)
                return None

        if self.get_item(kind, item_id) is None:
            logger.debug("Update of %s finished after it was deleted", fingerprint)
            return None
        if payload_changed:
            self._cache.remove(fingerprint)
        self._put(saved)
        state = "encrypted" if saved.encrypted else "saved"
        self._audit("update", kind, item_id, state)
        logger.info("Updated %s for owner=%s", fingerprint, self._owner)
        self.notify(
            "info", "Success",
            f'{kind.value.capitalize()} "{saved.label}" updated and {state}.',
        )
        return saved

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    async def delete_item(self, kind: ItemKind, item_id: int) -> bool:
        """Remove a record from persistence and from the session.

        Deleting an id that is already gone is a logged no-op.

        Returns:
            True if a record was deleted.
        """
        kind = ItemKind(kind)
        fingerprint = Fingerprint(kind, item_id)
        if self.get_item(kind, item_id) is None:
            logger.debug("Delete of missing %s ignored", fingerprint)
            self._cache.remove(fingerprint)
            self._tracker.clear_key(fingerprint)
            return False
        try:
            with self._tracker.track(fingerprint, OperationStatus.DELETING):
                await self._persist(self._storage.delete, kind, item_id)
        except VaultError as err:
            self._audit("delete", kind, item_id, err.kind)
            self._fail(f"Failed to delete {kind.value}", err)
            return False
        self._drop(kind, item_id)
        self._audit("delete", kind, item_id, "deleted")
        logger.info("Deleted %s for owner=%s", fingerprint, self._owner)
        self.notify(
            "info", "Success", f"{kind.value.capitalize()} deleted successfully.",
        )
        return True

    # ------------------------------------------------------------------
    # Reveal / hide
    # ------------------------------------------------------------------

    async def reveal_item(
        self, kind: ItemKind, item_id: int
    ) -> Optional[RevealedContent]:
        """Return the plaintext of a record, caching it until hidden or purged.

        Already revealed records are served from the cache. Unencrypted
        records are copied as-is. Otherwise one decrypt call is issued per
        fingerprint; concurrent reveals of the same record await that call.

        Returns:
            TextContent for notes, BinaryContent for files, or None if the
            record is missing, decryption failed, the record was hidden while
            decrypting, or the session was torn down.
        """
        kind = ItemKind(kind)
        fingerprint = Fingerprint(kind, item_id)
        cached = self._cache.lookup(fingerprint)
        if cached is not None:
            return cached
        if self._closed:
            logger.debug("Reveal of %s refused after teardown", fingerprint)
            return None
        item = self.get_item(kind, item_id)
        if item is None:
            self._fail(
                "Decryption Failed",
                NotFound(f"{kind.value} {item_id} does not exist"),
            )
            return None

        if not item.encrypted:
            content = wrap_content(kind, item.payload)
            self._cache.insert(fingerprint, content)
            self._audit("reveal", kind, item_id, "plaintext")
            await self._touch(item)
            return content

        pending = self._reveals.get(fingerprint)
        if pending is None:
            pending = asyncio.ensure_future(self._reveal(item))
            self._reveals[fingerprint] = pending
            pending.add_done_callback(
                functools.partial(self._forget, self._reveals, fingerprint)
            )
        else:
            # asking again after a hide revives the pending decrypt
            self._hide_requested.discard(fingerprint)
            logger.debug("Reveal of %s coalesced with pending decrypt", fingerprint)
        return await asyncio.shield(pending)

    async def _reveal(self, item: VaultItem) -> Optional[RevealedContent]:
        fingerprint = item.fingerprint
        try:
            with self._tracker.track(fingerprint, OperationStatus.DECRYPTING):
                content = await self._decrypt(item.kind, item.payload)
        except VaultError as err:
            self._hide_requested.discard(fingerprint)
            self._audit("reveal", item.kind, item.id, err.kind)
            self._fail("Decryption Failed", err)
            return None

        hidden = fingerprint in self._hide_requested
        self._hide_requested.discard(fingerprint)
        if hidden:
            logger.debug("Discarded reveal of %s hidden while decrypting", fingerprint)
            return None
        if self._closed:
            logger.info("Discarded reveal of %s resolved after teardown", fingerprint)
            return None
        current = self.get_item(item.kind, item.id)
        if current is None or current.payload != item.payload:
            logger.debug("Discarded stale reveal of %s", fingerprint)
            return None
        self._cache.insert(fingerprint, content)
        self._audit("reveal", item.kind, item.id, "decrypted")
        await self._touch(current)
        return content

    async def _touch(self, item: VaultItem) -> None:
        """Stamp ``last_accessed`` and commit; persisting it is best effort."""
        now = utcnow()
        current = self.get_item(item.kind, item.id) or item
        self._put(current.model_copy(update={"last_accessed": now}))
        try:
            await self._persist(self._storage.mark_accessed, item.kind, item.id, now)
        except VaultError as err:
            logger.warning(
                "Could not record access to %s: %s", item.fingerprint, err.kind,
            )

    def hide_item(self, kind: ItemKind, item_id: int) -> None:
        """Discard one record's revealed plaintext. Always succeeds.

        A decrypt still pending for the record is discarded when it resolves.
        """
        fingerprint = Fingerprint(ItemKind(kind), item_id)
        pending = fingerprint in self._reveals
        if pending:
            self._hide_requested.add(fingerprint)
        if self._cache.remove(fingerprint) or pending:
            self._audit("hide", fingerprint.kind, item_id, "hidden")
            self._emit()

    async def download_file(self, item_id: int) -> Optional[DownloadedFile]:
        """Reveal a file and package it with its name and MIME type."""
        file = self.get_item(ItemKind.FILE, item_id)
        if file is None:
            self._fail(
                "Failed to download file",
                NotFound(f"file {item_id} does not exist"),
            )
            return None
        content = await self.reveal_item(ItemKind.FILE, item_id)
        if not isinstance(content, BinaryContent):
            return None
        self._audit("download", ItemKind.FILE, item_id, "downloaded")
        self.notify("info", "Success", f'File "{file.name}" downloaded.')
        return DownloadedFile(file.name, file.mime_type, content.data)

    # ------------------------------------------------------------------
    # Favorite
    # ------------------------------------------------------------------

    async def toggle_favorite(
        self, kind: ItemKind, item_id: int
    ) -> Optional[VaultItem]:
        """Flip and persist the favorite flag.

        Failure leaves the collection as it was and never touches the cache.
        """
        kind = ItemKind(kind)
        fingerprint = Fingerprint(kind, item_id)
        title = "Failed to update favorite status."
        current = self.get_item(kind, item_id)
        if current is None:
            self._fail(title, NotFound(f"{kind.value} {item_id} does not exist"))
            return None
        favorite = not current.favorite
        try:
            with self._tracker.track(fingerprint, OperationStatus.UPDATING):
                await self._persist(
                    self._storage.update, kind, item_id, {"favorite": favorite},
                )
                saved = await self._persist(self._storage.get, kind, item_id)
            if saved is None:
                raise NotFound(f"{kind.value} {item_id} does not exist")
        except VaultError as err:
            self._audit("favorite", kind, item_id, err.kind)
            self._fail(title, err)
            return None
        if self.get_item(kind, item_id) is None:
            return None
        self._put(saved)
        self._audit("favorite", kind, item_id, "on" if favorite else "off")
        self.notify(
            "info", "Success",
            f"{kind.value.capitalize()} {'added to' if favorite else 'removed from'} favorites.",
        )
        return saved

    # ------------------------------------------------------------------
    # Filters
    # ------------------------------------------------------------------

    def set_search_term(self, term: Optional[str]) -> None:
        self._search_term = term or ""
        self._recompute()
        self._emit()

    def set_tag_filter(self, tags: Optional[Sequence[str]]) -> None:
        self._selected_tags = _normalize_tags(tags)
        self._recompute()
        self._emit()

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    def purge_decrypted_cache(
        self, reason: str = "manual", *, teardown: bool = False
    ) -> int:
        """Drop every revealed plaintext, synchronously.

        Safe on an empty cache. With ``teardown`` the session is closed as
        well: reveals resolving afterwards are discarded, not cached.

        Returns:
            Number of entries that were purged.
        """
        count = self._cache.purge()
        if teardown:
            self._closed = True
        logger.info("Decrypted cache purged: reason=%s entries=%d", reason, count)
        self._audit("purge", None, None, reason)
        self._emit()
        return count
