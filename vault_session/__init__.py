"""Vault Session.

Secure content lifecycle for a client-held vault of notes and files:
the session store, its decrypted content cache, the operation tracker,
the filter pipeline and the auto-lock monitor.
"""
from .version import __version__
from .errors import (
    VaultError,
    GatewayUnavailable,
    EncryptionFailed,
    DecryptionFailed,
    PersistenceFailed,
    NotFound,
)
from .models import (
    ItemKind,
    Fingerprint,
    VaultNote,
    VaultFile,
    NoteDraft,
    FileDraft,
    TextContent,
    BinaryContent,
    OperationStatus,
    Notification,
    AuditEvent,
    DownloadedFile,
)
from .data import DecryptedCache, OperationTracker
from .filters import FilteredView, VaultStats, apply_filters
from .store import SessionStore, resolve_owner
from .autolock import AutoLockMonitor, LockReason, LockState

__all__ = [
    "__version__",
    "VaultError",
    "GatewayUnavailable",
    "EncryptionFailed",
    "DecryptionFailed",
    "PersistenceFailed",
    "NotFound",
    "ItemKind",
    "Fingerprint",
    "VaultNote",
    "VaultFile",
    "NoteDraft",
    "FileDraft",
    "TextContent",
    "BinaryContent",
    "OperationStatus",
    "Notification",
    "AuditEvent",
    "DownloadedFile",
    "DecryptedCache",
    "OperationTracker",
    "FilteredView",
    "VaultStats",
    "apply_filters",
    "SessionStore",
    "resolve_owner",
    "AutoLockMonitor",
    "LockReason",
    "LockState",
]
