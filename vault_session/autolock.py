"""
Auto-Lock Monitor — purges revealed plaintext when the session goes unattended.

Two states, always re-derived from the store's cache:
- **Armed**: at least one record is revealed; the inactivity timer runs.
- **Idle**: nothing is revealed; no timer exists.

Environment adapters (a browser bridge, a desktop shell, a test) report
events through plain methods. Every trigger purges synchronously, before the
method returns, through ``SessionStore.purge_decrypted_cache``.
"""
import asyncio
import logging
from enum import Enum
from typing import Callable, Optional

from .store import SessionStore
from .vault.config import DEFAULT_AUTOLOCK_TIMEOUT, VaultConfig

logger = logging.getLogger("vault_session")

# user input that counts as activity and resets the inactivity timer
ACTIVITY_EVENTS = frozenset({"pointer", "key", "scroll", "touch"})


class LockState(str, Enum):
    ARMED = "armed"
    IDLE = "idle"


class LockReason(str, Enum):
    INACTIVITY = "inactivity"
    HIDDEN = "visibility_hidden"
    FOCUS_LOST = "focus_lost"
    TEARDOWN = "teardown"


class AutoLockMonitor:
    """Watches for inactivity, hidden tab, focus loss and teardown.

    Attach it to a store once; it subscribes to state changes and arms
    itself whenever the decrypted cache becomes non-empty.
    """

    def __init__(
        self,
        store: SessionStore,
        timeout: float = DEFAULT_AUTOLOCK_TIMEOUT,
        *,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        if timeout <= 0:
            raise ValueError("Auto-lock timeout must be positive")
        self._store = store
        self._timeout = timeout
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._unsubscribe: Optional[Callable[[], None]] = None
        self.lock_count = 0

    def __repr__(self) -> str:
        return f'<AutoLockMonitor state={self.state.value} timeout={self._timeout}>'

    @classmethod
    def from_config(
        cls, store: SessionStore, config: VaultConfig, **kwargs
    ) -> "AutoLockMonitor":
        return cls(store, config.autolock_timeout, **kwargs)

    # --- Properties ---

    @property
    def state(self) -> LockState:
        if self._store.cache.empty:
            return LockState.IDLE
        return LockState.ARMED

    @property
    def timeout(self) -> float:
        return self._timeout

    @property
    def attached(self) -> bool:
        return self._unsubscribe is not None

    @property
    def timer_active(self) -> bool:
        return self._timer is not None

    # --- Lifecycle ---

    def attach(self) -> "AutoLockMonitor":
        if self._unsubscribe is None:
            self._unsubscribe = self._store.subscribe(self._on_store_change)
            self.sync()
        return self

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self._cancel()

    def sync(self) -> None:
        """Start or stop the inactivity timer to match the cache."""
        if self.state is LockState.ARMED:
            if self._timer is None:
                self._schedule()
        else:
            self._cancel()

    def _on_store_change(self, store: SessionStore) -> None:
        self.sync()

    # --- Environment events ---

    def record_activity(self, event: str = "pointer") -> None:
        """Qualifying user input; restarts the inactivity window while Armed."""
        if event not in ACTIVITY_EVENTS:
            return
        if self.state is LockState.ARMED:
            self._schedule()

    def visibility_changed(self, hidden: bool) -> None:
        if hidden:
            self.lock(LockReason.HIDDEN)

    def focus_lost(self) -> None:
        self.lock(LockReason.FOCUS_LOST)

    def teardown(self) -> None:
        """Page is going away; purge and close the session for good."""
        self.lock(LockReason.TEARDOWN)

    # --- Locking ---

    def lock(self, reason: LockReason) -> bool:
        """Purge now. Returns whether anything was purged or closed.

        While Idle the visibility, focus and inactivity triggers are no-ops.
        Teardown always closes the store and never notifies, since no UI
        survives to show it.
        """
        reason = LockReason(reason)
        if reason is LockReason.TEARDOWN:
            self._cancel()
            self._store.purge_decrypted_cache(reason.value, teardown=True)
            self.lock_count += 1
            return True
        if self.state is LockState.IDLE:
            self._cancel()
            return False
        count = self._store.purge_decrypted_cache(reason.value)
        self._cancel()
        self.lock_count += 1
        logger.info("Auto-lock (%s) hid %d revealed item(s)", reason.value, count)
        self._store.notify("info", "Content hidden", self._message(reason))
        return True

    def _message(self, reason: LockReason) -> str:
        if reason is LockReason.INACTIVITY:
            minutes = self._timeout / 60
            return (
                f"Decrypted content was hidden for security after "
                f"{minutes:g} minute(s) of inactivity."
            )
        if reason is LockReason.HIDDEN:
            return "Decrypted content was hidden for security while the vault was not visible."
        return "Decrypted content was hidden for security when the window lost focus."

    # --- Timer ---

    def _schedule(self) -> None:
        self._cancel()
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._timeout, self._on_timeout)

    def _cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timeout(self) -> None:
        self._timer = None
        self.lock(LockReason.INACTIVITY)
