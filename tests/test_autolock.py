"""
Tests for AutoLockMonitor.

Tests cover:
- Armed / Idle derived from the decrypted cache
- Visibility, focus and teardown triggers purging synchronously
- Inactivity timeout and activity resets
- Persisted records untouched by a lock
"""
import asyncio

import pytest

from vault_session import AutoLockMonitor, LockReason, LockState
from vault_session.models import ItemKind, TextContent
from vault_session.vault.config import VaultConfig

from conftest import MASTER_KEY_V1

pytestmark = pytest.mark.asyncio


@pytest.fixture
def monitor(store):
    monitor = AutoLockMonitor(store, timeout=60).attach()
    yield monitor
    monitor.detach()


async def reveal_note(store, title="T1", content="hello"):
    note = await store.create_note(title, content)
    await store.reveal_item(ItemKind.NOTE, note.id)
    return note


class TestConstruction:
    """Tests for building a monitor."""

    async def test_invalid_timeout(self, store):
        """Test a non-positive timeout is rejected."""
        with pytest.raises(ValueError):
            AutoLockMonitor(store, timeout=0)

    async def test_from_config(self, store):
        """Test the timeout comes from configuration."""
        config = VaultConfig(master_keys={1: MASTER_KEY_V1}, active_key_id=1, autolock_timeout=90)
        assert AutoLockMonitor.from_config(store, config).timeout == 90


class TestStates:
    """Tests for Armed and Idle following the cache."""

    async def test_idle_on_start(self, monitor):
        """Test nothing is armed while the cache is empty."""
        assert monitor.state is LockState.IDLE
        assert monitor.timer_active is False

    async def test_reveal_arms(self, store, monitor):
        """Test the first reveal arms the timer."""
        await reveal_note(store)
        assert monitor.state is LockState.ARMED
        assert monitor.timer_active is True

    async def test_hiding_last_item_goes_idle(self, store, monitor):
        """Test the timer stops once nothing is revealed."""
        note = await reveal_note(store)
        store.hide_item(ItemKind.NOTE, note.id)
        assert monitor.state is LockState.IDLE
        assert monitor.timer_active is False


class TestTriggers:
    """Tests for focus, visibility and teardown locks."""

    async def test_focus_lost_purges(self, store, storage, monitor):
        """Test losing focus hides revealed content and keeps the data."""
        note = await reveal_note(store)
        assert store.get_revealed(ItemKind.NOTE, note.id) == TextContent("hello")
        before = await storage.get(ItemKind.NOTE, note.id)

        monitor.focus_lost()

        assert store.cache.empty
        assert monitor.state is LockState.IDLE
        assert await storage.get(ItemKind.NOTE, note.id) == before
        assert store.notifications[-1].title == "Content hidden"
        assert "lost focus" in store.notifications[-1].message

    async def test_reveal_then_blur_keeps_ciphertext(self, store, storage, monitor):
        """Test the create, reveal, blur cycle leaves only ciphertext behind."""
        note = await store.create_note("T1", "secret")
        assert note.encrypted is True
        assert store.cache.empty

        assert await store.reveal_item(ItemKind.NOTE, note.id) == TextContent("secret")
        assert store.get_revealed(ItemKind.NOTE, note.id) == TextContent("secret")

        monitor.focus_lost()
        assert store.cache.empty
        stored = await storage.get(ItemKind.NOTE, note.id)
        assert stored.encrypted is True
        assert stored.content == note.content

    async def test_hidden_purges(self, store, monitor):
        """Test a hidden page hides revealed content before returning."""
        await reveal_note(store)
        monitor.visibility_changed(hidden=True)
        assert store.cache.empty
        assert monitor.lock_count == 1

    async def test_visible_is_noop(self, store, monitor):
        """Test becoming visible does not purge."""
        await reveal_note(store)
        monitor.visibility_changed(hidden=False)
        assert not store.cache.empty

    async def test_triggers_while_idle_do_nothing(self, store, monitor):
        """Test locks while Idle neither purge nor notify."""
        monitor.focus_lost()
        monitor.visibility_changed(hidden=True)
        assert monitor.lock(LockReason.INACTIVITY) is False
        assert monitor.lock_count == 0
        assert len(store.notifications) == 0

    async def test_teardown(self, store, monitor):
        """Test teardown purges, closes the store and stays silent."""
        note = await reveal_note(store)
        count = len(store.notifications)
        monitor.teardown()
        assert store.cache.empty
        assert store.closed is True
        assert len(store.notifications) == count
        assert await store.reveal_item(ItemKind.NOTE, note.id) is None


class TestInactivityTimer:
    """Tests for the inactivity timeout and activity resets."""

    async def test_inactivity_timeout(self, store):
        """Test the cache is purged after the timeout elapses."""
        monitor = AutoLockMonitor(store, timeout=0.05).attach()
        await reveal_note(store)
        await asyncio.sleep(0.15)
        assert store.cache.empty
        assert monitor.state is LockState.IDLE
        assert "inactivity" in store.notifications[-1].message
        monitor.detach()

    async def test_activity_resets_timer(self, store):
        """Test qualifying input postpones the purge."""
        monitor = AutoLockMonitor(store, timeout=0.2).attach()
        await reveal_note(store)
        for _ in range(3):
            await asyncio.sleep(0.1)
            monitor.record_activity("key")
        assert not store.cache.empty
        await asyncio.sleep(0.3)
        assert store.cache.empty
        monitor.detach()

    async def test_unknown_events_ignored(self, store):
        """Test non-qualifying events do not reset the timer."""
        monitor = AutoLockMonitor(store, timeout=0.1).attach()
        await reveal_note(store)
        await asyncio.sleep(0.03)
        monitor.record_activity("resize")
        await asyncio.sleep(0.15)
        assert store.cache.empty
        monitor.detach()

    async def test_activity_while_idle_starts_nothing(self, monitor):
        """Test input without revealed content does not arm a timer."""
        monitor.record_activity("pointer")
        assert monitor.timer_active is False


class TestDetach:
    """Tests for detaching from the store."""

    async def test_detach(self, store, monitor):
        """Test a detached monitor no longer follows the store."""
        monitor.detach()
        assert monitor.attached is False
        await reveal_note(store)
        assert monitor.timer_active is False
