"""Shared fixtures for the vault session tests."""
import asyncio
from typing import Optional

import pytest

from vault_session.errors import VaultError
from vault_session.store import SessionStore
from vault_session.vault.gateway import AeadEncryptionGateway, Err
from vault_session.vault.storage import MemoryStorage

MASTER_KEY_V1 = bytes(range(32))
MASTER_KEY_V2 = bytes(range(32, 64))


class CountingGateway:
    """Wraps a real gateway, counting calls and optionally holding them."""

    def __init__(self, inner: AeadEncryptionGateway):
        self.inner = inner
        self.encrypt_calls = 0
        self.decrypt_calls = 0
        self.encrypt_gate: Optional[asyncio.Event] = None
        self.decrypt_gate: Optional[asyncio.Event] = None
        self.decrypt_error: Optional[VaultError] = None

    @property
    def ready(self) -> bool:
        return self.inner.ready

    async def encrypt(self, payload, tags):
        self.encrypt_calls += 1
        if self.encrypt_gate is not None:
            await self.encrypt_gate.wait()
        return await self.inner.encrypt(payload, tags)

    async def decrypt(self, ciphertext, tags):
        self.decrypt_calls += 1
        if self.decrypt_gate is not None:
            await self.decrypt_gate.wait()
        if self.decrypt_error is not None:
            return Err(self.decrypt_error)
        return await self.inner.decrypt(ciphertext, tags)


class FlakyStorage(MemoryStorage):
    """MemoryStorage whose operations can be made to fail on demand."""

    def __init__(self) -> None:
        super().__init__()
        self.fail_on: set[str] = set()

    def _maybe_fail(self, operation: str) -> None:
        if operation in self.fail_on:
            raise ConnectionError(f"{operation} unavailable")

    async def add(self, item):
        self._maybe_fail("add")
        return await super().add(item)

    async def update(self, kind, item_id, changes):
        self._maybe_fail("update")
        return await super().update(kind, item_id, changes)

    async def mark_accessed(self, kind, item_id, when):
        self._maybe_fail("mark_accessed")
        return await super().mark_accessed(kind, item_id, when)

    async def delete(self, kind, item_id):
        self._maybe_fail("delete")
        return await super().delete(kind, item_id)

    async def list_items(self, kind, owner=None):
        self._maybe_fail("list_items")
        return await super().list_items(kind, owner)


@pytest.fixture
def master_keys():
    return {1: MASTER_KEY_V1}


@pytest.fixture
def aead_gateway(master_keys):
    """An authenticated AEAD gateway."""
    return AeadEncryptionGateway(master_keys, active_key_id=1, authenticated=True)


@pytest.fixture
def gateway(aead_gateway):
    """Counting wrapper around the authenticated AEAD gateway."""
    return CountingGateway(aead_gateway)


@pytest.fixture
def storage():
    return FlakyStorage()


@pytest.fixture
def store(gateway, storage):
    """A session store for owner ``alice``."""
    return SessionStore(gateway, storage, owner="alice")


def errors_of(store: SessionStore) -> list:
    """Error-level notifications raised so far."""
    return [n for n in store.notifications if n.level == "error"]
