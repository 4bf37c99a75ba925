"""
Tests for the crypto core and the AEAD encryption gateway.

Tests cover:
- HKDF derivation and envelope encoding
- Value serialization (bytes wrapper)
- Text and binary round-trips, scope separation
- Fail-closed behavior while not authenticated
- Tampering, unknown key versions and key version changes
"""
import base64

import orjson
import pytest

from vault_session.errors import DecryptionFailed, EncryptionFailed, GatewayUnavailable
from vault_session.vault.config import VaultConfig
from vault_session.vault.crypto import (
    decode_envelope,
    derive_key,
    deserialize_value,
    encode_envelope,
    get_cipher_cls,
    serialize_value,
)
from vault_session.vault.gateway import AeadEncryptionGateway, EncryptionGateway, Err, Ok

from conftest import MASTER_KEY_V1, MASTER_KEY_V2

NOTE_TAGS = ["vault-note"]
FILE_TAGS = ["vault-file"]


class TestCryptoCore:
    """Tests for key derivation and serialization helpers."""

    def test_derive_key_is_deterministic(self):
        """Test the same seed and context give the same key."""
        assert derive_key(MASTER_KEY_V1, "vault-note-v1") == derive_key(MASTER_KEY_V1, "vault-note-v1")
        assert len(derive_key(MASTER_KEY_V1, "vault-note-v1")) == 32

    def test_derive_key_separates_contexts(self):
        """Test different contexts give different keys."""
        assert derive_key(MASTER_KEY_V1, "vault-note-v1") != derive_key(MASTER_KEY_V1, "vault-file-v1")

    def test_serialize_roundtrip_text(self):
        """Test str survives serialization."""
        assert deserialize_value(serialize_value("héllo")) == "héllo"

    def test_serialize_roundtrip_bytes(self):
        """Test bytes are wrapped and restored."""
        data = bytes(range(256))
        assert deserialize_value(serialize_value(data)) == data

    def test_envelope_roundtrip(self):
        """Test envelope fields survive encoding."""
        envelope = encode_envelope(3, b"n" * 12, b"c" * 20, ["vault-note"])
        assert decode_envelope(envelope) == (3, b"n" * 12, b"c" * 20, ["vault-note"])

    @pytest.mark.parametrize("junk", ["not json", "[1, 2]", '{"v": 1}', b"\xff\xfe"])
    def test_decode_envelope_rejects_junk(self, junk):
        """Test malformed envelopes raise ValueError."""
        with pytest.raises(ValueError):
            decode_envelope(junk)

    def test_unknown_cipher_backend(self):
        """Test unsupported backends are rejected."""
        with pytest.raises(ValueError):
            get_cipher_cls("rot13")


class TestAeadGateway:
    """Tests for AeadEncryptionGateway."""

    def test_satisfies_protocol(self, aead_gateway):
        """Test the adapter implements the capability interface."""
        assert isinstance(aead_gateway, EncryptionGateway)

    def test_unknown_active_key(self):
        """Test construction fails when the active key is missing."""
        with pytest.raises(KeyError):
            AeadEncryptionGateway({1: MASTER_KEY_V1}, active_key_id=2)

    def test_from_config(self, master_keys):
        """Test building from a VaultConfig."""
        config = VaultConfig(master_keys=master_keys, active_key_id=1)
        gateway = AeadEncryptionGateway.from_config(config, authenticated=True)
        assert gateway.ready is True
        assert gateway.active_key_id == 1

    @pytest.mark.asyncio
    async def test_text_roundtrip(self, aead_gateway):
        """Test text encrypts to a str envelope and decrypts back."""
        result = await aead_gateway.encrypt("secret", NOTE_TAGS)
        assert isinstance(result, Ok)
        assert isinstance(result.value, str)
        assert "secret" not in result.value
        opened = await aead_gateway.decrypt(result.value, NOTE_TAGS)
        assert opened == Ok("secret")

    @pytest.mark.asyncio
    async def test_binary_roundtrip(self, aead_gateway):
        """Test bytes encrypt to a bytes envelope and decrypt back."""
        data = b"\x89PNG\r\n\x1a\n" + bytes(range(200))
        result = await aead_gateway.encrypt(data, FILE_TAGS)
        assert isinstance(result.value, bytes)
        assert data not in result.value
        opened = await aead_gateway.decrypt(result.value, FILE_TAGS)
        assert opened.success is True
        assert opened.value == data

    @pytest.mark.asyncio
    async def test_nonces_differ(self, aead_gateway):
        """Test encrypting twice yields different ciphertext."""
        first = await aead_gateway.encrypt("same", NOTE_TAGS)
        second = await aead_gateway.encrypt("same", NOTE_TAGS)
        assert first.value != second.value

    @pytest.mark.asyncio
    async def test_scope_mismatch(self, aead_gateway):
        """Test note ciphertext does not open as a file."""
        result = await aead_gateway.encrypt("secret", NOTE_TAGS)
        opened = await aead_gateway.decrypt(result.value, FILE_TAGS)
        assert isinstance(opened, Err)
        assert isinstance(opened.error, DecryptionFailed)

    @pytest.mark.asyncio
    async def test_fails_closed_when_not_authenticated(self, aead_gateway):
        """Test both calls return GatewayUnavailable instead of raising."""
        sealed = await aead_gateway.encrypt("secret", NOTE_TAGS)
        aead_gateway.authenticated = False
        assert aead_gateway.ready is False
        result = await aead_gateway.encrypt("secret", NOTE_TAGS)
        assert isinstance(result, Err)
        assert isinstance(result.error, GatewayUnavailable)
        opened = await aead_gateway.decrypt(sealed.value, NOTE_TAGS)
        assert isinstance(opened.error, GatewayUnavailable)

    @pytest.mark.asyncio
    async def test_requires_tags(self, aead_gateway):
        """Test encrypting without a scope tag fails."""
        result = await aead_gateway.encrypt("secret", [])
        assert isinstance(result.error, EncryptionFailed)

    @pytest.mark.asyncio
    async def test_rejects_unsupported_payload(self, aead_gateway):
        """Test non text/binary payloads fail."""
        result = await aead_gateway.encrypt({"a": 1}, NOTE_TAGS)
        assert isinstance(result.error, EncryptionFailed)

    @pytest.mark.asyncio
    async def test_tampered_ciphertext(self, aead_gateway):
        """Test a modified ciphertext fails authentication."""
        result = await aead_gateway.encrypt("secret", NOTE_TAGS)
        envelope = orjson.loads(result.value)
        raw = bytearray(base64.b64decode(envelope["c"]))
        raw[0] ^= 0x01
        envelope["c"] = base64.b64encode(bytes(raw)).decode("ascii")
        opened = await aead_gateway.decrypt(orjson.dumps(envelope).decode(), NOTE_TAGS)
        assert isinstance(opened.error, DecryptionFailed)
        assert "authentication" in opened.reason

    @pytest.mark.asyncio
    async def test_garbage_ciphertext(self, aead_gateway):
        """Test plaintext passed as ciphertext fails cleanly."""
        opened = await aead_gateway.decrypt("just some text", NOTE_TAGS)
        assert isinstance(opened.error, DecryptionFailed)

    @pytest.mark.asyncio
    async def test_unknown_key_version(self, aead_gateway):
        """Test ciphertext from a key this gateway lacks."""
        other = AeadEncryptionGateway({2: MASTER_KEY_V2}, 2, authenticated=True)
        sealed = await other.encrypt("secret", NOTE_TAGS)
        opened = await aead_gateway.decrypt(sealed.value, NOTE_TAGS)
        assert isinstance(opened.error, DecryptionFailed)

    @pytest.mark.asyncio
    async def test_older_key_version_still_opens(self, aead_gateway):
        """Test records sealed under v1 open after v2 becomes active."""
        sealed = await aead_gateway.encrypt("secret", NOTE_TAGS)
        rotated = AeadEncryptionGateway(
            {1: MASTER_KEY_V1, 2: MASTER_KEY_V2}, 2, authenticated=True,
        )
        assert await rotated.decrypt(sealed.value, NOTE_TAGS) == Ok("secret")
        resealed = await rotated.encrypt("secret", NOTE_TAGS)
        assert orjson.loads(resealed.value)["v"] == 2

    @pytest.mark.asyncio
    async def test_chacha20_backend(self, master_keys):
        """Test the ChaCha20-Poly1305 backend round-trips."""
        gateway = AeadEncryptionGateway(
            master_keys, 1, cipher_backend="chacha20", authenticated=True,
        )
        sealed = await gateway.encrypt(b"payload", FILE_TAGS)
        assert (await gateway.decrypt(sealed.value, FILE_TAGS)).value == b"payload"

    def test_result_reprs_hide_values(self):
        """Test Ok does not print its value."""
        assert "secret" not in repr(Ok("secret"))
