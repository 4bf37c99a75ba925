"""
Vault Crypto Core — Key derivation, AEAD sealing, and serialization.

Implements the reference cipher behind the Encryption Gateway:
- Scope key: HKDF(MASTER_KEY_vN, "{tag}-vN") -> AEAD key per record kind
- Sealed payload: AEAD(nonce, serialize_value(payload), aad=tags)
- Envelope: orjson {"v": key_id, "n": nonce_b64, "c": ct_b64, "t": tags}

Security Note:
    Never log plaintext, ciphertext or key material.
    Nonces are random 96-bit; collision probability negligible under normal usage.
"""
import os
import base64
import logging
from typing import Any, Sequence, Union

import orjson
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM, ChaCha20Poly1305

logger = logging.getLogger("vault_session.vault")

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # AEAD authentication tag
KEY_LENGTH = 32  # AES-256

BYTES_WRAPPER_KEY = "__vault_bytes_b64__"

_CIPHERS = {
    "aesgcm": AESGCM,
    "chacha20": ChaCha20Poly1305,
}


def get_cipher_cls(backend: str = "aesgcm") -> type:
    """Return the AEAD cipher class for a backend name.

    Raises:
        ValueError: If the backend is not supported.
    """
    try:
        return _CIPHERS[backend.lower()]
    except KeyError:
        raise ValueError(f"Unsupported cipher backend: {backend}") from None


# ---------------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------------

def derive_key(seed: bytes, context: str) -> bytes:
    """Derive a 32-byte encryption key using HKDF-SHA256.

    Args:
        seed: Input key material (master key bytes).
        context: Context string for domain separation (e.g. "vault-note-v1").

    Returns:
        32-byte derived key.
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=None,  # deterministic derivation per (key version, scope)
        info=context.encode("utf-8"),
    )
    return hkdf.derive(seed)


def scope_context(tags: Sequence[str], key_id: int) -> str:
    """HKDF context binding a key version to the scope tags."""
    return f"{'+'.join(tags)}-v{key_id}"


def associated_data(tags: Sequence[str]) -> bytes:
    """AEAD associated data; ciphertext opened under other tags fails."""
    return "\x1f".join(tags).encode("utf-8")


# ---------------------------------------------------------------------------
# Sealing
# ---------------------------------------------------------------------------

def seal(
    plaintext: bytes,
    key: bytes,
    aad: bytes,
    cipher_cls: type = AESGCM,
) -> tuple[bytes, bytes]:
    """Encrypt plaintext with a fresh random nonce.

    Returns:
        Tuple of (nonce, ciphertext_with_tag).
    """
    nonce = os.urandom(NONCE_SIZE)
    return nonce, cipher_cls(key).encrypt(nonce, plaintext, aad)


def open_sealed(
    nonce: bytes,
    ciphertext: bytes,
    key: bytes,
    aad: bytes,
    cipher_cls: type = AESGCM,
) -> bytes:
    """Decrypt and authenticate a sealed payload.

    Raises:
        ValueError: If nonce or ciphertext have an impossible length.
        cryptography.exceptions.InvalidTag: If authentication fails.
    """
    if len(nonce) != NONCE_SIZE:
        raise ValueError(f"nonce must be {NONCE_SIZE} bytes, got {len(nonce)}")
    if len(ciphertext) < TAG_SIZE:
        raise ValueError(
            f"ciphertext too short: {len(ciphertext)} bytes "
            f"(minimum {TAG_SIZE})"
        )
    return cipher_cls(key).decrypt(nonce, ciphertext, aad)


# ---------------------------------------------------------------------------
# Envelope
# ---------------------------------------------------------------------------

def encode_envelope(
    key_id: int, nonce: bytes, ciphertext: bytes, tags: Sequence[str]
) -> bytes:
    """Pack a sealed payload and its scope into a JSON envelope."""
    return orjson.dumps({
        "v": key_id,
        "n": base64.b64encode(nonce).decode("ascii"),
        "c": base64.b64encode(ciphertext).decode("ascii"),
        "t": list(tags),
    })


def decode_envelope(data: Union[str, bytes]) -> tuple[int, bytes, bytes, list[str]]:
    """Unpack an envelope produced by ``encode_envelope``.

    Returns:
        Tuple of (key_id, nonce, ciphertext, tags).

    Raises:
        ValueError: If the envelope is not valid JSON or misses a field.
    """
    try:
        parsed = orjson.loads(data)
    except orjson.JSONDecodeError as err:
        raise ValueError("ciphertext is not a vault envelope") from err
    if not isinstance(parsed, dict) or not {"v", "n", "c", "t"} <= parsed.keys():
        raise ValueError("ciphertext is not a vault envelope")
    try:
        key_id = int(parsed["v"])
        nonce = base64.b64decode(parsed["n"], validate=True)
        ciphertext = base64.b64decode(parsed["c"], validate=True)
    except (TypeError, ValueError) as err:
        raise ValueError(f"malformed vault envelope: {err}") from err
    return key_id, nonce, ciphertext, [str(t) for t in parsed["t"]]


# ---------------------------------------------------------------------------
# Value serialization
# ---------------------------------------------------------------------------

def serialize_value(value: Any) -> bytes:
    """Serialize a Python value to bytes for encryption.

    Supports: str, int, float, dict, list, bytes, bool, None.
    bytes values are wrapped as {BYTES_WRAPPER_KEY: "<base64>"} for safe JSON round-trip.

    Args:
        value: Python value to serialize.

    Returns:
        orjson-encoded bytes.
    """
    if isinstance(value, (bytes, bytearray)):
        return orjson.dumps(wrap_bytes(bytes(value)))
    return orjson.dumps(value)


def deserialize_value(data: bytes) -> Any:
    """Deserialize bytes back to a Python value.

    Args:
        data: orjson-encoded bytes from serialize_value.

    Returns:
        Original Python value.
    """
    return unwrap_bytes(orjson.loads(data))


def wrap_bytes(value: bytes) -> dict:
    return {BYTES_WRAPPER_KEY: base64.b64encode(value).decode("ascii")}


def unwrap_bytes(value: Any) -> Any:
    """Return the bytes hidden in a wrapper dict, or the value unchanged."""
    if isinstance(value, dict) and len(value) == 1 and BYTES_WRAPPER_KEY in value:
        return base64.b64decode(value[BYTES_WRAPPER_KEY])
    return value
