"""
Vault Configuration — session settings read from the environment.

    VAULT_MASTER_KEY_v{N}    base64 of a 32-byte master key, one per version
    VAULT_ACTIVE_KEY_ID      version new ciphertext is sealed under
    VAULT_CIPHER_BACKEND     aesgcm (default) | chacha20
    VAULT_AUTOLOCK_TIMEOUT   seconds without activity before revealed content is purged
    VAULT_AUDIT_SIZE         audit events kept in memory per session

Every reader takes an optional ``environ`` mapping so tests and embedding
applications can pass settings without touching ``os.environ``.

Security Note:
    Never log key material. Only log key versions.
"""
import os
import re
import base64
import secrets
import logging
from typing import Mapping, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

logger = logging.getLogger("vault_session.vault")

_KEY_ENV_PATTERN = re.compile(r"^VAULT_MASTER_KEY_v(\d+)$")

KEY_SIZE = 32
CIPHER_BACKENDS = ("aesgcm", "chacha20")
DEFAULT_AUTOLOCK_TIMEOUT = 300.0  # 5 minutes
DEFAULT_AUDIT_SIZE = 200


def _environ(environ: Optional[Mapping[str, str]]) -> Mapping[str, str]:
    return os.environ if environ is None else environ


def _decode_key(name: str, value: str) -> bytes:
    key = base64.b64decode(value)
    if len(key) != KEY_SIZE:
        raise ValueError(f"{name} must decode to {KEY_SIZE} bytes, got {len(key)}")
    return key


def load_master_keys(environ: Optional[Mapping[str, str]] = None) -> dict[int, bytes]:
    """Collect every ``VAULT_MASTER_KEY_v{N}`` into a version -> key map.

    Raises:
        RuntimeError: If no master key is configured.
        ValueError: If a key does not decode to 32 bytes.
    """
    keys: dict[int, bytes] = {}
    for name, value in _environ(environ).items():
        match = _KEY_ENV_PATTERN.match(name)
        if match:
            keys[int(match.group(1))] = _decode_key(name, value)
    if not keys:
        raise RuntimeError(
            "No vault master key configured; "
            "set VAULT_MASTER_KEY_v1=<base64 of 32 random bytes>"
        )
    logger.debug("Master key versions available: %s", sorted(keys))
    return keys


def get_active_key_id(environ: Optional[Mapping[str, str]] = None) -> int:
    """Version named by ``VAULT_ACTIVE_KEY_ID``.

    Raises:
        RuntimeError: If the variable is unset.
    """
    raw = _environ(environ).get("VAULT_ACTIVE_KEY_ID")
    if raw is None:
        raise RuntimeError("VAULT_ACTIVE_KEY_ID is not set")
    return int(raw)


def generate_master_key() -> str:
    """A fresh random master key, base64-encoded for the environment."""
    return base64.b64encode(secrets.token_bytes(KEY_SIZE)).decode("ascii")


class VaultConfig(BaseModel):
    """Settings shared by the gateway, the session store and the auto-lock."""

    master_keys: dict[int, bytes] = Field(repr=False)
    active_key_id: int
    cipher_backend: str = "aesgcm"
    autolock_timeout: float = Field(default=DEFAULT_AUTOLOCK_TIMEOUT, gt=0)
    audit_size: int = Field(default=DEFAULT_AUDIT_SIZE, ge=1, le=10000)
    notification_size: int = Field(default=50, ge=1, le=1000)

    @field_validator("cipher_backend")
    @classmethod
    def known_backend(cls, v: str) -> str:
        v = v.lower()
        if v not in CIPHER_BACKENDS:
            raise ValueError(f"cipher_backend must be one of {CIPHER_BACKENDS}, got {v!r}")
        return v

    @field_validator("master_keys")
    @classmethod
    def full_length_keys(cls, v: dict[int, bytes]) -> dict[int, bytes]:
        short = sorted(version for version, key in v.items() if len(key) != KEY_SIZE)
        if short:
            raise ValueError(f"master key version(s) {short} are not {KEY_SIZE} bytes")
        return v

    @model_validator(mode="after")
    def active_key_loaded(self) -> "VaultConfig":
        if self.active_key_id not in self.master_keys:
            raise ValueError(
                f"active_key_id {self.active_key_id} has no master key "
                f"(loaded versions: {sorted(self.master_keys)})"
            )
        return self

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "VaultConfig":
        """Build the configuration from ``environ`` (default ``os.environ``)."""
        env = _environ(environ)
        return cls(
            master_keys=load_master_keys(env),
            active_key_id=get_active_key_id(env),
            cipher_backend=env.get("VAULT_CIPHER_BACKEND", "aesgcm"),
            autolock_timeout=float(env.get("VAULT_AUTOLOCK_TIMEOUT", DEFAULT_AUTOLOCK_TIMEOUT)),
            audit_size=int(env.get("VAULT_AUDIT_SIZE", DEFAULT_AUDIT_SIZE)),
        )
