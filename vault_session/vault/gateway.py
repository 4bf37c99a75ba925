"""
Encryption Gateway — capability interface and the AEAD reference adapter.

The Session Store never looks a cipher up ambiently; it is handed an object
with two coroutine methods, ``encrypt`` and ``decrypt``, each returning a
tagged result (``Ok`` or ``Err``) instead of raising. Every call carries the
tag list that scopes the payload to its record kind (``vault-note`` or
``vault-file``); ciphertext produced under one scope does not open under the
other.

Security Note:
    Never log plaintext or ciphertext values. Only log scopes and error kinds.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, ClassVar, Optional, Protocol, Sequence, Union, runtime_checkable

from cryptography.exceptions import InvalidTag

from ..errors import DecryptionFailed, EncryptionFailed, GatewayUnavailable, VaultError
from .config import VaultConfig
from .crypto import (
    associated_data,
    decode_envelope,
    derive_key,
    deserialize_value,
    encode_envelope,
    get_cipher_cls,
    open_sealed,
    scope_context,
    seal,
    serialize_value,
)

logger = logging.getLogger("vault_session.vault")

Payload = Union[str, bytes]


@dataclass(frozen=True)
class Ok:
    """Successful gateway call; ``value`` is ciphertext or plaintext."""

    value: Any = field(repr=False)
    success: ClassVar[bool] = True


@dataclass(frozen=True)
class Err:
    """Failed gateway call; ``error`` is a VaultError describing why."""

    error: VaultError
    success: ClassVar[bool] = False

    @property
    def reason(self) -> str:
        return str(self.error) or self.error.kind


GatewayResult = Union[Ok, Err]


@runtime_checkable
class EncryptionGateway(Protocol):
    """What the Session Store needs from an encryption provider."""

    @property
    def ready(self) -> bool:
        ...

    async def encrypt(self, payload: Payload, tags: Sequence[str]) -> GatewayResult:
        ...

    async def decrypt(self, ciphertext: Payload, tags: Sequence[str]) -> GatewayResult:
        ...


class AeadEncryptionGateway:
    """Reference gateway sealing payloads with HKDF-derived AEAD keys.

    Availability follows the externally owned ``authenticated`` flag: while
    it is false both methods fail closed with ``GatewayUnavailable``.
    Ciphertext embeds its key version, so records sealed under an older
    master key keep opening after ``active_key_id`` moves on.

    Text payloads produce a ``str`` envelope and binary payloads a ``bytes``
    envelope, matching the field each record kind stores.
    """

    def __init__(
        self,
        master_keys: dict[int, bytes],
        active_key_id: int,
        cipher_backend: str = "aesgcm",
        authenticated: bool = False,
    ):
        if active_key_id not in master_keys:
            raise KeyError(
                f"Active key version {active_key_id} not found in provided master keys"
            )
        self._master_keys = dict(master_keys)
        self._active_key_id = active_key_id
        self._cipher_cls = get_cipher_cls(cipher_backend)
        self.authenticated = authenticated

    @classmethod
    def from_config(
        cls, config: VaultConfig, authenticated: bool = False
    ) -> "AeadEncryptionGateway":
        return cls(
            master_keys=config.master_keys,
            active_key_id=config.active_key_id,
            cipher_backend=config.cipher_backend,
            authenticated=authenticated,
        )

    @property
    def ready(self) -> bool:
        return bool(self.authenticated) and bool(self._master_keys)

    @property
    def active_key_id(self) -> int:
        return self._active_key_id

    def _scope_key(self, tags: Sequence[str], key_id: int) -> Optional[bytes]:
        master_key = self._master_keys.get(key_id)
        if master_key is None:
            return None
        return derive_key(master_key, scope_context(tags, key_id))

    async def encrypt(self, payload: Payload, tags: Sequence[str]) -> GatewayResult:
        """Seal a text or binary payload under the given scope tags.

        Args:
            payload: Plaintext to protect (str for notes, bytes for files).
            tags: Scope tags; at least one is required.

        Returns:
            Ok(envelope) on success, Err(GatewayUnavailable | EncryptionFailed)
            otherwise.
        """
        if not self.ready:
            return Err(GatewayUnavailable("Authentication required for encryption"))
        if not tags:
            return Err(EncryptionFailed("Encryption requires at least one scope tag"))
        if not isinstance(payload, (str, bytes, bytearray)):
            return Err(EncryptionFailed(
                f"Unsupported payload type: {type(payload).__name__}"
            ))
        try:
            key = self._scope_key(tags, self._active_key_id)
            nonce, ct = seal(
                serialize_value(payload), key, associated_data(tags), self._cipher_cls,
            )
            envelope = encode_envelope(self._active_key_id, nonce, ct, tags)
        except Exception as err:
            logger.error(
                "Encryption failed for scope=%s: %s", list(tags), type(err).__name__,
            )
            return Err(EncryptionFailed(f"Encryption failed: {type(err).__name__}"))
        if isinstance(payload, str):
            return Ok(envelope.decode("utf-8"))
        return Ok(envelope)

    async def decrypt(self, ciphertext: Payload, tags: Sequence[str]) -> GatewayResult:
        """Open an envelope previously produced by ``encrypt``.

        Args:
            ciphertext: Envelope as str (notes) or bytes (files).
            tags: Scope tags the envelope must have been sealed under.

        Returns:
            Ok(plaintext) on success, Err(GatewayUnavailable | DecryptionFailed)
            otherwise.
        """
        if not self.ready:
            return Err(GatewayUnavailable("Authentication required for decryption"))
        try:
            key_id, nonce, ct, sealed_tags = decode_envelope(ciphertext)
        except ValueError as err:
            return Err(DecryptionFailed(str(err)))
        if list(tags) != sealed_tags:
            return Err(DecryptionFailed(
                f"Ciphertext belongs to scope {sealed_tags}, not {list(tags)}"
            ))
        key = self._scope_key(tags, key_id)
        if key is None:
            return Err(DecryptionFailed(
                f"Master key version {key_id} is not available"
            ))
        try:
            plaintext = open_sealed(
                nonce, ct, key, associated_data(tags), self._cipher_cls,
            )
            value = deserialize_value(plaintext)
        except InvalidTag:
            logger.warning("Ciphertext failed authentication for scope=%s", list(tags))
            return Err(DecryptionFailed("Ciphertext failed authentication"))
        except Exception as err:
            logger.error(
                "Decryption failed for scope=%s: %s", list(tags), type(err).__name__,
            )
            return Err(DecryptionFailed(f"Decryption failed: {type(err).__name__}"))
        if not isinstance(value, (str, bytes)):
            return Err(DecryptionFailed(
                f"Unexpected plaintext type: {type(value).__name__}"
            ))
        return Ok(value)
