"""Vault Session error types.

Every error carries a ``kind`` equal to its class name. The Session Store
uses it to tag user-visible notifications, so callers can tell a missing
gateway apart from a failed write without parsing messages.
"""


class VaultError(Exception):
    """Base error for the vault session core."""

    @property
    def kind(self) -> str:
        return type(self).__name__


class GatewayUnavailable(VaultError):
    """Raised when encryption or decryption is attempted while not ready."""


class EncryptionFailed(VaultError):
    """Raised when the encryption gateway could not produce ciphertext."""


class DecryptionFailed(VaultError):
    """Raised when ciphertext could not be opened."""


class PersistenceFailed(VaultError):
    """Raised when the document store rejects a read or write."""


class NotFound(VaultError):
    """Raised when an update or delete target does not exist."""
