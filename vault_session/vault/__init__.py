"""Vault collaborators — encryption and persistence adapters for the session core.

Security Note (Threat Model):
    Revealed plaintext lives in process memory only while a record is
    revealed. A memory dump taken while the session is Armed can expose it;
    the auto-lock monitor bounds that window but cannot close it. Mitigation
    requires HSM/secure enclave integration which is out of scope.
"""

from .config import VaultConfig, load_master_keys, generate_master_key
from .gateway import AeadEncryptionGateway, EncryptionGateway, Err, GatewayResult, Ok
from .storage import MemoryStorage, PersistenceGateway

__all__ = [
    "VaultConfig",
    "load_master_keys",
    "generate_master_key",
    "AeadEncryptionGateway",
    "EncryptionGateway",
    "Err",
    "GatewayResult",
    "Ok",
    "MemoryStorage",
    "PersistenceGateway",
]
