"""Vault — Encrypted, versioned secret storage.

Security Note (Threat Model):
    Secrets are decrypted in process memory while an operation runs, and the
    master key stays in memory for the life of an open Store. A memory dump
    of the process could expose them. This is an accepted limitation;
    protecting against a local attacker with full access after unlock is out
    of scope.
"""

from .store import Store
from .migration import MigrationResult, migrate_all
from .config import StoreConfig, KdfParams, default_store_path, generate_salt
from .crypto import MasterKey, derive_master_key, encrypt, decrypt, verify_passphrase
from .models import SecretEntry, SecretHistoryEntry, ExportBundle, ExportedSecret

__all__ = [
    "Store",
    "MigrationResult",
    "migrate_all",
    "StoreConfig",
    "KdfParams",
    "default_store_path",
    "generate_salt",
    "MasterKey",
    "derive_master_key",
    "encrypt",
    "decrypt",
    "verify_passphrase",
    "SecretEntry",
    "SecretHistoryEntry",
    "ExportBundle",
    "ExportedSecret",
]
