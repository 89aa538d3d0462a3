"""
TinySecrets — passphrase-protected secrets with version history.

Usage:
    from tinysecrets import Store
    with Store.open("my-passphrase") as store:
        store.set("api", "prod", "API_KEY", "s3cr3t")
"""
from .version import __version__
from .exceptions import (
    TinySecretsError,
    AuthError,
    PassphraseMismatchError,
    DecryptionError,
    FormatError,
    UnknownFormatError,
    CorruptedValueError,
    BundleFormatError,
    MigrationError,
    StorageError,
    StoreExistsError,
    StoreNotFoundError,
)
from .vault import (
    Store,
    StoreConfig,
    KdfParams,
    MigrationResult,
    SecretEntry,
    SecretHistoryEntry,
    ExportBundle,
)

__all__ = [
    "__version__",
    "Store",
    "StoreConfig",
    "KdfParams",
    "MigrationResult",
    "SecretEntry",
    "SecretHistoryEntry",
    "ExportBundle",
    "TinySecretsError",
    "AuthError",
    "PassphraseMismatchError",
    "DecryptionError",
    "FormatError",
    "UnknownFormatError",
    "CorruptedValueError",
    "BundleFormatError",
    "MigrationError",
    "StorageError",
    "StoreExistsError",
    "StoreNotFoundError",
]
