"""
Store — Versioned, encrypted key/value secrets scoped by project and environment.

Provides the public API of the secret store:
- ``Store.init(passphrase)`` / ``Store.open(passphrase)`` — create or unlock
- ``set`` / ``get`` / ``get_version`` / ``delete`` — per-identity lifecycle
- ``list`` / ``list_projects`` / ``list_environments`` / ``get_all`` — queries
- ``history`` — archived versions of one identity
- ``export`` / ``import_bundle`` — portable encrypted bundles
- ``migrate_all`` — rewrite legacy-format values into the current format

Every mutation archives the previous row and rewrites the current row inside
one transaction; a failure leaves both tables as they were.

Security Note:
    Never log plaintext or ciphertext values. Only log identities, versions
    and counts. The master key lives in this object until ``close()``.
"""

import base64
import binascii
import logging
import os
import sqlite3
from datetime import datetime
from pathlib import Path

from ..exceptions import (
    AuthError,
    FormatError,
    StoreExistsError,
    StoreNotFoundError,
)
from .bundle import build_bundle, open_bundle
from .config import KdfParams, StoreConfig, generate_salt
from .crypto import (
    MasterKey,
    create_verification,
    decrypt,
    derive_master_key,
    encrypt,
    verify_passphrase,
)
from .db import (
    SCHEMA_VERSION,
    connect,
    create_schema,
    fetch_all,
    fetch_one,
    transaction,
)
from .migration import MigrationResult, migrate_all
from .models import (
    ExportBundle,
    KeyDerivation,
    SecretEntry,
    SecretHistoryEntry,
    parse_timestamp,
    utcnow,
)

logger = logging.getLogger("tinysecrets.vault")

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_METADATA = "SELECT key, value FROM metadata"

_UPSERT_METADATA = """
INSERT INTO metadata (key, value) VALUES (?, ?)
ON CONFLICT (key) DO UPDATE SET value = excluded.value
"""

_SELECT_CURRENT = """
SELECT project, environment, key, encrypted_value, description,
       created_at, updated_at, version
FROM secrets
WHERE project = ? AND environment = ? AND key = ?
"""

_INSERT_SECRET = """
INSERT INTO secrets (project, environment, key, encrypted_value, description,
                     created_at, updated_at, version)
VALUES (?, ?, ?, ?, ?, ?, ?, 1)
"""

_UPDATE_SECRET = """
UPDATE secrets
SET encrypted_value = ?, description = ?, updated_at = ?, version = ?
WHERE project = ? AND environment = ? AND key = ?
"""

# The archived row's created_at is the moment that version was written.
_ARCHIVE_CURRENT = """
INSERT INTO secret_history (project, environment, key, encrypted_value,
                            version, created_at, deleted_at)
SELECT project, environment, key, encrypted_value, version, updated_at, ?
FROM secrets
WHERE project = ? AND environment = ? AND key = ?
"""

_DELETE_SECRET = """
DELETE FROM secrets
WHERE project = ? AND environment = ? AND key = ?
"""

_SELECT_HISTORY_VERSION = """
SELECT encrypted_value
FROM secret_history
WHERE project = ? AND environment = ? AND key = ? AND version = ?
ORDER BY id DESC
LIMIT 1
"""

# The most recently archived rows, then by version. A recreated identity
# reuses version numbers, so recency comes from the row id.
_SELECT_HISTORY = """
SELECT project, environment, key, encrypted_value, version, created_at, deleted_at
FROM (
    SELECT id, project, environment, key, encrypted_value, version,
           created_at, deleted_at
    FROM secret_history
    WHERE project = ? AND environment = ? AND key = ?
    ORDER BY id DESC
    LIMIT ?
)
ORDER BY version DESC, id DESC
"""

_SELECT_SCOPE = """
SELECT key, encrypted_value
FROM secrets
WHERE project = ? AND environment = ?
ORDER BY key
"""

_SELECT_PROJECTS = "SELECT DISTINCT project FROM secrets ORDER BY project"

_SELECT_ENVIRONMENTS = """
SELECT DISTINCT environment FROM secrets WHERE project = ? ORDER BY environment
"""


def _filters(project: str | None, environment: str | None) -> tuple[str, tuple[str, ...]]:
    clauses = []
    params = []
    if project is not None:
        clauses.append("project = ?")
        params.append(project)
    if environment is not None:
        clauses.append("environment = ?")
        params.append(environment)
    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, tuple(params)


def _timestamp(value: datetime) -> str:
    return value.isoformat()


def _entry(row: sqlite3.Row) -> SecretEntry:
    return SecretEntry(
        project=row["project"],
        environment=row["environment"],
        key=row["key"],
        encrypted_value=row["encrypted_value"],
        description=row["description"],
        created_at=parse_timestamp(row["created_at"]),
        updated_at=parse_timestamp(row["updated_at"]),
        version=row["version"],
    )


def _history_entry(row: sqlite3.Row) -> SecretHistoryEntry:
    deleted_at = row["deleted_at"]
    return SecretHistoryEntry(
        project=row["project"],
        environment=row["environment"],
        key=row["key"],
        encrypted_value=row["encrypted_value"],
        version=row["version"],
        created_at=parse_timestamp(row["created_at"]),
        deleted_at=parse_timestamp(deleted_at) if deleted_at else None,
    )


def _validate_identity(**parts: str) -> None:
    """Validate project/environment/key names.

    Raises:
        ValueError: If a part is not a non-empty string.
    """
    for name, value in parts.items():
        if not isinstance(value, str) or not value:
            raise ValueError(f"Secret {name} must be a non-empty string")


def _read_metadata(conn: sqlite3.Connection) -> dict[str, str]:
    return {row["key"]: row["value"] for row in fetch_all(conn, _SELECT_METADATA)}


def _decode_salt(raw: str) -> bytes:
    try:
        return base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as err:
        raise FormatError("Store salt in metadata is not valid base64") from err


class Store:
    """Encrypted secret store backed by one SQLite file.

    Use ``Store.init`` or ``Store.open`` to get an instance. Each instance
    holds the master key and passphrase for one session; ``close()`` (or
    leaving a ``with`` block) closes the database and wipes the key.
    """

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: StoreConfig,
        master_key: MasterKey,
        passphrase: str,
        salt: bytes,
        kdf: KdfParams,
        verification: str,
    ):
        self._conn = conn
        self._config = config
        self._master_key = master_key
        self._passphrase = passphrase
        self._salt = salt
        self._kdf = kdf
        self._verification = verification

    def __repr__(self) -> str:
        return f"<Store path={self.path}>"

    def __enter__(self) -> "Store":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def path(self) -> Path:
        return self._config.path

    @property
    def verification_token(self) -> str:
        return self._verification

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @staticmethod
    def exists(path: str | Path | None = None) -> bool:
        """Check whether a store file is present."""
        target = Path(path).expanduser() if path is not None else StoreConfig().path
        return target.exists()

    @staticmethod
    def _resolve(path: str | Path | None, config: StoreConfig | None) -> StoreConfig:
        config = config or StoreConfig.from_env()
        if path is not None:
            config = StoreConfig(path=path, kdf=config.kdf, history_limit=config.history_limit)
        return config

    @classmethod
    def init(
        cls,
        passphrase: str,
        path: str | Path | None = None,
        config: StoreConfig | None = None,
    ) -> "Store":
        """Create a new store protected by ``passphrase``.

        Generates the store salt, records the KDF parameters and seals the
        passphrase verification token.

        Args:
            passphrase: Passphrase for the new store.
            path: Store file; overrides ``config.path``.
            config: Store configuration, defaults to ``StoreConfig.from_env()``.

        Returns:
            An unlocked Store.

        Raises:
            StoreExistsError: If a store already exists at the path.
            StorageError: If the database cannot be created.
        """
        if not passphrase:
            raise ValueError("Passphrase cannot be empty")
        config = cls._resolve(path, config)
        target = config.path
        if target.exists():
            raise StoreExistsError(
                f"Store already exists at {target}. Open it instead of initializing."
            )

        target.parent.mkdir(parents=True, exist_ok=True, mode=0o700)
        conn = connect(target)
        try:
            os.chmod(target, 0o600)
            create_schema(conn)
            salt = generate_salt()
            verification = create_verification(passphrase)
            master_key = derive_master_key(passphrase, salt, config.kdf)
            with transaction(conn):
                for key, value in (
                    ("passphrase_verification", verification),
                    ("encryption_salt", base64.b64encode(salt).decode("ascii")),
                    ("kdf_params", config.kdf.to_json()),
                    ("schema_version", str(SCHEMA_VERSION)),
                ):
                    conn.execute(_UPSERT_METADATA, (key, value))
        except BaseException:
            conn.close()
            target.unlink(missing_ok=True)
            raise

        logger.info("Initialized store at %s", target)
        return cls(conn, config, master_key, passphrase, salt, config.kdf, verification)

    @classmethod
    def open(
        cls,
        passphrase: str,
        path: str | Path | None = None,
        config: StoreConfig | None = None,
    ) -> "Store":
        """Unlock an existing store.

        The passphrase is checked against the verification token before the
        master key is derived or any secret is read.

        Raises:
            StoreNotFoundError: If no store exists at the path.
            AuthError: If the passphrase is wrong.
            FormatError: If the store metadata is damaged.
        """
        config = cls._resolve(path, config)
        target = config.path
        if not target.exists():
            raise StoreNotFoundError(f"No store found at {target}. Initialize one first.")

        conn = connect(target)
        try:
            metadata = _read_metadata(conn)
            verification = metadata.get("passphrase_verification")
            if verification is None:
                raise FormatError("Store appears corrupted - no passphrase verification found")
            if not verify_passphrase(passphrase, verification):
                raise AuthError("Invalid passphrase")
            if "encryption_salt" not in metadata or "kdf_params" not in metadata:
                metadata = cls._upgrade_metadata(conn, metadata, config.kdf)
            salt = _decode_salt(metadata["encryption_salt"])
            kdf = KdfParams.from_json(metadata["kdf_params"])
            master_key = derive_master_key(passphrase, salt, kdf)
        except BaseException:
            conn.close()
            raise

        logger.info("Opened store at %s", target)
        return cls(conn, config, master_key, passphrase, salt, kdf, verification)

    @staticmethod
    def _upgrade_metadata(
        conn: sqlite3.Connection,
        metadata: dict[str, str],
        kdf: KdfParams,
    ) -> dict[str, str]:
        """Add master-key metadata to a store written by a legacy-only release."""
        updates = {"schema_version": str(SCHEMA_VERSION)}
        if "encryption_salt" not in metadata:
            updates["encryption_salt"] = base64.b64encode(generate_salt()).decode("ascii")
        if "kdf_params" not in metadata:
            updates["kdf_params"] = kdf.to_json()
        with transaction(conn):
            for key, value in updates.items():
                conn.execute(_UPSERT_METADATA, (key, value))
        logger.info(
            "Upgraded store metadata from schema %s to %d",
            metadata.get("schema_version", "1"), SCHEMA_VERSION,
        )
        return {**metadata, **updates}

    def close(self) -> None:
        """Close the database and wipe the master key."""
        self._master_key.wipe()
        self._conn.close()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _decrypt(self, encrypted_value: str) -> str:
        return decrypt(encrypted_value, self._master_key, self._passphrase)

    def _write(
        self,
        conn: sqlite3.Connection,
        project: str,
        environment: str,
        key: str,
        encrypted_value: str,
        description: str | None,
    ) -> SecretEntry:
        """Archive-then-overwrite one identity. Must run inside a transaction."""
        now = utcnow()
        row = conn.execute(_SELECT_CURRENT, (project, environment, key)).fetchone()
        if row is None:
            conn.execute(
                _INSERT_SECRET,
                (project, environment, key, encrypted_value, description,
                 _timestamp(now), _timestamp(now)),
            )
            return SecretEntry(
                project=project, environment=environment, key=key,
                encrypted_value=encrypted_value, description=description,
                created_at=now, updated_at=now, version=1,
            )

        previous = _entry(row)
        if description is None:
            description = previous.description
        version = previous.version + 1
        conn.execute(_ARCHIVE_CURRENT, (None, project, environment, key))
        conn.execute(
            _UPDATE_SECRET,
            (encrypted_value, description, _timestamp(now), version,
             project, environment, key),
        )
        return previous.model_copy(update={
            "encrypted_value": encrypted_value,
            "description": description,
            "updated_at": now,
            "version": version,
        })

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def set(
        self,
        project: str,
        environment: str,
        key: str,
        value: str,
        description: str | None = None,
    ) -> SecretEntry:
        """Encrypt and store a secret, archiving the previous version.

        Args:
            project: Project name.
            environment: Environment name (e.g. ``prod``).
            key: Secret name.
            value: Plaintext value.
            description: Optional description; ``None`` keeps the existing one.

        Returns:
            The new current entry (version 1 for a new identity).
        """
        _validate_identity(project=project, environment=environment, key=key)
        if not isinstance(value, str):
            raise TypeError(f"Secret value must be str, got {type(value).__name__}")
        encrypted_value = encrypt(value, self._master_key)
        with transaction(self._conn) as conn:
            entry = self._write(conn, project, environment, key, encrypted_value, description)
        logger.debug(
            "Secret set: %s/%s/%s v%d", project, environment, key, entry.version,
        )
        return entry

    def get(self, project: str, environment: str, key: str) -> str | None:
        """Decrypt and return the current value, or None if absent."""
        row = fetch_one(self._conn, _SELECT_CURRENT, (project, environment, key))
        if row is None:
            return None
        return self._decrypt(row["encrypted_value"])

    def get_entry(self, project: str, environment: str, key: str) -> SecretEntry | None:
        """Return the current entry's metadata without decrypting it."""
        row = fetch_one(self._conn, _SELECT_CURRENT, (project, environment, key))
        return _entry(row) if row is not None else None

    def get_version(self, project: str, environment: str, key: str, version: int) -> str | None:
        """Decrypt a specific version of a secret.

        The current entry answers for its own version; older versions come
        from history. When a deleted identity was recreated, the most recently
        archived entry with that version number wins.

        Returns:
            The plaintext, or None if no such version exists.
        """
        row = fetch_one(self._conn, _SELECT_CURRENT, (project, environment, key))
        if row is not None and row["version"] == version:
            return self._decrypt(row["encrypted_value"])
        row = fetch_one(
            self._conn, _SELECT_HISTORY_VERSION, (project, environment, key, version),
        )
        if row is None:
            return None
        return self._decrypt(row["encrypted_value"])

    def delete(self, project: str, environment: str, key: str) -> bool:
        """Delete a secret, archiving its final state with ``deleted_at``.

        Returns:
            True if the secret existed, False if there was nothing to delete.
        """
        with transaction(self._conn) as conn:
            row = conn.execute(_SELECT_CURRENT, (project, environment, key)).fetchone()
            if row is None:
                return False
            conn.execute(
                _ARCHIVE_CURRENT,
                (_timestamp(utcnow()), project, environment, key),
            )
            conn.execute(_DELETE_SECRET, (project, environment, key))
        logger.debug(
            "Secret deleted: %s/%s/%s v%d", project, environment, key, row["version"],
        )
        return True

    def list(
        self,
        project: str | None = None,
        environment: str | None = None,
    ) -> list[SecretEntry]:
        """List current entries ordered by project, environment, key."""
        where, params = _filters(project, environment)
        sql = (
            "SELECT project, environment, key, encrypted_value, description, "
            "created_at, updated_at, version FROM secrets"
            f"{where} ORDER BY project, environment, key"
        )
        return [_entry(row) for row in fetch_all(self._conn, sql, params)]

    def count(self, project: str | None = None, environment: str | None = None) -> int:
        """Number of current secrets, optionally filtered."""
        where, params = _filters(project, environment)
        row = fetch_one(self._conn, f"SELECT COUNT(*) AS n FROM secrets{where}", params)
        return row["n"]

    def list_projects(self) -> "list[str]":
        return [row["project"] for row in fetch_all(self._conn, _SELECT_PROJECTS)]

    def list_environments(self, project: str) -> "list[str]":
        return [
            row["environment"]
            for row in fetch_all(self._conn, _SELECT_ENVIRONMENTS, (project,))
        ]

    def get_all(self, project: str, environment: str) -> dict[str, str]:
        """Decrypt every current secret of one project/environment, by key."""
        rows = fetch_all(self._conn, _SELECT_SCOPE, (project, environment))
        return {row["key"]: self._decrypt(row["encrypted_value"]) for row in rows}

    def history(
        self,
        project: str,
        environment: str,
        key: str,
        limit: int | None = None,
    ) -> "list[SecretHistoryEntry]":
        """The ``limit`` most recently archived versions of an identity.

        Entries are ordered by version, highest first. After a delete and
        recreate, an older lineage with higher version numbers does not push
        newer archives out of the window. The live entry is not included;
        use ``get_entry`` for it.
        """
        limit = limit if limit is not None else self._config.history_limit
        rows = fetch_all(
            self._conn, _SELECT_HISTORY, (project, environment, key, limit),
        )
        return [_history_entry(row) for row in rows]

    def export(self, project: str, environment: str) -> ExportBundle:
        """Bundle the current secrets of a scope without decrypting them."""
        derivation = KeyDerivation(
            salt=base64.b64encode(self._salt).decode("ascii"),
            kdf=self._kdf,
        )
        return build_bundle(
            project,
            environment,
            self.list(project, environment),
            self._verification,
            key_derivation=derivation,
        )

    def import_bundle(self, bundle: ExportBundle) -> int:
        """Import a bundle into its project/environment.

        Every value is decrypted before anything is written and all writes
        share one transaction, so a failing import changes nothing. Each
        value is re-encrypted in the current format and versioned by this
        store, regardless of the bundle's version numbers.

        Returns:
            Number of secrets imported.

        Raises:
            PassphraseMismatchError: If the bundle was sealed under another
                passphrase.
        """
        _validate_identity(project=bundle.project, environment=bundle.environment)
        secrets = open_bundle(bundle, self._master_key, self._passphrase, self._salt)
        with transaction(self._conn) as conn:
            for secret in secrets:
                self._write(
                    conn,
                    bundle.project,
                    bundle.environment,
                    secret.key,
                    encrypt(secret.value, self._master_key),
                    secret.description,
                )
        logger.info(
            "Imported %d secret(s) into %s/%s",
            len(secrets), bundle.project, bundle.environment,
        )
        return len(secrets)

    def migrate_all(self) -> MigrationResult:
        """Rewrite legacy-format current secrets into the current format.

        See ``tinysecrets.vault.migration.migrate_all``.
        """
        return migrate_all(self._conn, self._master_key, self._passphrase)
