"""
Format Migration — Rewrite legacy-format secrets into the current format.

Scans the current ``secrets`` table only. Each legacy row is decrypted with
the passphrase, re-encrypted with the master key and written back in its own
transaction, so an interrupted run leaves finished rows migrated and the rest
untouched. The operation is idempotent: current-format rows are skipped.

History rows are never migrated; legacy envelopes in history stay readable.

Security Note:
    Plaintext exists in memory only during re-encryption of each row.
    Never log plaintext or ciphertext values.
"""
import logging
import sqlite3
from typing import NamedTuple

from ..exceptions import DecryptionError, FormatError, MigrationError
from .crypto import MasterKey, decrypt, encrypt, is_current_format
from .db import fetch_all, transaction

logger = logging.getLogger("tinysecrets.vault")

_SELECT_ALL = """
SELECT id, project, environment, key, encrypted_value
FROM secrets
ORDER BY id
"""

# Guarded by the old value so a concurrent `set` is never overwritten.
_UPDATE_ENVELOPE = """
UPDATE secrets
SET encrypted_value = ?
WHERE id = ? AND encrypted_value = ?
"""


class MigrationResult(NamedTuple):
    migrated: int
    skipped: int


def migrate_all(
    conn: sqlite3.Connection,
    master_key: MasterKey,
    passphrase: str,
) -> MigrationResult:
    """Re-encrypt every legacy-format current secret into the current format.

    Args:
        conn: Open store connection.
        master_key: Session master key used for the new envelopes.
        passphrase: Store passphrase, needed to open legacy envelopes.

    Returns:
        MigrationResult(migrated, skipped) where ``skipped`` counts rows that
        were already in the current format.

    Raises:
        MigrationError: After the full scan, if some rows could not be
            decrypted or parsed. All other rows were processed.
        StorageError: If the database fails; rows committed before the
            failure stay migrated.
    """
    rows = fetch_all(conn, _SELECT_ALL)
    migrated = 0
    skipped = 0
    failures: list[tuple[str, str, str]] = []

    logger.info("Starting format migration of %d secret(s)", len(rows))

    for row in rows:
        identity = (row["project"], row["environment"], row["key"])
        old_value = row["encrypted_value"]
        try:
            if is_current_format(old_value):
                skipped += 1
                continue
            new_value = encrypt(decrypt(old_value, master_key, passphrase), master_key)
        except (FormatError, DecryptionError) as err:
            logger.error(
                "Error migrating secret %s/%s/%s: %s", *identity, err,
            )
            failures.append(identity)
            continue

        with transaction(conn):
            cursor = conn.execute(_UPDATE_ENVELOPE, (new_value, row["id"], old_value))
        if cursor.rowcount == 0:
            # rewritten by another writer since the scan, always in current format
            logger.warning(
                "Secret %s/%s/%s changed during migration; left as is", *identity,
            )
            skipped += 1
            continue
        migrated += 1
        logger.debug("Migrated secret %s/%s/%s", *identity)

    result = MigrationResult(migrated=migrated, skipped=skipped)
    logger.info(
        "Format migration complete: migrated=%d skipped=%d failed=%d",
        migrated, skipped, len(failures),
    )
    if failures:
        raise MigrationError(result, failures)
    return result
