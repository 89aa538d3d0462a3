"""Constants and raw-database helpers shared by the test modules."""
import base64
import sqlite3
from datetime import datetime, timezone

from pyrage import passphrase as age_passphrase

from tinysecrets import KdfParams
from tinysecrets.vault.envelope import LEGACY_TAG

PASSPHRASE = "correct-horse-battery"

# Cheap costs keep the suite fast; production defaults live in KdfParams().
FAST_KDF = KdfParams(time_cost=1, memory_cost=8, parallelism=1)


def age_envelope(value, passphrase=PASSPHRASE, tagged=True):
    """Encrypt with age directly, the way releases before the master key did.

    ``tagged=False`` gives the bare base64 age file written before envelopes
    carried a version byte.
    """
    blob = age_passphrase.encrypt(value.encode("utf-8"), passphrase)
    if tagged:
        blob = bytes([LEGACY_TAG]) + blob
    return base64.b64encode(blob).decode("ascii")


def insert_legacy(
    path,
    project,
    environment,
    key,
    value,
    passphrase=PASSPHRASE,
    version=1,
    tagged=True,
    timestamp=None,
):
    """Write a legacy-format row directly, as an older release would have."""
    now = timestamp or datetime.now(timezone.utc).isoformat()
    envelope = age_envelope(value, passphrase, tagged=tagged)
    conn = sqlite3.connect(str(path))
    with conn:
        conn.execute(
            "INSERT INTO secrets (project, environment, key, encrypted_value, "
            "description, created_at, updated_at, version) "
            "VALUES (?, ?, ?, ?, NULL, ?, ?, ?)",
            (project, environment, key, envelope, now, now, version),
        )
    conn.close()
    return envelope


def raw_envelope(path, project, environment, key):
    """Read the stored envelope text of a current row."""
    conn = sqlite3.connect(str(path))
    try:
        row = conn.execute(
            "SELECT encrypted_value FROM secrets "
            "WHERE project = ? AND environment = ? AND key = ?",
            (project, environment, key),
        ).fetchone()
    finally:
        conn.close()
    return row[0] if row else None
