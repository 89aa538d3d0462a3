"""
Bundle Export/Import — Portable, still-encrypted project snapshots.

Export copies envelopes exactly as stored and never decrypts them. Import
checks the bundle's passphrase token first, then opens every bundled envelope
before anything is written, so a bad bundle has no side effects.
"""
import logging
from collections.abc import Iterable
from typing import NamedTuple

from ..exceptions import PassphraseMismatchError
from .crypto import MasterKey, decrypt, derive_master_key, verify_passphrase
from .models import ExportBundle, ExportedSecret, KeyDerivation, SecretEntry

logger = logging.getLogger("tinysecrets.vault")


class BundledSecret(NamedTuple):
    key: str
    value: str
    description: str | None


def build_bundle(
    project: str,
    environment: str,
    entries: Iterable[SecretEntry],
    verification_token: str,
    key_derivation: KeyDerivation | None = None,
) -> ExportBundle:
    """Package current entries of one scope into an ExportBundle."""
    secrets = [
        ExportedSecret(
            key=entry.key,
            encrypted_value=entry.encrypted_value,
            description=entry.description,
            version=entry.version,
        )
        for entry in entries
    ]
    bundle = ExportBundle(
        project=project,
        environment=environment,
        passphrase_verification=verification_token,
        secrets=secrets,
        key_derivation=key_derivation,
    )
    logger.info(
        "Exported %d secret(s) from %s/%s", len(secrets), project, environment,
    )
    return bundle


def open_bundle(
    bundle: ExportBundle,
    master_key: MasterKey,
    passphrase: str,
    store_salt: bytes | None = None,
) -> list[BundledSecret]:
    """Verify the bundle passphrase and decrypt every bundled value.

    Args:
        bundle: Parsed export bundle.
        master_key: Importing store's master key.
        passphrase: Importing store's passphrase.
        store_salt: Importing store's salt. When the bundle came from a
            store with another salt, its master key is derived from the
            bundle's ``key_derivation`` for the duration of the call.

    Returns:
        Decrypted secrets in bundle order.

    Raises:
        PassphraseMismatchError: If the bundle token does not match the
            passphrase.
        DecryptionError: If a current-format envelope does not open with
            the exporting store's master key.
        FormatError: If a bundled envelope is malformed.
    """
    if not verify_passphrase(passphrase, bundle.passphrase_verification):
        raise PassphraseMismatchError(
            "Bundle was encrypted with a different passphrase. "
            "You need the original passphrase to import these secrets."
        )

    source_key = master_key
    derivation = bundle.key_derivation
    if derivation is not None and derivation.salt_bytes() != store_salt:
        source_key = derive_master_key(passphrase, derivation.salt_bytes(), derivation.kdf)
    try:
        return [
            BundledSecret(
                key=secret.key,
                value=decrypt(secret.encrypted_value, source_key, passphrase),
                description=secret.description,
            )
            for secret in bundle.secrets
        ]
    finally:
        if source_key is not master_key:
            source_key.wipe()
