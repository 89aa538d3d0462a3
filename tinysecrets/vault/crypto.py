"""
Vault Crypto Core — Key derivation, envelope encryption and passphrase checks.

Two encryption layers coexist in a store:
- Current: Argon2id(passphrase, store salt) → MasterKey → AES-256-GCM per value
- Legacy:  age passphrase recipient (scrypt inside the age file) per value

The master key is derived once per store session. Legacy values derive a key
on every call, which is why new values always use the current layer and the
legacy layer is kept for reading old values and the passphrase token.

Security Note:
    Never log plaintext, envelopes, salts or key material.
    Nonces are random 96-bit values from the OS CSPRNG, one per encryption.
"""
import os
import logging

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pyrage import DecryptError, EncryptError
from pyrage import passphrase as age_passphrase

from ..exceptions import (
    CorruptedValueError,
    DecryptionError,
    FormatError,
    TinySecretsError,
)
from .config import KEY_LENGTH, KdfParams
from .envelope import (
    LEGACY_HEADER,
    NONCE_SIZE,
    CurrentEnvelope,
    Envelope,
    LegacyEnvelope,
    encode_envelope,
    parse_envelope,
)

logger = logging.getLogger("tinysecrets.vault")

VERIFICATION_PLAINTEXT = "tinysecrets-verification-v1"


# ---------------------------------------------------------------------------
# Master key
# ---------------------------------------------------------------------------

class MasterKey:
    """In-memory symmetric key for current-format envelopes.

    Holds the key in a mutable buffer so ``wipe()`` can zero it. Never
    serialized, never logged.
    """

    __slots__ = ("_material",)

    def __init__(self, material: bytes):
        if len(material) != KEY_LENGTH:
            raise ValueError(
                f"Master key must be {KEY_LENGTH} bytes, got {len(material)}"
            )
        self._material = bytearray(material)

    def __repr__(self) -> str:
        state = "wiped" if self.wiped else "redacted"
        return f"<MasterKey [{state}]>"

    @property
    def wiped(self) -> bool:
        return not self._material

    def cipher(self) -> AESGCM:
        if self.wiped:
            raise TinySecretsError("Master key has been wiped; reopen the store")
        return AESGCM(self._material)

    def wipe(self) -> None:
        """Zero the key material. The key is unusable afterwards."""
        for i in range(len(self._material)):
            self._material[i] = 0
        self._material = bytearray()


def derive_master_key(passphrase: str, salt: bytes, params: KdfParams) -> MasterKey:
    """Derive the store master key with Argon2id.

    Args:
        passphrase: Store passphrase.
        salt: The store salt from metadata.
        params: Cost parameters recorded for this store.

    Returns:
        MasterKey for the session.

    Raises:
        TinySecretsError: If the KDF rejects its parameters or cannot
            allocate memory. There is no partial result.
    """
    try:
        raw = hash_secret_raw(
            secret=passphrase.encode("utf-8"),
            salt=salt,
            time_cost=params.time_cost,
            memory_cost=params.memory_cost,
            parallelism=params.parallelism,
            hash_len=params.hash_len,
            type=Type.ID,
        )
    except HashingError as err:
        raise TinySecretsError(f"Master key derivation failed: {err}") from err
    return MasterKey(raw)


# ---------------------------------------------------------------------------
# Legacy passphrase layer
# ---------------------------------------------------------------------------

def seal_legacy_blob(plaintext: bytes, passphrase: str) -> bytes:
    """Encrypt bytes into a binary age file with a passphrase recipient.

    age picks its own scrypt work factor, so this is slow on purpose.

    Returns:
        age file bytes starting with ``LEGACY_HEADER``.

    Raises:
        TinySecretsError: If age refuses to encrypt.
    """
    try:
        return age_passphrase.encrypt(plaintext, passphrase)
    except EncryptError as err:
        raise TinySecretsError(f"Legacy encryption failed: {err}") from err


def open_legacy_blob(blob: bytes, passphrase: str) -> bytes:
    """Decrypt a binary age file with the passphrase.

    Raises:
        FormatError: If the bytes are not an age file.
        DecryptionError: If the passphrase is wrong, the file is truncated
            or altered, or it was encrypted to a non-passphrase recipient.
    """
    if not blob.startswith(LEGACY_HEADER):
        raise FormatError("Legacy value is not an age file")
    try:
        return age_passphrase.decrypt(blob, passphrase)
    except DecryptError as err:
        raise DecryptionError(
            "Legacy decryption failed (wrong passphrase or corrupted data)"
        ) from err


def encrypt_legacy(plaintext: str, passphrase: str) -> str:
    """Encrypt text into a tagged legacy-format envelope."""
    blob = seal_legacy_blob(plaintext.encode("utf-8"), passphrase)
    return encode_envelope(LegacyEnvelope(blob=blob))


# ---------------------------------------------------------------------------
# Envelope encryption
# ---------------------------------------------------------------------------

def encrypt(plaintext: str, master_key: MasterKey) -> str:
    """Encrypt text into a current-format envelope.

    Format: base64([0x02][nonce 12B][ciphertext + GCM tag 16B])

    Args:
        plaintext: Secret value.
        master_key: Session master key.

    Returns:
        Base64 envelope text.
    """
    nonce = os.urandom(NONCE_SIZE)
    ct = master_key.cipher().encrypt(nonce, plaintext.encode("utf-8"), None)
    return encode_envelope(CurrentEnvelope(nonce=nonce, ciphertext=ct))


def _to_text(data: bytes) -> str:
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError as err:
        raise CorruptedValueError("Decrypted value is not valid UTF-8 text") from err


def decrypt_envelope(envelope: Envelope, master_key: MasterKey, passphrase: str | None) -> str:
    """Decrypt an already parsed envelope. See ``decrypt``."""
    if isinstance(envelope, CurrentEnvelope):
        try:
            data = master_key.cipher().decrypt(envelope.nonce, envelope.ciphertext, None)
        except InvalidTag as err:
            raise DecryptionError("Decryption failed (wrong key or corrupted data)") from err
        return _to_text(data)
    if isinstance(envelope, LegacyEnvelope):
        if passphrase is None:
            raise DecryptionError("Passphrase required for legacy-format value")
        return _to_text(open_legacy_blob(envelope.blob, passphrase))
    raise TypeError(f"Unsupported envelope type: {type(envelope).__name__}")


def decrypt(text: str, master_key: MasterKey, passphrase: str | None = None) -> str:
    """Decrypt envelope text of any supported format.

    Args:
        text: Stored base64 envelope.
        master_key: Session master key (current format).
        passphrase: Store passphrase (legacy format only).

    Returns:
        The plaintext.

    Raises:
        FormatError: Malformed envelope or unknown version tag.
        DecryptionError: Authentication failed.
        CorruptedValueError: Authenticated bytes are not valid text.
    """
    return decrypt_envelope(parse_envelope(text), master_key, passphrase)


def is_current_format(text: str) -> bool:
    """Whether envelope text is already in the current format.

    Raises:
        FormatError: If the envelope cannot be parsed.
    """
    return isinstance(parse_envelope(text), CurrentEnvelope)


# ---------------------------------------------------------------------------
# Passphrase verification
# ---------------------------------------------------------------------------

def create_verification(passphrase: str) -> str:
    """Encrypt the known verification plaintext as a bare age file.

    The token has no version tag, which is the layout releases before
    envelope tagging wrote and still read, so bundles stay checkable in
    both directions.
    """
    blob = seal_legacy_blob(VERIFICATION_PLAINTEXT.encode("utf-8"), passphrase)
    return encode_envelope(LegacyEnvelope(blob=blob, tagged=False))


def verify_passphrase(passphrase: str, token: str) -> bool:
    """Check a passphrase against a verification token. Never raises."""
    try:
        envelope = parse_envelope(token)
        if not isinstance(envelope, LegacyEnvelope):
            return False
        return _to_text(open_legacy_blob(envelope.blob, passphrase)) == VERIFICATION_PLAINTEXT
    except Exception as err:
        logger.debug("Passphrase verification failed: %s", type(err).__name__)
        return False
