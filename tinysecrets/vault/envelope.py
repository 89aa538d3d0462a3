"""
Envelope — On-disk representation of one encrypted value.

Every stored value is base64 text wrapping ``[version tag 1B][format data]``:

- ``0x02`` current: ``[nonce 12B][AES-GCM ciphertext + tag 16B]``
- ``0x01`` legacy:  ``[age file]``, a binary age (age-encryption.org/v1)
  file with a passphrase (scrypt) recipient, starting with ``LEGACY_HEADER``

Values written before version tagging existed are the bare age file with no
tag byte. They are recognised by ``LEGACY_HEADER`` only after tag dispatch
finds no known tag.

Adding a format means adding a class and an entry in ``_PARSERS``.
"""
import base64
import binascii
from dataclasses import dataclass
from typing import Union

from ..exceptions import FormatError, UnknownFormatError

LEGACY_TAG = 0x01
CURRENT_TAG = 0x02

NONCE_SIZE = 12  # 96-bit nonce
TAG_SIZE = 16  # GCM authentication tag

LEGACY_HEADER = b"age-encryption.org/v1\n"


@dataclass(frozen=True)
class CurrentEnvelope:
    """AES-256-GCM value keyed by the store master key."""

    nonce: bytes
    ciphertext: bytes

    def to_bytes(self) -> bytes:
        return bytes([CURRENT_TAG]) + self.nonce + self.ciphertext


@dataclass(frozen=True)
class LegacyEnvelope:
    """Passphrase-encrypted age file; opaque until opened with the passphrase.

    ``tagged`` is False for values stored before version tagging existed, so
    re-encoding reproduces the exact stored bytes.
    """

    blob: bytes
    tagged: bool = True

    def to_bytes(self) -> bytes:
        if self.tagged:
            return bytes([LEGACY_TAG]) + self.blob
        return self.blob


Envelope = Union[CurrentEnvelope, LegacyEnvelope]


def _parse_current(body: bytes) -> CurrentEnvelope:
    if len(body) < NONCE_SIZE + TAG_SIZE:
        raise FormatError(
            f"Current-format envelope too short: {len(body)} bytes "
            f"(minimum {NONCE_SIZE + TAG_SIZE})"
        )
    return CurrentEnvelope(nonce=body[:NONCE_SIZE], ciphertext=body[NONCE_SIZE:])


def _parse_legacy(body: bytes) -> LegacyEnvelope:
    if not body.startswith(LEGACY_HEADER):
        raise FormatError("Legacy envelope is missing its age header")
    return LegacyEnvelope(blob=body)


_PARSERS = {
    CURRENT_TAG: _parse_current,
    LEGACY_TAG: _parse_legacy,
}


def parse_envelope(text: str) -> Envelope:
    """Decode stored base64 text into a typed envelope.

    Args:
        text: Envelope as stored in the database or an export bundle.

    Returns:
        CurrentEnvelope or LegacyEnvelope.

    Raises:
        FormatError: If the text is not base64 or the envelope is truncated.
        UnknownFormatError: If the version tag is not recognised.
    """
    try:
        raw = base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError) as err:
        raise FormatError("Envelope is not valid base64") from err
    if not raw:
        raise FormatError("Envelope is empty")

    parser = _PARSERS.get(raw[0])
    if parser is not None:
        return parser(raw[1:])
    # untagged age files from before version tagging
    if raw.startswith(LEGACY_HEADER):
        return LegacyEnvelope(blob=raw, tagged=False)
    raise UnknownFormatError(raw[0])


def encode_envelope(envelope: Envelope) -> str:
    """Encode an envelope as base64 text for storage."""
    return base64.b64encode(envelope.to_bytes()).decode("ascii")
