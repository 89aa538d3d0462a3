"""
Store records and the portable export bundle.

``encrypted_value`` fields always hold envelope text, never plaintext.
"""
import base64
import binascii
import re
from datetime import datetime, timezone

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import BundleFormatError, FormatError
from .config import KdfParams

BUNDLE_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


_FRACTION = re.compile(r"\.(\d+)")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored RFC 3339 timestamp.

    Older releases wrote nanosecond fractions and a ``Z`` suffix; both are
    normalized so every supported Python parses them. Precision beyond
    microseconds is dropped.

    Raises:
        FormatError: If the value is not a timestamp.
    """
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), value, count=1)
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError as err:
        raise FormatError(f"Invalid stored timestamp: {value!r}") from err


class SecretEntry(BaseModel):
    """Current value of one (project, environment, key) identity."""

    project: str
    environment: str
    key: str
    encrypted_value: str = Field(repr=False)
    description: str | None = None
    created_at: datetime
    updated_at: datetime
    version: int = Field(ge=1)

    @property
    def identity(self) -> tuple[str, str, str]:
        return (self.project, self.environment, self.key)


class SecretHistoryEntry(BaseModel):
    """Archived snapshot of a superseded or deleted SecretEntry."""

    project: str
    environment: str
    key: str
    encrypted_value: str = Field(repr=False)
    version: int = Field(ge=1)
    created_at: datetime
    deleted_at: datetime | None = None

    model_config = {"frozen": True}

    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None


class ExportedSecret(BaseModel):
    key: str
    encrypted_value: str
    description: str | None = None
    version: int = Field(ge=1)


class KeyDerivation(BaseModel):
    """Public inputs of the exporting store's master-key derivation.

    Lets another store, given the same passphrase, open current-format
    envelopes it did not write. Holds no secret material.
    """

    salt: str
    kdf: KdfParams

    def salt_bytes(self) -> bytes:
        try:
            return base64.b64decode(self.salt, validate=True)
        except (binascii.Error, ValueError) as err:
            raise BundleFormatError("Bundle key derivation salt is not valid base64") from err


class ExportBundle(BaseModel):
    """Still-encrypted snapshot of one project/environment.

    ``key_derivation`` is absent from bundles written by older releases,
    which only ever contain legacy-format envelopes.
    """

    version: int = BUNDLE_VERSION
    project: str
    environment: str
    passphrase_verification: str
    exported_at: datetime = Field(default_factory=utcnow)
    secrets: list[ExportedSecret] = Field(default_factory=list)
    key_derivation: KeyDerivation | None = None

    @field_validator("exported_at", mode="before")
    @classmethod
    def normalize_exported_at(cls, v):
        if isinstance(v, str):
            try:
                return parse_timestamp(v)
            except FormatError as err:
                raise ValueError(str(err)) from err
        return v

    def to_json(self) -> str:
        """Serialize as an indented JSON document."""
        return orjson.dumps(
            self.model_dump(mode="json"), option=orjson.OPT_INDENT_2
        ).decode("utf-8")

    @classmethod
    def from_json(cls, data: str | bytes) -> "ExportBundle":
        """Parse a bundle document.

        The ``version`` field is checked before anything else is read.

        Raises:
            BundleFormatError: Invalid JSON, unsupported version or
                missing/invalid fields.
        """
        try:
            raw = orjson.loads(data)
        except orjson.JSONDecodeError as err:
            raise BundleFormatError(f"Export bundle is not valid JSON: {err}") from err
        if not isinstance(raw, dict):
            raise BundleFormatError("Export bundle must be a JSON object")
        version = raw.get("version")
        if version != BUNDLE_VERSION:
            raise BundleFormatError(
                f"Unsupported export bundle version: {version!r} "
                f"(expected {BUNDLE_VERSION})"
            )
        try:
            return cls.model_validate(raw)
        except ValidationError as err:
            raise BundleFormatError(f"Invalid export bundle: {err}") from err
