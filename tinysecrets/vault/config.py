"""
Store Configuration — Store location and key-derivation settings.

Reads overrides from environment variables:
    TINYSECRETS_STORE = <path to store.db>
    TINYSECRETS_HOME = <directory holding store.db>
    TINYSECRETS_KDF_TIME_COST / TINYSECRETS_KDF_MEMORY_COST /
    TINYSECRETS_KDF_PARALLELISM = <integer Argon2id cost>

KDF parameters only apply when a store is created. They are written into
the store metadata, and every later open uses the recorded values.

Security Note:
    Never log salts or key material. Only log paths and cost parameters.
"""
import os
import secrets
import logging
from pathlib import Path

import orjson
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..exceptions import FormatError

logger = logging.getLogger("tinysecrets.vault")

SALT_LENGTH = 32  # bytes
KEY_LENGTH = 32  # AES-256

_STORE_DIRNAME = ".tinysecrets"
_STORE_FILENAME = "store.db"


def default_store_path() -> Path:
    """Return the store location, honouring environment overrides.

    Resolution order: ``TINYSECRETS_STORE``, then
    ``TINYSECRETS_HOME/store.db``, then ``~/.tinysecrets/store.db``.

    Returns:
        Path to the SQLite store file (it may not exist yet).
    """
    explicit = os.environ.get("TINYSECRETS_STORE")
    if explicit:
        return Path(explicit).expanduser()
    home = os.environ.get("TINYSECRETS_HOME")
    if home:
        return Path(home).expanduser() / _STORE_FILENAME
    return Path.home() / _STORE_DIRNAME / _STORE_FILENAME


def generate_salt() -> bytes:
    """Generate a fresh random store salt.

    Called exactly once per store, at initialization.

    Returns:
        ``SALT_LENGTH`` random bytes.
    """
    return secrets.token_bytes(SALT_LENGTH)


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return int(raw)


class KdfParams(BaseModel):
    """Argon2id cost parameters for master-key derivation.

    The defaults cost roughly 100ms on commodity hardware.
    """

    time_cost: int = Field(default=3, ge=1, le=64)
    memory_cost: int = Field(default=65536, ge=8, le=4 * 1024 * 1024)  # KiB
    parallelism: int = Field(default=4, ge=1, le=64)
    hash_len: int = Field(default=KEY_LENGTH)

    model_config = {"frozen": True}

    @field_validator("hash_len")
    @classmethod
    def validate_hash_len(cls, v: int) -> int:
        """Master keys are always AES-256 keys."""
        if v != KEY_LENGTH:
            raise ValueError(f"hash_len must be {KEY_LENGTH}, got {v}")
        return v

    def to_json(self) -> str:
        """Serialize for the store metadata table."""
        return orjson.dumps(self.model_dump()).decode("utf-8")

    @classmethod
    def from_json(cls, raw: str) -> "KdfParams":
        """Load parameters recorded in store metadata.

        Raises:
            FormatError: If the recorded value is not valid parameter JSON.
        """
        try:
            return cls.model_validate(orjson.loads(raw))
        except (orjson.JSONDecodeError, ValidationError) as err:
            raise FormatError(f"Invalid KDF parameters in store metadata: {err}") from err

    @classmethod
    def from_env(cls) -> "KdfParams":
        """Create KdfParams from environment overrides, falling back to defaults."""
        defaults = cls()
        return cls(
            time_cost=_env_int("TINYSECRETS_KDF_TIME_COST", defaults.time_cost),
            memory_cost=_env_int("TINYSECRETS_KDF_MEMORY_COST", defaults.memory_cost),
            parallelism=_env_int("TINYSECRETS_KDF_PARALLELISM", defaults.parallelism),
        )


class StoreConfig(BaseModel):
    """Validated store configuration."""

    path: Path = Field(default_factory=default_store_path)
    kdf: KdfParams = Field(default_factory=KdfParams)
    history_limit: int = Field(default=10, ge=1, le=10_000)

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: Path) -> Path:
        """Expand ``~`` and reject directories."""
        v = Path(v).expanduser()
        if v.is_dir():
            raise ValueError(f"Store path {v} is a directory, expected a file")
        return v

    @classmethod
    def from_env(cls) -> "StoreConfig":
        """Create StoreConfig by loading values from environment.

        Returns:
            Populated StoreConfig instance.
        """
        config = cls(path=default_store_path(), kdf=KdfParams.from_env())
        logger.debug(
            "Store config: path=%s time_cost=%d memory_cost=%d parallelism=%d",
            config.path, config.kdf.time_cost,
            config.kdf.memory_cost, config.kdf.parallelism,
        )
        return config
