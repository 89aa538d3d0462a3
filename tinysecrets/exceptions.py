"""
TinySecrets exceptions.

Not-found outcomes are not exceptions: lookups return ``None``, ``False``
or an empty list instead.
"""


class TinySecretsError(Exception):
    """Base class for every error raised by tinysecrets."""


class AuthError(TinySecretsError):
    """The supplied passphrase does not unlock the store."""


class PassphraseMismatchError(AuthError):
    """An export bundle was sealed under a different passphrase."""


class DecryptionError(TinySecretsError):
    """A value failed authentication (wrong key or tampered ciphertext)."""


class FormatError(TinySecretsError):
    """A stored value or document cannot be parsed.

    Raised for malformed base64, truncated envelopes and invalid documents.
    Signals that the data needs repair or restore, not a passphrase retry.
    """


class UnknownFormatError(FormatError):
    """An envelope carries a version tag this release does not know."""

    def __init__(self, tag: int):
        self.tag = tag
        super().__init__(f"Unknown envelope format version: 0x{tag:02x}")


class CorruptedValueError(FormatError):
    """Decryption succeeded but the plaintext is not valid UTF-8 text."""


class BundleFormatError(FormatError):
    """An export bundle document is invalid or has an unsupported version."""


class MigrationError(FormatError):
    """One or more rows could not be migrated to the current format.

    Rows that did migrate stay migrated; ``result`` carries the counts and
    ``failures`` the (project, environment, key) identities left untouched.
    """

    def __init__(self, result, failures: list[tuple[str, str, str]]):
        self.result = result
        self.failures = failures
        super().__init__(
            f"{len(failures)} secret(s) could not be migrated "
            f"(migrated={result.migrated}, skipped={result.skipped})"
        )


class StorageError(TinySecretsError):
    """The backing database failed; the in-flight transaction was rolled back."""


class StoreExistsError(TinySecretsError):
    """``init`` was asked to create a store where one already exists."""


class StoreNotFoundError(TinySecretsError):
    """``open`` was pointed at a path with no store."""
