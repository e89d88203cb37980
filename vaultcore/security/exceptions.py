"""
Encryption Error Taxonomy.

Every error raised by the encryption core derives from EncryptionError so
callers can catch the whole family at a single boundary.
"""


class EncryptionError(Exception):
    """Base exception for the encryption core."""

    pass


class ValidationFailure(EncryptionError):
    """Key material failed length, encoding or entropy checks."""

    def __init__(self, message: str, issues: list[str] | None = None) -> None:
        super().__init__(message)
        self.issues = issues or []


class DecryptionFailure(EncryptionError):
    """No known secret could authenticate the payload."""

    pass


class RotationInProgress(EncryptionError):
    """A key rotation is already running in this process."""

    pass


class BatchFailure(EncryptionError):
    """A re-encryption batch could not be completed."""

    def __init__(
        self,
        entity_type: str,
        field: str,
        message: str,
        record_ids: list[str] | None = None,
    ) -> None:
        super().__init__(f"{entity_type}.{field}: {message}")
        self.entity_type = entity_type
        self.field = field
        self.record_ids = record_ids or []


class RotationFailure(EncryptionError):
    """
    Key rotation failed and was rolled back.

    The triggering error is available as ``__cause__`` and ``cause``.
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause


class RecordStoreError(EncryptionError):
    """The record store was asked about an unknown entity or field."""

    pass
