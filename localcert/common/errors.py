# localcert/common/errors.py
"""
Error kinds raised by localcert.

Every error carries an `exit_code` so the CLI can map it straight to a
process status:
 - ValidationError   -> 2  (bad subject, bad validity, weak parameters, ...)
 - StorageError      -> 3  (unwritable directory, disk full, missing file)
 - CryptoBackendError -> 4 (cryptography library failures, wrapped)
"""


class LocalCertError(Exception):
    """Parent of every localcert error."""

    exit_code = 1
    kind = "error"


# ---------------------------------------------------------------------------
# validation (nothing is written to disk)
# ---------------------------------------------------------------------------
class ValidationError(LocalCertError):
    exit_code = 2
    kind = "validation"


class WeakParameterError(ValidationError):
    """Key size, curve or DH group below the configured minimum."""

    kind = "weak-parameter"


class UnsupportedParameterError(ValidationError):
    kind = "unsupported-parameter"


class InvalidSubjectError(ValidationError):
    kind = "invalid-subject"


class MissingSANError(InvalidSubjectError):
    """Common name given but no Subject Alternative Names, and no override."""

    kind = "missing-san"


class InvalidSANError(ValidationError):
    kind = "invalid-san"


class InvalidValidityError(ValidationError):
    kind = "invalid-validity"


class InvalidRequestError(ValidationError):
    kind = "invalid-request"


class UnknownTemplateError(ValidationError):
    kind = "unknown-template"


# ---------------------------------------------------------------------------
# I/O
# ---------------------------------------------------------------------------
class StorageError(LocalCertError):
    exit_code = 3
    kind = "io"

    def __init__(self, path, reason: str = ""):
        self.path = str(path)
        self.reason = reason
        msg = f"{self.path}: {reason}" if reason else self.path
        super().__init__(msg)


class PathUnwritableError(StorageError):
    kind = "path-unwritable"


class ArtifactNotFoundError(StorageError):
    kind = "artifact-not-found"


# ---------------------------------------------------------------------------
# cryptography library
# ---------------------------------------------------------------------------
class CryptoBackendError(LocalCertError):
    """Wraps an exception raised inside the cryptography library."""

    exit_code = 4
    kind = "crypto"

    def __init__(self, operation: str, cause: Exception):
        self.operation = operation
        self.cause = cause
        super().__init__(f"{operation} failed: {type(cause).__name__}: {cause}")
