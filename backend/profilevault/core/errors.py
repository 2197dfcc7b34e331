class StorageError(Exception):
    """Base class for every failure surfaced by the persistence layer."""

    code = "storage_error"


class PasswordRequiredError(StorageError):
    """Raised when encrypted data is touched while no password is held."""

    code = "password_required"


class InvalidPasswordError(StorageError):
    """Raised when AES-GCM authentication fails (wrong password or tampered data)."""

    code = "invalid_password"


class CorruptedDataError(StorageError):
    code = "corrupted_data"


class UnsupportedEnvironmentError(StorageError):
    code = "unsupported_environment"


class StorageIOError(StorageError):
    code = "storage_io"


ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        PasswordRequiredError,
        InvalidPasswordError,
        CorruptedDataError,
        UnsupportedEnvironmentError,
        StorageIOError,
    )
}
