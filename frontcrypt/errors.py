class FrontcryptError(Exception):
    """Base class for frontcrypt-specific errors."""


# Build time
class InputError(FrontcryptError):
    """Bad arguments, missing password or unusable paths."""


class UnsupportedEntryError(FrontcryptError):
    """Filesystem object that the archive format cannot represent."""

    def __init__(self, path: str, reason: str = "unsupported entry kind"):
        super().__init__(f"{reason}: {path}")
        self.path = path


class ArchiveIOError(FrontcryptError):
    """Unreadable source path or unwritable destination."""

    def __init__(self, path: str, cause: OSError):
        super().__init__(f"{path}: {cause.strerror or cause}")
        self.path = path
        self.cause = cause


# Decryption / consumption
class AuthenticationError(FrontcryptError):
    """Tag verification failed: wrong password or corrupted payload."""


class PayloadFormatError(FrontcryptError):
    pass


class ArchiveFormatError(FrontcryptError):
    pass
