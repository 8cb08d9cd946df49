# SAGE Terminology Errors
# ========================
"""
Typed failures raised by the terminology engine.

Read paths never surface a bare Exception: callers can tell "no data"
(NotFoundError) from "wrong version" (VersionNotFoundError) from
"system not initialised" (NoActiveVersionError).
"""

from typing import Optional, Union


class TerminologyError(Exception):
    """Base exception for terminology dictionary errors."""
    pass


class DictionaryFileNotFoundError(TerminologyError, FileNotFoundError):
    """Raised when a distribution file is missing or unreadable."""

    def __init__(self, file_key: str, path: str, reason: str = "file not found"):
        self.file_key = file_key
        self.path = path
        self.reason = reason
        super().__init__(f"{file_key}: {reason}: {path}")


class UnsupportedFormatError(TerminologyError, ValueError):
    """Raised for unknown dictionary types, file keys or hierarchy levels."""
    pass


class InvalidStateError(TerminologyError):
    """Raised when a version operation is illegal in the version's current state."""
    pass


class NotFoundError(TerminologyError, LookupError):
    """Raised when a code does not exist in the resolved dictionary version."""

    def __init__(self, message: str, code: Optional[Union[int, str]] = None,
                 version_id: Optional[int] = None):
        self.code = code
        self.version_id = version_id
        super().__init__(message)


class VersionNotFoundError(NotFoundError, InvalidStateError):
    """Raised when a version id is unknown for the dictionary type."""

    def __init__(self, version_id: int, dictionary_type: str):
        self.dictionary_type = dictionary_type
        super().__init__(
            f"{dictionary_type} version {version_id} not found",
            version_id=version_id,
        )


class NoActiveVersionError(TerminologyError):
    """Raised when an implicit-version read runs with no active version."""

    def __init__(self, dictionary_type: str):
        self.dictionary_type = dictionary_type
        super().__init__(f"No active {dictionary_type} version")


class ImportFailedError(TerminologyError):
    """Raised when a file fails mid-import; earlier files stay committed."""

    def __init__(self, file_key: str, version_id: int, message: str):
        self.file_key = file_key
        self.version_id = version_id
        self.message = message
        super().__init__(f"Import of '{file_key}' failed for version {version_id}: {message}")
