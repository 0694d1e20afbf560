"""Exception hierarchy for Rungscope.

Each exception carries a ``status_code`` that adapters (HTTP handlers, the
CLI) use to tell client errors from internal faults.
"""

from typing import Optional


class RungscopeError(Exception):
    """Base class for all Rungscope errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def is_client_error(self) -> bool:
        return self.status_code < 500


class ParseError(RungscopeError):
    """A document could not be turned into a snapshot. Terminal for the file."""

    status_code = 422

    def __init__(self, message: str, kind: Optional[str] = None):
        super().__init__(message)
        self.kind = kind


class MalformedDocument(ParseError):
    """Input is not valid L5X/L5K, or violates a snapshot invariant."""


class UnsupportedSchemaVersion(ParseError):
    """Input declares a schema/format revision this parser does not read."""

    def __init__(self, message: str, kind: Optional[str] = None, version: Optional[str] = None):
        super().__init__(message, kind)
        self.version = version


class TruncatedInput(ParseError):
    """Input ends before the document is complete."""


class ParseLimitExceeded(ParseError):
    """Input exceeded the configured size or time envelope."""


class UnsupportedFileKind(RungscopeError):
    status_code = 400


class SnapshotNotFound(RungscopeError):
    """No completed snapshot exists for the requested file or version."""

    status_code = 404


class InvalidNamingRule(RungscopeError):
    """A naming rule was rejected at authoring time."""

    status_code = 400
