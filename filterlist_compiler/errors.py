"""
Exception types raised by the filter list compiler.

Every error raised on purpose derives from CompilerError so callers can catch
the whole family at once. Validation failures are not errors: invalid rules
are filtered out, never raised.
"""
from __future__ import annotations


class CompilerError(Exception):
    """Base class for compiler failures."""


# ----------------------------------------
# Content acquisition
# ----------------------------------------
class NetworkError(CompilerError):
    """A remote source could not be fetched."""

    def __init__(
        self,
        url: str,
        message: str,
        status: int | None = None,
        retryable: bool = False,
    ):
        super().__init__(f"{url}: {message}")
        self.url = url
        self.status = status
        self.retryable = retryable


class NetworkTimeoutError(NetworkError):
    """The remote server did not answer within the configured timeout."""

    def __init__(self, url: str, timeout: float):
        super().__init__(
            url, f"timed out after {timeout:g}s", status=None, retryable=True
        )
        self.timeout = timeout


class FileSystemError(CompilerError):
    """A local source could not be read."""

    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    EMPTY = "empty"
    IO = "io"

    def __init__(self, path: str, kind: str, message: str):
        super().__init__(f"{path}: {message}")
        self.path = path
        self.kind = kind


# ----------------------------------------
# Rule processing
# ----------------------------------------
class PreprocessorError(CompilerError):
    """Unbalanced conditional directives in a source."""

    def __init__(self, source: str, line_number: int, message: str):
        super().__init__(f"{source}:{line_number}: {message}")
        self.source = source
        self.line_number = line_number


class ParseError(CompilerError, ValueError):
    """A line is not a valid rule of the requested grammar."""

    def __init__(self, rule_text: str, message: str):
        super().__init__(f"{message}: {rule_text!r}")
        self.rule_text = rule_text


class ConfigurationError(CompilerError, ValueError):
    """The compiler configuration is malformed."""


__all__ = [
    "CompilerError",
    "NetworkError",
    "NetworkTimeoutError",
    "FileSystemError",
    "PreprocessorError",
    "ParseError",
    "ConfigurationError",
]
