"""Exceptions raised by pyargon."""

from typing import Optional


class ArgonError(Exception):
    """Base exception for all pyargon errors."""

    def __init__(self, message: str, path: Optional[str] = None):
        """Initialize the error.

        Args:
            message: Human-readable error message
            path: Path or address the error relates to, if any
        """
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path:
            return f"{self.message} ({self.path})"
        return self.message


class ConfigError(ArgonError):
    """Raised when settings cannot be loaded or are invalid."""


class ManifestError(ArgonError):
    """Raised when the project manifest cannot be parsed."""


class PathResolutionError(ArgonError):
    """Raised when a path lies outside the synchronized root or is malformed."""


class StaleTargetError(ArgonError):
    """Raised when a filesystem target is missing.

    Callers treat this as already converged, never as fatal.
    """


class TransportError(ArgonError):
    """Raised by the client when the server cannot be reached or answers badly."""

    def __init__(
        self,
        message: str,
        path: Optional[str] = None,
        status_code: Optional[int] = None,
    ):
        super().__init__(message, path)
        self.status_code = status_code
