"""Error taxonomy for mapping configuration and identity resolution."""

from __future__ import annotations


class MapperError(Exception):
    """Base class for identity mapper errors."""


class ConfigurationError(MapperError, ValueError):
    """Raised when mapping configuration is invalid.

    Covers malformed mapping ARNs, unknown template tokens, duplicate ARNs
    and unknown backend names. Always detected at load/build time.
    """


class UnresolvedTemplateError(MapperError):
    """Raised when a username/group template cannot be expanded."""

    def __init__(self, message: str, token: str) -> None:
        super().__init__(message)
        self.token = token


class BackendUnavailableError(MapperError):
    """Raised when a mapping backend cannot produce a mapping set."""

    def __init__(self, message: str, backend: str) -> None:
        super().__init__(message)
        self.backend = backend
