"""Exception hierarchy for fetchcache.

All exceptions inherit from :class:`FetchCacheError`. The cache
orchestrator (:class:`~fetchcache.cache.FileCache`) catches this base type
during a refresh attempt and attaches the error to the returned
:class:`~fetchcache.models.FetchOutcome` instead of raising it, so callers
only see these exceptions from lower-level helpers or from
:meth:`~fetchcache.models.FetchOutcome.require`.

Subclass hierarchy::

    FetchCacheError
    +-- NetworkError      (connection, timeout, non-2xx, truncated body)
    +-- ValidationError   (validation hook rejected a download)
    +-- ParseError        (cached payload or snapshot unreadable)
    +-- CacheIOError      (filesystem failure on cache or temp files)
    +-- ConfigError       (invalid provider configuration)
"""

from __future__ import annotations


class FetchCacheError(Exception):
    """Base exception for all fetchcache errors.

    Args:
        message: Human-readable error description.
    """

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NetworkError(FetchCacheError):
    """Raised on transport failures or a non-success HTTP status.

    Args:
        message: Human-readable error description.
        status_code: The HTTP status code when the server answered,
            otherwise ``None``.
    """

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class ValidationError(FetchCacheError):
    """Raised when a validation hook rejects a downloaded file.

    Upstream APIs often report failures inside an otherwise successful
    response (for example ``<error code="203">Authentication failure</error>``).
    The optional ``code`` carries that upstream error code.

    Args:
        message: Human-readable error description.
        code: Upstream error code, ``0`` when unknown.
    """

    def __init__(self, message: str, code: int = 0):
        super().__init__(message)
        self.code = code

    def __str__(self) -> str:
        if self.code:
            return f"({self.code}) {self.message}"
        return self.message


class ParseError(FetchCacheError):
    """Raised when cached content, a snapshot, or bulk records cannot be parsed."""


class CacheIOError(FetchCacheError):
    """Raised on filesystem failures reading or writing cache or temp files."""


class ConfigError(FetchCacheError):
    """Raised for configuration problems (missing file, invalid JSON, bad values)."""
