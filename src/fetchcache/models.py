"""Canonical models shared across all fetchcache modules.

The models fall into two groups:

**Configuration models** -- Pydantic v2 models serialised as JSON:
    :class:`ProviderConfig` and :class:`SnapshotConfig`.

**Result types** -- plain dataclasses and enums produced by the cache:
    :class:`CacheState`, :class:`HTTPMethod`, :class:`CacheInspection`,
    :class:`FetchOutcome`, and :class:`SnapshotRecord` (Pydantic, because
    it is persisted inside the snapshot envelope).
"""

from __future__ import annotations

import enum
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

from fetchcache.exceptions import CacheIOError


# --- Enums ---


class CacheState(str, enum.Enum):
    """Freshness state of a cached file relative to its computed expiry."""

    FRESH = "fresh"
    STALE = "stale"
    MISSING = "missing"


class HTTPMethod(str, enum.Enum):
    """HTTP methods supported by the downloader."""

    GET = "GET"
    POST = "POST"


# --- Configuration models ---


class ProviderConfig(BaseModel):
    """Settings for one upstream data provider.

    Each provider gets its own cache root directory (named after
    :attr:`name`), its own :class:`~fetchcache.ratelimit.RateLimiter`, and
    its own :class:`~fetchcache.client.Downloader`.

    Example::

        ProviderConfig(
            name="eveapi",
            base_url="https://api.eveonline.com",
            ttl_seconds=3600,
            min_interval_seconds=0.5,
        )
    """

    name: str = Field(description="Provider name, also the cache subdirectory")
    base_url: Optional[str] = Field(
        default=None, description="Root URL that logical paths are resolved against"
    )
    method: HTTPMethod = Field(
        default=HTTPMethod.POST, description="HTTP method used for requests"
    )
    ttl_seconds: int = Field(
        default=3600, description="Default time-to-live for the fixed-TTL strategy"
    )
    min_interval_seconds: float = Field(
        default=0.0, description="Minimum spacing between outgoing calls"
    )
    user_agent: str = Field(
        default="fetchcache", description="Client identifier sent with every request"
    )
    timeout: float = Field(default=30.0, description="Request timeout in seconds")
    strip_suffix: Optional[str] = Field(
        default=".aspx", description="Suffix removed from logical paths"
    )


class SnapshotConfig(BaseModel):
    """Settings for a persisted secondary cache."""

    version: int = Field(default=1, description="Expected snapshot version")
    max_age_seconds: Optional[float] = Field(
        default=None, description="Records older than this are treated as misses"
    )


class SnapshotRecord(BaseModel):
    """A single parsed result kept in the secondary cache.

    Attributes:
        obtained_at: UTC time the record was fetched from upstream.
        data: The JSON-serialisable record payload.
    """

    obtained_at: datetime
    data: dict[str, Any] = Field(default_factory=dict)


# --- Result types ---


@dataclass(frozen=True)
class CacheInspection:
    """Freshness of a cache file at one instant.

    Attributes:
        state: FRESH, STALE or MISSING.
        expires_at: Computed expiry, ``None`` when MISSING.
        error: The error that made the file uninspectable, if any.
    """

    state: CacheState
    expires_at: Optional[datetime] = None
    error: Optional[Exception] = None


@dataclass(frozen=True)
class FetchOutcome:
    """Result of a single cache request.

    Returned on every call to :meth:`~fetchcache.cache.FileCache.request`;
    download and validation failures are reported through :attr:`error`
    rather than raised.

    Attributes:
        path: A usable, previously accepted cache file, or ``None``.
        updated: ``True`` if this call downloaded and promoted a new copy.
        state: The resulting freshness state.
        expires_at: The computed expiry for :attr:`path`.
        error: Why a download did not happen or did not succeed.
    """

    path: Optional[Path]
    updated: bool
    state: CacheState
    expires_at: Optional[datetime] = None
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        """Whether a usable file is available."""
        return self.path is not None

    def require(self) -> Path:
        """Return :attr:`path`, raising the attached error when there is none.

        Raises:
            FetchCacheError: The refresh error when no usable file exists.
        """
        if self.path is not None:
            return self.path
        if self.error is not None:
            raise self.error
        raise CacheIOError("No cached file available")
