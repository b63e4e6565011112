"""Disk caching for fetchcache.

This package provides the two cache layers:

- :class:`FileCache` -- one file per request, keyed by logical path and
  canonical parameters, refreshed through fetch-validate-promote with
  stale fallback on error.
- :class:`SnapshotCache` -- an in-memory scope/item index of parsed
  results, persisted as a versioned, checksummed snapshot.

Key helpers :func:`canonicalize` and :func:`derive_cache_path` are
re-exported for callers that need cache paths without a :class:`FileCache`.
"""

from fetchcache.cache.cache import FileCache
from fetchcache.cache.keys import canonicalize, derive_cache_path, parameter_hash
from fetchcache.cache.snapshot import SnapshotCache

__all__ = [
    "FileCache",
    "SnapshotCache",
    "canonicalize",
    "derive_cache_path",
    "parameter_hash",
]
