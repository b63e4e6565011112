"""Persisted secondary cache of parsed results.

Providers that answer batched queries (for example market statistics for
up to a hundred item types at once) keep their parsed results in memory,
keyed by scope (e.g. a region) and then by item id, each record stamped
with the time it was obtained. :class:`SnapshotCache` owns that mapping and
persists it between runs.

On-disk layout under the snapshot directory::

    version   a single integer, the snapshot format version
    cache     JSON envelope {"version": N, "checksum": "<sha256>", "scopes": {...}}

The snapshot is trusted only as a whole: a version marker that does not
match, an envelope version that does not match, a checksum mismatch, or any
parse failure discards the entire snapshot. Saving writes the marker first
and the envelope second (atomically); if anything fails the marker is
deleted so a half-written snapshot is never loaded.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
from collections.abc import Iterable, Mapping
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Optional

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from fetchcache.exceptions import CacheIOError, ParseError
from fetchcache.fsutil import atomic_write, remove_quietly
from fetchcache.models import SnapshotConfig, SnapshotRecord
from fetchcache.strategies import as_utc, utcnow

logger = logging.getLogger(__name__)

VERSION_FILENAME = "version"
CACHE_FILENAME = "cache"


class SnapshotEnvelope(BaseModel):
    """Serialised form of the whole secondary cache."""

    version: int
    checksum: str
    scopes: dict[str, dict[str, SnapshotRecord]] = Field(default_factory=dict)


def _checksum(scopes: Mapping[str, Mapping[str, SnapshotRecord]]) -> str:
    """SHA-256 over the canonical JSON form of *scopes*."""
    plain = {
        scope: {item: record.model_dump(mode="json") for item, record in items.items()}
        for scope, items in scopes.items()
    }
    text = json.dumps(plain, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _record(obtained_at: datetime, data: Mapping[Any, Any]) -> SnapshotRecord:
    """Build a record with string keys so the payload stays JSON-sortable."""
    return SnapshotRecord(obtained_at=obtained_at, data={str(key): value for key, value in data.items()})


class SnapshotCache:
    """In-memory scope -> item -> record mapping with versioned persistence.

    All access to the mapping goes through one lock. Scope and item keys are
    normalised with ``str()`` so integer region/type ids work as keys.

    Args:
        directory: Directory holding the ``version`` and ``cache`` files.
        version: The snapshot version this code understands.
        max_age: Records older than this are treated as misses by
            :meth:`get` and :meth:`lookup`. ``None`` keeps records forever.
        now: Clock returning aware UTC datetimes, injectable for tests.

    Example::

        snapshot = SnapshotCache(get_provider_dir("eve-central"), version=1,
                                 max_age=timedelta(hours=7.5))
        snapshot.load()
        hits, misses = snapshot.lookup(region_id, type_ids)
        ...
        snapshot.put_many(region_id, fresh_stats)
        snapshot.save()
    """

    def __init__(
        self,
        directory: str | Path,
        version: int = 1,
        max_age: Optional[timedelta | float] = None,
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        if max_age is not None and not isinstance(max_age, timedelta):
            max_age = timedelta(seconds=max_age)
        self.directory = Path(directory)
        self.version = version
        self.max_age = max_age
        self._now = now or utcnow
        self._lock = threading.Lock()
        self._scopes: dict[str, dict[str, SnapshotRecord]] = {}
        self._dirty = False

    @classmethod
    def from_config(cls, directory: str | Path, config: SnapshotConfig) -> SnapshotCache:
        """Build a snapshot cache from a :class:`~fetchcache.models.SnapshotConfig`."""
        return cls(directory, version=config.version, max_age=config.max_age_seconds)

    @property
    def version_path(self) -> Path:
        return self.directory / VERSION_FILENAME

    @property
    def cache_path(self) -> Path:
        return self.directory / CACHE_FILENAME

    @property
    def dirty(self) -> bool:
        """Whether the mapping changed since the last load or save."""
        return self._dirty

    # ------------------------------------------------------------------ #
    # Persistence
    # ------------------------------------------------------------------ #

    def load(self) -> int:
        """Merge the on-disk snapshot into memory.

        Never raises. Any mismatch or parse failure discards the on-disk
        snapshot and leaves the in-memory mapping as it was.

        Returns:
            The number of records loaded.
        """
        try:
            envelope = self._read_envelope()
        except (ParseError, CacheIOError) as exc:
            logger.warning("Discarding snapshot in %s: %s", self.directory, exc)
            self.discard()
            return 0
        if envelope is None:
            return 0

        count = 0
        with self._lock:
            for scope, items in envelope.scopes.items():
                self._scopes.setdefault(scope, {}).update(items)
                count += len(items)
        logger.debug("Loaded %d snapshot records from %s", count, self.directory)
        return count

    def save(self) -> bool:
        """Persist the mapping if it changed.

        Returns:
            ``True`` if a snapshot was written, ``False`` if nothing changed.

        Raises:
            CacheIOError: If writing fails. The version marker is removed so
                the partial snapshot is ignored on the next load.
        """
        with self._lock:
            if not self._dirty:
                return False
            scopes = {scope: dict(items) for scope, items in self._scopes.items()}
            envelope = SnapshotEnvelope(
                version=self.version,
                checksum=_checksum(scopes),
                scopes=scopes,
            )
            try:
                atomic_write(self.version_path, f"{self.version}\n")
                atomic_write(self.cache_path, envelope.model_dump_json())
            except OSError as exc:
                remove_quietly(self.version_path)
                raise CacheIOError(f"Cannot save snapshot to {self.directory}: {exc}") from exc
            self._dirty = False
        logger.debug("Saved snapshot to %s", self.directory)
        return True

    def discard(self) -> None:
        """Delete the on-disk snapshot files."""
        remove_quietly(self.version_path)
        remove_quietly(self.cache_path)

    def _read_envelope(self) -> Optional[SnapshotEnvelope]:
        """Read and verify the envelope; ``None`` when there is no snapshot."""
        if not self.version_path.is_file():
            return None
        try:
            # UnicodeDecodeError is a ValueError too
            marker = int(self.version_path.read_text(encoding="utf-8").strip())
        except ValueError as exc:
            raise ParseError(f"Unreadable version marker: {exc}") from exc
        except OSError as exc:
            raise CacheIOError(f"Cannot read version marker: {exc}") from exc
        if marker != self.version:
            raise ParseError(f"Snapshot version {marker} != expected {self.version}")

        try:
            raw = self.cache_path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ParseError(f"Snapshot is not UTF-8 JSON: {exc}") from exc
        except OSError as exc:
            raise CacheIOError(f"Cannot read snapshot: {exc}") from exc
        try:
            envelope = SnapshotEnvelope.model_validate_json(raw)
        except PydanticValidationError as exc:
            raise ParseError(f"Malformed snapshot: {exc}") from exc
        if envelope.version != self.version:
            raise ParseError(f"Snapshot envelope version {envelope.version} != expected {self.version}")
        if envelope.checksum != _checksum(envelope.scopes):
            raise ParseError("Snapshot checksum mismatch")
        return envelope

    # ------------------------------------------------------------------ #
    # In-memory access
    # ------------------------------------------------------------------ #

    def get(
        self,
        scope: Any,
        item: Any,
        max_age: Optional[timedelta] = None,
    ) -> Optional[dict[str, Any]]:
        """Return the data of a record young enough to use, else ``None``."""
        with self._lock:
            record = self._scopes.get(str(scope), {}).get(str(item))
        if record is None or not self._is_current(record, max_age):
            return None
        return record.data

    def lookup(
        self,
        scope: Any,
        items: Iterable[Any],
        max_age: Optional[timedelta] = None,
    ) -> tuple[dict[str, dict[str, Any]], list[Any]]:
        """Split *items* into cached hits and misses.

        Returns:
            ``(hits, misses)`` where *hits* maps the normalised item key to
            its data and *misses* keeps the caller's original item values in
            order, ready to be batched into an upstream query.
        """
        hits: dict[str, dict[str, Any]] = {}
        misses: list[Any] = []
        with self._lock:
            records = dict(self._scopes.get(str(scope), {}))
        for item in items:
            record = records.get(str(item))
            if record is not None and self._is_current(record, max_age):
                hits[str(item)] = record.data
            else:
                misses.append(item)
        return hits, misses

    def put(
        self,
        scope: Any,
        item: Any,
        data: Mapping[Any, Any],
        obtained_at: Optional[datetime] = None,
    ) -> None:
        """Store one record and mark the cache dirty.

        Keys of *data* are normalised with ``str()`` like scope and item keys.
        """
        stamp = as_utc(obtained_at) if obtained_at else self._now()
        record = _record(stamp, data)
        with self._lock:
            self._scopes.setdefault(str(scope), {})[str(item)] = record
            self._dirty = True

    def put_many(
        self,
        scope: Any,
        records: Mapping[Any, Mapping[Any, Any]],
        obtained_at: Optional[datetime] = None,
    ) -> None:
        """Store several records for one scope with a shared timestamp."""
        stamp = as_utc(obtained_at) if obtained_at else self._now()
        built = {str(item): _record(stamp, data) for item, data in records.items()}
        if not built:
            return
        with self._lock:
            self._scopes.setdefault(str(scope), {}).update(built)
            self._dirty = True

    def scopes(self) -> list[str]:
        """Return the known scope keys, sorted."""
        with self._lock:
            return sorted(self._scopes)

    def clear(self) -> None:
        """Drop every record from memory (the next :meth:`save` persists this)."""
        with self._lock:
            if self._scopes:
                self._dirty = True
            self._scopes.clear()

    def __len__(self) -> int:
        with self._lock:
            return sum(len(items) for items in self._scopes.values())

    def _is_current(self, record: SnapshotRecord, max_age: Optional[timedelta]) -> bool:
        limit = max_age if max_age is not None else self.max_age
        if limit is None:
            return True
        return self._now() - record.obtained_at < limit
