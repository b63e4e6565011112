"""Freshness strategies -- deciding when a cached file expires.

Two interchangeable policies implement :class:`FreshnessStrategy`:

- :class:`TtlStrategy` -- a fixed time-to-live counted from the file's last
  modification time.
- :class:`EmbeddedExpiryStrategy` -- the expiry is read out of the cached
  payload itself (for example an ``<cachedUntil>`` element), using a reader
  callable such as :func:`xml_element_expiry` or :func:`json_field_expiry`.

:func:`inspect` applies a strategy to a path and classifies it as
FRESH, STALE or MISSING. It never raises: unreadable files are MISSING.
"""

from __future__ import annotations

import json
import logging
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Optional

from fetchcache.exceptions import CacheIOError, ParseError
from fetchcache.models import CacheInspection, CacheState

logger = logging.getLogger(__name__)

ExpiryReader = Callable[[Path], datetime]
"""Reads the embedded expiry out of a cached payload."""

_EMBEDDED_FORMATS = ("%Y-%m-%d %H:%M:%S", "%Y-%m-%dT%H:%M:%S")


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class FreshnessStrategy(ABC):
    """Answers "when does this cached file expire?"."""

    @abstractmethod
    def expires_at(self, path: Path) -> datetime:
        """Return the aware UTC expiry of the file at *path*.

        Raises:
            CacheIOError: If the file cannot be read.
            ParseError: If the expiry cannot be determined from its content.
        """


class TtlStrategy(FreshnessStrategy):
    """Expire a fixed interval after the file was last written.

    Args:
        ttl: A :class:`~datetime.timedelta` or a number of seconds.
    """

    def __init__(self, ttl: timedelta | float) -> None:
        if not isinstance(ttl, timedelta):
            ttl = timedelta(seconds=ttl)
        self.ttl = ttl

    def expires_at(self, path: Path) -> datetime:
        try:
            mtime = path.stat().st_mtime
        except OSError as exc:
            raise CacheIOError(f"Cannot stat {path}: {exc}") from exc
        return datetime.fromtimestamp(mtime, timezone.utc) + self.ttl

    def __repr__(self) -> str:
        return f"TtlStrategy(ttl={self.ttl!r})"


class EmbeddedExpiryStrategy(FreshnessStrategy):
    """Expire at a timestamp embedded in the cached payload.

    Args:
        reader: Callable returning the expiry for a file. Any exception it
            raises other than :class:`CacheIOError` is reported as
            :class:`ParseError`.
    """

    def __init__(self, reader: ExpiryReader) -> None:
        self._reader = reader

    def expires_at(self, path: Path) -> datetime:
        try:
            value = self._reader(path)
        except (CacheIOError, ParseError):
            raise
        except OSError as exc:
            raise CacheIOError(f"Cannot read {path}: {exc}") from exc
        except Exception as exc:
            raise ParseError(f"Cannot read expiry from {path}: {exc}") from exc
        if not isinstance(value, datetime):
            raise ParseError(f"Expiry reader returned {type(value).__name__}, not datetime, for {path}")
        return as_utc(value)


def as_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and normalise aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(text: str) -> datetime:
    """Parse an upstream timestamp such as ``2008-05-01 12:00:00``.

    Accepts the space-separated EVE API form and ISO 8601. Naive values are
    taken to be UTC.

    Raises:
        ParseError: If *text* matches no known format.
    """
    text = text.strip()
    for fmt in _EMBEDDED_FORMATS:
        try:
            return datetime.strptime(text, fmt).replace(tzinfo=timezone.utc)
        except ValueError:
            continue
    try:
        return as_utc(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError as exc:
        raise ParseError(f"Unrecognised timestamp: {text!r}") from exc


def xml_element_expiry(element: str = "cachedUntil") -> ExpiryReader:
    """Build a reader for an expiry stored in an XML element.

    Args:
        element: ElementTree path relative to the document root, e.g.
            ``"cachedUntil"`` for ``<eveapi><cachedUntil>...</cachedUntil>``.
    """

    def read(path: Path) -> datetime:
        try:
            root = ET.parse(path).getroot()
        except ET.ParseError as exc:
            raise ParseError(f"Malformed XML in {path}: {exc}") from exc
        node = root.find(element)
        if node is None or not (node.text or "").strip():
            raise ParseError(f"No <{element}> element in {path}")
        return parse_timestamp(node.text)

    return read


def json_field_expiry(field: str = "expires_at") -> ExpiryReader:
    """Build a reader for an expiry stored in a top-level JSON field.

    The field may hold a timestamp string or a POSIX timestamp number.
    """

    def read(path: Path) -> datetime:
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ParseError(f"Malformed JSON in {path}: {exc}") from exc
        if not isinstance(data, dict) or field not in data:
            raise ParseError(f"No '{field}' field in {path}")
        value = data[field]
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, timezone.utc)
        return parse_timestamp(str(value))

    return read


def inspect(
    path: Path,
    strategy: FreshnessStrategy,
    now: Optional[datetime] = None,
) -> CacheInspection:
    """Classify the cache file at *path*.

    Args:
        path: The cache file.
        strategy: Policy that computes the expiry.
        now: Reference time, defaults to the current UTC time.

    Returns:
        FRESH when ``now < expires_at``, STALE when the file exists but has
        expired, MISSING when it is absent or cannot be inspected (the error
        is attached, never raised).
    """
    if not path.is_file():
        return CacheInspection(CacheState.MISSING)

    try:
        expires = strategy.expires_at(path)
    except (CacheIOError, ParseError) as exc:
        logger.debug("Treating %s as missing: %s", path, exc)
        return CacheInspection(CacheState.MISSING, error=exc)

    current = now or utcnow()
    if current < expires:
        return CacheInspection(CacheState.FRESH, expires)
    return CacheInspection(CacheState.STALE, expires)
