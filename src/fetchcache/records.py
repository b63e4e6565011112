"""Tolerant parsing of bulk, line-oriented upstream records.

Some providers publish whole datasets as delimited text (often gzipped),
for example a ``medians.txt.gz`` with ``typeID,sellMedian,buyMedian``
rows. A handful of malformed rows should not discard the whole file, but a
file that is mostly garbage should. :func:`parse_records` skips up to
``max_errors`` bad rows and then aborts with a
:class:`~fetchcache.exceptions.ParseError` naming the count.
"""

from __future__ import annotations

import gzip
import logging
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Callable, Optional, TypeVar

from fetchcache.exceptions import CacheIOError, ParseError

logger = logging.getLogger(__name__)

K = TypeVar("K")
V = TypeVar("V")

DEFAULT_MAX_ERRORS = 20


def read_lines(path: Path, encoding: str = "utf-8") -> Iterator[str]:
    """Yield the lines of *path* without trailing newlines.

    Files ending in ``.gz`` are decompressed on the fly.

    Raises:
        CacheIOError: If the file cannot be opened or decompressed.
        ParseError: If the content is not valid in *encoding*.
    """
    opener = gzip.open if path.suffix == ".gz" else open
    try:
        with opener(path, "rt", encoding=encoding) as fh:
            for line in fh:
                yield line.rstrip("\r\n")
    except UnicodeDecodeError as exc:
        raise ParseError(f"{path} is not valid {encoding}: {exc}") from exc
    except (OSError, EOFError) as exc:
        raise CacheIOError(f"Cannot read {path}: {exc}") from exc


def parse_records(
    lines: Iterable[str],
    parse_fields: Callable[[list[str]], tuple[K, V]],
    *,
    delimiter: str = ",",
    min_fields: Optional[int] = None,
    skip_header: bool = True,
    max_errors: int = DEFAULT_MAX_ERRORS,
) -> dict[K, V]:
    """Parse delimited *lines* into a mapping.

    Args:
        lines: Raw text lines.
        parse_fields: Turns the split fields of one line into a
            ``(key, value)`` pair; raises on malformed input.
        delimiter: Field separator.
        min_fields: Lines with fewer fields are skipped without counting as
            errors.
        skip_header: Discard the first line.
        max_errors: Number of malformed lines tolerated.

    Returns:
        The parsed records; later duplicates win.

    Raises:
        ParseError: Once more than *max_errors* lines failed to parse.
    """
    records: dict[K, V] = {}
    errors = 0

    for index, line in enumerate(lines):
        if skip_header and index == 0:
            continue
        if not line.strip():
            continue
        fields = line.split(delimiter)
        if min_fields is not None and len(fields) < min_fields:
            continue
        try:
            key, value = parse_fields(fields)
        except (ValueError, TypeError, IndexError, KeyError) as exc:
            errors += 1
            logger.debug("Malformed record on line %d: %s", index + 1, exc)
            if errors > max_errors:
                raise ParseError(
                    f"Aborted after {errors} malformed records (limit {max_errors})"
                ) from exc
            continue
        records[key] = value

    return records


def parse_record_file(
    path: Path,
    parse_fields: Callable[[list[str]], tuple[K, V]],
    **kwargs,
) -> dict[K, V]:
    """Read *path* with :func:`read_lines` and run :func:`parse_records` on it."""
    return parse_records(read_lines(path), parse_fields, **kwargs)
