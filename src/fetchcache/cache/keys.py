"""Parameter canonicalisation and cache path derivation.

A request is identified by a logical resource path (for example
``/char/CharacterSheet.xml.aspx``) plus a set of request parameters. This
module turns that pair into a stable filesystem location::

    canonicalize({"userID": "5", "apiKey": "abc"})
    # -> "apiKey=abc&userID=5"
    derive_cache_path(root, "/char/CharacterSheet.xml.aspx", params).name
    # -> "char.CharacterSheet.<32 hex chars>.xml"

The canonical string doubles as the form-encoded POST body, so the bytes
that identify a cache entry are exactly the bytes sent upstream.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Optional, Union
from urllib.parse import quote_plus

Params = Union[Mapping[str, Any], Iterable[tuple[str, Any]], None]
"""A parameter mapping, or ``(name, value)`` pairs when names repeat."""


def _pairs(params: Params) -> list[tuple[str, str]]:
    """Normalise *params* into a list of string pairs."""
    if not params:
        return []
    items = params.items() if isinstance(params, Mapping) else params
    return [(str(k), str(v)) for k, v in items]


def canonicalize(params: Params) -> str:
    """Encode *params* deterministically as ``key=value&...``.

    Pairs are sorted by key, then by value, and each side is form-encoded
    (spaces become ``+``). Insertion order never affects the result.

    Args:
        params: A mapping or an iterable of ``(name, value)`` pairs.
            ``None`` and empty inputs give ``""``.

    Returns:
        The canonical query string.
    """
    pairs = sorted(_pairs(params))
    return "&".join(f"{quote_plus(k)}={quote_plus(v)}" for k, v in pairs)


def parameter_hash(params: Params) -> str:
    """Return the 32-character hex MD5 digest of the canonical parameters."""
    return hashlib.md5(canonicalize(params).encode("utf-8")).hexdigest()


def cache_file_name(
    logical_path: str,
    params: Params = None,
    strip_suffix: Optional[str] = ".aspx",
) -> str:
    """Build the flat cache file name for *logical_path* and *params*.

    Strips a leading ``/`` and *strip_suffix*, turns the remaining ``/``
    separators into ``.``, and splices the parameter hash in front of the
    final extension (or appends it when there is none).
    """
    name = logical_path.lstrip("/")
    if strip_suffix and name.endswith(strip_suffix):
        name = name[: -len(strip_suffix)]
    name = name.replace("/", ".")
    if not name:
        raise ValueError(f"Logical path {logical_path!r} has no file name")

    digest = parameter_hash(params)
    stem, dot, ext = name.rpartition(".")
    if not dot or not stem:
        return f"{name}.{digest}"
    return f"{stem}.{digest}.{ext}"


def derive_cache_path(
    root: str | Path,
    logical_path: str,
    params: Params = None,
    strip_suffix: Optional[str] = ".aspx",
) -> Path:
    """Map a logical path and parameters to a file under *root*.

    The parent directory is created if it does not exist yet. Identical
    inputs always give the identical path; different parameter sets for the
    same logical path give different paths.

    Args:
        root: The provider's cache directory.
        logical_path: Slash-separated virtual path with an extension.
        params: Request parameters.
        strip_suffix: Templating suffix to drop, ``None`` to keep the path as is.

    Returns:
        The cache file path (which may not exist yet).
    """
    path = Path(root) / cache_file_name(logical_path, params, strip_suffix)
    path.parent.mkdir(parents=True, exist_ok=True)
    return path
