"""Cache directory resolution and provider configuration.

This module handles the persistent configuration for fetchcache:

* **Directory layout** -- XDG Base Directory compliant on Linux/BSD,
  ``~/.fetchcache/cache/`` on macOS and Windows, overridable with the
  ``FETCHCACHE_CACHE_DIR`` environment variable. See :func:`get_cache_dir`
  and :func:`get_provider_dir`.
* **Provider configs** -- one JSON file per upstream provider, each
  deserialised into a :class:`~fetchcache.models.ProviderConfig`. Managed
  via :func:`load_provider_config` and :func:`save_provider_config`.
* **Precedence resolution** -- :func:`resolve_provider_config` layers
  environment variables over the file values.

All file writes go through :func:`~fetchcache.fsutil.atomic_write`.
"""

from __future__ import annotations

import json
import os
import platform
from pathlib import Path
from typing import Optional

from pydantic import ValidationError as PydanticValidationError

from fetchcache.exceptions import ConfigError
from fetchcache.fsutil import atomic_write
from fetchcache.models import ProviderConfig

_APP_NAME = "fetchcache"
_CACHE_DIR_ENV = "FETCHCACHE_CACHE_DIR"
_USER_AGENT_ENV = "FETCHCACHE_USER_AGENT"


# --- Cache directories ---


def _is_xdg_platform() -> bool:
    """Whether cache paths follow XDG_CACHE_HOME here (Linux and the BSDs)."""
    system = platform.system()
    return system == "Linux" or system.endswith("BSD")


def get_cache_dir() -> Path:
    """Return the cache root directory, creating it if necessary.

    Cached data can be safely deleted at any time.

    ``$FETCHCACHE_CACHE_DIR`` wins when set. Otherwise, on Linux/BSD:
    ``$XDG_CACHE_HOME/fetchcache/`` (default ``~/.cache/fetchcache/``); on
    macOS/Windows: ``~/.fetchcache/cache/``.

    Returns:
        Absolute path to the cache directory (guaranteed to exist).
    """
    override = os.environ.get(_CACHE_DIR_ENV, "")
    if override:
        path = Path(override).expanduser()
    elif _is_xdg_platform():
        xdg_cache = os.environ.get("XDG_CACHE_HOME") or Path.home() / ".cache"
        path = Path(xdg_cache) / _APP_NAME
    else:
        path = Path.home() / f".{_APP_NAME}" / "cache"
    path.mkdir(parents=True, exist_ok=True)
    return path


def get_provider_dir(name: str) -> Path:
    """Return ``<cache dir>/<name>/``, creating it if necessary.

    Args:
        name: Provider name. Must be a single path segment.

    Raises:
        ConfigError: If *name* is empty or contains a path separator.
    """
    if not name or name in (".", "..") or "/" in name or "\\" in name:
        raise ConfigError(f"Invalid provider name: {name!r}")
    path = get_cache_dir() / name
    path.mkdir(parents=True, exist_ok=True)
    return path


# --- Provider configs ---


def load_provider_config(path: str | Path) -> ProviderConfig:
    """Load and validate a provider config from a JSON file.

    Args:
        path: The JSON file to read.

    Returns:
        The deserialised :class:`~fetchcache.models.ProviderConfig`.

    Raises:
        ConfigError: If the file does not exist, contains invalid JSON, or
            fails Pydantic validation.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Provider config not found at {path}")
    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text)
        return ProviderConfig.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError, ValueError, OSError) as exc:
        raise ConfigError(f"Invalid provider config at {path}: {exc}") from exc


def save_provider_config(config: ProviderConfig, path: str | Path) -> None:
    """Persist a provider config atomically as JSON.

    Args:
        config: The config to save.
        path: Destination file.
    """
    data = config.model_dump(mode="json")
    atomic_write(Path(path), json.dumps(data, indent=2) + "\n")


def resolve_provider_config(
    path: Optional[str | Path] = None,
    name: Optional[str] = None,
) -> ProviderConfig:
    """Resolve a provider config with environment overrides.

    Precedence (high to low):
        1. Environment variables (``FETCHCACHE_USER_AGENT``)
        2. The JSON file at *path*
        3. Model defaults (requires *name* when no file is given)

    Raises:
        ConfigError: If neither *path* nor *name* is given, or the file is
            invalid.
    """
    if path is not None:
        config = load_provider_config(path)
    elif name:
        config = ProviderConfig(name=name)
    else:
        raise ConfigError("A config path or a provider name is required")

    env_agent = os.environ.get(_USER_AGENT_ENV)
    if env_agent:
        config = config.model_copy(update={"user_agent": env_agent})
    return config
