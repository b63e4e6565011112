"""File-per-entry response cache with stale fallback.

:class:`FileCache` ties the pieces together for one provider:

1. derive the cache path from the logical path and parameters
   (:func:`~fetchcache.cache.keys.derive_cache_path`);
2. inspect its freshness with a :class:`~fetchcache.strategies.FreshnessStrategy`;
3. if it is FRESH, return it untouched;
4. otherwise pace the call through the :class:`~fetchcache.ratelimit.RateLimiter`,
   download to a temp file, run the validation hook, and promote the temp
   file over the cache path with a single atomic rename;
5. if any of step 4 fails, return the previous copy (if there is one) with
   the error attached instead of raising.

State transitions::

    MISSING -> FRESH            first successful fetch
    FRESH   -> STALE            time passes, no action
    STALE   -> FRESH            successful revalidation
    STALE   -> STALE + error    refresh failed, old file kept untouched
    MISSING -> MISSING + error  first fetch failed, nothing to fall back to
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Optional
from urllib.parse import urlsplit

from fetchcache.cache.keys import Params, canonicalize, derive_cache_path
from fetchcache.client.downloader import Downloader
from fetchcache.config import get_provider_dir
from fetchcache.exceptions import CacheIOError, FetchCacheError
from fetchcache.fsutil import promote, remove_quietly
from fetchcache.models import (
    CacheInspection,
    CacheState,
    FetchOutcome,
    HTTPMethod,
    ProviderConfig,
)
from fetchcache.ratelimit import RateLimiter
from fetchcache.strategies import FreshnessStrategy, TtlStrategy, inspect, utcnow
from fetchcache.validation import Validator, run_validator

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 3600


class FileCache:
    """Disk cache for one upstream provider.

    Args:
        root: Directory holding this provider's cache files.
        base_url: URL that logical paths are resolved against in
            :meth:`request`.
        method: Default HTTP method for :meth:`request`.
        strategy: Default freshness strategy. Defaults to a one-hour
            :class:`~fetchcache.strategies.TtlStrategy`.
        downloader: The network layer. A default :class:`Downloader` is
            created when omitted.
        rate_limiter: Paces outgoing calls. ``None`` disables pacing.
        strip_suffix: Suffix removed from logical paths when deriving
            file names.
        now: Clock returning aware UTC datetimes, injectable for tests.

    Example::

        cache = FileCache(
            "~/.cache/fetchcache/eveapi",
            base_url="https://api.eveonline.com",
            rate_limiter=RateLimiter(0.5),
        )
        outcome = cache.request(
            "/char/CharacterSheet.xml.aspx",
            {"userID": "1", "apiKey": "secret", "characterID": "5"},
            validator=xml_error_validator(),
        )
        if outcome.ok:
            parse_sheet(outcome.path)
    """

    def __init__(
        self,
        root: str | Path,
        base_url: Optional[str] = None,
        method: HTTPMethod | str = HTTPMethod.POST,
        strategy: Optional[FreshnessStrategy] = None,
        downloader: Optional[Downloader] = None,
        rate_limiter: Optional[RateLimiter] = None,
        strip_suffix: Optional[str] = ".aspx",
        now: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.root = Path(root).expanduser()
        self.base_url = base_url.rstrip("/") if base_url else None
        self.method = HTTPMethod(method.upper())
        self.strategy = strategy or TtlStrategy(DEFAULT_TTL_SECONDS)
        self.downloader = downloader or Downloader()
        self.rate_limiter = rate_limiter
        self.strip_suffix = strip_suffix
        self._now = now or utcnow
        self.root.mkdir(parents=True, exist_ok=True)

    @classmethod
    def from_config(
        cls,
        config: ProviderConfig,
        root: Optional[str | Path] = None,
        **kwargs: Any,
    ) -> FileCache:
        """Build a cache from a :class:`~fetchcache.models.ProviderConfig`.

        Args:
            config: The provider settings.
            root: Cache directory. Defaults to
                :func:`~fetchcache.config.get_provider_dir` for ``config.name``.
            **kwargs: Overrides forwarded to the constructor (e.g. a test
                ``downloader``).
        """
        if root is None:
            root = get_provider_dir(config.name)
        kwargs.setdefault(
            "downloader",
            Downloader(user_agent=config.user_agent, timeout=config.timeout),
        )
        kwargs.setdefault("rate_limiter", RateLimiter(config.min_interval_seconds))
        kwargs.setdefault("strategy", TtlStrategy(config.ttl_seconds))
        return cls(
            root,
            base_url=config.base_url,
            method=config.method,
            strip_suffix=config.strip_suffix,
            **kwargs,
        )

    # ------------------------------------------------------------------ #
    # Keys and inspection
    # ------------------------------------------------------------------ #

    def derive_path(self, logical_path: str, params: Params = None) -> Path:
        """Return the cache file path for *logical_path* and *params*."""
        return derive_cache_path(self.root, logical_path, params, self.strip_suffix)

    def inspect(
        self,
        path: Path,
        strategy: Optional[FreshnessStrategy] = None,
    ) -> CacheInspection:
        """Classify *path* as FRESH, STALE or MISSING. Never raises."""
        return inspect(path, strategy or self.strategy, self._now())

    # ------------------------------------------------------------------ #
    # Requests
    # ------------------------------------------------------------------ #

    def request(
        self,
        logical_path: str,
        params: Params = None,
        strategy: Optional[FreshnessStrategy] = None,
        validator: Optional[Validator] = None,
        method: Optional[HTTPMethod | str] = None,
    ) -> FetchOutcome:
        """Return a usable cached copy of a resource, refreshing it if needed.

        Args:
            logical_path: Resource path relative to ``base_url``, e.g.
                ``/char/CharacterSheet.xml.aspx``.
            params: Request parameters; also part of the cache key.
            strategy: Freshness policy for this resource type.
            validator: Hook run on the download before promotion.
            method: Overrides the cache's default HTTP method.

        Returns:
            A :class:`~fetchcache.models.FetchOutcome`; refresh failures are
            attached to it rather than raised.

        Raises:
            ValueError: If the cache has no ``base_url``.
        """
        if not self.base_url:
            raise ValueError("FileCache.request() needs a base_url")
        if params is not None and not isinstance(params, Mapping):
            params = list(params)
        url = f"{self.base_url}/{logical_path.lstrip('/')}"
        cache_path = self.derive_path(logical_path, params)
        return self.fetch(
            url,
            cache_path,
            strategy=strategy,
            params=params,
            validator=validator,
            method=method,
        )

    def fetch(
        self,
        url: str,
        cache_path: Path,
        strategy: Optional[FreshnessStrategy] = None,
        params: Params = None,
        validator: Optional[Validator] = None,
        method: Optional[HTTPMethod | str] = None,
    ) -> FetchOutcome:
        """Cache *url* at an explicit *cache_path*.

        This is the lower-level entry point used by :meth:`request`; it is
        also useful for resources whose file name is fixed, such as a daily
        ``medians.txt.gz`` dump.

        Args:
            url: Absolute URL to download.
            cache_path: Where the accepted copy lives.
            strategy: Freshness policy, defaults to the cache's strategy.
            params: GET query parameters or POST form fields.
            validator: Hook run on the download before promotion.
            method: HTTP method, defaults to the cache's method.
        """
        strategy = strategy or self.strategy
        http_method = HTTPMethod(method.upper()) if method else self.method

        current = self.inspect(cache_path, strategy)
        if current.state is CacheState.FRESH:
            logger.debug("Cache hit: %s", cache_path.name)
            return FetchOutcome(cache_path, False, CacheState.FRESH, current.expires_at)

        temp_path: Optional[Path] = None
        try:
            if self.rate_limiter is not None:
                self.rate_limiter.acquire(urlsplit(url).netloc or "default")
            temp_path = self._download(url, http_method, params, cache_path.parent)
            run_validator(validator, temp_path)
            try:
                promote(temp_path, cache_path)
            except OSError as exc:
                raise CacheIOError(f"Cannot promote download to {cache_path}: {exc}") from exc
            temp_path = None
        except FetchCacheError as exc:
            return self._fallback(cache_path, current, strategy, exc)
        finally:
            remove_quietly(temp_path)

        logger.debug("Cached %s -> %s", url, cache_path.name)
        refreshed = self.inspect(cache_path, strategy)
        return FetchOutcome(
            cache_path,
            True,
            CacheState.FRESH,
            refreshed.expires_at,
            refreshed.error,
        )

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def invalidate(self, logical_path: str, params: Params = None) -> bool:
        """Delete the cached copy of one resource.

        Returns:
            ``True`` if a file was removed.
        """
        path = self.derive_path(logical_path, params)
        if not path.is_file():
            return False
        remove_quietly(path)
        return True

    def clear(self) -> int:
        """Delete every cache file under :attr:`root` and return the count.

        In-flight temp files (dot-prefixed) are left alone.
        """
        removed = 0
        for path in self.root.iterdir():
            if path.is_file() and not path.name.startswith("."):
                remove_quietly(path)
                removed += 1
        return removed

    def stats(self) -> dict[str, Any]:
        """Return cache statistics.

        Returns:
            A ``dict`` with ``directory`` (str path), ``size`` (number of
            files), ``bytes`` (total size), and ``strategy`` (repr).
        """
        files = [p for p in self.root.iterdir() if p.is_file() and not p.name.startswith(".")]
        return {
            "directory": str(self.root),
            "size": len(files),
            "bytes": sum(p.stat().st_size for p in files),
            "strategy": repr(self.strategy),
        }

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    def _download(
        self,
        url: str,
        method: HTTPMethod,
        params: Params,
        temp_dir: Path,
    ) -> Path:
        """Download *url*, placing the temp file beside the cache file."""
        encoded = canonicalize(params)
        if method is HTTPMethod.GET:
            if encoded:
                url = f"{url}{'&' if '?' in url else '?'}{encoded}"
            return self.downloader.download(url, method, temp_dir=temp_dir)
        return self.downloader.download(url, method, body=encoded, temp_dir=temp_dir)

    def _fallback(
        self,
        cache_path: Path,
        current: CacheInspection,
        strategy: FreshnessStrategy,
        error: FetchCacheError,
    ) -> FetchOutcome:
        """Build the outcome for a failed refresh."""
        if current.state is CacheState.MISSING:
            logger.warning("Fetch for %s failed with nothing cached: %s", cache_path.name, error)
            return FetchOutcome(None, False, CacheState.MISSING, None, error)

        previous = self.inspect(cache_path, strategy)
        if previous.state is CacheState.MISSING:
            # The old file vanished or became unreadable while we were fetching.
            return FetchOutcome(None, False, CacheState.MISSING, None, error)
        logger.warning("Refresh of %s failed, serving stale copy: %s", cache_path.name, error)
        return FetchOutcome(cache_path, False, previous.state, previous.expires_at, error)
