"""fetchcache -- a local disk cache for rate-limited, unreliable HTTP sources.

Callers ask for a resource by logical path plus request parameters. The
cache reuses a local copy while it is fresh; otherwise it paces the request
through a rate limiter, downloads into a temp file, validates it, and
atomically promotes it over the cached copy. If the refresh fails, the
previous copy is returned with the error attached.

Typical use::

    from fetchcache.cache import FileCache
    from fetchcache.strategies import TtlStrategy

    cache = FileCache(root, base_url="https://api.example.com")
    outcome = cache.request("/char/Sheet.xml", {"id": "5"}, TtlStrategy(3600))

Modules:
    cache: FileCache orchestrator, key derivation, snapshot cache.
    client: httpx-based downloader.
    strategies: fixed-TTL and embedded-expiry freshness policies.
    validation: validation hook results and stock validators.
    ratelimit: per-upstream request pacing.
    records: tolerant bulk record parsing.
    models: Pydantic config models and result types.
    config: XDG-aware cache directories and provider configs.
    exceptions: error hierarchy.
"""

__version__ = "0.1.0"
