"""Tests for the FileCache orchestrator."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock
from urllib.parse import parse_qsl

import httpx
import pytest

from fetchcache.cache import FileCache
from fetchcache.client import Downloader
from fetchcache.exceptions import CacheIOError, NetworkError, ValidationError
from fetchcache.models import CacheState, HTTPMethod, ProviderConfig
from fetchcache.ratelimit import RateLimiter
from fetchcache.strategies import EmbeddedExpiryStrategy, TtlStrategy, xml_element_expiry
from fetchcache.validation import ValidationResult, xml_error_validator

BASE_URL = "https://api.example.com"
PARAMS = {"id": "5", "key": "abc"}


def _cache(root: Path, downloader: Downloader, **kwargs) -> FileCache:
    kwargs.setdefault("strategy", TtlStrategy(3600))
    return FileCache(root, base_url=BASE_URL, downloader=downloader, **kwargs)


def _unavailable(request: httpx.Request) -> httpx.Response:
    return httpx.Response(503, text="unavailable")


def _dot_files(root: Path) -> list[Path]:
    return [p for p in root.iterdir() if p.name.startswith(".")]


# ------------------------------------------------------------------ #
# Fresh / missing / stale behaviour
# ------------------------------------------------------------------ #


class TestRequest:
    def test_first_request_downloads(self, cache_root: Path, downloader, handler, xml_payload) -> None:
        cache = _cache(cache_root, downloader)
        outcome = cache.request("char/Sheet.xml", PARAMS)
        assert outcome.updated is True
        assert outcome.state is CacheState.FRESH
        assert outcome.error is None
        assert outcome.path == cache.derive_path("char/Sheet.xml", PARAMS)
        assert outcome.path.read_text(encoding="utf-8") == xml_payload()
        assert handler.calls == 1

    def test_second_request_served_from_cache(self, cache_root: Path, downloader, handler) -> None:
        cache = _cache(cache_root, downloader)
        first = cache.request("char/Sheet.xml", PARAMS)
        second = cache.request("char/Sheet.xml", {"key": "abc", "id": "5"})
        assert handler.calls == 1
        assert second.updated is False
        assert second.state is CacheState.FRESH
        assert second.path == first.path

    def test_fresh_file_skips_downloader(self, cache_root: Path) -> None:
        mock_downloader = MagicMock(spec=Downloader)
        cache = _cache(cache_root, mock_downloader)
        path = cache.derive_path("char/Sheet.xml", PARAMS)
        path.write_text("cached", encoding="utf-8")

        outcome = cache.request("char/Sheet.xml", PARAMS)

        mock_downloader.download.assert_not_called()
        assert outcome.path == path
        assert outcome.updated is False
        assert outcome.expires_at is not None

    def test_stale_file_is_refreshed(
        self, cache_root: Path, downloader, handler, age_file, xml_payload
    ) -> None:
        cache = _cache(cache_root, downloader)
        path = cache.derive_path("char/Sheet.xml", PARAMS)
        path.write_text("old", encoding="utf-8")
        age_file(path, 7200)

        outcome = cache.request("char/Sheet.xml", PARAMS)

        assert handler.calls == 1
        assert outcome.updated is True
        assert outcome.state is CacheState.FRESH
        assert path.read_text(encoding="utf-8") == xml_payload()

    def test_stale_with_network_failure_serves_old_copy(
        self, cache_root: Path, age_file, make_downloader
    ) -> None:
        failing, _ = make_downloader(_unavailable)
        cache = _cache(cache_root, failing)
        path = cache.derive_path("char/Sheet.xml", PARAMS)
        path.write_text("old", encoding="utf-8")
        age_file(path, 7200)

        outcome = cache.request("char/Sheet.xml", PARAMS)

        assert outcome.path == path
        assert outcome.updated is False
        assert outcome.state is CacheState.STALE
        assert isinstance(outcome.error, NetworkError)
        assert outcome.error.status_code == 503
        assert path.read_text(encoding="utf-8") == "old"

    def test_missing_with_network_failure(self, cache_root: Path, make_downloader) -> None:
        failing, _ = make_downloader(_unavailable)
        cache = _cache(cache_root, failing)

        outcome = cache.request("char/Sheet.xml", PARAMS)

        assert outcome.path is None
        assert outcome.updated is False
        assert outcome.state is CacheState.MISSING
        assert isinstance(outcome.error, NetworkError)
        assert not outcome.ok
        with pytest.raises(NetworkError):
            outcome.require()

    def test_failure_leaves_no_temp_files(self, cache_root: Path, make_downloader) -> None:
        failing, _ = make_downloader(_unavailable)
        _cache(cache_root, failing).request("char/Sheet.xml", PARAMS)
        assert list(cache_root.iterdir()) == []

    def test_request_without_base_url(self, cache_root: Path, downloader) -> None:
        cache = FileCache(cache_root, downloader=downloader)
        with pytest.raises(ValueError):
            cache.request("char/Sheet.xml", PARAMS)

    def test_pairs_params_are_accepted(self, cache_root: Path, downloader, handler) -> None:
        cache = _cache(cache_root, downloader)
        pairs = iter([("typeid", "35"), ("typeid", "34")])
        outcome = cache.request("market/stats", pairs)
        assert outcome.path == cache.derive_path("market/stats", [("typeid", "34"), ("typeid", "35")])
        assert handler.requests[0].content == b"typeid=34&typeid=35"


# ------------------------------------------------------------------ #
# Wire format
# ------------------------------------------------------------------ #


class TestWireFormat:
    def test_post_sends_canonical_form_body(self, cache_root: Path, downloader, handler) -> None:
        _cache(cache_root, downloader).request("char/Sheet.xml.aspx", {"key": "abc", "id": "5"})

        request = handler.requests[0]
        assert request.method == "POST"
        assert str(request.url) == f"{BASE_URL}/char/Sheet.xml.aspx"
        assert request.content == b"id=5&key=abc"
        assert request.headers["content-type"] == "application/x-www-form-urlencoded"
        assert request.headers["user-agent"] == "fetchcache-tests"
        assert request.headers["connection"] == "close"

    def test_get_sends_query_string(self, cache_root: Path, downloader, handler) -> None:
        cache = _cache(cache_root, downloader, method="GET")
        cache.request("api/marketstat", {"typeid": "34", "regionlimit": "10000002"})

        request = handler.requests[0]
        assert request.method == "GET"
        assert request.url.path == "/api/marketstat"
        assert parse_qsl(request.url.query.decode()) == [
            ("regionlimit", "10000002"),
            ("typeid", "34"),
        ]
        assert request.content == b""

    def test_method_override_per_request(self, cache_root: Path, downloader, handler) -> None:
        cache = _cache(cache_root, downloader)
        cache.request("medians.txt", None, method=HTTPMethod.GET)
        assert handler.requests[0].method == "GET"

    def test_rate_limiter_keyed_by_host(self, cache_root: Path, downloader) -> None:
        limiter = MagicMock(spec=RateLimiter)
        _cache(cache_root, downloader, rate_limiter=limiter).request("char/Sheet.xml", PARAMS)
        limiter.acquire.assert_called_once_with("api.example.com")

    def test_rate_limiter_not_consulted_on_hit(self, cache_root: Path, downloader) -> None:
        limiter = MagicMock(spec=RateLimiter)
        cache = _cache(cache_root, downloader, rate_limiter=limiter)
        cache.derive_path("char/Sheet.xml", PARAMS).write_text("cached", encoding="utf-8")
        cache.request("char/Sheet.xml", PARAMS)
        limiter.acquire.assert_not_called()


# ------------------------------------------------------------------ #
# Validation and embedded expiry
# ------------------------------------------------------------------ #


class TestValidation:
    def test_rejected_download_keeps_old_bytes(self, cache_root: Path, age_file, make_downloader) -> None:
        error_doc = '<eveapi version="2"><error code="203">Authentication failure.</error></eveapi>'
        rejecting, _ = make_downloader(lambda request: httpx.Response(200, text=error_doc))
        cache = _cache(cache_root, rejecting)
        path = cache.derive_path("char/Sheet.xml", PARAMS)
        path.write_bytes(b"previous good copy")
        age_file(path, 7200)

        outcome = cache.request("char/Sheet.xml", PARAMS, validator=xml_error_validator())

        assert outcome.updated is False
        assert outcome.state is CacheState.STALE
        assert isinstance(outcome.error, ValidationError)
        assert outcome.error.code == 203
        assert path.read_bytes() == b"previous good copy"
        assert _dot_files(cache_root) == []

    def test_rejected_first_download_is_missing(self, cache_root: Path, make_downloader) -> None:
        garbage, _ = make_downloader(lambda request: httpx.Response(200, text="not xml at all"))
        cache = _cache(cache_root, garbage)

        outcome = cache.request("char/Sheet.xml", PARAMS, validator=xml_error_validator())

        assert outcome.state is CacheState.MISSING
        assert outcome.path is None
        assert isinstance(outcome.error, ValidationError)
        assert list(cache_root.iterdir()) == []

    def test_accepting_validator_promotes(self, cache_root: Path, downloader) -> None:
        seen: list[Path] = []

        def validator(path: Path) -> ValidationResult:
            seen.append(path)
            return ValidationResult.accept()

        outcome = _cache(cache_root, downloader).request("char/Sheet.xml", PARAMS, validator=validator)

        assert outcome.updated is True
        assert seen and seen[0] != outcome.path
        assert seen[0].parent == cache_root

    def test_crashing_validator_is_reported(self, cache_root: Path, downloader) -> None:
        def validator(path: Path) -> None:
            raise RuntimeError("boom")

        outcome = _cache(cache_root, downloader).request("char/Sheet.xml", PARAMS, validator=validator)

        assert outcome.state is CacheState.MISSING
        assert isinstance(outcome.error, ValidationError)
        assert "boom" in str(outcome.error)

    def test_embedded_expiry_reported(self, cache_root: Path, downloader) -> None:
        strategy = EmbeddedExpiryStrategy(xml_element_expiry())
        outcome = _cache(cache_root, downloader, strategy=strategy).request("char/Sheet.xml", PARAMS)
        assert outcome.expires_at == datetime(2099, 1, 1, tzinfo=timezone.utc)

    def test_embedded_expiry_past_triggers_refresh(
        self, cache_root: Path, downloader, handler, xml_payload
    ) -> None:
        strategy = EmbeddedExpiryStrategy(xml_element_expiry())
        cache = _cache(cache_root, downloader, strategy=strategy)
        path = cache.derive_path("char/Sheet.xml", PARAMS)
        path.write_text(xml_payload(cached_until="2001-01-01 00:00:00"), encoding="utf-8")

        outcome = cache.request("char/Sheet.xml", PARAMS)

        assert handler.calls == 1
        assert outcome.updated is True

    def test_unparseable_cache_file_is_refetched(self, cache_root: Path, downloader, handler) -> None:
        strategy = EmbeddedExpiryStrategy(xml_element_expiry())
        cache = _cache(cache_root, downloader, strategy=strategy)
        cache.derive_path("char/Sheet.xml", PARAMS).write_text("<broken", encoding="utf-8")

        outcome = cache.request("char/Sheet.xml", PARAMS)

        assert handler.calls == 1
        assert outcome.state is CacheState.FRESH


# ------------------------------------------------------------------ #
# Explicit paths and maintenance
# ------------------------------------------------------------------ #


class TestFetchAndMaintenance:
    def test_fetch_to_fixed_path(self, cache_root: Path, downloader, handler) -> None:
        cache = FileCache(cache_root, downloader=downloader, method="GET")
        target = cache_root / "medians.txt.gz"
        outcome = cache.fetch("https://dumps.example.com/medians.txt.gz", target)
        assert outcome.path == target
        assert target.is_file()
        assert handler.requests[0].url.host == "dumps.example.com"

    def test_promotion_failure_is_cache_io_error(
        self, cache_root: Path, downloader, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        def broken_promote(temp_path: Path, cache_path: Path) -> None:
            raise PermissionError("read-only")

        monkeypatch.setattr("fetchcache.cache.cache.promote", broken_promote)
        outcome = _cache(cache_root, downloader).request("char/Sheet.xml", PARAMS)

        assert isinstance(outcome.error, CacheIOError)
        assert outcome.path is None
        assert _dot_files(cache_root) == []

    def test_invalidate(self, cache_root: Path, downloader) -> None:
        cache = _cache(cache_root, downloader)
        cache.request("char/Sheet.xml", PARAMS)
        assert cache.invalidate("char/Sheet.xml", PARAMS) is True
        assert cache.invalidate("char/Sheet.xml", PARAMS) is False

    def test_clear_and_stats(self, cache_root: Path, downloader, xml_payload) -> None:
        cache = _cache(cache_root, downloader)
        cache.request("char/Sheet.xml", {"id": "1"})
        cache.request("char/Sheet.xml", {"id": "2"})
        (cache_root / ".download.inflight.tmp").write_text("partial", encoding="utf-8")

        stats = cache.stats()
        assert stats["size"] == 2
        assert stats["bytes"] == 2 * len(xml_payload().encode())
        assert stats["directory"] == str(cache_root)
        assert "TtlStrategy" in stats["strategy"]

        assert cache.clear() == 2
        assert cache.stats()["size"] == 0
        assert (cache_root / ".download.inflight.tmp").exists()

    def test_from_config(self, isolated_cache_env: Path) -> None:
        config = ProviderConfig(
            name="eveapi",
            base_url="https://api.example.com/",
            method=HTTPMethod.GET,
            ttl_seconds=120,
            min_interval_seconds=0.5,
        )
        cache = FileCache.from_config(config)

        assert cache.root == isolated_cache_env / "fetchcache" / "eveapi"
        assert cache.base_url == "https://api.example.com"
        assert cache.method is HTTPMethod.GET
        assert cache.strategy.ttl.total_seconds() == 120
        assert cache.rate_limiter.min_interval == 0.5
        assert cache.downloader.user_agent == "fetchcache"

    def test_from_config_overrides(self, tmp_path: Path, downloader) -> None:
        config = ProviderConfig(name="eveapi", base_url=BASE_URL)
        cache = FileCache.from_config(config, root=tmp_path / "here", downloader=downloader)
        assert cache.root == tmp_path / "here"
        assert cache.downloader is downloader
