"""Shared test fixtures for fetchcache.

Provides reusable fixtures for isolated cache directories, a recording
:class:`httpx.MockTransport`, and small payload builders. These fixtures
are automatically discovered by pytest and available to all test modules
without explicit imports.
"""

from __future__ import annotations

import os
import time
from pathlib import Path
from typing import Callable

import httpx
import pytest

from fetchcache.client import Downloader


# ---------------------------------------------------------------------------
# Payload helpers
# ---------------------------------------------------------------------------


def eveapi_xml(cached_until: str = "2099-01-01 00:00:00", body: str = "<result/>") -> str:
    """Build a minimal EVE-API style document."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f"<eveapi version=\"2\"><currentTime>2008-01-01 00:00:00</currentTime>"
        f"{body}<cachedUntil>{cached_until}</cachedUntil></eveapi>"
    )


def set_age(path: Path, seconds: float) -> None:
    """Backdate *path*'s modification time by *seconds*."""
    stamp = time.time() - seconds
    os.utime(path, (stamp, stamp))


# ---------------------------------------------------------------------------
# Network doubles
# ---------------------------------------------------------------------------


class RecordingHandler:
    """A MockTransport handler that records requests and replays a response.

    Args:
        respond: Builds the response for each request. Defaults to a 200
            with an EVE-API document.
    """

    def __init__(self, respond: Callable[[httpx.Request], httpx.Response] | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self._respond = respond or (lambda request: httpx.Response(200, text=eveapi_xml()))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        request.read()
        self.requests.append(request)
        return self._respond(request)

    @property
    def calls(self) -> int:
        return len(self.requests)


@pytest.fixture
def handler() -> RecordingHandler:
    """A recording handler answering 200 with a far-future EVE-API document."""
    return RecordingHandler()


@pytest.fixture
def downloader(handler: RecordingHandler) -> Downloader:
    """A Downloader wired to the recording handler."""
    return Downloader(user_agent="fetchcache-tests", transport=httpx.MockTransport(handler))


# ---------------------------------------------------------------------------
# Directory isolation
# ---------------------------------------------------------------------------


@pytest.fixture
def cache_root(tmp_path: Path) -> Path:
    """A provider cache directory inside tmp_path."""
    root = tmp_path / "cache" / "provider"
    root.mkdir(parents=True)
    return root


@pytest.fixture
def isolated_cache_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point every cache directory lookup at tmp_path.

    Sets XDG_CACHE_HOME to a subdirectory of tmp_path and clears the
    FETCHCACHE_* environment variables so tests never touch the real
    user cache.

    Returns:
        The XDG cache home used for the test.
    """
    xdg = tmp_path / "xdg-cache"
    monkeypatch.setenv("XDG_CACHE_HOME", str(xdg))
    for var in ["FETCHCACHE_CACHE_DIR", "FETCHCACHE_USER_AGENT"]:
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setattr("fetchcache.config._is_xdg_platform", lambda: True)
    return xdg


# ---------------------------------------------------------------------------
# Helper fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def xml_payload() -> Callable[..., str]:
    """Return the :func:`eveapi_xml` builder."""
    return eveapi_xml


@pytest.fixture
def age_file() -> Callable[[Path, float], None]:
    """Return the :func:`set_age` helper."""
    return set_age


@pytest.fixture
def make_downloader() -> Callable[..., tuple[Downloader, RecordingHandler]]:
    """Return a factory building a Downloader around a custom responder.

    Example::

        failing, handler = make_downloader(lambda r: httpx.Response(503))
    """

    def factory(
        respond: Callable[[httpx.Request], httpx.Response],
        user_agent: str = "fetchcache-tests",
    ) -> tuple[Downloader, RecordingHandler]:
        recorder = RecordingHandler(respond)
        return Downloader(user_agent=user_agent, transport=httpx.MockTransport(recorder)), recorder

    return factory
