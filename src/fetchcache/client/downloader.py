"""Download a URL into a private temporary file.

:class:`Downloader` performs exactly one HTTP request per call through
:mod:`httpx` and streams the body to disk. It never writes into a cache
location itself: the returned temp file is handed to the cache orchestrator,
which validates it and promotes it atomically.

Request properties:

- a fixed, descriptive ``User-Agent``;
- ``Connection: close`` and a fresh :class:`httpx.Client` per call, so no
  connection is reused between requests;
- POST bodies are sent as ``application/x-www-form-urlencoded`` using the
  canonical parameter string from :func:`~fetchcache.cache.keys.canonicalize`.

Errors are mapped onto the fetchcache hierarchy:

- connection failures, timeouts, truncated bodies and non-2xx statuses
  raise :class:`~fetchcache.exceptions.NetworkError`;
- failures writing the temp file raise
  :class:`~fetchcache.exceptions.CacheIOError`.

In both cases the partially written temp file is removed first.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

import httpx

from fetchcache.exceptions import CacheIOError, NetworkError
from fetchcache.fsutil import remove_quietly
from fetchcache.models import HTTPMethod

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = "fetchcache"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"
_CHUNK_SIZE = 32 * 1024


class Downloader:
    """Blocking downloader backed by :class:`httpx.Client`.

    Args:
        user_agent: Client identifier sent with every request.
        timeout: Request timeout in seconds.
        temp_dir: Default directory for temp files. ``None`` uses the
            system temp directory.
        transport: Optional httpx transport, e.g. :class:`httpx.MockTransport`
            in tests.

    Example::

        downloader = Downloader(user_agent="my-tool/1.0")
        tmp = downloader.download(
            "https://api.example.com/char/CharacterSheet.xml.aspx",
            HTTPMethod.POST,
            body="characterID=5&userID=1",
        )
    """

    def __init__(
        self,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 30.0,
        temp_dir: Optional[Path] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.user_agent = user_agent
        self.timeout = timeout
        self.temp_dir = temp_dir
        self._transport = transport

    # ------------------------------------------------------------------ #
    # Public API
    # ------------------------------------------------------------------ #

    def download(
        self,
        url: str,
        method: HTTPMethod | str = HTTPMethod.GET,
        body: Optional[str] = None,
        temp_dir: Optional[Path] = None,
    ) -> Path:
        """Fetch *url* and stream the response body into a new temp file.

        Args:
            url: Absolute URL to request.
            method: ``GET`` or ``POST``.
            body: Canonical form-encoded body for POST. Must be ``None``
                for GET.
            temp_dir: Directory for the temp file, overriding the default.

        Returns:
            Path to the temp file. The caller owns it and must delete it.

        Raises:
            NetworkError: On transport failure or a non-2xx status.
            CacheIOError: If the temp file cannot be written.
            ValueError: If a body is given for GET.
        """
        method = HTTPMethod(method.upper())
        if method is HTTPMethod.GET and body:
            raise ValueError("GET requests do not carry a body")

        headers = {"User-Agent": self.user_agent, "Connection": "close"}
        content: Optional[bytes] = None
        if method is HTTPMethod.POST:
            headers["Content-Type"] = FORM_CONTENT_TYPE
            content = (body or "").encode("utf-8")

        directory = temp_dir or self.temp_dir
        logger.debug("Downloading %s %s", method.value, url)

        tmp_path: Optional[Path] = None
        try:
            with httpx.Client(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=True,
            ) as client:
                with client.stream(
                    method.value, url, headers=headers, content=content
                ) as response:
                    if not response.is_success:
                        raise NetworkError(
                            f"HTTP {response.status_code} from {url}",
                            status_code=response.status_code,
                        )
                    tmp_path = self._new_temp_file(directory)
                    self._write_stream(response, tmp_path)
        except NetworkError:
            remove_quietly(tmp_path)
            raise
        except httpx.HTTPError as exc:
            remove_quietly(tmp_path)
            raise NetworkError(f"Request to {url} failed: {exc}") from exc
        except OSError as exc:
            remove_quietly(tmp_path)
            raise CacheIOError(f"Cannot write download of {url}: {exc}") from exc

        return tmp_path

    # ------------------------------------------------------------------ #
    # Private helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _new_temp_file(directory: Optional[Path]) -> Path:
        """Allocate an empty, private temp file and return its path."""
        if directory is not None:
            directory.mkdir(parents=True, exist_ok=True)
        fd, name = tempfile.mkstemp(prefix=".download.", suffix=".tmp", dir=directory)
        os.close(fd)
        return Path(name)

    @staticmethod
    def _write_stream(response: httpx.Response, path: Path) -> None:
        """Copy the response body into *path*.

        httpx raises :class:`httpx.RemoteProtocolError` when the body ends
        before the advertised ``Content-Length``.
        """
        with open(path, "wb") as out:
            for chunk in response.iter_bytes(chunk_size=_CHUNK_SIZE):
                out.write(chunk)
