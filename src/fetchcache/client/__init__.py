"""HTTP download layer for fetchcache.

Provides :class:`Downloader`, a thin blocking wrapper around :mod:`httpx`
that fetches one URL per call into a private temporary file and maps
transport failures onto :class:`~fetchcache.exceptions.NetworkError`.

Example::

    from fetchcache.client import Downloader

    tmp = Downloader(user_agent="my-tool/1.0").download("https://example.com/prices.xml")
"""

from fetchcache.client.downloader import Downloader

__all__ = ["Downloader"]
