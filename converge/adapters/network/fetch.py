"""
URL fetcher — download bytes with transient/permanent classification.

The engine only needs ``fetch(url) -> bytes`` plus a reliable answer to
"is it worth retrying?". Timeouts, connection resets and HTTP 408, 429
and 5xx responses raise ``TransientExecutionError``; everything else
raises ``ExecutionError``.
"""

from __future__ import annotations

import http.client
import logging
import socket
import urllib.error
import urllib.request
from abc import ABC, abstractmethod

from converge import __version__
from converge.core.errors import ExecutionError, TransientExecutionError

logger = logging.getLogger(__name__)

_TRANSIENT_HTTP = {408, 425, 429, 500, 502, 503, 504}
_TRANSIENT_OS = (
    TimeoutError,
    socket.timeout,
    ConnectionResetError,
    ConnectionRefusedError,
    ConnectionAbortedError,
    http.client.IncompleteRead,
    http.client.RemoteDisconnected,
)


class Fetcher(ABC):
    """Contract for network fetches used by network-sourced drivers."""

    @abstractmethod
    def fetch(self, url: str) -> bytes:
        """Download ``url`` completely.

        Raises:
            TransientExecutionError: Worth retrying.
            ExecutionError: Permanent failure.
        """


class UrlFetcher(Fetcher):
    """``urllib.request`` implementation with a fixed timeout."""

    def __init__(self, timeout: int = 60):
        self._timeout = timeout

    def fetch(self, url: str) -> bytes:
        req = urllib.request.Request(url, headers={"User-Agent": f"converge/{__version__}"})
        logger.debug("Fetching %s", url)
        try:
            with urllib.request.urlopen(req, timeout=self._timeout) as resp:
                data = resp.read()
        except urllib.error.HTTPError as e:
            message = f"GET {url} failed: HTTP {e.code} {e.reason}"
            if e.code in _TRANSIENT_HTTP:
                raise TransientExecutionError(message) from e
            raise ExecutionError(message) from e
        except urllib.error.URLError as e:
            message = f"GET {url} failed: {e.reason}"
            if isinstance(e.reason, _TRANSIENT_OS) or _is_dns_hiccup(e.reason):
                raise TransientExecutionError(message) from e
            raise ExecutionError(message) from e
        except _TRANSIENT_OS as e:
            raise TransientExecutionError(f"GET {url} failed: {e}") from e
        except ValueError as e:
            raise ExecutionError(f"Invalid URL {url!r}: {e}") from e

        logger.debug("Fetched %d bytes from %s", len(data), url)
        return data


def _is_dns_hiccup(reason: object) -> bool:
    """Temporary name-resolution failures (EAI_AGAIN) are worth a retry."""
    return isinstance(reason, socket.gaierror) and reason.errno == socket.EAI_AGAIN
