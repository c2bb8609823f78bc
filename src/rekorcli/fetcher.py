"""HTTP(S) artifact fetcher."""

from __future__ import annotations

import logging
from urllib.error import HTTPError, URLError
from urllib.parse import urlparse
from urllib.request import Request

from rekorcli import transport
from rekorcli._version import __version__
from rekorcli.errors import FetchError

DEFAULT_TIMEOUT = transport.DEFAULT_TIMEOUT
DEFAULT_MAX_ARTIFACT_BYTES = 1024 * 1024 * 1024  # 1 GiB


class ArtifactFetcher:
    """Downloads a release artifact with a single GET.

    There is no retry: any failure raises ``FetchError`` so that nothing is
    ever hashed or signed-checked on behalf of a partial or empty download.
    """

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_ARTIFACT_BYTES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.timeout = timeout
        self.max_bytes = max_bytes
        self.logger = logger or logging.getLogger(__name__)

    def fetch(self, url: str) -> bytes:
        """Download ``url`` and return its body.

        Args:
            url: HTTP(S) URL of the artifact

        Returns:
            Artifact bytes

        Raises:
            FetchError: Bad scheme, transport error, non-2xx status,
                timeout, or body over the size limit
        """
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            raise FetchError(
                f"Invalid URL scheme: {parsed.scheme or '(none)'}. Only http/https supported."
            )

        request = Request(url, method="GET")
        request.add_header("User-Agent", f"rekor-cli/{__version__}")

        self.logger.info("Downloading artifact from %s", url)
        deadline = transport.Deadline(self.timeout)
        try:
            response = transport.send(request, deadline, max_bytes=self.max_bytes)
        except HTTPError as e:
            e.close()
            raise FetchError(f"HTTP error {e.code} fetching {url}") from e
        except URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise FetchError(f"Timed out after {self.timeout:g}s fetching {url}") from e
            raise FetchError(f"Network error fetching {url}: {e.reason}") from e
        except TimeoutError as e:
            raise FetchError(f"Timed out after {self.timeout:g}s fetching {url}") from e
        except transport.BodyTooLargeError as e:
            raise FetchError(
                f"Artifact exceeds size limit ({self.max_bytes} bytes): {url}"
            ) from e
        except OSError as e:
            raise FetchError(f"Error fetching {url}: {e}") from e

        if not response.ok:
            raise FetchError(f"HTTP error {response.status} fetching {url}")

        self.logger.info("Contents fetched (%d bytes)", len(response.body))
        return response.body
