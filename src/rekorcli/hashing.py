"""Content digests for downloaded artifacts.

The digest always covers the *content* of an artifact: gzip-compressed
artifacts are decompressed before hashing so that the same payload yields the
same digest whether or not it was shipped compressed.
"""

from __future__ import annotations

import gzip
import hashlib
import io
import logging
import zlib
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import urlparse

from rekorcli.errors import DecodeError

GZIP_SUFFIXES = (".gz", ".tgz")
DEFAULT_MAX_DECOMPRESSED_BYTES = 4 * 1024 * 1024 * 1024  # 4 GiB
_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class ContentDigest:
    """Hex-encoded digest of artifact content."""

    hexdigest: str
    algorithm: str = "sha256"
    decompressed: bool = field(default=False, compare=False)

    def __str__(self) -> str:
        return self.hexdigest


def is_gzip_name(source_name: str) -> bool:
    """Whether ``source_name`` (a path or URL) names gzip-compressed content."""
    parsed = urlparse(source_name)
    path = parsed.path if parsed.scheme else source_name
    return PurePosixPath(path).suffix.lower() in GZIP_SUFFIXES


class ContentHasher:
    """SHA-256 hasher with transparent gzip decompression."""

    def __init__(
        self,
        max_decompressed_bytes: int = DEFAULT_MAX_DECOMPRESSED_BYTES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_decompressed_bytes = max_decompressed_bytes
        self.logger = logger or logging.getLogger(__name__)

    def hash(self, source_name: str, data: bytes) -> ContentDigest:
        """Compute the content digest of ``data``.

        Args:
            source_name: Name or URL the bytes came from; its suffix decides
                whether the data is gunzipped first
            data: Raw artifact bytes

        Returns:
            ContentDigest over the (decompressed) content

        Raises:
            DecodeError: Compressed data is corrupt, truncated or too large
        """
        hasher = hashlib.sha256()

        if is_gzip_name(source_name):
            self.logger.info("gzipped content detected")
            self._hash_gzip(data, hasher, source_name)
            digest = ContentDigest(hexdigest=hasher.hexdigest(), decompressed=True)
        else:
            hasher.update(data)
            digest = ContentDigest(hexdigest=hasher.hexdigest())

        self.logger.debug("sha256 of %s: %s", source_name, digest)
        return digest

    def _hash_gzip(self, data: bytes, hasher, source_name: str) -> None:
        if not data:
            raise DecodeError(f"Failed to decompress {source_name}: empty input", stage="hash")

        total = 0
        try:
            with gzip.GzipFile(fileobj=io.BytesIO(data), mode="rb") as gz:
                while chunk := gz.read(_CHUNK_SIZE):
                    total += len(chunk)
                    if total > self.max_decompressed_bytes:
                        raise DecodeError(
                            f"Decompressed content of {source_name} exceeds "
                            f"{self.max_decompressed_bytes} bytes",
                            stage="hash",
                        )
                    hasher.update(chunk)
        except (OSError, EOFError, zlib.error) as e:
            raise DecodeError(
                f"Failed to decompress {source_name}: {e}", stage="hash"
            ) from e
