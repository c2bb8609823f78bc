"""Rekor log entries and their wire serialization.

An entry records the artifact URL, its content digest, the detached signature
and the public key. It takes one of two shapes:

- ``RawLogEntry``: signature and key as bytes (base64 strings on the wire)
- ``ArmoredLogEntry``: signature and key as ASCII-armored text

The armored shape is chosen whenever either input was armored.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass
from typing import Any, Union

from rekorcli.errors import DecodeError, EncodeError
from rekorcli.hashing import ContentDigest
from rekorcli.keys import EncodingClass, KeyMaterial, armor

# Wire field order of the entry object
FIELD_ORDER = ("SHA", "URL", "Signature", "PublicKey")


@dataclass(frozen=True)
class RawLogEntry:
    """Entry holding binary signature and key material."""

    url: str
    sha: str
    signature: bytes
    public_key: bytes

    shape = "raw"

    def to_dict(self) -> dict[str, Any]:
        return _wire_dict(
            self.sha,
            self.url,
            base64.b64encode(self.signature).decode("ascii"),
            base64.b64encode(self.public_key).decode("ascii"),
        )


@dataclass(frozen=True)
class ArmoredLogEntry:
    """Entry holding ASCII-armored signature and key text."""

    url: str
    sha: str
    signature: str
    public_key: str

    shape = "armored"

    def to_dict(self) -> dict[str, Any]:
        return _wire_dict(self.sha, self.url, self.signature, self.public_key)


LogEntry = Union[RawLogEntry, ArmoredLogEntry]


def _wire_dict(sha: str, url: str, signature: str, public_key: str) -> dict[str, Any]:
    # SHA and URL are omitted when empty; Signature and PublicKey always present
    values = {"SHA": sha, "URL": url, "Signature": signature, "PublicKey": public_key}
    return {
        name: values[name]
        for name in FIELD_ORDER
        if values[name] or name in ("Signature", "PublicKey")
    }


class LogEntryBuilder:
    """Builds and serializes log entries."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def build(
        self,
        url: str,
        digest: ContentDigest | str,
        signature: KeyMaterial,
        public_key: KeyMaterial,
    ) -> LogEntry:
        """Assemble an entry for a verified artifact.

        If both inputs are binary the raw shape is used. Otherwise the armored
        shape is used; a binary input mixed with an armored one is re-armored
        rather than placed in a text field as raw bytes.

        Raises:
            EncodeError: Material cannot be represented as armored text
        """
        sha = str(digest)

        if signature.encoding is EncodingClass.BINARY and public_key.encoding is EncodingClass.BINARY:
            self.logger.debug("Building raw entry for %s", url)
            return RawLogEntry(url=url, sha=sha, signature=signature.data, public_key=public_key.data)

        if signature.encoding is not public_key.encoding:
            self.logger.warning(
                "Mixed encodings (signature %s, public key %s); re-armoring the binary input",
                signature.encoding.value,
                public_key.encoding.value,
            )

        try:
            signature_text = armor(signature)
            public_key_text = armor(public_key)
        except DecodeError as e:
            raise EncodeError(f"Cannot build armored entry: {e}") from e

        self.logger.debug("Building armored entry for %s", url)
        return ArmoredLogEntry(url=url, sha=sha, signature=signature_text, public_key=public_key_text)

    def serialize(self, entry: LogEntry) -> bytes:
        """Serialize ``entry`` to compact JSON bytes.

        Raises:
            EncodeError: Entry cannot be encoded
        """
        try:
            return json.dumps(entry.to_dict(), separators=(",", ":"), ensure_ascii=True).encode("ascii")
        except (TypeError, ValueError) as e:
            raise EncodeError(f"JSON failed to marshal entry: {e}") from e
