"""Submission of log entries to a Rekor server."""

from __future__ import annotations

import base64
import binascii
import json
import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.error import HTTPError, URLError
from urllib.request import Request

from rekorcli import transport
from rekorcli._version import __version__
from rekorcli.errors import DecodeError, SubmissionError, SubmissionTimeoutError

ADD_PATH = "/api/v1/add"
DEFAULT_TIMEOUT = transport.DEFAULT_TIMEOUT
DEFAULT_MAX_RESPONSE_BYTES = 16 * 1024 * 1024  # 16 MiB

# The server spells it this way
STATUS_FIELD = "file_recieved"


def add_url(server: str) -> str:
    """URL of the add endpoint for a server base URL."""
    return server.rstrip("/") + ADD_PATH


@dataclass
class SubmissionResult:
    """Acknowledgment returned by the log service."""

    status: str | None = None
    leaf: Any = None
    key: bytes | None = None
    raw: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_response(cls, body: bytes) -> SubmissionResult:
        """Decode a response body.

        Top-level field names match case-insensitively.

        Raises:
            DecodeError: Body is not a JSON object or a field has the wrong type
        """
        try:
            payload = json.loads(body)
        except (UnicodeDecodeError, json.JSONDecodeError, RecursionError) as e:
            raise DecodeError(f"Invalid JSON in log service response: {e}", stage="submit") from e

        if not isinstance(payload, dict):
            raise DecodeError(
                f"Expected a JSON object from log service, got {type(payload).__name__}",
                stage="submit",
            )

        status = None
        status_obj = _lookup(payload, "Status")
        if status_obj is not None:
            if not isinstance(status_obj, dict):
                raise DecodeError("Status must be a JSON object", stage="submit")
            status = _lookup(status_obj, STATUS_FIELD)
            if status is not None and not isinstance(status, str):
                raise DecodeError(f"Status.{STATUS_FIELD} must be a string", stage="submit")

        key = None
        key_b64 = _lookup(payload, "Key")
        if key_b64 is not None:
            if not isinstance(key_b64, str):
                raise DecodeError("Key must be a base64 string", stage="submit")
            try:
                key = base64.b64decode(key_b64, validate=True)
            except binascii.Error as e:
                raise DecodeError(f"Key is not valid base64: {e}", stage="submit") from e

        return cls(status=status, leaf=_lookup(payload, "Leaf"), key=key, raw=payload)

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "leaf": self.leaf,
            "key": base64.b64encode(self.key).decode("ascii") if self.key is not None else None,
        }


def _lookup(obj: dict[str, Any], name: str) -> Any:
    if name in obj:
        return obj[name]
    lowered = name.lower()
    for key, value in obj.items():
        if key.lower() == lowered:
            return value
    return None


class LogSubmitter:
    """Posts a serialized entry to ``<server>/api/v1/add`` once."""

    def __init__(
        self,
        max_response_bytes: int = DEFAULT_MAX_RESPONSE_BYTES,
        logger: logging.Logger | None = None,
    ) -> None:
        self.max_response_bytes = max_response_bytes
        self.logger = logger or logging.getLogger(__name__)

    def submit(self, endpoint: str, entry: bytes, timeout: float = DEFAULT_TIMEOUT) -> SubmissionResult:
        """Submit ``entry`` to the log service at ``endpoint``.

        Args:
            endpoint: Server base URL
            entry: Serialized log entry
            timeout: Total time budget in seconds

        Returns:
            Parsed SubmissionResult

        Raises:
            SubmissionTimeoutError: No complete answer within ``timeout``
            SubmissionError: Transport failure or non-2xx status
            DecodeError: Response body is malformed
        """
        url = add_url(endpoint)
        request = Request(url, data=entry, method="POST")
        request.add_header("Content-Type", "application/json")
        request.add_header("User-Agent", f"rekor-cli/{__version__}")

        self.logger.info("Uploading entry to Rekor at %s", url)
        deadline = transport.Deadline(timeout)
        try:
            response = transport.send(request, deadline, max_bytes=self.max_response_bytes)
        except HTTPError as e:
            snippet = _snippet(e)
            e.close()
            raise SubmissionError(f"Log service returned HTTP {e.code}: {snippet}") from e
        except URLError as e:
            if isinstance(e.reason, TimeoutError):
                raise SubmissionTimeoutError(
                    f"No response from {url} within {timeout:g}s"
                ) from e
            raise SubmissionError(f"Cannot reach log service at {url}: {e.reason}") from e
        except TimeoutError as e:
            raise SubmissionTimeoutError(f"No response from {url} within {timeout:g}s") from e
        except transport.BodyTooLargeError as e:
            raise SubmissionError(f"Log service response too large: {e}") from e
        except OSError as e:
            raise SubmissionError(f"Error submitting to {url}: {e}") from e

        if not response.ok:
            raise SubmissionError(f"Log service returned HTTP {response.status}")

        result = SubmissionResult.from_response(response.body)
        self.logger.info("Status: %s", result.status)
        return result


def _snippet(error: HTTPError, limit: int = 200) -> str:
    try:
        text = error.read(limit).decode("utf-8", errors="replace").strip()
    except OSError:
        text = ""
    return text or error.reason
