"""Deadline-bounded HTTP I/O shared by the artifact fetcher and the log submitter.

urllib applies its ``timeout`` to each socket operation, not to the request as
a whole. A slow server trickling bytes, in the headers or the body, could
therefore hold a call open indefinitely. ``Deadline`` turns a timeout into an
absolute expiry, and a watchdog timer shuts down the connection's socket when
it passes, which unblocks whatever read is in progress.
"""

from __future__ import annotations

import http.client
import socket
import threading
import time
from dataclasses import dataclass, field
from urllib.request import HTTPHandler, HTTPSHandler, Request, build_opener

DEFAULT_TIMEOUT = 180.0  # seconds
DEFAULT_CHUNK_SIZE = 64 * 1024


class BodyTooLargeError(OSError):
    """Response body exceeded the caller's size limit."""


class ProtocolError(OSError):
    """Response was truncated or not valid HTTP."""


class Deadline:
    """Absolute expiry derived from a timeout in seconds."""

    def __init__(self, timeout: float) -> None:
        if timeout <= 0:
            raise ValueError(f"timeout must be positive, got {timeout}")
        self.timeout = timeout
        self._expires_at = time.monotonic() + timeout

    def remaining(self) -> float:
        """Seconds left before expiry, raising ``TimeoutError`` once none are."""
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise TimeoutError(f"deadline of {self.timeout:g}s exceeded")
        return left

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._expires_at


class Watchdog:
    """Shuts down every socket it watches once the deadline expires."""

    def __init__(self, deadline: Deadline) -> None:
        self.deadline = deadline
        self.fired = False
        self._sockets: list[socket.socket] = []
        self._lock = threading.Lock()
        self._timer: threading.Timer | None = None

    def start(self) -> None:
        self._timer = threading.Timer(self.deadline.remaining(), self._fire)
        self._timer.daemon = True
        self._timer.start()

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()

    def watch(self, sock: socket.socket) -> None:
        with self._lock:
            self._sockets.append(sock)
            if self.fired:
                _shutdown(sock)

    def _fire(self) -> None:
        with self._lock:
            self.fired = True
            for sock in self._sockets:
                _shutdown(sock)

    def check(self) -> None:
        """Raise ``TimeoutError`` if the watchdog has fired."""
        if self.fired:
            raise TimeoutError(f"deadline of {self.deadline.timeout:g}s exceeded")


def _shutdown(sock: socket.socket) -> None:
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # Already closed
        pass


class _WatchedHTTPConnection(http.client.HTTPConnection):
    def __init__(self, *args, watchdog: Watchdog, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._watchdog = watchdog

    def connect(self) -> None:
        super().connect()
        self._watchdog.watch(self.sock)


class _WatchedHTTPSConnection(http.client.HTTPSConnection):
    def __init__(self, *args, watchdog: Watchdog, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self._watchdog = watchdog

    def connect(self) -> None:
        super().connect()
        self._watchdog.watch(self.sock)


class _WatchedHTTPHandler(HTTPHandler):
    def __init__(self, watchdog: Watchdog) -> None:
        super().__init__()
        self.watchdog = watchdog

    def http_open(self, req):
        return self.do_open(_WatchedHTTPConnection, req, watchdog=self.watchdog)


class _WatchedHTTPSHandler(HTTPSHandler):
    def __init__(self, watchdog: Watchdog) -> None:
        super().__init__()
        self.watchdog = watchdog

    def https_open(self, req):
        return self.do_open(
            _WatchedHTTPSConnection, req, context=self._context, watchdog=self.watchdog
        )


@dataclass
class HTTPResponse:
    """Fully-read HTTP response."""

    status: int
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


def read_body(response, deadline: Deadline, max_bytes: int | None = None,
              chunk_size: int = DEFAULT_CHUNK_SIZE) -> bytes:
    """Read a response body in chunks, checking the deadline between them.

    Raises:
        TimeoutError: Deadline expired
        BodyTooLargeError: Body exceeded ``max_bytes``
        ProtocolError: Connection closed before Content-Length bytes arrived
    """
    chunks: list[bytes] = []
    total = 0

    while True:
        deadline.remaining()
        chunk = response.read(chunk_size)
        if not chunk:
            break
        total += len(chunk)
        if max_bytes is not None and total > max_bytes:
            raise BodyTooLargeError(f"response body exceeds {max_bytes} bytes")
        chunks.append(chunk)

    # http.client counts down the declared length; anything left is missing
    missing = getattr(response, "length", None)
    if missing:
        raise ProtocolError(f"response body truncated ({total} bytes read, {missing} missing)")
    return b"".join(chunks)


def send(
    request: Request,
    deadline: Deadline,
    max_bytes: int | None = None,
) -> HTTPResponse:
    """Perform ``request`` and read its body, bounded by ``deadline``.

    The deadline covers connecting, sending, the status line and headers,
    and the body.

    Raises:
        urllib.error.HTTPError: Server answered with an error status
        urllib.error.URLError: Connection could not be established
        TimeoutError: Deadline expired at any point of the exchange
        BodyTooLargeError: Body exceeded ``max_bytes``
        ProtocolError: Response was truncated or malformed
    """
    watchdog = Watchdog(deadline)
    opener = build_opener(_WatchedHTTPHandler(watchdog), _WatchedHTTPSHandler(watchdog))

    watchdog.start()
    try:
        with opener.open(request, timeout=deadline.remaining()) as response:
            body = read_body(response, deadline, max_bytes)
            watchdog.check()
            return HTTPResponse(
                status=response.status,
                body=body,
                headers=dict(response.headers.items()),
                url=response.geturl(),
            )
    except (OSError, http.client.HTTPException) as e:
        # A shut-down socket surfaces as EOF or a reset, not as a timeout
        watchdog.check()
        if isinstance(e, OSError):
            raise
        raise ProtocolError(f"malformed HTTP response: {e!r}") from e
    finally:
        watchdog.cancel()
