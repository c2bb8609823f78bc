"""Shared fixtures: OpenPGP test keys and a local HTTP stub server."""

from __future__ import annotations

import socket
import threading
import time
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from pathlib import Path

import pgpy
import pytest
from pgpy.constants import (
    CompressionAlgorithm,
    HashAlgorithm,
    KeyFlags,
    PubKeyAlgorithm,
    SymmetricKeyAlgorithm,
)

ARTIFACT = b"hello\n"
ARTIFACT_SHA256 = "5891b5b522d5df086d0ff0b110fbd9d21bb4fc7163af34d08286a2e846f6be03"


def make_key(name: str, email: str) -> pgpy.PGPKey:
    """Generate an unprotected RSA signing key."""
    key = pgpy.PGPKey.new(PubKeyAlgorithm.RSAEncryptOrSign, 2048)
    uid = pgpy.PGPUID.new(name, email=email)
    key.add_uid(
        uid,
        usage={KeyFlags.Sign, KeyFlags.Certify},
        hashes=[HashAlgorithm.SHA256],
        ciphers=[SymmetricKeyAlgorithm.AES256],
        compression=[CompressionAlgorithm.Uncompressed],
    )
    return key


@pytest.fixture(scope="session")
def signing_key() -> pgpy.PGPKey:
    return make_key("Release Signer", "release@example.com")


@pytest.fixture(scope="session")
def other_key() -> pgpy.PGPKey:
    return make_key("Someone Else", "else@example.com")


@pytest.fixture(scope="session")
def artifact_signature(signing_key):
    return signing_key.sign(ARTIFACT)


@dataclass
class KeyFiles:
    """Signature and public key written both armored and binary."""

    sig_bin: Path
    sig_asc: Path
    pub_bin: Path
    pub_asc: Path


@pytest.fixture
def key_files(tmp_path: Path, signing_key, artifact_signature) -> KeyFiles:
    files = KeyFiles(
        sig_bin=tmp_path / "hello.txt.sig",
        sig_asc=tmp_path / "hello.txt.asc",
        pub_bin=tmp_path / "release.gpg",
        pub_asc=tmp_path / "release.asc",
    )
    files.sig_bin.write_bytes(bytes(artifact_signature))
    files.sig_asc.write_text(str(artifact_signature))
    files.pub_bin.write_bytes(bytes(signing_key.pubkey))
    files.pub_asc.write_text(str(signing_key.pubkey))
    return files


@dataclass
class Route:
    status: int = 200
    body: bytes = b""
    delay: float = 0.0
    content_type: str = "application/octet-stream"


@dataclass
class RecordedRequest:
    method: str
    path: str
    body: bytes
    headers: dict[str, str] = field(default_factory=dict)


class _StubHandler(BaseHTTPRequestHandler):
    def do_GET(self):
        self.server.dispatch(self, "GET")

    def do_POST(self):
        self.server.dispatch(self, "POST")

    def log_message(self, format, *args):
        pass


class StubServer(ThreadingHTTPServer):
    """Serves canned responses and records every request it receives."""

    daemon_threads = True

    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), _StubHandler)
        self.routes: dict[tuple[str, str], Route] = {}
        self.requests: list[RecordedRequest] = []

    @property
    def url(self) -> str:
        host, port = self.server_address[:2]
        return f"http://{host}:{port}"

    def route(self, method: str, path: str, **kwargs) -> str:
        self.routes[(method, path)] = Route(**kwargs)
        return self.url + path

    def requests_for(self, method: str) -> list[RecordedRequest]:
        return [r for r in self.requests if r.method == method]

    def dispatch(self, handler: BaseHTTPRequestHandler, method: str) -> None:
        path = handler.path.split("?", 1)[0]
        length = int(handler.headers.get("Content-Length") or 0)
        body = handler.rfile.read(length) if length else b""
        self.requests.append(RecordedRequest(method, path, body, dict(handler.headers.items())))

        route = self.routes.get((method, path), Route(status=404, body=b"not found"))
        if route.delay:
            time.sleep(route.delay)

        try:
            handler.send_response(route.status)
            handler.send_header("Content-Type", route.content_type)
            handler.send_header("Content-Length", str(len(route.body)))
            handler.end_headers()
            handler.wfile.write(route.body)
        except (BrokenPipeError, ConnectionResetError):
            # Client gave up (timeout tests)
            pass


@pytest.fixture
def stub_server():
    server = StubServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    yield server
    server.shutdown()
    server.server_close()


@pytest.fixture
def trickle_server():
    """Server that sends a status line, then one header byte at a time, forever."""
    listener = socket.create_server(("127.0.0.1", 0))
    listener.settimeout(0.2)
    stop = threading.Event()

    def serve():
        while not stop.is_set():
            try:
                conn, _ = listener.accept()
            except OSError:
                continue
            with conn:
                try:
                    conn.recv(65536)
                    conn.sendall(b"HTTP/1.0 200 OK\r\nX-Slow: ")
                    while not stop.is_set():
                        conn.sendall(b"a")
                        time.sleep(0.05)
                except OSError:
                    # Client hung up
                    pass

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    host, port = listener.getsockname()[:2]
    yield f"http://{host}:{port}"
    stop.set()
    thread.join(timeout=5)
    listener.close()


@pytest.fixture
def artifact() -> bytes:
    return ARTIFACT


@pytest.fixture
def artifact_sha256() -> str:
    return ARTIFACT_SHA256
