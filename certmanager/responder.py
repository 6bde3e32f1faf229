"""
HTTP-01 challenge responder.

ChallengeResponder is the in-memory token → key-authorization map the
renewal orchestrator writes while an authorization is in flight.
ChallengeHttpServer serves it at /.well-known/acme-challenge/<token> and
answers 404 for everything else.

The server must be reachable on the domain's plain HTTP port (80) without a
proxy in front, or the CA's validation request will not reach it.
"""
from __future__ import annotations

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

logger = logging.getLogger(__name__)

CHALLENGE_PATH_PREFIX = "/.well-known/acme-challenge/"


class ChallengeResponder:
    """Thread-safe map of pending HTTP-01 challenge responses."""

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.Lock()

    def put(self, token: str, key_authorization: str) -> None:
        with self._lock:
            self._entries[token] = key_authorization
        logger.info("Serving HTTP-01 challenge token %s", token)

    def remove(self, token: str) -> None:
        with self._lock:
            removed = self._entries.pop(token, None)
        if removed is not None:
            logger.debug("Removed HTTP-01 challenge token %s", token)

    def lookup(self, token: str) -> Optional[str]:
        with self._lock:
            return self._entries.get(token)

    def tokens(self) -> list[str]:
        with self._lock:
            return list(self._entries)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class _ChallengeHandler(BaseHTTPRequestHandler):
    """Serves only the ACME HTTP-01 challenge path; 404 for everything else."""

    server: "ChallengeHttpServer"

    def do_GET(self) -> None:
        path = self.path.split("?", 1)[0]
        body: Optional[str] = None
        if path.startswith(CHALLENGE_PATH_PREFIX):
            token = path[len(CHALLENGE_PATH_PREFIX):]
            if token and "/" not in token:
                body = self.server.responder.lookup(token)

        if body is None:
            self.send_response(404)
            self.send_header("Content-Length", "0")
            self.end_headers()
            return

        data = body.encode()
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(data)))
        self.end_headers()
        self.wfile.write(data)

    def log_message(self, fmt: str, *args: object) -> None:
        logger.debug("%s - %s", self.address_string(), fmt % args)


class ChallengeHttpServer(ThreadingHTTPServer):
    """
    Threaded HTTP server exposing a ChallengeResponder.

    Usage:
        srv = ChallengeHttpServer(responder, port=80)
        srv.start()
        ...
        srv.stop()
    """

    daemon_threads = True

    def __init__(self, responder: ChallengeResponder, host: str = "0.0.0.0", port: int = 80) -> None:
        super().__init__((host, port), _ChallengeHandler)
        self.responder = responder
        self._thread: Optional[threading.Thread] = None

    @property
    def port(self) -> int:
        return self.server_address[1]

    def start(self) -> None:
        """Serve requests from a background thread."""
        if self._thread is not None:
            raise RuntimeError("Challenge server is already running")
        self._thread = threading.Thread(target=self.serve_forever, name="acme-challenge-http", daemon=True)
        self._thread.start()
        logger.info("HTTP-01 challenge server listening on port %d", self.port)

    def stop(self) -> None:
        """Shut down the server and release the socket."""
        if self._thread is not None:
            self.shutdown()
            self._thread.join(timeout=5)
            self._thread = None
        self.server_close()

    def __enter__(self) -> "ChallengeHttpServer":
        self.start()
        return self

    def __exit__(self, *_: object) -> None:
        self.stop()
