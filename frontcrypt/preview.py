from __future__ import annotations

import sys
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Tuple

from .reader import Buffer
from .runtime import InterceptionRuntime


class _PreviewHandler(BaseHTTPRequestHandler):
    server: "PreviewServer"

    def _respond(self, with_body: bool) -> None:
        if not self.path.startswith("/"):
            self.send_error(400, "Only origin-form request targets are supported")
            return
        resp = self.server.runtime.fetch(self.server.runtime.origin + self.path)
        if resp is None:
            self.send_error(404, "Not found in archive")
            return
        self.send_response(resp.status)
        for name, value in resp.headers.items():
            self.send_header(name, value)
        self.send_header("Content-Length", str(len(resp.body)))
        self.end_headers()
        if with_body:
            self.wfile.write(resp.body)

    def do_GET(self):
        self._respond(with_body=True)

    def do_HEAD(self):
        self._respond(with_body=False)

    def log_message(self, format, *args):
        if not self.server.quiet:
            print(f"  {self.address_string()} {format % args}", file=sys.stderr)


class PreviewServer(ThreadingHTTPServer):
    """HTTP server whose every GET is answered by one ``InterceptionRuntime``."""

    daemon_threads = True

    def __init__(self, address: Tuple[str, int], *, quiet: bool = False):
        super().__init__(address, _PreviewHandler)
        self.quiet = quiet
        host = address[0] or "127.0.0.1"
        if ":" in host:
            host = f"[{host}]"
        self.runtime = InterceptionRuntime(f"http://{host}:{self.server_port}")


def make_preview_server(archive: Buffer, host: str = "127.0.0.1", port: int = 8000, *, quiet: bool = False) -> PreviewServer:
    """Bind a preview server and load ``archive`` (decrypted bytes) into its runtime."""
    server = PreviewServer((host, port), quiet=quiet)
    try:
        server.runtime.load(archive)
    except Exception:
        server.server_close()
        raise
    return server
