"""Liveness HTTP endpoint for uptime monitors and platform health checks."""
# Copyright (c) 2026 LN4CY
# This software is licensed under the MIT License. See LICENSE file for details.

import logging
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

logger = logging.getLogger("ttn-bridge.handlers.health")

ALIVE_BODY = b"Alive"


class LivenessRequestHandler(BaseHTTPRequestHandler):
    server_version = "TTNBridge/1.0"

    def _send_alive(self, include_body):
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(ALIVE_BODY)))
        self.end_headers()
        if include_body:
            self.wfile.write(ALIVE_BODY)

    def do_GET(self):
        self._send_alive(include_body=True)

    def do_HEAD(self):
        self._send_alive(include_body=False)

    def log_message(self, fmt, *args):
        logger.debug("%s - %s", self.address_string(), fmt % args)


class LivenessServer:
    """Answers every GET with 200 "Alive" from a background thread."""

    def __init__(self, host, port):
        self.host = host
        self.port = port
        self.httpd = None
        self.thread = None

    @property
    def address(self):
        return self.httpd.server_address if self.httpd else (self.host, self.port)

    def start(self):
        if self.httpd:
            return
        self.httpd = ThreadingHTTPServer((self.host, self.port), LivenessRequestHandler)
        self.httpd.daemon_threads = True
        self.thread = threading.Thread(target=self.httpd.serve_forever, daemon=True, name="LivenessServer")
        self.thread.start()
        logger.info("Liveness endpoint listening on http://%s:%d", *self.address[:2])

    def stop(self):
        httpd, self.httpd = self.httpd, None
        if not httpd:
            return
        try:
            httpd.shutdown()
            httpd.server_close()
        except Exception as e:
            logger.debug("Error stopping liveness server: %s", e)
