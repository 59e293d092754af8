"""
Shared fixtures: a fake transport for handler tests and real upstream
HTTP servers (werkzeug, and a keep-alive http.server origin, each in a
thread) for transport and end-to-end tests.
"""

import io
import socket
import threading
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

import pytest
from flask import Flask, Response, request
from flask.testing import FlaskClient
from werkzeug.serving import make_server

from blockrelay.core.blacklist import Blacklist
from blockrelay.core.handler import RelayHandler
from blockrelay.core.types import OutboundResponse
from blockrelay.server import create_app

PROXY_ENV = ["HTTP_PROXY", "HTTPS_PROXY", "ALL_PROXY", "NO_PROXY",
             "http_proxy", "https_proxy", "all_proxy", "no_proxy"]


@pytest.fixture(autouse=True)
def no_env_proxies(monkeypatch):
    """Keep the developer's proxy settings out of the tests."""
    for name in PROXY_ENV:
        monkeypatch.delenv(name, raising=False)


class FakeTransport:
    """Stands in for Transport; records every forwarded request."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []
        self.closed = False

    def forward(self, request):
        self.calls.append(request)
        if self.error is not None:
            raise self.error
        return self.response

    def close(self):
        self.closed = True


def upstream_response(status=200, headers=None, cookies=None, body=b"", reason="OK"):
    return OutboundResponse(
        status_code=status,
        reason=reason,
        headers=list(headers or []),
        cookies=list(cookies or []),
        body=io.BytesIO(body),
    )


class ProxyClient(FlaskClient):
    """Test client that sends absolute-form targets, as a proxy client does."""

    def open(self, *args, **kwargs):
        if args and isinstance(args[0], str) and "://" in args[0]:
            overrides = kwargs.setdefault("environ_overrides", {})
            overrides.setdefault("REQUEST_URI", args[0])
        return super().open(*args, **kwargs)


@pytest.fixture
def make_client():
    def _make(blacklist=(), transport=None, buffer_size=4096, fail_fast=False, testing=True):
        handler = RelayHandler(Blacklist(blacklist), transport or FakeTransport(),
                               buffer_size, fail_fast=fail_fast)
        app = create_app(handler)
        app.testing = testing
        app.test_client_class = ProxyClient
        return app.test_client()
    return _make


def closed_port():
    """A local port nobody listens on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


def origin_app():
    app = Flask("origin")
    app.config["hits"] = 0

    @app.before_request
    def count():
        app.config["hits"] += 1

    @app.route("/hello")
    def hello():
        resp = Response(b"hello world", status=200, content_type="text/plain")
        resp.headers.add("X-A", "1")
        resp.headers.add("X-A", "2")
        resp.headers.add("Set-Cookie", "sid=abc")
        resp.headers.add("Set-Cookie", "theme=dark; Path=/; HttpOnly")
        return resp

    @app.route("/status/<int:code>")
    def status(code):
        return Response(b"", status=code)

    @app.route("/bytes/<int:n>")
    def some_bytes(n):
        return Response(bytes(i % 251 for i in range(n)), content_type="application/octet-stream")

    @app.route("/echo", methods=["POST", "PUT"])
    def echo():
        resp = Response(request.get_data(), status=201)
        resp.headers["X-Seen-Method"] = request.method
        resp.headers["X-Seen-Test"] = request.headers.get("X-Test", "")
        resp.headers["X-Seen-Cookie"] = request.headers.get("Cookie", "")
        return resp

    @app.route("/redirect")
    def redirect():
        return Response(b"", status=302, headers={"Location": "/hello"})

    return app


@pytest.fixture
def origin():
    """A live upstream server; yields (base_url, app)."""
    app = origin_app()
    server = make_server("127.0.0.1", 0, app, threaded=True)
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    port = server.server_address[1]
    try:
        yield f"http://127.0.0.1:{port}", app
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=1)


class KeepAliveHandler(BaseHTTPRequestHandler):
    """HTTP/1.1 origin that keeps connections open and notes client ports."""
    protocol_version = "HTTP/1.1"

    def do_GET(self):
        self.server.client_ports.append(self.client_address[1])
        body = b"kept"
        self.send_response(200)
        self.send_header("Content-Type", "text/plain")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format, *args):
        pass


@pytest.fixture
def keep_alive_origin():
    """A live HTTP/1.1 upstream; yields (base_url, client_ports)."""
    server = ThreadingHTTPServer(("127.0.0.1", 0), KeepAliveHandler)
    server.daemon_threads = True
    server.client_ports = []
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    port = server.server_address[1]
    try:
        yield f"http://127.0.0.1:{port}", server.client_ports
    finally:
        server.shutdown()
        server.server_close()
        thread.join(timeout=1)
