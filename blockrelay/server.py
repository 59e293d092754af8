"""
blockrelay Server

The Flask application that feeds every inbound request to the relay
handler, and the listeners (plain HTTP and optional TLS) that serve it,
one thread per connection.
"""

import logging
import signal
import ssl
import threading
from typing import List, Optional

from flask import Flask, request
from werkzeug.serving import BaseWSGIServer, make_server

from .config import ServerConfig
from .core.blacklist import Blacklist
from .core.handler import RelayHandler
from .core.transport import Transport
from .core.types import ConfigError, InboundRequest

logger = logging.getLogger(__name__)

# CONNECT tunnels are not relayed
RELAY_METHODS = ['GET', 'HEAD', 'POST', 'PUT', 'DELETE', 'PATCH', 'OPTIONS', 'TRACE']


def inbound_request(req) -> InboundRequest:
    """
    Snapshot a Flask request as an InboundRequest.

    The URL is the request target exactly as the client sent it: an
    absolute URL from a proxy client, or a bare path from a client that
    talked to the relay directly (which the handler refuses).
    """
    environ = req.environ
    host = environ.get('HTTP_HOST', '')
    url = environ.get('REQUEST_URI') or environ.get('RAW_URI') or req.full_path.rstrip('?')

    remote_addr = req.remote_addr or ''
    if environ.get('REMOTE_PORT'):
        remote_addr = f"{remote_addr}:{environ['REMOTE_PORT']}"

    return InboundRequest(
        method=req.method,
        url=url,
        protocol=environ.get('SERVER_PROTOCOL', 'HTTP/1.1'),
        headers=list(req.headers.items()),
        remote_addr=remote_addr,
        host=host,
        body=req.get_data(cache=False),
    )


def create_app(handler: RelayHandler) -> Flask:
    # No static route: every path belongs to the relay
    app = Flask(__name__, static_folder=None)
    app.url_map.merge_slashes = False
    app.url_map.strict_slashes = False
    app.extensions['relay_handler'] = handler

    @app.route('/', defaults={'path': ''}, methods=RELAY_METHODS)
    @app.route('/<path:path>', methods=RELAY_METHODS)
    def relay(path):
        return handler.handle(inbound_request(request))

    return app


def ssl_context(cert: str, key: str) -> ssl.SSLContext:
    context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
    try:
        context.load_cert_chain(cert, key)
    except (OSError, ssl.SSLError) as e:
        raise ConfigError(f"Cannot load certificate {cert} / key {key}: {e}")
    return context


class RelayServer:
    """
    Runs the relay on one plaintext listener and, when Ssl is set, a
    second TLS listener sharing the same handler and transport.

    Attributes:
        config (ServerConfig): Effective server configuration
        blacklist (Blacklist): Hosts refused with a 418
        transport (Transport): Outbound client shared by both listeners
        app (Flask): The WSGI application
        servers (List[BaseWSGIServer]): Bound listeners, plaintext first
    """

    def __init__(self, config: ServerConfig, blacklist: Blacklist,
                 transport: Optional[Transport] = None):
        self.config = config
        self.blacklist = blacklist
        self.transport = transport or Transport.from_config(config)
        self.handler = RelayHandler.from_config(config, blacklist, self.transport)
        self.app = create_app(self.handler)
        self.servers: List[BaseWSGIServer] = []
        self.threads: List[threading.Thread] = []
        self.stopped = threading.Event()

    def bind(self):
        """Open the listening sockets; raises OSError or ConfigError on failure."""
        host = self.config.host or '0.0.0.0'
        self.servers.append(make_server(host, self.config.port, self.app, threaded=True))
        if self.config.ssl:
            context = ssl_context(self.config.cert, self.config.key)
            self.servers.append(make_server(host, self.config.ssl_port, self.app,
                                            threaded=True, ssl_context=context))

    def start(self):
        if not self.servers:
            self.bind()
        for server in self.servers:
            kind = 'ssl serving' if server.ssl_context else 'serving'
            host, port = server.server_address[:2]
            logger.info(f"Start {kind} on {host}:{port}")
            thread = threading.Thread(target=server.serve_forever, daemon=True)
            thread.start()
            self.threads.append(thread)

    def signal_handler(self, sig, frame):
        logger.info(f"Received signal {sig}, shutting down...")
        self.stopped.set()

    def run(self):
        """Serve until SIGINT or SIGTERM."""
        signal.signal(signal.SIGINT, self.signal_handler)
        signal.signal(signal.SIGTERM, self.signal_handler)
        self.start()
        try:
            while not self.stopped.wait(0.5):
                pass
        finally:
            self.stop()

    def stop(self):
        self.stopped.set()
        for server in self.servers:
            # shutdown() waits on serve_forever(), which only runs once started
            if self.threads:
                server.shutdown()
            server.server_close()
        for thread in self.threads:
            thread.join(timeout=1)
        self.transport.close()
        logger.info("Relay stopped")
