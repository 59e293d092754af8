# =============================================================================
# Outbound Transport
# =============================================================================

import logging
import socket
from http.cookiejar import DefaultCookiePolicy
from typing import Dict, List, Optional, Tuple

import requests
from requests.adapters import HTTPAdapter
from requests.utils import get_environ_proxies
from urllib3.connection import HTTPConnection, HTTPSConnection
from urllib3.connectionpool import HTTPConnectionPool, HTTPSConnectionPool

from .types import InboundRequest, OutboundResponse, UpstreamError

logger = logging.getLogger(__name__)

# Recomputed by requests from the body we hand it
FRAMING_HEADERS = {"content-length", "transfer-encoding"}


def _handshake_pool(tls_handshake_timeout: float):
    """
    Build an HTTPS pool class whose connections bound the TLS handshake
    separately from the TCP connect.
    """

    class HandshakeTimeoutConnection(HTTPSConnection):
        def _new_conn(self):
            sock = super()._new_conn()
            sock.settimeout(tls_handshake_timeout)
            return sock

    class HandshakeTimeoutPool(HTTPSConnectionPool):
        ConnectionCls = HandshakeTimeoutConnection

    return HandshakeTimeoutPool


class RelayAdapter(HTTPAdapter):
    """
    HTTPAdapter with TCP keep-alive and a TLS handshake timeout.

    One urllib3 pool is kept per scheme + host + port, with at most
    pool_size idle connections each.
    """

    def __init__(self, pool_size: int = 10, keep_alive: Optional[float] = 30,
                 tls_handshake_timeout: Optional[float] = 10):
        # init_poolmanager() runs inside HTTPAdapter.__init__
        self.keep_alive = keep_alive
        self.tls_handshake_timeout = tls_handshake_timeout
        super().__init__(pool_connections=pool_size, pool_maxsize=pool_size, max_retries=0)

    def socket_options(self) -> List[Tuple[int, int, int]]:
        options = list(HTTPConnection.default_socket_options)
        if not self.keep_alive:
            return options
        interval = max(1, int(self.keep_alive))
        options.append((socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1))
        if hasattr(socket, "TCP_KEEPIDLE"):
            options.append((socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, interval))
        if hasattr(socket, "TCP_KEEPINTVL"):
            options.append((socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, interval))
        return options

    def init_poolmanager(self, connections, maxsize, block=False, **pool_kwargs):
        pool_kwargs.setdefault("socket_options", self.socket_options())
        super().init_poolmanager(connections, maxsize, block=block, **pool_kwargs)
        if self.tls_handshake_timeout:
            self.poolmanager.pool_classes_by_scheme = {
                "http": HTTPConnectionPool,
                "https": _handshake_pool(self.tls_handshake_timeout),
            }

    def proxy_manager_for(self, proxy, **proxy_kwargs):
        proxy_kwargs.setdefault("socket_options", self.socket_options())
        return super().proxy_manager_for(proxy, **proxy_kwargs)


class Transport:
    """
    Shared, connection-pooling client used for every outbound request.

    Safe to call from many serving threads at once; the urllib3 pools do
    their own locking.

    Attributes:
        dial_timeout (float): Seconds allowed for the TCP connect
        read_timeout (float): Seconds allowed per upstream read, None for no deadline
        session (requests.Session): The pooled session
    """

    def __init__(self, dial_timeout: float = 30, keep_alive: Optional[float] = 30,
                 tls_handshake_timeout: Optional[float] = 10, read_timeout: Optional[float] = None,
                 pool_size: int = 10):
        self.dial_timeout = dial_timeout
        self.read_timeout = read_timeout

        self.session = requests.Session()
        # Proxies come from the environment per request; see forward()
        self.session.trust_env = False
        # Only the client's own headers go upstream
        self.session.headers.clear()
        # Never remember one client's cookies for another
        self.session.cookies.set_policy(DefaultCookiePolicy(allowed_domains=[]))

        adapter = RelayAdapter(pool_size=pool_size, keep_alive=keep_alive,
                               tls_handshake_timeout=tls_handshake_timeout)
        self.session.mount("http://", adapter)
        self.session.mount("https://", adapter)

    @classmethod
    def from_config(cls, config) -> "Transport":
        return cls(
            dial_timeout=config.dial_timeout,
            keep_alive=config.keep_alive,
            tls_handshake_timeout=config.tls_handshake_timeout,
            read_timeout=config.read_timeout,
            pool_size=config.pool_size,
        )

    def outbound_headers(self, request: InboundRequest) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        seen: Dict[str, str] = {}
        for key, value in request.headers:
            lower = key.lower()
            if lower in FRAMING_HEADERS:
                continue
            if lower in seen:
                first = seen[lower]
                sep = "; " if lower == "cookie" else ", "
                headers[first] = f"{headers[first]}{sep}{value}"
            else:
                seen[lower] = key
                headers[key] = value
        return headers

    def forward(self, request: InboundRequest) -> OutboundResponse:
        """
        Perform one round trip and return as soon as headers arrive.

        Args:
            request (InboundRequest): The client's request, passed through as is

        Returns:
            OutboundResponse: Status, headers, cookies and the still-open body

        Raises:
            UpstreamError: The round trip failed (DNS, refused, timeout, TLS)
        """
        try:
            resp = self.session.request(
                request.method,
                request.url,
                headers=self.outbound_headers(request),
                data=request.body or None,
                proxies=get_environ_proxies(request.url),
                stream=True,
                allow_redirects=False,
                timeout=(self.dial_timeout, self.read_timeout),
            )
        except requests.RequestException as e:
            raise UpstreamError(request.url, e) from e

        raw = resp.raw
        logger.debug(f"{request.method} {request.url} -> {resp.status_code}")
        return OutboundResponse(
            status_code=resp.status_code,
            reason=resp.reason or "",
            headers=list(raw.headers.iteritems()),
            cookies=raw.headers.getlist("Set-Cookie"),
            body=raw,
        )

    def close(self):
        self.session.close()
