# =============================================================================
# Relay Handler
# =============================================================================

import logging
from typing import Iterator

from flask import Response
from werkzeug.datastructures import Headers

from .blacklist import Blacklist
from .copier import StreamCopier
from .transport import Transport
from .types import InboundRequest, OutboundResponse, StreamError, UpstreamError

logger = logging.getLogger(__name__)

BAD_REQUEST_STATUS = 400
BLOCKED_STATUS = 418
BAD_GATEWAY_STATUS = 502

# The serving layer frames the downstream body itself
HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-connection",
    "trailer",
    "transfer-encoding",
    "upgrade",
}


class RelayResponse(Response):
    """Response that adds no headers of its own, not even a Content-Type."""
    default_mimetype = None


class RelayHandler:
    """
    Turns one inbound request into one outbound request and copies the
    upstream answer back: blacklist check, forward, headers, cookies,
    then the body.

    Attributes:
        blacklist (Blacklist): Hosts that get a 418 instead of a relay
        transport (Transport): Shared outbound client
        copier (StreamCopier): Body pump, sized from the config
        fail_fast (bool): Re-raise upstream failures instead of answering 502
    """

    def __init__(self, blacklist: Blacklist, transport: Transport, buffer_size: int,
                 fail_fast: bool = False):
        self.blacklist = blacklist
        self.transport = transport
        self.copier = StreamCopier(buffer_size)
        self.fail_fast = fail_fast

    @classmethod
    def from_config(cls, config, blacklist: Blacklist, transport: Transport) -> "RelayHandler":
        return cls(blacklist, transport, config.buffer, fail_fast=config.fail_fast)

    def log_request(self, request: InboundRequest):
        logger.info(f"{request.remote_addr} {request.protocol}  {request.method}  {request.url}")
        grouped = {}
        for key, value in request.headers:
            grouped.setdefault(key, []).append(value)
        for key, values in grouped.items():
            logger.info(f"{key}:{values}")

    def handle(self, request: InboundRequest) -> Response:
        """
        Answer one inbound request.

        Args:
            request (InboundRequest): The client's request

        Returns:
            Response: 418 for a blacklisted host, 400 for a target that is
            not an absolute URL, 502 for a failed round trip (unless
            fail_fast), otherwise the mirrored upstream response

        Raises:
            UpstreamError: The round trip failed and fail_fast is set
        """
        self.log_request(request)

        if self.blacklist.contains(request.host):
            logger.warning(f"{request.host} in blacklist.")
            return RelayResponse(status=BLOCKED_STATUS)

        # Origin-form targets name no upstream; Host would point back here
        if not request.is_absolute:
            logger.warning(f"{request.url} is not an absolute URL, not relayed.")
            return RelayResponse(status=BAD_REQUEST_STATUS)

        try:
            upstream = self.transport.forward(request)
        except UpstreamError as e:
            logger.error(f"Upstream failed for {request.method} {request.url}: {e.cause}")
            if self.fail_fast:
                raise
            return RelayResponse(status=BAD_GATEWAY_STATUS)

        try:
            response = self.mirror(upstream, request.url)
        except Exception:
            upstream.close()
            raise
        response.call_on_close(upstream.close)
        return response

    def mirror(self, upstream: OutboundResponse, url: str) -> Response:
        # Every header and cookie is attached before the status goes out
        headers = Headers()
        for key, value in upstream.headers:
            lower = key.lower()
            if lower in HOP_BY_HOP_HEADERS or lower == "set-cookie":
                continue
            headers.add(key, value)
        for cookie in upstream.cookies:
            headers.add("Set-Cookie", cookie)

        return RelayResponse(
            self.stream(upstream, url),
            status=upstream.status,
            headers=headers,
            direct_passthrough=True,
        )

    def stream(self, upstream: OutboundResponse, url: str) -> Iterator[bytes]:
        sent = 0
        try:
            for chunk in self.copier.chunks(upstream.body):
                sent += len(chunk)
                yield chunk
        except StreamError as e:
            logger.warning(f"Upstream body of {url} broke off after {sent} bytes: {e}")
