# =============================================================================
# Core Types & Errors
# =============================================================================

from dataclasses import dataclass, field
from typing import BinaryIO, List, Tuple
from urllib.parse import urlsplit


class RelayError(Exception):
    """Base class for every error raised by blockrelay."""


class ConfigError(RelayError):
    """Configuration file is missing, malformed or invalid."""


class UpstreamError(RelayError):
    """
    The outbound round trip could not be completed.

    Attributes:
        url (str): The target URL of the failed request
        cause (Exception): The underlying transport exception
    """

    def __init__(self, url: str, cause: Exception):
        super().__init__(f"{url}: {cause}")
        self.url = url
        self.cause = cause


class StreamError(RelayError):
    """Reading the upstream body failed part way through."""


@dataclass
class InboundRequest:
    method: str
    url: str
    protocol: str
    headers: List[Tuple[str, str]]
    remote_addr: str
    host: str
    body: bytes = b""

    def header_values(self, name: str) -> List[str]:
        name = name.lower()
        return [v for k, v in self.headers if k.lower() == name]

    @property
    def is_absolute(self) -> bool:
        """True when the target names its own scheme and authority."""
        parts = urlsplit(self.url)
        return parts.scheme in ("http", "https") and bool(parts.netloc)


@dataclass
class OutboundResponse:
    status_code: int
    headers: List[Tuple[str, str]]
    body: BinaryIO
    reason: str = ""
    cookies: List[str] = field(default_factory=list)

    def close(self) -> None:
        """Release the body stream and, if it has one, its pooled connection."""
        for name in ("close", "release_conn"):
            fn = getattr(self.body, name, None)
            if fn is not None:
                fn()

    @property
    def status(self) -> str:
        if self.reason:
            return f"{self.status_code} {self.reason}"
        return str(self.status_code)

