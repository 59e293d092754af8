"""
blockrelay
Description: A forwarding HTTP/HTTPS proxy that refuses a static blacklist
             of hosts and relays everything else to its origin through one
             shared, connection-pooled transport.
"""

from .config import ServerConfig, load_config
from .core.blacklist import Blacklist
from .core.handler import RelayHandler
from .core.transport import Transport
from .server import RelayServer, create_app

__version__ = "0.1.0"

__all__ = [
    "Blacklist",
    "RelayHandler",
    "RelayServer",
    "ServerConfig",
    "Transport",
    "create_app",
    "load_config",
]
