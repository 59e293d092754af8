"""
Persisted configuration: the server record (serv.json) and the host
blacklist (black.json), both read once at startup.
"""

import json
import logging
from dataclasses import asdict, dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .core.blacklist import Blacklist
from .core.types import ConfigError

logger = logging.getLogger(__name__)

SERVER_CONFIG_FILE = "serv.json"
BLACKLIST_FILE = "black.json"

# JSON key (lower-cased) -> ServerConfig field
_KEYS = {
    "host": "host",
    "port": "port",
    "ssl": "ssl",
    "sslport": "ssl_port",
    "cert": "cert",
    "key": "key",
    "buffer": "buffer",
    "dialtimeout": "dial_timeout",
    "keepalive": "keep_alive",
    "tlshandshaketimeout": "tls_handshake_timeout",
    "readtimeout": "read_timeout",
    "poolsize": "pool_size",
    "failfast": "fail_fast",
}


@dataclass(frozen=True)
class ServerConfig:
    host: str = ""
    port: int = 8080
    ssl: bool = False
    ssl_port: int = 8443
    cert: str = ""
    key: str = ""
    buffer: int = 32 * 1024
    dial_timeout: float = 30
    keep_alive: float = 30
    tls_handshake_timeout: float = 10
    read_timeout: Optional[float] = None
    pool_size: int = 10
    fail_fast: bool = False

    @property
    def address(self) -> Tuple[str, int]:
        return self.host, self.port

    @property
    def ssl_address(self) -> Tuple[str, int]:
        return self.host, self.ssl_port

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=1)

    def override(self, **changes) -> "ServerConfig":
        """Copy with CLI overrides applied; None means "keep the file's value"."""
        changes = {k: v for k, v in changes.items() if v is not None}
        return validate(replace(self, **changes))


def _read_json(path: Path) -> Any:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        raise ConfigError(f"{path}: file not found")
    except json.JSONDecodeError as e:
        raise ConfigError(f"{path}: malformed JSON: {e}")
    except OSError as e:
        raise ConfigError(f"{path}: {e}")


def _check_type(name: str, value: Any, expected) -> Any:
    # bool is an int subclass; a port of `true` is a mistake
    if expected in (int, float) and isinstance(value, bool):
        raise ConfigError(f"{name}: expected a number, got {value!r}")
    if expected is float and isinstance(value, int):
        return float(value)
    if not isinstance(value, expected):
        raise ConfigError(f"{name}: expected {expected.__name__}, got {value!r}")
    return value


def validate(config: ServerConfig) -> ServerConfig:
    if config.buffer <= 0:
        raise ConfigError(f"Buffer must be a positive byte count, got {config.buffer}")
    if config.pool_size <= 0:
        raise ConfigError(f"PoolSize must be positive, got {config.pool_size}")
    for name, port in (("Port", config.port), ("SslPort", config.ssl_port)):
        if not 0 < port < 65536:
            raise ConfigError(f"{name} out of range: {port}")
    if config.ssl and not (config.cert and config.key):
        raise ConfigError("Ssl is enabled but Cert or Key is missing")
    for name in ("dial_timeout", "tls_handshake_timeout"):
        if getattr(config, name) <= 0:
            raise ConfigError(f"{name} must be positive")
    if config.read_timeout is not None and config.read_timeout <= 0:
        raise ConfigError("ReadTimeout must be positive or null")
    return config


def parse_server_config(data: Any, source: str = "<config>") -> ServerConfig:
    """
    Build a ServerConfig from the decoded serv.json object.

    Keys match case-insensitively, so the capitalised names in serv.json
    (Host, Port, Ssl, SslPort, Cert, Key, Buffer, ...) work as written.
    """
    if not isinstance(data, dict):
        raise ConfigError(f"{source}: expected a JSON object")

    types = {f.name: f.type for f in fields(ServerConfig)}
    values: Dict[str, Any] = {}
    for raw_key, value in data.items():
        name = _KEYS.get(str(raw_key).lower())
        if name is None:
            logger.warning(f"{source}: ignoring unknown key {raw_key!r}")
            continue
        if name == "read_timeout":
            if value is not None:
                value = _check_type(raw_key, value, float)
        else:
            value = _check_type(raw_key, value, types[name])
        values[name] = value

    return validate(ServerConfig(**values))


def load_server_config(path) -> ServerConfig:
    path = Path(path)
    return parse_server_config(_read_json(path), str(path))


def load_blacklist(path) -> Blacklist:
    path = Path(path)
    data = _read_json(path)
    if not isinstance(data, list) or not all(isinstance(h, str) for h in data):
        raise ConfigError(f"{path}: expected a JSON array of host strings")
    return Blacklist(data)


def load_config(conf_dir="conf") -> Tuple[ServerConfig, Blacklist]:
    """
    Load serv.json and black.json from a directory.

    Args:
        conf_dir: Directory holding both files

    Returns:
        Tuple[ServerConfig, Blacklist]: The server record and the sorted blacklist

    Raises:
        ConfigError: Either file is missing or invalid; all problems are
            listed in the message
    """
    conf_dir = Path(conf_dir)
    errors = []
    config = blacklist = None
    try:
        config = load_server_config(conf_dir / SERVER_CONFIG_FILE)
    except ConfigError as e:
        errors.append(str(e))
    try:
        blacklist = load_blacklist(conf_dir / BLACKLIST_FILE)
    except ConfigError as e:
        errors.append(str(e))
    if errors:
        raise ConfigError("; ".join(errors))
    return config, blacklist
