import argparse
import json
import logging
import sys

from .config import load_config
from .core.types import ConfigError
from .log import setup_logging
from .server import RelayServer

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Forwarding HTTP/HTTPS relay with a host blacklist")
    parser.add_argument("-c", "--conf-dir", default="conf", help="Directory holding serv.json and black.json")
    parser.add_argument("-H", "--host", default=None, help="Override the listen host")
    parser.add_argument("-p", "--port", type=int, default=None, help="Override the plaintext port")
    parser.add_argument("--fail-fast", action="store_true", default=None,
                        help="Abort a request on upstream failure instead of answering 502")
    parser.add_argument("--log-file", default=None, help="Also log to this rotating file")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="Log level")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_level, args.log_file)

    try:
        config, blacklist = load_config(args.conf_dir)
        config = config.override(host=args.host, port=args.port, fail_fast=args.fail_fast)
    except ConfigError as e:
        logger.error(f"Failed to load configuration: {e}")
        return 1

    logger.info(f"Server Config:\n{config.to_json()}")
    logger.info(f"Black List:\n{json.dumps(blacklist.hosts, indent=1)}")

    server = RelayServer(config, blacklist)
    try:
        server.bind()
    except (OSError, ConfigError) as e:
        logger.error(f"Failed to start listeners: {e}")
        server.transport.close()
        return 1

    server.run()
    return 0


if __name__ == "__main__":
    sys.exit(main())
