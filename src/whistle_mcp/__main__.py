"""Entry point for the whistle-mcp server."""

import argparse
import logging
import os

from whistle_mcp.oplog import setup_logging
from whistle_mcp.server import create_server

logger = logging.getLogger(__name__)


def main() -> None:
    """Run the whistle MCP server over stdio."""
    parser = argparse.ArgumentParser(description="whistle-mcp server")
    parser.add_argument(
        "--config",
        help="YAML config file (overrides WHISTLE_CONFIG)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Operational log level (default: INFO)",
    )
    args = parser.parse_args()

    setup_logging("whistle-mcp", level=getattr(logging, args.log_level))
    if args.config:
        os.environ["WHISTLE_CONFIG"] = args.config
    logger.info("Starting whistle-mcp server")
    server = create_server()
    server.run()


if __name__ == "__main__":
    main()
