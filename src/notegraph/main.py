#!/usr/bin/env python
"""Main entry point for the notegraph MCP server."""
import argparse
import logging
import os
import sys
from pathlib import Path

from notegraph.config import config
from notegraph.models.db_models import init_db
from notegraph.observability import configure_logging
from notegraph.server.mcp_server import NoteGraphMcpServer


def parse_args(argv=None):
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(description="Notegraph MCP Server")
    parser.add_argument(
        "--database-path",
        help="SQLite database file path",
        type=str,
        default=os.environ.get("NOTEGRAPH_DATABASE_PATH")
    )
    parser.add_argument(
        "--owner",
        help="Owner ID to act for",
        type=str,
        default=os.environ.get("NOTEGRAPH_OWNER_ID")
    )
    parser.add_argument(
        "--log-level",
        help="Logging level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=os.environ.get("NOTEGRAPH_LOG_LEVEL", "INFO")
    )
    return parser.parse_args(argv)


def update_config(args):
    """Update the global config with command line arguments."""
    if args.database_path:
        config.database_path = Path(args.database_path)
    if args.owner:
        config.default_owner_id = args.owner


def main(argv=None):
    """Run the notegraph MCP server."""
    args = parse_args(argv)
    update_config(args)

    log_level = getattr(logging, args.log_level.upper(), logging.INFO)
    try:
        log_dir = configure_logging(log_dir=config.log_dir, level=log_level, console=True)
    except OSError as e:
        # Fall back to basic console logging if file logging fails
        logging.basicConfig(level=log_level)
        logging.getLogger(__name__).warning(f"Failed to configure file logging: {e}")
        log_dir = None

    logger = logging.getLogger(__name__)
    if log_dir:
        logger.info(f"Persistent logging enabled: {log_dir}")

    if not config.default_owner_id:
        logger.error("No owner configured; pass --owner or set NOTEGRAPH_OWNER_ID")
        sys.exit(2)

    try:
        logger.info(f"Using SQLite database: {config.get_db_url()}")
        engine = init_db()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        sys.exit(1)

    try:
        logger.info("Starting notegraph MCP server")
        server = NoteGraphMcpServer(engine=engine, owner_id=config.default_owner_id)
        server.run()
    except Exception as e:
        logger.error(f"Error running server: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
