"""
engagevote/node.py

Standalone ledger node serving the REST API.
Run with: engagevote-node --port 24680
"""

import logging
import sys

import click
import trio

from .api import LedgerAPI
from .config import DEFAULT_API_HOST, DEFAULT_API_PORT, LedgerConfig
from .protocol.ledger import EngagementLedger

logger = logging.getLogger("engagevote.node")

LOG_FORMAT = '%(asctime)s [%(name)s] %(levelname)s: %(message)s'


def build_api(host: str, port: int, config: LedgerConfig) -> LedgerAPI:
    """Create a fresh ledger and wrap it in an API server."""
    ledger = EngagementLedger(config=config)
    return LedgerAPI(ledger, host=host, port=port)


@click.command()
@click.option('--host', default=DEFAULT_API_HOST, show_default=True,
              help='Host to bind the REST API to')
@click.option('--port', default=DEFAULT_API_PORT, show_default=True, type=int,
              help='Port to serve the REST API on')
@click.option('--log-level', default='INFO', show_default=True,
              type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False),
              help='Logging level')
def main(host: str, port: int, log_level: str):
    """Run an in-memory engagement voting ledger over HTTP."""
    logging.basicConfig(level=log_level.upper(), format=LOG_FORMAT)

    try:
        config = LedgerConfig.from_env()
    except ValueError as e:
        raise click.BadParameter(str(e), param_hint="environment")

    logger.info(f"Ledger config: {config.to_dict()}")
    api = build_api(host, port, config)

    try:
        trio.run(api.start)
    except KeyboardInterrupt:
        logger.info("Shutting down")
        sys.exit(0)


if __name__ == "__main__":
    main()
