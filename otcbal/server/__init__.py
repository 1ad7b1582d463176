"""
Entry point for the dev ledger server.
"""

import logging

import uvicorn

from otcbal.common.config import Config

from .core import LedgerServer


def start_server(config: Config | None = None, **overrides) -> None:
    """Start the dev ledger server."""
    if config is None:
        config = Config()
    logging.basicConfig(level=config.LOG_LEVEL)
    server = LedgerServer(config=config, **overrides)
    uvicorn.run(server.app, host=server.server_host, port=server.server_port)
