#!/usr/bin/env python
"""
Payment Intent API Server Runner.

Usage:
    python run_api.py

Or with PM2:
    pm2 start run_api.py --interpreter python

Environment:
    API_HOST / API_PORT                 bind address (default 0.0.0.0:8000)
    DATABASE_URL                        SQL store; in-memory when unset
    <NETWORK>_RPC_URL                   chain endpoints, e.g. ETHEREUM_RPC_URL
    DEPOSIT_ADDRESS_<NETWORK_ID>        e.g. DEPOSIT_ADDRESS_ETHEREUM_MAINNET
"""

import asyncio
import logging
import os
import sys

import uvicorn

from intent_engine.api import create_app
from intent_engine.config import EngineConfig
from intent_engine.database import Database
from intent_engine.deposits import StaticDepositAddressProvider
from intent_engine.registry import get_registry
from intent_engine.repository import SqlIntentStore
from intent_engine.service import build_service

# Setup logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO"),
    format='%(asctime)s | %(levelname)s | %(name)s | %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)

logger = logging.getLogger(__name__)


async def prepare_database(database: Database) -> None:
    await database.create_all()
    await database.dispose()


def build_app():
    config = EngineConfig.from_env()
    registry = get_registry()

    store = None
    if config.database.url:
        database = Database(config.database)
        asyncio.run(prepare_database(database))
        store = SqlIntentStore(database)

    service = build_service(
        config,
        store=store,
        deposits=StaticDepositAddressProvider.from_env(
            n.network_id for n in registry.networks()
        ),
        registry=registry,
    )
    return create_app(service)


def main():
    """Run the payment intent API server."""
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", os.getenv("PORT", "8000")))

    logger.info(f"Starting Payment Intent API on {host}:{port}")

    try:
        uvicorn.run(
            build_app(),
            host=host,
            port=port,
            log_level="info",
            access_log=True,
        )
    except Exception as e:
        logger.error(f"Failed to start API: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
