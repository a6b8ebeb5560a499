"""
Production entry point.

Wires the coordinator to PostgreSQL, with deployment settings from Vault,
and serves the API:

    uvicorn --factory api.main:create_production_app
"""

import logging
import os

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI

from api.app import create_app
from clients.postgres_client import PostgresClient
from clients.vault_client import get_app_config, get_database_url
from core.config import MaintenanceConfig
from core.coordinator import MaintenanceCoordinator
from core.stores.postgres import PostgresPropertyAuthority, PostgresStore

logger = logging.getLogger(__name__)


def build_coordinator() -> MaintenanceCoordinator:
    """
    Coordinator over PostgreSQL.

    Settings come from maintenance/app in Vault when VAULT_ADDR is set;
    without Vault (local runs with DATABASE_URL) the config defaults apply.
    """
    postgres = PostgresClient(get_database_url())
    config = MaintenanceConfig(**get_app_config()) if os.getenv("VAULT_ADDR") else MaintenanceConfig()
    logger.info(f"Coordinator configured: base_url={config.app_base_url} tz={config.availability_timezone}")

    return MaintenanceCoordinator(PostgresStore(postgres), PostgresPropertyAuthority(postgres), config)


def create_production_app() -> FastAPI:
    load_dotenv()
    logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
    return create_app(build_coordinator())


if __name__ == "__main__":
    uvicorn.run(
        create_production_app,
        factory=True,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "8000")),
    )
