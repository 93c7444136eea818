"""Ordered start-up of the registry: settings, logging, store, registry, app."""

from dataclasses import dataclass
from fastapi import FastAPI
from loguru import logger
from typing import Optional

from service_discovery.config import Settings, load_settings, setup_logging
from service_discovery.db import ServiceStore
from service_discovery.main import create_app
from service_discovery.registry import ServiceRegistry


@dataclass
class Application:
    settings: Settings
    store: ServiceStore
    registry: ServiceRegistry
    app: FastAPI


def bootstrap(settings: Optional[Settings] = None, configure_logging: bool = True) -> Application:
    """Wire up every registry dependency in order and return them"""
    settings = settings or load_settings()
    if configure_logging:
        setup_logging(settings.log_level, serialize=settings.server_mode == "release")

    store = ServiceStore()
    registry = ServiceRegistry(store)
    app = create_app(registry, settings)
    return Application(settings=settings, store=store, registry=registry, app=app)


def main() -> None:
    import uvicorn
    from dotenv import load_dotenv

    load_dotenv()
    application = bootstrap()
    settings = application.settings
    logger.info(
        f"Starting service discovery on {settings.api_host}:{settings.port} "
        f"(log_level={settings.log_level}, mode={settings.server_mode})"
    )
    uvicorn.run(
        application.app,
        host=settings.api_host,
        port=settings.port,
        log_level="warning" if settings.log_level == "warn" else settings.log_level,
    )
