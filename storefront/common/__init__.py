"""Shared utilities for storefront services."""

from .config import DEFAULT_APP_NAME, StorefrontSettings, get_settings
from .instrumentation import build_app, instrument_app
from .logging import bind_transaction_id, configure_logging, current_transaction_id
from .database import (
    create_engine,
    create_schema,
    dispose_engines,
    get_session_factory,
    resolve_database_url,
    unit_of_work,
)
from .cache import close_redis_connections, get_redis_client, resolve_redis
from .events import EventBus, EventConsumer, EventProducer

__all__ = [
    "StorefrontSettings",
    "get_settings",
    "build_app",
    "instrument_app",
    "configure_logging",
    "bind_transaction_id",
    "current_transaction_id",
    "DEFAULT_APP_NAME",
    "create_engine",
    "create_schema",
    "dispose_engines",
    "get_session_factory",
    "unit_of_work",
    "resolve_database_url",
    "get_redis_client",
    "resolve_redis",
    "close_redis_connections",
    "EventBus",
    "EventConsumer",
    "EventProducer",
]
