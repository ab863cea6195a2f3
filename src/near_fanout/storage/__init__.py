"""Storage layer - Subscriber schema, repository and typed store."""

from near_fanout.storage.database import (
    DatabaseManager,
    create_async_db_engine,
    create_async_session_factory,
    init_async_db,
)
from near_fanout.storage.models import Base, SubscriberModel
from near_fanout.storage.repos import (
    SubscriberDTO,
    SubscriberRepository,
    SubscriberStore,
    SubscriberStoreError,
)

__all__ = [
    "Base",
    "DatabaseManager",
    "SubscriberDTO",
    "SubscriberModel",
    "SubscriberRepository",
    "SubscriberStore",
    "SubscriberStoreError",
    "create_async_db_engine",
    "create_async_session_factory",
    "init_async_db",
]
