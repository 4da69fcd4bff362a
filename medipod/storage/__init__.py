from medipod.storage.database import create_db_engine, create_session_factory, init_db
from medipod.storage.session_store import (
    InMemorySessionStore,
    RedisSessionStore,
    SessionStore,
    build_session_store,
)

__all__ = [
    "SessionStore",
    "InMemorySessionStore",
    "RedisSessionStore",
    "build_session_store",
    "create_db_engine",
    "create_session_factory",
    "init_db",
]
