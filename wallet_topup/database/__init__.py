"""Database models, connection management and the SQL transaction store."""
from .connection import close_db, create_session_factory, get_engine, get_session_factory, init_db
from .repository import SqlTransactionStore, SqlUnitOfWork

__all__ = [
    "SqlTransactionStore",
    "SqlUnitOfWork",
    "close_db",
    "create_session_factory",
    "get_engine",
    "get_session_factory",
    "init_db",
]
