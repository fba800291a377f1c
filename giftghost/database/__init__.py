from .base import Base, JSONVariant
from .engine import dialect_insert, engine, get_engine, is_postgres
from .session import SessionLocal, get_db

__all__ = [
    "Base",
    "JSONVariant",
    "engine",
    "get_engine",
    "is_postgres",
    "dialect_insert",
    "SessionLocal",
    "get_db",
]
