"""Database layer - engine, base classes, and immutability enforcement."""

from dealreg_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from dealreg_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    session_scope,
)

__all__ = [
    "get_engine",
    "get_session",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
]
