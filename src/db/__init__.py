"""Database module for story verification."""

from .connection import get_connection, get_connection_string, init_db

__all__ = [
    "get_connection",
    "get_connection_string",
    "init_db",
]
