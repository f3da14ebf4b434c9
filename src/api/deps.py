"""
FastAPI Dependency Injection

Provides database connections for API endpoints using FastAPI's
dependency injection system.
"""

from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor

from src.db.connection import get_connection_string


def get_db() -> Generator:
    """
    FastAPI dependency for database connections.

    Yields a database connection with RealDictCursor for dict-style row access.
    Automatically commits on success, rolls back on error, and closes connection.

    Usage in endpoints:
        @router.get("/items")
        def list_items(db = Depends(get_db)):
            storage = EvidenceCacheStorage(db)
            return storage.list_for_story("story-1")
    """
    conn = psycopg2.connect(
        get_connection_string(),
        cursor_factory=RealDictCursor
    )
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
