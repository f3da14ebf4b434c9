"""PostgreSQL connection helpers."""

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import psycopg2
from psycopg2.extras import RealDictCursor


def get_connection_string() -> str:
    """Get database connection string from environment."""
    return os.getenv(
        "DATABASE_URL",
        "postgresql://localhost:5432/story_verification"
    )


@contextmanager
def get_connection() -> Generator:
    """Get a database connection context manager.

    Rows come back as dicts (RealDictCursor), which is what
    EvidenceCacheStorage's row mapper expects. Commits on success,
    rolls back on any error.
    """
    conn = psycopg2.connect(
        get_connection_string(),
        cursor_factory=RealDictCursor,
    )
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def init_db() -> None:
    """Initialize database schema."""
    schema_path = Path(__file__).parent / "schema.sql"
    with open(schema_path) as f:
        schema_sql = f.read()

    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(schema_sql)
