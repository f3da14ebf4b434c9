"""Storage layer for the story evidence cache.

Follows the existing pattern: service class takes a db_connection, uses
cursors for queries, and relies on the caller to manage commits.

Entries are write-once per (story_id, commit_sha). A second save for the
same pair is a no-op, so concurrent evaluations of one commit can both try
to save without coordinating.
"""

import json
import logging
from typing import List, Optional, Union

from psycopg2.extras import RealDictCursor

from src.evidence_cache.evidence import get_cache_key
from src.evidence_cache.models import CacheData, CacheEntry

logger = logging.getLogger(__name__)

_ENTRY_COLUMNS = """
    id, branch_name, story_id, commit_sha, cache_data, run_id,
    created_at, updated_at
"""


class EvidenceCacheStorage:
    """CRUD operations for story_evidence_cache rows.

    Requires a psycopg2 connection with RealDictCursor (the row mapper
    accesses by key). The get_db() dependency provides this automatically.
    """

    def __init__(self, db_connection):
        self.db = db_connection

    def _cursor(self):
        """Get a cursor with RealDictCursor to ensure dict-style row access."""
        return self.db.cursor(cursor_factory=RealDictCursor)

    # ========================================================================
    # Lookup
    # ========================================================================

    def get(
        self,
        story_id: str,
        commit_sha: Union[str, List[str]],
    ) -> Optional[CacheEntry]:
        """Get the cache entry for a commit.

        Args:
            story_id: Story the entry belongs to
            commit_sha: One SHA, or candidate SHAs ordered newest-first
                (git log order). The list form returns the entry for the
                first SHA in the list that has one.

        Returns:
            CacheEntry or None
        """
        if isinstance(commit_sha, str):
            query = f"""
                SELECT {_ENTRY_COLUMNS}
                FROM story_evidence_cache
                WHERE story_id = %s AND commit_sha = %s
                LIMIT 1
            """
            params = (story_id, commit_sha)
        else:
            shas = list(commit_sha)
            if not shas:
                return None
            query = f"""
                SELECT {_ENTRY_COLUMNS}
                FROM story_evidence_cache
                WHERE story_id = %s AND commit_sha = ANY(%s)
                ORDER BY array_position(%s::text[], commit_sha)
                LIMIT 1
            """
            params = (story_id, shas, shas)

        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
            if not row:
                return None
            return self._row_to_entry(row)

    def list_for_story(self, story_id: str, limit: int = 50) -> List[CacheEntry]:
        """List cache entries for a story, newest first."""
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT {_ENTRY_COLUMNS}
                FROM story_evidence_cache
                WHERE story_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (story_id, limit),
            )
            return [self._row_to_entry(row) for row in cur.fetchall()]

    # ========================================================================
    # Writes
    # ========================================================================

    def save(
        self,
        branch_name: str,
        story_id: str,
        commit_sha: str,
        cache_data: CacheData,
        run_id: Optional[str] = None,
    ) -> bool:
        """Insert a cache entry unless one already exists for the commit.

        Never overwrites. Returns True if this call inserted the row, False
        if another writer got there first (not an error).
        """
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO story_evidence_cache
                    (branch_name, story_id, commit_sha, cache_data, run_id)
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (story_id, commit_sha) DO NOTHING
                RETURNING id
                """,
                (
                    branch_name,
                    story_id,
                    commit_sha,
                    json.dumps(cache_data.to_storage()),
                    run_id,
                ),
            )
            inserted = cur.fetchone() is not None

        if inserted:
            logger.info(
                "Saved evidence cache %s (%d steps)",
                get_cache_key(story_id, commit_sha), len(cache_data.steps),
            )
        else:
            logger.debug(
                "Evidence cache %s already exists, keeping first entry",
                get_cache_key(story_id, commit_sha),
            )
        return inserted

    def invalidate(self, story_id: str, commit_sha: str) -> int:
        """Delete the entry for one commit. Returns rows deleted."""
        with self._cursor() as cur:
            cur.execute(
                """
                DELETE FROM story_evidence_cache
                WHERE story_id = %s AND commit_sha = %s
                """,
                (story_id, commit_sha),
            )
            deleted = cur.rowcount

        logger.info(
            "Invalidated evidence cache %s (%d rows)",
            get_cache_key(story_id, commit_sha), deleted,
        )
        return deleted

    def invalidate_all_for_story(self, story_id: str) -> int:
        """Delete every entry for a story, across branches and commits.

        Used when the story text itself changes: all cached evidence is
        stale regardless of file hashes.
        """
        with self._cursor() as cur:
            cur.execute(
                "DELETE FROM story_evidence_cache WHERE story_id = %s",
                (story_id,),
            )
            deleted = cur.rowcount

        logger.info("Invalidated %d evidence cache entries for story %s", deleted, story_id)
        return deleted

    # ========================================================================
    # Row mappers
    # ========================================================================

    def _row_to_entry(self, row: dict) -> CacheEntry:
        """Convert a database row to a CacheEntry.

        cache_data is kept raw; it is validated when read, not here.
        """
        cache_data = row["cache_data"]
        if isinstance(cache_data, (str, bytes)):
            try:
                cache_data = json.loads(cache_data)
            except ValueError:
                logger.warning("Undecodable cache_data in row %s", row["id"])
                cache_data = {}
        if not isinstance(cache_data, dict):
            cache_data = {}

        return CacheEntry(
            id=str(row["id"]),
            branch_name=row["branch_name"],
            story_id=str(row["story_id"]),
            commit_sha=row["commit_sha"],
            cache_data=cache_data,
            run_id=str(row["run_id"]) if row.get("run_id") is not None else None,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
