"""
Evidence Cache API Endpoints

Inspect and invalidate cached story evidence.
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query

from src.api.deps import get_db
from src.api.schemas.evidence_cache import (
    CacheEntryListResponse,
    CacheEntryResponse,
    InvalidateResponse,
)
from src.evidence_cache.storage import EvidenceCacheStorage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/evidence-cache", tags=["evidence-cache"])


def get_cache_storage(db=Depends(get_db)) -> EvidenceCacheStorage:
    """Dependency for EvidenceCacheStorage."""
    return EvidenceCacheStorage(db)


@router.get("/{story_id}", response_model=CacheEntryResponse)
def get_cache_entry(
    story_id: str,
    commit_sha: List[str] = Query(
        ...,
        description="Candidate commit SHAs, newest first. The first one with an entry wins.",
    ),
    storage: EvidenceCacheStorage = Depends(get_cache_storage),
):
    """Get the cache entry for the newest listed commit that has one."""
    entry = storage.get(story_id, commit_sha)
    if entry is None:
        raise HTTPException(status_code=404, detail="No cache entry for these commits")
    return CacheEntryResponse.from_entry(entry)


@router.get("/{story_id}/entries", response_model=CacheEntryListResponse)
def list_cache_entries(
    story_id: str,
    limit: int = Query(default=50, ge=1, le=500),
    storage: EvidenceCacheStorage = Depends(get_cache_storage),
):
    """List cache entries for a story, newest first."""
    entries = storage.list_for_story(story_id, limit=limit)
    return CacheEntryListResponse(
        story_id=story_id,
        entries=[CacheEntryResponse.from_entry(entry) for entry in entries],
        total=len(entries),
    )


@router.delete("/{story_id}/{commit_sha}", response_model=InvalidateResponse)
def invalidate_cache_entry(
    story_id: str,
    commit_sha: str,
    storage: EvidenceCacheStorage = Depends(get_cache_storage),
):
    """Delete the entry for one commit."""
    return InvalidateResponse(deleted=storage.invalidate(story_id, commit_sha))


@router.delete("/{story_id}", response_model=InvalidateResponse)
def invalidate_story_cache(
    story_id: str,
    storage: EvidenceCacheStorage = Depends(get_cache_storage),
):
    """Delete every entry for a story (its text or decomposition changed)."""
    deleted = storage.invalidate_all_for_story(story_id)
    logger.info("Story %s cache cleared via API (%d entries)", story_id, deleted)
    return InvalidateResponse(deleted=deleted)
