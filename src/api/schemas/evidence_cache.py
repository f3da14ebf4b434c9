"""
Evidence Cache API Schemas

Pydantic models for cache inspection, invalidation and evaluation runs.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from src.evidence_cache.models import CacheEntry, ValidationResult
from src.story_evaluation.models import StepReviewerOutput, StoryDirectorOutput, StoryStep


class CacheEntryResponse(BaseModel):
    """One stored cache entry."""

    id: str
    branch_name: str
    story_id: str
    commit_sha: str
    run_id: Optional[str] = None
    cache_data: Dict[str, Any]
    step_count: int = Field(description="Number of cached steps")
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_entry(cls, entry: CacheEntry) -> "CacheEntryResponse":
        steps = entry.cache_data.get("steps")
        return cls(
            id=entry.id,
            branch_name=entry.branch_name,
            story_id=entry.story_id,
            commit_sha=entry.commit_sha,
            run_id=entry.run_id,
            cache_data=entry.cache_data,
            step_count=len(steps) if isinstance(steps, dict) else 0,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )


class CacheEntryListResponse(BaseModel):
    """Cache entries for a story, newest first."""

    story_id: str
    entries: List[CacheEntryResponse]
    total: int


class InvalidateResponse(BaseModel):
    """Result of a delete."""

    deleted: int


class EvaluationRequest(BaseModel):
    """Request to evaluate a story against a local checkout."""

    story_id: str = Field(min_length=1)
    story_text: str = Field(min_length=1)
    branch_name: str = Field(default="main", min_length=1)
    commit_shas: List[str] = Field(
        min_length=1,
        description="Evaluated commit first, then ancestors newest-first",
    )
    checkout_path: str = Field(min_length=1, description="Checkout of commit_shas[0]")
    run_id: Optional[str] = None
    invalidation_strategy: Optional[Literal["step", "assertion"]] = None


class EvaluationResponse(BaseModel):
    """Outcome of an evaluation run.

    status is "complete" with a full output, or "incomplete" when a step
    review failed; completed_steps then holds what finished.
    """

    status: Literal["complete", "incomplete"]
    story_id: str
    output: Optional[StoryDirectorOutput] = None
    plan: List[StoryStep] = Field(default_factory=list)
    completed_steps: List[StepReviewerOutput] = Field(default_factory=list)
    reused_steps: List[int] = Field(default_factory=list)
    cache_hit_commit: Optional[str] = None
    validation: Optional[ValidationResult] = None
    cache_saved: bool = False
    total_reviewer_tool_calls: int = 0
    total_reviewer_iterations: int = 0
    error: Optional[str] = None
