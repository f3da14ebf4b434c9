"""Models for the story evidence cache.

Cache payloads live in a JSONB column and are validated on every read:
anything that does not parse is treated as stale evidence, never trusted.
The stored JSON keeps camelCase keys (`lineRanges`) so rows written by
other producers of the same table stay readable.
"""

import logging
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)

logger = logging.getLogger(__name__)


class InvalidationStrategy(str, Enum):
    """Granularity at which stale evidence forces re-verification."""

    STEP = "step"
    ASSERTION = "assertion"


class CachedConclusion(str, Enum):
    """Step conclusions that are allowed into the cache."""

    PASS = "pass"
    FAIL = "fail"


CACHEABLE_CONCLUSIONS = {c.value for c in CachedConclusion}


def _check_index_keys(value: Dict[str, Any], what: str) -> Dict[str, Any]:
    for key in value:
        if not isinstance(key, str) or not key.isdigit():
            raise ValueError(f"{what} key must be a decimal index, got {key!r}")
    return value


class FileEvidenceEntry(BaseModel):
    """Content hash of one file plus the line ranges cited from it."""

    model_config = ConfigDict(populate_by_name=True)

    hash: str = Field(min_length=1)
    line_ranges: List[str] = Field(default_factory=list, alias="lineRanges")


class AssertionCacheEntry(BaseModel):
    """Cached evidence for one assertion: file hashes and/or a reason."""

    evidence: Optional[Dict[str, FileEvidenceEntry]] = None
    reason: Optional[str] = Field(default=None, min_length=1)

    @model_validator(mode="after")
    def _require_evidence_or_reason(self):
        if not self.evidence and not self.reason:
            raise ValueError("assertion cache entry needs evidence or a reason")
        return self


class StepCacheEntry(BaseModel):
    """Cached conclusion and assertions for one step.

    step_id and description identify the plan step the verdict was given
    for. Plans are regenerated on every run, so a verdict is only reused
    for a step with the same id and description.
    """

    model_config = ConfigDict(populate_by_name=True)

    step_id: Optional[str] = Field(default=None, alias="stepId")
    description: Optional[str] = None
    conclusion: CachedConclusion
    assertions: Dict[str, AssertionCacheEntry] = Field(default_factory=dict)

    @field_validator("assertions")
    @classmethod
    def _digit_keys(cls, value):
        return _check_index_keys(value, "assertion")


class CacheData(BaseModel):
    """Full evidence snapshot for one story at one commit."""

    steps: Dict[str, StepCacheEntry] = Field(default_factory=dict)

    @field_validator("steps")
    @classmethod
    def _digit_keys(cls, value):
        return _check_index_keys(value, "step")

    def to_storage(self) -> Dict[str, Any]:
        """Serialize for the cache_data JSONB column."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class CacheEntry(BaseModel):
    """A persisted story_evidence_cache row.

    cache_data is the raw stored payload. Use parse_cache_data() or the
    validator to read it; both tolerate malformed rows.
    """

    id: str
    branch_name: str
    story_id: str
    commit_sha: str
    cache_data: Dict[str, Any] = Field(default_factory=dict)
    run_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    def parse_cache_data(self) -> Optional[CacheData]:
        """Return the validated payload, or None if it is malformed."""
        try:
            return CacheData.model_validate(self.cache_data)
        except ValidationError as e:
            logger.warning(
                "Malformed cache data for story %s at %s: %s",
                self.story_id, self.commit_sha, e,
            )
            return None


class InvalidAssertion(BaseModel):
    """Address of one assertion whose evidence no longer holds."""

    step_index: int = Field(ge=0)
    assertion_index: int = Field(ge=0)


class ValidationResult(BaseModel):
    """Outcome of re-hashing a cache entry's evidence. Never persisted."""

    is_valid: bool
    invalid_steps: List[int] = Field(default_factory=list)
    invalid_assertions: List[InvalidAssertion] = Field(default_factory=list)


# =============================================================================
# Cache builder input
# =============================================================================


class EvaluatedAssertion(BaseModel):
    """One evidence-backed claim made while evaluating a step."""

    fact: Optional[str] = None
    evidence: List[str] = Field(default_factory=list)
    reason: Optional[str] = None


class EvaluatedStep(BaseModel):
    """A completed step evaluation as the cache builder consumes it.

    conclusion is free-form here (e.g. "error", "blocked"); only pass and
    fail steps are cached.
    """

    step_id: Optional[str] = None
    description: Optional[str] = None
    conclusion: str
    assertions: List[EvaluatedAssertion] = Field(default_factory=list)
