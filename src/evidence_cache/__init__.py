"""
Evidence Cache

Content-addressed cache of per-step, per-assertion evidence for story
evaluations, keyed by (story_id, commit_sha) and invalidated by re-hashing
the cited files.
"""

from .builder import build_cache_data_from_evaluation
from .evidence import (
    EvidenceHashError,
    build_evidence_hash_map,
    extract_files_from_evidence,
    get_cache_key,
    hash_file_content,
    parse_evidence_reference,
)
from .models import (
    AssertionCacheEntry,
    CacheData,
    CacheEntry,
    EvaluatedAssertion,
    EvaluatedStep,
    FileEvidenceEntry,
    InvalidAssertion,
    InvalidationStrategy,
    StepCacheEntry,
    ValidationResult,
)
from .storage import EvidenceCacheStorage
from .validator import validate_cache_entry

__all__ = [
    "AssertionCacheEntry",
    "CacheData",
    "CacheEntry",
    "EvaluatedAssertion",
    "EvaluatedStep",
    "EvidenceCacheStorage",
    "EvidenceHashError",
    "FileEvidenceEntry",
    "InvalidAssertion",
    "InvalidationStrategy",
    "StepCacheEntry",
    "ValidationResult",
    "build_cache_data_from_evaluation",
    "build_evidence_hash_map",
    "extract_files_from_evidence",
    "get_cache_key",
    "hash_file_content",
    "parse_evidence_reference",
    "validate_cache_entry",
]
