"""Evidence references and per-file hash maps.

An evidence reference is "path" or "path:start-end", e.g.
"src/auth/session.ts:12-28". The path is everything before the FIRST colon;
producers and consumers of these strings must keep that grammar.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from src.checkout.file_hasher import FileHasher, hash_file_content
from src.evidence_cache.models import FileEvidenceEntry

logger = logging.getLogger(__name__)

__all__ = [
    "EvidenceHashError",
    "build_evidence_hash_map",
    "extract_files_from_evidence",
    "format_evidence_reference",
    "get_cache_key",
    "group_line_ranges",
    "hash_file_content",
    "parse_evidence_reference",
]


class EvidenceHashError(Exception):
    """Raised when one or more evidence files could not be hashed.

    Carries the per-path failures and the entries that did hash, so the
    caller decides whether a partial map is usable.
    """

    def __init__(
        self,
        failures: Dict[str, BaseException],
        partial: Dict[str, FileEvidenceEntry],
    ):
        self.failures = failures
        self.partial = partial
        paths = ", ".join(sorted(failures))
        super().__init__(f"Could not hash {len(failures)} evidence file(s): {paths}")


def get_cache_key(story_id: str, commit_sha: str) -> str:
    """Correlation key for a cache entry: "story_id:commit_sha"."""
    return f"{story_id}:{commit_sha}"


def parse_evidence_reference(reference: str) -> Tuple[str, Optional[str]]:
    """Split an evidence reference into (path, line_range).

    line_range is None when the reference has no colon or nothing after it.

    Example:
        >>> parse_evidence_reference("src/a.ts:10-40")
        ('src/a.ts', '10-40')
        >>> parse_evidence_reference("src/a.ts")
        ('src/a.ts', None)
    """
    path, sep, line_range = reference.partition(":")
    if not sep or not line_range:
        return path, None
    return path, line_range


def format_evidence_reference(path: str, start_line: Optional[int], end_line: Optional[int]) -> str:
    """Render a path and optional line span as an evidence reference."""
    if start_line is None:
        return path
    return f"{path}:{start_line}-{end_line if end_line is not None else start_line}"


def extract_files_from_evidence(evidence: List[str]) -> List[str]:
    """Unique file paths referenced by the evidence, in first-seen order."""
    files: Dict[str, None] = {}
    for item in evidence:
        path, _ = parse_evidence_reference(item)
        if path:
            files.setdefault(path, None)
    return list(files)


def group_line_ranges(evidence: List[str]) -> Dict[str, List[str]]:
    """Group references by path; each path maps to its sorted unique ranges.

    A bare path contributes the file with no ranges.
    """
    grouped: Dict[str, set] = {}
    for item in evidence:
        path, line_range = parse_evidence_reference(item)
        if not path:
            continue
        ranges = grouped.setdefault(path, set())
        if line_range:
            ranges.add(line_range)
    return {path: sorted(ranges) for path, ranges in grouped.items()}


async def build_evidence_hash_map(
    evidence: List[str],
    hasher: FileHasher,
) -> Dict[str, FileEvidenceEntry]:
    """Hash every file referenced by the evidence.

    Distinct paths are hashed concurrently. A failure on one path does not
    stop the others.

    Returns:
        Map of path -> FileEvidenceEntry(hash, line_ranges)

    Raises:
        EvidenceHashError: If any path failed; .partial holds the rest.
    """
    grouped = group_line_ranges(evidence)
    if not grouped:
        return {}

    paths = list(grouped)
    results = await asyncio.gather(
        *(hasher.hash_file(path) for path in paths),
        return_exceptions=True,
    )

    hash_map: Dict[str, FileEvidenceEntry] = {}
    failures: Dict[str, BaseException] = {}
    for path, result in zip(paths, results):
        if isinstance(result, BaseException):
            logger.warning("Failed to hash evidence file %s: %s", path, result)
            failures[path] = result
            continue
        hash_map[path] = FileEvidenceEntry(hash=result, line_ranges=grouped[path])

    if failures:
        raise EvidenceHashError(failures, hash_map)

    return hash_map
