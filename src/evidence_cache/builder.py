"""Build cache payloads from completed evaluations.

Only steps that reached a definite verdict (pass or fail) are cached.
Anything else is re-evaluated next time rather than letting an
undetermined verdict persist.
"""

import asyncio
import logging
from typing import Dict, List, Optional

from src.checkout.file_hasher import FileHasher
from src.evidence_cache.evidence import EvidenceHashError, build_evidence_hash_map
from src.evidence_cache.models import (
    CACHEABLE_CONCLUSIONS,
    AssertionCacheEntry,
    CacheData,
    EvaluatedAssertion,
    EvaluatedStep,
    FileEvidenceEntry,
    StepCacheEntry,
)

logger = logging.getLogger(__name__)


async def _build_assertion_entry(
    assertion: EvaluatedAssertion,
    hasher: FileHasher,
    step_index: int,
    assertion_index: int,
) -> Optional[AssertionCacheEntry]:
    evidence: Dict[str, FileEvidenceEntry] = {}
    if assertion.evidence:
        try:
            evidence = await build_evidence_hash_map(assertion.evidence, hasher)
        except EvidenceHashError as e:
            # A partial map would vouch for files we never saw; keep only the reason
            logger.warning(
                "Dropping evidence for assertion %d.%d: %s",
                step_index, assertion_index, e,
            )
            evidence = {}

    reason = assertion.reason.strip() if assertion.reason else None
    if not evidence and not reason:
        return None

    return AssertionCacheEntry(evidence=evidence or None, reason=reason or None)


async def build_cache_data_from_evaluation(
    steps: List[EvaluatedStep],
    hasher: FileHasher,
) -> CacheData:
    """Construct CacheData for the pass/fail steps of an evaluation.

    Steps are keyed by their position in `steps`; assertions by their
    position in the step. An assertion is kept only if it has a non-empty
    evidence map or a non-empty reason.
    """
    cached_steps: Dict[str, StepCacheEntry] = {}

    for step_index, step in enumerate(steps):
        if step.conclusion not in CACHEABLE_CONCLUSIONS:
            logger.debug("Not caching step %d with conclusion %s", step_index, step.conclusion)
            continue

        entries = await asyncio.gather(*(
            _build_assertion_entry(assertion, hasher, step_index, idx)
            for idx, assertion in enumerate(step.assertions)
        ))

        assertions = {
            str(idx): entry
            for idx, entry in enumerate(entries)
            if entry is not None
        }
        cached_steps[str(step_index)] = StepCacheEntry(
            step_id=step.step_id,
            description=step.description,
            conclusion=step.conclusion,
            assertions=assertions,
        )

    logger.info("Built cache data for %d of %d steps", len(cached_steps), len(steps))
    return CacheData(steps=cached_steps)
