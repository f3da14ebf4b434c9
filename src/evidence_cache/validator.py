"""Cache validation by re-hashing cited files.

A cached step can be reused only if every file its assertions cite still
hashes to the stored value. The payload is read straight from the stored
JSON and checked piece by piece, so one malformed step or assertion
invalidates only itself instead of the whole entry.
"""

import asyncio
import logging
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from pydantic import ValidationError

from src.checkout.file_hasher import FileHasher
from src.evidence_cache.evidence import get_cache_key
from src.evidence_cache.models import (
    CACHEABLE_CONCLUSIONS,
    AssertionCacheEntry,
    CacheEntry,
    InvalidAssertion,
    InvalidationStrategy,
    ValidationResult,
)

logger = logging.getLogger(__name__)


def _indexed_items(mapping: Dict[str, Any], what: str, cache_key: str) -> Iterator[Tuple[int, Any]]:
    """Yield (int index, value) in index order, skipping unaddressable keys."""
    indexed = []
    for key, value in mapping.items():
        if not isinstance(key, str) or not key.isdigit():
            logger.warning("Skipping %s with non-index key %r in cache %s", what, key, cache_key)
            continue
        indexed.append((int(key), value))
    indexed.sort(key=lambda item: item[0])
    return iter(indexed)


async def _assertion_is_valid(
    payload: Any,
    hasher: FileHasher,
    cache_key: str,
    step_index: int,
    assertion_index: int,
) -> bool:
    try:
        assertion = AssertionCacheEntry.model_validate(payload)
    except ValidationError as e:
        logger.warning(
            "Malformed assertion %d.%d in cache %s: %s",
            step_index, assertion_index, cache_key, e,
        )
        return False

    if not assertion.evidence:
        # Reason-only: nothing file-backed to re-check
        return True

    for path, entry in assertion.evidence.items():
        try:
            current_hash = await hasher.hash_file(path)
        except Exception as e:
            logger.info(
                "Evidence file %s unreadable for assertion %d.%d in cache %s: %s",
                path, step_index, assertion_index, cache_key, e,
            )
            return False
        if current_hash != entry.hash:
            logger.debug(
                "Evidence file %s changed for assertion %d.%d in cache %s",
                path, step_index, assertion_index, cache_key,
            )
            return False

    return True


async def validate_cache_entry(
    cache_entry: CacheEntry,
    hasher: FileHasher,
    invalidation_strategy: Union[InvalidationStrategy, str] = InvalidationStrategy.STEP,
) -> ValidationResult:
    """Determine which cached steps and assertions still hold.

    Invalid assertions are always reported. Under the step strategy a step
    with any invalid assertion is also reported in invalid_steps; under
    the assertion strategy it never is, except for steps whose assertions
    cannot be enumerated at all.

    Args:
        cache_entry: Entry as loaded from storage
        hasher: Hashing capability bound to the checkout being evaluated
        invalidation_strategy: "step" or "assertion"

    Returns:
        ValidationResult; is_valid is True iff nothing was flagged
    """
    strategy = InvalidationStrategy(invalidation_strategy)
    cache_key = get_cache_key(cache_entry.story_id, cache_entry.commit_sha)

    invalid_steps: List[int] = []
    invalid_assertions: List[InvalidAssertion] = []

    steps = cache_entry.cache_data.get("steps")
    if not isinstance(steps, dict):
        logger.warning("Cache %s has no step map; nothing to reuse", cache_key)
        return ValidationResult(is_valid=True)

    for step_index, step in _indexed_items(steps, "step", cache_key):
        assertions: Optional[Dict[str, Any]] = None
        if isinstance(step, dict) and isinstance(step.get("assertions"), dict):
            assertions = step["assertions"]

        if assertions is None:
            logger.warning("Malformed step %d in cache %s", step_index, cache_key)
            invalid_steps.append(step_index)
            continue

        items = list(_indexed_items(assertions, "assertion", cache_key))

        if step.get("conclusion") not in CACHEABLE_CONCLUSIONS:
            logger.warning(
                "Step %d in cache %s has uncacheable conclusion %r",
                step_index, cache_key, step.get("conclusion"),
            )
            invalid_assertions.extend(
                InvalidAssertion(step_index=step_index, assertion_index=idx)
                for idx, _ in items
            )
            if strategy == InvalidationStrategy.STEP or not items:
                invalid_steps.append(step_index)
            continue

        results = await asyncio.gather(*(
            _assertion_is_valid(payload, hasher, cache_key, step_index, idx)
            for idx, payload in items
        ))

        step_has_invalid = False
        for (assertion_index, _), valid in zip(items, results):
            if not valid:
                step_has_invalid = True
                invalid_assertions.append(
                    InvalidAssertion(step_index=step_index, assertion_index=assertion_index)
                )

        if step_has_invalid and strategy == InvalidationStrategy.STEP:
            invalid_steps.append(step_index)

    invalid_steps.sort()
    is_valid = not invalid_steps and not invalid_assertions
    logger.info(
        "Validated cache %s (%s strategy): %d invalid steps, %d invalid assertions",
        cache_key, strategy.value, len(invalid_steps), len(invalid_assertions),
    )
    return ValidationResult(
        is_valid=is_valid,
        invalid_steps=invalid_steps,
        invalid_assertions=invalid_assertions,
    )
