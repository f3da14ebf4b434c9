"""Story verification pipeline.

Flow for one story at one commit:

    storage.get(story, [head, parent, ...])      newest cached ancestor
      -> validate_cache_entry()                  re-hash cited files
      -> reusable steps                          still-valid verdicts
      -> StoryEvaluator.evaluate()               director + reviewer
      -> build_cache_data_from_evaluation()      hash evidence at head
      -> storage.save(head)                      first writer wins

The agents use the sync OpenAI client and storage uses psycopg2, so the
evaluator and every storage call run in worker threads while file hashing
stays on the event loop.
"""

import asyncio
import logging
import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from pydantic import ValidationError

from src.checkout.file_hasher import FileHasher
from src.evidence_cache.builder import build_cache_data_from_evaluation
from src.evidence_cache.models import (
    CacheData,
    CacheEntry,
    EvaluatedAssertion,
    EvaluatedStep,
    InvalidationStrategy,
    StepCacheEntry,
    ValidationResult,
)
from src.evidence_cache.storage import EvidenceCacheStorage
from src.evidence_cache.validator import validate_cache_entry
from src.story_evaluation.aggregator import (
    CachedStepVerdict,
    StoryEvaluationResult,
    StoryEvaluator,
)
from src.story_evaluation.models import (
    CodeSnippet,
    StepResult,
    StepReviewerOutput,
    StepTrace,
    Story,
    StoryDirectorOutput,
    StoryDirectorPlan,
)

logger = logging.getLogger(__name__)


def _default_strategy() -> InvalidationStrategy:
    value = os.getenv("STORY_CACHE_INVALIDATION_STRATEGY") or InvalidationStrategy.STEP.value
    try:
        return InvalidationStrategy(value.strip().lower())
    except ValueError:
        logger.warning("Unknown STORY_CACHE_INVALIDATION_STRATEGY %r, using step", value)
        return InvalidationStrategy.STEP


@dataclass
class PipelineConfig:
    """Configuration for StoryVerificationPipeline."""

    invalidation_strategy: InvalidationStrategy = field(default_factory=_default_strategy)
    reuse_cached_steps: bool = True
    save_cache: bool = True


@dataclass
class PipelineResult:
    """Outcome of one pipeline run."""

    evaluation: StoryEvaluationResult
    cache_data: CacheData
    cache_hit: Optional[CacheEntry] = None
    validation: Optional[ValidationResult] = None
    reused_steps: List[int] = field(default_factory=list)
    saved: bool = False

    @property
    def output(self) -> StoryDirectorOutput:
        return self.evaluation.output


def evaluation_from_story_output(
    output: StoryDirectorOutput,
    plan: Optional[StoryDirectorPlan] = None,
) -> List[EvaluatedStep]:
    """Convert a story verdict into cache builder input.

    Each cited code snippet becomes one assertion whose evidence is the
    snippet's reference. A step with no snippets becomes a single
    reason-only assertion carrying the step description. With a plan, each
    step also records the plan step's id and description.
    """
    plan_steps = plan.steps if plan is not None else []
    steps = []
    for index, step in enumerate(output.steps):
        assertions = [
            EvaluatedAssertion(fact=snippet.note, evidence=[snippet.reference])
            for snippet in step.code
        ]
        if not assertions:
            assertions = [EvaluatedAssertion(reason=step.description)]
        plan_step = plan_steps[index] if index < len(plan_steps) else None
        steps.append(EvaluatedStep(
            step_id=plan_step.id if plan_step else None,
            description=plan_step.description if plan_step else None,
            conclusion=step.result.value,
            assertions=assertions,
        ))
    return steps


def _output_from_cached_step(step: StepCacheEntry, commit_sha: str) -> StepReviewerOutput:
    """Rebuild a reviewer verdict from a cached step."""
    code = []
    reasons = []
    for key in sorted(step.assertions, key=int):
        assertion = step.assertions[key]
        if assertion.reason:
            reasons.append(assertion.reason)
        for path, entry in (assertion.evidence or {}).items():
            references = [f"{path}:{line_range}" for line_range in entry.line_ranges] or [path]
            code.extend(CodeSnippet.from_reference(reference) for reference in references)

    description = reasons[0] if reasons else f"Cached {step.conclusion.value} verdict"
    return StepReviewerOutput(
        result=StepResult(step.conclusion.value),
        description=description,
        code=code,
        trace=StepTrace(
            summary=f"Reused cached evidence from commit {commit_sha[:12]}",
            reasoning=reasons[1:],
        ),
    )


def reusable_steps_from_cache(
    cache_entry: CacheEntry,
    validation: ValidationResult,
) -> Dict[str, CachedStepVerdict]:
    """Verdicts from a validated cache entry that can skip the reviewer.

    Returns verdicts keyed by the plan step id they were given for. A step
    is reusable only if:
      - it records the step id it was cached for
      - nothing in it was flagged, at either granularity
      - at least one assertion cites file evidence

    Reason-only verdicts (typically "not found" failures) are never
    reused: no hash can show that the missing code is still missing. The
    reviewer works a whole step at a time, so one flagged assertion
    re-reviews the step.
    """
    steps = cache_entry.cache_data.get("steps")
    if not isinstance(steps, dict):
        return {}

    flagged = set(validation.invalid_steps)
    flagged.update(item.step_index for item in validation.invalid_assertions)

    reusable: Dict[str, CachedStepVerdict] = {}
    for key, payload in steps.items():
        if not isinstance(key, str) or not key.isdigit() or int(key) in flagged:
            continue
        try:
            step = StepCacheEntry.model_validate(payload)
        except ValidationError:
            continue
        if not step.step_id:
            continue
        if not any(assertion.evidence for assertion in step.assertions.values()):
            continue
        reusable[step.step_id] = CachedStepVerdict(
            step_description=step.description,
            output=_output_from_cached_step(step, cache_entry.commit_sha),
        )
    return reusable


class StoryVerificationPipeline:
    """Evaluates stories against a checkout, reusing cached evidence."""

    def __init__(
        self,
        storage: EvidenceCacheStorage,
        evaluator: StoryEvaluator,
        hasher: FileHasher,
        config: Optional[PipelineConfig] = None,
    ):
        self.storage = storage
        self.evaluator = evaluator
        self.hasher = hasher
        self.config = config or PipelineConfig()

    async def run(
        self,
        story: Story,
        branch_name: str,
        commit_shas: List[str],
        run_id: Optional[str] = None,
    ) -> PipelineResult:
        """Evaluate a story at commit_shas[0].

        Args:
            story: Story to verify
            branch_name: Branch being evaluated, stored with the entry
            commit_shas: The evaluated commit first, then ancestors
                newest-first; the cache is probed in that order
            run_id: Optional run identifier stored with the entry

        Raises:
            ValueError: If commit_shas is empty.
            StoryDecompositionError, StoryEvaluationError: From the
                evaluator; nothing is cached for a failed run.
        """
        if not commit_shas:
            raise ValueError("At least one commit SHA is required")
        head_sha = commit_shas[0]

        cache_hit = None
        validation = None
        reusable: Dict[str, CachedStepVerdict] = {}

        if self.config.reuse_cached_steps:
            cache_hit = await asyncio.to_thread(self.storage.get, story.id, commit_shas)
            if cache_hit is not None:
                validation = await validate_cache_entry(
                    cache_hit, self.hasher, self.config.invalidation_strategy
                )
                reusable = reusable_steps_from_cache(cache_hit, validation)
                logger.info(
                    "Cache hit for story %s at %s: %d reusable steps",
                    story.id, cache_hit.commit_sha, len(reusable),
                )
            else:
                logger.info("No cached evidence for story %s", story.id)

        evaluation = await asyncio.to_thread(self.evaluator.evaluate, story, reusable)

        cache_data = await build_cache_data_from_evaluation(
            evaluation_from_story_output(evaluation.output, evaluation.plan), self.hasher
        )

        saved = False
        if self.config.save_cache:
            saved = await asyncio.to_thread(
                self.storage.save, branch_name, story.id, head_sha, cache_data, run_id
            )

        return PipelineResult(
            evaluation=evaluation,
            cache_data=cache_data,
            cache_hit=cache_hit,
            validation=validation,
            reused_steps=sorted(
                entry.step.index for entry in evaluation.reviewed_steps if entry.cached
            ),
            saved=saved,
        )

    def invalidate_story(self, story_id: str) -> int:
        """Drop all cached evidence for a story whose text changed."""
        return self.storage.invalidate_all_for_story(story_id)
