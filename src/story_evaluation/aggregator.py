"""Story aggregation: run the director once, the reviewer once per step,
and reduce step verdicts to a story verdict.

Steps are reviewed strictly in plan order. Each review sees every earlier
outcome, so reviews cannot run in parallel.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Tuple

from src.story_evaluation.director import StoryDirectorAgent
from src.story_evaluation.models import (
    StepResult,
    StepReviewerOutput,
    StepTrace,
    Story,
    StoryDirectorOutput,
    StoryDirectorPlan,
    StoryStep,
)
from src.story_evaluation.reviewer import StepReviewerAgent

logger = logging.getLogger(__name__)


class StoryDecompositionError(Exception):
    """Raised when the director could not decompose a story."""

    def __init__(self, story_id: str, cause: Exception):
        self.story_id = story_id
        self.cause = cause
        super().__init__(f"Could not decompose story {story_id}: {cause}")


class StoryEvaluationError(Exception):
    """Raised when a step review fails mid-run.

    The story is incomplete: `reviewed_steps` holds every step that
    finished before the failure, in plan order.
    """

    def __init__(
        self,
        story_id: str,
        plan: StoryDirectorPlan,
        reviewed_steps: List["ReviewedStep"],
        failed_step: StoryStep,
        cause: Exception,
    ):
        self.story_id = story_id
        self.plan = plan
        self.reviewed_steps = reviewed_steps
        self.failed_step = failed_step
        self.cause = cause
        super().__init__(
            f"Story {story_id} incomplete: step {failed_step.index + 1} "
            f"({failed_step.id}) failed after {len(reviewed_steps)} of "
            f"{len(plan.steps)} steps: {cause}"
        )


@dataclass
class ReviewedStep:
    """One step's verdict plus reviewer counters.

    cached steps reuse a verdict from the evidence cache; the reviewer was
    not called for them, so their counters are zero.
    """

    step: StoryStep
    evaluation: StepReviewerOutput
    tool_calls: int = 0
    steps_executed: int = 0
    cached: bool = False


@dataclass
class CachedStepVerdict:
    """A verdict from the evidence cache and the step it was given for.

    Used for a plan step only when both its id and description match.
    """

    step_description: Optional[str]
    output: StepReviewerOutput

    def matches(self, step: StoryStep) -> bool:
        return self.step_description == step.description


@dataclass
class StoryEvaluationMetrics:
    total_reviewer_tool_calls: int = 0
    total_reviewer_iterations: int = 0


@dataclass
class StoryEvaluationResult:
    """Everything produced by one evaluation run."""

    plan: StoryDirectorPlan
    reviewed_steps: List[ReviewedStep]
    output: StoryDirectorOutput
    plan_steps_executed: int
    metrics: StoryEvaluationMetrics = field(default_factory=StoryEvaluationMetrics)


def determine_story_conclusion(results: Iterable[StepResult]) -> StepResult:
    """Reduce step results to one: fail > blocked > not-implemented > pass.

    Order of the input does not matter. No steps means pass.
    """
    return max(results, key=lambda result: result.rank, default=StepResult.PASS)


def aggregate_story_outcome(
    story: str,
    steps: List[StepReviewerOutput],
) -> Tuple[StepResult, str]:
    """Return (story conclusion, human-readable summary)."""
    conclusion = determine_story_conclusion(step.result for step in steps)
    bullet_points = "\n".join(
        f"Step {number} ({step.result.value}): {step.description}"
        for number, step in enumerate(steps, start=1)
    )
    summary = f"Story evaluation for: {story}\n\nStep outcomes:\n\n{bullet_points}"
    return conclusion, summary


def build_trace_from_steps(steps: List[ReviewedStep]) -> StepTrace:
    """Story-level trace assembled from the step traces.

    summary: one "Step N (result): step summary" line per step
    reasoning: one "Step N: description" entry per step
    search_queries: every step's queries, de-duplicated, first-seen order
    """
    summary_lines = []
    reasoning = []
    queries: Dict[str, None] = {}
    for number, entry in enumerate(steps, start=1):
        evaluation = entry.evaluation
        summary_lines.append(f"Step {number} ({evaluation.result.value}): {evaluation.trace.summary}")
        reasoning.append(f"Step {number}: {evaluation.description}")
        for query in evaluation.trace.search_queries:
            queries.setdefault(query, None)

    return StepTrace(
        summary="\n".join(summary_lines),
        reasoning=reasoning,
        search_queries=list(queries),
    )


class StoryEvaluator:
    """Drives the director and reviewer for one story."""

    def __init__(self, director: StoryDirectorAgent, reviewer: StepReviewerAgent):
        self.director = director
        self.reviewer = reviewer

    def evaluate(
        self,
        story: Story,
        reusable_steps: Optional[Dict[str, CachedStepVerdict]] = None,
    ) -> StoryEvaluationResult:
        """Evaluate a story end to end.

        Args:
            story: Story to evaluate
            reusable_steps: Verdicts to use instead of calling the reviewer,
                keyed by step id. A verdict is used only if the plan has a
                step with that id and the same description.

        Raises:
            StoryDecompositionError: The director failed.
            StoryEvaluationError: A step review failed; carries the
                completed steps.
        """
        reusable_steps = reusable_steps or {}

        try:
            plan_result = self.director.plan(story)
        except Exception as e:
            logger.error("Could not decompose story %s: %s", story.id, e)
            raise StoryDecompositionError(story.id, e) from e

        plan = plan_result.plan
        reviewed_steps: List[ReviewedStep] = []

        for step in plan.steps:
            cached = reusable_steps.get(step.id)
            if cached is not None and cached.matches(step):
                logger.info(
                    "Step %d (%s) reused cached verdict: %s",
                    step.index + 1, step.id, cached.output.result.value,
                )
                reviewed_steps.append(ReviewedStep(step=step, evaluation=cached.output, cached=True))
                continue
            if cached is not None:
                logger.info("Step %d (%s) changed since it was cached", step.index + 1, step.id)

            prior_steps = [entry.evaluation for entry in reviewed_steps]
            try:
                review = self.reviewer.review(story, step, prior_steps)
            except Exception as e:
                logger.error(
                    "Review of step %d (%s) failed for story %s: %s",
                    step.index + 1, step.id, story.id, e,
                )
                raise StoryEvaluationError(story.id, plan, list(reviewed_steps), step, e) from e

            reviewed_steps.append(ReviewedStep(
                step=step,
                evaluation=review.output,
                tool_calls=review.tool_calls,
                steps_executed=review.steps_executed,
            ))

        step_outputs = [entry.evaluation for entry in reviewed_steps]
        conclusion, summary = aggregate_story_outcome(story.text, step_outputs)
        output = StoryDirectorOutput(
            result=conclusion,
            story=story.text,
            steps=step_outputs,
            trace=build_trace_from_steps(reviewed_steps),
        )

        metrics = StoryEvaluationMetrics(
            total_reviewer_tool_calls=sum(entry.tool_calls for entry in reviewed_steps),
            total_reviewer_iterations=sum(entry.steps_executed for entry in reviewed_steps),
        )

        logger.debug("%s", summary)
        logger.info(
            "Story %s: %s (%d steps, %d reused, %d reviewer tool calls)",
            story.id,
            conclusion.value,
            len(reviewed_steps),
            sum(1 for entry in reviewed_steps if entry.cached),
            metrics.total_reviewer_tool_calls,
        )

        return StoryEvaluationResult(
            plan=plan,
            reviewed_steps=reviewed_steps,
            output=output,
            plan_steps_executed=plan_result.steps_executed,
            metrics=metrics,
        )
