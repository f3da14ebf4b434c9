"""
Story Evaluation

Director/reviewer agent pair that decomposes a story into steps, verifies
each step against a checkout, and reduces step verdicts to a story verdict.
"""

from .aggregator import (
    CachedStepVerdict,
    ReviewedStep,
    StoryDecompositionError,
    StoryEvaluationError,
    StoryEvaluationMetrics,
    StoryEvaluationResult,
    StoryEvaluator,
    aggregate_story_outcome,
    build_trace_from_steps,
    determine_story_conclusion,
)
from .director import DirectorPlanResult, StoryDirectorAgent, StoryDirectorConfig
from .models import (
    CodeSnippet,
    ReviewerInput,
    StepResult,
    StepReviewerOutput,
    StepTrace,
    Story,
    StoryDirectorOutput,
    StoryDirectorPlan,
    StoryStep,
)
from .pipeline import (
    PipelineConfig,
    PipelineResult,
    StoryVerificationPipeline,
    evaluation_from_story_output,
    reusable_steps_from_cache,
)
from .reviewer import StepReviewerAgent, StepReviewerConfig, StepReviewerResult
from .structured_generation import StructuredGenerationError

__all__ = [
    "CachedStepVerdict",
    "CodeSnippet",
    "DirectorPlanResult",
    "PipelineConfig",
    "PipelineResult",
    "ReviewedStep",
    "ReviewerInput",
    "StepResult",
    "StepReviewerAgent",
    "StepReviewerConfig",
    "StepReviewerOutput",
    "StepReviewerResult",
    "StepTrace",
    "Story",
    "StoryDecompositionError",
    "StoryDirectorAgent",
    "StoryDirectorConfig",
    "StoryDirectorOutput",
    "StoryDirectorPlan",
    "StoryEvaluationError",
    "StoryEvaluationMetrics",
    "StoryEvaluationResult",
    "StoryEvaluator",
    "StoryStep",
    "StoryVerificationPipeline",
    "StructuredGenerationError",
    "aggregate_story_outcome",
    "build_trace_from_steps",
    "determine_story_conclusion",
    "evaluation_from_story_output",
    "reusable_steps_from_cache",
]
