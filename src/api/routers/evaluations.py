"""
Story Evaluation API Endpoints

Run a story evaluation against a local checkout, reusing cached evidence.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import get_db
from src.api.schemas.evidence_cache import EvaluationRequest, EvaluationResponse
from src.checkout.file_hasher import CheckoutFileHasher
from src.checkout.search import RepositorySearch
from src.evidence_cache.models import InvalidationStrategy
from src.evidence_cache.storage import EvidenceCacheStorage
from src.story_evaluation.aggregator import (
    StoryDecompositionError,
    StoryEvaluationError,
    StoryEvaluator,
)
from src.story_evaluation.director import StoryDirectorAgent
from src.story_evaluation.models import Story
from src.story_evaluation.pipeline import PipelineConfig, StoryVerificationPipeline
from src.story_evaluation.reviewer import StepReviewerAgent

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/evaluations", tags=["evaluations"])

PipelineBuilder = Callable[[Path, Optional[str]], StoryVerificationPipeline]


def get_pipeline_builder(db=Depends(get_db)) -> PipelineBuilder:
    """Dependency returning a factory for pipelines bound to one checkout."""

    def build(checkout_path: Path, strategy: Optional[str] = None) -> StoryVerificationPipeline:
        config = PipelineConfig()
        if strategy:
            config.invalidation_strategy = InvalidationStrategy(strategy)
        search = RepositorySearch(checkout_path)
        evaluator = StoryEvaluator(StoryDirectorAgent(), StepReviewerAgent(search=search))
        return StoryVerificationPipeline(
            EvidenceCacheStorage(db),
            evaluator,
            CheckoutFileHasher(checkout_path),
            config,
        )

    return build


@router.post("", response_model=EvaluationResponse)
async def evaluate_story(
    request: EvaluationRequest,
    build_pipeline: PipelineBuilder = Depends(get_pipeline_builder),
):
    """
    Evaluate a story at commit_shas[0].

    Returns 422 if the story could not be decomposed. A failure part-way
    through the step reviews returns status "incomplete" with the steps
    that finished.
    """
    checkout_path = Path(request.checkout_path)
    if not checkout_path.is_dir():
        raise HTTPException(status_code=400, detail=f"Checkout not found: {request.checkout_path}")

    pipeline = build_pipeline(checkout_path, request.invalidation_strategy)
    story = Story(id=request.story_id, text=request.story_text)

    try:
        result = await pipeline.run(
            story,
            branch_name=request.branch_name,
            commit_shas=request.commit_shas,
            run_id=request.run_id,
        )
    except StoryDecompositionError as e:
        raise HTTPException(status_code=422, detail=f"Could not decompose story: {e.cause}")
    except StoryEvaluationError as e:
        return EvaluationResponse(
            status="incomplete",
            story_id=story.id,
            plan=e.plan.steps,
            completed_steps=[entry.evaluation for entry in e.reviewed_steps],
            error=str(e),
        )

    evaluation = result.evaluation
    return EvaluationResponse(
        status="complete",
        story_id=story.id,
        output=evaluation.output,
        plan=evaluation.plan.steps,
        completed_steps=evaluation.output.steps,
        reused_steps=result.reused_steps,
        cache_hit_commit=result.cache_hit.commit_sha if result.cache_hit else None,
        validation=result.validation,
        cache_saved=result.saved,
        total_reviewer_tool_calls=evaluation.metrics.total_reviewer_tool_calls,
        total_reviewer_iterations=evaluation.metrics.total_reviewer_iterations,
    )
