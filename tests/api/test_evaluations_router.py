"""
Evaluations API Router Tests

The pipeline builder is overridden; no LLM or database calls.
Run with: pytest tests/api/test_evaluations_router.py -v
"""

from unittest.mock import AsyncMock, Mock

import pytest
from fastapi.testclient import TestClient

from src.api.main import app
from src.api.routers.evaluations import get_pipeline_builder
from src.evidence_cache.models import CacheData, ValidationResult
from src.story_evaluation.aggregator import (
    ReviewedStep,
    StoryDecompositionError,
    StoryEvaluationError,
    StoryEvaluationMetrics,
    StoryEvaluationResult,
)
from src.story_evaluation.models import (
    StepResult,
    StepReviewerOutput,
    StepTrace,
    StoryDirectorOutput,
    StoryDirectorPlan,
    StoryStep,
)
from src.story_evaluation.pipeline import PipelineResult
from src.story_evaluation.structured_generation import StructuredGenerationError

pytestmark = pytest.mark.medium


PLAN = StoryDirectorPlan(
    story="Reset works",
    steps=[
        StoryStep(id="step-1-request", index=0, description="Request a reset"),
        StoryStep(id="step-2-email", index=1, description="Email is sent"),
    ],
)
PASS = StepReviewerOutput(result=StepResult.PASS, description="Handler exists")
FAIL = StepReviewerOutput(result=StepResult.FAIL, description="No email sent")


# -----------------------------------------------------------------------------
# Fixtures
# -----------------------------------------------------------------------------


@pytest.fixture
def mock_pipeline():
    pipeline = Mock()
    pipeline.run = AsyncMock()
    return pipeline


@pytest.fixture
def builder(mock_pipeline):
    return Mock(return_value=mock_pipeline)


@pytest.fixture
def client(builder):
    app.dependency_overrides[get_pipeline_builder] = lambda: builder

    yield TestClient(app)

    app.dependency_overrides.clear()


def request_body(checkout_path, **overrides):
    body = {
        "story_id": "story-1",
        "story_text": "Reset works",
        "commit_shas": ["c2", "c1"],
        "checkout_path": str(checkout_path),
    }
    body.update(overrides)
    return body


def pipeline_result():
    output = StoryDirectorOutput(
        result=StepResult.FAIL,
        story="Reset works",
        steps=[PASS, FAIL],
        trace=StepTrace(summary="Step 1 (pass): \nStep 2 (fail): "),
    )
    evaluation = StoryEvaluationResult(
        plan=PLAN,
        reviewed_steps=[
            ReviewedStep(step=PLAN.steps[0], evaluation=PASS, cached=True),
            ReviewedStep(step=PLAN.steps[1], evaluation=FAIL, tool_calls=3, steps_executed=4),
        ],
        output=output,
        plan_steps_executed=1,
        metrics=StoryEvaluationMetrics(total_reviewer_tool_calls=3, total_reviewer_iterations=4),
    )
    cache_hit = Mock()
    cache_hit.commit_sha = "c1"
    return PipelineResult(
        evaluation=evaluation,
        cache_data=CacheData(),
        cache_hit=cache_hit,
        validation=ValidationResult(is_valid=True),
        reused_steps=[0],
        saved=True,
    )


# -----------------------------------------------------------------------------
# Tests
# -----------------------------------------------------------------------------


class TestEvaluateStory:
    def test_complete_run(self, client, builder, mock_pipeline, tmp_path):
        mock_pipeline.run.return_value = pipeline_result()

        response = client.post(
            "/api/evaluations",
            json=request_body(tmp_path, invalidation_strategy="assertion", run_id="run-9"),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "complete"
        assert data["output"]["result"] == "fail"
        assert [s["id"] for s in data["plan"]] == ["step-1-request", "step-2-email"]
        assert data["reused_steps"] == [0]
        assert data["cache_hit_commit"] == "c1"
        assert data["cache_saved"] is True
        assert data["total_reviewer_tool_calls"] == 3

        builder.assert_called_once_with(tmp_path, "assertion")
        story = mock_pipeline.run.call_args.args[0]
        assert (story.id, story.text) == ("story-1", "Reset works")
        assert mock_pipeline.run.call_args.kwargs == {
            "branch_name": "main",
            "commit_shas": ["c2", "c1"],
            "run_id": "run-9",
        }

    def test_incomplete_run_returns_finished_steps(self, client, mock_pipeline, tmp_path):
        mock_pipeline.run.side_effect = StoryEvaluationError(
            "story-1",
            PLAN,
            [ReviewedStep(step=PLAN.steps[0], evaluation=PASS)],
            PLAN.steps[1],
            StructuredGenerationError("step-reviewer returned non-JSON output"),
        )

        response = client.post("/api/evaluations", json=request_body(tmp_path))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "incomplete"
        assert data["output"] is None
        assert [s["description"] for s in data["completed_steps"]] == ["Handler exists"]
        assert "step 2 (step-2-email)" in data["error"]

    def test_decomposition_failure(self, client, mock_pipeline, tmp_path):
        mock_pipeline.run.side_effect = StoryDecompositionError(
            "story-1", StructuredGenerationError("duplicate step ids: a")
        )

        response = client.post("/api/evaluations", json=request_body(tmp_path))

        assert response.status_code == 422
        assert response.json()["detail"] == "Could not decompose story: duplicate step ids: a"

    def test_missing_checkout(self, client, builder, tmp_path):
        response = client.post("/api/evaluations", json=request_body(tmp_path / "missing"))

        assert response.status_code == 400
        builder.assert_not_called()

    @pytest.mark.parametrize("overrides", [
        {"commit_shas": []},
        {"story_text": ""},
        {"invalidation_strategy": "commit"},
    ])
    def test_request_validation(self, client, tmp_path, overrides):
        response = client.post("/api/evaluations", json=request_body(tmp_path, **overrides))

        assert response.status_code == 422
