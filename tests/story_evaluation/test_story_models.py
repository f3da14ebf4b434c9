"""Tests for story evaluation models."""

import pytest
from pydantic import ValidationError

from src.story_evaluation.models import (
    CodeSnippet,
    StepResult,
    StepReviewerOutput,
    StoryDirectorPlan,
    StoryStep,
)


def _step(step_id, index, description="Something happens"):
    return {"id": step_id, "index": index, "description": description}


class TestStepResult:
    def test_rank_order(self):
        ranked = sorted(StepResult, key=lambda result: result.rank)
        assert ranked == [
            StepResult.PASS,
            StepResult.NOT_IMPLEMENTED,
            StepResult.BLOCKED,
            StepResult.FAIL,
        ]

    def test_wire_values(self):
        assert StepResult("not-implemented") is StepResult.NOT_IMPLEMENTED

    def test_unknown_result_rejected(self):
        with pytest.raises(ValidationError):
            StepReviewerOutput(result="maybe", description="unsure")


class TestStoryStep:
    @pytest.mark.parametrize("step_id", ["step-1-send-request", "reset", "a1-b2"])
    def test_kebab_ids_accepted(self, step_id):
        assert StoryStep(id=step_id, index=0, description="x").id == step_id

    @pytest.mark.parametrize("step_id", ["Step-1", "step_1", "-step", "step--1", ""])
    def test_other_ids_rejected(self, step_id):
        with pytest.raises(ValidationError):
            StoryStep(id=step_id, index=0, description="x")

    def test_negative_index_rejected(self):
        with pytest.raises(ValidationError):
            StoryStep(id="s", index=-1, description="x")


class TestStoryDirectorPlan:
    def test_requires_at_least_one_step(self):
        with pytest.raises(ValidationError):
            StoryDirectorPlan(story="A story", steps=[])

    def test_duplicate_ids_rejected(self):
        with pytest.raises(ValidationError, match="duplicate step ids: send"):
            StoryDirectorPlan.model_validate({
                "story": "A story",
                "steps": [_step("send", 0), _step("send", 1)],
            })

    def test_duplicate_indexes_rejected(self):
        with pytest.raises(ValidationError, match="duplicate step indexes"):
            StoryDirectorPlan.model_validate({
                "story": "A story",
                "steps": [_step("a", 0), _step("b", 0)],
            })

    def test_sorted_and_renumbered(self):
        plan = StoryDirectorPlan.model_validate({
            "story": "A story",
            "steps": [_step("third", 7), _step("first", 1), _step("second", 3)],
        })

        assert [step.id for step in plan.steps] == ["first", "second", "third"]
        assert [step.index for step in plan.steps] == [0, 1, 2]

    def test_trace_defaults(self):
        plan = StoryDirectorPlan.model_validate({"story": "A story", "steps": [_step("a", 0)]})

        assert plan.trace.summary == ""
        assert plan.trace.search_queries == []


class TestCodeSnippet:
    def test_reference(self):
        snippet = CodeSnippet(file_path="src/auth/reset.ts", start_line=10, end_line=40)
        assert snippet.reference == "src/auth/reset.ts:10-40"

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            CodeSnippet(file_path="a.ts", start_line=5, end_line=4)

    def test_lines_are_one_based(self):
        with pytest.raises(ValidationError):
            CodeSnippet(file_path="a.ts", start_line=0, end_line=1)

    def test_from_reference(self):
        snippet = CodeSnippet.from_reference("src/auth/reset.ts:10-40")

        assert (snippet.file_path, snippet.start_line, snippet.end_line) == ("src/auth/reset.ts", 10, 40)

    def test_from_reference_single_line(self):
        snippet = CodeSnippet.from_reference("a.ts:7")
        assert (snippet.start_line, snippet.end_line) == (7, 7)

    @pytest.mark.parametrize("reference", ["a.ts", "a.ts:", "a.ts:abc"])
    def test_from_reference_without_range_cites_whole_file(self, reference):
        snippet = CodeSnippet.from_reference(reference)

        assert (snippet.file_path, snippet.start_line, snippet.end_line) == ("a.ts", None, None)
        assert snippet.reference == "a.ts"

    def test_start_without_end_is_single_line(self):
        snippet = CodeSnippet(file_path="a.ts", start_line=7)
        assert snippet.reference == "a.ts:7-7"

    def test_end_without_start_rejected(self):
        with pytest.raises(ValidationError):
            CodeSnippet(file_path="a.ts", end_line=4)
