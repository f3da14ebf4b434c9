"""Models for story evaluation.

These are output validation models for the director and reviewer agents:
whatever the model returns must parse into them or the run fails.
"""

import re
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from src.evidence_cache.evidence import format_evidence_reference, parse_evidence_reference

_STEP_ID_RE = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"


class StepResult(str, Enum):
    """Verdict for one step, and for a story as a whole."""

    PASS = "pass"
    FAIL = "fail"
    NOT_IMPLEMENTED = "not-implemented"
    BLOCKED = "blocked"

    @property
    def rank(self) -> int:
        """Aggregation priority; the highest-ranked step result wins."""
        return _RESULT_RANK[self]


# fail > blocked > not-implemented > pass
_RESULT_RANK = {
    StepResult.PASS: 0,
    StepResult.NOT_IMPLEMENTED: 1,
    StepResult.BLOCKED: 2,
    StepResult.FAIL: 3,
}


class Story(BaseModel):
    """A natural-language description of expected behavior plus its stable id."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    text: str = Field(min_length=1)


class StoryStep(BaseModel):
    """One atomic, independently verifiable sub-claim of a story."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(pattern=_STEP_ID_RE, description="kebab-case slug, e.g. step-1-send-request")
    index: int = Field(ge=0)
    description: str = Field(min_length=1)


class CodeSnippet(BaseModel):
    """A cited piece of repository code.

    Lines are 1-based, inclusive. A snippet without lines cites the whole
    file.
    """

    file_path: str = Field(min_length=1)
    start_line: Optional[int] = Field(default=None, ge=1)
    end_line: Optional[int] = Field(default=None, ge=1)
    content: str = ""
    note: Optional[str] = None

    @model_validator(mode="after")
    def _ordered_lines(self):
        if self.start_line is None:
            if self.end_line is not None:
                raise ValueError("end_line given without start_line")
            return self
        if self.end_line is None:
            self.end_line = self.start_line
        elif self.end_line < self.start_line:
            raise ValueError(
                f"end_line {self.end_line} is before start_line {self.start_line}"
            )
        return self

    @property
    def reference(self) -> str:
        """Evidence reference form: path:start-end, or path for a whole file."""
        return format_evidence_reference(self.file_path, self.start_line, self.end_line)

    @classmethod
    def from_reference(cls, reference: str, content: str = "", note: Optional[str] = None) -> "CodeSnippet":
        """Rebuild a snippet from a path or path:start-end reference.

        A bare path or an unparseable range cites the whole file.
        """
        path, line_range = parse_evidence_reference(reference)
        start = end = None
        match = re.fullmatch(r"(\d+)(?:-(\d+))?", (line_range or "").strip())
        if match:
            start = max(1, int(match.group(1)))
            end = max(start, int(match.group(2) or start))
        return cls(file_path=path, start_line=start, end_line=end, content=content, note=note)


class StepTrace(BaseModel):
    """How an agent reached its answer."""

    summary: str = ""
    reasoning: List[str] = Field(default_factory=list)
    search_queries: List[str] = Field(default_factory=list)


class StepReviewerOutput(BaseModel):
    """The reviewer's verdict for one step."""

    result: StepResult
    description: str = Field(min_length=1)
    code: List[CodeSnippet] = Field(default_factory=list)
    trace: StepTrace = Field(default_factory=StepTrace)


class StoryDirectorPlan(BaseModel):
    """Ordered decomposition of a story into steps.

    Steps are sorted by the index the director gave them and then
    renumbered 0..n-1, so index always equals plan position.
    """

    story: str = Field(min_length=1)
    steps: List[StoryStep] = Field(min_length=1)
    trace: StepTrace = Field(default_factory=StepTrace)

    @model_validator(mode="after")
    def _unique_ordered_steps(self):
        ids = [step.id for step in self.steps]
        duplicates = sorted({step_id for step_id in ids if ids.count(step_id) > 1})
        if duplicates:
            raise ValueError(f"duplicate step ids: {', '.join(duplicates)}")

        indexes = [step.index for step in self.steps]
        if len(set(indexes)) != len(indexes):
            raise ValueError("duplicate step indexes")

        ordered = sorted(self.steps, key=lambda step: step.index)
        self.steps = [
            step if step.index == position else step.model_copy(update={"index": position})
            for position, step in enumerate(ordered)
        ]
        return self


class StoryDirectorOutput(BaseModel):
    """Story-level verdict with full per-step detail."""

    result: StepResult
    story: str
    steps: List[StepReviewerOutput]
    trace: StepTrace


class ReviewerInput(BaseModel):
    """What the reviewer sees for one step."""

    step: StoryStep
    prior_steps: List[StepReviewerOutput] = Field(default_factory=list)
