"""Step Reviewer agent.

Verifies one step against the repository with two search tools, knowing
the outcomes of every earlier step (a step may legitimately come back
"blocked" when a prerequisite failed). The agent is told to cite only
code its tools returned; that is a prompt-level contract, not something
the output model can check.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from src.checkout.search import RepositorySearch
from src.story_evaluation.models import (
    ReviewerInput,
    Story,
    StepReviewerOutput,
    StoryStep,
)
from src.story_evaluation.prompts import (
    NO_PRIOR_STEPS,
    PRIOR_STEP_OUTCOME,
    STEP_REVIEWER_SYSTEM,
    STEP_REVIEWER_USER,
)
from src.story_evaluation.structured_generation import (
    default_model,
    generate_structured,
    step_budget,
)
from src.story_evaluation.tools import REVIEWER_TOOLS, ReviewerToolbox

env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

logger = logging.getLogger(__name__)

DEFAULT_REVIEWER_MAX_STEPS = 12


@dataclass
class StepReviewerConfig:
    """Configuration for the Step Reviewer."""

    model: str = field(default_factory=default_model)
    temperature: float = 0.2
    max_steps: Optional[int] = DEFAULT_REVIEWER_MAX_STEPS


@dataclass
class StepReviewerResult:
    """Reviewer verdict plus loop counters for observability."""

    output: StepReviewerOutput
    tool_calls: int
    steps_executed: int


def build_reviewer_prompt(story: Story, reviewer_input: ReviewerInput) -> str:
    """User prompt for one step: story, current step, prior outcomes."""
    prior = [
        PRIOR_STEP_OUTCOME.format(
            step_number=number,
            description=outcome.description,
            result=outcome.result.value,
        )
        for number, outcome in enumerate(reviewer_input.prior_steps, start=1)
    ]
    return STEP_REVIEWER_USER.format(
        story=story.text,
        step_number=reviewer_input.step.index + 1,
        step_description=reviewer_input.step.description,
        prior_outcomes="\n".join(prior) if prior else NO_PRIOR_STEPS,
    )


class StepReviewerAgent:
    """Agent that verifies one story step against a checkout."""

    def __init__(
        self,
        openai_client=None,
        search: Optional[RepositorySearch] = None,
        config: Optional[StepReviewerConfig] = None,
    ):
        if search is None:
            raise ValueError("StepReviewerAgent requires a RepositorySearch")
        self.search = search
        self.config = config or StepReviewerConfig()
        if openai_client is not None:
            self.client = openai_client
        else:
            from openai import OpenAI

            self.client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"))

    @property
    def step_budget(self) -> int:
        return step_budget(self.config.max_steps, DEFAULT_REVIEWER_MAX_STEPS)

    def review(
        self,
        story: Story,
        step: StoryStep,
        prior_steps: Optional[List[StepReviewerOutput]] = None,
    ) -> StepReviewerResult:
        """Review one step.

        Args:
            story: The story being evaluated
            step: The step to verify
            prior_steps: Outputs for every earlier step, in plan order

        Raises:
            StructuredGenerationError: If the verdict is not valid JSON or
                does not match StepReviewerOutput.
        """
        reviewer_input = ReviewerInput(step=step, prior_steps=prior_steps or [])
        toolbox = ReviewerToolbox(self.search)

        logger.info("Reviewing step %d (%s) of story %s", step.index + 1, step.id, story.id)

        result = generate_structured(
            self.client,
            model=self.config.model,
            instructions=STEP_REVIEWER_SYSTEM,
            prompt=build_reviewer_prompt(story, reviewer_input),
            output_model=StepReviewerOutput,
            max_steps=self.step_budget,
            tools=REVIEWER_TOOLS,
            tool_handler=toolbox,
            temperature=self.config.temperature,
            agent_name="step-reviewer",
        )

        output = result.output
        missing = [q for q in toolbox.queries if q not in output.trace.search_queries]
        if missing:
            trace = output.trace.model_copy(
                update={"search_queries": output.trace.search_queries + missing}
            )
            output = output.model_copy(update={"trace": trace})

        logger.info(
            "Step %s: %s (%d tool calls, %d iterations)",
            step.id, output.result.value, result.tool_calls, result.steps_executed,
        )
        return StepReviewerResult(
            output=output,
            tool_calls=result.tool_calls,
            steps_executed=result.steps_executed,
        )
