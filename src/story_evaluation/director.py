"""Story Director agent.

Decomposes a story into an ordered list of atomic, independently verifiable
steps. The director only reasons about intent: it gets no repository tools.
A plan that does not validate fails the run; there is no partial plan.
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from src.story_evaluation.models import Story, StoryDirectorPlan
from src.story_evaluation.prompts import STORY_DIRECTOR_SYSTEM, STORY_DIRECTOR_USER
from src.story_evaluation.structured_generation import (
    default_model,
    generate_structured,
    step_budget,
)

env_path = Path(__file__).parent.parent.parent / ".env"
if env_path.exists():
    load_dotenv(env_path)

logger = logging.getLogger(__name__)

DEFAULT_DIRECTOR_MAX_STEPS = 10


@dataclass
class StoryDirectorConfig:
    """Configuration for the Story Director."""

    model: str = field(default_factory=default_model)
    temperature: float = 0.2
    max_steps: Optional[int] = DEFAULT_DIRECTOR_MAX_STEPS


@dataclass
class DirectorPlanResult:
    """A validated plan plus how many model calls it took."""

    plan: StoryDirectorPlan
    steps_executed: int


class StoryDirectorAgent:
    """Agent that turns story text into a StoryDirectorPlan."""

    def __init__(
        self,
        openai_client=None,
        config: Optional[StoryDirectorConfig] = None,
    ):
        self.config = config or StoryDirectorConfig()
        if openai_client is not None:
            self.client = openai_client
        else:
            from openai import OpenAI

            self.client = OpenAI(api_key=os.getenv("OPENAI_API_KEY"))

    @property
    def step_budget(self) -> int:
        return step_budget(self.config.max_steps, DEFAULT_DIRECTOR_MAX_STEPS)

    def plan(self, story: Story) -> DirectorPlanResult:
        """Decompose a story into steps.

        Raises:
            StructuredGenerationError: If the model's plan is not valid JSON,
                has no steps, or repeats a step id.
        """
        logger.info("Planning story %s", story.id)

        result = generate_structured(
            self.client,
            model=self.config.model,
            instructions=STORY_DIRECTOR_SYSTEM,
            prompt=STORY_DIRECTOR_USER.format(story=story.text),
            output_model=StoryDirectorPlan,
            max_steps=self.step_budget,
            temperature=self.config.temperature,
            agent_name="story-director",
        )

        logger.info(
            "Story %s decomposed into %d steps: %s",
            story.id,
            len(result.output.steps),
            ", ".join(step.id for step in result.output.steps),
        )
        return DirectorPlanResult(plan=result.output, steps_executed=result.steps_executed)
