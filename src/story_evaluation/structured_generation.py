"""Bounded tool-use loop that ends in a schema-validated JSON answer.

The loop:
1. Send instructions + prompt (+ tool definitions) to the model
2. If the response contains tool_calls, execute each one and append the
   results to the conversation
3. Otherwise parse the content as JSON and validate it against the output
   model
4. Stop after `max_steps` model calls; the last call is made with tools
   disabled so the model has to answer

A response that is not JSON or does not validate ends the run with
StructuredGenerationError. There is no best-effort fallback.
"""

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Generic, List, Optional, Type, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)

# Called with (tool name, raw JSON arguments); returns the tool result text
ToolHandler = Callable[[str, str], str]

MIN_STEP_BUDGET = 4
DEFAULT_MODEL = "gpt-4o-mini"


class StructuredGenerationError(Exception):
    """Raised when the model does not produce a valid answer within budget."""

    def __init__(self, message: str, steps_executed: int = 0, tool_calls: int = 0):
        self.steps_executed = steps_executed
        self.tool_calls = tool_calls
        super().__init__(message)


@dataclass
class GenerationResult(Generic[T]):
    """Validated output plus loop counters."""

    output: T
    tool_calls: int
    steps_executed: int


def step_budget(max_steps: Optional[int], default: int) -> int:
    """Model-call budget for an agent: max(4, max_steps + 1)."""
    configured = default if max_steps is None else max_steps
    return max(MIN_STEP_BUDGET, configured + 1)


def default_model() -> str:
    """Model name from STORY_EVAL_MODEL, falling back to DEFAULT_MODEL."""
    return os.getenv("STORY_EVAL_MODEL") or DEFAULT_MODEL


def _assistant_message(message) -> Dict[str, Any]:
    return {
        "role": "assistant",
        "content": message.content or "",
        "tool_calls": [
            {
                "id": call.id,
                "type": "function",
                "function": {
                    "name": call.function.name,
                    "arguments": call.function.arguments,
                },
            }
            for call in message.tool_calls
        ],
    }


def generate_structured(
    client,
    *,
    model: str,
    instructions: str,
    prompt: str,
    output_model: Type[T],
    max_steps: int,
    tools: Optional[List[Dict[str, Any]]] = None,
    tool_handler: Optional[ToolHandler] = None,
    temperature: float = 0.2,
    agent_name: str = "agent",
) -> GenerationResult[T]:
    """Run the tool loop and return a validated `output_model` instance.

    Args:
        client: OpenAI client (chat.completions.create)
        model: Model name
        instructions: System prompt
        prompt: User prompt
        output_model: Pydantic model the final answer must validate against
        max_steps: Maximum number of model calls
        tools: OpenAI function tool definitions, if any
        tool_handler: Executes a tool call; required when tools are given
        temperature: Sampling temperature
        agent_name: Used in log lines

    Raises:
        StructuredGenerationError: Non-JSON answer, schema failure, or the
            budget ran out while the model was still calling tools.
    """
    messages: List[Dict[str, Any]] = [
        {"role": "system", "content": instructions},
        {"role": "user", "content": prompt},
    ]
    total_tool_calls = 0

    for step in range(1, max_steps + 1):
        request: Dict[str, Any] = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "response_format": {"type": "json_object"},
        }
        if tools:
            request["tools"] = tools
            if step == max_steps:
                request["tool_choice"] = "none"

        response = client.chat.completions.create(**request)
        message = response.choices[0].message

        if message.tool_calls:
            messages.append(_assistant_message(message))
            for call in message.tool_calls:
                total_tool_calls += 1
                if tool_handler is None:
                    result = json.dumps({"error": f"Unknown tool: {call.function.name}"})
                else:
                    result = tool_handler(call.function.name, call.function.arguments)
                messages.append({
                    "role": "tool",
                    "tool_call_id": call.id,
                    "content": result,
                })
            logger.debug(
                "%s step %d/%d: %d tool call(s)",
                agent_name, step, max_steps, len(message.tool_calls),
            )
            continue

        try:
            raw = json.loads(message.content or "")
        except json.JSONDecodeError as e:
            raise StructuredGenerationError(
                f"{agent_name} returned non-JSON output: {e}",
                steps_executed=step,
                tool_calls=total_tool_calls,
            ) from e

        try:
            output = output_model.model_validate(raw)
        except ValidationError as e:
            raise StructuredGenerationError(
                f"{agent_name} output failed {output_model.__name__} validation: {e}",
                steps_executed=step,
                tool_calls=total_tool_calls,
            ) from e

        logger.info(
            "%s finished in %d step(s) with %d tool call(s)",
            agent_name, step, total_tool_calls,
        )
        return GenerationResult(
            output=output,
            tool_calls=total_tool_calls,
            steps_executed=step,
        )

    raise StructuredGenerationError(
        f"{agent_name} exhausted its step budget of {max_steps} without an answer",
        steps_executed=max_steps,
        tool_calls=total_tool_calls,
    )
