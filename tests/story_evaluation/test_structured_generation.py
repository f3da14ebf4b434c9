"""Tests for the bounded tool-use loop.

Uses a mock OpenAI client throughout; no real LLM calls.
"""

import json
from unittest.mock import MagicMock

import pytest
from pydantic import BaseModel

from src.story_evaluation.structured_generation import (
    StructuredGenerationError,
    generate_structured,
    step_budget,
)


class Answer(BaseModel):
    verdict: str
    count: int


TOOLS = [{"type": "function", "function": {"name": "lookup", "parameters": {"type": "object"}}}]


# ============================================================================
# Helpers
# ============================================================================


def _content_response(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.choices[0].message.tool_calls = None
    return response


def _json_response(payload):
    return _content_response(json.dumps(payload))


def _tool_response(*calls):
    response = MagicMock()
    response.choices = [MagicMock()]
    message = response.choices[0].message
    message.content = None
    message.tool_calls = []
    for call_id, name, arguments in calls:
        call = MagicMock()
        call.id = call_id
        call.function.name = name
        call.function.arguments = arguments
        message.tool_calls.append(call)
    return response


def _client(*responses):
    client = MagicMock()
    client.chat.completions.create.side_effect = list(responses)
    return client


def _run(client, max_steps=4, tools=None, tool_handler=None):
    return generate_structured(
        client,
        model="test-model",
        instructions="system",
        prompt="user",
        output_model=Answer,
        max_steps=max_steps,
        tools=tools,
        tool_handler=tool_handler,
        agent_name="test-agent",
    )


# ============================================================================
# Budget
# ============================================================================


class TestStepBudget:
    @pytest.mark.parametrize("max_steps,expected", [(10, 11), (3, 4), (0, 4), (1, 4), (12, 13)])
    def test_budget_is_at_least_four(self, max_steps, expected):
        assert step_budget(max_steps, default=10) == expected

    def test_none_uses_default(self):
        assert step_budget(None, default=12) == 13


# ============================================================================
# Loop behaviour
# ============================================================================


class TestGenerateStructured:
    def test_direct_answer(self):
        client = _client(_json_response({"verdict": "ok", "count": 2}))

        result = _run(client)

        assert result.output == Answer(verdict="ok", count=2)
        assert result.steps_executed == 1
        assert result.tool_calls == 0

    def test_request_shape_without_tools(self):
        client = _client(_json_response({"verdict": "ok", "count": 2}))

        _run(client)

        kwargs = client.chat.completions.create.call_args.kwargs
        assert kwargs["model"] == "test-model"
        assert kwargs["response_format"] == {"type": "json_object"}
        assert kwargs["messages"][0] == {"role": "system", "content": "system"}
        assert kwargs["messages"][1] == {"role": "user", "content": "user"}
        assert "tools" not in kwargs

    def test_tool_calls_are_executed_and_fed_back(self):
        client = _client(
            _tool_response(("call-1", "lookup", '{"q": "a"}'), ("call-2", "lookup", '{"q": "b"}')),
            _json_response({"verdict": "ok", "count": 1}),
        )
        handler = MagicMock(side_effect=lambda name, args: f"result for {args}")

        result = _run(client, tools=TOOLS, tool_handler=handler)

        assert result.tool_calls == 2
        assert result.steps_executed == 2
        assert handler.call_count == 2

        messages = client.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert messages[2]["role"] == "assistant"
        assert [c["id"] for c in messages[2]["tool_calls"]] == ["call-1", "call-2"]
        assert messages[3] == {"role": "tool", "tool_call_id": "call-1", "content": 'result for {"q": "a"}'}
        assert messages[4]["tool_call_id"] == "call-2"

    def test_last_step_disables_tools(self):
        client = _client(
            _tool_response(("c1", "lookup", "{}")),
            _tool_response(("c2", "lookup", "{}")),
            _tool_response(("c3", "lookup", "{}")),
            _json_response({"verdict": "ok", "count": 0}),
        )

        _run(client, max_steps=4, tools=TOOLS, tool_handler=lambda name, args: "{}")

        calls = client.chat.completions.create.call_args_list
        assert all("tool_choice" not in call.kwargs for call in calls[:3])
        assert calls[3].kwargs["tool_choice"] == "none"
        assert calls[3].kwargs["tools"] == TOOLS

    def test_budget_exhausted(self):
        client = _client(*[_tool_response((f"c{i}", "lookup", "{}")) for i in range(4)])

        with pytest.raises(StructuredGenerationError, match="step budget of 4") as exc_info:
            _run(client, max_steps=4, tools=TOOLS, tool_handler=lambda name, args: "{}")

        assert exc_info.value.steps_executed == 4
        assert exc_info.value.tool_calls == 4
        assert client.chat.completions.create.call_count == 4

    def test_non_json_answer_fails(self):
        client = _client(_content_response("I think it passes"))

        with pytest.raises(StructuredGenerationError, match="non-JSON") as exc_info:
            _run(client)

        assert exc_info.value.steps_executed == 1

    def test_schema_mismatch_fails(self):
        client = _client(_json_response({"verdict": "ok"}))

        with pytest.raises(StructuredGenerationError, match="Answer validation"):
            _run(client)

    def test_tool_call_without_handler_reports_error(self):
        client = _client(
            _tool_response(("c1", "lookup", "{}")),
            _json_response({"verdict": "ok", "count": 0}),
        )

        _run(client, tools=TOOLS)

        messages = client.chat.completions.create.call_args_list[1].kwargs["messages"]
        assert json.loads(messages[-1]["content"]) == {"error": "Unknown tool: lookup"}
