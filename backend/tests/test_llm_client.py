"""Unit tests for the completion client: mocks at the SDK level."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest
from claude_agent_sdk import (
    AssistantMessage,
    CLIConnectionError,
    CLINotFoundError,
    ProcessError,
    ResultMessage,
    TextBlock,
)

from clinical_rag.errors import CompletionFailure
from clinical_rag.llm.client import ClaudeCompletionClient

# --- Helpers ---


def _make_result_message(*, result=None, is_error=False):
    msg = MagicMock()
    msg.result = result
    msg.is_error = is_error
    msg.duration_ms = 1200
    msg.total_cost_usd = 0.002
    msg.__class__ = ResultMessage
    return msg


def _make_assistant_message(*texts: str):
    msg = MagicMock()
    msg.content = [TextBlock(text=t) for t in texts]
    msg.__class__ = AssistantMessage
    return msg


async def _async_iter(items):
    for item in items:
        yield item


async def _raising_iter(error):
    raise error
    yield  # pragma: no cover


def _client() -> ClaudeCompletionClient:
    return ClaudeCompletionClient("claude-sonnet-4-5")


# --- Tests ---


@patch("clinical_rag.llm.client.query")
async def test_returns_result_text(mock_query):
    mock_query.return_value = _async_iter(
        [_make_assistant_message("draft"), _make_result_message(result='{"ok": true}')]
    )

    assert await _client().complete("system", "user") == '{"ok": true}'


@patch("clinical_rag.llm.client.query")
async def test_sends_single_turn_without_tools(mock_query):
    mock_query.return_value = _async_iter([_make_result_message(result="ok")])

    await _client().complete("You are a clinician.", "Summarize.")

    kwargs = mock_query.call_args.kwargs
    assert kwargs["prompt"] == "Summarize."
    options = kwargs["options"]
    assert options.system_prompt == "You are a clinician."
    assert options.model == "claude-sonnet-4-5"
    assert options.max_turns == 1
    assert options.allowed_tools == []


@patch("clinical_rag.llm.client.query")
async def test_falls_back_to_text_blocks(mock_query):
    mock_query.return_value = _async_iter(
        [_make_assistant_message("part one, ", "part two"), _make_result_message(result=None)]
    )

    assert await _client().complete("system", "user") == "part one, part two"


@patch("clinical_rag.llm.client.query")
async def test_error_result(mock_query):
    mock_query.return_value = _async_iter(
        [_make_result_message(result="overloaded", is_error=True)]
    )

    with pytest.raises(CompletionFailure, match="overloaded") as exc_info:
        await _client().complete("system", "user")
    assert exc_info.value.code == "LLM_UNAVAILABLE"


@patch("clinical_rag.llm.client.query")
async def test_no_text(mock_query):
    mock_query.return_value = _async_iter([_make_result_message(result="")])

    with pytest.raises(CompletionFailure, match="did not return any text"):
        await _client().complete("system", "user")


@pytest.mark.parametrize(
    ("error", "message"),
    [
        (CLINotFoundError("missing"), "CLI not found"),
        (CLIConnectionError("refused"), "Failed to connect"),
        (ProcessError("crashed", exit_code=1), "process failed"),
    ],
)
@patch("clinical_rag.llm.client.query")
async def test_sdk_errors_mapped(mock_query, error, message):
    mock_query.return_value = _raising_iter(error)

    with pytest.raises(CompletionFailure, match=message) as exc_info:
        await _client().complete("system", "user")
    assert exc_info.value.__cause__ is error
