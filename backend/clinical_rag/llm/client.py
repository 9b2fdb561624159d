"""Chat-completion client: one system message + one user message -> text."""

from __future__ import annotations

import logging
from typing import Protocol

from claude_agent_sdk import (
    AssistantMessage,
    CLIConnectionError,
    CLIJSONDecodeError,
    CLINotFoundError,
    ClaudeAgentOptions,
    ProcessError,
    ResultMessage,
    TextBlock,
    query,
)

from clinical_rag.errors import CompletionFailure
from clinical_rag.llm.json_extract import preview

logger = logging.getLogger(__name__)


class CompletionProvider(Protocol):
    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


class ClaudeCompletionClient:
    """Single-turn completions through the Claude Agent SDK.

    No tools are exposed; the agent answers from the prompt alone, so each
    call is one request/response round-trip.
    """

    def __init__(self, model: str, *, max_turns: int = 1) -> None:
        self.model = model
        self.max_turns = max_turns

    def _options(self, system_prompt: str) -> ClaudeAgentOptions:
        return ClaudeAgentOptions(
            system_prompt=system_prompt,
            model=self.model,
            max_turns=self.max_turns,
            allowed_tools=[],
            permission_mode="bypassPermissions",
        )

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        logger.debug(
            "LLM request: model=%s prompt=%d chars", self.model, len(user_prompt)
        )
        text_parts: list[str] = []
        result_text: str | None = None
        try:
            async for message in query(
                prompt=user_prompt, options=self._options(system_prompt)
            ):
                if isinstance(message, AssistantMessage):
                    for block in message.content:
                        if isinstance(block, TextBlock):
                            text_parts.append(block.text)
                elif isinstance(message, ResultMessage):
                    logger.debug(
                        "LLM result: duration=%dms cost=$%.4f is_error=%s",
                        message.duration_ms,
                        message.total_cost_usd or 0,
                        message.is_error,
                    )
                    if message.is_error:
                        raise CompletionFailure(
                            f"Agent returned an error: {message.result or 'unknown'}"
                        )
                    result_text = message.result
        except CompletionFailure:
            raise
        except CLINotFoundError as e:
            raise CompletionFailure(
                "Claude Code CLI not found. Ensure it is installed."
            ) from e
        except CLIConnectionError as e:
            raise CompletionFailure(f"Failed to connect to Claude CLI: {e}") from e
        except ProcessError as e:
            raise CompletionFailure(f"Agent process failed: {e}") from e
        except CLIJSONDecodeError as e:
            raise CompletionFailure(f"Failed to decode agent stream: {e}") from e

        text = result_text if result_text else "".join(text_parts)
        if not text:
            raise CompletionFailure("Agent did not return any text")
        logger.debug("LLM response (%d chars): %s", len(text), preview(text))
        return text
