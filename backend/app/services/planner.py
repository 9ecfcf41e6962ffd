"""
Planner and synthesizer: the two LLM calls around step dispatch.
"""
from __future__ import annotations

import json
import logging
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from app.providers.base import ProviderError
from app.providers.llm_provider import OpenAICompatibleProvider
from app.schemas.agent import Plan

logger = logging.getLogger(__name__)

_PLANNER_SYSTEM = """You are an AI agent orchestrator for a creator operations platform. You have access to the following tools:

{tools}

Your job is to create a multi-step execution plan to accomplish the user's request. Each step should be a tool invocation with specific parameters.

Return your plan as a JSON object:
{{"steps": [{{"tool": "tool_name", "input": {{...}}, "description": "What this step accomplishes"}}]}}"""

_SYNTHESIS_SYSTEM = (
    "You are an AI assistant. Summarize the execution results into a clear, "
    "actionable response for the user."
)


def parse_plan(content: str) -> tuple[Plan, Any]:
    """Accept ``{"steps": [...]}`` or a bare step array."""
    try:
        raw = json.loads(content)
    except (TypeError, json.JSONDecodeError) as exc:
        raise ProviderError(f"Planner returned invalid JSON: {exc}") from exc
    try:
        if isinstance(raw, list):
            return Plan(steps=raw), raw
        if isinstance(raw, dict):
            return Plan.model_validate(raw), raw
    except PydanticValidationError as exc:
        raise ProviderError(f"Planner returned a malformed plan: {exc.error_count()} errors") from exc
    raise ProviderError("Planner returned a malformed plan")


class Planner:
    def __init__(self, llm: OpenAICompatibleProvider) -> None:
        self.llm = llm

    def plan(self, user_input: str, enabled_tools: list[str], system_prompt: str | None = None) -> tuple[Plan, Any]:
        tools = "\n".join(f"- {t}" for t in enabled_tools) if enabled_tools else "- (no tools enabled)"
        system = _PLANNER_SYSTEM.format(tools=tools)
        if system_prompt:
            system = f"{system_prompt}\n\n{system}"
        result = self.llm.chat(user_input, system=system, json_mode=True)
        return parse_plan(result["content"])

    def synthesize(self, user_input: str, execution_results: list[dict[str, Any]]) -> str:
        prompt = (
            f"Original request: {user_input}\n\n"
            f"Execution results:\n{json.dumps(execution_results, indent=2, default=str)}\n\n"
            "Provide a natural language summary of what was accomplished."
        )
        result = self.llm.chat(prompt, system=_SYNTHESIS_SYSTEM)
        return result["content"]
