from __future__ import annotations

from typing import Any, Dict, List

import pytest

from agent_core import AgentState
from llm_methods import TextDelta, ToolCall


class ScriptedModel:
    """Stands in for generate_step: each call replays the next scripted step."""

    def __init__(self, steps: List[List[Any]], *, repeat_last: bool = False) -> None:
        self.steps = list(steps)
        self.repeat_last = repeat_last
        self.calls: List[Dict[str, Any]] = []

    def __call__(self, messages, system_prompt, **kwargs):
        self.calls.append({"messages": list(messages), "system_prompt": system_prompt, **kwargs})
        index = len(self.calls) - 1
        if index >= len(self.steps):
            if not self.repeat_last:
                raise AssertionError("model called more times than scripted")
            index = len(self.steps) - 1
        usage_callback = kwargs.get("usage_callback")
        if usage_callback:
            usage_callback({"input_tokens": 10, "output_tokens": 5})
        for event in self.steps[index]:
            yield event


def text(value: str) -> TextDelta:
    return TextDelta(value)


def call(name: str, call_id: str = "call_1", **arguments: Any) -> ToolCall:
    return ToolCall(id=call_id, name=name, arguments=arguments)


@pytest.fixture
def make_state():
    def _make(steps, **kwargs) -> AgentState:
        model = ScriptedModel(steps, repeat_last=kwargs.pop("repeat_last", False))
        return AgentState(
            model=model,
            on_assistant_chunk=lambda chunk: None,
            on_status=lambda msg: None,
            **kwargs,
        )

    return _make
