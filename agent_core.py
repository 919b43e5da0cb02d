"""
Headless agent core: the bounded model→tool→model loop for one user turn.

Usage:
    from agent_core import AgentState, agent_stream

    state = AgentState(model_provider="OpenAI")
    turn = agent_stream(state, "Write a haiku about autumn")
    for event in turn:
        ...
    turn.finalize()
"""

import sys
from dataclasses import dataclass, field
from typing import Optional

from document_store import DocumentStore
from document_tools import ToolArgumentError, execute_tool
from llm_methods import (
    MAX_STEPS,
    MODEL_PROVIDER,
    REQUEST_TIMEOUT,
    ConversationManager,
    TextDelta,
    ToolCall,
    ToolResult,
    generate_step,
)


SYSTEM_PROMPT = (
    "You are a document agent helping a user write a document. "
    "You are given a document and you are able to manage it as you see fit."
)


# ---------------------------------------------------------------------------
# AgentState — the one session object every call receives
# ---------------------------------------------------------------------------

@dataclass
class AgentState:
    """Document, edit history, transcript and model settings for one session."""

    store: DocumentStore = field(default_factory=DocumentStore)
    conversation: ConversationManager = field(default_factory=ConversationManager)

    # Model
    model_provider: str = MODEL_PROVIDER  # "OpenAI" | "Anthropic"
    model_name: Optional[str] = None  # Explicit model override, e.g. "gpt-4o"
    system_prompt: str = SYSTEM_PROMPT
    request_timeout: float = REQUEST_TIMEOUT

    # Tool rounds allowed per user turn
    max_steps: int = MAX_STEPS

    # Step source: callable(messages, system_prompt, **kwargs) -> iterator of events.
    # Defaults to generate_step; tests swap in a scripted fake.
    model: object = None

    # Callbacks for streaming output (default: print)
    on_assistant_chunk: object = None  # callable(str) -> None
    on_status: object = None  # callable(str) -> None

    # Token usage accumulator (populated per model call)
    usage_log: list = field(default_factory=list)

    def __post_init__(self):
        if self.max_steps < 1:
            raise ValueError(f"max_steps must be at least 1, got {self.max_steps}")
        if self.model is None:
            self.model = generate_step
        if self.on_assistant_chunk is None:
            self.on_assistant_chunk = lambda chunk: print(chunk, end="", flush=True)
        if self.on_status is None:
            self.on_status = lambda msg: print(f"[status] {msg}", file=sys.stderr)

    @property
    def total_usage(self) -> dict:
        """Aggregate token usage across all model calls in this session."""
        totals = {"input_tokens": 0, "output_tokens": 0}
        for u in self.usage_log:
            for k in totals:
                totals[k] += u.get(k, 0)
        return totals


# ---------------------------------------------------------------------------
# One user turn
# ---------------------------------------------------------------------------

class AgentTurn:
    """
    Lazy, single-use stream of step events for one user message.

    Iterating drives the model; each TextDelta and ToolCall is yielded as it
    arrives and each ToolResult right after its tool has run. Once the
    iterator is exhausted, `messages` holds the new assistant/tool messages
    and finalize() appends them to the session transcript.
    """

    def __init__(self, state: AgentState, prompt: str):
        self.state = state
        self.prompt = prompt
        self.messages = []
        self.steps = 0
        self.invocations = 0
        self.done = False
        self._started = False
        self._finalized = False

    def __iter__(self):
        if self._started:
            raise RuntimeError("AgentTurn can only be consumed once")
        self._started = True
        return self._run()

    def _history(self):
        return self.state.conversation.get_messages() + self.messages

    def _run(self):
        state = self.state

        while self.steps < state.max_steps:
            self.steps += 1
            state.on_status(f"Step {self.steps}/{state.max_steps}: calling model...")

            step_text = ""
            tool_calls = []
            for event in state.model(
                self._history(),
                state.system_prompt,
                provider=state.model_provider,
                model_name=state.model_name,
                usage_callback=state.usage_log.append,
                timeout=state.request_timeout,
            ):
                if isinstance(event, TextDelta):
                    step_text += event.text
                elif isinstance(event, ToolCall):
                    tool_calls.append(event)
                yield event

            self.messages.append({
                "role": "assistant",
                "content": step_text,
                "tool_calls": [
                    {"id": call.id, "name": call.name, "arguments": call.arguments}
                    for call in tool_calls
                ],
            })

            if not tool_calls:
                break

            limit_reached = False
            for call in tool_calls:
                if self.invocations >= state.max_steps:
                    # Every requested call still needs a result in the transcript.
                    limit_reached = True
                    self._record(ToolResult(
                        id=call.id,
                        name=call.name,
                        output=f"Error: limit of {state.max_steps} tool calls per turn reached",
                        is_error=True,
                    ))
                    continue
                self.invocations += 1
                result = self._run_tool(call)
                self._record(result)
                yield result

            if limit_reached:
                state.on_status(f"Reached {state.max_steps} tool calls; ending turn")
                break
        else:
            state.on_status(f"Reached {state.max_steps} steps; ending turn")

        self.done = True

    def _record(self, result: ToolResult) -> None:
        self.messages.append({
            "role": "tool",
            "tool_call_id": result.id,
            "name": result.name,
            "content": result.output,
            "is_error": result.is_error,
        })

    def _run_tool(self, call: ToolCall) -> ToolResult:
        try:
            output = execute_tool(self.state.store, call.name, call.arguments)
        except ToolArgumentError as e:
            self.state.on_status(f"Rejected {call.name} call: {e}")
            return ToolResult(id=call.id, name=call.name, output=f"Error: {e}", is_error=True)
        return ToolResult(id=call.id, name=call.name, output=output)

    @property
    def text(self) -> str:
        return "".join(m["content"] for m in self.messages if m["role"] == "assistant")

    def finalize(self) -> list:
        """Append this turn's new messages to the transcript (once)."""
        if not self._finalized:
            self.state.conversation.extend(self.messages)
            self._finalized = True
        return self.messages


def agent_stream(state: AgentState, prompt: str) -> AgentTurn:
    """Record the user message and return the event stream for its turn."""
    state.conversation.add_user_message(prompt)
    return AgentTurn(state, prompt)


def agent_loop(state: AgentState, prompt: str) -> dict:
    """
    Run one turn headlessly, streaming text to state.on_assistant_chunk.

    Returns a dict with:
        - "messages": new assistant/tool messages appended to the transcript
        - "text": all assistant text produced in the turn
        - "steps": number of model calls made
        - "tool_calls": names of the tools invoked, in order
        - "document": document text after the turn
        - "usage": aggregate token usage for the session
    """
    turn = agent_stream(state, prompt)
    tool_calls = []
    for event in turn:
        if isinstance(event, TextDelta):
            state.on_assistant_chunk(event.text)
        elif isinstance(event, ToolCall):
            tool_calls.append(event.name)
    state.on_assistant_chunk("\n")
    turn.finalize()

    return {
        "messages": turn.messages,
        "text": turn.text,
        "steps": turn.steps,
        "tool_calls": tool_calls,
        "document": state.store.snapshot(),
        "usage": state.total_usage,
    }
