"""
llm_methods.py - Configuration, the conversation transcript, and the model capability.

The model capability is generate_step(): one streamed call to Anthropic or
OpenAI with the document tools attached. It yields TextDelta events while
text arrives and one ToolCall per tool the model asked for. The agent loop
in agent_core.py decides what to do with them.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Callable, Iterator, List, Optional

import anthropic
import openai
from openai import OpenAI

from document_tools import anthropic_tools, openai_tools


class ModelCapabilityError(RuntimeError):
    """Raised when the model provider cannot produce a step."""

    def __init__(self, message: str, *, provider: Optional[str] = None) -> None:
        super().__init__(message)
        self.provider = provider


# ===================================================================
# config — environment first, then an optional config.py override
# ===================================================================

def _positive_int(name, raw):
    value = int(raw)
    if value < 1:
        raise ValueError(f"{name} must be at least 1, got {value}")
    return value


def _load_config():
    """Load provider settings from environment variables or config.py if available."""
    config = {
        "MODEL_PROVIDER": os.environ.get("DOCUMENT_AGENT_PROVIDER", "OpenAI"),
        "ANTHROPIC_API_KEY": os.environ.get("ANTHROPIC_API_KEY"),
        "ANTHROPIC_MODEL": os.environ.get("ANTHROPIC_MODEL", "claude-sonnet-4-20250514"),
        "OPENAI_API_KEY": os.environ.get("OPENAI_API_KEY"),
        "OPENAI_MODEL": os.environ.get("OPENAI_MODEL", "gpt-4o"),
        "MAX_TOKENS": int(os.environ.get("MAX_TOKENS", "4096")),
        "MAX_STEPS": int(os.environ.get("DOCUMENT_AGENT_MAX_STEPS", "10")),
        "REQUEST_TIMEOUT": float(os.environ.get("DOCUMENT_AGENT_TIMEOUT", "120")),
    }

    # Try importing config.py as fallback
    try:
        import config as cfg
        for key in config:
            if hasattr(cfg, key):
                config[key] = getattr(cfg, key)
    except ImportError:
        pass

    config["MAX_STEPS"] = _positive_int("MAX_STEPS", config["MAX_STEPS"])
    return config

_CONFIG = _load_config()
MODEL_PROVIDER = _CONFIG["MODEL_PROVIDER"]
ANTHROPIC_API_KEY = _CONFIG["ANTHROPIC_API_KEY"]
ANTHROPIC_MODEL = _CONFIG["ANTHROPIC_MODEL"]
OPENAI_API_KEY = _CONFIG["OPENAI_API_KEY"]
OPENAI_MODEL = _CONFIG["OPENAI_MODEL"]
MAX_TOKENS = _CONFIG["MAX_TOKENS"]
MAX_STEPS = _CONFIG["MAX_STEPS"]
REQUEST_TIMEOUT = _CONFIG["REQUEST_TIMEOUT"]

PROVIDERS = ("OpenAI", "Anthropic")


# ===================================================================
# Step events
# ===================================================================

@dataclass
class TextDelta:
    text: str
    type: str = field(default="text-delta", init=False)


@dataclass
class ToolCall:
    id: str
    name: str
    arguments: dict
    type: str = field(default="tool-call", init=False)


@dataclass
class ToolResult:
    id: str
    name: str
    output: str
    is_error: bool = False
    type: str = field(default="tool-result", init=False)


# ===================================================================
# Conversation transcript
# ===================================================================

class ConversationManager:
    """
    Ordered, provider-neutral transcript. It is the only memory the model
    has, so it is sent whole on every call and never trimmed.

    Message shapes:
        {"role": "user", "content": str}
        {"role": "assistant", "content": str, "tool_calls": [{"id", "name", "arguments"}]}
        {"role": "tool", "tool_call_id": str, "name": str, "content": str}
    """

    def __init__(self):
        self.messages = []

    def add_user_message(self, content):
        self.messages.append({"role": "user", "content": content})

    def extend(self, messages):
        self.messages.extend(messages)

    def get_messages(self):
        return list(self.messages)

    def __len__(self):
        return len(self.messages)


def format_messages_anthropic(messages):
    formatted = []
    for message in messages:
        role = message["role"]
        if role == "user":
            # Anthropic rejects blank user text
            if not message["content"].strip():
                continue
            formatted.append({"role": "user", "content": message["content"]})
        elif role == "assistant":
            blocks = []
            if message.get("content"):
                blocks.append({"type": "text", "text": message["content"]})
            for call in message.get("tool_calls") or []:
                blocks.append({"type": "tool_use", "id": call["id"], "name": call["name"], "input": call["arguments"]})
            # Anthropic rejects empty assistant turns
            if blocks:
                formatted.append({"role": "assistant", "content": blocks})
        elif role == "tool":
            block = {
                "type": "tool_result",
                "tool_use_id": message["tool_call_id"],
                "content": message["content"],
            }
            if message.get("is_error"):
                block["is_error"] = True
            # Results for one assistant turn belong in a single user message
            previous = formatted[-1] if formatted else None
            if (previous and previous["role"] == "user" and isinstance(previous["content"], list)
                    and all(b.get("type") == "tool_result" for b in previous["content"])):
                previous["content"].append(block)
            else:
                formatted.append({"role": "user", "content": [block]})
    return formatted


def format_messages_openai(messages, system_prompt):
    formatted = [{"role": "system", "content": system_prompt}]
    for message in messages:
        role = message["role"]
        if role == "user":
            formatted.append({"role": "user", "content": message["content"]})
        elif role == "assistant":
            calls = message.get("tool_calls") or []
            if not message.get("content") and not calls:
                continue
            entry = {"role": "assistant", "content": message.get("content") or None}
            if calls:
                entry["tool_calls"] = [
                    {
                        "id": call["id"],
                        "type": "function",
                        "function": {"name": call["name"], "arguments": json.dumps(call["arguments"])},
                    }
                    for call in calls
                ]
            formatted.append(entry)
        elif role == "tool":
            formatted.append({"role": "tool", "tool_call_id": message["tool_call_id"], "content": message["content"]})
    return formatted


# ===================================================================
# Model capability
# ===================================================================

def _decode_arguments(raw, provider):
    if not raw:
        return {}
    try:
        arguments = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ModelCapabilityError(f"Malformed tool arguments: {raw[:80]!r}", provider=provider) from e
    if not isinstance(arguments, dict):
        raise ModelCapabilityError(f"Tool arguments must be an object: {raw[:80]!r}", provider=provider)
    return arguments


def _stream_anthropic(messages, system_prompt, tools, model_name, usage_callback, timeout):
    if not ANTHROPIC_API_KEY:
        raise ModelCapabilityError("ANTHROPIC_API_KEY is not set", provider="Anthropic")
    client = anthropic.Anthropic(api_key=ANTHROPIC_API_KEY, timeout=timeout)
    try:
        with client.messages.stream(
            model=model_name or ANTHROPIC_MODEL,
            system=system_prompt,
            messages=format_messages_anthropic(messages),
            tools=tools,
            tool_choice={"type": "auto", "disable_parallel_tool_use": True},
            max_tokens=MAX_TOKENS,
        ) as stream:
            for text in stream.text_stream:
                yield TextDelta(text)
            final = stream.get_final_message()
    except anthropic.AnthropicError as e:
        raise ModelCapabilityError(f"Anthropic request failed: {e}", provider="Anthropic") from e

    if usage_callback and final.usage is not None:
        usage_callback({
            "input_tokens": getattr(final.usage, "input_tokens", 0) or 0,
            "output_tokens": getattr(final.usage, "output_tokens", 0) or 0,
        })

    for block in final.content:
        if block.type == "tool_use":
            yield ToolCall(id=block.id, name=block.name, arguments=dict(block.input or {}))


def _stream_openai(messages, system_prompt, tools, model_name, usage_callback, timeout):
    if not OPENAI_API_KEY:
        raise ModelCapabilityError("OPENAI_API_KEY is not set", provider="OpenAI")
    client = OpenAI(api_key=OPENAI_API_KEY, timeout=timeout)
    accumulated_tool_calls = {}
    usage = None
    try:
        response = client.chat.completions.create(
            model=model_name or OPENAI_MODEL,
            messages=format_messages_openai(messages, system_prompt),
            tools=tools,
            parallel_tool_calls=False,
            max_completion_tokens=MAX_TOKENS,
            stream=True,
            stream_options={"include_usage": True},
        )
        for chunk in response:
            if chunk.usage is not None:
                usage = chunk.usage
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta is None:
                continue
            if delta.content:
                yield TextDelta(delta.content)
            for tc_delta in delta.tool_calls or []:
                call = accumulated_tool_calls.setdefault(tc_delta.index, {"id": "", "name": "", "arguments": ""})
                if tc_delta.id:
                    call["id"] = tc_delta.id
                if tc_delta.function and tc_delta.function.name:
                    call["name"] = tc_delta.function.name
                if tc_delta.function and tc_delta.function.arguments:
                    call["arguments"] += tc_delta.function.arguments
    except openai.OpenAIError as e:
        raise ModelCapabilityError(f"OpenAI request failed: {e}", provider="OpenAI") from e

    if usage_callback and usage is not None:
        usage_callback({
            "input_tokens": usage.prompt_tokens or 0,
            "output_tokens": usage.completion_tokens or 0,
        })

    for index in sorted(accumulated_tool_calls):
        call = accumulated_tool_calls[index]
        yield ToolCall(
            id=call["id"] or f"call_{index}",
            name=call["name"],
            arguments=_decode_arguments(call["arguments"], "OpenAI"),
        )


def generate_step(
    messages: List[dict],
    system_prompt: str,
    *,
    provider: str = MODEL_PROVIDER,
    model_name: Optional[str] = None,
    usage_callback: Optional[Callable[[dict], None]] = None,
    timeout: float = REQUEST_TIMEOUT,
) -> Iterator[object]:
    """
    Stream one model step from Anthropic or OpenAI with the document tools attached.
    - provider: "OpenAI" (default) or "Anthropic".
    - model_name: explicit model override. If None, uses config.
    - usage_callback: callable(dict) called once the step is complete with
        {"input_tokens": int, "output_tokens": int}
    - timeout: per-request timeout in seconds.

    Yields TextDelta events, then one ToolCall per requested tool.
    Raises ModelCapabilityError on any provider failure.
    """
    key = (provider or "").lower()
    if key == "anthropic":
        yield from _stream_anthropic(messages, system_prompt, anthropic_tools(), model_name, usage_callback, timeout)
    elif key == "openai":
        yield from _stream_openai(messages, system_prompt, openai_tools(), model_name, usage_callback, timeout)
    else:
        raise ModelCapabilityError(f"Unknown provider specified: {provider!r}", provider=provider)
