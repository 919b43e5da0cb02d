from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any, Dict, List

import pytest

import llm_methods
from llm_methods import (
    ConversationManager,
    ModelCapabilityError,
    TextDelta,
    ToolCall,
    format_messages_anthropic,
    format_messages_openai,
    generate_step,
)

TRANSCRIPT = [
    {"role": "user", "content": "write hi"},
    {
        "role": "assistant",
        "content": "",
        "tool_calls": [
            {"id": "a", "name": "editDocument", "arguments": {"content": "hi"}},
            {"id": "b", "name": "getDocument", "arguments": {}},
        ],
    },
    {"role": "tool", "tool_call_id": "a", "name": "editDocument", "content": "hi"},
    {"role": "tool", "tool_call_id": "b", "name": "getDocument", "content": "hi", "is_error": False},
    {"role": "assistant", "content": "Done.", "tool_calls": []},
]


def test_conversation_manager_is_append_only() -> None:
    cm = ConversationManager()
    cm.add_user_message("hello")
    cm.extend([{"role": "assistant", "content": "hi", "tool_calls": []}])
    snapshot = cm.get_messages()
    snapshot.clear()
    assert len(cm) == 2


def test_load_config_reads_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCUMENT_AGENT_PROVIDER", "Anthropic")
    monkeypatch.setenv("DOCUMENT_AGENT_MAX_STEPS", "4")
    monkeypatch.setenv("DOCUMENT_AGENT_TIMEOUT", "7.5")
    monkeypatch.delenv("OPENAI_MODEL", raising=False)

    config = llm_methods._load_config()

    assert config["MODEL_PROVIDER"] == "Anthropic"
    assert config["MAX_STEPS"] == 4
    assert config["REQUEST_TIMEOUT"] == 7.5
    assert config["OPENAI_MODEL"] == "gpt-4o"


def test_format_messages_anthropic_groups_tool_results() -> None:
    formatted = format_messages_anthropic(TRANSCRIPT)

    assert [m["role"] for m in formatted] == ["user", "assistant", "user", "assistant"]
    assert [b["type"] for b in formatted[1]["content"]] == ["tool_use", "tool_use"]
    assert formatted[1]["content"][0]["input"] == {"content": "hi"}
    assert [b["tool_use_id"] for b in formatted[2]["content"]] == ["a", "b"]
    assert formatted[3]["content"] == [{"type": "text", "text": "Done."}]


def test_format_messages_anthropic_skips_empty_assistant() -> None:
    formatted = format_messages_anthropic([
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "", "tool_calls": []},
    ])
    assert formatted == [{"role": "user", "content": "hi"}]


def test_format_messages_openai() -> None:
    formatted = format_messages_openai(TRANSCRIPT, "system text")

    assert formatted[0] == {"role": "system", "content": "system text"}
    assistant = formatted[2]
    assert assistant["content"] is None
    assert json.loads(assistant["tool_calls"][0]["function"]["arguments"]) == {"content": "hi"}
    assert formatted[3] == {"role": "tool", "tool_call_id": "a", "content": "hi"}
    assert formatted[-1] == {"role": "assistant", "content": "Done."}


# ---------------------------------------------------------------------------
# Provider streaming against fake SDK clients
# ---------------------------------------------------------------------------

def _chunk(content=None, tool_calls=None, usage=None):
    choices = [] if content is None and tool_calls is None else [
        SimpleNamespace(delta=SimpleNamespace(content=content, tool_calls=tool_calls))
    ]
    return SimpleNamespace(choices=choices, usage=usage)


def _tool_delta(index, id=None, name=None, arguments=None):
    return SimpleNamespace(index=index, id=id, function=SimpleNamespace(name=name, arguments=arguments))


class FakeOpenAI:
    instances: List["FakeOpenAI"] = []

    def __init__(self, chunks, **kwargs: Any) -> None:
        self.kwargs = kwargs
        self.requests: List[Dict[str, Any]] = []
        self._chunks = chunks
        self.chat = SimpleNamespace(completions=SimpleNamespace(create=self._create))
        FakeOpenAI.instances.append(self)

    def _create(self, **kwargs: Any):
        self.requests.append(kwargs)
        return iter(self._chunks)


def test_generate_step_openai_streams_text_and_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    chunks = [
        _chunk(content="Let me "),
        _chunk(content="edit."),
        _chunk(tool_calls=[_tool_delta(0, id="call_9", name="editDocument", arguments='{"cont')]),
        _chunk(tool_calls=[_tool_delta(0, arguments='ent": "Hi"}')]),
        _chunk(usage=SimpleNamespace(prompt_tokens=12, completion_tokens=3)),
    ]
    FakeOpenAI.instances.clear()
    monkeypatch.setattr(llm_methods, "OpenAI", lambda **kw: FakeOpenAI(chunks, **kw))
    monkeypatch.setattr(llm_methods, "OPENAI_API_KEY", "sk-test")
    usage: List[dict] = []

    events = list(generate_step(
        [{"role": "user", "content": "hi"}], "sys",
        provider="OpenAI", model_name="gpt-test", usage_callback=usage.append, timeout=3.0,
    ))

    assert events == [
        TextDelta("Let me "),
        TextDelta("edit."),
        ToolCall(id="call_9", name="editDocument", arguments={"content": "Hi"}),
    ]
    assert usage == [{"input_tokens": 12, "output_tokens": 3}]
    client = FakeOpenAI.instances[0]
    assert client.kwargs["timeout"] == 3.0
    request = client.requests[0]
    assert request["model"] == "gpt-test"
    assert request["stream"] is True
    assert {t["function"]["name"] for t in request["tools"]} == {"getDocument", "editDocument", "undoEditDocument"}


def test_generate_step_openai_rejects_malformed_arguments(monkeypatch: pytest.MonkeyPatch) -> None:
    chunks = [_chunk(tool_calls=[_tool_delta(0, id="c", name="getDocument", arguments="{not json")])]
    monkeypatch.setattr(llm_methods, "OpenAI", lambda **kw: FakeOpenAI(chunks, **kw))
    monkeypatch.setattr(llm_methods, "OPENAI_API_KEY", "sk-test")

    with pytest.raises(ModelCapabilityError):
        list(generate_step([], "sys", provider="OpenAI"))


class FakeAnthropicStream:
    def __init__(self, texts, final) -> None:
        self.text_stream = iter(texts)
        self._final = final

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def get_final_message(self):
        return self._final


def test_generate_step_anthropic(monkeypatch: pytest.MonkeyPatch) -> None:
    final = SimpleNamespace(
        usage=SimpleNamespace(input_tokens=20, output_tokens=4),
        content=[
            SimpleNamespace(type="text", text="Undoing."),
            SimpleNamespace(type="tool_use", id="tu_1", name="undoEditDocument", input={}),
        ],
    )
    requests: List[Dict[str, Any]] = []

    def fake_client(**kwargs: Any):
        def stream(**request: Any):
            requests.append(request)
            return FakeAnthropicStream(["Undoing."], final)
        return SimpleNamespace(messages=SimpleNamespace(stream=stream))

    monkeypatch.setattr(llm_methods.anthropic, "Anthropic", fake_client)
    monkeypatch.setattr(llm_methods, "ANTHROPIC_API_KEY", "sk-ant-test")
    usage: List[dict] = []

    events = list(generate_step(
        [{"role": "user", "content": "undo"}], "sys", provider="Anthropic", usage_callback=usage.append,
    ))

    assert events == [TextDelta("Undoing."), ToolCall(id="tu_1", name="undoEditDocument", arguments={})]
    assert usage == [{"input_tokens": 20, "output_tokens": 4}]
    assert requests[0]["system"] == "sys"
    assert requests[0]["tools"][0]["input_schema"]["type"] == "object"
    assert requests[0]["tool_choice"] == {"type": "auto", "disable_parallel_tool_use": True}


def test_generate_step_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(llm_methods, "ANTHROPIC_API_KEY", None)
    with pytest.raises(ModelCapabilityError, match="ANTHROPIC_API_KEY"):
        list(generate_step([], "sys", provider="Anthropic"))


def test_generate_step_unknown_provider() -> None:
    with pytest.raises(ModelCapabilityError, match="Unknown provider"):
        list(generate_step([], "sys", provider="Cohere"))


def test_format_messages_anthropic_drops_blank_user_text() -> None:
    formatted = format_messages_anthropic([
        {"role": "user", "content": "write hi"},
        {"role": "assistant", "content": "Sure.", "tool_calls": []},
        {"role": "user", "content": "   "},
        {"role": "user", "content": ""},
    ])
    assert all(m["content"] for m in formatted)
    assert [m["role"] for m in formatted] == ["user", "assistant"]


def test_load_config_rejects_non_positive_max_steps(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("DOCUMENT_AGENT_MAX_STEPS", "0")
    with pytest.raises(ValueError, match="MAX_STEPS"):
        llm_methods._load_config()


def test_openai_request_disables_parallel_tool_calls(monkeypatch: pytest.MonkeyPatch) -> None:
    FakeOpenAI.instances.clear()
    monkeypatch.setattr(llm_methods, "OpenAI", lambda **kw: FakeOpenAI([_chunk(content="ok")], **kw))
    monkeypatch.setattr(llm_methods, "OPENAI_API_KEY", "sk-test")

    list(generate_step([{"role": "user", "content": "hi"}], "sys", provider="OpenAI"))

    assert FakeOpenAI.instances[0].requests[0]["parallel_tool_calls"] is False
