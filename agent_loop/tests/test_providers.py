import httpx
import pytest

from agent_loop.domain.exceptions import ApiError, NetworkError, RateLimitError, ValidationError
from agent_loop.domain.models import ChatMessage, ChatRequest
from agent_loop.providers import create_provider, resolve_model
from agent_loop.providers.openai_compat import OpenAICompatClient
from agent_loop.providers.registry import GLM_CONFIG, KIMI_CONFIG, OLLAMA_CONFIG, OPENAI_CONFIG
from agent_loop.tools.definitions import ToolCall, ToolDef, ToolParam


class SettingsStub:
    default_provider = "ollama"
    default_model = None
    openai_api_key = None
    openai_base_url = None
    http_timeout = 1.0


class KeyedSettings(SettingsStub):
    openai_api_key = "k"


def _fake_client(monkeypatch, status_code=200, body=None, captured=None, raises=None):
    class Resp:
        text = "boom"

        def __init__(self):
            self.status_code = status_code

        def json(self):
            return body if body is not None else {"choices": [], "usage": {}}

    class Client:
        def __init__(self, *a, **kw):
            if captured is not None:
                captured["client_kwargs"] = kw

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def post(self, url, json=None, headers=None, **_):
            if raises is not None:
                raise raises
            if captured is not None:
                captured["url"] = url
                captured["payload"] = json
                captured["headers"] = headers
            return Resp()

    monkeypatch.setattr("httpx.Client", Client)


def _req(**kw):
    return ChatRequest(provider="ollama", model="llama3.1", messages=[ChatMessage(role="user", content="hi")], **kw)


def test_create_provider_default(monkeypatch):
    monkeypatch.setattr("agent_loop.providers.settings", SettingsStub())
    provider = create_provider()
    assert isinstance(provider, OpenAICompatClient)
    assert provider.config is OLLAMA_CONFIG


def test_create_provider_explicit_and_unknown(monkeypatch):
    monkeypatch.setattr("agent_loop.providers.settings", SettingsStub())
    assert create_provider("kimi").config is KIMI_CONFIG
    assert create_provider("GLM").config is GLM_CONFIG
    assert create_provider("nope").config is OLLAMA_CONFIG


def test_resolve_model(monkeypatch):
    monkeypatch.setattr("agent_loop.providers.settings", SettingsStub())
    client = create_provider("openai")
    assert resolve_model(client) == OPENAI_CONFIG.default_model
    assert resolve_model(client, "gpt-4o") == "gpt-4o"


def test_parse_basic(monkeypatch):
    captured = {}
    _fake_client(
        monkeypatch,
        body={
            "choices": [{"message": {"role": "assistant", "content": "ok"}, "finish_reason": "stop"}],
            "usage": {"prompt_tokens": 1, "completion_tokens": 1, "total_tokens": 2},
        },
        captured=captured,
    )
    res = OpenAICompatClient(SettingsStub(), OLLAMA_CONFIG).chat(_req())
    assert res.choices[0].message.content == "ok"
    assert res.usage.total_tokens == 2
    assert captured["url"] == "http://localhost:11434/v1/chat/completions"
    assert captured["headers"]["Authorization"] == "Bearer ollama"
    assert captured["client_kwargs"]["timeout"] == 1.0
    assert "tools" not in captured["payload"]


def test_tools_payload(monkeypatch):
    captured = {}
    _fake_client(monkeypatch, captured=captured)
    tool = ToolDef(
        name="read_file",
        description="read file",
        params={"path": ToolParam(name="path", description="Path", required=True, schema={"type": "string"})},
    )
    OpenAICompatClient(SettingsStub(), OLLAMA_CONFIG).chat(_req(tools=[tool], tool_choice="auto"))
    payload = captured["payload"]
    assert payload["tool_choice"] == "auto"
    fn = payload["tools"][0]["function"]
    assert fn["name"] == "read_file"
    assert fn["parameters"]["required"] == ["path"]


def test_assistant_and_tool_messages_serialized(monkeypatch):
    captured = {}
    _fake_client(monkeypatch, captured=captured)
    messages = [
        ChatMessage(role="user", content="calc"),
        ChatMessage(role="assistant", content=None, tool_calls=[ToolCall(id="c1", name="calculator", arguments='{"expression": "1+1"}')]),
        ChatMessage(role="tool", content='{"result": 2}', tool_call_id="c1", name="calculator", meta={"x": 1}),
    ]
    req = ChatRequest(provider="ollama", model="m", messages=messages)
    OpenAICompatClient(SettingsStub(), OLLAMA_CONFIG).chat(req)
    sent = captured["payload"]["messages"]
    assert sent[1]["tool_calls"][0]["id"] == "c1"
    assert sent[1]["tool_calls"][0]["function"]["arguments"] == '{"expression": "1+1"}'
    assert sent[2]["tool_call_id"] == "c1"
    assert "meta" not in sent[2]


def test_parse_tool_calls_keeps_raw_arguments(monkeypatch):
    _fake_client(
        monkeypatch,
        body={
            "choices": [
                {
                    "message": {
                        "role": "assistant",
                        "content": "",
                        "tool_calls": [
                            {"id": "tool123", "function": {"name": "calculator", "arguments": '{"expression": "2+2"}'}},
                            {"function": {"name": "get_weather", "arguments": {"city": "Madrid"}}},
                        ],
                    },
                    "finish_reason": "tool_calls",
                }
            ],
            "usage": {},
        },
    )
    res = OpenAICompatClient(SettingsStub(), OLLAMA_CONFIG).chat(_req())
    calls = res.choices[0].message.tool_calls
    assert calls[0].id == "tool123"
    assert calls[0].arguments == '{"expression": "2+2"}'
    assert calls[1].id == "call_1"
    assert calls[1].arguments == '{"city": "Madrid"}'


def test_error_mapping(monkeypatch):
    client = OpenAICompatClient(SettingsStub(), OLLAMA_CONFIG)
    _fake_client(monkeypatch, status_code=429)
    with pytest.raises(RateLimitError):
        client.chat(_req())
    _fake_client(monkeypatch, status_code=500)
    with pytest.raises(ApiError) as exc:
        client.chat(_req())
    assert exc.value.http_status == 500
    _fake_client(monkeypatch, raises=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError):
        client.chat(_req())


def test_missing_api_key():
    client = OpenAICompatClient(SettingsStub(), OPENAI_CONFIG)
    with pytest.raises(ValidationError):
        client.chat(_req())
    assert OpenAICompatClient(KeyedSettings(), OPENAI_CONFIG)._api_key() == "k"


def test_generated_call_ids_do_not_collide_with_supplied_ids():
    msg = OpenAICompatClient(SettingsStub(), OLLAMA_CONFIG)._build_chat_message(
        {
            "role": "assistant",
            "tool_calls": [
                {"id": "call_1", "function": {"name": "calculator", "arguments": "{}"}},
                {"function": {"name": "get_weather", "arguments": "{}"}},
                {"id": "call_1", "function": {"name": "calculator", "arguments": "{}"}},
            ],
        }
    )
    ids = [c.id for c in msg.tool_calls]
    assert ids[0] == "call_1"
    assert len(set(ids)) == 3
