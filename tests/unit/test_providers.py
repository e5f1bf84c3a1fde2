import json

import httpx
import pytest

from switchyard.errors import ProviderTimeoutError, TransportError
from switchyard.failover.classifier import FailoverReason, classify
from switchyard.providers.base import (
    ChatOptions,
    Message,
    ModelProvider,
    ProviderType,
    ToolCall,
    supports_embeddings,
)
from switchyard.providers.cli import CliProvider
from switchyard.providers.ollama import LocalNetworkProvider
from switchyard.providers.openai_api import ApiProvider

BASE_URL = "https://llm.example.test/v1"


def _api(handler, **kwargs) -> ApiProvider:
    return ApiProvider(
        "primary",
        base_url=BASE_URL,
        model="gpt-test",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def _local(handler) -> LocalNetworkProvider:
    return LocalNetworkProvider(
        "ollama",
        model="llama3",
        base_url="http://ollama.local:11434",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_api_chat_sends_wire_format_and_parses_tool_calls() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["auth"] = request.headers["Authorization"]
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={
                "choices": [
                    {
                        "message": {
                            "content": None,
                            "tool_calls": [
                                {
                                    "id": "call_abc",
                                    "type": "function",
                                    "function": {
                                        "name": "search",
                                        "arguments": '{"q": "weather"}',
                                    },
                                },
                                {"function": {"name": "noop", "arguments": "oops"}},
                            ],
                        },
                        "finish_reason": "tool_calls",
                    }
                ],
                "usage": {"prompt_tokens": 12, "completion_tokens": 5, "total_tokens": 17},
            },
        )

    provider = _api(handler)
    messages = [
        Message(role="system", content="be useful"),
        Message(
            role="assistant",
            content="",
            tool_calls=[ToolCall(id="call_1", name="lookup", arguments={"id": 7})],
        ),
        Message(role="tool", content="result", tool_call_id="call_1", name="lookup"),
    ]
    tools = [{"type": "function", "function": {"name": "search", "parameters": {}}}]

    response = await provider.chat(
        messages, ChatOptions(max_tokens=64, tools=tools, thinking_level="medium")
    )

    assert captured["url"] == f"{BASE_URL}/chat/completions"
    assert captured["auth"] == "Bearer sk-test"
    body = captured["body"]
    assert body["model"] == "gpt-test"
    assert body["temperature"] == 0.2
    assert body["max_tokens"] == 64
    assert body["tools"] == tools
    assert body["tool_choice"] == "auto"
    assert body["reasoning"] == {"effort": "medium"}
    assert [m["role"] for m in body["messages"]] == ["system", "assistant", "tool"]
    assert body["messages"][1]["tool_calls"][0]["function"] == {
        "name": "lookup",
        "arguments": '{"id": 7}',
    }
    assert body["messages"][2]["tool_call_id"] == "call_1"
    assert body["messages"][2]["name"] == "lookup"

    assert response.content == ""
    assert response.finish_reason == "tool_calls"
    assert response.tool_calls == [
        ToolCall(id="call_abc", name="search", arguments={"q": "weather"}),
        ToolCall(id="call-2", name="noop", arguments={}),
    ]
    assert response.usage is not None
    assert response.usage.total_tokens == 17


@pytest.mark.asyncio
async def test_api_chat_minimal_body() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200,
            json={"choices": [{"message": {"content": "hello"}, "finish_reason": "length"}]},
        )

    response = await _api(handler).chat([Message(role="user", content="hi")])

    assert set(captured["body"]) == {"model", "messages", "temperature"}
    assert response.content == "hello"
    assert response.finish_reason == "length"
    assert response.tool_calls is None
    assert response.usage is None


@pytest.mark.asyncio
async def test_api_error_status_becomes_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, text="slow down")

    with pytest.raises(TransportError) as exc_info:
        await _api(handler).chat([Message(role="user", content="hi")])

    err = exc_info.value
    assert err.status == 429
    assert err.provider_id == "primary"
    assert str(err) == "API error: 429 - slow down"
    assert classify(err) == FailoverReason.RATE_LIMIT


@pytest.mark.asyncio
async def test_api_missing_choices_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(TransportError, match="missing choices"):
        await _api(handler).chat([Message(role="user", content="hi")])


@pytest.mark.asyncio
async def test_api_timeout_is_typed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    with pytest.raises(ProviderTimeoutError) as exc_info:
        await _api(handler).chat([Message(role="user", content="hi")])
    assert exc_info.value.code == "ETIMEDOUT"


@pytest.mark.asyncio
async def test_api_connection_failure_carries_network_code() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadError("connection reset by peer", request=request)

    with pytest.raises(TransportError) as exc_info:
        await _api(handler).chat([Message(role="user", content="hi")])
    assert exc_info.value.code == "ECONNRESET"
    assert classify(exc_info.value) == FailoverReason.TIMEOUT


@pytest.mark.asyncio
async def test_api_embeddings() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"data": [{"embedding": [0.1, 0.2]}, {"embedding": [1, 2]}]}
        )

    vectors = await _api(handler).embeddings(["a", "b"])

    assert captured["url"] == f"{BASE_URL}/embeddings"
    assert captured["body"] == {"model": "gpt-test", "input": ["a", "b"]}
    assert vectors == [[0.1, 0.2], [1.0, 2.0]]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "data",
    [
        ["not-an-object", {"embedding": [1.0]}],
        [{"embedding": [1.0]}],
        [{"embedding": [1.0]}, {"vector": [2.0]}],
    ],
)
async def test_api_embeddings_must_line_up_with_inputs(data: list) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"data": data})

    with pytest.raises(TransportError):
        await _api(handler).embeddings(["a", "b"])


@pytest.mark.asyncio
async def test_api_health_reflects_status() -> None:
    def ok(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/v1/models"
        return httpx.Response(200, json={"data": []})

    def down(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503)

    def unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    assert await _api(ok).health() is True
    assert await _api(down).health() is False
    assert await _api(unreachable).health() is False


def test_api_cost_estimate() -> None:
    provider = _api(lambda request: httpx.Response(200))
    messages = [Message(role="user", content="x" * 40), Message(role="assistant", content="yyy")]
    assert provider.estimate_cost(messages) == pytest.approx(11 * 0.00001)
    assert provider.type == ProviderType.API
    assert provider.name == "API (primary)"


@pytest.mark.asyncio
async def test_local_chat() -> None:
    captured: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["body"] = json.loads(request.content)
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "hey"}})

    provider = _local(handler)
    response = await provider.chat(
        [Message(role="user", content="hi")], ChatOptions(temperature=0.7)
    )

    assert captured["url"] == "http://ollama.local:11434/api/chat"
    assert captured["body"] == {
        "model": "llama3",
        "messages": [{"role": "user", "content": "hi"}],
        "stream": False,
        "options": {"temperature": 0.7},
    }
    assert response.content == "hey"
    assert response.finish_reason == "stop"
    assert provider.estimate_cost([Message(role="user", content="hi")]) == 0.0


@pytest.mark.asyncio
async def test_local_chat_error_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, text="model 'llama3' not found")

    with pytest.raises(TransportError) as exc_info:
        await _local(handler).chat([Message(role="user", content="hi")])
    assert exc_info.value.status == 404


@pytest.mark.asyncio
async def test_local_embeddings_one_request_per_text() -> None:
    prompts: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        prompts.append(body["prompt"])
        return httpx.Response(200, json={"embedding": [float(len(body["prompt"]))]})

    vectors = await _local(handler).embeddings(["a", "bbb"])

    assert prompts == ["a", "bbb"]
    assert vectors == [[1.0], [3.0]]


@pytest.mark.asyncio
async def test_local_health() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/api/tags"
        return httpx.Response(200, json={"models": []})

    assert await _local(handler).health() is True


def test_protocol_conformance() -> None:
    api = _api(lambda request: httpx.Response(200))
    local = _local(lambda request: httpx.Response(200))
    cli = CliProvider("cli", flavor="claude", model="m")

    for provider in (api, local, cli):
        assert isinstance(provider, ModelProvider)
    assert supports_embeddings(api)
    assert supports_embeddings(local)
    assert not supports_embeddings(cli)
