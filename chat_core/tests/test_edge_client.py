import httpx
import pytest

from chat_core.domain.exceptions import (
    ApiError,
    AuthError,
    EmptyResponseError,
    NetworkError,
    RateLimitError,
    ValidationError,
)
from chat_core.domain.models import Message
from chat_core.providers.edge_client import EdgeFunctionClient


class SettingsStub:
    edge_base_url = "https://example.supabase.co/"
    edge_anon_key = "anon-key-0123456789"
    http_timeout = None


def transcript():
    return [Message(id="m1", conversation_id="c-1", role="user", content="hi\x00 there\n")]


class FakeResponse:
    def __init__(self, status_code=200, lines=(), payload=None):
        self.status_code = status_code
        self._lines = list(lines)
        self._payload = payload or {}
        self.text = "body"

    async def aiter_lines(self):
        for line in self._lines:
            yield line

    async def aread(self):
        return b""

    def json(self):
        return self._payload


class StreamContext:
    def __init__(self, response):
        self._response = response

    async def __aenter__(self):
        return self._response

    async def __aexit__(self, *args):
        return False


def install_client(monkeypatch, response=None, error=None):
    captured = {}

    class Client:
        def __init__(self, *a, **kw):
            captured["client_kwargs"] = kw

        async def __aenter__(self):
            return self

        async def __aexit__(self, *a):
            return False

        def stream(self, method, url, json=None, headers=None):
            captured.update(method=method, url=url, json=json, headers=headers)
            if error is not None:
                raise error
            return StreamContext(response)

        async def post(self, url, json=None, headers=None):
            captured.update(method="POST", url=url, json=json, headers=headers)
            if error is not None:
                raise error
            return response

    monkeypatch.setattr("httpx.AsyncClient", Client)
    return captured


@pytest.mark.asyncio
async def test_stream_chunks_in_order(monkeypatch):
    lines = [
        'data: {"type": "chunk", "content": "Hel"}',
        "",
        'data: {"type": "chunk", "content": "lo"}',
        'data: {"choices": [{"delta": {"content": "!"}}]}',
        "data: [DONE]",
    ]
    captured = install_client(monkeypatch, FakeResponse(lines=lines))
    chunks = []

    text = await EdgeFunctionClient(SettingsStub()).send(transcript(), "deepseek-v3", chunks.append)

    assert text == "Hello!"
    assert chunks == ["Hel", "lo", "!"]
    assert captured["url"] == "https://example.supabase.co/functions/v1/deepseek-chat"
    assert captured["headers"]["apikey"] == "anon-key-0123456789"
    assert captured["client_kwargs"]["timeout"] is None
    payload = captured["json"]
    assert payload["model"] == "deepseek-chat"
    assert payload["stream"] is True
    assert payload["messages"][0]["role"] == "system"
    assert payload["messages"][1] == {"role": "user", "content": "hi there"}


@pytest.mark.asyncio
async def test_complete_event_replaces_text(monkeypatch):
    lines = [
        'data: {"type": "chunk", "content": "dra"}',
        'data: {"type": "complete", "content": "draft final"}',
    ]
    install_client(monkeypatch, FakeResponse(lines=lines))
    text = await EdgeFunctionClient(SettingsStub()).send(transcript(), "DeepSeek-R1", lambda c: None)
    assert text == "draft final"


@pytest.mark.asyncio
async def test_stream_without_chunks_is_empty_response(monkeypatch):
    install_client(monkeypatch, FakeResponse(lines=["data: [DONE]"]))
    with pytest.raises(EmptyResponseError):
        await EdgeFunctionClient(SettingsStub()).send(transcript(), "DeepSeek-V3", lambda c: None)


@pytest.mark.asyncio
async def test_stream_error_event(monkeypatch):
    install_client(monkeypatch, FakeResponse(lines=['data: {"type": "error", "error": "model overloaded"}']))
    with pytest.raises(ApiError) as exc:
        await EdgeFunctionClient(SettingsStub()).send(transcript(), "DeepSeek-V3", lambda c: None)
    assert "overloaded" in str(exc.value)


@pytest.mark.asyncio
async def test_non_streaming_model(monkeypatch):
    captured = install_client(monkeypatch, FakeResponse(payload={"response": "full answer"}))
    chunks = []
    text = await EdgeFunctionClient(SettingsStub(), access_token="token-abc").send(
        transcript(), "Claude", chunks.append
    )
    assert text == "full answer"
    assert chunks == ["full answer"]
    assert captured["url"].endswith("/functions/v1/claude-chat")
    assert captured["headers"]["Authorization"] == "Bearer token-abc"
    assert "apikey" not in captured["headers"]
    assert captured["json"]["stream"] is False


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, error_type, fragment",
    [
        (429, RateLimitError, "Rate limit"),
        (401, AuthError, "Authentication failed"),
        (403, AuthError, "Access denied"),
        (502, ApiError, "Server error"),
        (418, ApiError, "status 418"),
    ],
)
async def test_status_mapping(monkeypatch, status, error_type, fragment):
    install_client(monkeypatch, FakeResponse(status_code=status))
    with pytest.raises(error_type) as exc:
        await EdgeFunctionClient(SettingsStub()).send(transcript(), "DeepSeek-V3", lambda c: None)
    assert fragment in str(exc.value)


@pytest.mark.asyncio
async def test_timeout_and_network_errors(monkeypatch):
    install_client(monkeypatch, error=httpx.ReadTimeout("read timed out"))
    with pytest.raises(NetworkError) as exc:
        await EdgeFunctionClient(SettingsStub()).send(transcript(), "DeepSeek-V3", lambda c: None)
    assert exc.value.code == "TIMEOUT"

    install_client(monkeypatch, error=httpx.ConnectError("refused"))
    with pytest.raises(NetworkError) as exc:
        await EdgeFunctionClient(SettingsStub()).send(transcript(), "DeepSeek-V3", lambda c: None)
    assert exc.value.code == "NETWORK_ERROR"
    assert "internet connection" in str(exc.value)


@pytest.mark.asyncio
async def test_missing_credentials_and_unknown_model(monkeypatch):
    install_client(monkeypatch, FakeResponse(lines=[]))

    class NoKey(SettingsStub):
        edge_anon_key = None

    with pytest.raises(ValidationError):
        await EdgeFunctionClient(NoKey()).send(transcript(), "DeepSeek-V3", lambda c: None)
    with pytest.raises(ValidationError):
        await EdgeFunctionClient(SettingsStub()).send(transcript(), "gpt-nothing", lambda c: None)
