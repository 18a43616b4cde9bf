from unittest.mock import AsyncMock, MagicMock

import httpx
import openai
import pytest

from conftest import assistant_message
from swachtrack.errors import UpstreamError
from swachtrack.services.gateway import ModelGateway, json_schema_format, parse_json_object
from swachtrack.settings import Settings


@pytest.fixture
def mock_client() -> MagicMock:
    """AsyncOpenAI double whose chat.completions.create is awaitable."""
    m = MagicMock()
    m.chat.completions.create = AsyncMock(
        return_value=MagicMock(choices=[MagicMock(message=assistant_message("hello"))])
    )
    return m


@pytest.mark.asyncio
async def test_complete_returns_first_choice_message(settings: Settings, mock_client: MagicMock) -> None:
    gw = ModelGateway(settings, client=mock_client)
    message = await gw.complete([{"role": "user", "content": "hi"}])
    assert message.content == "hello"
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == settings.model
    assert kwargs["messages"] == [{"role": "user", "content": "hi"}]
    assert "tools" not in kwargs
    assert "temperature" not in kwargs


@pytest.mark.asyncio
async def test_complete_passes_tools_and_format(settings: Settings, mock_client: MagicMock) -> None:
    gw = ModelGateway(settings, client=mock_client)
    tools = [{"type": "function", "function": {"name": "t", "parameters": {}}}]
    fmt = json_schema_format("x_schema", ["a"])
    await gw.complete([], tools=tools, response_format=fmt, temperature=0.7, max_tokens=1000)
    kwargs = mock_client.chat.completions.create.call_args.kwargs
    assert kwargs["tools"] == tools
    assert kwargs["tool_choice"] == "auto"
    assert kwargs["response_format"] == fmt
    assert kwargs["temperature"] == 0.7
    assert kwargs["max_tokens"] == 1000


@pytest.mark.asyncio
async def test_complete_wraps_openai_errors(settings: Settings, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.side_effect = openai.APIConnectionError(
        request=httpx.Request("POST", "https://example.invalid/v1/chat/completions")
    )
    gw = ModelGateway(settings, client=mock_client)
    with pytest.raises(UpstreamError) as exc:
        await gw.complete([{"role": "user", "content": "hi"}])
    assert exc.value.status_code == 500
    assert exc.value.details


@pytest.mark.asyncio
async def test_complete_rejects_empty_choices(settings: Settings, mock_client: MagicMock) -> None:
    mock_client.chat.completions.create.return_value = MagicMock(choices=[])
    gw = ModelGateway(settings, client=mock_client)
    with pytest.raises(UpstreamError):
        await gw.complete([{"role": "user", "content": "hi"}])


@pytest.mark.asyncio
async def test_missing_api_key_surfaces_on_first_call(tmp_path, monkeypatch: pytest.MonkeyPatch) -> None:
    """No key configured: construction succeeds, the first call fails upstream."""
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("NEBIUS", raising=False)
    gw = ModelGateway(Settings(_env_file=None, log_dir=tmp_path))
    with pytest.raises(UpstreamError):
        await gw.complete([{"role": "user", "content": "hi"}])


def test_json_schema_format_requires_every_field() -> None:
    fmt = json_schema_format("analysis_schema", ["a", "b"])
    schema = fmt["json_schema"]["schema"]
    assert fmt["type"] == "json_schema"
    assert fmt["json_schema"]["name"] == "analysis_schema"
    assert schema["required"] == ["a", "b"]
    assert schema["properties"]["a"] == {"type": "string"}
    assert schema["additionalProperties"] is False


def test_parse_json_object_plain() -> None:
    assert parse_json_object('{"a": "1"}', ["a"]) == {"a": "1"}


def test_parse_json_object_inside_prose() -> None:
    content = 'Sure, here it is:\n```json\n{"a": "1", "b": "2"}\n```'
    assert parse_json_object(content, ["a", "b"]) == {"a": "1", "b": "2"}


@pytest.mark.parametrize("content", [None, "", "   ", "no json here", "{not json}"])
def test_parse_json_object_rejects_unusable_content(content) -> None:
    with pytest.raises(UpstreamError):
        parse_json_object(content)


def test_parse_json_object_missing_required_key() -> None:
    with pytest.raises(UpstreamError) as exc:
        parse_json_object('{"a": "1"}', ["a", "b"])
    assert exc.value.details == "b"


def test_parse_json_object_never_substitutes_empty_default() -> None:
    with pytest.raises(UpstreamError):
        parse_json_object("{}", ["issue"])


@pytest.mark.parametrize("value", ["null", "3", "{}", "[]"])
def test_parse_json_object_non_string_value_counts_as_missing(value: str) -> None:
    with pytest.raises(UpstreamError) as exc:
        parse_json_object(f'{{"a": "1", "b": {value}}}', ["a", "b"])
    assert exc.value.details == "b"
