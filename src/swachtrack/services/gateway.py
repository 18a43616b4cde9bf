import json
import logging
import re
import time
from typing import Any, Dict, Iterable, List

import openai
from openai import AsyncOpenAI
from openai.types.chat import ChatCompletionMessage

from ..errors import UpstreamError
from ..settings import Settings, get_settings

logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


class ModelGateway:
    """Thin async wrapper around an OpenAI-compatible chat completion endpoint."""

    def __init__(self, settings: Settings | None = None, client: AsyncOpenAI | None = None) -> None:
        self._settings = settings or get_settings()
        self._client = client

    @property
    def client(self) -> AsyncOpenAI:
        """Build the client on first use; a missing API key raises OpenAIError here."""
        if self._client is None:
            kwargs: Dict[str, Any] = {
                "api_key": self._settings.openai_api_key,
                "base_url": self._settings.openai_base_url,
            }
            if self._settings.request_timeout_seconds is not None:
                kwargs["timeout"] = self._settings.request_timeout_seconds
            self._client = AsyncOpenAI(**kwargs)
        return self._client

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        *,
        tools: List[Dict[str, Any]] | None = None,
        response_format: Dict[str, Any] | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> ChatCompletionMessage:
        """Send one chat request and return the raw assistant message.

        Args:
            messages: OpenAI-format messages (role/content dicts).
            tools: Optional function tool catalog; enables ``tool_choice="auto"``.
            response_format: Optional response format constraint (json_schema).
            temperature: Sampling temperature; provider default when None.
            max_tokens: Completion token cap; provider default when None.

        Raises:
            UpstreamError: the request failed or returned no choices.
        """
        request: Dict[str, Any] = {
            "model": self._settings.model,
            "messages": messages,
        }
        if tools:
            request["tools"] = tools
            request["tool_choice"] = "auto"
        if response_format is not None:
            request["response_format"] = response_format
        if temperature is not None:
            request["temperature"] = temperature
        if max_tokens is not None:
            request["max_tokens"] = max_tokens

        logger.info(
            "Model call issued model=%s messages=%d tools=%d",
            self._settings.model,
            len(messages),
            len(tools or []),
        )
        started = time.monotonic()
        try:
            response = await self.client.chat.completions.create(**request)
        except openai.OpenAIError as e:
            logger.error(
                "Model call failed after %.2fs: %s", time.monotonic() - started, e
            )
            raise UpstreamError("Model request failed", details=str(e)) from e

        if not response.choices:
            logger.error("Model call returned no choices")
            raise UpstreamError("Model returned no choices")

        logger.info("Model call completed in %.2fs", time.monotonic() - started)
        return response.choices[0].message


def json_schema_format(name: str, fields: Iterable[str]) -> Dict[str, Any]:
    """Build a json_schema response_format where every field is a required string."""
    names = list(fields)
    return {
        "type": "json_schema",
        "json_schema": {
            "name": name,
            "schema": {
                "type": "object",
                "properties": {n: {"type": "string"} for n in names},
                "required": names,
                "additionalProperties": False,
            },
        },
    }


def parse_json_object(content: str | None, required: Iterable[str] = ()) -> Dict[str, Any]:
    """Extract the JSON object from model content.

    Raises:
        UpstreamError: content is empty, not a JSON object, or a required key is
            missing, null or not a string.
    """
    if not content or not content.strip():
        raise UpstreamError("Model returned empty content")

    match = _JSON_OBJECT.search(content)
    if not match:
        raise UpstreamError("Model returned non-JSON content", details=content[:200])
    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError as e:
        raise UpstreamError("Model returned malformed JSON", details=str(e)) from e
    if not isinstance(data, dict):
        raise UpstreamError("Model returned a non-object JSON value")

    # null or non-string values count as missing; str() would turn null into "None"
    missing = [key for key in required if not isinstance(data.get(key), str)]
    if missing:
        raise UpstreamError(
            "Model response is missing fields", details=", ".join(missing)
        )
    return data
