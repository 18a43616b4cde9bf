import json
import sys
from pathlib import Path
from typing import Any, Dict
from unittest.mock import AsyncMock, MagicMock

import pytest


_root = Path(__file__).resolve().parents[1]
_src = _root / "src"
if _src.exists() and str(_src) not in sys.path:
    sys.path.insert(0, str(_src))

from openai.types.chat import ChatCompletionMessage  # noqa: E402

from swachtrack.pipeline import IssuePipeline  # noqa: E402
from swachtrack.services.gateway import ModelGateway  # noqa: E402
from swachtrack.services.sessions import InMemorySessionStore  # noqa: E402
from swachtrack.settings import Settings  # noqa: E402

CLASSIFICATION = {
    "issue": "Streetlight broken near the park",
    "category": "streetlights",
    "location": "Cubbon Park, Bengaluru",
    "severity_indicators": "Dark stretch at night, safety concern for pedestrians",
}

ANALYSIS = {
    "time_estimate": "1 day",
    "cost_estimate": "₹8,000",
    "manpower_required": "2 electricians",
    "recommended_company": "BESCOM Maintenance Services",
    "severity": "medium",
    "summary": "Broken streetlight near Cubbon Park; quick repair recommended.",
}


def assistant_message(content: str | None = None, tool_call: Dict[str, Any] | None = None) -> ChatCompletionMessage:
    """Build an assistant message; tool_call is {name, arguments} with arguments as dict or raw str."""
    data: Dict[str, Any] = {"role": "assistant", "content": content}
    if tool_call is not None:
        args = tool_call.get("arguments", {})
        data["tool_calls"] = [
            {
                "id": "call_1",
                "type": "function",
                "function": {
                    "name": tool_call["name"],
                    "arguments": args if isinstance(args, str) else json.dumps(args),
                },
            }
        ]
    return ChatCompletionMessage.model_validate(data)


def json_message(payload: Dict[str, Any]) -> ChatCompletionMessage:
    return assistant_message(json.dumps(payload))


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Settings isolated from the host environment."""
    return Settings(
        _env_file=None,
        openai_api_key="test-key",
        log_dir=tmp_path / "logs",
        session_max_entries=10,
        session_ttl_seconds=60,
    )


@pytest.fixture
def gateway() -> MagicMock:
    """ModelGateway double; set complete.return_value / side_effect per test."""
    m = MagicMock(spec=ModelGateway)
    m.complete = AsyncMock()
    return m


@pytest.fixture
def pipeline(gateway: MagicMock, settings: Settings) -> IssuePipeline:
    return IssuePipeline(gateway, settings)


@pytest.fixture
def store(settings: Settings) -> InMemorySessionStore:
    return InMemorySessionStore(
        system_prompt=settings.chat_system_prompt,
        max_entries=settings.session_max_entries,
        ttl_seconds=settings.session_ttl_seconds,
    )
