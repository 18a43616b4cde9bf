"""Transport-neutral request handlers.

Both the FastAPI app (``main``) and the serverless adapter (``adapter``)
translate their requests into these calls and render the returned dicts
as JSON.
"""

import json
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Iterator

from .agent import CivicChatAgent
from .errors import UpstreamError, ValidationError
from .pipeline import IssuePipeline
from .settings import Settings

logger = logging.getLogger(__name__)

API_NAME = "SwachTrack"
API_VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def parse_json_body(raw: bytes | str | None) -> Dict[str, Any]:
    """Decode a request body into a JSON object; an empty body is an empty object."""
    if raw is None:
        return {}
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8", errors="replace")
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValidationError("body", "Invalid JSON in request body") from e
    if not isinstance(payload, dict):
        raise ValidationError("body", "Request body must be a JSON object")
    return payload


@contextmanager
def upstream_failure(message: str) -> Iterator[None]:
    """Re-raise UpstreamError under a route-specific message, keeping the cause text."""
    try:
        yield
    except UpstreamError as e:
        logger.error("%s: %s (%s)", message, e.message, e.details)
        raise UpstreamError(message, details=e.details or e.message) from e


def health(settings: Settings) -> Dict[str, Any]:
    return {
        "status": "OK",
        "message": f"{API_NAME} API is running",
        "timestamp": _now(),
        "environment": settings.environment,
    }


def root() -> Dict[str, Any]:
    return {
        "message": f"Welcome to {API_NAME} API",
        "version": API_VERSION,
        "endpoints": {"health": "/health", "api": "/api"},
    }


def status() -> Dict[str, Any]:
    return {"message": f"{API_NAME} API is operational", "version": API_VERSION}


async def classify(pipeline: IssuePipeline, payload: Dict[str, Any]) -> Dict[str, Any]:
    with upstream_failure("Failed to classify issue"):
        result = await pipeline.classify(payload.get("issue"))
    return result.to_dict()


async def analyze(pipeline: IssuePipeline, payload: Dict[str, Any]) -> Dict[str, Any]:
    with upstream_failure("Failed to analyze issue"):
        result = await pipeline.analyze(
            payload.get("issue"),
            payload.get("category"),
            payload.get("location"),
            payload.get("severity_indicators"),
        )
    return result.to_dict()


async def report(pipeline: IssuePipeline, payload: Dict[str, Any]) -> Dict[str, Any]:
    with upstream_failure("Failed to process civic issue report"):
        result = await pipeline.report(payload.get("issue"))
    return result.to_dict()


async def chat(agent: CivicChatAgent, payload: Dict[str, Any]) -> Dict[str, Any]:
    with upstream_failure("Failed to process chat message"):
        outcome = await agent.chat(
            payload.get("message"),
            session_id=payload.get("session_id"),
            conversation_history=payload.get("conversation_history"),
        )
    return outcome.to_dict()
