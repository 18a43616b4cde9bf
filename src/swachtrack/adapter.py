"""Single-function serverless entry point.

Accepts an event dict (``httpMethod``, ``path``, ``body``) and returns
``{statusCode, headers, body}``, routing to the same handlers as the
FastAPI app.
"""

import asyncio
import json
import logging
import re
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict

from . import api
from .deps import get_agent, get_pipeline
from .errors import MethodNotAllowedError, NotFoundError, SwachTrackError
from .settings import get_settings

logger = logging.getLogger(__name__)

JSON_HEADERS = {"Content-Type": "application/json"}

_FUNCTION_PREFIX = re.compile(r"^/\.netlify/functions/[^/]+")

_GET_ROUTES: Dict[str, Callable[[], Dict[str, Any]]] = {
    "/": api.root,
    "/health": lambda: api.health(get_settings()),
    "/api/status": api.status,
}

_POST_ROUTES: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
    "/api/classify": lambda payload: api.classify(get_pipeline(), payload),
    "/api/analyze": lambda payload: api.analyze(get_pipeline(), payload),
    "/api/report": lambda payload: api.report(get_pipeline(), payload),
    "/api/chat": lambda payload: api.chat(get_agent(), payload),
}


def _response(status_code: int, body: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "statusCode": status_code,
        "headers": dict(JSON_HEADERS),
        "body": json.dumps(body, ensure_ascii=False),
    }


def normalize_path(path: str | None) -> str:
    """Strip the function mount prefix and any trailing slash."""
    path = _FUNCTION_PREFIX.sub("", path or "") or "/"
    if len(path) > 1:
        path = path.rstrip("/")
    return path


async def handle_event(event: Dict[str, Any]) -> Dict[str, Any]:
    method = str(event.get("httpMethod") or "GET").upper()
    path = normalize_path(event.get("path"))
    logger.info("%s %s", method, path)

    try:
        payload: Dict[str, Any] = {}
        if method != "GET":
            # body is parsed before routing, so malformed JSON is a 400 on any path
            payload = api.parse_json_body(event.get("body"))

        if path in _GET_ROUTES:
            if method != "GET":
                raise MethodNotAllowedError("GET")
            return _response(200, _GET_ROUTES[path]())
        if path in _POST_ROUTES:
            if method != "POST":
                raise MethodNotAllowedError("POST")
            return _response(200, await _POST_ROUTES[path](payload))
        raise NotFoundError(path)
    except SwachTrackError as e:
        if e.status_code >= 500:
            logger.error("%s %s failed: %s", method, path, e.message)
        return _response(e.status_code, e.to_dict())
    except Exception as e:
        logger.exception("Unhandled error on %s %s", method, path)
        return _response(
            500,
            {
                "error": "Internal Server Error",
                "message": str(e) if get_settings().debug else "Something went wrong",
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )


_LOOP: asyncio.AbstractEventLoop | None = None


def handler(event: Dict[str, Any], context: Any = None) -> Dict[str, Any]:
    """Synchronous entry point for serverless runtimes.

    Warm invocations reuse one event loop so the cached async HTTP client
    stays bound to a live loop.
    """
    global _LOOP
    if _LOOP is None or _LOOP.is_closed():
        _LOOP = asyncio.new_event_loop()
    return _LOOP.run_until_complete(handle_event(event))
