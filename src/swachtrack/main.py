import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from redis.exceptions import RedisError
from starlette.exceptions import HTTPException as StarletteHTTPException

from . import api
from .agent import CivicChatAgent
from .deps import get_agent, get_pipeline, get_session_store
from .errors import MethodNotAllowedError, NotFoundError, SwachTrackError
from .pipeline import IssuePipeline
from .settings import get_settings

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "same-origin",
}


def setup_server_logging(log_dir: Path, level: str = "INFO") -> logging.Logger:
    """Configure the package logger (console + rotating file) and return the server logger."""
    log_dir.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger("swachtrack")
    logger = logging.getLogger("swachtrack.server")
    if root.handlers:
        return logger

    root.setLevel(level)
    fmt = logging.Formatter("%(asctime)s %(levelname)s %(name)s - %(message)s")

    ch = logging.StreamHandler()
    ch.setFormatter(fmt)
    root.addHandler(ch)

    fh = RotatingFileHandler(log_dir / "server.log", maxBytes=5_000_000, backupCount=3)
    fh.setFormatter(fmt)
    root.addHandler(fh)

    return logger


def _cors_origins_list(origins: str) -> list[str]:
    """Parse CORS_ORIGINS into a list."""
    if not origins or origins.strip() == "*":
        return ["*"]
    return [o.strip() for o in origins.split(",") if o.strip()]


settings = get_settings()
LOGGER = setup_server_logging(settings.log_dir, settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Connect the session store at startup; close it on shutdown."""
    store = get_session_store()
    try:
        await store.connect()
        LOGGER.info("Session store ready: %s", type(store).__name__)
    except (OSError, ConnectionError, TimeoutError, RedisError) as e:
        LOGGER.warning("Session store unavailable, falling back to in-memory sessions: %s", e)

    yield

    LOGGER.info("Shutting down...")
    await store.close()


app = FastAPI(
    title="SwachTrack API",
    version=api.API_VERSION,
    debug=settings.debug,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins_list(settings.cors_origins),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


@app.exception_handler(SwachTrackError)
async def swachtrack_error_handler(request: Request, exc: SwachTrackError) -> JSONResponse:
    if exc.status_code >= 500:
        LOGGER.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    if exc.status_code == 404:
        error: SwachTrackError = NotFoundError(request.url.path)
    elif exc.status_code == 405:
        allow = (exc.headers or {}).get("Allow", "POST")
        error = MethodNotAllowedError(allow)
    else:
        return JSONResponse(
            {
                "error": str(exc.detail),
                "message": str(exc.detail),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            status_code=exc.status_code,
        )
    return JSONResponse(error.to_dict(), status_code=error.status_code, headers=exc.headers)


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        {
            "error": "Internal Server Error",
            "message": str(exc) if settings.debug else "Something went wrong",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status_code=500,
    )


@app.get("/health")
async def health() -> dict[str, Any]:
    """Health check for load balancers and monitoring."""
    return api.health(get_settings())


@app.get("/")
async def root() -> dict[str, Any]:
    return api.root()


@app.get("/api/status")
async def status() -> dict[str, Any]:
    return api.status()


@app.post("/api/classify")
async def classify(
    request: Request, pipeline: IssuePipeline = Depends(get_pipeline)
) -> dict[str, Any]:
    """Classify an issue: body ``{issue}`` → ClassificationResult."""
    payload = api.parse_json_body(await request.body())
    LOGGER.info("POST /api/classify")
    return await api.classify(pipeline, payload)


@app.post("/api/analyze")
async def analyze(
    request: Request, pipeline: IssuePipeline = Depends(get_pipeline)
) -> dict[str, Any]:
    """Analyze a classified issue: body ``{issue, category, location, severity_indicators}``."""
    payload = api.parse_json_body(await request.body())
    LOGGER.info("POST /api/analyze")
    return await api.analyze(pipeline, payload)


@app.post("/api/report")
async def report(
    request: Request, pipeline: IssuePipeline = Depends(get_pipeline)
) -> dict[str, Any]:
    """Classify, analyze and compose a Report: body ``{issue}``."""
    payload = api.parse_json_body(await request.body())
    LOGGER.info("POST /api/report")
    return await api.report(pipeline, payload)


@app.post("/api/chat")
async def chat(
    request: Request, agent: CivicChatAgent = Depends(get_agent)
) -> dict[str, Any]:
    """Chat turn.

    Expected Input (JSON):
        {
            "message": str - user text,
            "session_id": str - optional, generated when absent,
            "conversation_history": list - optional, seeds a new session
        }

    Response Format:
        {response, session_id, conversation_history, report_id?, next_steps?}
    """
    payload = api.parse_json_body(await request.body())
    LOGGER.info("POST /api/chat session_id=%s", payload.get("session_id"))
    return await api.chat(agent, payload)


def run() -> None:
    """Serve the app with uvicorn on the configured host/port."""
    import uvicorn

    uvicorn.run(
        "swachtrack.main:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    run()
