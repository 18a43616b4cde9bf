"""
Dependency providers shared by the FastAPI app and the serverless adapter.

- get_gateway(): singleton ModelGateway
- get_pipeline(): singleton IssuePipeline
- get_session_store(): singleton SessionStore (Redis when configured)
- get_agent(): singleton CivicChatAgent wired from the above
"""
from functools import lru_cache

from .agent import CivicChatAgent
from .pipeline import IssuePipeline
from .services.gateway import ModelGateway
from .services.sessions import SessionStore, build_session_store
from .settings import get_settings


@lru_cache(maxsize=1)
def get_gateway() -> ModelGateway:
    return ModelGateway(get_settings())


@lru_cache(maxsize=1)
def get_pipeline() -> IssuePipeline:
    return IssuePipeline(get_gateway(), get_settings())


@lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    return build_session_store(get_settings())


@lru_cache(maxsize=1)
def get_agent() -> CivicChatAgent:
    return CivicChatAgent(
        gateway=get_gateway(),
        pipeline=get_pipeline(),
        store=get_session_store(),
        settings=get_settings(),
    )


def clear_cached_providers() -> None:
    """Drop cached providers so the next call rebuilds them from current settings."""
    for provider in (get_agent, get_session_store, get_pipeline, get_gateway):
        provider.cache_clear()
