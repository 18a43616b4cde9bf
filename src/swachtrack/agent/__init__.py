"""Chat agent for SwachTrack: session transcripts plus model-driven tool dispatch.

The orchestrator lives in ``agent``; the tool catalog, dispatch and reply
templates live in ``tools``.
"""

from .agent import CivicChatAgent, new_session_id
from .tools import dispatch_tool, get_tool_schemas, parse_tool_invocation

__all__ = [
    "CivicChatAgent",
    "dispatch_tool",
    "get_tool_schemas",
    "new_session_id",
    "parse_tool_invocation",
]
