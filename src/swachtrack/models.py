from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

Role = Literal["system", "user", "assistant", "tool"]

SYSTEM_ROLE = "system"
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
TOOL_ROLE = "tool"

REPORT_STATUS = "processed"
REPORT_NEXT_STEPS = (
    "Forward to municipal department",
    "Assign to recommended contractor",
    "Schedule repair work",
    "Monitor progress",
)


def utc_now_iso() -> str:
    """Return the current UTC time as an ISO 8601 string."""
    return datetime.now(timezone.utc).isoformat()


@dataclass(frozen=True)
class Message:
    """One transcript turn. Frozen: turns are appended, never edited."""

    role: Role
    content: str
    timestamp: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to a JSON-ready dict; timestamp is omitted when unset."""
        data: Dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp:
            data["timestamp"] = self.timestamp
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        """Build a Message from a stored or client-supplied dict.

        Raises:
            KeyError: data has no role.
        """
        return cls(
            role=data["role"],
            content=str(data.get("content") or ""),
            timestamp=data.get("timestamp"),
        )


@dataclass
class SessionState:
    """Per-session conversation state (ordered transcript, tool call count)."""

    session_id: str
    messages: List[Message] = field(default_factory=list)
    tool_calls_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the Redis session store."""
        return {
            "session_id": self.session_id,
            "messages": [m.to_dict() for m in self.messages],
            "tool_calls_count": self.tool_calls_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SessionState":
        """Build SessionState from a dict (e.g. from Redis)."""
        return cls(
            session_id=data.get("session_id", ""),
            messages=[Message.from_dict(m) for m in data.get("messages", [])],
            tool_calls_count=int(data.get("tool_calls_count", 0)),
        )


@dataclass(frozen=True)
class ClassificationResult:
    """Category, location and severity indicators extracted from an issue."""

    issue: str
    category: str
    location: str
    severity_indicators: str

    FIELDS = ("issue", "category", "location", "severity_indicators")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClassificationResult":
        """Build from a parsed model response.

        Args:
            data: Dict holding every name in FIELDS as a string; see parse_json_object.
        """
        return cls(**{name: data[name] for name in cls.FIELDS})

    def to_dict(self) -> Dict[str, str]:
        """Serialize as a flat dict of strings."""
        return asdict(self)


@dataclass(frozen=True)
class AnalysisResult:
    """Remediation estimates and severity for a classified issue."""

    time_estimate: str
    cost_estimate: str
    manpower_required: str
    recommended_company: str
    severity: str
    summary: str

    FIELDS = (
        "time_estimate",
        "cost_estimate",
        "manpower_required",
        "recommended_company",
        "severity",
        "summary",
    )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """Build from a parsed model response (every name in FIELDS, as strings)."""
        return cls(**{name: data[name] for name in cls.FIELDS})

    def to_dict(self) -> Dict[str, str]:
        """Serialize as a flat dict of strings."""
        return asdict(self)


@dataclass(frozen=True)
class Report:
    """Classification plus analysis under a generated report id."""

    report_id: str
    timestamp: str
    original_issue: str
    classification: ClassificationResult
    analysis: AnalysisResult
    status: str = REPORT_STATUS
    next_steps: List[str] = field(default_factory=lambda: list(REPORT_NEXT_STEPS))

    def to_dict(self) -> Dict[str, Any]:
        """Render the Report as the /api/report response body."""
        return {
            "report_id": self.report_id,
            "timestamp": self.timestamp,
            "original_issue": self.original_issue,
            "classification": self.classification.to_dict(),
            "analysis": self.analysis.to_dict(),
            "status": self.status,
            "next_steps": list(self.next_steps),
        }


@dataclass(frozen=True)
class ToolInvocation:
    """A tool call emitted by the model."""

    name: str
    arguments: Dict[str, Any]
    call_id: Optional[str] = None


@dataclass
class ChatOutcome:
    """What a chat turn returns to the caller."""

    response: str
    session_id: str
    conversation_history: List[Message]
    report_id: Optional[str] = None
    next_steps: Optional[List[str]] = None

    def to_dict(self) -> Dict[str, Any]:
        """Render the /api/chat response; report fields only when a report was made."""
        data: Dict[str, Any] = {
            "response": self.response,
            "session_id": self.session_id,
            "conversation_history": [m.to_dict() for m in self.conversation_history],
        }
        if self.report_id:
            data["report_id"] = self.report_id
        if self.next_steps:
            data["next_steps"] = list(self.next_steps)
        return data
