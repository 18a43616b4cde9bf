import json
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Awaitable, Callable, Dict, List, Optional

from openai.types.chat import ChatCompletionMessage

from ..errors import DispatchError
from ..models import AnalysisResult, ClassificationResult, Report, ToolInvocation
from ..pipeline import IssuePipeline

logger = logging.getLogger(__name__)

DEFAULT_REPLY = "I'm here to help you with civic issues. How can I assist you today?"
UNKNOWN_TOOL_REPLY = "I'm not sure how to handle that request. Please try again."
FALLBACK_REPLY = (
    "I encountered an error while processing your request. Please try again or "
    "provide more details about the issue."
)


@lru_cache(maxsize=1)
def get_tool_schemas() -> List[Dict[str, Any]]:
    """Return OpenAI tool schemas for the pipeline steps (cached).

    Returns:
        List[Dict[str, Any]]: Tool schemas in OpenAI function format.
    """
    return [
        {
            "type": "function",
            "function": {
                "name": "classify_issue",
                "description": "Classify a civic issue into appropriate category",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "issue_description": {
                            "type": "string",
                            "description": "Description of the civic issue to classify",
                        }
                    },
                    "required": ["issue_description"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": "analyze_issue",
                "description": "Analyze a civic issue and provide estimates",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "issue": {"type": "string"},
                        "category": {"type": "string"},
                        "location": {"type": "string"},
                        "severity_indicators": {"type": "string"},
                    },
                    "required": ["issue", "category", "location", "severity_indicators"],
                },
            },
        },
        {
            "type": "function",
            "function": {
                "name": "create_report",
                "description": "Create a complete civic issue report",
                "parameters": {
                    "type": "object",
                    "properties": {
                        "issue_description": {
                            "type": "string",
                            "description": "Description of the civic issue to report",
                        }
                    },
                    "required": ["issue_description"],
                },
            },
        },
    ]


@lru_cache(maxsize=1)
def _required_arguments() -> Dict[str, tuple]:
    return {
        schema["function"]["name"]: tuple(schema["function"]["parameters"]["required"])
        for schema in get_tool_schemas()
    }


def is_known_tool(name: str) -> bool:
    return name in _required_arguments()


@dataclass
class ToolResult:
    """Outcome of a dispatched tool: JSON payload for the transcript plus the reply text."""

    name: str
    payload: Dict[str, Any]
    reply: str
    report: Optional[Report] = None

    def to_json(self) -> str:
        """Payload as the JSON text stored in the tool turn."""
        return json.dumps(self.payload, ensure_ascii=False)


def render_classification(result: ClassificationResult) -> str:
    """Chat reply for a classification, offering the next step."""
    return (
        f"I've classified your issue as: **{result.category}** in "
        f"**{result.location}**. The severity indicators are: "
        f"{result.severity_indicators}. Would you like me to analyze this issue "
        "further and create a complete report?"
    )


def render_analysis(result: AnalysisResult) -> str:
    """Chat reply listing every analysis field."""
    return (
        "Here's the analysis for your issue:\n\n"
        f"**Time Estimate:** {result.time_estimate}\n"
        f"**Cost Estimate:** {result.cost_estimate}\n"
        f"**Manpower Required:** {result.manpower_required}\n"
        f"**Recommended Company:** {result.recommended_company}\n"
        f"**Severity:** {result.severity}\n\n"
        f"**Summary:** {result.summary}"
    )


def render_report(report: Report) -> str:
    """Chat reply announcing a filed report with its id and next steps."""
    steps = "\n".join(f"{i}. {step}" for i, step in enumerate(report.next_steps, 1))
    return (
        "✅ **Report Created Successfully!**\n\n"
        f"**Report ID:** {report.report_id}\n"
        f"**Status:** {report.status}\n"
        f"**Timestamp:** {report.timestamp}\n\n"
        "**Issue Summary:**\n"
        f"- Category: {report.classification.category}\n"
        f"- Location: {report.classification.location}\n"
        f"- Severity: {report.analysis.severity}\n"
        f"- Estimated Cost: {report.analysis.cost_estimate}\n"
        f"- Time Required: {report.analysis.time_estimate}\n\n"
        f"**Next Steps:**\n{steps}\n\n"
        "Your report has been forwarded to the municipal authorities. You can use "
        "the Report ID to track the progress."
    )


async def _classify_issue(pipeline: IssuePipeline, args: Dict[str, Any]) -> ToolResult:
    """Run the classify step for the classify_issue tool."""
    result = await pipeline.classify(args["issue_description"])
    return ToolResult("classify_issue", result.to_dict(), render_classification(result))


async def _analyze_issue(pipeline: IssuePipeline, args: Dict[str, Any]) -> ToolResult:
    """Run the analyze step on the model-supplied classification."""
    result = await pipeline.analyze(
        args["issue"], args["category"], args["location"], args["severity_indicators"]
    )
    return ToolResult("analyze_issue", result.to_dict(), render_analysis(result))


async def _create_report(pipeline: IssuePipeline, args: Dict[str, Any]) -> ToolResult:
    """Run classify then analyze and return the composed report."""
    report = await pipeline.report(args["issue_description"])
    return ToolResult("create_report", report.to_dict(), render_report(report), report=report)


_HANDLERS: Dict[str, Callable[[IssuePipeline, Dict[str, Any]], Awaitable[ToolResult]]] = {
    "classify_issue": _classify_issue,
    "analyze_issue": _analyze_issue,
    "create_report": _create_report,
}


def parse_tool_invocation(message: ChatCompletionMessage) -> Optional[ToolInvocation]:
    """Pull the first tool call (or legacy function_call) out of an assistant message.

    Raises:
        DispatchError: the arguments are not a JSON object.
    """
    call_id = None
    if message.tool_calls:
        if len(message.tool_calls) > 1:
            logger.warning(
                "Model requested %d tool calls; only the first is dispatched",
                len(message.tool_calls),
            )
        call = message.tool_calls[0]
        function = getattr(call, "function", None)
        if function is None:
            raise DispatchError(f"Unsupported tool call type: {getattr(call, 'type', None)}")
        call_id = call.id
        name, raw_args = function.name, function.arguments
    elif getattr(message, "function_call", None):
        name, raw_args = message.function_call.name, message.function_call.arguments
    else:
        return None

    try:
        arguments = json.loads(raw_args) if raw_args else {}
    except json.JSONDecodeError as e:
        raise DispatchError(f"Invalid arguments for {name}: {e}") from e
    if not isinstance(arguments, dict):
        raise DispatchError(f"Arguments for {name} are not an object")
    return ToolInvocation(name=name, arguments=arguments, call_id=call_id)


async def dispatch_tool(pipeline: IssuePipeline, invocation: ToolInvocation) -> ToolResult:
    """Run the pipeline step named by the invocation.

    Raises:
        DispatchError: unknown tool or missing required arguments.
        ValidationError, UpstreamError: propagated from the pipeline step.
    """
    handler = _HANDLERS.get(invocation.name)
    if handler is None:
        raise DispatchError(f"Unknown tool: {invocation.name}")

    missing = [
        key for key in _required_arguments()[invocation.name] if key not in invocation.arguments
    ]
    if missing:
        raise DispatchError(f"Tool {invocation.name} is missing arguments: {', '.join(missing)}")

    logger.info("Dispatching tool %s", invocation.name)
    return await handler(pipeline, invocation.arguments)
