import logging
import time
from typing import Any, Dict

from .errors import UpstreamError, ValidationError
from .models import AnalysisResult, ClassificationResult, Report, utc_now_iso
from .services.gateway import ModelGateway, json_schema_format, parse_json_object
from .settings import Settings, get_settings

logger = logging.getLogger(__name__)

CLASSIFICATION_FORMAT = json_schema_format(
    "classification_schema", ClassificationResult.FIELDS
)
ANALYSIS_FORMAT = json_schema_format("analysis_schema", AnalysisResult.FIELDS)

ANALYSIS_PROMPT_TEMPLATE = (
    "Issue: {issue}\n"
    "Category: {category}\n"
    "Location: {location}\n"
    "Severity Indicators: {severity_indicators}\n\n"
    "Please analyze this civic issue and provide detailed estimates and "
    "recommendations."
)


def require_text(field: str, value: Any) -> str:
    """Return value as text or raise ValidationError naming the field."""
    if value is None or not str(value).strip():
        raise ValidationError(field)
    return str(value)


def new_report_id() -> str:
    return f"RPT-{int(time.time() * 1000)}"


class IssuePipeline:
    """Classify, analyze and report steps, one model call per step."""

    def __init__(self, gateway: ModelGateway, settings: Settings | None = None) -> None:
        self._gateway = gateway
        self._settings = settings or get_settings()

    async def classify(self, issue_text: Any) -> ClassificationResult:
        """Map an issue description to a category, location and severity indicators."""
        issue_text = require_text("issue", issue_text)
        logger.info("classify received issue=%r", issue_text[:120])

        message = await self._gateway.complete(
            [
                {"role": "system", "content": self._settings.classify_system_prompt},
                {"role": "user", "content": issue_text},
            ],
            response_format=CLASSIFICATION_FORMAT,
        )
        data = parse_json_object(message.content, ClassificationResult.FIELDS)
        result = ClassificationResult.from_dict(data)
        logger.info("classify completed category=%s", result.category)
        return result

    async def analyze(
        self,
        issue: Any,
        category: Any,
        location: Any,
        severity_indicators: Any,
    ) -> AnalysisResult:
        """Estimate time, cost, manpower and severity for a classified issue."""
        fields: Dict[str, str] = {
            "issue": require_text("issue", issue),
            "category": require_text("category", category),
            "location": require_text("location", location),
            "severity_indicators": require_text(
                "severity_indicators", severity_indicators
            ),
        }
        logger.info(
            "analyze received category=%s location=%s",
            fields["category"],
            fields["location"],
        )

        message = await self._gateway.complete(
            [
                {"role": "system", "content": self._settings.analyze_system_prompt},
                {"role": "user", "content": ANALYSIS_PROMPT_TEMPLATE.format(**fields)},
            ],
            response_format=ANALYSIS_FORMAT,
        )
        data = parse_json_object(message.content, AnalysisResult.FIELDS)
        result = AnalysisResult.from_dict(data)
        logger.info("analyze completed severity=%s", result.severity)
        return result

    async def report(self, issue_text: Any) -> Report:
        """Run classify then analyze and compose the two into a Report."""
        issue_text = require_text("issue", issue_text)
        classification = await self.classify(issue_text)
        try:
            analysis = await self.analyze(
                classification.issue,
                classification.category,
                classification.location,
                classification.severity_indicators,
            )
        except ValidationError as e:
            # the model left a classification field blank
            raise UpstreamError(
                "Classification is incomplete", details=e.message
            ) from e

        report = Report(
            report_id=new_report_id(),
            timestamp=utc_now_iso(),
            original_issue=issue_text,
            classification=classification,
            analysis=analysis,
        )
        logger.info("report composed report_id=%s", report.report_id)
        return report
