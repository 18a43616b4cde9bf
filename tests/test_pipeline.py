from unittest.mock import MagicMock

import pytest

from conftest import ANALYSIS, CLASSIFICATION, assistant_message, json_message
from swachtrack.errors import UpstreamError, ValidationError
from swachtrack.models import REPORT_NEXT_STEPS, AnalysisResult, ClassificationResult
from swachtrack.pipeline import IssuePipeline


@pytest.mark.asyncio
async def test_classify_sends_system_prompt_and_issue(pipeline: IssuePipeline, gateway: MagicMock, settings) -> None:
    gateway.complete.return_value = json_message(CLASSIFICATION)

    result = await pipeline.classify("Streetlight broken near the park")

    assert result == ClassificationResult(**CLASSIFICATION)
    messages = gateway.complete.call_args.args[0]
    assert messages == [
        {"role": "system", "content": settings.classify_system_prompt},
        {"role": "user", "content": "Streetlight broken near the park"},
    ]
    fmt = gateway.complete.call_args.kwargs["response_format"]
    assert fmt["json_schema"]["name"] == "classification_schema"


@pytest.mark.asyncio
@pytest.mark.parametrize("issue", [None, "", "   "])
async def test_classify_requires_issue(pipeline: IssuePipeline, gateway: MagicMock, issue) -> None:
    with pytest.raises(ValidationError) as exc:
        await pipeline.classify(issue)
    assert exc.value.field == "issue"
    gateway.complete.assert_not_called()


@pytest.mark.asyncio
async def test_classify_unparseable_content_is_upstream_error(pipeline: IssuePipeline, gateway: MagicMock) -> None:
    gateway.complete.return_value = assistant_message("I cannot help with that")
    with pytest.raises(UpstreamError):
        await pipeline.classify("pothole")


@pytest.mark.asyncio
async def test_classify_is_deterministic_for_fixed_gateway(pipeline: IssuePipeline, gateway: MagicMock) -> None:
    gateway.complete.return_value = json_message(CLASSIFICATION)
    first = await pipeline.classify("pothole on MG Road")
    second = await pipeline.classify("pothole on MG Road")
    assert first == second
    assert gateway.complete.call_args_list[0] == gateway.complete.call_args_list[1]


@pytest.mark.asyncio
async def test_analyze_prompt_contains_all_fields_verbatim(pipeline: IssuePipeline, gateway: MagicMock, settings) -> None:
    gateway.complete.return_value = json_message(ANALYSIS)

    result = await pipeline.analyze(
        "Water logging after rain",
        "water logging",
        "Andheri East, Mumbai",
        "Knee-deep water, traffic blocked",
    )

    assert result == AnalysisResult(**ANALYSIS)
    system, user = gateway.complete.call_args.args[0]
    assert system == {"role": "system", "content": settings.analyze_system_prompt}
    for value in (
        "Water logging after rain",
        "water logging",
        "Andheri East, Mumbai",
        "Knee-deep water, traffic blocked",
    ):
        assert value in user["content"]
    assert gateway.complete.call_args.kwargs["response_format"]["json_schema"]["name"] == "analysis_schema"


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["issue", "category", "location", "severity_indicators"])
async def test_analyze_requires_every_field(pipeline: IssuePipeline, gateway: MagicMock, missing: str) -> None:
    fields = dict(CLASSIFICATION)
    fields[missing] = ""
    with pytest.raises(ValidationError) as exc:
        await pipeline.analyze(**fields)
    assert exc.value.field == missing
    assert missing in exc.value.message
    gateway.complete.assert_not_called()


@pytest.mark.asyncio
async def test_report_composes_classify_and_analyze(pipeline: IssuePipeline, gateway: MagicMock) -> None:
    gateway.complete.side_effect = [json_message(CLASSIFICATION), json_message(ANALYSIS)]

    report = await pipeline.report("streetlight broken near park")

    assert report.report_id.startswith("RPT-")
    assert report.original_issue == "streetlight broken near park"
    assert report.classification == ClassificationResult(**CLASSIFICATION)
    assert report.analysis == AnalysisResult(**ANALYSIS)
    assert report.status == "processed"
    assert report.next_steps == list(REPORT_NEXT_STEPS)

    # analyze received the classification's four fields
    analyze_prompt = gateway.complete.call_args_list[1].args[0][1]["content"]
    for value in CLASSIFICATION.values():
        assert value in analyze_prompt


@pytest.mark.asyncio
async def test_report_stops_when_classify_fails(pipeline: IssuePipeline, gateway: MagicMock) -> None:
    gateway.complete.side_effect = [assistant_message("garbled"), json_message(ANALYSIS)]
    with pytest.raises(UpstreamError):
        await pipeline.report("pothole")
    assert gateway.complete.call_count == 1


@pytest.mark.asyncio
async def test_report_with_blank_classification_field_is_upstream_error(pipeline: IssuePipeline, gateway: MagicMock) -> None:
    blank = dict(CLASSIFICATION, location="")
    gateway.complete.side_effect = [json_message(blank), json_message(ANALYSIS)]
    with pytest.raises(UpstreamError):
        await pipeline.report("pothole")
    assert gateway.complete.call_count == 1


@pytest.mark.asyncio
@pytest.mark.parametrize("value", [None, 42, ["Cubbon Park"]])
async def test_report_with_non_string_classification_field_is_upstream_error(
    pipeline: IssuePipeline, gateway: MagicMock, value
) -> None:
    gateway.complete.side_effect = [json_message(dict(CLASSIFICATION, location=value)), json_message(ANALYSIS)]
    with pytest.raises(UpstreamError):
        await pipeline.report("pothole")
    assert gateway.complete.call_count == 1


@pytest.mark.asyncio
async def test_report_to_dict_shape(pipeline: IssuePipeline, gateway: MagicMock) -> None:
    gateway.complete.side_effect = [json_message(CLASSIFICATION), json_message(ANALYSIS)]
    data = (await pipeline.report("pothole")).to_dict()
    assert set(data) == {
        "report_id",
        "timestamp",
        "original_issue",
        "classification",
        "analysis",
        "status",
        "next_steps",
    }
    assert data["classification"] == CLASSIFICATION
    assert data["analysis"] == ANALYSIS
