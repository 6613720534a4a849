import csv
import io
import json
from datetime import datetime, timezone

import pytest

from docinsight.errors import UnsupportedFormatError
from docinsight.exporter import CSV_HEADER, SUPPORTED_FORMATS, export
from docinsight.models import CompositeAnalysis, DigestSummary, FacetFailure, FacetSuccess

FIXED = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def _composite() -> CompositeAnalysis:
    results = {
        "comprehensive": FacetSuccess(
            value={
                "summary": {"executive_summary": "Revenue grew.", "key_points": ["growth", "costs"]},
                "categorization": {"primary_category": "Finance", "industry": "Banking"},
                "sentiment_analysis": {"overall_sentiment": "Positive", "emotional_tone": "Optimistic"},
                "note": 'He said "hi"',
            }
        ),
        "keywords": FacetSuccess(value={"primary_keywords": ["revenue", "growth"], "technical_terms": []}),
        "sentiment": FacetFailure(error="Rate limited"),
    }
    return CompositeAnalysis(
        timestamp=FIXED,
        document_length=120,
        model_used="gpt4o-mini",
        results=results,
        summary=DigestSummary.from_results(results),
        processing_time_ms=1234,
    )


def test_supported_formats():
    assert set(SUPPORTED_FORMATS) == {"json", "csv", "markdown", "summary"}


def test_json_export_round_trips():
    composite = _composite()
    artifact = export(composite, "json")

    assert artifact.media_type == "application/json"
    assert artifact.filename == "analysis_20240501T120000Z.json"
    data = json.loads(artifact.content)
    assert data == composite.to_dict()
    assert data["results"]["sentiment"] == {"error": "Rate limited"}
    assert data["summary"]["failedComponents"] == ["sentiment"]
    assert CompositeAnalysis.from_dict(data) == composite


def test_csv_export_has_one_row_per_leaf_and_skips_failures():
    artifact = export(_composite(), "csv")
    assert artifact.media_type == "text/csv"
    assert artifact.filename == "analysis_20240501T120000Z.csv"

    lines = artifact.content.splitlines()
    assert lines[0] == CSV_HEADER
    rows = list(csv.reader(io.StringIO("\n".join(lines[1:]))))
    assert rows == [
        ["comprehensive.summary", "executive_summary", "Revenue grew."],
        ["comprehensive.summary", "key_points", "growth; costs"],
        ["comprehensive.categorization", "primary_category", "Finance"],
        ["comprehensive.categorization", "industry", "Banking"],
        ["comprehensive.sentiment_analysis", "overall_sentiment", "Positive"],
        ["comprehensive.sentiment_analysis", "emotional_tone", "Optimistic"],
        ["comprehensive", "note", 'He said "hi"'],
        ["keywords", "primary_keywords", "revenue; growth"],
        ["keywords", "technical_terms", ""],
    ]
    assert '"comprehensive","note","He said ""hi"""' in lines
    assert not any(row[0].startswith("sentiment") for row in rows)


def test_markdown_export_lists_successful_facets():
    artifact = export(_composite(), "markdown")
    md = artifact.content

    assert artifact.filename == "analysis_20240501T120000Z.md"
    assert md.startswith("# Document Analysis Report\n")
    assert "**Generated:** 2024-05-01T12:00:00+00:00" in md
    assert "**Model Used:** gpt4o-mini" in md
    assert "## Executive Summary\n\nRevenue grew." in md
    assert "## Comprehensive Analysis" in md
    assert "## Keywords Analysis" in md
    assert "## Sentiment Analysis" not in md
    assert "**Primary Keywords:**\n- revenue\n- growth" in md
    assert "**Summary:**\n```json\n" in md


def test_summary_report_collects_key_findings():
    composite = _composite()
    artifact = export(composite, "summary")
    report = json.loads(artifact.content)

    assert artifact.filename == "summary_report_20240501T120000Z.json"
    assert report["title"] == "Document Analysis Summary Report"
    assert report["generatedAt"] == "2024-05-01T12:00:00+00:00"
    assert report["analysisOverview"]["facetsSucceeded"] == ["comprehensive", "keywords"]
    assert report["analysisOverview"]["facetsFailed"] == {"sentiment": "Rate limited"}
    assert report["keyFindings"]["category"] == "Finance"
    assert report["keyFindings"]["industry"] == "Banking"
    assert report["keyFindings"]["emotionalTone"] == "Optimistic"
    assert report["recommendations"] == []
    assert report["fullAnalysis"] == composite.to_dict()


@pytest.mark.parametrize("fmt", ["pdf", "", "xml"])
def test_unsupported_format_raises(fmt):
    with pytest.raises(UnsupportedFormatError) as exc:
        export(_composite(), fmt)
    assert exc.value.format == fmt


def test_exports_are_deterministic_and_case_insensitive():
    for fmt in SUPPORTED_FORMATS:
        first = export(_composite(), fmt)
        second = export(_composite(), fmt.upper())
        assert first.encode() == second.encode()
        assert first.filename == second.filename


def test_generated_at_only_changes_report_timestamps():
    later = datetime(2024, 6, 1, tzinfo=timezone.utc)
    assert export(_composite(), "csv", generated_at=later).content == export(_composite(), "csv").content
    assert "**Generated:** 2024-06-01T00:00:00+00:00" in export(_composite(), "markdown", generated_at=later).content
