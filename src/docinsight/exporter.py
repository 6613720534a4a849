from __future__ import annotations

import csv
import io
import json
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from typing import Any

from .errors import UnsupportedFormatError
from .models import CompositeAnalysis, ExportArtifact, FacetSuccess
from .templates import Facet

CSV_HEADER = "Analysis Component,Key,Value"
REPORT_TITLE = "Document Analysis Report"
SUMMARY_REPORT_TITLE = "Document Analysis Summary Report"


def _stamp(ts: datetime) -> str:
    if ts.tzinfo is not None:
        ts = ts.astimezone(timezone.utc)
    return ts.strftime("%Y%m%dT%H%M%SZ")


def _dump(value: Any) -> str:
    return json.dumps(value, indent=2, ensure_ascii=False)


def _scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return json.dumps(value, ensure_ascii=False)
    return str(value)


def _humanize(key: str) -> str:
    return " ".join(word[:1].upper() + word[1:] for word in key.replace("_", " ").split(" "))


def _successful(composite: CompositeAnalysis) -> Iterator[tuple[str, dict[str, Any]]]:
    for name, result in composite.results.items():
        if isinstance(result, FacetSuccess):
            yield name, result.value


def _flatten(obj: dict[str, Any], component: str) -> Iterator[tuple[str, str, str]]:
    for key, value in obj.items():
        if isinstance(value, dict):
            yield from _flatten(value, f"{component}.{key}")
        elif isinstance(value, list):
            yield component, str(key), "; ".join(_scalar(v) for v in value)
        else:
            yield component, str(key), _scalar(value)


def export_json(composite: CompositeAnalysis, generated_at: datetime) -> ExportArtifact:
    return ExportArtifact(
        content=_dump(composite.to_dict()),
        media_type="application/json",
        filename=f"analysis_{_stamp(composite.timestamp)}.json",
    )


def export_csv(composite: CompositeAnalysis, generated_at: datetime) -> ExportArtifact:
    buf = io.StringIO()
    buf.write(CSV_HEADER + "\n")
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    for name, value in _successful(composite):
        writer.writerows(_flatten(value, name))
    return ExportArtifact(
        content=buf.getvalue(),
        media_type="text/csv",
        filename=f"analysis_{_stamp(composite.timestamp)}.csv",
    )


def export_markdown(composite: CompositeAnalysis, generated_at: datetime) -> ExportArtifact:
    lines = [
        f"# {REPORT_TITLE}",
        "",
        f"**Generated:** {generated_at.isoformat()}",
        "",
        f"**Analysis Type:** {composite.analysis_type}",
        "",
        f"**Model Used:** {composite.model_used}",
        "",
    ]

    executive = composite.summary.main_findings.get("executiveSummary")
    if executive:
        lines += ["## Executive Summary", "", str(executive), ""]

    for name, value in _successful(composite):
        lines += [f"## {_humanize(name)} Analysis", ""]
        for key, item in value.items():
            label = f"**{_humanize(str(key))}:**"
            if isinstance(item, list):
                lines.append(label)
                lines += [f"- {_scalar(v)}" for v in item]
            elif isinstance(item, dict):
                lines += [label, "```json", _dump(item), "```"]
            else:
                lines.append(f"{label} {_scalar(item)}")
            lines.append("")

    return ExportArtifact(
        content="\n".join(lines),
        media_type="text/markdown",
        filename=f"analysis_{_stamp(composite.timestamp)}.md",
    )


def export_summary(composite: CompositeAnalysis, generated_at: datetime) -> ExportArtifact:
    digest = composite.summary
    findings = dict(digest.main_findings)

    comprehensive = composite.results.get(Facet.COMPREHENSIVE.value)
    if isinstance(comprehensive, FacetSuccess):
        categorization = comprehensive.value.get("categorization")
        if isinstance(categorization, dict) and "industry" in categorization:
            findings["industry"] = categorization["industry"]
        sentiment = comprehensive.value.get("sentiment_analysis")
        if isinstance(sentiment, dict) and "emotional_tone" in sentiment:
            findings["emotionalTone"] = sentiment["emotional_tone"]

    report = {
        "title": SUMMARY_REPORT_TITLE,
        "generatedAt": generated_at.isoformat(),
        "analysisOverview": {
            "analysisType": composite.analysis_type,
            "modelUsed": composite.model_used,
            "documentLength": composite.document_length,
            "processingTimeMs": composite.processing_time_ms,
            "facetsSucceeded": composite.succeeded(),
            "facetsFailed": composite.failures(),
        },
        "keyFindings": findings,
        "recommendations": digest.recommendations,
        "fullAnalysis": composite.to_dict(),
    }
    return ExportArtifact(
        content=_dump(report),
        media_type="application/json",
        filename=f"summary_report_{_stamp(composite.timestamp)}.json",
    )


_EXPORTERS: dict[str, Callable[[CompositeAnalysis, datetime], ExportArtifact]] = {
    "json": export_json,
    "csv": export_csv,
    "markdown": export_markdown,
    "summary": export_summary,
}

SUPPORTED_FORMATS = tuple(_EXPORTERS)


def export(composite: CompositeAnalysis, fmt: str, *, generated_at: datetime | None = None) -> ExportArtifact:
    """
    Serialize ``composite`` as ``json``, ``csv``, ``markdown`` or ``summary``.

    Pure: the only time value used is ``generated_at``, which defaults to the
    composite's own timestamp, so equal inputs give byte-identical output.
    """
    exporter = _EXPORTERS.get(fmt.strip().lower()) if isinstance(fmt, str) else None
    if exporter is None:
        raise UnsupportedFormatError(str(fmt))
    return exporter(composite, generated_at or composite.timestamp)
