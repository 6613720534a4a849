from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .contracts import CompletionRequest
from .templates import SECONDARY_FACETS, Facet, PromptOverride


class AnalysisOptions(BaseModel):
    """Caller options for one analysis; accepts snake_case or camelCase keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        protected_namespaces=(),
    )

    model_type: str | None = None
    include_summary: bool = True
    include_keywords: bool = True
    include_categorization: bool = True
    include_sentiment: bool = True
    custom_prompts: dict[str, PromptOverride] = Field(default_factory=dict)

    def secondary_facets(self) -> list[Facet]:
        enabled = {
            Facet.SUMMARY: self.include_summary,
            Facet.KEYWORDS: self.include_keywords,
            Facet.CATEGORIZATION: self.include_categorization,
            Facet.SENTIMENT: self.include_sentiment,
        }
        return [facet for facet in SECONDARY_FACETS if enabled[facet]]

    def requested_facets(self) -> list[Facet]:
        return [Facet.COMPREHENSIVE, *self.secondary_facets()]


@dataclass(frozen=True)
class AnalysisTask:
    facet: Facet
    system_prompt: str
    user_prompt: str
    model: str
    temperature: float
    max_tokens: int
    structured: bool = True

    def to_request(self) -> CompletionRequest:
        return CompletionRequest.from_prompts(
            self.model,
            self.system_prompt,
            self.user_prompt,
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )


@dataclass(frozen=True)
class FacetSuccess:
    value: dict[str, Any]

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict[str, Any]:
        return self.value


@dataclass(frozen=True)
class FacetFailure:
    error: str

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.error}


FacetResult = FacetSuccess | FacetFailure


def facet_result_from_dict(data: Any) -> FacetResult:
    if isinstance(data, dict) and set(data) == {"error"}:
        return FacetFailure(error=str(data["error"]))
    return FacetSuccess(value=data if isinstance(data, dict) else {"value": data})


def _section(value: dict[str, Any], key: str) -> dict[str, Any]:
    section = value.get(key)
    return section if isinstance(section, dict) else {}


@dataclass(frozen=True)
class DigestSummary:
    analysis_complete: bool
    components_analyzed: int
    main_findings: dict[str, Any] = field(default_factory=dict)
    recommendations: list[Any] = field(default_factory=list)
    failed_components: list[str] = field(default_factory=list)

    @classmethod
    def from_results(cls, results: dict[str, FacetResult]) -> "DigestSummary":
        """Headline findings from the comprehensive facet; minimal when it failed."""
        failed = [name for name, r in results.items() if not r.ok]
        findings: dict[str, Any] = {}
        recommendations: list[Any] = []

        comprehensive = results.get(Facet.COMPREHENSIVE.value)
        if isinstance(comprehensive, FacetSuccess):
            comp = comprehensive.value
            summary = _section(comp, "summary")
            if summary:
                findings["executiveSummary"] = summary.get("executive_summary")
                findings["keyPoints"] = summary.get("key_points")
            if "categorization" in comp:
                findings["category"] = _section(comp, "categorization").get("primary_category")
            if "sentiment_analysis" in comp:
                findings["sentiment"] = _section(comp, "sentiment_analysis").get("overall_sentiment")
            recs = _section(comp, "actionable_insights").get("recommendations")
            if isinstance(recs, list):
                recommendations = list(recs)

        return cls(
            analysis_complete=not failed,
            components_analyzed=len(results),
            main_findings=findings,
            recommendations=recommendations,
            failed_components=failed,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "analysisComplete": self.analysis_complete,
            "componentsAnalyzed": self.components_analyzed,
            "mainFindings": self.main_findings,
            "recommendations": self.recommendations,
            "failedComponents": self.failed_components,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DigestSummary":
        return cls(
            analysis_complete=bool(data.get("analysisComplete", False)),
            components_analyzed=int(data.get("componentsAnalyzed", 0)),
            main_findings=dict(data.get("mainFindings") or {}),
            recommendations=list(data.get("recommendations") or []),
            failed_components=list(data.get("failedComponents") or []),
        )


@dataclass(frozen=True)
class CompositeAnalysis:
    timestamp: datetime
    document_length: int
    model_used: str
    results: dict[str, FacetResult]
    summary: DigestSummary
    analysis_type: str = "comprehensive"
    processing_time_ms: int | None = None

    def succeeded(self) -> list[str]:
        return [name for name, r in self.results.items() if r.ok]

    def failures(self) -> dict[str, str]:
        return {name: r.error for name, r in self.results.items() if isinstance(r, FacetFailure)}

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "documentLength": self.document_length,
            "modelUsed": self.model_used,
            "analysisType": self.analysis_type,
            "processingTimeMs": self.processing_time_ms,
            "results": {name: r.to_dict() for name, r in self.results.items()},
            "summary": self.summary.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CompositeAnalysis":
        results = {name: facet_result_from_dict(v) for name, v in (data.get("results") or {}).items()}
        summary = data.get("summary")
        return cls(
            timestamp=datetime.fromisoformat(data["timestamp"]),
            document_length=int(data.get("documentLength", 0)),
            model_used=str(data.get("modelUsed", "")),
            results=results,
            summary=DigestSummary.from_dict(summary) if isinstance(summary, dict) else DigestSummary.from_results(results),
            analysis_type=str(data.get("analysisType", "comprehensive")),
            processing_time_ms=data.get("processingTimeMs"),
        )


@dataclass(frozen=True)
class ExportArtifact:
    content: str
    media_type: str
    filename: str

    def encode(self) -> bytes:
        return self.content.encode("utf-8")
