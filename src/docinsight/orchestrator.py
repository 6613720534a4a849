from __future__ import annotations

import asyncio
import contextlib
import time
from collections.abc import Callable, Mapping
from datetime import datetime, timezone
from typing import Any, Protocol

import structlog

from .config import InsightConfig, SuccessPolicy
from .contracts import CompletionRequest, CompletionResponse
from .errors import AnalysisError, ConfigurationError, ContentTooShortError, RequestTimeoutError
from .metrics import analyses_total, facet_results_total
from .models import (
    AnalysisOptions,
    AnalysisTask,
    CompositeAnalysis,
    DigestSummary,
    FacetFailure,
    FacetResult,
    FacetSuccess,
)
from .parsing import Parsed, Raw, fallback_keywords, parse_structured
from .templates import Facet, PromptTemplate, resolve_templates

log = structlog.get_logger()


class CompletionBackend(Protocol):
    async def complete(self, request: CompletionRequest) -> CompletionResponse: ...


def interpret_completion(facet: Facet, text: str, *, structured: bool = True) -> tuple[dict[str, Any], bool]:
    """
    Turn completion text into a facet value.

    Narrative templates (``structured=False``) keep the text as written.
    Returns ``(value, degraded)``; ``degraded`` is True when structured output
    was expected but a facet-specific fallback produced the value.
    """
    if not structured:
        return {"summary": text, "wordCount": len(text.split())}, False

    parsed = parse_structured(text)
    if isinstance(parsed, Parsed):
        return parsed.value, False

    raw: Raw = parsed
    if facet is Facet.KEYWORDS:
        return fallback_keywords(raw.text), True
    if facet is Facet.CATEGORIZATION:
        return {"primary_category": "General Document", "confidence_score": 0.5, "raw_response": raw.text}, True
    if facet is Facet.SENTIMENT:
        return {"overall_sentiment": "Neutral", "confidence_score": 0.5, "raw_response": raw.text}, True
    return {"raw_analysis": raw.text}, True


class AnalysisOrchestrator:
    """
    Runs one multi-facet analysis of a document.

    The comprehensive facet runs first and alone; the secondary facets then
    fan out concurrently (capped by ``max_concurrent_facets``) and are all
    joined before the composite is assembled. A failing facet only produces a
    ``FacetFailure`` for itself. No state is kept between calls.
    """

    def __init__(
        self,
        client: CompletionBackend,
        cfg: InsightConfig | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ):
        self.client = client
        self.cfg = cfg or InsightConfig()
        self._clock: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))

    def _check_content(self, document_text: str) -> None:
        length = len(document_text.strip()) if document_text else 0
        if length < self.cfg.min_content_length:
            analyses_total.labels(outcome="rejected").inc()
            log.info("analysis_rejected_short_content", length=length, minimum=self.cfg.min_content_length)
            raise ContentTooShortError(length, self.cfg.min_content_length)

    def _build_task(
        self,
        facet: Facet,
        templates: Mapping[Facet, PromptTemplate],
        document_text: str,
        model: str,
    ) -> AnalysisTask:
        template = templates[facet]
        return AnalysisTask(
            facet=facet,
            system_prompt=template.system_prompt,
            user_prompt=template.render(document_text),
            model=model,
            temperature=template.temperature,
            max_tokens=template.max_tokens,
            structured=template.structured,
        )

    async def _run_task(self, task: AnalysisTask, limiter: asyncio.Semaphore | None = None) -> FacetResult:
        facet = task.facet.value
        try:
            async with limiter or contextlib.nullcontext():
                response = await self.client.complete(task.to_request())
            value, degraded = interpret_completion(task.facet, response.text, structured=task.structured)
        except Exception as e:
            # CancelledError is not an Exception subclass and still propagates.
            facet_results_total.labels(facet=facet, outcome="failure").inc()
            log.warning("facet_failed", facet=facet, error_type=type(e).__name__, error=str(e))
            return FacetFailure(error=str(e) or type(e).__name__)

        outcome = "degraded" if degraded else "success"
        facet_results_total.labels(facet=facet, outcome=outcome).inc()
        if degraded:
            log.info("facet_unstructured_fallback", facet=facet)
        return FacetSuccess(value=value)

    async def analyze(self, document_text: str, options: AnalysisOptions | None = None) -> CompositeAnalysis:
        """
        Analyze ``document_text`` across the comprehensive facet plus the
        secondary facets enabled in ``options``.

        Raises:
            ContentTooShortError: before any completion call is made.
            AnalysisError: every facet failed, or the success policy requires
                the comprehensive facet and it failed.
            RequestTimeoutError: ``analysis_timeout_seconds`` elapsed.
        """
        options = options or AnalysisOptions()
        self._check_content(document_text)

        timeout = self.cfg.analysis_timeout_seconds
        if timeout <= 0:
            return await self._analyze(document_text, options)
        try:
            return await asyncio.wait_for(self._analyze(document_text, options), timeout=timeout)
        except asyncio.TimeoutError as e:
            analyses_total.labels(outcome="timeout").inc()
            log.warning("analysis_timed_out", timeout_seconds=timeout)
            raise RequestTimeoutError(f"Document analysis exceeded {timeout:g} seconds.") from e

    async def _analyze(self, document_text: str, options: AnalysisOptions) -> CompositeAnalysis:
        started = time.monotonic()
        timestamp = self._clock()
        model = options.model_type or self.cfg.default_model
        templates = resolve_templates(options.custom_prompts)
        secondary = options.secondary_facets()

        log.info(
            "analysis_started",
            document_length=len(document_text),
            model=model,
            facets=[f.value for f in options.requested_facets()],
        )

        results: dict[str, FacetResult] = {}
        comprehensive = self._build_task(Facet.COMPREHENSIVE, templates, document_text, model)
        results[Facet.COMPREHENSIVE.value] = await self._run_task(comprehensive)

        tasks = [self._build_task(facet, templates, document_text, model) for facet in secondary]
        limiter = asyncio.Semaphore(max(1, self.cfg.max_concurrent_facets))
        settled = await asyncio.gather(*(self._run_task(task, limiter) for task in tasks))
        for task, outcome in zip(tasks, settled):
            results[task.facet.value] = outcome

        composite = CompositeAnalysis(
            timestamp=timestamp,
            document_length=len(document_text),
            model_used=model,
            results=results,
            summary=DigestSummary.from_results(results),
            processing_time_ms=int((time.monotonic() - started) * 1000),
        )
        self._enforce_policy(composite)

        failures = composite.failures()
        analyses_total.labels(outcome="partial" if failures else "complete").inc()
        log.info(
            "analysis_completed",
            succeeded=composite.succeeded(),
            failed=sorted(failures),
            processing_time_ms=composite.processing_time_ms,
        )
        return composite

    def _enforce_policy(self, composite: CompositeAnalysis) -> None:
        failures = composite.failures()
        total_failure = len(failures) == len(composite.results)
        comprehensive_missing = (
            self.cfg.success_policy is SuccessPolicy.COMPREHENSIVE_REQUIRED
            and Facet.COMPREHENSIVE.value in failures
        )
        if total_failure or comprehensive_missing:
            analyses_total.labels(outcome="failed").inc()
            log.error("analysis_failed", failures=failures, policy=self.cfg.success_policy.value)
            raise AnalysisError(failures)

    async def analyze_facet(
        self,
        document_text: str,
        facet: Facet | str,
        options: AnalysisOptions | None = None,
    ) -> dict[str, Any]:
        """Run a single facet on its own; client errors propagate unchanged."""
        try:
            facet = Facet(facet)
        except ValueError as e:
            raise ConfigurationError(f"Unknown analysis facet: {facet!r}") from e
        options = options or AnalysisOptions()
        self._check_content(document_text)

        model = options.model_type or self.cfg.default_model
        task = self._build_task(facet, resolve_templates(options.custom_prompts), document_text, model)
        response = await self.client.complete(task.to_request())
        value, degraded = interpret_completion(facet, response.text, structured=task.structured)
        facet_results_total.labels(facet=facet.value, outcome="degraded" if degraded else "success").inc()
        log.info("facet_analyzed", facet=facet.value, model=model, degraded=degraded)
        return value
