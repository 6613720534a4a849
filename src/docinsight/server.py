from __future__ import annotations

import math
import os
import re
import uuid
from contextlib import asynccontextmanager
from typing import Any

import structlog

from .api_schemas import (
    AnalyzeRequest,
    AnalyzeResponse,
    ExportRequest,
    FacetResponse,
    ProcessBatchRequest,
    ProcessDocumentRequest,
    make_error_response,
)
from .completion_client import CompletionClient
from .config import InsightConfig
from .errors import (
    AnalysisError,
    AuthenticationError,
    BadRequestError,
    ConfigurationError,
    ContentTooShortError,
    DeploymentNotFoundError,
    InsightError,
    NetworkError,
    RateLimitError,
    RequestTimeoutError,
    UnsupportedFormatError,
    UpstreamProtocolError,
)
from .exporter import export
from .logging import configure_logging
from .metrics import maybe_start_metrics, server_errors_total, server_requests_total
from .models import CompositeAnalysis
from .orchestrator import AnalysisOrchestrator
from .processing import DocumentProcessor, SourceDocument

log = structlog.get_logger()

_REQUEST_ID_RE = re.compile(r"^[A-Za-z0-9._:-]{8,128}$")

# First match wins, so subclasses go before InsightError.
_ERROR_MAP: list[tuple[type[InsightError], int, str]] = [
    (ContentTooShortError, 400, "invalid_request_error"),
    (BadRequestError, 400, "invalid_request_error"),
    (ConfigurationError, 400, "invalid_request_error"),
    (UnsupportedFormatError, 400, "invalid_request_error"),
    (AuthenticationError, 401, "authentication_error"),
    (DeploymentNotFoundError, 404, "not_found_error"),
    (RateLimitError, 429, "rate_limit_error"),
    (AnalysisError, 502, "analysis_error"),
    (NetworkError, 502, "upstream_error"),
    (UpstreamProtocolError, 502, "upstream_error"),
    (RequestTimeoutError, 504, "timeout"),
]


def coerce_request_id(value: str | None) -> str:
    if value and _REQUEST_ID_RE.fullmatch(value):
        return value
    return uuid.uuid4().hex


def classify_error(exc: InsightError) -> tuple[int, str]:
    for err_type, status, kind in _ERROR_MAP:
        if isinstance(exc, err_type):
            return status, kind
    return 500, "api_error"


def create_app(
    cfg: InsightConfig | None = None,
    orchestrator: AnalysisOrchestrator | None = None,
    processor: DocumentProcessor | None = None,
):
    try:
        from fastapi import FastAPI, Request
        from fastapi.responses import JSONResponse, Response
    except ImportError as e:  # pragma: no cover
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    cfg = cfg or InsightConfig()
    configure_logging(
        level=cfg.log_level,
        fmt=cfg.log_format,
        secrets=[cfg.api_key] if cfg.api_key else None,
    )
    orchestrator = orchestrator or AnalysisOrchestrator(CompletionClient(cfg), cfg)
    processor = processor or DocumentProcessor(orchestrator.client, max_concurrency=cfg.max_concurrent_facets)

    def _request_id(request: Request) -> str | None:
        return getattr(request.state, "request_id", None)

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        maybe_start_metrics(enable=cfg.enable_metrics, bind=cfg.metrics_bind, port=cfg.metrics_port)
        try:
            yield
        finally:
            close = getattr(orchestrator.client, "close", None)
            if callable(close):
                await close()

    app = FastAPI(
        title="docinsight",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/docs" if cfg.enable_api_docs else None,
        redoc_url="/redoc" if cfg.enable_api_docs else None,
        openapi_url="/openapi.json" if cfg.enable_api_docs else None,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        request_id = coerce_request_id(request.headers.get("x-request-id"))
        request.state.request_id = request_id
        structlog.contextvars.bind_contextvars(request_id=request_id)
        try:
            content_length = request.headers.get("content-length")
            limit = cfg.max_request_body_bytes
            if limit > 0 and content_length and content_length.isdigit() and int(content_length) > limit:
                server_errors_total.labels(type="invalid_request_error").inc()
                response = JSONResponse(
                    status_code=413,
                    content=make_error_response(
                        message="Request body too large.",
                        type="invalid_request_error",
                        code=request_id,
                    ).model_dump(),
                )
            else:
                response = await call_next(request)
        finally:
            structlog.contextvars.clear_contextvars()
        response.headers.setdefault("X-Request-Id", request_id)
        server_requests_total.labels(path=request.url.path, status=str(response.status_code)).inc()
        return response

    @app.exception_handler(InsightError)
    async def _insight_error_handler(request: Request, exc: InsightError):
        status, kind = classify_error(exc)
        server_errors_total.labels(type=kind).inc()
        headers: dict[str, str] = {}
        details: dict[str, Any] | None = None
        if isinstance(exc, RateLimitError) and exc.retry_after_seconds is not None:
            headers["Retry-After"] = str(math.ceil(exc.retry_after_seconds))
        if isinstance(exc, AnalysisError):
            details = {"failures": exc.failures}
        if status >= 500:
            log.warning("server_error_response", status=status, error_type=type(exc).__name__, error=str(exc))
        return JSONResponse(
            status_code=status,
            content=make_error_response(
                message=str(exc),
                type=kind,
                code=_request_id(request),
                details=details,
            ).model_dump(),
            headers=headers,
        )

    @app.get("/healthz")
    async def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/v1/models")
    async def models() -> dict[str, Any]:
        catalogue = getattr(orchestrator.client, "available_models", None)
        return {"models": catalogue() if callable(catalogue) else [], "defaultModel": cfg.default_model}

    @app.post("/v1/analyze", response_model=AnalyzeResponse)
    async def analyze(req: AnalyzeRequest):
        composite = await orchestrator.analyze(req.document_content, req.options)
        # Partial results are still a success; failed facets are embedded.
        return AnalyzeResponse(data=composite.to_dict(), failed_facets=sorted(composite.failures()))

    @app.post("/v1/analyze/{facet}", response_model=FacetResponse)
    async def analyze_facet(facet: str, req: AnalyzeRequest):
        value = await orchestrator.analyze_facet(req.document_content, facet, req.options)
        return FacetResponse(facet=facet, data=value)

    @app.post("/v1/documents/process")
    async def process_document(req: ProcessDocumentRequest) -> dict[str, Any]:
        outcome = await processor.process_document(
            SourceDocument(content=req.document_content, file_name=req.file_name),
            req.system_prompt,
            req.user_prompt,
            model=req.model_type,
            temperature=req.temperature,
            max_tokens=req.max_tokens,
            output_format=req.output_format,
        )
        return outcome.to_dict()

    @app.post("/v1/documents/batch")
    async def process_batch(req: ProcessBatchRequest) -> dict[str, Any]:
        batch = await processor.process_batch(
            [SourceDocument(content=d.content, file_name=d.file_name) for d in req.documents],
            req.system_prompt,
            req.user_prompt,
            model=req.model_type,
            temperature=req.temperature,
            max_tokens=req.max_tokens,
            output_format=req.output_format,
            batch_mode=req.batch_mode,
        )
        return batch.to_dict()

    @app.post("/v1/export")
    async def export_analysis(req: ExportRequest):
        try:
            composite = CompositeAnalysis.from_dict(req.analysis_data)
        except (KeyError, TypeError, ValueError) as e:
            raise BadRequestError(f"Invalid analysis data: {e}") from e
        artifact = export(composite, req.format)
        filename = req.filename or artifact.filename
        return Response(
            content=artifact.encode(),
            media_type=artifact.media_type,
            headers={"Content-Disposition": f'attachment; filename="{filename}"'},
        )

    return app


def main() -> None:  # pragma: no cover
    try:
        import uvicorn
    except ImportError as e:
        raise RuntimeError('Install the "server" extra: pip install -e ".[server]"') from e

    host = os.getenv("HOST", "0.0.0.0")
    port = int(os.getenv("PORT", "8000"))
    uvicorn.run("docinsight.server:create_app", factory=True, host=host, port=port)


if __name__ == "__main__":  # pragma: no cover
    main()
