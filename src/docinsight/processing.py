from __future__ import annotations

import asyncio
import json
import re
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import structlog

from .contracts import CompletionRequest, CompletionResponse
from .errors import BadRequestError
from .metrics import documents_processed_total
from .orchestrator import CompletionBackend
from .parsing import Parsed, parse_structured

log = structlog.get_logger()

DEFAULT_SYSTEM_PROMPT = "You are a helpful AI assistant that analyzes documents and provides structured insights."
BATCH_SUMMARY_SYSTEM_PROMPT = "You are an expert analyst creating comprehensive summaries."
UNKNOWN_CATEGORY = "Unknown"

_PLACEHOLDER_RE = re.compile(r"\{(DOCUMENT_CONTENT|FILE_NAME|UPLOAD_DATE|CATEGORY|FILE_SIZE)\}")

_BATCH_SUMMARY_INSTRUCTIONS = """Provide:
1. Overall summary of all documents
2. Common themes and patterns
3. Key insights across all documents
4. Recommendations based on collective analysis
5. Document comparison and contrast

Format your response as structured JSON."""


class OutputFormat(str, Enum):
    JSON = "json"
    TEXT = "text"


class BatchMode(str, Enum):
    INDIVIDUAL = "individual"
    COMBINED = "combined"
    SUMMARY = "summary"


@dataclass(frozen=True)
class SourceDocument:
    content: str
    file_name: str = ""


@dataclass(frozen=True)
class ProcessingOutcome:
    """Result for one document (or one combined/summary call) of a batch."""

    success: bool
    file_name: str
    data: Any = None
    error: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        if not self.success:
            return {"success": False, "error": self.error, "fileName": self.file_name}
        return {"success": True, "data": self.data, "metadata": self.metadata}


@dataclass(frozen=True)
class BatchOutcome:
    batch_mode: BatchMode
    model: str | None
    processed_at: datetime
    total_documents: int
    results: list[ProcessingOutcome]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": True,
            "results": [r.to_dict() for r in self.results],
            "batchMetadata": {
                "totalDocuments": self.total_documents,
                "batchMode": self.batch_mode.value,
                "processedAt": self.processed_at.isoformat(),
                "model": self.model,
                "successfulDocuments": sum(1 for r in self.results if r.success),
                "failedDocuments": sum(1 for r in self.results if not r.success),
            },
        }


def _choice(enum_cls: type[Enum], value: Any, label: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise BadRequestError(f"Unsupported {label}: {value!r} (expected one of: {allowed}).") from e


def render_document_prompt(user_prompt: str, document: SourceDocument, uploaded_at: datetime) -> str:
    """
    Fill the document placeholders of a caller-supplied prompt.

    Substitution is a single literal pass, so placeholder-like text inside the
    document itself is left alone.
    """
    values = {
        "DOCUMENT_CONTENT": document.content,
        "FILE_NAME": document.file_name,
        "UPLOAD_DATE": uploaded_at.isoformat(),
        "CATEGORY": UNKNOWN_CATEGORY,
        "FILE_SIZE": f"{len(document.content)} characters",
    }
    return _PLACEHOLDER_RE.sub(lambda m: values[m.group(1)], user_prompt)


def combine_documents(documents: Sequence[SourceDocument]) -> SourceDocument:
    content = "\n\n".join(
        f"--- Document {i}: {doc.file_name} ---\n{doc.content}\n" for i, doc in enumerate(documents, start=1)
    )
    return SourceDocument(content=content, file_name=f"Batch_{len(documents)}_documents")


def _usage_metadata(response: CompletionResponse) -> dict[str, Any]:
    usage = response.usage
    return {
        "usage": {
            "prompt_tokens": usage.prompt_tokens,
            "completion_tokens": usage.completion_tokens,
            "total_tokens": usage.total_tokens,
        },
        "promptTokens": usage.prompt_tokens,
        "completionTokens": usage.completion_tokens,
        "totalTokens": usage.total_tokens,
    }


class DocumentProcessor:
    """
    Runs caller-supplied prompts against documents.

    Unlike the facet analysis, prompts here come from the caller (for example a
    configured workflow agent) and may reference ``{DOCUMENT_CONTENT}``,
    ``{FILE_NAME}``, ``{UPLOAD_DATE}``, ``{CATEGORY}`` and ``{FILE_SIZE}``.
    Sampling values left as None fall back to the client's defaults.
    """

    def __init__(
        self,
        client: CompletionBackend,
        *,
        max_concurrency: int = 4,
        clock: Callable[[], datetime] | None = None,
    ):
        self.client = client
        self.max_concurrency = max(1, max_concurrency)
        self._clock: Callable[[], datetime] = clock or (lambda: datetime.now(timezone.utc))

    async def process_document(
        self,
        document: SourceDocument,
        system_prompt: str = "",
        user_prompt: str = "",
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        output_format: OutputFormat | str = OutputFormat.JSON,
    ) -> ProcessingOutcome:
        """
        Process one document; completion errors propagate.

        With ``output_format="json"`` the reply is parsed as a JSON object. A
        reply that is not one still succeeds, wrapped as ``{"analysis": text,
        "metadata": {..., "parseError", "rawResponse"}}``.
        """
        output_format = _choice(OutputFormat, output_format, "output format")
        processed_at = self._clock()
        request = CompletionRequest.from_prompts(
            model,
            system_prompt or DEFAULT_SYSTEM_PROMPT,
            render_document_prompt(user_prompt, document, processed_at),
            temperature=temperature,
            max_tokens=max_tokens,
        )
        log.info("document_processing_started", file_name=document.file_name, model=model)
        try:
            response = await self.client.complete(request)
        except Exception:
            documents_processed_total.labels(output_format=output_format.value, outcome="failure").inc()
            raise

        text = response.text
        data: Any = text
        outcome = "success"
        if output_format is OutputFormat.JSON:
            parsed = parse_structured(text)
            if isinstance(parsed, Parsed):
                data = parsed.value
            else:
                outcome = "degraded"
                log.info("document_processing_unstructured", file_name=document.file_name, reason=parsed.reason)
                data = {
                    "analysis": text,
                    "metadata": {
                        "model": model,
                        "fileName": document.file_name,
                        "processedAt": processed_at.isoformat(),
                        "parseError": "Response was not valid JSON",
                        "rawResponse": text,
                    },
                }

        documents_processed_total.labels(output_format=output_format.value, outcome=outcome).inc()
        return ProcessingOutcome(
            success=True,
            file_name=document.file_name,
            data=data,
            metadata={
                "model": model,
                "deployment": response.deployment,
                "fileName": document.file_name,
                "processedAt": processed_at.isoformat(),
                **_usage_metadata(response),
            },
        )

    async def _process_isolated(
        self,
        document: SourceDocument,
        limiter: asyncio.Semaphore,
        **kwargs: Any,
    ) -> ProcessingOutcome:
        try:
            async with limiter:
                return await self.process_document(document, **kwargs)
        except Exception as e:
            log.warning(
                "document_processing_failed",
                file_name=document.file_name,
                error_type=type(e).__name__,
                error=str(e),
            )
            return ProcessingOutcome(success=False, file_name=document.file_name, error=str(e) or type(e).__name__)

    async def _process_each(self, documents: Sequence[SourceDocument], **kwargs: Any) -> list[ProcessingOutcome]:
        limiter = asyncio.Semaphore(self.max_concurrency)
        return list(await asyncio.gather(*(self._process_isolated(doc, limiter, **kwargs) for doc in documents)))

    async def process_batch(
        self,
        documents: Sequence[SourceDocument],
        system_prompt: str = "",
        user_prompt: str = "",
        *,
        model: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        output_format: OutputFormat | str = OutputFormat.JSON,
        batch_mode: BatchMode | str = BatchMode.INDIVIDUAL,
    ) -> BatchOutcome:
        """
        Process several documents with the same prompts.

        ``individual`` processes each document on its own; a failing document
        becomes a failed outcome and does not affect the others. ``combined``
        concatenates the documents into one request, whose errors propagate.
        ``summary`` processes each document, then asks for one cross-document
        summary of the individual results.
        """
        batch_mode = _choice(BatchMode, batch_mode, "batch mode")
        output_format = _choice(OutputFormat, output_format, "output format")
        if not documents:
            raise BadRequestError("No documents to process.")

        kwargs: dict[str, Any] = dict(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            output_format=output_format,
        )
        log.info("batch_processing_started", documents=len(documents), batch_mode=batch_mode.value, model=model)

        if batch_mode is BatchMode.INDIVIDUAL:
            results = await self._process_each(documents, **kwargs)
        elif batch_mode is BatchMode.COMBINED:
            results = [await self.process_document(combine_documents(documents), **kwargs)]
        else:
            individual = await self._process_each(documents, **kwargs)
            results = [await self._summarize(documents, individual, model, temperature, max_tokens)]

        outcome = BatchOutcome(
            batch_mode=batch_mode,
            model=model,
            processed_at=self._clock(),
            total_documents=len(documents),
            results=results,
        )
        log.info(
            "batch_processing_completed",
            batch_mode=batch_mode.value,
            succeeded=sum(1 for r in results if r.success),
            failed=sum(1 for r in results if not r.success),
        )
        return outcome

    async def _summarize(
        self,
        documents: Sequence[SourceDocument],
        individual: list[ProcessingOutcome],
        model: str | None,
        temperature: float | None,
        max_tokens: int | None,
    ) -> ProcessingOutcome:
        sections = []
        for i, (doc, result) in enumerate(zip(documents, individual), start=1):
            analysis = result.data if result.success else {"error": result.error}
            sections.append(f"Document {i}: {doc.file_name}\nAnalysis: {json.dumps(analysis, indent=2)}\n")
        prompt = (
            "Please create a comprehensive summary and analysis of the following document processing results:\n\n"
            + "\n\n".join(sections)
            + "\n\n"
            + _BATCH_SUMMARY_INSTRUCTIONS
        )
        request = CompletionRequest.from_prompts(
            model,
            BATCH_SUMMARY_SYSTEM_PROMPT,
            prompt,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        response = await self.client.complete(request)
        return ProcessingOutcome(
            success=True,
            file_name=f"Batch_{len(documents)}_documents",
            data={
                "summary": response.text,
                "individualResults": [r.to_dict() for r in individual],
                "documentCount": len(documents),
            },
            metadata={
                "batchMode": BatchMode.SUMMARY.value,
                "processedAt": self._clock().isoformat(),
                "deployment": response.deployment,
                **_usage_metadata(response),
            },
        )
