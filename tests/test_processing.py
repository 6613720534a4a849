import json
from datetime import datetime, timezone

import pytest

from docinsight.contracts import CompletionChoice, CompletionRequest, CompletionResponse, TokenUsage
from docinsight.errors import BadRequestError, RateLimitError
from docinsight.processing import (
    BATCH_SUMMARY_SYSTEM_PROMPT,
    DEFAULT_SYSTEM_PROMPT,
    BatchMode,
    DocumentProcessor,
    SourceDocument,
    combine_documents,
    render_document_prompt,
)

FIXED = datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


class ScriptedClient:
    def __init__(self, reply):
        self.reply = reply
        self.requests: list[CompletionRequest] = []

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        self.requests.append(request)
        reply = self.reply(request) if callable(self.reply) else self.reply
        if isinstance(reply, Exception):
            raise reply
        return CompletionResponse(
            deployment="gpt-4",
            choices=[CompletionChoice(text=reply)],
            usage=TokenUsage(prompt_tokens=20, completion_tokens=10, total_tokens=30),
        )


def _processor(reply) -> tuple[DocumentProcessor, ScriptedClient]:
    client = ScriptedClient(reply)
    return DocumentProcessor(client, clock=lambda: FIXED), client


def test_render_document_prompt_fills_every_placeholder_once():
    doc = SourceDocument(content="Body mentions {FILE_NAME} literally.", file_name="report.txt")
    prompt = "File {FILE_NAME} ({FILE_SIZE}, {CATEGORY}) uploaded {UPLOAD_DATE}:\n{DOCUMENT_CONTENT}"
    rendered = render_document_prompt(prompt, doc, FIXED)
    assert rendered == (
        "File report.txt (36 characters, Unknown) uploaded 2024-05-01T12:00:00+00:00:\n"
        "Body mentions {FILE_NAME} literally."
    )


def test_combine_documents_labels_each_part():
    combined = combine_documents([SourceDocument("alpha", "a.txt"), SourceDocument("beta", "b.txt")])
    assert combined.file_name == "Batch_2_documents"
    assert combined.content == "--- Document 1: a.txt ---\nalpha\n\n\n--- Document 2: b.txt ---\nbeta\n"


@pytest.mark.asyncio
async def test_process_document_parses_fenced_json_and_reports_usage():
    processor, client = _processor('Sure:\n```json\n{"topic": "finance"}\n```')
    outcome = await processor.process_document(
        SourceDocument("Quarterly numbers.", "q1.txt"),
        "Be precise.",
        "Analyze {FILE_NAME}: {DOCUMENT_CONTENT}",
        model="gpt4",
        temperature=0.2,
        max_tokens=300,
    )

    request = client.requests[0]
    assert request.model == "gpt4"
    assert request.messages[0].content == "Be precise."
    assert request.messages[1].content == "Analyze q1.txt: Quarterly numbers."
    assert (request.sampling.temperature, request.sampling.max_tokens) == (0.2, 300)

    assert outcome.success is True
    assert outcome.data == {"topic": "finance"}
    assert outcome.metadata["deployment"] == "gpt-4"
    assert outcome.metadata["totalTokens"] == 30
    assert outcome.metadata["usage"]["prompt_tokens"] == 20
    assert outcome.metadata["processedAt"] == "2024-05-01T12:00:00+00:00"


@pytest.mark.asyncio
async def test_process_document_defaults_system_prompt_and_sampling():
    processor, client = _processor("{}")
    await processor.process_document(SourceDocument("text"), user_prompt="{DOCUMENT_CONTENT}")
    request = client.requests[0]
    assert request.messages[0].content == DEFAULT_SYSTEM_PROMPT
    assert request.model is None
    assert request.sampling.temperature is None
    assert request.sampling.max_tokens is None


@pytest.mark.asyncio
async def test_process_document_wraps_non_json_reply():
    processor, _ = _processor("Just prose.")
    outcome = await processor.process_document(SourceDocument("text", "notes.md"), user_prompt="{DOCUMENT_CONTENT}")
    assert outcome.success is True
    assert outcome.data["analysis"] == "Just prose."
    assert outcome.data["metadata"]["parseError"] == "Response was not valid JSON"
    assert outcome.data["metadata"]["rawResponse"] == "Just prose."
    assert outcome.data["metadata"]["fileName"] == "notes.md"


@pytest.mark.asyncio
async def test_process_document_text_format_keeps_reply():
    processor, _ = _processor('{"looks": "like json"}')
    outcome = await processor.process_document(SourceDocument("text"), output_format="text")
    assert outcome.data == '{"looks": "like json"}'


@pytest.mark.asyncio
async def test_process_document_propagates_client_errors_and_rejects_bad_format():
    processor, client = _processor(RateLimitError(retry_after_seconds=3))
    with pytest.raises(RateLimitError):
        await processor.process_document(SourceDocument("text"))
    with pytest.raises(BadRequestError):
        await processor.process_document(SourceDocument("text"), output_format="yaml")
    assert len(client.requests) == 1


@pytest.mark.asyncio
async def test_individual_batch_isolates_failing_documents():
    def reply(request):
        if "broken" in request.messages[1].content:
            return RuntimeError("upstream hiccup")
        return '{"ok": true}'

    processor, _ = _processor(reply)
    docs = [SourceDocument("fine one", "a.txt"), SourceDocument("broken one", "b.txt"), SourceDocument("fine two", "c.txt")]
    batch = await processor.process_batch(docs, user_prompt="{DOCUMENT_CONTENT}")
    data = batch.to_dict()

    assert [r["success"] for r in data["results"]] == [True, False, True]
    assert data["results"][1] == {"success": False, "error": "upstream hiccup", "fileName": "b.txt"}
    meta = data["batchMetadata"]
    assert meta["totalDocuments"] == 3
    assert meta["batchMode"] == "individual"
    assert (meta["successfulDocuments"], meta["failedDocuments"]) == (2, 1)


@pytest.mark.asyncio
async def test_combined_batch_sends_one_request():
    processor, client = _processor('{"combined": true}')
    docs = [SourceDocument("alpha", "a.txt"), SourceDocument("beta", "b.txt")]
    batch = await processor.process_batch(docs, user_prompt="{FILE_NAME}\n{DOCUMENT_CONTENT}", batch_mode="combined")

    assert len(client.requests) == 1
    user = client.requests[0].messages[1].content
    assert user.startswith("Batch_2_documents\n--- Document 1: a.txt ---")
    assert "--- Document 2: b.txt ---\nbeta" in user
    assert len(batch.results) == 1
    assert batch.results[0].data == {"combined": True}


@pytest.mark.asyncio
async def test_summary_batch_summarizes_individual_results():
    def reply(request):
        if request.messages[0].content == BATCH_SUMMARY_SYSTEM_PROMPT:
            return "Both documents discuss growth."
        if "beta" in request.messages[1].content:
            return RuntimeError("beta failed")
        return '{"theme": "growth"}'

    processor, client = _processor(reply)
    docs = [SourceDocument("alpha", "a.txt"), SourceDocument("beta", "b.txt")]
    batch = await processor.process_batch(docs, user_prompt="{DOCUMENT_CONTENT}", batch_mode=BatchMode.SUMMARY)

    assert len(client.requests) == 3
    summary_prompt = client.requests[-1].messages[1].content
    assert "Document 1: a.txt" in summary_prompt
    assert json.dumps({"theme": "growth"}, indent=2) in summary_prompt
    assert '"error": "beta failed"' in summary_prompt

    (result,) = batch.results
    assert result.data["summary"] == "Both documents discuss growth."
    assert result.data["documentCount"] == 2
    assert [r["success"] for r in result.data["individualResults"]] == [True, False]
    assert result.metadata["batchMode"] == "summary"


@pytest.mark.asyncio
async def test_batch_rejects_empty_input_and_unknown_mode():
    processor, client = _processor("{}")
    with pytest.raises(BadRequestError):
        await processor.process_batch([])
    with pytest.raises(BadRequestError):
        await processor.process_batch([SourceDocument("x")], batch_mode="parallel")
    assert client.requests == []
