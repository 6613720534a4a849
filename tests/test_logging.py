from docinsight.logging import clip_long_text, redaction_processor


def test_redaction_processor_masks_keys_secrets_and_bearer_tokens():
    proc = redaction_processor(secrets=["sk-live-123"])
    out = proc(
        None,
        "info",
        {
            "event": "completion_failed",
            "api-key": "sk-live-123",
            "headers": {"Authorization": "Bearer abcdef123456", "accept": "application/json"},
            "error": "upstream echoed sk-live-123",
            "hint": "Bearer zyxwvu98765",
        },
    )
    assert out["api-key"] == "[REDACTED]"
    assert out["headers"]["Authorization"] == "[REDACTED]"
    assert out["headers"]["accept"] == "application/json"
    assert out["error"] == "upstream echoed [REDACTED]"
    assert out["hint"] == "Bearer [REDACTED]"


def test_clip_long_text_truncates_document_fields_only():
    event = {"event": "x", "document_text": "a" * 600, "note": "b" * 600}
    out = clip_long_text(None, "info", event)
    assert out["document_text"].startswith("a" * 500)
    assert out["document_text"].endswith("(600 chars)")
    assert out["note"] == "b" * 600
