import pydantic
import pytest

from docinsight.config import InsightConfig, SuccessPolicy
from docinsight.errors import ConfigurationError


def test_defaults_come_from_environment(monkeypatch):
    monkeypatch.setenv("AZURE_OPENAI_ENDPOINT", "https://contoso.openai.azure.com/")
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "secret")
    monkeypatch.setenv("AZURE_OPENAI_GPT4_DEPLOYMENT", "my-gpt4")
    monkeypatch.setenv("AZURE_OPENAI_MAX_RETRIES", "5")
    monkeypatch.setenv("ANALYSIS_MAX_CONCURRENCY", "2")
    monkeypatch.setenv("ANALYSIS_SUCCESS_POLICY", "comprehensive_required")
    monkeypatch.setenv("ENABLE_METRICS", "TRUE")

    cfg = InsightConfig()

    assert cfg.endpoint == "https://contoso.openai.azure.com/"
    assert cfg.deployments["gpt4"] == "my-gpt4"
    assert cfg.deployments["gpt35"] == "gpt-35-turbo"
    assert cfg.max_retries == 5
    assert cfg.max_concurrent_facets == 2
    assert cfg.success_policy is SuccessPolicy.COMPREHENSIVE_REQUIRED
    assert cfg.enable_metrics is True
    assert cfg.require_endpoint() == ("https://contoso.openai.azure.com", "secret")


def test_builtin_defaults(monkeypatch):
    for name in ("AZURE_OPENAI_API_VERSION", "AZURE_OPENAI_DEFAULT_MODEL", "ANALYSIS_MIN_CONTENT_LENGTH"):
        monkeypatch.delenv(name, raising=False)
    cfg = InsightConfig()
    assert cfg.api_version == "2024-02-15-preview"
    assert cfg.default_model == "gpt4o-mini"
    assert cfg.min_content_length == 50
    assert (cfg.temperature, cfg.max_tokens, cfg.top_p) == (0.7, 2000, 0.95)


def test_validate_settings_reports_problems():
    cfg = InsightConfig(endpoint=None, api_key=None, default_model="nope", max_concurrent_facets=0)
    issues = cfg.validate_settings()
    assert len(issues) == 4
    assert any("AZURE_OPENAI_API_KEY" in i for i in issues)

    ok = InsightConfig(endpoint="https://x", api_key="k", default_model="gpt4", deployments={"gpt4": "gpt-4"})
    assert ok.validate_settings() == []


def test_require_endpoint_raises_without_credentials():
    with pytest.raises(ConfigurationError):
        InsightConfig(endpoint="https://x", api_key=None).require_endpoint()


def test_config_is_frozen():
    cfg = InsightConfig(endpoint="https://x", api_key="k")
    with pytest.raises(pydantic.ValidationError):
        cfg.max_retries = 10
