from __future__ import annotations

import os
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError


class SuccessPolicy(str, Enum):
    ANY_FACET = "any_facet"
    COMPREHENSIVE_REQUIRED = "comprehensive_required"


# logical model -> (env var, fallback deployment)
_DEPLOYMENT_ENV = {
    "gpt4o-mini": ("AZURE_OPENAI_GPT4O_MINI_DEPLOYMENT", "gpt-4o"),
    "gpt4.1": ("AZURE_OPENAI_GPT4_1_DEPLOYMENT", "gpt-4.1"),
    "gpt4": ("AZURE_OPENAI_GPT4_DEPLOYMENT", "gpt-4"),
    "gpt35": ("AZURE_OPENAI_GPT35_DEPLOYMENT", "gpt-35-turbo"),
    "gpt4-turbo": ("AZURE_OPENAI_GPT4_TURBO_DEPLOYMENT", "gpt-4-turbo"),
}


def _deployments_from_env() -> dict[str, str]:
    return {model: os.getenv(env, fallback) for model, (env, fallback) in _DEPLOYMENT_ENV.items()}


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


class InsightConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    # Remote completion endpoint
    endpoint: str | None = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_ENDPOINT"))
    api_key: str | None = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_API_KEY"))
    api_version: str = Field(
        default_factory=lambda: os.getenv("AZURE_OPENAI_API_VERSION", "2024-02-15-preview")
    )
    deployments: dict[str, str] = Field(default_factory=_deployments_from_env)
    default_model: str = Field(default_factory=lambda: os.getenv("AZURE_OPENAI_DEFAULT_MODEL", "gpt4o-mini"))

    # Default sampling parameters
    temperature: float = 0.7
    max_tokens: int = 2000
    top_p: float = 0.95
    frequency_penalty: float = 0.0
    presence_penalty: float = 0.0

    # Retry behavior
    max_retries: int = Field(default_factory=lambda: int(os.getenv("AZURE_OPENAI_MAX_RETRIES", "3")))
    base_retry_delay_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AZURE_OPENAI_RETRY_DELAY_SECONDS", "2.0"))
    )
    request_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("AZURE_OPENAI_TIMEOUT_SECONDS", "120"))
    )

    # Analysis
    max_concurrent_facets: int = Field(default_factory=lambda: int(os.getenv("ANALYSIS_MAX_CONCURRENCY", "4")))
    min_content_length: int = Field(
        default_factory=lambda: int(os.getenv("ANALYSIS_MIN_CONTENT_LENGTH", "50"))
    )
    success_policy: SuccessPolicy = Field(
        default_factory=lambda: SuccessPolicy(os.getenv("ANALYSIS_SUCCESS_POLICY", "any_facet"))
    )
    analysis_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", "0"))
    )

    # Observability
    log_level: str = Field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))
    log_format: str = Field(default_factory=lambda: os.getenv("LOG_FORMAT", "json"))
    enable_metrics: bool = Field(default_factory=lambda: _env_bool("ENABLE_METRICS"))
    metrics_bind: str = Field(default_factory=lambda: os.getenv("METRICS_BIND", "127.0.0.1"))
    metrics_port: int = Field(default_factory=lambda: int(os.getenv("METRICS_PORT", "9109")))

    # HTTP surface
    enable_api_docs: bool = Field(default_factory=lambda: _env_bool("ENABLE_API_DOCS"))
    max_request_body_bytes: int = Field(
        default_factory=lambda: int(os.getenv("MAX_REQUEST_BODY_BYTES", str(4 * 1024 * 1024)))
    )

    def validate_settings(self) -> list[str]:
        issues: list[str] = []
        if not self.api_key:
            issues.append("Azure OpenAI API key is missing (AZURE_OPENAI_API_KEY).")
        if not self.endpoint:
            issues.append("Azure OpenAI endpoint is missing (AZURE_OPENAI_ENDPOINT).")
        if self.default_model not in self.deployments:
            issues.append(f"Default model {self.default_model!r} has no deployment mapping.")
        if self.max_retries < 0:
            issues.append("max_retries must be >= 0.")
        if self.max_concurrent_facets < 1:
            issues.append("max_concurrent_facets must be >= 1.")
        return issues

    def require_endpoint(self) -> tuple[str, str]:
        if not self.endpoint:
            raise ConfigurationError("AZURE_OPENAI_ENDPOINT is required for completion calls.")
        if not self.api_key:
            raise ConfigurationError("AZURE_OPENAI_API_KEY is required for completion calls.")
        return self.endpoint.rstrip("/"), self.api_key
