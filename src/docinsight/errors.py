from __future__ import annotations


class InsightError(Exception):
    """Base error for completion and analysis failures."""


class ConfigurationError(InsightError):
    pass


class AuthenticationError(InsightError):
    pass


class DeploymentNotFoundError(InsightError):
    def __init__(self, deployment: str, message: str | None = None):
        super().__init__(message or f"Deployment {deployment!r} not found.")
        self.deployment = deployment


class BadRequestError(InsightError):
    pass


class RateLimitError(InsightError):
    def __init__(self, retry_after_seconds: float | None = None, message: str = "Rate limited"):
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds


class NetworkError(InsightError):
    """Timeout or connection failure that outlived the retry budget."""


class UpstreamProtocolError(InsightError):
    """Unexpected upstream status or response shape."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestTimeoutError(InsightError):
    """Whole-analysis deadline exceeded."""


class ContentTooShortError(InsightError):
    def __init__(self, length: int, minimum: int):
        super().__init__(f"Document content too short for analysis ({length} < {minimum} characters).")
        self.length = length
        self.minimum = minimum


class ParseError(InsightError):
    """Completion text is not structured data."""


class UnsupportedFormatError(InsightError):
    def __init__(self, fmt: str):
        super().__init__(f"Unsupported export format: {fmt}")
        self.format = fmt


class AnalysisError(InsightError):
    """Every facet (or a facet the success policy requires) failed."""

    def __init__(self, failures: dict[str, str], message: str | None = None):
        if message is None:
            detail = "; ".join(f"{facet}: {err}" for facet, err in failures.items())
            message = f"Document analysis failed ({detail})" if detail else "Document analysis failed"
        super().__init__(message)
        self.failures = dict(failures)
