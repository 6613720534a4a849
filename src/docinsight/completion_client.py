from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx
import structlog

from .config import InsightConfig
from .contracts import (
    ChatMessage,
    CompletionChoice,
    CompletionRequest,
    CompletionResponse,
    MessageRole,
    SamplingParams,
    TokenUsage,
)
from .errors import (
    AuthenticationError,
    BadRequestError,
    DeploymentNotFoundError,
    InsightError,
    NetworkError,
    RateLimitError,
    UpstreamProtocolError,
)
from .metrics import (
    completion_latency_seconds,
    completion_requests_total,
    completion_retries_total,
    completion_tokens_total,
)

log = structlog.get_logger()

_MODEL_DISPLAY_NAMES = {
    "gpt4o-mini": "GPT-4o mini (Cost Efficient)",
    "gpt4.1": "GPT-4.1",
    "gpt4": "GPT-4 (Most Capable)",
    "gpt35": "GPT-3.5 Turbo (Fast & Efficient)",
    "gpt4-turbo": "GPT-4 Turbo (Latest)",
}

_CONNECTION_CHECK_PROMPT = 'Hello, this is a connection test. Please respond with "Connection successful!"'


def estimate_tokens(text: str) -> int:
    """Rough token estimate (about four characters per token for English)."""
    return math.ceil(len(text) / 4)


def parse_retry_after(value: str | None, *, now: datetime) -> float | None:
    """
    Interpret a ``Retry-After`` header as seconds to wait.

    Accepts delta-seconds (integer or decimal) and HTTP-dates. Dates in the
    past clamp to zero. Returns None when the header is absent or unparsable,
    in which case the caller uses its own backoff.
    """
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        seconds = float(value)
    except ValueError:
        try:
            when = parsedate_to_datetime(value)
        except (TypeError, ValueError):
            return None
        if when.tzinfo is None:
            when = when.replace(tzinfo=timezone.utc)
        return max(0.0, (when - now).total_seconds())
    if not math.isfinite(seconds):
        return None
    return max(0.0, seconds)


# Timeouts and dropped connections (reset, or closed before a response) are
# retried. A refused connection or DNS failure is not.
_RETRYABLE_TRANSPORT_ERRORS: tuple[type[httpx.HTTPError], ...] = (
    httpx.TimeoutException,
    httpx.ReadError,
    httpx.WriteError,
    httpx.RemoteProtocolError,
)


def _transport_error(exc: httpx.HTTPError, deployment: str) -> InsightError:
    if isinstance(exc, httpx.ProtocolError):
        return UpstreamProtocolError(f"Protocol error talking to {deployment!r}: {type(exc).__name__}: {exc}")
    return NetworkError(f"Completion request to {deployment!r} failed: {type(exc).__name__}: {exc}")


def _error_message(resp: httpx.Response) -> str | None:
    try:
        body = resp.json()
    except ValueError:
        return None
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and isinstance(err.get("message"), str):
            return err["message"]
        if isinstance(body.get("message"), str):
            return body["message"]
    return None


class CompletionClient:
    """
    Resilient async client for an Azure OpenAI chat-completions deployment.

    Configuration is read once at construction and never mutated, so one
    instance can serve any number of concurrent callers. Backoff state lives
    only inside a single ``complete`` call.
    """

    def __init__(
        self,
        cfg: InsightConfig,
        *,
        client: httpx.AsyncClient | None = None,
        sleeper: Callable[[float], Awaitable[None]] | None = None,
        now: Callable[[], datetime] | None = None,
    ):
        self._endpoint, self._api_key = cfg.require_endpoint()
        self.cfg = cfg
        self._client = client or httpx.AsyncClient(timeout=cfg.request_timeout_seconds)
        self._max_retries = max(0, cfg.max_retries)
        self._base_delay = max(0.0, cfg.base_retry_delay_seconds)
        self._sleep: Callable[[float], Awaitable[None]] = sleeper or asyncio.sleep
        self._now: Callable[[], datetime] = now or (lambda: datetime.now(timezone.utc))

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "CompletionClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def max_attempts(self) -> int:
        return self._max_retries + 1

    def resolve_deployment(self, model: str | None) -> str:
        deployments = self.cfg.deployments
        name = model or self.cfg.default_model
        if name in deployments:
            return deployments[name]
        if name in deployments.values():
            return name
        fallback = deployments.get(self.cfg.default_model, name)
        log.debug("completion_unknown_model", model=name, deployment=fallback)
        return fallback

    def available_models(self) -> list[dict[str, str]]:
        return [
            {"id": model, "deployment": deployment, "displayName": _MODEL_DISPLAY_NAMES.get(model, model)}
            for model, deployment in self.cfg.deployments.items()
        ]

    def _backoff(self, attempt: int) -> float:
        # attempt: 1-based number of the attempt that just failed
        return self._base_delay * attempt

    def _build_payload(self, request: CompletionRequest) -> dict[str, Any]:
        s = request.sampling
        cfg = self.cfg
        return {
            "messages": [m.to_wire() for m in request.messages],
            "temperature": cfg.temperature if s.temperature is None else s.temperature,
            "max_tokens": cfg.max_tokens if s.max_tokens is None else s.max_tokens,
            "top_p": cfg.top_p if s.top_p is None else s.top_p,
            "frequency_penalty": cfg.frequency_penalty if s.frequency_penalty is None else s.frequency_penalty,
            "presence_penalty": cfg.presence_penalty if s.presence_penalty is None else s.presence_penalty,
            "stream": False,
        }

    async def complete(self, request: CompletionRequest) -> CompletionResponse:
        deployment = self.resolve_deployment(request.model)
        url = f"{self._endpoint}/openai/deployments/{deployment}/chat/completions"
        payload = self._build_payload(request)

        started = time.monotonic()
        log.debug("completion_request", deployment=deployment, messages=len(request.messages))
        try:
            data = await self._post_with_retry(url, payload, deployment)
            response = self._parse_response(data, deployment)
        except InsightError as e:
            completion_requests_total.labels(deployment=deployment, status=type(e).__name__).inc()
            log.warning(
                "completion_failed",
                deployment=deployment,
                error_type=type(e).__name__,
                error=str(e),
            )
            raise
        finally:
            completion_latency_seconds.labels(deployment=deployment).observe(max(0.0, time.monotonic() - started))

        usage = response.usage
        completion_requests_total.labels(deployment=deployment, status="success").inc()
        completion_tokens_total.labels(deployment=deployment, kind="prompt").inc(usage.prompt_tokens)
        completion_tokens_total.labels(deployment=deployment, kind="completion").inc(usage.completion_tokens)
        log.info(
            "completion_ok",
            deployment=deployment,
            prompt_tokens=usage.prompt_tokens,
            completion_tokens=usage.completion_tokens,
            total_tokens=usage.total_tokens,
        )
        return response

    async def _post_with_retry(self, url: str, payload: dict[str, Any], deployment: str) -> Any:
        params = {"api-version": self.cfg.api_version}
        headers = {"api-key": self._api_key}

        for attempt in range(1, self.max_attempts + 1):
            try:
                resp = await self._client.post(url, params=params, headers=headers, json=payload)
            except _RETRYABLE_TRANSPORT_ERRORS as e:
                if attempt >= self.max_attempts:
                    raise NetworkError(
                        f"Completion request to {deployment!r} failed after {attempt} attempts: {type(e).__name__}"
                    ) from e
                await self._wait_before_retry("network", attempt, self._backoff(attempt), deployment)
                continue
            except httpx.HTTPError as e:
                raise _transport_error(e, deployment) from e

            if resp.status_code == 429:
                retry_after = parse_retry_after(resp.headers.get("retry-after"), now=self._now())
                if attempt >= self.max_attempts:
                    raise RateLimitError(
                        retry_after_seconds=retry_after,
                        message=f"Rate limit exceeded after {self._max_retries} retries.",
                    )
                delay = retry_after if retry_after is not None else self._backoff(attempt)
                await self._wait_before_retry("rate_limited", attempt, delay, deployment)
                continue

            if resp.status_code == 401:
                raise AuthenticationError("Completion endpoint rejected credentials (check AZURE_OPENAI_API_KEY).")

            if resp.status_code == 404:
                raise DeploymentNotFoundError(deployment)

            if resp.status_code == 400:
                raise BadRequestError(_error_message(resp) or "Bad request to completion endpoint.")

            if not 200 <= resp.status_code < 300:
                detail = _error_message(resp) or resp.text[:200]
                raise UpstreamProtocolError(
                    f"Completion endpoint returned HTTP {resp.status_code}: {detail}",
                    status_code=resp.status_code,
                )

            try:
                return resp.json()
            except ValueError as e:
                raise UpstreamProtocolError("Completion endpoint returned invalid JSON.", status_code=200) from e

        raise UpstreamProtocolError("Completion request failed after retries.")  # pragma: no cover

    async def _wait_before_retry(self, reason: str, attempt: int, delay: float, deployment: str) -> None:
        completion_retries_total.labels(reason=reason).inc()
        log.warning(
            "completion_retry",
            reason=reason,
            deployment=deployment,
            attempt=attempt,
            max_retries=self._max_retries,
            delay_seconds=delay,
        )
        await self._sleep(delay)

    def _parse_response(self, data: Any, deployment: str) -> CompletionResponse:
        choices = data.get("choices") if isinstance(data, dict) else None
        if not isinstance(choices, list) or not choices:
            raise UpstreamProtocolError("Missing choices in completion response.")

        parsed: list[CompletionChoice] = []
        for choice in choices:
            message = choice.get("message") if isinstance(choice, dict) else None
            text = message.get("content") if isinstance(message, dict) else None
            if not isinstance(text, str):
                if not parsed:
                    raise UpstreamProtocolError("Missing message content in completion response.")
                continue
            parsed.append(CompletionChoice(text=text, finish_reason=choice.get("finish_reason")))

        return CompletionResponse(
            deployment=deployment,
            choices=parsed,
            usage=TokenUsage.from_wire(data.get("usage")),
        )

    async def check_connection(self) -> dict[str, Any]:
        """Send a tiny completion to check connectivity; report the outcome instead of raising."""
        request = CompletionRequest(
            model=self.cfg.default_model,
            messages=[ChatMessage(MessageRole.USER, _CONNECTION_CHECK_PROMPT)],
            sampling=SamplingParams(max_tokens=50),
        )
        try:
            resp = await self.complete(request)
        except InsightError as e:
            return {
                "success": False,
                "message": f"Completion endpoint connection failed: {e}",
                "errorType": type(e).__name__,
                "endpoint": self._endpoint,
            }
        return {
            "success": True,
            "message": "Completion endpoint connection successful",
            "response": resp.text,
            "endpoint": self._endpoint,
            "apiVersion": self.cfg.api_version,
        }
