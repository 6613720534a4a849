from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class MessageRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class ChatMessage:
    role: MessageRole
    content: str

    def to_wire(self) -> dict[str, str]:
        return {"role": self.role.value, "content": self.content}


@dataclass(frozen=True)
class SamplingParams:
    """Per-request sampling overrides; None falls back to the client defaults."""

    temperature: float | None = None
    max_tokens: int | None = None
    top_p: float | None = None
    frequency_penalty: float | None = None
    presence_penalty: float | None = None


@dataclass(frozen=True)
class CompletionRequest:
    model: str | None
    messages: list[ChatMessage]
    sampling: SamplingParams = field(default_factory=SamplingParams)
    stream: bool = False

    @classmethod
    def from_prompts(cls, model: str | None, system_prompt: str, user_prompt: str, **sampling: Any) -> "CompletionRequest":
        return cls(
            model=model,
            messages=[
                ChatMessage(MessageRole.SYSTEM, system_prompt),
                ChatMessage(MessageRole.USER, user_prompt),
            ],
            sampling=SamplingParams(**sampling),
        )


@dataclass(frozen=True)
class TokenUsage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    @classmethod
    def from_wire(cls, data: Any) -> "TokenUsage":
        if not isinstance(data, dict):
            return cls()
        return cls(
            prompt_tokens=int(data.get("prompt_tokens") or 0),
            completion_tokens=int(data.get("completion_tokens") or 0),
            total_tokens=int(data.get("total_tokens") or 0),
        )


@dataclass(frozen=True)
class CompletionChoice:
    text: str
    finish_reason: str | None = None


@dataclass(frozen=True)
class CompletionResponse:
    deployment: str
    choices: list[CompletionChoice]
    usage: TokenUsage = field(default_factory=TokenUsage)

    @property
    def text(self) -> str:
        return self.choices[0].text
