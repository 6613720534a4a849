from __future__ import annotations

import re
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import AnalysisOptions

_FILENAME_RE = re.compile(r"^[A-Za-z0-9._-]{1,128}$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnalyzeRequest(_CamelModel):
    document_content: str
    options: AnalysisOptions = Field(default_factory=AnalysisOptions)


class AnalyzeResponse(_CamelModel):
    success: bool = True
    data: dict[str, Any]
    failed_facets: list[str] = Field(default_factory=list)


class FacetResponse(_CamelModel):
    success: bool = True
    facet: str
    data: dict[str, Any]


class ExportRequest(_CamelModel):
    analysis_data: dict[str, Any]
    format: str = "json"
    filename: str | None = None

    @field_validator("analysis_data")
    @classmethod
    def _validate_analysis_data(cls, v: dict[str, Any]) -> dict[str, Any]:
        if "timestamp" not in v or not isinstance(v.get("results"), dict):
            raise ValueError("analysisData must contain 'timestamp' and a 'results' object.")
        return v

    @field_validator("filename")
    @classmethod
    def _validate_filename(cls, v: str | None) -> str | None:
        if v is None:
            return None
        if not _FILENAME_RE.fullmatch(v):
            raise ValueError("filename may only contain letters, digits, '.', '_' and '-'.")
        return v


class ErrorBody(BaseModel):
    message: str
    type: str = "api_error"
    code: str | None = None
    details: dict[str, Any] | None = None


class ErrorResponse(BaseModel):
    success: bool = False
    error: ErrorBody


def make_error_response(
    *,
    message: str,
    type: str = "api_error",
    code: str | None = None,
    details: dict[str, Any] | None = None,
) -> ErrorResponse:
    return ErrorResponse(error=ErrorBody(message=message, type=type, code=code, details=details))


class _PromptFields(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())

    system_prompt: str = ""
    user_prompt: str = ""
    model_type: str | None = None
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, gt=0)
    output_format: str = "json"


class ProcessDocumentRequest(_PromptFields):
    document_content: str
    file_name: str = ""


class BatchDocument(_CamelModel):
    content: str
    file_name: str = ""


class ProcessBatchRequest(_PromptFields):
    documents: list[BatchDocument]
    batch_mode: str = "individual"
