from .completion_client import CompletionClient, estimate_tokens
from .config import InsightConfig, SuccessPolicy
from .exporter import SUPPORTED_FORMATS, export
from .models import (
    AnalysisOptions,
    CompositeAnalysis,
    DigestSummary,
    ExportArtifact,
    FacetFailure,
    FacetResult,
    FacetSuccess,
)
from .orchestrator import AnalysisOrchestrator
from .processing import BatchMode, DocumentProcessor, OutputFormat, SourceDocument
from .templates import Facet, PromptOverride

__all__ = [
    "AnalysisOptions",
    "AnalysisOrchestrator",
    "BatchMode",
    "CompletionClient",
    "CompositeAnalysis",
    "DigestSummary",
    "DocumentProcessor",
    "ExportArtifact",
    "Facet",
    "FacetFailure",
    "FacetResult",
    "FacetSuccess",
    "InsightConfig",
    "OutputFormat",
    "PromptOverride",
    "SUPPORTED_FORMATS",
    "SourceDocument",
    "SuccessPolicy",
    "estimate_tokens",
    "export",
]
