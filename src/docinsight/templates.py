from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .errors import ConfigurationError

CONTENT_PLACEHOLDER = "{DOCUMENT_CONTENT}"


class Facet(str, Enum):
    COMPREHENSIVE = "comprehensive"
    SUMMARY = "summary"
    KEYWORDS = "keywords"
    CATEGORIZATION = "categorization"
    SENTIMENT = "sentiment"


SECONDARY_FACETS: tuple[Facet, ...] = (Facet.SUMMARY, Facet.KEYWORDS, Facet.CATEGORIZATION, Facet.SENTIMENT)


@dataclass(frozen=True)
class PromptTemplate:
    system_prompt: str
    user_prompt: str
    temperature: float
    max_tokens: int
    structured: bool = True

    def render(self, content: str) -> str:
        # str.replace, not str.format: prompts contain literal JSON braces
        return self.user_prompt.replace(CONTENT_PLACEHOLDER, content)


class PromptOverride(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    system_prompt: str | None = None
    user_prompt: str | None = None


_COMPREHENSIVE_SYSTEM = """You are an expert document analyst specializing in comprehensive document analysis. Your task is to provide thorough, structured analysis of documents across multiple dimensions.

Provide your analysis in the following JSON structure:
{
  "summary": {
    "executive_summary": "Brief executive summary (2-3 sentences)",
    "detailed_summary": "Comprehensive summary (150-300 words)",
    "key_points": ["List of 5-7 key points or findings"]
  },
  "content_analysis": {
    "main_topics": ["Primary topics covered"],
    "themes": ["Underlying themes and concepts"],
    "document_type": "Type of document (report, research, article, etc.)",
    "writing_style": "Professional/Academic/Casual/Technical",
    "complexity_level": "Beginner/Intermediate/Advanced/Expert"
  },
  "entities": {
    "people": ["Names of people mentioned"],
    "organizations": ["Companies, institutions mentioned"],
    "locations": ["Geographic locations"],
    "dates": ["Important dates and timeframes"],
    "technologies": ["Technologies, tools, systems mentioned"],
    "concepts": ["Key concepts and terminology"]
  },
  "keywords": {
    "primary_keywords": ["5-10 most important keywords"],
    "secondary_keywords": ["10-15 supporting keywords"],
    "technical_terms": ["Domain-specific terminology"]
  },
  "sentiment_analysis": {
    "overall_sentiment": "Positive/Negative/Neutral/Mixed",
    "confidence_score": 0.85,
    "emotional_tone": "Professional/Optimistic/Cautious/Analytical",
    "sentiment_details": "Explanation of sentiment analysis"
  },
  "categorization": {
    "primary_category": "Main category",
    "secondary_categories": ["Additional relevant categories"],
    "industry": "Relevant industry/domain",
    "document_purpose": "Purpose and intent of the document"
  },
  "quality_assessment": {
    "readability_score": "Easy/Medium/Difficult",
    "information_density": "Low/Medium/High",
    "structural_quality": "Poor/Good/Excellent",
    "completeness": "Incomplete/Adequate/Comprehensive"
  },
  "actionable_insights": {
    "recommendations": ["3-5 actionable recommendations"],
    "potential_concerns": ["Issues or concerns identified"],
    "follow_up_actions": ["Suggested next steps"],
    "related_topics": ["Topics for further research"]
  }
}

Ensure all analysis is accurate, objective, and based solely on the document content."""

_COMPREHENSIVE_USER = """Please analyze the following document comprehensively and provide structured insights:

Document Content:
{DOCUMENT_CONTENT}

Provide a thorough analysis covering all aspects mentioned in the system prompt. Be specific, accurate, and actionable in your analysis."""

_SUMMARY_SYSTEM = """You are a professional document summarizer. Create clear, concise, and informative summaries that capture the essence of documents while maintaining key details.

Your summaries should:
- Be accurate and objective
- Capture main points and key findings
- Maintain proper context
- Be structured and easy to read
- Highlight actionable information"""

_SUMMARY_USER = """Please create a comprehensive summary of the following document:

Document Content:
{DOCUMENT_CONTENT}

Provide:
1. Executive Summary (2-3 sentences)
2. Detailed Summary (200-400 words)
3. Key Takeaways (5-7 bullet points)
4. Important Details (dates, numbers, names, etc.)
5. Conclusion/Implications"""

_KEYWORDS_SYSTEM = """You are a keyword extraction specialist. Extract relevant, meaningful keywords and phrases from documents to enable better searchability and categorization.

Focus on:
- Domain-specific terminology
- Important concepts and themes
- Named entities (people, places, organizations)
- Technical terms and jargon
- Actionable items and processes"""

_KEYWORDS_USER = """Extract comprehensive keywords from the following document:

Document Content:
{DOCUMENT_CONTENT}

Provide keywords in this JSON format:
{
  "primary_keywords": ["5-10 most important keywords"],
  "secondary_keywords": ["10-15 supporting keywords"],
  "technical_terms": ["Domain-specific terminology"],
  "named_entities": {
    "people": ["Names mentioned"],
    "organizations": ["Companies, institutions"],
    "locations": ["Places, countries, regions"],
    "products": ["Products, services, tools"]
  },
  "concepts": ["Abstract concepts and themes"],
  "action_items": ["Verbs and action-oriented terms"]
}"""

_CATEGORIZATION_SYSTEM = """You are a document classification expert. Categorize documents into appropriate categories and subcategories based on content, purpose, and domain.

Consider multiple classification dimensions:
- Document type (report, manual, research, etc.)
- Industry/domain (technology, healthcare, finance, etc.)
- Purpose (informational, instructional, analytical, etc.)
- Audience (technical, general, executive, etc.)
- Complexity level (basic, intermediate, advanced)"""

_CATEGORIZATION_USER = """Categorize the following document:

Document Content:
{DOCUMENT_CONTENT}

Provide categorization in this JSON format:
{
  "primary_category": "Main category",
  "secondary_categories": ["Additional relevant categories"],
  "document_type": "Type of document",
  "industry_domain": "Relevant industry or field",
  "purpose": "Primary purpose of the document",
  "target_audience": "Intended audience",
  "complexity_level": "Complexity rating",
  "confidence_score": 0.95,
  "explanation": "Brief explanation of categorization reasoning"
}"""

_SENTIMENT_SYSTEM = """You are a sentiment analysis expert. Analyze the emotional tone, sentiment, and subjective elements in documents.

Analyze:
- Overall sentiment (positive, negative, neutral, mixed)
- Emotional tone and mood
- Confidence and certainty levels
- Objectivity vs subjectivity
- Persuasive elements
- Areas of concern or optimism"""

_SENTIMENT_USER = """Analyze the sentiment and emotional tone of the following document:

Document Content:
{DOCUMENT_CONTENT}

Provide analysis in this JSON format:
{
  "overall_sentiment": "Positive/Negative/Neutral/Mixed",
  "confidence_score": 0.85,
  "emotional_tone": "Description of emotional tone",
  "subjectivity_score": 0.7,
  "key_emotions": ["List of emotions detected"],
  "sentiment_distribution": {
    "positive": 0.6,
    "negative": 0.1,
    "neutral": 0.3
  },
  "concerns_identified": ["Areas of concern or negativity"],
  "positive_aspects": ["Positive elements identified"],
  "overall_mood": "Description of document mood",
  "persuasive_elements": ["Persuasive techniques used"]
}"""


DEFAULT_TEMPLATES: Mapping[Facet, PromptTemplate] = {
    Facet.COMPREHENSIVE: PromptTemplate(_COMPREHENSIVE_SYSTEM, _COMPREHENSIVE_USER, temperature=0.3, max_tokens=4000),
    Facet.SUMMARY: PromptTemplate(_SUMMARY_SYSTEM, _SUMMARY_USER, temperature=0.2, max_tokens=1500, structured=False),
    Facet.KEYWORDS: PromptTemplate(_KEYWORDS_SYSTEM, _KEYWORDS_USER, temperature=0.1, max_tokens=1000),
    Facet.CATEGORIZATION: PromptTemplate(_CATEGORIZATION_SYSTEM, _CATEGORIZATION_USER, temperature=0.1, max_tokens=800),
    Facet.SENTIMENT: PromptTemplate(_SENTIMENT_SYSTEM, _SENTIMENT_USER, temperature=0.1, max_tokens=800),
}


def resolve_templates(custom_prompts: Mapping[str, PromptOverride] | None = None) -> dict[Facet, PromptTemplate]:
    """Defaults with per-facet overrides applied; sampling budgets are never overridden."""
    templates = dict(DEFAULT_TEMPLATES)
    for name, override in (custom_prompts or {}).items():
        try:
            facet = Facet(name)
        except ValueError as e:
            raise ConfigurationError(f"Unknown facet in custom prompts: {name!r}") from e
        changes = {k: v for k, v in override.model_dump().items() if v}
        if changes:
            templates[facet] = replace(templates[facet], **changes)
    return templates
