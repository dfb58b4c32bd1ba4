from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


EntityType = Literal["person", "organization", "location", "date", "number", "other"]
ENTITY_TYPES = ("person", "organization", "location", "date", "number", "other")
SummaryFormat = Literal["brief", "detailed"]
SummaryStyle = Literal["bullet-points", "paragraph"]
SUMMARY_FORMATS = ("brief", "detailed")
SUMMARY_STYLES = ("bullet-points", "paragraph")


class Entity(BaseModel):
    type: EntityType = "other"
    value: str
    context: str | None = None
    confidence: float = 0.5
    mentions: int | None = None

    @field_validator("type", mode="before")
    @classmethod
    def _coerce_type(cls, value: Any) -> str:
        # Models occasionally invent labels; fold them into "other".
        value = str(value or "other").lower()
        return value if value in ENTITY_TYPES else "other"

    @field_validator("value", mode="before")
    @classmethod
    def _stringify_value(cls, value: Any) -> str:
        return "" if value is None else str(value)


class AnalysisResult(BaseModel):
    answer: str
    sources: list[Any] = Field(default_factory=list)
    structured_data: Any | None = None
    confidence: float | None = None
    tokens_used: int = 0
    model: str


class SummaryOptions(BaseModel):
    format: SummaryFormat = "detailed"
    style: SummaryStyle = "paragraph"
    max_length: int | None = Field(default=None, gt=0)
    include_key_insights: bool = True
    include_action_items: bool = True


class SummaryMetadata(BaseModel):
    original_length: int
    summary_length: int
    compression_ratio: float


class Summary(BaseModel):
    summary: str
    key_insights: list[str] | None = None
    action_items: list[str] | None = None
    metadata: SummaryMetadata


class Conflict(BaseModel):
    topic: str
    doc1_statement: str
    doc2_statement: str
    severity: Literal["high", "medium", "low"] = "medium"


class Comparison(BaseModel):
    similarities: list[str] = Field(default_factory=list)
    differences: list[str] = Field(default_factory=list)
    conflicts: list[Conflict] = Field(default_factory=list)
    overall_similarity: float = 0.5
    analysis: str = ""


class GenerationResult(BaseModel):
    text: str
    total_tokens: int = 0
    model: str
    cached: bool = False
