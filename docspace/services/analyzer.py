from __future__ import annotations

import json
import logging
import re
from typing import Any, AsyncIterator

from pydantic import ValidationError

from docspace.core.config import MAX_CONTEXT_TOKENS
from docspace.core.errors import AIError, InvalidResponseError
from docspace.domain.analysis import (
    AnalysisResult,
    Comparison,
    Conflict,
    Entity,
    Summary,
    SummaryMetadata,
    SummaryOptions,
)
from docspace.domain.conversation import HistoryMessage
from docspace.services.ai_client import GeminiClient


logger = logging.getLogger(__name__)

_OBJECT_RE = re.compile(r"\{.*\}", re.DOTALL)
_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
CONFIDENCE_SCORES = {"high": 0.9, "medium": 0.7, "low": 0.5}
DEFAULT_CONFIDENCE = 0.7

ANALYST_INSTRUCTION = """You are an expert document analyst. Analyze the provided document and answer questions with precision and clarity.

Key guidelines:
- Base your answers strictly on the document content
- Cite specific sections when relevant
- If information is not in the document, clearly state that
- Provide detailed, well-structured responses
- Extract structured data when applicable (dates, numbers, entities)
- Identify sources and provide confidence levels when appropriate"""
STREAM_INSTRUCTION = (
    "You are an expert document analyst. Analyze the provided document and answer "
    "questions with precision and clarity."
)
ENTITY_INSTRUCTION = (
    "You are an expert at named entity recognition. Extract entities accurately and return valid JSON."
)
SUMMARY_INSTRUCTION = (
    "You are an expert at document summarization. Create clear, accurate summaries "
    "that capture the essence of the content."
)
COMPARISON_INSTRUCTION = (
    "You are an expert at document comparison and analysis. Identify similarities, "
    "differences, and conflicts accurately."
)


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse the widest ``{...}`` span in a model reply, or return None."""
    match = _OBJECT_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_array(text: str) -> list[Any] | None:
    match = _ARRAY_RE.search(text)
    if not match:
        return None
    try:
        parsed = json.loads(match.group(0))
    except ValueError:
        return None
    return parsed if isinstance(parsed, list) else None


def _qa_prompt(document_text: str, query: str) -> str:
    return (
        f"Document content:\n{document_text}\n\n"
        f"User question: {query}\n\n"
        "Please provide a comprehensive, accurate answer based solely on the document content."
    )


def _structured_qa_prompt(document_text: str, query: str) -> str:
    return (
        f"Document content:\n{document_text}\n\n"
        f"User question: {query}\n\n"
        "Please provide:\n"
        "1. A comprehensive answer to the question\n"
        "2. Relevant quotes or sections from the document\n"
        "3. Any structured data (entities, dates, numbers) found\n"
        "4. Confidence level in your answer (high/medium/low)\n\n"
        "Format your response as JSON with these fields:\n"
        "{\n"
        '  "answer": "detailed answer here",\n'
        '  "sources": [{"text": "quote", "relevance": 0.9}],\n'
        '  "structuredData": {"entities": [], "dates": [], "numbers": []},\n'
        '  "confidence": "high|medium|low"\n'
        "}"
    )


def _entity_prompt(document_text: str) -> str:
    return (
        "Analyze the following document and extract all important entities. "
        "Return them as a JSON array.\n\n"
        f"Document:\n{document_text}\n\n"
        "Extract:\n"
        "- People (names of individuals)\n"
        "- Organizations (companies, institutions)\n"
        "- Locations (cities, countries, addresses)\n"
        "- Dates (specific dates and time periods)\n"
        "- Numbers (monetary amounts, quantities, percentages)\n"
        "- Other significant entities\n\n"
        "For each entity, provide:\n"
        "{\n"
        '  "type": "person|organization|location|date|number|other",\n'
        '  "value": "the entity text",\n'
        '  "context": "surrounding context (1-2 sentences)",\n'
        '  "confidence": 0.0-1.0,\n'
        '  "mentions": count\n'
        "}\n\n"
        "Return only the JSON array, no additional text."
    )


def _summary_prompt(document_text: str, options: SummaryOptions, max_length: int) -> str:
    scope = "concise, high-level" if options.format == "brief" else "comprehensive, detailed"
    style = (
        "Use bullet points for clarity"
        if options.style == "bullet-points"
        else "Write in well-structured paragraphs"
    )
    lines = [
        "Summarize the following document according to these specifications:",
        "",
        f"Format: {options.format} ({scope})",
        f"Style: {style}",
        f"Max length: approximately {max_length} words",
        f"Include key insights: {'Yes' if options.include_key_insights else 'No'}",
        f"Include action items: {'Yes' if options.include_action_items else 'No'}",
        "",
        "Document:",
        document_text,
        "",
    ]
    if options.include_key_insights or options.include_action_items:
        fields = ['  "summary": "the summary text"']
        if options.include_key_insights:
            fields.append('  "keyInsights": ["insight 1", "insight 2", ...]')
        if options.include_action_items:
            fields.append('  "actionItems": ["action 1", "action 2", ...]')
        lines.extend(["Please structure your response as JSON:", "{", ",\n".join(fields), "}"])
    else:
        lines.append("Provide the summary directly.")
    return "\n".join(lines)


def _comparison_prompt(doc1_text: str, doc2_text: str) -> str:
    return (
        "Compare these two documents and identify:\n"
        "1. Similarities (common themes, topics, information)\n"
        "2. Differences (contradictions, unique information)\n"
        "3. Conflicts (where they disagree on facts or conclusions)\n\n"
        f"Document 1:\n{doc1_text}\n\n---\n\n"
        f"Document 2:\n{doc2_text}\n\n"
        "Provide your analysis as JSON:\n"
        "{\n"
        '  "similarities": ["similarity 1", "similarity 2", ...],\n'
        '  "differences": ["difference 1", "difference 2", ...],\n'
        '  "conflicts": [\n'
        "    {\n"
        '      "topic": "topic name",\n'
        '      "doc1Statement": "what doc1 says",\n'
        '      "doc2Statement": "what doc2 says",\n'
        '      "severity": "low|medium|high"\n'
        "    }\n"
        "  ],\n"
        '  "overallSimilarity": 0.0-1.0,\n'
        '  "analysis": "comprehensive analysis paragraph"\n'
        "}"
    )


def _word_count(text: str) -> int:
    return len(text.split())


def _string_list(value: Any) -> list[str] | None:
    if not isinstance(value, list):
        return None
    return [str(item) for item in value]


def _parse_conflicts(raw: Any) -> list[Conflict]:
    conflicts: list[Conflict] = []
    for item in raw if isinstance(raw, list) else []:
        if not isinstance(item, dict):
            continue
        severity = str(item.get("severity") or "medium").lower()
        conflicts.append(
            Conflict(
                topic=str(item.get("topic") or ""),
                doc1_statement=str(item.get("doc1Statement") or ""),
                doc2_statement=str(item.get("doc2Statement") or ""),
                severity=severity if severity in {"high", "medium", "low"} else "medium",
            )
        )
    return conflicts


def group_entities(entities: list[Entity]) -> dict[str, list[Entity]]:
    grouped: dict[str, list[Entity]] = {}
    for entity in entities:
        grouped.setdefault(entity.type, []).append(entity)
    for items in grouped.values():
        items.sort(key=lambda entity: entity.confidence, reverse=True)
    return grouped


class AnalysisStream:
    """Async iterator over answer chunks; ``response`` holds the full text once drained."""

    def __init__(self, chunks: AsyncIterator[str], model: str) -> None:
        self._chunks = chunks
        self.model = model
        self.response = ""

    def __aiter__(self) -> "AnalysisStream":
        return self

    async def __anext__(self) -> str:
        chunk = await self._chunks.__anext__()
        self.response += chunk
        return chunk

    async def aclose(self) -> None:
        closer = getattr(self._chunks, "aclose", None)
        if closer is not None:
            await closer()


class DocumentAnalyzer:
    def __init__(self, ai_client: GeminiClient, *, max_context_tokens: int = MAX_CONTEXT_TOKENS) -> None:
        self._ai = ai_client
        self._max_context_tokens = max_context_tokens

    @property
    def model(self) -> str:
        return self._ai.model

    async def analyze_document(
        self,
        document_text: str,
        query: str,
        *,
        history: list[HistoryMessage] | None = None,
        extract_structured: bool = False,
    ) -> AnalysisResult:
        if not document_text or not query:
            raise AIError("Document text and query are required", "INVALID_INPUT")
        document_tokens = await self._ai.count_tokens(document_text)
        query_tokens = await self._ai.count_tokens(query)
        total_tokens = document_tokens + query_tokens
        if total_tokens > self._max_context_tokens:
            raise AIError(
                f"Total tokens ({total_tokens}) exceeds safe limit. Consider splitting the document.",
                "TOKEN_LIMIT",
            )

        prompt = (
            _structured_qa_prompt(document_text, query)
            if extract_structured
            else _qa_prompt(document_text, query)
        )
        result = await self._ai.generate(
            prompt,
            system_instruction=ANALYST_INSTRUCTION,
            history=history,
            cache=True,
        )
        answer = result.text
        sources: list[Any] = []
        structured_data: Any | None = None
        confidence: float | None = None
        if extract_structured:
            parsed = extract_json_object(result.text)
            if parsed is None:
                logger.info("analysis_structured_parse_failed model=%s", result.model)
            else:
                answer = parsed.get("answer") or result.text
                structured_data = parsed.get("structuredData")
                sources = parsed.get("sources") or []
                confidence = CONFIDENCE_SCORES.get(str(parsed.get("confidence")), DEFAULT_CONFIDENCE)
        return AnalysisResult(
            answer=answer,
            sources=sources,
            structured_data=structured_data,
            confidence=confidence,
            tokens_used=result.total_tokens or total_tokens,
            model=result.model,
        )

    def analyze_document_stream(
        self,
        document_text: str,
        query: str,
        *,
        history: list[HistoryMessage] | None = None,
    ) -> AnalysisStream:
        chunks = self._ai.generate_stream(
            _qa_prompt(document_text, query),
            system_instruction=STREAM_INSTRUCTION,
            history=history,
        )
        return AnalysisStream(chunks, self._ai.model)

    async def extract_entities(self, document_text: str) -> list[Entity]:
        result = await self._ai.generate(
            _entity_prompt(document_text),
            system_instruction=ENTITY_INSTRUCTION,
            cache=True,
        )
        raw = extract_json_array(result.text)
        if raw is None:
            raise InvalidResponseError("Could not parse entities from response")
        entities: list[Entity] = []
        for item in raw:
            if not isinstance(item, dict):
                continue
            try:
                entities.append(Entity.model_validate(item))
            except ValidationError:
                logger.info("entity_skipped reason=invalid_shape")
        return entities

    async def generate_summary(self, document_text: str, options: SummaryOptions | None = None) -> Summary:
        options = options or SummaryOptions()
        max_length = options.max_length or (500 if options.format == "brief" else 2000)
        result = await self._ai.generate(
            _summary_prompt(document_text, options, max_length),
            system_instruction=SUMMARY_INSTRUCTION,
            cache=True,
        )
        text = result.text
        key_insights: list[str] | None = None
        action_items: list[str] | None = None
        if options.include_key_insights or options.include_action_items:
            parsed = extract_json_object(result.text)
            if parsed is not None:
                text = parsed.get("summary") or result.text
                key_insights = _string_list(parsed.get("keyInsights"))
                action_items = _string_list(parsed.get("actionItems"))

        original_length = _word_count(document_text)
        summary_length = _word_count(text)
        ratio = summary_length / original_length if original_length > 0 else 0
        return Summary(
            summary=text,
            key_insights=key_insights,
            action_items=action_items,
            metadata=SummaryMetadata(
                original_length=original_length,
                summary_length=summary_length,
                compression_ratio=round(ratio, 2),
            ),
        )

    async def compare_documents(self, doc1_text: str, doc2_text: str) -> Comparison:
        # Comparisons are rarely repeated, so skip the cache.
        result = await self._ai.generate(
            _comparison_prompt(doc1_text, doc2_text),
            system_instruction=COMPARISON_INSTRUCTION,
            cache=False,
        )
        parsed = extract_json_object(result.text)
        if parsed is None:
            logger.info("comparison_parse_failed model=%s", result.model)
            return Comparison(analysis=result.text)
        similarity = parsed.get("overallSimilarity")
        return Comparison(
            similarities=_string_list(parsed.get("similarities")) or [],
            differences=_string_list(parsed.get("differences")) or [],
            conflicts=_parse_conflicts(parsed.get("conflicts")),
            overall_similarity=float(similarity) if isinstance(similarity, (int, float)) and similarity else 0.5,
            analysis=parsed.get("analysis") or result.text,
        )
