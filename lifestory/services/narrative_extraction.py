"""
Narrative-extraction and media-analysis collaborators.

Both wrap a Bedrock model and are treated as untrusted: a missing field
defaults to empty, and a malformed response degrades to a single verbatim
draft so that no user input is silently lost.
"""

import json
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from ..models.core import (UNDATED, DraftMemory, EntityMetadata, EntityType, EraCategory, GroundingSource, LifeStory, MemoryType,
                           ProposedEntity, Sentiment)
from ..utils.bedrock_llm import BedrockLLM, BedrockLLMError, json_prefill, user_message
from ..utils.config import config
from ..utils.json_utils import parse_json_response
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

FALLBACK_RESPONSE = "I've saved that fragment. What else from your own journey would you like to capture today?"
FALLBACK_TOPIC = 'User Journey'


@dataclass(frozen=True)
class ExtractionResult:
    response_text: str
    drafts: Tuple[DraftMemory, ...] = ()
    entities: Tuple[ProposedEntity, ...] = ()
    citations: Tuple[GroundingSource, ...] = ()
    topic: Optional[str] = None
    degraded: bool = False


@dataclass(frozen=True)
class MediaAnalysis:
    narrative: str
    suggested_year: str = UNDATED
    suggested_location: Optional[str] = None
    analysis: str = ''
    curiosity: str = ''
    suggested_era_categories: Tuple[EraCategory, ...] = ()


def fallback_extraction(raw_input: str) -> ExtractionResult:
    """The verbatim single-draft result used whenever extraction output is unusable."""
    return ExtractionResult(response_text=FALLBACK_RESPONSE,
                            drafts=(DraftMemory(narrative=raw_input, sort_date=UNDATED), ),
                            topic=FALLBACK_TOPIC,
                            degraded=True)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _list(value: Any) -> List[Any]:
    return value if isinstance(value, list) else []


def _categories(value: Any) -> Tuple[EraCategory, ...]:
    categories = []
    for item in _list(value):
        try:
            category = EraCategory(str(item).strip().lower())
        except ValueError:
            continue
        if category not in categories:
            categories.append(category)
    return tuple(categories)


def _proposed_entity(item: Any) -> Optional[ProposedEntity]:
    if not isinstance(item, dict):
        return None
    name = _text(item.get('name'))
    if not name:
        return None
    metadata = item.get('metadata') if isinstance(item.get('metadata'), dict) else {}
    structured = EntityMetadata(birth_date=_text(metadata.get('birthDate') or metadata.get('birth_date')),
                                death_date=_text(metadata.get('deathDate') or metadata.get('death_date')),
                                birth_place=_text(metadata.get('birthPlace') or metadata.get('birth_place')),
                                notes=_text(metadata.get('notes')))
    return ProposedEntity(name=name,
                          type=EntityType.parse(item.get('type')) if item.get('type') else None,
                          relationship=_text(item.get('relationship')),
                          details=_text(item.get('details')) or structured.notes,
                          metadata=structured if structured != EntityMetadata() else None)


def _draft(item: Any) -> Optional[DraftMemory]:
    if not isinstance(item, dict):
        return None
    narrative = _text(item.get('narrative'))
    if not narrative:
        return None
    associated = tuple(p for p in (_proposed_entity(e) for e in _list(item.get('associatedEntities'))) if p is not None)
    return DraftMemory(narrative=narrative,
                       sort_date=_text(item.get('sortDate')) or UNDATED,
                       sentiment=Sentiment.parse(item.get('sentiment')),
                       type=MemoryType.parse(item.get('type')),
                       location=_text(item.get('location')),
                       suggested_era_categories=_categories(item.get('suggestedEraCategories')),
                       suggested_era_label=_text(item.get('suggestedEraLabel')),
                       associated_entities=associated,
                       reasoning=_text(item.get('reasoning')),
                       ai_insight=_text(item.get('aiInsight')),
                       historical_context=_text(item.get('historicalContext')))


def _citation(item: Any) -> Optional[GroundingSource]:
    if not isinstance(item, dict) or not _text(item.get('uri')):
        return None
    return GroundingSource(title=_text(item.get('title')) or item['uri'], uri=_text(item.get('uri')))


def parse_extraction_response(raw_input: str, payload: Any) -> ExtractionResult:
    """Turn collaborator output into an ExtractionResult.

    Args:
        raw_input: The user text the collaborator was given
        payload: Decoded JSON object, or the raw response string

    Returns:
        The parsed result, or fallback_extraction(raw_input) when payload is malformed
    """
    if isinstance(payload, (str, bytes)):
        try:
            payload = parse_json_response(payload.decode('utf-8') if isinstance(payload, bytes) else payload)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            logger.warning(f'Extraction response is not JSON; saving input verbatim: {e}')
            return fallback_extraction(raw_input)

    if not isinstance(payload, dict):
        logger.warning(f'Extraction response has unexpected shape {type(payload).__name__}; saving input verbatim')
        return fallback_extraction(raw_input)

    drafts = tuple(d for d in (_draft(item) for item in _list(payload.get('drafts', payload.get('extractedMemories')))) if d)
    entities = tuple(e for e in (_proposed_entity(item) for item in _list(payload.get('entities', payload.get('extractedEntities'))))
                     if e)
    citations = tuple(c for c in (_citation(item) for item in _list(payload.get('citations', payload.get('sources')))) if c)
    response_text = _text(payload.get('response', payload.get('biographerResponse')))

    if response_text is None and not drafts and not entities:
        logger.warning('Extraction response carried nothing usable; saving input verbatim')
        return fallback_extraction(raw_input)

    return ExtractionResult(response_text=response_text or '',
                            drafts=drafts,
                            entities=entities,
                            citations=citations,
                            topic=_text(payload.get('topic')))


def parse_media_analysis(payload: Any) -> MediaAnalysis:
    """Turn media-analysis output into a MediaAnalysis, defaulting every missing field."""
    if isinstance(payload, str):
        try:
            payload = parse_json_response(payload)
        except json.JSONDecodeError as e:
            logger.warning(f'Media analysis response is not JSON: {e}')
            payload = {}
    if not isinstance(payload, dict):
        payload = {}

    return MediaAnalysis(narrative=_text(payload.get('narrative')) or '',
                         suggested_year=_text(payload.get('suggestedYear')) or UNDATED,
                         suggested_location=_text(payload.get('suggestedLocation')),
                         analysis=_text(payload.get('analysis')) or '',
                         curiosity=_text(payload.get('biographerCuriosity')) or 'Tell me about this one. When was it taken?',
                         suggested_era_categories=_categories(payload.get('suggestedEraCategories')))


def build_facts_context(story: LifeStory) -> str:
    """Serialize known entities and memories as context for the collaborators."""
    entity_facts = [f'[Entity: {e.name} ({e.relationship or e.type.value}) details: {", ".join(e.history_tags)}]' for e in story.entities]
    memory_facts = [f'[{m.sort_date}: {m.narrative}]' for m in story.memories if not m.is_deleted]
    era_facts = [f'[Era: {e.label} ({e.category.value}) {e.start_year}-{e.end_year}]' for e in story.eras]
    return '\n'.join(entity_facts + era_facts + memory_facts)


class NarrativeExtractionService:
    """Extract candidate fragments from user input and media using Bedrock LLMs."""

    def __init__(self, llm: Optional[BedrockLLM] = None):
        """Initialize the narrative extraction service."""
        self.llm = llm or BedrockLLM(config.bedrock_llm)

        logger.info('Initialized NarrativeExtractionService')

    def _extraction_prompt(self, facts_context: str, tone: str, birth_year: Optional[int]) -> str:
        style = ('Be concise: acknowledge facts briefly, at most two short sentences, then ask one question.'
                 if tone == 'concise' else 'You may be warm and descriptive, but keep the focus on the user.')
        return f"""
You are a biographer helping a person record their own life story. {style}

Extract candidate memories and recurring entities from the user's message.
- Each memory is one atomic fact from the user's perspective.
- sortDate is YYYY or YYYY-MM-DD; use "0000" if no date can be inferred.{f' The user was born in {birth_year}.' if birth_year else ''}
- suggestedEraCategories lists which life phases the memory starts, from: personal, professional, location.
- Entities are recurring people, places or concepts. Normalize place names.

Known facts:
{facts_context or '(none yet)'}

Return JSON with this exact format:
```json
{{
  "response": "your reply to the user",
  "topic": "short label for the current topic",
  "drafts": [
    {{"narrative": "...", "sortDate": "YYYY", "sentiment": "positive|neutral|high-stakes|nostalgic",
      "type": "EVENT|INTANGIBLE", "location": "...", "suggestedEraCategories": ["location"],
      "aiInsight": "...", "historicalContext": "..."}}
  ],
  "entities": [
    {{"name": "...", "type": "PERSON|PLACE|OBJECT|DREAM|VISION|SKILL|PASSION|LIKE|THOUGHT|IDENTITY",
      "relationship": "...", "details": "..."}}
  ],
  "citations": [{{"title": "...", "uri": "..."}}]
}}
```"""

    def extract(self,
                raw_text: str,
                facts_context: str = '',
                tone: str = 'concise',
                image: Optional[bytes] = None,
                image_mime_type: Optional[str] = None,
                birth_year: Optional[int] = None) -> ExtractionResult:
        """Ask the collaborator for candidate fragments. Never raises.

        Args:
            raw_text: What the user typed
            facts_context: Output of build_facts_context
            tone: 'concise' or 'elaborate'
            image: Optional image bytes sent alongside the text
            image_mime_type: Mime type of image
            birth_year: User's birth year, used as a dating hint

        Returns:
            ExtractionResult; the verbatim fallback if the call or its output fails
        """
        if not raw_text or not raw_text.strip():
            return ExtractionResult(response_text='')

        messages = [user_message(f'User: "{raw_text}"', image, image_mime_type), json_prefill()]
        try:
            response, _ = self.llm.generate_response(messages=messages,
                                                     system_prompt=self._extraction_prompt(facts_context, tone, birth_year),
                                                     stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.error(f'LLM error during narrative extraction: {e}')
            return fallback_extraction(raw_text)

        result = parse_extraction_response(raw_text, response)
        logger.debug(f'Extracted {len(result.drafts)} drafts and {len(result.entities)} entities')
        return result

    def analyze_media(self, data: bytes, mime_type: str, facts_context: str = '', birth_year: Optional[int] = None) -> MediaAnalysis:
        """Ask the collaborator what an uploaded artifact shows. Never raises."""
        system_prompt = f"""
You are a biographer looking at an artifact the user uploaded (photo, document or recording).
Suggest when and where it is from and describe what the user was doing.{f' The user was born in {birth_year}.' if birth_year else ''}

Known facts:
{facts_context or '(none yet)'}

Return JSON with this exact format:
```json
{{
  "narrative": "one-sentence memory from the user's perspective",
  "suggestedYear": "YYYY or 0000",
  "suggestedLocation": "...",
  "suggestedEraCategories": [],
  "analysis": "what the artifact shows",
  "biographerCuriosity": "one question for the user about it"
}}
```"""
        messages = [user_message('Analyze this artifact.', data, mime_type), json_prefill()]
        try:
            response, _ = self.llm.generate_response(messages=messages, system_prompt=system_prompt, stop_sequences=['```'])
        except BedrockLLMError as e:
            logger.error(f'LLM error during media analysis: {e}')
            return parse_media_analysis({})
        return parse_media_analysis(response)
