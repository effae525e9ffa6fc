"""
Memory Confirmation Pipeline.

A candidate fragment is either confirmed, becoming an authoritative Memory,
or discarded. Every function here maps one LifeStory snapshot to the next
and never mutates its input. Confirming something that is no longer pending
returns the snapshot unchanged, so a double confirmation cannot duplicate a
record.
"""

import uuid
from dataclasses import replace
from typing import Callable, Iterable, Optional, Tuple

from ..models.core import (UNDATED, ChatMessage, DraftMemory, Entity, EraCategory, LifeStory, Memory, PendingArtifact,
                           ProposedEntity)
from ..utils.logging_config import get_logger
from ..utils.timestamp_utils import now_millis
from . import entity_resolver, era_engine

logger = get_logger(__name__)

CONVERSATION_INPUT = 'Conversation'
UPLOAD_INPUT = 'Upload'
ARTIFACT_PLACEHOLDER = 'Artifact Record'
ARTIFACT_CONFIDENCE = 0.9


def new_record_id() -> str:
    return uuid.uuid4().hex


def _unique(values: Iterable) -> Tuple:
    seen = []
    for value in values:
        if value not in seen:
            seen.append(value)
    return tuple(seen)


def _find_draft(message: ChatMessage, draft: DraftMemory) -> Optional[int]:
    for index, proposal in enumerate(message.proposals):
        if proposal.narrative == draft.narrative:
            return index
    return None


def _strip_draft(chat_history: Tuple[ChatMessage, ...], message_id: str, draft: DraftMemory) -> Tuple[ChatMessage, ...]:
    """Remove the first proposal on message_id whose narrative equals the draft's."""
    result = []
    for message in chat_history:
        if message.id == message_id:
            index = _find_draft(message, draft)
            if index is not None:
                message = replace(message, proposals=message.proposals[:index] + message.proposals[index + 1:])
        result.append(message)
    return tuple(result)


def _strip_entity(chat_history: Tuple[ChatMessage, ...], message_id: str, name: str) -> Tuple[ChatMessage, ...]:
    return tuple(
        replace(message, proposed_entities=tuple(p for p in message.proposed_entities if p.name != name))
        if message.id == message_id else message for message in chat_history)


def resolve_sort_date(date: Optional[str]) -> Tuple[str, Optional[int]]:
    """Normalize a candidate's date. Unparseable dates become UNDATED rather than an error."""
    year = era_engine.extract_year(date)
    if year is None:
        return UNDATED, None
    return date.strip(), year


def _admit_suggested_eras(story: LifeStory, categories: Iterable[EraCategory], year: Optional[int], location: Optional[str],
                          label: Optional[str]):
    """Open (and close) eras for each suggested category."""
    eras = story.eras
    categories = _unique(categories)
    if not categories:
        return eras

    start_year = year
    if start_year is None and story.profile is not None:
        start_year = story.profile.birth_year
        logger.debug(f'Undated fragment; admitting suggested eras from birth year {start_year}')
    if start_year is None:
        logger.debug('Undated fragment and no profile; skipping era admission')
        return eras

    for category in categories:
        admission = era_engine.admit_era(eras, category, era_engine.era_label_for(category, location, label), start_year)
        eras = era_engine.apply_admission(eras, admission)
    return eras


def _commit_memory(story: LifeStory, memory: Memory, eras, entities: Tuple[Entity, ...]) -> LifeStory:
    memories = story.memories + (memory, )
    if eras != story.eras:
        memories = era_engine.reassign_memories(memories, eras)
    return replace(story, memories=memories, eras=eras, entities=entities)


def confirm_draft(story: LifeStory,
                  message_id: str,
                  draft: DraftMemory,
                  user_id: str,
                  id_factory: Callable[[], str] = new_record_id,
                  now: Optional[int] = None) -> Tuple[LifeStory, Optional[Memory]]:
    """Turn a conversation draft into a Memory.

    Args:
        story: Current snapshot
        message_id: Chat message the draft is attached to
        draft: The draft being confirmed
        user_id: Owner of the new records
        id_factory: Memory id allocator
        now: Creation timestamp in milliseconds

    Returns:
        Tuple of (new snapshot, created memory or None if nothing was confirmed)
    """
    message = story.message(message_id)
    if message is not None and _find_draft(message, draft) is None:
        logger.debug(f'Draft is no longer pending on message {message_id}; ignoring confirmation')
        return story, None
    if message is None:
        logger.debug(f'Message {message_id} not found; confirming draft without stripping it')

    sort_date, year = resolve_sort_date(draft.sort_date)
    eras = _admit_suggested_eras(story, draft.suggested_era_categories, year, draft.location, draft.suggested_era_label)

    entities, associated_ids = entity_resolver.resolve_all(draft.associated_entities, story.entities, user_id)
    entity_ids = _unique(associated_ids + entity_resolver.detect_entities(draft.narrative, entities))

    memory = Memory(id=id_factory(),
                    user_id=user_id,
                    narrative=draft.narrative,
                    original_input=CONVERSATION_INPUT,
                    sort_date=sort_date,
                    sentiment=draft.sentiment,
                    type=draft.type,
                    entity_ids=entity_ids,
                    era_ids=era_engine.assign(sort_date, eras),
                    location=draft.location,
                    ai_insight=draft.ai_insight,
                    historical_context=draft.historical_context,
                    sources=message.sources if message is not None else (),
                    confidence=1.0,
                    created_at=now if now is not None else now_millis())

    story = _commit_memory(story, memory, eras, entities)
    story = replace(story, chat_history=_strip_draft(story.chat_history, message_id, draft))
    logger.debug(f'Confirmed draft as memory {memory.id} ({len(memory.era_ids)} eras, {len(entity_ids)} entities)')
    return story, memory


def confirm_pending_artifact(story: LifeStory,
                             pending_id: str,
                             user_id: str,
                             id_factory: Callable[[], str] = new_record_id,
                             now: Optional[int] = None) -> Tuple[LifeStory, Optional[Memory]]:
    """Turn a media-derived pending artifact into a Memory and drop it from the pending set."""
    pending: Optional[PendingArtifact] = next((p for p in story.pending if p.id == pending_id), None)
    if pending is None:
        logger.debug(f'Pending artifact {pending_id} not found; ignoring confirmation')
        return story, None

    sort_date, year = resolve_sort_date(pending.suggested_date)
    eras = _admit_suggested_eras(story, pending.suggested_era_categories, year, pending.suggested_location, None)

    narrative = pending.suggested_narrative or ARTIFACT_PLACEHOLDER
    searchable = ' '.join(filter(None, [narrative, pending.suggested_location]))

    memory = Memory(id=id_factory(),
                    user_id=user_id,
                    narrative=narrative,
                    original_input=UPLOAD_INPUT,
                    sort_date=sort_date,
                    entity_ids=entity_resolver.detect_entities(searchable, story.entities),
                    era_ids=era_engine.assign(sort_date, eras),
                    location=pending.suggested_location,
                    attachments=(pending.attachment, ),
                    ai_insight=pending.analysis or None,
                    confidence=ARTIFACT_CONFIDENCE,
                    created_at=now if now is not None else now_millis())

    story = _commit_memory(story, memory, eras, story.entities)
    story = replace(story, pending=tuple(p for p in story.pending if p.id != pending_id))
    logger.debug(f'Confirmed pending artifact {pending_id} as memory {memory.id}')
    return story, memory


def confirm_proposed_entity(story: LifeStory, message_id: str, proposal: ProposedEntity,
                            user_id: str) -> Tuple[LifeStory, Entity]:
    """Resolve a proposed entity into the entity set and strip it from its message."""
    decision = entity_resolver.resolve(proposal, story.entities, user_id)
    story = replace(story,
                    entities=entity_resolver.apply_resolution(story.entities, decision),
                    chat_history=_strip_entity(story.chat_history, message_id, proposal.name))
    logger.debug(f'Proposed entity "{proposal.name}" resolved as {decision.action.value} -> {decision.target_id}')
    return story, decision.entity


def discard_draft(story: LifeStory, message_id: str, draft: DraftMemory) -> LifeStory:
    return replace(story, chat_history=_strip_draft(story.chat_history, message_id, draft))


def discard_proposed_entity(story: LifeStory, message_id: str, proposal: ProposedEntity) -> LifeStory:
    return replace(story, chat_history=_strip_entity(story.chat_history, message_id, proposal.name))


def discard_pending_artifact(story: LifeStory, pending_id: str) -> LifeStory:
    return replace(story, pending=tuple(p for p in story.pending if p.id != pending_id))
