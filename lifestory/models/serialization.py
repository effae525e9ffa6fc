"""
JSON document shapes for persisted records.

Field names are snake_case, enums are stored by value and tuples as lists.
Readers tolerate missing keys so older documents keep loading.
"""

from typing import Any, Dict, Optional

from .core import (PRESENT, UNDATED, Attachment, ChatMessage, DraftMemory, Entity, EntityMetadata, EntityType, Era, EraCategory,
                   GroundingSource, MediaType, Memory, MemoryType, PendingArtifact, Profile, ProposedEntity, Role, Sentiment)


def _metadata_to_dict(metadata: Optional[EntityMetadata]) -> Optional[Dict[str, Any]]:
    if metadata is None:
        return None
    return {
        'birth_date': metadata.birth_date,
        'death_date': metadata.death_date,
        'birth_place': metadata.birth_place,
        'notes': metadata.notes
    }


def _metadata_from_dict(doc: Optional[Dict[str, Any]]) -> Optional[EntityMetadata]:
    if not isinstance(doc, dict):
        return None
    return EntityMetadata(birth_date=doc.get('birth_date'),
                          death_date=doc.get('death_date'),
                          birth_place=doc.get('birth_place'),
                          notes=doc.get('notes'))


def attachment_to_dict(attachment: Attachment) -> Dict[str, Any]:
    return {'media_type': attachment.media_type.value, 'url': attachment.url, 'filename': attachment.filename}


def attachment_from_dict(doc: Dict[str, Any]) -> Attachment:
    return Attachment(media_type=MediaType(doc.get('media_type', MediaType.IMAGE.value)),
                      url=doc.get('url', ''),
                      filename=doc.get('filename'))


def _source_to_dict(source: GroundingSource) -> Dict[str, Any]:
    return {'title': source.title, 'uri': source.uri}


def _source_from_dict(doc: Dict[str, Any]) -> GroundingSource:
    return GroundingSource(title=doc.get('title', ''), uri=doc.get('uri', ''))


def profile_to_dict(profile: Profile) -> Dict[str, Any]:
    return {
        'user_id': profile.user_id,
        'display_name': profile.display_name,
        'email': profile.email,
        'birth_year': profile.birth_year,
        'birth_city': profile.birth_city,
        'onboarded': profile.onboarded,
        'tone': profile.tone
    }


def profile_from_dict(doc: Dict[str, Any]) -> Profile:
    return Profile(user_id=doc.get('user_id', ''),
                   display_name=doc.get('display_name'),
                   email=doc.get('email'),
                   birth_year=int(doc.get('birth_year', 1974)),
                   birth_city=doc.get('birth_city', ''),
                   onboarded=bool(doc.get('onboarded', False)),
                   tone=doc.get('tone', 'concise'))


def entity_to_dict(entity: Entity) -> Dict[str, Any]:
    return {
        'id': entity.id,
        'user_id': entity.user_id,
        'name': entity.name,
        'type': entity.type.value,
        'relationship': entity.relationship,
        'lineage_id': entity.lineage_id,
        'history_tags': list(entity.history_tags),
        'metadata': _metadata_to_dict(entity.metadata)
    }


def entity_from_dict(doc: Dict[str, Any]) -> Entity:
    return Entity(id=doc['id'],
                  user_id=doc.get('user_id', ''),
                  name=doc.get('name', 'Unknown'),
                  type=EntityType.parse(doc.get('type')),
                  relationship=doc.get('relationship'),
                  lineage_id=doc.get('lineage_id'),
                  history_tags=tuple(doc.get('history_tags') or ()),
                  metadata=_metadata_from_dict(doc.get('metadata')) or EntityMetadata())


def era_to_dict(era: Era) -> Dict[str, Any]:
    return {
        'id': era.id,
        'label': era.label,
        'category': era.category.value,
        'start_year': era.start_year,
        'end_year': era.end_year
    }


def era_from_dict(doc: Dict[str, Any]) -> Era:
    end_year = doc.get('end_year', PRESENT)
    return Era(id=doc['id'],
               label=doc.get('label', ''),
               category=EraCategory(doc.get('category', EraCategory.PERSONAL.value)),
               start_year=int(doc.get('start_year', 0)),
               end_year=PRESENT if end_year == PRESENT else int(end_year))


def memory_to_dict(memory: Memory) -> Dict[str, Any]:
    return {
        'id': memory.id,
        'user_id': memory.user_id,
        'narrative': memory.narrative,
        'original_input': memory.original_input,
        'sort_date': memory.sort_date,
        'sentiment': memory.sentiment.value,
        'type': memory.type.value,
        'entity_ids': list(memory.entity_ids),
        'era_ids': list(memory.era_ids),
        'location': memory.location,
        'attachments': [attachment_to_dict(a) for a in memory.attachments],
        'ai_insight': memory.ai_insight,
        'historical_context': memory.historical_context,
        'sources': [_source_to_dict(s) for s in memory.sources],
        'confidence': memory.confidence,
        'created_at': memory.created_at,
        'deleted_at': memory.deleted_at
    }


def memory_from_dict(doc: Dict[str, Any]) -> Memory:
    return Memory(id=doc['id'],
                  user_id=doc.get('user_id', ''),
                  narrative=doc.get('narrative', ''),
                  original_input=doc.get('original_input', ''),
                  sort_date=str(doc.get('sort_date') or UNDATED),
                  sentiment=Sentiment.parse(doc.get('sentiment')),
                  type=MemoryType.parse(doc.get('type')),
                  entity_ids=tuple(doc.get('entity_ids') or ()),
                  era_ids=tuple(doc.get('era_ids') or ()),
                  location=doc.get('location'),
                  attachments=tuple(attachment_from_dict(a) for a in doc.get('attachments') or ()),
                  ai_insight=doc.get('ai_insight'),
                  historical_context=doc.get('historical_context'),
                  sources=tuple(_source_from_dict(s) for s in doc.get('sources') or ()),
                  confidence=float(doc.get('confidence', 1.0)),
                  created_at=int(doc.get('created_at') or 0),
                  deleted_at=doc.get('deleted_at'))


def proposed_entity_to_dict(proposal: ProposedEntity) -> Dict[str, Any]:
    return {
        'name': proposal.name,
        'type': proposal.type.value if proposal.type else None,
        'relationship': proposal.relationship,
        'details': proposal.details,
        'metadata': _metadata_to_dict(proposal.metadata),
        'lineage_id': proposal.lineage_id
    }


def proposed_entity_from_dict(doc: Dict[str, Any]) -> ProposedEntity:
    return ProposedEntity(name=doc.get('name') or '',
                          type=EntityType.parse(doc['type']) if doc.get('type') else None,
                          relationship=doc.get('relationship'),
                          details=doc.get('details'),
                          metadata=_metadata_from_dict(doc.get('metadata')),
                          lineage_id=doc.get('lineage_id'))


def draft_to_dict(draft: DraftMemory) -> Dict[str, Any]:
    return {
        'narrative': draft.narrative,
        'sort_date': draft.sort_date,
        'sentiment': draft.sentiment.value,
        'type': draft.type.value,
        'location': draft.location,
        'suggested_era_categories': [c.value for c in draft.suggested_era_categories],
        'suggested_era_label': draft.suggested_era_label,
        'associated_entities': [proposed_entity_to_dict(p) for p in draft.associated_entities],
        'reasoning': draft.reasoning,
        'ai_insight': draft.ai_insight,
        'historical_context': draft.historical_context
    }


def draft_from_dict(doc: Dict[str, Any]) -> DraftMemory:
    return DraftMemory(narrative=doc.get('narrative', ''),
                       sort_date=str(doc.get('sort_date') or UNDATED),
                       sentiment=Sentiment.parse(doc.get('sentiment')),
                       type=MemoryType.parse(doc.get('type')),
                       location=doc.get('location'),
                       suggested_era_categories=tuple(EraCategory(c) for c in doc.get('suggested_era_categories') or ()),
                       suggested_era_label=doc.get('suggested_era_label'),
                       associated_entities=tuple(proposed_entity_from_dict(p) for p in doc.get('associated_entities') or ()),
                       reasoning=doc.get('reasoning'),
                       ai_insight=doc.get('ai_insight'),
                       historical_context=doc.get('historical_context'))


def pending_to_dict(pending: PendingArtifact) -> Dict[str, Any]:
    return {
        'id': pending.id,
        'attachment': attachment_to_dict(pending.attachment),
        'suggested_narrative': pending.suggested_narrative,
        'suggested_date': pending.suggested_date,
        'analysis': pending.analysis,
        'suggested_location': pending.suggested_location,
        'suggested_era_categories': [c.value for c in pending.suggested_era_categories],
        'message_id': pending.message_id
    }


def pending_from_dict(doc: Dict[str, Any]) -> PendingArtifact:
    return PendingArtifact(id=doc['id'],
                           attachment=attachment_from_dict(doc.get('attachment') or {}),
                           suggested_narrative=doc.get('suggested_narrative', ''),
                           suggested_date=str(doc.get('suggested_date') or UNDATED),
                           analysis=doc.get('analysis', ''),
                           suggested_location=doc.get('suggested_location'),
                           suggested_era_categories=tuple(EraCategory(c) for c in doc.get('suggested_era_categories') or ()),
                           message_id=doc.get('message_id'))


def message_to_dict(message: ChatMessage) -> Dict[str, Any]:
    return {
        'id': message.id,
        'role': message.role.value,
        'text': message.text,
        'timestamp': message.timestamp,
        'attachment': attachment_to_dict(message.attachment) if message.attachment else None,
        'proposals': [draft_to_dict(d) for d in message.proposals],
        'proposed_entities': [proposed_entity_to_dict(p) for p in message.proposed_entities],
        'sources': [_source_to_dict(s) for s in message.sources],
        'in_reply_to': message.in_reply_to
    }


def message_from_dict(doc: Dict[str, Any]) -> ChatMessage:
    attachment = doc.get('attachment')
    return ChatMessage(id=doc['id'],
                       role=Role(doc.get('role', Role.USER.value)),
                       text=doc.get('text', ''),
                       timestamp=int(doc.get('timestamp') or 0),
                       attachment=attachment_from_dict(attachment) if attachment else None,
                       proposals=tuple(draft_from_dict(d) for d in doc.get('proposals') or ()),
                       proposed_entities=tuple(proposed_entity_from_dict(p) for p in doc.get('proposed_entities') or ()),
                       sources=tuple(_source_from_dict(s) for s in doc.get('sources') or ()),
                       in_reply_to=doc.get('in_reply_to'))
