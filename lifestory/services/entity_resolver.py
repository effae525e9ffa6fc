"""
Entity Resolver: decide whether a candidate entity is new or already known,
and compute the merged record.

Resolution is pure. The caller applies the returned decision to its own
entity set with apply_resolution.
"""

import uuid
from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Iterable, Optional, Tuple

from ..models.core import Entity, EntityMetadata, EntityType, ProposedEntity
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

PLACEHOLDER_NAME = 'Unknown'


class ResolutionAction(str, Enum):
    CREATE = 'CREATE'
    MERGE = 'MERGE'


@dataclass(frozen=True)
class ResolutionDecision:
    action: ResolutionAction
    target_id: str
    entity: Entity  # The record as it looks once the decision is applied


def normalize_name(name: Optional[str]) -> str:
    """Matching key for entity names: trimmed and case-folded."""
    return (name or '').strip().casefold()


def new_entity_id() -> str:
    return str(uuid.uuid4())


def find_by_name(entities: Iterable[Entity], name: str) -> Optional[Entity]:
    key = normalize_name(name)
    if not key:
        return None
    for entity in entities:
        if normalize_name(entity.name) == key:
            return entity
    return None


def _merge(existing: Entity, candidate: ProposedEntity) -> Entity:
    tags = existing.history_tags
    details = (candidate.details or '').strip()
    if details and details not in tags:
        tags = tags + (details, )

    # The existing type is kept; a later hint never downgrades it
    return replace(existing,
                   history_tags=tags,
                   relationship=existing.relationship or candidate.relationship or None,
                   lineage_id=existing.lineage_id or candidate.lineage_id,
                   metadata=existing.metadata.merged(candidate.metadata))


def resolve(candidate: ProposedEntity,
            entities: Tuple[Entity, ...],
            user_id: str,
            id_factory: Callable[[], str] = new_entity_id) -> ResolutionDecision:
    """Resolve a candidate against the user's known entities.

    Args:
        candidate: Proposed entity from the extraction collaborator or a draft
        entities: Current entity set
        user_id: Owner of any newly created entity
        id_factory: Id allocator for new entities

    Returns:
        MERGE against the entity with the same normalized name, otherwise CREATE
    """
    name = (candidate.name or '').strip()
    if not name:
        entity = Entity(id=id_factory(),
                        user_id=user_id,
                        name=PLACEHOLDER_NAME,
                        type=EntityType.parse(candidate.type),
                        relationship=candidate.relationship or None,
                        lineage_id=candidate.lineage_id,
                        history_tags=(candidate.details.strip(), ) if candidate.details and candidate.details.strip() else (),
                        metadata=candidate.metadata or EntityMetadata())
        logger.debug(f'Candidate without a name; creating placeholder entity {entity.id}')
        return ResolutionDecision(action=ResolutionAction.CREATE, target_id=entity.id, entity=entity)

    existing = find_by_name(entities, name)
    if existing is not None:
        logger.debug(f'Candidate "{name}" merges into entity {existing.id}')
        return ResolutionDecision(action=ResolutionAction.MERGE, target_id=existing.id, entity=_merge(existing, candidate))

    details = (candidate.details or '').strip()
    entity = Entity(id=id_factory(),
                    user_id=user_id,
                    name=name,
                    type=EntityType.parse(candidate.type),
                    relationship=candidate.relationship or None,
                    lineage_id=candidate.lineage_id,
                    history_tags=(details, ) if details else (),
                    metadata=candidate.metadata or EntityMetadata())
    logger.debug(f'Candidate "{name}" creates entity {entity.id}')
    return ResolutionDecision(action=ResolutionAction.CREATE, target_id=entity.id, entity=entity)


def apply_resolution(entities: Tuple[Entity, ...], decision: ResolutionDecision) -> Tuple[Entity, ...]:
    """Return a new entity set with the decision applied."""
    if decision.action == ResolutionAction.CREATE:
        return entities + (decision.entity, )
    return tuple(decision.entity if entity.id == decision.target_id else entity for entity in entities)


def resolve_all(candidates: Iterable[ProposedEntity],
                entities: Tuple[Entity, ...],
                user_id: str,
                id_factory: Callable[[], str] = new_entity_id) -> Tuple[Tuple[Entity, ...], Tuple[str, ...]]:
    """Resolve candidates one after another, each against the set the previous ones produced.

    Returns:
        Tuple of (updated entities, resolved entity ids in candidate order, de-duplicated)
    """
    resolved_ids = []
    for candidate in candidates:
        decision = resolve(candidate, entities, user_id, id_factory)
        entities = apply_resolution(entities, decision)
        if decision.target_id not in resolved_ids:
            resolved_ids.append(decision.target_id)
    return entities, tuple(resolved_ids)


def detect_entities(text: str, entities: Iterable[Entity]) -> Tuple[str, ...]:
    """Ids of known entities whose name appears in text, case-insensitively."""
    haystack = (text or '').casefold()
    if not haystack:
        return ()
    found = []
    for entity in entities:
        key = normalize_name(entity.name)
        if not key or entity.name == PLACEHOLDER_NAME:
            continue
        if key in haystack:
            found.append(entity.id)
    return tuple(found)
