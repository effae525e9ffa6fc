"""
Tests for entity resolution: case-insensitive matching, merge rules and detection.
"""

from lifestory.models.core import Entity, EntityMetadata, EntityType, ProposedEntity
from lifestory.services.entity_resolver import (PLACEHOLDER_NAME, ResolutionAction, apply_resolution, detect_entities, find_by_name,
                                                normalize_name, resolve, resolve_all)

USER = 'user-1'


def _make_entity(**overrides) -> Entity:
    defaults = {
        'id': 'ent-1',
        'user_id': USER,
        'name': 'Maria',
        'type': EntityType.PERSON,
    }
    defaults.update(overrides)
    return Entity(**defaults)


class TestNormalizeName:

    def test_trims_and_casefolds(self):
        assert normalize_name('  MaRia ') == 'maria'

    def test_none_is_empty(self):
        assert normalize_name(None) == ''

    def test_find_by_name_ignores_case(self):
        entity = _make_entity()
        assert find_by_name([entity], 'MARIA') is entity
        assert find_by_name([entity], 'Mario') is None
        assert find_by_name([entity], '   ') is None


class TestResolve:

    def test_unknown_name_creates(self, ids):
        decision = resolve(ProposedEntity(name='Jorge', type=EntityType.PERSON, details='Brother'), (), USER, ids)

        assert decision.action == ResolutionAction.CREATE
        assert decision.target_id == 'id-1'
        assert decision.entity.name == 'Jorge'
        assert decision.entity.history_tags == ('Brother', )
        assert decision.entity.user_id == USER

    def test_known_name_merges_details_once(self, ids):
        existing = _make_entity(history_tags=('Born 1945', ))
        decision = resolve(ProposedEntity(name='maria', details='Born 1945'), (existing, ), USER, ids)

        assert decision.action == ResolutionAction.MERGE
        assert decision.target_id == existing.id
        assert decision.entity.history_tags == ('Born 1945', )
        assert ids.count == 0

    def test_merge_never_changes_type(self, ids):
        existing = _make_entity(type=EntityType.PERSON)
        decision = resolve(ProposedEntity(name='Maria', type=EntityType.PLACE), (existing, ), USER, ids)

        assert decision.entity.type == EntityType.PERSON

    def test_merge_keeps_existing_relationship(self, ids):
        existing = _make_entity(relationship='Mother')
        decision = resolve(ProposedEntity(name='Maria', relationship='Aunt'), (existing, ), USER, ids)
        assert decision.entity.relationship == 'Mother'

    def test_merge_fills_missing_relationship(self, ids):
        decision = resolve(ProposedEntity(name='Maria', relationship='Mother'), (_make_entity(), ), USER, ids)
        assert decision.entity.relationship == 'Mother'

    def test_merge_overlays_metadata(self, ids):
        existing = _make_entity(metadata=EntityMetadata(birth_date='1945', notes='old'))
        candidate = ProposedEntity(name='Maria', metadata=EntityMetadata(death_date='2010', notes='new'))

        merged = resolve(candidate, (existing, ), USER, ids).entity.metadata

        assert merged.birth_date == '1945'
        assert merged.death_date == '2010'
        assert merged.notes == 'new'

    def test_empty_name_creates_placeholder(self, ids):
        existing = _make_entity(name=PLACEHOLDER_NAME)
        decision = resolve(ProposedEntity(name='  '), (existing, ), USER, ids)

        assert decision.action == ResolutionAction.CREATE
        assert decision.entity.name == PLACEHOLDER_NAME
        assert decision.target_id != existing.id

    def test_unknown_type_defaults_to_person(self, ids):
        decision = resolve(ProposedEntity(name='Blue Bike'), (), USER, ids)
        assert decision.entity.type == EntityType.PERSON


class TestResolveAll:

    def test_same_name_different_case_yields_one_entity(self, ids):
        candidates = [ProposedEntity(name='maria', details='Born 1945'), ProposedEntity(name='Maria', details='Died 2010')]

        entities, resolved_ids = resolve_all(candidates, (), USER, ids)

        assert len(entities) == 1
        assert entities[0].name == 'maria'
        assert entities[0].history_tags == ('Born 1945', 'Died 2010')
        assert entities[0].facts[1].year == 2010
        assert resolved_ids == ('id-1', )

    def test_resolving_twice_is_idempotent(self, ids):
        candidate = ProposedEntity(name='Maria', details='Born 1945')
        once, _ = resolve_all([candidate], (), USER, ids)
        twice, _ = resolve_all([candidate], once, USER, ids)

        assert twice == once

    def test_apply_merge_replaces_in_place(self, ids):
        first = _make_entity(id='a', name='Maria')
        second = _make_entity(id='b', name='Jorge')
        decision = resolve(ProposedEntity(name='JORGE', details='Brother'), (first, second), USER, ids)

        updated = apply_resolution((first, second), decision)

        assert [e.id for e in updated] == ['a', 'b']
        assert updated[1].history_tags == ('Brother', )


class TestDetectEntities:

    def test_case_insensitive_substring(self):
        maria = _make_entity(id='m', name='Maria')
        london = _make_entity(id='l', name='London', type=EntityType.PLACE)

        assert detect_entities('I visited MARIA in london.', (maria, london)) == ('m', 'l')

    def test_no_match(self):
        assert detect_entities('Nothing here', (_make_entity(), )) == ()

    def test_placeholder_never_matches(self):
        placeholder = _make_entity(name=PLACEHOLDER_NAME)
        assert detect_entities('The unknown soldier', (placeholder, )) == ()
