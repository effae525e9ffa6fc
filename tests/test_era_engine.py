"""
Tests for the era engine: year extraction, assignment and era admission.
"""

from lifestory.models.core import PRESENT, Era, EraCategory, Memory
from lifestory.services.era_engine import (admit_era, apply_admission, assign, era_label_for, extract_year, origin_eras,
                                           reassign_memories)


def _make_era(**overrides) -> Era:
    defaults = {
        'id': 'era-1',
        'label': 'Life in Mexico City',
        'category': EraCategory.LOCATION,
        'start_year': 1974,
    }
    defaults.update(overrides)
    return Era(**defaults)


def _open_eras(eras, category):
    return [era for era in eras if era.category == category and era.is_open]


class TestExtractYear:

    def test_formats(self):
        test_cases = [
            ('2001', 2001),
            ('2001-05-17', 2001),
            ('circa 1998', 1998),
            ('0000', None),
            ('', None),
            (None, None),
            ('sometime', None),
            ('12345', None),
        ]
        for date, expected in test_cases:
            assert extract_year(date) == expected, f'Failed for {date!r}'


class TestAssign:

    def test_overlapping_eras(self):
        eras = (
            _make_era(id='loc', start_year=2000, end_year=PRESENT),
            _make_era(id='per', category=EraCategory.PERSONAL, label='Marriage', start_year=1998, end_year=2010),
        )

        assert assign('2005', eras) == ('loc', 'per')
        assert assign('1990', eras) == ()

    def test_boundaries_are_inclusive(self):
        eras = (_make_era(id='e', start_year=1998, end_year=2010), )
        assert assign('1998', eras) == ('e', )
        assert assign('2010-12-31', eras) == ('e', )
        assert assign('2011', eras) == ()

    def test_undated_gets_no_eras(self):
        assert assign('0000', (_make_era(), )) == ()


class TestAdmitEra:

    def test_first_era_of_category_is_inserted_open(self, ids):
        admission = admit_era((), EraCategory.PROFESSIONAL, 'Acme', 2001, ids)

        assert admission.to_close is None
        assert admission.to_insert.is_open
        assert admission.to_insert.start_year == 2001

    def test_new_era_closes_open_one(self, ids):
        eras = (_make_era(id='mx'), )
        updated = apply_admission(eras, admit_era(eras, EraCategory.LOCATION, 'Life in London', 2001, ids))

        assert updated[0].end_year == 2001
        assert updated[1].label == 'Life in London'
        assert len(_open_eras(updated, EraCategory.LOCATION)) == 1

    def test_categories_are_independent(self, ids):
        eras = (_make_era(id='mx'), )
        updated = apply_admission(eras, admit_era(eras, EraCategory.PROFESSIONAL, 'Acme', 2001, ids))

        assert updated[0].is_open
        assert len(_open_eras(updated, EraCategory.PROFESSIONAL)) == 1

    def test_same_era_again_is_noop(self, ids):
        eras = (_make_era(id='mx'), )
        admission = admit_era(eras, EraCategory.LOCATION, 'Life in Mexico City', 1974, ids)

        assert admission.is_noop
        assert apply_admission(eras, admission) is eras

    def test_earlier_start_is_backfilled_closed(self, ids):
        eras = (_make_era(id='ldn', label='Life in London', start_year=2001), )
        updated = apply_admission(eras, admit_era(eras, EraCategory.LOCATION, 'Life in Madrid', 1995, ids))

        assert updated[0].is_open
        assert updated[1].start_year == 1995
        assert updated[1].end_year == 2001
        assert len(_open_eras(updated, EraCategory.LOCATION)) == 1

    def test_any_sequence_keeps_one_open_era_per_category(self, ids):
        proposals = [
            (EraCategory.LOCATION, 'Life in Mexico City', 1974),
            (EraCategory.LOCATION, 'Life in London', 2001),
            (EraCategory.PROFESSIONAL, 'Acme', 1999),
            (EraCategory.LOCATION, 'Life in Madrid', 1995),
            (EraCategory.LOCATION, 'Life in London', 2001),
            (EraCategory.PROFESSIONAL, 'Startup', 1990),
            (EraCategory.LOCATION, 'Life in Paris', 2010),
            (EraCategory.PROFESSIONAL, 'Bank', 2005),
            (EraCategory.LOCATION, 'Life in Lisbon', 2010),
            (EraCategory.PERSONAL, 'Marriage', 1998),
            (EraCategory.LOCATION, 'Life in Rome', 1960),
        ]
        eras = ()
        for category, label, start_year in proposals:
            eras = apply_admission(eras, admit_era(eras, category, label, start_year, ids))
            for each in EraCategory:
                assert len(_open_eras(eras, each)) <= 1, f'After admitting {label} ({start_year})'

        assert [e.label for e in _open_eras(eras, EraCategory.LOCATION)] == ['Life in Lisbon']
        assert [e.label for e in _open_eras(eras, EraCategory.PROFESSIONAL)] == ['Bank']


class TestLabels:

    def test_label_precedence(self):
        assert era_label_for(EraCategory.LOCATION, 'Paris', 'The Paris Years') == 'The Paris Years'
        assert era_label_for(EraCategory.LOCATION, ' Paris ') == 'Life in Paris'
        assert era_label_for(EraCategory.PROFESSIONAL) == 'New professional Era'


class TestOriginEras:

    def test_early_years_and_birth_city(self, ids):
        eras = origin_eras(1974, 'Mexico City', ids)

        assert eras[0].label == 'Early Years'
        assert eras[0].category == EraCategory.PERSONAL
        assert (eras[0].start_year, eras[0].end_year) == (1974, 1992)
        assert eras[1].label == 'Life in Mexico City'
        assert eras[1].is_open

    def test_no_city(self, ids):
        assert len(origin_eras(1974, '', ids)) == 1


class TestReassignMemories:

    def test_reuses_unchanged_records(self):
        eras = (_make_era(id='mx'), )
        current = Memory(id='m1', user_id='u', narrative='x', original_input='Conversation', sort_date='1980', era_ids=('mx', ))
        stale = Memory(id='m2', user_id='u', narrative='y', original_input='Conversation', sort_date='1985')

        result = reassign_memories((current, stale), eras)

        assert result[0] is current
        assert result[1].era_ids == ('mx', )
