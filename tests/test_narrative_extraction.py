"""
Tests for the extraction collaborator wrapper and its fallbacks.
"""

import json
from unittest.mock import MagicMock

from lifestory.models.core import UNDATED, Entity, EntityType, EraCategory, LifeStory, Memory, Sentiment
from lifestory.services.narrative_extraction import (FALLBACK_RESPONSE, NarrativeExtractionService, build_facts_context,
                                                     fallback_extraction, parse_extraction_response, parse_media_analysis)
from lifestory.utils.bedrock_llm import BedrockLLMError

RAW = 'My dad Jorge opened a bakery in Puebla in 1980.'


def _make_llm(response) -> MagicMock:
    llm = MagicMock()
    if isinstance(response, Exception):
        llm.generate_response.side_effect = response
    else:
        llm.generate_response.return_value = (response, None)
    return llm


class TestParseExtractionResponse:

    def test_well_formed_payload(self):
        payload = {
            'response': 'A bakery! What was it called?',
            'topic': 'Family business',
            'drafts': [{
                'narrative': 'My father opened a bakery in Puebla',
                'sortDate': '1980',
                'sentiment': 'nostalgic',
                'suggestedEraCategories': ['professional', 'bogus', 'professional'],
                'associatedEntities': [{'name': 'Jorge', 'type': 'person', 'relationship': 'Father'}]
            }],
            'entities': [{'name': 'Jorge', 'relationship': 'Father', 'metadata': {'birthDate': '1950'}}],
            'citations': [{'title': 'Puebla', 'uri': 'https://example.org/puebla'}]
        }

        result = parse_extraction_response(RAW, payload)

        assert not result.degraded
        assert result.topic == 'Family business'
        draft = result.drafts[0]
        assert draft.sentiment == Sentiment.NOSTALGIC
        assert draft.suggested_era_categories == (EraCategory.PROFESSIONAL, )
        assert draft.associated_entities[0].type == EntityType.PERSON
        assert result.entities[0].metadata.birth_date == '1950'
        assert result.citations[0].uri == 'https://example.org/puebla'

    def test_alternate_keys(self):
        payload = {'biographerResponse': 'Noted.', 'extractedMemories': [{'narrative': 'x'}], 'extractedEntities': []}

        result = parse_extraction_response(RAW, payload)

        assert result.response_text == 'Noted.'
        assert result.drafts[0].sort_date == UNDATED

    def test_json_string_with_fences(self):
        text = '```json\n' + json.dumps({'response': 'ok', 'drafts': []}) + '\n```'
        assert parse_extraction_response(RAW, text).response_text == 'ok'

    def test_malformed_output_falls_back_to_verbatim_draft(self):
        test_cases = ['not json at all', '[1, 2, 3]', {'unrelated': True}, None]
        for payload in test_cases:
            result = parse_extraction_response(RAW, payload)
            assert result.degraded, f'Failed for {payload!r}'
            assert result.drafts[0].narrative == RAW
            assert result.drafts[0].sort_date == UNDATED

    def test_items_without_narrative_or_name_are_dropped(self):
        payload = {'response': 'ok', 'drafts': [{'sortDate': '1990'}, 'junk'], 'entities': [{'details': 'no name'}]}

        result = parse_extraction_response(RAW, payload)

        assert result.drafts == ()
        assert result.entities == ()


class TestParseMediaAnalysis:

    def test_defaults(self):
        analysis = parse_media_analysis({})

        assert analysis.narrative == ''
        assert analysis.suggested_year == UNDATED
        assert analysis.curiosity

    def test_fields(self):
        analysis = parse_media_analysis({'narrative': 'Graduation day', 'suggestedYear': '1996', 'suggestedLocation': 'UNAM',
                                         'suggestedEraCategories': ['personal']})
        assert analysis.suggested_year == '1996'
        assert analysis.suggested_era_categories == (EraCategory.PERSONAL, )


class TestNarrativeExtractionService:

    def test_extract_passes_context_and_parses(self):
        llm = _make_llm(json.dumps({'response': 'Tell me more.', 'drafts': [{'narrative': 'Bakery opened', 'sortDate': '1980'}]}))
        service = NarrativeExtractionService(llm=llm)

        result = service.extract(RAW, facts_context='[Entity: Jorge]', tone='elaborate', birth_year=1974)

        assert result.drafts[0].sort_date == '1980'
        kwargs = llm.generate_response.call_args.kwargs
        assert '[Entity: Jorge]' in kwargs['system_prompt']
        assert '1974' in kwargs['system_prompt']
        assert kwargs['messages'][-1]['role'] == 'assistant'

    def test_llm_error_falls_back(self):
        service = NarrativeExtractionService(llm=_make_llm(BedrockLLMError('throttled')))

        result = service.extract(RAW)

        assert result == fallback_extraction(RAW)
        assert result.response_text == FALLBACK_RESPONSE

    def test_blank_input_skips_llm(self):
        llm = _make_llm('{}')
        assert NarrativeExtractionService(llm=llm).extract('   ').drafts == ()
        llm.generate_response.assert_not_called()

    def test_analyze_media_error_defaults(self):
        service = NarrativeExtractionService(llm=_make_llm(BedrockLLMError('down')))
        assert service.analyze_media(b'\x89PNG', 'image/png').suggested_year == UNDATED


class TestFactsContext:

    def test_includes_entities_and_live_memories(self):
        story = LifeStory(user_id='u',
                          entities=(Entity(id='e', user_id='u', name='Jorge', type=EntityType.PERSON, relationship='Father'), ),
                          memories=(
                              Memory(id='m1', user_id='u', narrative='Bakery opened', original_input='Conversation', sort_date='1980'),
                              Memory(id='m2', user_id='u', narrative='Deleted one', original_input='Conversation', sort_date='1981',
                                     deleted_at=5),
                          ))

        context = build_facts_context(story)

        assert 'Jorge (Father)' in context
        assert '[1980: Bakery opened]' in context
        assert 'Deleted one' not in context
