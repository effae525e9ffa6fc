"""
Tests for the OpenSearch mirror client, using a mocked low-level client.
"""

from unittest.mock import MagicMock

import pytest
from opensearchpy.exceptions import ConnectionError as OpenSearchConnectionError
from opensearchpy.exceptions import NotFoundError

from lifestory.utils import opensearch_client
from lifestory.utils.config import OpenSearchConfig
from lifestory.utils.opensearch_client import OpenSearchClient, OpenSearchError


def _make_client(low_level=None) -> OpenSearchClient:
    config = OpenSearchConfig(endpoint='https://search.example.com', port=443, region='us-east-1', index_name='lifestory',
                              use_ssl=True)
    return OpenSearchClient(config, client=low_level or MagicMock())


def _hits(*docs):
    return {'hits': {'hits': [{'_source': doc, 'sort': [doc['id']]} for doc in docs]}}


class TestOpenSearchClient:

    def test_index_names(self):
        client = _make_client()
        assert client.index_name('memories') == 'lifestory_memories'
        with pytest.raises(OpenSearchError):
            client.index_name('graph')

    def test_document_id_is_user_scoped(self):
        assert OpenSearchClient.document_id('u1', 'm1') == 'u1:m1'

    def test_upsert_uses_explicit_id(self):
        low_level = MagicMock()
        low_level.index.return_value = {'result': 'updated'}

        assert _make_client(low_level).upsert_document({'id': 'm1'}, 'u1:m1', 'memories') is True
        low_level.index.assert_called_once_with(index='lifestory_memories', id='u1:m1', body={'id': 'm1'})

    def test_upsert_wraps_transport_errors(self):
        low_level = MagicMock()
        low_level.index.side_effect = OpenSearchConnectionError('N/A', 'refused', None)

        with pytest.raises(OpenSearchError):
            _make_client(low_level).upsert_document({'id': 'm1'}, 'u1:m1', 'memories')

    def test_list_pages_with_search_after(self, monkeypatch):
        monkeypatch.setattr(opensearch_client, '_PAGE_SIZE', 2)
        low_level = MagicMock()
        low_level.search.side_effect = [_hits({'id': 'a'}, {'id': 'b'}), _hits({'id': 'c'})]

        documents = _make_client(low_level).list_user_documents('u1', 'memories', sort_field='sort_date')

        assert [d['id'] for d in documents] == ['a', 'b', 'c']
        second_body = low_level.search.call_args_list[1].kwargs['body']
        assert second_body['search_after'] == ['b']
        assert second_body['query']['bool']['filter'][0]['term']['user_id'] == 'u1'

    def test_missing_index_lists_nothing(self):
        low_level = MagicMock()
        low_level.search.side_effect = NotFoundError(404, 'index_not_found_exception', {})
        assert _make_client(low_level).list_user_documents('u1', 'eras') == []

    def test_get_document(self):
        low_level = MagicMock()
        low_level.get.return_value = {'found': True, '_source': {'user_id': 'u1'}}
        assert _make_client(low_level).get_document('u1:profile', 'profile') == {'user_id': 'u1'}

    def test_create_index_when_missing(self):
        low_level = MagicMock()
        low_level.indices.exists.return_value = False
        low_level.indices.create.return_value = {'acknowledged': True}

        assert _make_client(low_level).create_index_if_not_exists('eras') == 'created'
        body = low_level.indices.create.call_args.kwargs['body']
        assert 'start_year' in body['mappings']['properties']

    def test_era_end_year_accepts_years_and_present(self):
        low_level = MagicMock()
        low_level.indices.exists.return_value = False
        low_level.indices.create.return_value = {'acknowledged': True}

        _make_client(low_level).create_index_if_not_exists('eras')

        mappings = low_level.indices.create.call_args.kwargs['body']['mappings']
        assert mappings['properties']['end_year'] == {'type': 'keyword'}
        assert mappings['date_detection'] is False

    def test_narrative_is_stored_without_doc_values(self):
        narrative = opensearch_client._INDEX_PROPERTIES['memories']['narrative']
        assert narrative['index'] is False
        assert narrative['doc_values'] is False
