"""
OpenSearch client wrapper used as the remote mirror of a user's story.
"""

from typing import Any, Dict, List, Optional

import boto3
from opensearchpy import OpenSearch, RequestsHttpConnection
from opensearchpy.exceptions import NotFoundError, OpenSearchException
from requests_aws4auth import AWS4Auth

from .config import OpenSearchConfig
from .logging_config import get_logger

logger = get_logger(__name__)

INDEX_TYPES = ('memories', 'entities', 'eras', 'profile')

# Scroll page size for list_user_documents
_PAGE_SIZE = 500

_KEYWORD = {'type': 'keyword'}

_INDEX_PROPERTIES = {
    'memories': {
        'id': _KEYWORD,
        'user_id': _KEYWORD,
        'sort_date': _KEYWORD,
        'narrative': {
            'type': 'keyword',
            'index': False,  # Ciphertext, never searchable
            'doc_values': False
        },
        'entity_ids': _KEYWORD,
        'era_ids': _KEYWORD,
        'created_at': {
            'type': 'long'
        },
        'deleted_at': {
            'type': 'long'
        }
    },
    'entities': {
        'id': _KEYWORD,
        'user_id': _KEYWORD,
        'name': _KEYWORD,
        'type': _KEYWORD
    },
    'eras': {
        'id': _KEYWORD,
        'user_id': _KEYWORD,
        'category': _KEYWORD,
        'start_year': {
            'type': 'integer'
        },
        # A year, or 'present' while the era is open
        'end_year': _KEYWORD
    },
    'profile': {
        'user_id': _KEYWORD
    }
}


class OpenSearchError(Exception):
    """Custom exception for OpenSearch errors."""
    pass


class OpenSearchClient:
    """OpenSearch client with AWS authentication and error handling."""

    def __init__(self, config: OpenSearchConfig, client: Optional[OpenSearch] = None):
        """
        Initialize OpenSearch client.

        Args:
            config: OpenSearchConfig instance with connection parameters
            client: Preconfigured low-level client; built from config with SigV4 auth if None
        """
        self.config = config

        if client is not None:
            self.client = client
        else:
            # Get AWS credentials and create auth
            credentials = boto3.Session().get_credentials()
            auth = AWS4Auth(region=config.region, service='es', refreshable_credentials=credentials)
            endpoint = config.endpoint
            if '://' in endpoint:
                # Remove protocol if present
                endpoint = endpoint.split('://', 1)[1]

            self.client = OpenSearch(hosts=[{
                'host': endpoint,
                'port': config.port
            }],
                                     http_auth=auth,
                                     use_ssl=config.use_ssl,
                                     verify_certs=config.use_ssl,
                                     connection_class=RequestsHttpConnection)

        logger.info(f'Initialized OpenSearch mirror for endpoint: {config.endpoint}')

    def index_name(self, index_type: str) -> str:
        if index_type not in INDEX_TYPES:
            raise OpenSearchError(f'Unknown index type: {index_type}')
        return f'{self.config.index_name}_{index_type}'

    @staticmethod
    def document_id(user_id: str, record_id: str) -> str:
        """Mirror documents are keyed per user so ids never collide across users."""
        return f'{user_id}:{record_id}'

    def create_index_if_not_exists(self, index_type: str) -> str:
        """
        Create index if it doesn't exist.

        Args:
            index_type: One of INDEX_TYPES

        Returns:
            'exists', 'created' or 'failed'
        """
        index_name = self.index_name(index_type)

        try:
            if self.client.indices.exists(index=index_name):
                logger.debug(f'Index {index_name} already exists')
                return 'exists'

            index_body = {
                'mappings': {
                    'dynamic': True,
                    # Entity metadata dates are free-form text
                    'date_detection': False,
                    'properties': _INDEX_PROPERTIES[index_type]
                }
            }
            response = self.client.indices.create(index=index_name, body=index_body)
            if response.get('acknowledged', False):
                logger.info(f'Created index {index_name}')
                return 'created'
            return 'failed'
        except OpenSearchException as e:
            logger.error(f'Error creating index {index_name}: {e}')
            raise OpenSearchError(f'Failed to create index: {e}')
        except Exception as e:
            logger.error(f'Unexpected error creating index {index_name}: {e}')
            raise OpenSearchError(f'Unexpected error creating index: {e}')

    def upsert_document(self, document: Dict[str, Any], doc_id: str, index_type: str) -> bool:
        """
        Insert or overwrite a single document. Whole-record last write wins.

        Args:
            document: Document body; must carry user_id
            doc_id: Mirror document id (see document_id)
            index_type: One of INDEX_TYPES

        Returns:
            True if the document was created or updated
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.index(index=index_name, id=doc_id, body=document)

            success = response.get('result') in ['created', 'updated']
            if success:
                logger.debug(f'Upserted {doc_id} in {index_name}')
            else:
                logger.warning(f'Unexpected result upserting document: {response}')

            return success

        except OpenSearchException as e:
            logger.error(f'Error upserting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to upsert document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error upserting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error upserting document: {e}')

    def list_user_documents(self, user_id: str, index_type: str, sort_field: Optional[str] = None) -> List[Dict[str, Any]]:
        """
        Fetch every document a user owns in one index.

        Args:
            user_id: User ID to filter results
            index_type: One of INDEX_TYPES
            sort_field: Optional keyword field to sort ascending by

        Returns:
            List of document bodies
        """
        index_name = self.index_name(index_type)
        sort = [{sort_field: {'order': 'asc'}}, {'id': {'order': 'asc'}}] if sort_field else [{'_doc': {'order': 'asc'}}]

        try:
            documents = []
            search_after = None
            while True:
                search_body = {
                    'size': _PAGE_SIZE,
                    'query': {
                        'bool': {
                            'filter': [{
                                'term': {
                                    'user_id': user_id
                                }
                            }]
                        }
                    },
                    'sort': sort
                }
                if search_after is not None:
                    search_body['search_after'] = search_after

                response = self.client.search(index=index_name, body=search_body)
                hits = response['hits']['hits']
                documents.extend(hit['_source'] for hit in hits)

                if len(hits) < _PAGE_SIZE:
                    break
                search_after = hits[-1].get('sort')
                if search_after is None:
                    break

            logger.debug(f'Listed {len(documents)} {index_type} documents for user {user_id}')
            return documents

        except NotFoundError:
            logger.debug(f'Index {index_name} does not exist yet')
            return []
        except OpenSearchException as e:
            logger.error(f'Error listing {index_type} documents for user {user_id}: {e}')
            raise OpenSearchError(f'Failed to list documents: {e}')
        except Exception as e:
            logger.error(f'Unexpected error listing {index_type} documents: {e}')
            raise OpenSearchError(f'Unexpected error listing documents: {e}')

    def get_document(self, doc_id: str, index_type: str) -> Optional[Dict[str, Any]]:
        """
        Get a specific document by mirror id.

        Returns:
            Document body if found, None otherwise
        """
        index_name = self.index_name(index_type)

        try:
            response = self.client.get(index=index_name, id=doc_id)
            return response.get('_source') if response.get('found') else None
        except NotFoundError:
            return None
        except OpenSearchException as e:
            logger.error(f'Error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Failed to get document: {e}')
        except Exception as e:
            logger.error(f'Unexpected error getting document {doc_id}: {e}')
            raise OpenSearchError(f'Unexpected error getting document: {e}')

    def health_check(self) -> bool:
        """
        Perform a health check on the OpenSearch service.

        Returns:
            True if service is healthy, False otherwise
        """
        try:
            return bool(self.client.ping())

        except Exception as e:
            logger.error(f'OpenSearch health check failed: {e}')
            return False
