"""
Persistence layer: the local encrypted vault plus the best-effort remote mirror.

The local vault is always written first and is the fallback for every read.
The mirror receives one independent upsert per record. A failed upsert is
logged and counted, never retried, and never blocks the other records.
"""

import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional

from ..models.core import ChatMessage, Entity, Era, LifeStory, Memory, PendingArtifact, Profile
from ..models.serialization import (entity_from_dict, entity_to_dict, era_from_dict, era_to_dict, memory_from_dict, memory_to_dict,
                                    message_from_dict, message_to_dict, pending_from_dict, pending_to_dict, profile_from_dict,
                                    profile_to_dict)
from ..utils.config import config
from ..utils.crypto import EncryptionCodec, default_codec
from ..utils.local_vault import LocalVault, LocalVaultError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchClient, OpenSearchError
from .identity import is_local_vault

logger = get_logger(__name__)

MEMORIES = 'memories'
ENTITIES = 'entities'
ERAS = 'eras'
PENDING = 'pending'
PROFILE = 'profile'
CHAT_HISTORY = 'chatHistory'

COLLECTIONS = (MEMORIES, ENTITIES, ERAS, PENDING, PROFILE, CHAT_HISTORY)

# Raised by the *_from_dict readers on records with missing or mistyped fields
_MALFORMED_RECORD_ERRORS = (KeyError, TypeError, ValueError, AttributeError)


class PersistenceQueue:
    """Runs writes in submission order per collection, with collections independent of each other.

    Each collection gets its own single-worker executor, so an older
    snapshot's write always finishes before a newer one for the same
    collection starts.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._executors: Dict[str, ThreadPoolExecutor] = {}
        self._futures: List[Future] = []
        self._closed = False

    def submit(self, collection: str, fn: Callable[..., Any], *args) -> Future:
        with self._lock:
            if self._closed:
                raise RuntimeError('Persistence queue is closed')
            executor = self._executors.get(collection)
            if executor is None:
                executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f'persist-{collection}')
                self._executors[collection] = executor
            future = executor.submit(fn, *args)
            self._futures = [f for f in self._futures if not f.done()]
            self._futures.append(future)
            return future

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for every submitted write. Returns False if the timeout expired first."""
        with self._lock:
            pending = list(self._futures)
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        with self._lock:
            self._closed = True
            executors = list(self._executors.values())
        for executor in executors:
            executor.shutdown(wait=True)


class VaultStore:
    """Reads and writes one user's collections."""

    def __init__(self,
                 user_id: str,
                 secret: Optional[str] = None,
                 vault: Optional[LocalVault] = None,
                 mirror: Optional[OpenSearchClient] = None,
                 codec: Optional[EncryptionCodec] = None,
                 on_error: Optional[Callable[[str, Exception], None]] = None):
        """
        Initialize the vault store.

        Args:
            user_id: Owner of the collections
            secret: Secret the narrative key is derived from; defaults to user_id
            vault: Local key-value store; defaults to the configured data dir
            mirror: Remote mirror client; None disables mirroring
            codec: Field encryption codec
            on_error: Called with (collection, error) when a background local write fails
        """
        self.user_id = user_id
        self.secret = secret or user_id
        self.vault = vault or LocalVault(config.vault.data_dir)
        self.mirror = mirror
        self.codec = codec or default_codec()
        self.on_error = on_error
        self.queue = PersistenceQueue()
        self.mirror_failures = 0
        self._failure_lock = threading.Lock()

        logger.info(f'Initialized VaultStore for user {user_id} (mirror {"on" if self.mirror_enabled else "off"})')

    @property
    def mirror_enabled(self) -> bool:
        return self.mirror is not None and not is_local_vault(self.user_id)

    def key(self, collection: str) -> str:
        return f'{config.vault.key_prefix}_{self.user_id}_{collection}'

    # Writes

    def _mirror_records(self, index_type: str, documents: List[Dict[str, Any]], id_field: str = 'id') -> int:
        """Upsert each document independently. Returns the number of failures."""
        if not self.mirror_enabled:
            return 0
        failures = 0
        for document in documents:
            doc_id = OpenSearchClient.document_id(self.user_id, str(document.get(id_field, index_type)))
            try:
                if not self.mirror.upsert_document({**document, 'user_id': self.user_id}, doc_id, index_type):
                    failures += 1
            except OpenSearchError as e:
                logger.warning(f'Mirror upsert of {doc_id} failed; local copy stays authoritative: {e}')
                failures += 1
        if failures:
            with self._failure_lock:
                self.mirror_failures += failures
        return failures

    def _encrypt_memory(self, memory: Memory) -> Dict[str, Any]:
        document = memory_to_dict(memory)
        document['narrative'] = self.codec.encrypt_field(memory.narrative, self.secret)
        return document

    def save_memories(self, memories: List[Memory]) -> None:
        documents = [self._encrypt_memory(m) for m in memories]
        self.vault.set(self.key(MEMORIES), documents)
        self._mirror_records(MEMORIES, documents)

    def save_entities(self, entities: List[Entity]) -> None:
        documents = [entity_to_dict(e) for e in entities]
        self.vault.set(self.key(ENTITIES), documents)
        self._mirror_records(ENTITIES, documents)

    def save_eras(self, eras: List[Era]) -> None:
        documents = [era_to_dict(e) for e in eras]
        self.vault.set(self.key(ERAS), documents)
        self._mirror_records(ERAS, documents)

    def save_profile(self, profile: Optional[Profile]) -> None:
        if profile is None:
            return
        document = profile_to_dict(profile)
        self.vault.set(self.key(PROFILE), document)
        self._mirror_records(PROFILE, [document], id_field='_profile')

    def save_pending(self, pending: List[PendingArtifact]) -> None:
        self.vault.set(self.key(PENDING), [pending_to_dict(p) for p in pending])

    def save_chat_history(self, chat_history: List[ChatMessage]) -> None:
        self.vault.set(self.key(CHAT_HISTORY), [message_to_dict(m) for m in chat_history])

    def save_collection(self, collection: str, story: LifeStory) -> None:
        """Synchronously persist one collection of a snapshot."""
        if collection == MEMORIES:
            self.save_memories(list(story.memories))
        elif collection == ENTITIES:
            self.save_entities(list(story.entities))
        elif collection == ERAS:
            self.save_eras(list(story.eras))
        elif collection == PENDING:
            self.save_pending(list(story.pending))
        elif collection == PROFILE:
            self.save_profile(story.profile)
        elif collection == CHAT_HISTORY:
            self.save_chat_history(list(story.chat_history))
        else:
            raise ValueError(f'Unknown collection: {collection}')

    def _save_reporting(self, collection: str, story: LifeStory) -> None:
        try:
            self.save_collection(collection, story)
        except Exception as e:
            logger.exception(f'Could not save {collection} for user {self.user_id}: {e}')
            if self.on_error is not None:
                self.on_error(collection, e)

    def save_async(self, collection: str, story: LifeStory) -> Future:
        """Queue a write of one collection behind earlier writes of the same collection."""
        return self.queue.submit(collection, self._save_reporting, collection, story)

    def flush(self, timeout: Optional[float] = None) -> bool:
        return self.queue.flush(timeout)

    def close(self) -> None:
        self.queue.close()

    # Reads

    def _remote_records(self, index_type: str, parse: Callable[[Dict[str, Any]], Any],
                        sort_field: Optional[str] = None) -> Optional[List[Any]]:
        """Parsed mirror records, or None when the mirror is off, failing, empty or malformed."""
        if not self.mirror_enabled:
            return None
        try:
            documents = self.mirror.list_user_documents(self.user_id, index_type, sort_field=sort_field)
        except OpenSearchError as e:
            logger.warning(f'Mirror read of {index_type} failed, falling back to local vault: {e}')
            return None
        # An empty mirror usually means it was configured after local data existed
        if not documents:
            return None
        try:
            return [parse(d) for d in documents]
        except _MALFORMED_RECORD_ERRORS as e:
            logger.warning(f'Mirror returned a malformed {index_type} record, falling back to local vault: {e!r}')
            return None

    def _local_records(self, collection: str, parse: Callable[[Dict[str, Any]], Any]) -> List[Any]:
        documents = self.vault.get(self.key(collection), [])
        try:
            return [parse(d) for d in documents]
        except _MALFORMED_RECORD_ERRORS as e:
            logger.error(f'Malformed {collection} record in local vault for user {self.user_id}: {e!r}')
            raise LocalVaultError(f'Malformed {collection} record: {e!r}')

    def _records(self, collection: str, parse: Callable[[Dict[str, Any]], Any], sort_field: Optional[str] = None) -> List[Any]:
        records = self._remote_records(collection, parse, sort_field=sort_field)
        return records if records is not None else self._local_records(collection, parse)

    def _decrypt_memory(self, document: Dict[str, Any]) -> Memory:
        memory = memory_from_dict(document)
        return memory_from_dict({**document, 'narrative': self.codec.decrypt_field(memory.narrative, self.secret)})

    def load_memories(self) -> List[Memory]:
        return self._records(MEMORIES, self._decrypt_memory, sort_field='sort_date')

    def load_entities(self) -> List[Entity]:
        return self._records(ENTITIES, entity_from_dict)

    def load_eras(self) -> List[Era]:
        eras = self._records(ERAS, era_from_dict)
        return sorted(eras, key=lambda era: (era.start_year, era.category.value))

    def load_profile(self) -> Optional[Profile]:
        if self.mirror_enabled:
            try:
                document = self.mirror.get_document(OpenSearchClient.document_id(self.user_id, PROFILE), PROFILE)
                if document:
                    return profile_from_dict(document)
            except OpenSearchError as e:
                logger.warning(f'Mirror read of profile failed, falling back to local vault: {e}')
            except _MALFORMED_RECORD_ERRORS as e:
                logger.warning(f'Mirror returned a malformed profile, falling back to local vault: {e!r}')
        document = self.vault.get(self.key(PROFILE))
        if not document:
            return None
        try:
            return profile_from_dict(document)
        except _MALFORMED_RECORD_ERRORS as e:
            raise LocalVaultError(f'Malformed profile record: {e!r}')

    def load_pending(self) -> List[PendingArtifact]:
        return self._local_records(PENDING, pending_from_dict)

    def load_chat_history(self) -> List[ChatMessage]:
        return self._local_records(CHAT_HISTORY, message_from_dict)

    def load_story(self) -> LifeStory:
        """Assemble a snapshot from storage.

        Raises:
            LocalVaultError: If a local record exists but cannot be read or parsed
        """
        return LifeStory(user_id=self.user_id,
                         profile=self.load_profile(),
                         memories=tuple(self.load_memories()),
                         pending=tuple(self.load_pending()),
                         entities=tuple(self.load_entities()),
                         eras=tuple(self.load_eras()),
                         chat_history=tuple(self.load_chat_history()))
