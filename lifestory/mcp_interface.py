"""
MCP Interface Layer using fastmcp to expose a user's story to agents.
"""
import atexit
import base64
import binascii
import threading
from typing import Any, Dict, List, Optional

from fastmcp import FastMCP

from .models.core import Role
from .models.serialization import entity_to_dict, era_to_dict, memory_to_dict, message_to_dict, pending_to_dict
from .services.identity import local_vault_identity
from .services.narrative_extraction import NarrativeExtractionService
from .services.persistence import VaultStore
from .services.story_store import StoryStore, StoryStoreError
from .utils.config import config
from .utils.health_check import get_health_status
from .utils.logging_config import get_logger
from .utils.opensearch_client import INDEX_TYPES, OpenSearchClient, OpenSearchError

logger = get_logger(__name__)

# Initialize FastMCP application
mcp = FastMCP('LifeStory')

_stores: Dict[str, StoryStore] = {}
_stores_lock = threading.Lock()
_extractor: Optional[NarrativeExtractionService] = None


def _build_mirror() -> Optional[OpenSearchClient]:
    if not config.opensearch.enabled:
        return None
    mirror = OpenSearchClient(config.opensearch)
    for index_type in INDEX_TYPES:
        try:
            mirror.create_index_if_not_exists(index_type)
        except OpenSearchError as e:
            logger.warning(f'Could not prepare mirror index {index_type}: {e}')
    return mirror


def get_store(user_id: str) -> StoryStore:
    """Open (once per process) and load the story store for a user."""
    if not user_id or not user_id.strip():
        raise ValueError('User ID is required')

    with _stores_lock:
        store = _stores.get(user_id)
        if store is None:
            store = StoryStore(user_id, persistence=VaultStore(user_id, mirror=_build_mirror()))
            store.load()
            _stores[user_id] = store
        return store


def get_extractor() -> NarrativeExtractionService:
    global _extractor
    if _extractor is None:
        _extractor = NarrativeExtractionService()
    return _extractor


@atexit.register
def close_stores() -> None:
    """Drain every queued write before the process exits."""
    with _stores_lock:
        stores = list(_stores.values())
        _stores.clear()
    for store in stores:
        store.close()


def _proposal(store: StoryStore, message_id: str, index: int):
    message = store.snapshot.message(message_id)
    if message is None:
        raise ValueError(f'Message not found: {message_id}')
    if index < 0 or index >= len(message.proposals):
        raise ValueError(f'No pending draft {index} on message {message_id}')
    return message.proposals[index]


def _proposed_entity(store: StoryStore, message_id: str, name: str):
    message = store.snapshot.message(message_id)
    if message is None:
        raise ValueError(f'Message not found: {message_id}')
    for proposal in message.proposed_entities:
        if proposal.name == name:
            return proposal
    raise ValueError(f'No proposed entity named {name} on message {message_id}')


@mcp.tool()
def open_local_vault(secret_phrase: str) -> Dict[str, Any]:
    """Open the private local vault for a secret phrase.

    Args:
        secret_phrase: User-chosen passphrase; the same phrase always opens the same vault

    Returns:
        The vault's user id and whether the user has been onboarded
    """
    try:
        identity = local_vault_identity(secret_phrase)
        store = get_store(identity.user_id)
        profile = store.snapshot.profile
        return {'user_id': identity.user_id, 'onboarded': bool(profile and profile.onboarded)}
    except ValueError as e:
        logger.error(f'Could not open local vault: {e}')
        raise Exception(f'Could not open local vault: {e}')


@mcp.tool()
def complete_onboarding(user_id: str, display_name: str, birth_date: str, birth_city: str) -> Dict[str, Any]:
    """Record birth date and city, create the origin eras and greet the user.

    Args:
        user_id: User ID
        display_name: Name to address the user by
        birth_date: YYYY-MM-DD
        birth_city: City the user was born in
    """
    try:
        store = get_store(user_id)
        store.complete_onboarding(display_name, birth_date, birth_city)
        return message_to_dict(store.snapshot.chat_history[-1])
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Onboarding failed for user {user_id}: {e}')
        raise Exception(f'Onboarding failed: {e}')


@mcp.tool()
def tell_story(user_id: str, text: str) -> Dict[str, Any]:
    """Send what the user said to the biographer and get back candidate fragments.

    Args:
        user_id: User ID
        text: The user's message

    Returns:
        The biographer reply, with draft memories and proposed entities awaiting confirmation
    """
    try:
        if not text or not text.strip():
            raise ValueError('Text is required')
        reply = get_store(user_id).process_user_input(text, get_extractor())
        logger.debug(f'MCP tell_story produced {len(reply.proposals)} drafts for user {user_id}')
        return message_to_dict(reply)
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Story intake failed for user {user_id}: {e}')
        raise Exception(f'Story intake failed: {e}')


@mcp.tool()
def confirm_draft(user_id: str, message_id: str, draft_index: int = 0) -> Optional[Dict[str, Any]]:
    """Confirm a draft memory attached to a biographer message.

    Returns:
        The new memory, or None if the draft was already confirmed
    """
    try:
        store = get_store(user_id)
        memory = store.confirm_draft(message_id, _proposal(store, message_id, draft_index))
        return memory_to_dict(memory) if memory else None
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Draft confirmation failed for user {user_id}: {e}')
        raise Exception(f'Draft confirmation failed: {e}')


@mcp.tool()
def discard_draft(user_id: str, message_id: str, draft_index: int = 0) -> bool:
    """Discard a draft memory without creating anything."""
    try:
        store = get_store(user_id)
        store.discard_draft(message_id, _proposal(store, message_id, draft_index))
        return True
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Draft discard failed for user {user_id}: {e}')
        raise Exception(f'Draft discard failed: {e}')


@mcp.tool()
def confirm_entity(user_id: str, message_id: str, name: str) -> Dict[str, Any]:
    """Confirm a proposed entity; an existing entity with the same name is enriched instead of duplicated."""
    try:
        store = get_store(user_id)
        entity = store.confirm_proposed_entity(message_id, _proposed_entity(store, message_id, name))
        return entity_to_dict(entity)
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Entity confirmation failed for user {user_id}: {e}')
        raise Exception(f'Entity confirmation failed: {e}')


@mcp.tool()
def discard_entity(user_id: str, message_id: str, name: str) -> bool:
    try:
        store = get_store(user_id)
        store.discard_proposed_entity(message_id, _proposed_entity(store, message_id, name))
        return True
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Entity discard failed for user {user_id}: {e}')
        raise Exception(f'Entity discard failed: {e}')


@mcp.tool()
def upload_artifact(user_id: str, filename: str, mime_type: str, data_base64: str) -> Dict[str, Any]:
    """Analyze an uploaded photo, document or recording and queue it for confirmation.

    Args:
        user_id: User ID
        filename: Original file name
        mime_type: e.g. image/jpeg or application/pdf
        data_base64: File contents, base64 encoded

    Returns:
        The pending artifact awaiting confirmation
    """
    try:
        data = base64.b64decode(data_base64, validate=True)
        pending = get_store(user_id).process_media_upload(data, mime_type, filename, get_extractor())
        return pending_to_dict(pending)
    except (binascii.Error, ValueError, StoryStoreError) as e:
        logger.error(f'Artifact upload failed for user {user_id}: {e}')
        raise Exception(f'Artifact upload failed: {e}')


@mcp.tool()
def list_pending_artifacts(user_id: str) -> List[Dict[str, Any]]:
    return [pending_to_dict(p) for p in get_store(user_id).snapshot.pending]


@mcp.tool()
def confirm_pending_artifact(user_id: str, pending_id: str) -> Optional[Dict[str, Any]]:
    """Confirm a media-derived artifact as a memory."""
    try:
        memory = get_store(user_id).confirm_pending_artifact(pending_id)
        return memory_to_dict(memory) if memory else None
    except StoryStoreError as e:
        logger.error(f'Artifact confirmation failed for user {user_id}: {e}')
        raise Exception(f'Artifact confirmation failed: {e}')


@mcp.tool()
def discard_pending_artifact(user_id: str, pending_id: str) -> bool:
    try:
        get_store(user_id).discard_pending_artifact(pending_id)
        return True
    except StoryStoreError as e:
        logger.error(f'Artifact discard failed for user {user_id}: {e}')
        raise Exception(f'Artifact discard failed: {e}')


@mcp.tool()
def list_memories(user_id: str) -> List[Dict[str, Any]]:
    """List confirmed, non-deleted memories in chronological order."""
    return [memory_to_dict(m) for m in get_store(user_id).memories]


@mcp.tool()
def list_eras(user_id: str) -> List[Dict[str, Any]]:
    return [era_to_dict(e) for e in get_store(user_id).snapshot.eras]


@mcp.tool()
def list_entities(user_id: str) -> List[Dict[str, Any]]:
    return [entity_to_dict(e) for e in get_store(user_id).snapshot.entities]


@mcp.tool()
def edit_memory(user_id: str, memory_id: str, narrative: Optional[str] = None, sort_date: Optional[str] = None) -> Dict[str, Any]:
    """Edit a memory's narrative or date.

    Args:
        user_id: User ID
        memory_id: Memory to edit
        narrative: New narrative text (optional)
        sort_date: New date, YYYY or YYYY-MM-DD (optional)
    """
    try:
        memory = get_store(user_id).edit_memory(memory_id, narrative=narrative, sort_date=sort_date)
        if memory is None:
            raise ValueError(f'Memory not found: {memory_id}')
        return memory_to_dict(memory)
    except (ValueError, StoryStoreError) as e:
        logger.error(f'Memory edit failed for user {user_id}: {e}')
        raise Exception(f'Memory edit failed: {e}')


@mcp.tool()
def delete_memory(user_id: str, memory_id: str) -> bool:
    try:
        return get_store(user_id).delete_memory(memory_id)
    except StoryStoreError as e:
        logger.error(f'Memory delete failed for user {user_id}: {e}')
        raise Exception(f'Memory delete failed: {e}')


@mcp.tool()
def chat_history(user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
    """The most recent chat messages, oldest first."""
    messages = get_store(user_id).snapshot.chat_history
    return [message_to_dict(m) for m in messages[-limit:]] if limit > 0 else []


@mcp.tool()
def note(user_id: str, text: str) -> Dict[str, Any]:
    """Append a user message to the chat log without running extraction."""
    try:
        return message_to_dict(get_store(user_id).append_chat_message(Role.USER, text))
    except StoryStoreError as e:
        logger.error(f'Could not record note for user {user_id}: {e}')
        raise Exception(f'Could not record note: {e}')


@mcp.tool()
def health() -> Dict[str, Any]:
    return get_health_status(include_llm=False)


if __name__ == '__main__':
    transport = config.mcp.transport
    host = config.mcp.host
    port = config.mcp.port
    mcp.run(transport=transport, host=host, port=port)
