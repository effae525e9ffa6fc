"""
Story Store: the aggregate root holding one user's authoritative snapshot.

Every public mutation runs as a single snapshot transition under one lock:
read the current LifeStory, compute the next one, swap it in. Readers only
ever see whole snapshots. After each transition the collections that
changed are queued for persistence without waiting for the write.
"""

import threading
from dataclasses import replace
from typing import Any, Callable, List, Optional, Tuple

from ..models.core import (Attachment, ChatMessage, DraftMemory, Entity, EraCategory, GroundingSource, LifeStory, MediaType, Memory,
                           PendingArtifact, Profile, ProposedEntity, Role)
from ..utils.config import config
from ..utils.local_vault import LocalVaultError
from ..utils.logging_config import get_logger
from ..utils.opensearch_client import OpenSearchError
from ..utils.timestamp_utils import now_millis
from . import confirmation, entity_resolver, era_engine
from .narrative_extraction import ExtractionResult, MediaAnalysis, build_facts_context, fallback_extraction, parse_media_analysis
from .persistence import CHAT_HISTORY, ENTITIES, ERAS, MEMORIES, PENDING, PROFILE, VaultStore

logger = get_logger(__name__)

WELCOME_TEXT = ('Hello. I am your Biographer. I am here to help you capture your life as it truly was: '
                'the moves, the businesses, and the personal milestones. Where should we begin?')

MONTH_NAMES = ('January', 'February', 'March', 'April', 'May', 'June', 'July', 'August', 'September', 'October', 'November',
               'December')

_SNAPSHOT_COLLECTIONS = (
    (MEMORIES, 'memories'),
    (ENTITIES, 'entities'),
    (ERAS, 'eras'),
    (PENDING, 'pending'),
    (PROFILE, 'profile'),
    (CHAT_HISTORY, 'chat_history'),
)


class StoryStoreError(Exception):
    """Custom exception for story store errors."""
    pass


class StoryStore:
    """Coordinates resolution, era management, confirmation and persistence for one user."""

    def __init__(self,
                 user_id: str,
                 persistence: Optional[VaultStore] = None,
                 on_save_error: Optional[Callable[[str, Exception], None]] = None,
                 id_factory: Callable[[], str] = confirmation.new_record_id,
                 clock: Callable[[], int] = now_millis):
        """
        Initialize the story store.

        Args:
            user_id: Owner of the story
            persistence: Vault store receiving snapshots; None keeps the story in memory only
            on_save_error: Called with (collection, error) when a local write fails
            id_factory: Record id allocator for memories, messages and pending artifacts
            clock: Millisecond clock
        """
        if not user_id or not user_id.strip():
            raise StoryStoreError('User ID is required')

        self.user_id = user_id
        self.persistence = persistence
        self.on_save_error = on_save_error
        self.id_factory = id_factory
        self.clock = clock
        self.current_topic: Optional[str] = None
        self.save_errors: List[Tuple[str, str]] = []

        self._lock = threading.Lock()
        self._closed = False
        self._story = LifeStory(user_id=user_id, chat_history=(self._welcome_message(), ))

        if persistence is not None:
            persistence.on_error = self._record_save_error

    def _welcome_message(self) -> ChatMessage:
        return ChatMessage(id='welcome', role=Role.BIOGRAPHER, text=WELCOME_TEXT, timestamp=self.clock())

    def _record_save_error(self, collection: str, error: Exception) -> None:
        self.save_errors.append((collection, str(error)))
        if self.on_save_error is not None:
            self.on_save_error(collection, error)

    # Snapshot access

    @property
    def snapshot(self) -> LifeStory:
        """The current immutable snapshot."""
        return self._story

    @property
    def memories(self) -> Tuple[Memory, ...]:
        """Memories that have not been soft-deleted, ordered by sort date."""
        live = [m for m in self._story.memories if not m.is_deleted]
        return tuple(sorted(live, key=lambda m: m.sort_date))

    @property
    def closed(self) -> bool:
        return self._closed

    def _transition(self, step: Callable[[LifeStory], Tuple[LifeStory, Any]]) -> Any:
        with self._lock:
            if self._closed:
                raise StoryStoreError('Story store is closed')
            previous = self._story
            story, result = step(previous)
            self._story = story
            self._persist(previous, story)
        return result

    def _persist(self, previous: LifeStory, story: LifeStory) -> None:
        if self.persistence is None:
            return
        for collection, attribute in _SNAPSHOT_COLLECTIONS:
            if getattr(previous, attribute) is not getattr(story, attribute):
                self.persistence.save_async(collection, story)

    # Chat log and ingestion

    def append_chat_message(self,
                            role: Role,
                            text: str,
                            attachment: Optional[Attachment] = None,
                            proposals: Tuple[DraftMemory, ...] = (),
                            proposed_entities: Tuple[ProposedEntity, ...] = (),
                            sources: Tuple[GroundingSource, ...] = (),
                            in_reply_to: Optional[str] = None) -> ChatMessage:
        message = self._new_message(role, text, attachment, proposals, proposed_entities, sources, in_reply_to)
        return self._transition(lambda story: (replace(story, chat_history=story.chat_history + (message, )), message))

    def _new_message(self, role, text, attachment=None, proposals=(), proposed_entities=(), sources=(), in_reply_to=None) -> ChatMessage:
        return ChatMessage(id=self.id_factory(),
                           role=Role(role),
                           text=text,
                           timestamp=self.clock(),
                           attachment=attachment,
                           proposals=tuple(proposals),
                           proposed_entities=tuple(proposed_entities),
                           sources=tuple(sources),
                           in_reply_to=in_reply_to)

    def ingest_candidate_fragments(self, request_message_id: str, extraction: ExtractionResult) -> ChatMessage:
        """Attach the collaborator's fragments to a biographer reply to request_message_id.

        The reply names the message that asked for it, so fragments stay tied
        to their request even if more messages arrived while extraction ran.
        """
        message = self._new_message(Role.BIOGRAPHER,
                                    extraction.response_text,
                                    proposals=extraction.drafts,
                                    proposed_entities=extraction.entities,
                                    sources=extraction.citations,
                                    in_reply_to=request_message_id)

        def step(story: LifeStory):
            if extraction.topic:
                self.current_topic = extraction.topic
            return replace(story, chat_history=story.chat_history + (message, )), message

        return self._transition(step)

    def ingest_artifact_analysis(self, request_message_id: str, attachment: Attachment, analysis: MediaAnalysis) -> PendingArtifact:
        pending = PendingArtifact(id=self.id_factory(),
                                  attachment=attachment,
                                  suggested_narrative=analysis.narrative,
                                  suggested_date=analysis.suggested_year,
                                  analysis=analysis.analysis,
                                  suggested_location=analysis.suggested_location,
                                  suggested_era_categories=analysis.suggested_era_categories,
                                  message_id=request_message_id)
        self._transition(lambda story: (replace(story, pending=story.pending + (pending, )), pending))
        if analysis.curiosity:
            self.append_chat_message(Role.BIOGRAPHER, analysis.curiosity, in_reply_to=request_message_id)
        return pending

    def process_user_input(self, text: str, extractor: Any) -> ChatMessage:
        """Record the user's text, run extraction outside the lock, and ingest the result.

        Args:
            text: What the user typed
            extractor: Object with the NarrativeExtractionService.extract signature

        Returns:
            The biographer reply carrying the candidate fragments
        """
        request = self.append_chat_message(Role.USER, text)
        story = self.snapshot
        tone = story.profile.tone if story.profile else 'concise'
        birth_year = story.profile.birth_year if story.profile else None
        try:
            result = extractor.extract(text, facts_context=build_facts_context(story), tone=tone, birth_year=birth_year)
        except Exception as e:
            logger.error(f'Extraction collaborator failed; saving input verbatim: {e}')
            result = fallback_extraction(text)
        return self.ingest_candidate_fragments(request.id, result)

    def process_media_upload(self, data: bytes, mime_type: str, filename: str, analyzer: Any, url: Optional[str] = None) -> PendingArtifact:
        """Record an upload, run media analysis outside the lock, and queue a pending artifact."""
        attachment = Attachment(media_type=MediaType.from_mime(mime_type), url=url or filename, filename=filename)
        request = self.append_chat_message(Role.USER, f'Attached artifact: {filename}', attachment=attachment)
        story = self.snapshot
        birth_year = story.profile.birth_year if story.profile else None
        try:
            analysis = analyzer.analyze_media(data, mime_type, facts_context=build_facts_context(story), birth_year=birth_year)
        except Exception as e:
            logger.error(f'Media analysis collaborator failed: {e}')
            analysis = parse_media_analysis({})
        return self.ingest_artifact_analysis(request.id, attachment, analysis)

    # Confirmation lifecycle

    def confirm_draft(self, message_id: str, draft: DraftMemory) -> Optional[Memory]:
        return self._transition(lambda story: confirmation.confirm_draft(
            story, message_id, draft, self.user_id, id_factory=self.id_factory, now=self.clock()))

    def confirm_pending_artifact(self, pending_id: str) -> Optional[Memory]:
        return self._transition(lambda story: confirmation.confirm_pending_artifact(
            story, pending_id, self.user_id, id_factory=self.id_factory, now=self.clock()))

    def confirm_proposed_entity(self, message_id: str, proposal: ProposedEntity) -> Entity:
        return self._transition(lambda story: confirmation.confirm_proposed_entity(story, message_id, proposal, self.user_id))

    def discard_draft(self, message_id: str, draft: DraftMemory) -> None:
        self._transition(lambda story: (confirmation.discard_draft(story, message_id, draft), None))

    def discard_proposed_entity(self, message_id: str, proposal: ProposedEntity) -> None:
        self._transition(lambda story: (confirmation.discard_proposed_entity(story, message_id, proposal), None))

    def discard_pending_artifact(self, pending_id: str) -> None:
        self._transition(lambda story: (confirmation.discard_pending_artifact(story, pending_id), None))

    # Memory edits

    def delete_memory(self, memory_id: str) -> bool:
        """Soft-delete a memory. Returns False if it does not exist or is already deleted."""

        def step(story: LifeStory):
            memory = story.memory(memory_id)
            if memory is None or memory.is_deleted:
                return story, False
            deleted = replace(memory, deleted_at=self.clock())
            return replace(story, memories=tuple(deleted if m.id == memory_id else m for m in story.memories)), True

        return self._transition(step)

    def edit_memory(self, memory_id: str, narrative: Optional[str] = None, sort_date: Optional[str] = None) -> Optional[Memory]:
        """Edit a memory's narrative and/or date; eras and entity links are re-derived."""

        def step(story: LifeStory):
            memory = story.memory(memory_id)
            if memory is None or memory.is_deleted:
                return story, None
            updated = memory
            if narrative is not None and narrative.strip():
                detected = entity_resolver.detect_entities(narrative, story.entities)
                entity_ids = tuple(dict.fromkeys(memory.entity_ids + detected))
                updated = replace(updated, narrative=narrative, entity_ids=entity_ids)
            if sort_date is not None:
                resolved, _ = confirmation.resolve_sort_date(sort_date)
                updated = replace(updated, sort_date=resolved, era_ids=era_engine.assign(resolved, story.eras))
            if updated == memory:
                return story, memory
            return replace(story, memories=tuple(updated if m.id == memory_id else m for m in story.memories)), updated

        return self._transition(step)

    # Profile

    def set_profile(self, profile: Profile) -> Profile:
        if profile.user_id != self.user_id:
            raise StoryStoreError(f'Profile belongs to {profile.user_id}, not {self.user_id}')
        return self._transition(lambda story: (replace(story, profile=profile), profile))

    def complete_onboarding(self,
                            display_name: str,
                            birth_date: str,
                            birth_city: str,
                            email: Optional[str] = None,
                            tone: str = 'concise') -> Profile:
        """Create the profile, the origin eras and the first proposal ("Born in ...")."""
        year = era_engine.extract_year(birth_date) or config.identity.default_birth_year
        parts = (birth_date or '').split('-')
        month = ''
        if len(parts) > 1 and parts[1].isdigit() and 1 <= int(parts[1]) <= 12:
            month = MONTH_NAMES[int(parts[1]) - 1]

        profile = Profile(user_id=self.user_id,
                          display_name=display_name,
                          email=email,
                          birth_year=year,
                          birth_city=birth_city,
                          onboarded=True,
                          tone=tone)
        birth_draft = DraftMemory(narrative=f'Born in {birth_city}.' if birth_city else 'Born.',
                                  sort_date=birth_date or str(year),
                                  location=birth_city or None,
                                  suggested_era_categories=(EraCategory.LOCATION, ) if birth_city else ())
        greeting = (f'I see you were born in {" ".join(filter(None, [month, str(year)]))}, that is great.\n\n'
                    'Do you want to tell me a bit about your parents or siblings?\n\n'
                    'If not, just start with any story, adventure, trip, or work that mattered to you. I\'m listening.')
        message = ChatMessage(id=self.id_factory(),
                              role=Role.BIOGRAPHER,
                              text=greeting,
                              timestamp=self.clock(),
                              proposals=(birth_draft, ))

        def step(story: LifeStory):
            eras = story.eras or era_engine.origin_eras(year, birth_city)
            memories = era_engine.reassign_memories(story.memories, eras) if eras is not story.eras else story.memories
            return replace(story, profile=profile, eras=eras, memories=memories,
                           chat_history=story.chat_history + (message, )), profile

        return self._transition(step)

    # Lifecycle

    def load(self) -> bool:
        """Replace the snapshot with what persistence holds.

        Returns False if nothing could be read, or if a mutation landed while
        reading; the in-memory snapshot is kept in both cases.
        """
        if self.persistence is None:
            return False
        before = self._story
        try:
            loaded = self.persistence.load_story()
        except (LocalVaultError, OpenSearchError) as e:
            logger.error(f'Could not load story for user {self.user_id}; keeping the in-memory snapshot: {e}')
            return False

        with self._lock:
            if self._story is not before:
                logger.warning(f'Story for user {self.user_id} changed while loading; keeping the in-memory snapshot')
                return False
            if not loaded.chat_history:
                loaded = replace(loaded, chat_history=self._story.chat_history)
            self._story = loaded
        logger.info(f'Loaded story for user {self.user_id}: {len(loaded.memories)} memories, '
                    f'{len(loaded.entities)} entities, {len(loaded.eras)} eras')
        return True

    def flush(self, timeout: Optional[float] = None) -> bool:
        """Wait for queued writes. Returns False if the timeout expired first."""
        if self.persistence is None:
            return True
        return self.persistence.flush(timeout)

    def close(self) -> None:
        """Wait for every queued write, then refuse further mutations."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
        if self.persistence is not None:
            self.persistence.flush()
            self.persistence.close()
        logger.info(f'Closed story store for user {self.user_id}')
