"""
Core data models for the life-story knowledge base.

Every record is a frozen dataclass and every collection is a tuple, so a
LifeStory snapshot can be handed to readers without copying.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Optional, Tuple, Union

PRESENT = 'present'  # Sentinel end year for open-ended eras
UNDATED = '0000'  # Sentinel sort date for memories without a known year


class EntityType(str, Enum):
    PERSON = 'PERSON'
    PLACE = 'PLACE'
    OBJECT = 'OBJECT'
    DREAM = 'DREAM'
    VISION = 'VISION'
    SKILL = 'SKILL'
    PASSION = 'PASSION'
    LIKE = 'LIKE'
    THOUGHT = 'THOUGHT'
    IDENTITY = 'IDENTITY'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'EntityType':
        """Map a loose type hint onto the closed enum, defaulting to PERSON."""
        if isinstance(value, cls):
            return value
        try:
            return cls((value or '').strip().upper())
        except ValueError:
            return cls.PERSON


class EraCategory(str, Enum):
    PERSONAL = 'personal'
    PROFESSIONAL = 'professional'
    LOCATION = 'location'


class Sentiment(str, Enum):
    POSITIVE = 'positive'
    NEUTRAL = 'neutral'
    HIGH_STAKES = 'high-stakes'
    NOSTALGIC = 'nostalgic'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'Sentiment':
        try:
            return cls((value or '').strip().lower())
        except ValueError:
            return cls.NEUTRAL


class MemoryType(str, Enum):
    EVENT = 'EVENT'
    INTANGIBLE = 'INTANGIBLE'

    @classmethod
    def parse(cls, value: Optional[str]) -> 'MemoryType':
        try:
            return cls((value or '').strip().upper())
        except ValueError:
            return cls.EVENT


class Role(str, Enum):
    USER = 'user'
    BIOGRAPHER = 'biographer'


class MediaType(str, Enum):
    IMAGE = 'image'
    PDF = 'pdf'
    AUDIO = 'audio'

    @classmethod
    def from_mime(cls, mime_type: str) -> 'MediaType':
        if mime_type.startswith('image/'):
            return cls.IMAGE
        if 'pdf' in mime_type:
            return cls.PDF
        return cls.AUDIO


class FactKind(str, Enum):
    BIRTH = 'BIRTH'
    DEATH = 'DEATH'
    PLACE = 'PLACE'
    NOTE = 'NOTE'


@dataclass(frozen=True)
class Profile:
    """One per user; overwritten on settings changes, never deleted."""
    user_id: str
    display_name: Optional[str] = None
    email: Optional[str] = None
    birth_year: int = 1974
    birth_city: str = ''
    onboarded: bool = False
    tone: str = 'concise'  # concise | elaborate


@dataclass(frozen=True)
class EntityMetadata:
    """Structured facts about an entity, merged field by field."""
    birth_date: Optional[str] = None
    death_date: Optional[str] = None
    birth_place: Optional[str] = None
    notes: Optional[str] = None

    def merged(self, other: Optional['EntityMetadata']) -> 'EntityMetadata':
        """Overlay the non-empty fields of other; other wins on conflict."""
        if other is None:
            return self
        return EntityMetadata(birth_date=other.birth_date or self.birth_date,
                              death_date=other.death_date or self.death_date,
                              birth_place=other.birth_place or self.birth_place,
                              notes=other.notes or self.notes)


@dataclass(frozen=True)
class EntityFact:
    """A history tag read back as a typed fact."""
    kind: FactKind
    text: str
    year: Optional[int] = None


_YEAR_PATTERN = re.compile(r'\b(\d{4})\b')
_FACT_PREFIXES = (
    (FactKind.BIRTH, ('born', 'birth', 'b.')),
    (FactKind.DEATH, ('died', 'death', 'passed away', 'd.')),
    (FactKind.PLACE, ('lived in', 'lives in', 'from', 'moved to')),
)


def classify_fact(tag: str) -> EntityFact:
    """Classify a free-text history tag, falling back to a NOTE."""
    text = tag.strip()
    lowered = text.lower()
    match = _YEAR_PATTERN.search(text)
    year = int(match.group(1)) if match else None
    for kind, prefixes in _FACT_PREFIXES:
        if lowered.startswith(prefixes):
            return EntityFact(kind=kind, text=text, year=year)
    return EntityFact(kind=FactKind.NOTE, text=text, year=year)


@dataclass(frozen=True)
class Entity:
    """A recurring person, place, or abstract concept in a user's story."""
    id: str
    user_id: str  # Each entity belongs to a specific user's story
    name: str
    type: EntityType
    relationship: Optional[str] = None  # e.g. "Father"
    lineage_id: Optional[str] = None  # Weak reference to another entity id, never cascaded
    history_tags: Tuple[str, ...] = ()
    metadata: EntityMetadata = field(default_factory=EntityMetadata)

    @property
    def facts(self) -> Tuple[EntityFact, ...]:
        return tuple(classify_fact(tag) for tag in self.history_tags)


@dataclass(frozen=True)
class Era:
    """A labeled, category-scoped life phase; end_year is a year or PRESENT."""
    id: str
    label: str
    category: EraCategory
    start_year: int
    end_year: Union[int, str] = PRESENT

    @property
    def is_open(self) -> bool:
        return self.end_year == PRESENT

    def contains(self, year: int) -> bool:
        return year >= self.start_year and (self.is_open or year <= self.end_year)

    def closed_at(self, year: int) -> 'Era':
        return replace(self, end_year=year)


@dataclass(frozen=True)
class Attachment:
    media_type: MediaType
    url: str
    filename: Optional[str] = None


@dataclass(frozen=True)
class GroundingSource:
    title: str
    uri: str


@dataclass(frozen=True)
class Memory:
    """One confirmed narrative fact.

    era_ids is derived from sort_date and the era set and is recomputed
    whenever either changes.
    """
    id: str
    user_id: str
    narrative: str
    original_input: str
    sort_date: str  # YYYY or YYYY-MM-DD, or UNDATED
    sentiment: Sentiment = Sentiment.NEUTRAL
    type: MemoryType = MemoryType.EVENT
    entity_ids: Tuple[str, ...] = ()
    era_ids: Tuple[str, ...] = ()
    location: Optional[str] = None
    attachments: Tuple[Attachment, ...] = ()
    ai_insight: Optional[str] = None
    historical_context: Optional[str] = None
    sources: Tuple[GroundingSource, ...] = ()
    confidence: float = 1.0
    created_at: int = 0
    deleted_at: Optional[int] = None

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


@dataclass(frozen=True)
class ProposedEntity:
    """An entity candidate as returned by the extraction collaborator."""
    name: str
    type: Optional[EntityType] = None
    relationship: Optional[str] = None
    details: Optional[str] = None
    metadata: Optional[EntityMetadata] = None
    lineage_id: Optional[str] = None


@dataclass(frozen=True)
class DraftMemory:
    """A conversation-derived candidate fragment awaiting confirmation."""
    narrative: str
    sort_date: str
    sentiment: Sentiment = Sentiment.NEUTRAL
    type: MemoryType = MemoryType.EVENT
    location: Optional[str] = None
    suggested_era_categories: Tuple[EraCategory, ...] = ()
    suggested_era_label: Optional[str] = None
    associated_entities: Tuple[ProposedEntity, ...] = ()
    reasoning: Optional[str] = None
    ai_insight: Optional[str] = None
    historical_context: Optional[str] = None


@dataclass(frozen=True)
class PendingArtifact:
    """A media-derived candidate fragment awaiting confirmation."""
    id: str
    attachment: Attachment
    suggested_narrative: str
    suggested_date: str
    analysis: str = ''
    suggested_location: Optional[str] = None
    suggested_era_categories: Tuple[EraCategory, ...] = ()
    message_id: Optional[str] = None  # Chat message that proposed it


@dataclass(frozen=True)
class ChatMessage:
    """An entry in the append-only chat log."""
    id: str
    role: Role
    text: str
    timestamp: int
    attachment: Optional[Attachment] = None
    proposals: Tuple[DraftMemory, ...] = ()
    proposed_entities: Tuple[ProposedEntity, ...] = ()
    sources: Tuple[GroundingSource, ...] = ()
    in_reply_to: Optional[str] = None  # Message whose input produced these fragments


@dataclass(frozen=True)
class LifeStory:
    """The authoritative snapshot of one user's story."""
    user_id: str
    profile: Optional[Profile] = None
    memories: Tuple[Memory, ...] = ()
    pending: Tuple[PendingArtifact, ...] = ()
    entities: Tuple[Entity, ...] = ()
    eras: Tuple[Era, ...] = ()
    chat_history: Tuple[ChatMessage, ...] = ()

    def message(self, message_id: str) -> Optional[ChatMessage]:
        for message in self.chat_history:
            if message.id == message_id:
                return message
        return None

    def memory(self, memory_id: str) -> Optional[Memory]:
        for memory in self.memories:
            if memory.id == memory_id:
                return memory
        return None
