"""
Era Engine: assign dated memories to eras and keep at most one open-ended
era per category.
"""

import re
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Iterable, Optional, Tuple

from ..models.core import PRESENT, Era, EraCategory, Memory
from ..utils.logging_config import get_logger

logger = get_logger(__name__)

EARLY_YEARS_SPAN = 18

_YEAR = re.compile(r'(?<!\d)(\d{4})(?!\d)')


@dataclass(frozen=True)
class EraAdmission:
    """What admitting a proposed era changes in the era set."""
    to_close: Optional[str] = None  # Id of the open era to close
    close_year: Optional[int] = None
    to_insert: Optional[Era] = None

    @property
    def is_noop(self) -> bool:
        return self.to_close is None and self.to_insert is None


def new_era_id() -> str:
    return f'era_{uuid.uuid4().hex[:12]}'


def extract_year(date: Optional[str]) -> Optional[int]:
    """First 4-digit year in a (possibly partial) date string; None when undated."""
    if date is None:
        return None
    match = _YEAR.search(str(date))
    if not match:
        return None
    year = int(match.group(1))
    return year if year > 0 else None


def assign(date: Optional[str], eras: Iterable[Era]) -> Tuple[str, ...]:
    """Ids of every era containing the date's year. Overlap across eras is allowed."""
    year = extract_year(date)
    if year is None:
        return ()
    return tuple(era.id for era in eras if era.contains(year))


def era_label_for(category: EraCategory, location: Optional[str] = None, explicit_label: Optional[str] = None) -> str:
    if explicit_label and explicit_label.strip():
        return explicit_label.strip()
    if location and location.strip():
        return f'Life in {location.strip()}'
    return f'New {category.value} Era'


def admit_era(eras: Tuple[Era, ...],
              category: EraCategory,
              label: str,
              start_year: int,
              id_factory: Callable[[], str] = new_era_id) -> EraAdmission:
    """Work out how a newly discovered era fits the existing ones.

    The open era of the same category, if any, is closed at start_year and
    the new era is inserted open-ended. Proposing the open era again (same
    label and start year) changes nothing. A proposal that starts before
    the open era is a backfilled phase: it is inserted closed at the open
    era's start year and the open era is left alone.
    """
    open_era = next((era for era in eras if era.category == category and era.is_open), None)

    if open_era is None:
        return EraAdmission(to_insert=Era(id=id_factory(), label=label, category=category, start_year=start_year))

    if open_era.label == label and open_era.start_year == start_year:
        logger.debug(f'Era "{label}" ({category.value}, {start_year}) is already open; nothing to admit')
        return EraAdmission()

    if start_year < open_era.start_year:
        backfill = Era(id=id_factory(), label=label, category=category, start_year=start_year, end_year=open_era.start_year)
        return EraAdmission(to_insert=backfill)

    return EraAdmission(to_close=open_era.id,
                        close_year=start_year,
                        to_insert=Era(id=id_factory(), label=label, category=category, start_year=start_year))


def apply_admission(eras: Tuple[Era, ...], admission: EraAdmission) -> Tuple[Era, ...]:
    if admission.is_noop:
        return eras
    updated = tuple(
        era.closed_at(admission.close_year) if era.id == admission.to_close else era for era in eras)
    if admission.to_insert is not None:
        updated = updated + (admission.to_insert, )
    return updated


def reassign_memories(memories: Tuple[Memory, ...], eras: Tuple[Era, ...]) -> Tuple[Memory, ...]:
    """Recompute the derived era_ids of every memory, reusing unchanged records."""
    result = []
    for memory in memories:
        era_ids = assign(memory.sort_date, eras)
        result.append(memory if era_ids == memory.era_ids else replace(memory, era_ids=era_ids))
    return tuple(result)


def origin_eras(birth_year: int, birth_city: str, id_factory: Callable[[], str] = new_era_id) -> Tuple[Era, ...]:
    """Eras created at onboarding: childhood, and life in the birth city."""
    eras = [
        Era(id=id_factory(),
            label='Early Years',
            category=EraCategory.PERSONAL,
            start_year=birth_year,
            end_year=birth_year + EARLY_YEARS_SPAN)
    ]
    if birth_city and birth_city.strip():
        eras.append(
            Era(id=id_factory(),
                label=era_label_for(EraCategory.LOCATION, birth_city),
                category=EraCategory.LOCATION,
                start_year=birth_year,
                end_year=PRESENT))
    return tuple(eras)
