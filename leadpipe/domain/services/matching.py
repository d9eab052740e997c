"""Match precedence for linking records across sources.

A chain is an ordered list of ``(MatchLevel, matcher)`` pairs where each
matcher lists candidate records for a set of identity keys. ``first_match``
walks the chain and stops at the first unconsumed, acceptable candidate, so the
precedence is simply the order of the list.
"""

from dataclasses import dataclass
from typing import Callable, TypeVar

from leadpipe.domain.models import MatchLevel
from leadpipe.domain.services.source_fetchers import SourceIndex

RecordT = TypeVar("RecordT")


@dataclass(frozen=True)
class MatchKeys:
    """Identity keys of the journey being assembled, in preference order."""

    cpfs: tuple[str, ...] = ()
    phone: str = ""
    names: tuple[str, ...] = ()


Matcher = Callable[[SourceIndex, MatchKeys], list]


def match_by_cpf(index: SourceIndex[RecordT], keys: MatchKeys) -> list[RecordT]:
    candidates: list[RecordT] = []
    for cpf in keys.cpfs:
        if cpf:
            candidates.extend(index.by_cpf.get(cpf, []))
    return candidates


def match_by_phone(index: SourceIndex[RecordT], keys: MatchKeys) -> list[RecordT]:
    if not keys.phone:
        return []
    return list(index.by_phone.get(keys.phone, []))


def match_by_name(index: SourceIndex[RecordT], keys: MatchKeys) -> list[RecordT]:
    candidates: list[RecordT] = []
    for name in keys.names:
        if name:
            candidates.extend(index.by_name.get(name, []))
    return candidates


# ID first, then phone, then name
IDENTITY_CHAIN: list[tuple[MatchLevel, Matcher]] = [
    (MatchLevel.CPF, match_by_cpf),
    (MatchLevel.PHONE, match_by_phone),
    (MatchLevel.NAME, match_by_name),
]

PHONE_ONLY_CHAIN: list[tuple[MatchLevel, Matcher]] = [
    (MatchLevel.PHONE, match_by_phone),
]


def first_match(
    index: SourceIndex[RecordT],
    keys: MatchKeys,
    chain: list[tuple[MatchLevel, Matcher]] = IDENTITY_CHAIN,
    accept: Callable[[RecordT], bool] | None = None,
) -> tuple[RecordT, MatchLevel] | tuple[None, None]:
    """Return the first usable record along the chain and the level that found it.

    Args:
        index: Source to search
        keys: Identity keys to look up
        chain: Matchers in precedence order
        accept: Optional extra filter on candidates

    Returns:
        ``(record, level)``, or ``(None, None)`` when every matcher comes up empty
    """
    for level, matcher in chain:
        for record in matcher(index, keys):
            if index.is_consumed(record):
                continue
            if accept is not None and not accept(record):
                continue
            return record, level
    return None, None
