from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from backend.fieldops.models import (
    DuplicateMatch,
    ExistingRecord,
    MatchCandidate,
    MatchType,
    RecordKind,
)
from backend.fieldops.services.similarity import similarity

logger = logging.getLogger("fieldops.dedupe")

DEFAULT_NAME_THRESHOLD = 0.8
DEFAULT_ADDRESS_THRESHOLD = 0.7


@dataclass(frozen=True)
class DuplicateThresholds:
    """Fuzzy-stage cut-offs. A record matches when its score is strictly greater."""

    name: float = DEFAULT_NAME_THRESHOLD
    address: float = DEFAULT_ADDRESS_THRESHOLD


@dataclass(frozen=True)
class KindConfig:
    contact_fields: bool
    split_name: bool


KIND_CONFIGS: dict[RecordKind, KindConfig] = {
    RecordKind.lead: KindConfig(contact_fields=True, split_name=False),
    RecordKind.contact: KindConfig(contact_fields=True, split_name=True),
    RecordKind.account: KindConfig(contact_fields=False, split_name=False),
}

Stage = Callable[
    [MatchCandidate, Sequence[ExistingRecord], KindConfig, DuplicateThresholds],
    list[DuplicateMatch],
]


def normalize(value: Optional[str]) -> str:
    if not value:
        return ""
    return value.strip().lower()


def _others(
    candidate: MatchCandidate, records: Sequence[ExistingRecord]
) -> list[ExistingRecord]:
    if not candidate.exclude_id:
        return list(records)
    return [record for record in records if record.id != candidate.exclude_id]


def _exact(
    records: Sequence[ExistingRecord], field: str, value: str, match_type: MatchType
) -> list[DuplicateMatch]:
    return [
        DuplicateMatch(record=record, match_type=match_type, score=1.0)
        for record in records
        if getattr(record, field) == value
    ]


def contact_detail_stage(
    candidate: MatchCandidate,
    records: Sequence[ExistingRecord],
    config: KindConfig,
    thresholds: DuplicateThresholds,
) -> list[DuplicateMatch]:
    if not config.contact_fields:
        return []
    others = _others(candidate, records)
    if candidate.email:
        matches = _exact(others, "email", candidate.email, MatchType.email)
        if matches:
            return matches
    if candidate.phone:
        return _exact(others, "phone", candidate.phone, MatchType.phone)
    return []


def place_id_stage(
    candidate: MatchCandidate,
    records: Sequence[ExistingRecord],
    config: KindConfig,
    thresholds: DuplicateThresholds,
) -> list[DuplicateMatch]:
    if not candidate.place_id:
        return []
    return _exact(_others(candidate, records), "place_id", candidate.place_id, MatchType.place_id)


def name_stage(
    candidate: MatchCandidate,
    records: Sequence[ExistingRecord],
    config: KindConfig,
    thresholds: DuplicateThresholds,
) -> list[DuplicateMatch]:
    matches: list[DuplicateMatch] = []
    if config.split_name:
        first = normalize(candidate.first_name)
        last = normalize(candidate.last_name)
        if not first or not last:
            return []
        for record in _others(candidate, records):
            first_score = similarity(first, normalize(record.first_name))
            last_score = similarity(last, normalize(record.last_name))
            if first_score > thresholds.name and last_score > thresholds.name:
                matches.append(
                    DuplicateMatch(
                        record=record,
                        match_type=MatchType.name,
                        score=min(first_score, last_score),
                    )
                )
        return matches

    name = normalize(candidate.name)
    if not name:
        return []
    for record in _others(candidate, records):
        score = similarity(name, normalize(record.name))
        if score > thresholds.name:
            matches.append(DuplicateMatch(record=record, match_type=MatchType.name, score=score))
    return matches


def address_stage(
    candidate: MatchCandidate,
    records: Sequence[ExistingRecord],
    config: KindConfig,
    thresholds: DuplicateThresholds,
) -> list[DuplicateMatch]:
    address = normalize(candidate.address)
    if not address:
        return []
    matches: list[DuplicateMatch] = []
    for record in _others(candidate, records):
        score = similarity(address, normalize(record.address))
        if score > thresholds.address:
            matches.append(
                DuplicateMatch(record=record, match_type=MatchType.address, score=score)
            )
    return matches


# Strongest signal first; the first stage that yields anything wins.
CASCADE: tuple[Stage, ...] = (
    contact_detail_stage,
    place_id_stage,
    name_stage,
    address_stage,
)


def find_duplicates(
    kind: RecordKind,
    candidate: MatchCandidate,
    existing: Sequence[ExistingRecord],
    *,
    thresholds: Optional[DuplicateThresholds] = None,
    place_id_index: Optional[Sequence[ExistingRecord]] = None,
) -> list[DuplicateMatch]:
    """Return likely duplicates of ``candidate`` among ``existing``.

    ``place_id_index`` lets a caller hand the place-id stage the subset it
    already looked up through an index; the stage still checks equality.
    """
    config = KIND_CONFIGS[kind]
    limits = thresholds or DuplicateThresholds()
    for stage in CASCADE:
        records = existing
        if stage is place_id_stage and place_id_index is not None:
            records = place_id_index
        matches = stage(candidate, records, config, limits)
        if matches:
            logger.info(
                "duplicates_found kind=%s stage=%s count=%s exclude_id=%s",
                kind.value,
                matches[0].match_type.value,
                len(matches),
                candidate.exclude_id,
            )
            return matches
    return []


def find_duplicate_leads(
    candidate: MatchCandidate,
    existing: Sequence[ExistingRecord],
    *,
    thresholds: Optional[DuplicateThresholds] = None,
) -> list[DuplicateMatch]:
    return find_duplicates(RecordKind.lead, candidate, existing, thresholds=thresholds)


def find_duplicate_contacts(
    candidate: MatchCandidate,
    existing: Sequence[ExistingRecord],
    *,
    thresholds: Optional[DuplicateThresholds] = None,
) -> list[DuplicateMatch]:
    return find_duplicates(RecordKind.contact, candidate, existing, thresholds=thresholds)


def find_duplicate_accounts(
    candidate: MatchCandidate,
    existing: Sequence[ExistingRecord],
    *,
    thresholds: Optional[DuplicateThresholds] = None,
) -> list[DuplicateMatch]:
    return find_duplicates(RecordKind.account, candidate, existing, thresholds=thresholds)
