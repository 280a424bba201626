from __future__ import annotations

import logging
import re
from datetime import date, datetime, timezone
from typing import Iterable, Optional

from backend.fieldops.models import DocumentKind

logger = logging.getLogger("fieldops.numbering")

DOCUMENT_PREFIXES: dict[DocumentKind, str] = {
    DocumentKind.quote: "Q",
    DocumentKind.work_order: "WO",
    DocumentKind.invoice: "INV",
}

DEFAULT_RECENT_WINDOW = 10
COUNTER_WIDTH = 4


def utc_today() -> date:
    return datetime.now(timezone.utc).date()


def format_number(kind: DocumentKind, day: date, counter: int) -> str:
    # Counters past 9999 keep growing; the padding is a minimum width.
    return f"{DOCUMENT_PREFIXES[kind]}-{day:%Y%m%d}-{counter:0{COUNTER_WIDTH}d}"


def _pattern(kind: DocumentKind) -> re.Pattern[str]:
    prefix = re.escape(DOCUMENT_PREFIXES[kind])
    return re.compile(rf"^{prefix}-(\d{{8}})-(\d{{{COUNTER_WIDTH},}})$")


def parse_number(kind: DocumentKind, number: str) -> Optional[tuple[str, int]]:
    """Split a document number into its ``YYYYMMDD`` stamp and counter."""
    match = _pattern(kind).match(number.strip())
    if not match:
        return None
    return match.group(1), int(match.group(2))


def next_number(
    kind: DocumentKind,
    recent_numbers: Iterable[str],
    today: Optional[date] = None,
) -> str:
    """Mint the next ``<PREFIX>-<YYYYMMDD>-<NNNN>`` for ``kind``.

    ``recent_numbers`` must be ordered newest first. Only the first parsable
    number stamped with ``today`` is used; anything else restarts at 1.
    """
    day = today or utc_today()
    stamp = f"{day:%Y%m%d}"
    same_day = f"{DOCUMENT_PREFIXES[kind]}-{stamp}"
    counter = 1
    for number in recent_numbers:
        if not number.startswith(same_day):
            continue
        parsed = parse_number(kind, number)
        if parsed is None:
            logger.warning("unparsable_document_number kind=%s number=%s", kind.value, number)
            continue
        counter = parsed[1] + 1
        break
    return format_number(kind, day, counter)


def bump_number(kind: DocumentKind, number: str) -> str:
    """Return the number directly after ``number`` on the same day."""
    parsed = parse_number(kind, number)
    if parsed is None:
        raise ValueError(f"not a {kind.value} number: {number}")
    stamp, counter = parsed
    day = datetime.strptime(stamp, "%Y%m%d").date()
    return format_number(kind, day, counter + 1)
