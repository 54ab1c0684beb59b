"""Associate timeline entries with uploaded image details.

Uploads written by ``MemoryUploadPipeline`` carry an explicit link
(``memory_details.timeline_id``).  Rows written before that link existed can
only be matched by calendar day, which is lossy: two unrelated memories on
the same day collide, and rows without a date never match.  That fallback
lives in ``BestEffortLinker`` so it stays visibly separate from the
explicit path.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from src.memories.models import calendar_day

if TYPE_CHECKING:
    from collections.abc import Iterable

    from src.memories.models import DetailsRecord, TimelineRecord

logger = logging.getLogger(__name__)


def same_day(a: str | None, b: str | None) -> bool:
    """True when both instants fall on the same ISO calendar date."""
    day_a = calendar_day(a)
    return day_a is not None and day_a == calendar_day(b)


class BestEffortLinker:
    """Pairs each timeline record with at most one details record.

    Call ``claim()`` once per timeline record, in timeline order.  A details
    record is handed out at most once, so when two timeline records share a
    day with one details record the first one scanned wins.
    """

    def __init__(self, details: Iterable[DetailsRecord]) -> None:
        self._details = list(details)
        self._consumed: set[str] = set()
        self._by_timeline_id = {d.timeline_id: d for d in self._details if d.timeline_id}

    @property
    def consumed(self) -> set[str]:
        return set(self._consumed)

    def unconsumed(self) -> list[DetailsRecord]:
        """Details records no timeline record has claimed, in original order."""
        return [d for d in self._details if d.id not in self._consumed]

    def claim(self, record: TimelineRecord) -> tuple[DetailsRecord | None, bool]:
        """Claim the details record for *record*.

        Returns ``(details, linked)`` where *linked* is True when the match
        came from the explicit link rather than the same-day fallback.
        """
        linked = self._by_timeline_id.get(record.id)
        if linked is not None and linked.id not in self._consumed:
            self._consumed.add(linked.id)
            return linked, True

        for details in self._details:
            if details.id in self._consumed:
                continue
            # Rows with an explicit link belong to their own timeline entry
            if details.timeline_id:
                continue
            if same_day(record.raw_date, details.date_taken):
                self._consumed.add(details.id)
                logger.debug(
                    "Same-day match: timeline %s <-> details %s", record.id, details.id
                )
                return details, False
        return None, False
