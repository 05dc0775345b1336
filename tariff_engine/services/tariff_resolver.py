"""
Tariff Resolver.

Selects the single applicable tariff for an insurer and service on a date.
Lower priority value wins; a tie at the winning priority is a data-integrity
violation and is reported, never guessed.
"""

from collections import defaultdict
from datetime import date
from itertools import combinations
from typing import Any, Iterable, Optional

from tariff_engine.schemas.records import Tariff
from tariff_engine.services.record_filters import is_live, live_as_of, windows_overlap
from tariff_engine.utils.errors import AmbiguousTariff, NoApplicableTariff
from tariff_engine.utils.logging import get_logger

logger = get_logger(__name__)


class TariffResolver:
    """Resolves tariffs from an already-loaded tariff set."""

    def __init__(self, tariffs: Iterable[Tariff] = ()):
        self._by_pair: dict[tuple[Any, Any], list[Tariff]] = defaultdict(list)
        for tariff in tariffs:
            self._by_pair[(tariff.insurer_id, tariff.service_id)].append(tariff)

    def candidates(
        self,
        insurer_id: Any,
        service_id: Any,
        as_of: date,
        plan_id: Optional[Any] = None,
    ) -> list[Tariff]:
        """Active, non-deleted tariffs valid on as_of, lowest priority first."""
        predicate = live_as_of(as_of)
        rows = [t for t in self._by_pair.get((insurer_id, service_id), []) if predicate(t)]
        if plan_id is not None:
            rows = [t for t in rows if t.plan_id is None or t.plan_id == plan_id]
        return sorted(rows, key=lambda t: t.priority)

    def resolve(
        self,
        insurer_id: Any,
        service_id: Any,
        as_of: date,
        plan_id: Optional[Any] = None,
    ) -> Tariff:
        """
        Resolve the applicable tariff.

        Args:
            insurer_id: Insurer the tariff belongs to
            service_id: Billed service
            as_of: Date of service
            plan_id: Optional plan; plan-agnostic tariffs stay eligible

        Returns:
            The single winning Tariff

        Raises:
            NoApplicableTariff: No tariff covers as_of
            AmbiguousTariff: Several tariffs share the winning priority
        """
        rows = self.candidates(insurer_id, service_id, as_of, plan_id)
        if not rows:
            raise NoApplicableTariff(insurer_id, service_id, as_of)

        best = rows[0].priority
        winners = [t for t in rows if t.priority == best]
        if len(winners) > 1:
            logger.error(
                f"Ambiguous tariff: insurer={insurer_id}, service={service_id}, "
                f"priority={best}, ids={[t.tariff_id for t in winners]}"
            )
            raise AmbiguousTariff(insurer_id, service_id, best, [t.tariff_id for t in winners])

        logger.debug(
            f"Resolved tariff {winners[0].tariff_id} for insurer={insurer_id}, "
            f"service={service_id} on {as_of}"
        )
        return winners[0]

    def find_overlap_conflicts(
        self,
        insurer_id: Optional[Any] = None,
        service_id: Optional[Any] = None,
    ) -> list[tuple[Tariff, Tariff]]:
        """
        Pairs of live tariffs with equal priority and overlapping windows.

        Used by administrative checks; any pair returned would make resolve()
        raise AmbiguousTariff for dates in the overlap.
        """
        conflicts: list[tuple[Tariff, Tariff]] = []
        for (insurer, service), rows in self._by_pair.items():
            if insurer_id is not None and insurer != insurer_id:
                continue
            if service_id is not None and service != service_id:
                continue
            live = [t for t in rows if is_live(t)]
            for a, b in combinations(live, 2):
                if a.priority != b.priority:
                    continue
                if a.plan_id is not None and b.plan_id is not None and a.plan_id != b.plan_id:
                    continue
                if windows_overlap(a.start_date, a.end_date, b.start_date, b.end_date):
                    conflicts.append((a, b))
        return conflicts
