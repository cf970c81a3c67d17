"""Threat history with source-scoped de-duplication and dismissal.

History is kept newest-first and is never capped; only ``clear()`` empties
it. It doubles as the audit trail, unlike the feed ring buffers.
"""

import logging
from collections import Counter
from typing import Any, Callable, Dict, Iterator, List, Optional

from .models import Threat, ThreatSource, ThreatStatus

logger = logging.getLogger(__name__)


class ThreatView:
    """Lazy, restartable, read-only filtered view over a history snapshot."""

    def __init__(self, threats: List[Threat], predicate: Callable[[Threat], bool]):
        self._threats = tuple(threats)
        self._predicate = predicate

    def __iter__(self) -> Iterator[Threat]:
        return (threat for threat in self._threats if self._predicate(threat))

    def __len__(self) -> int:
        return sum(1 for _ in self)


class ThreatStore:
    """Holds every reportable threat. Writes are serialized by the orchestrator."""

    def __init__(self, threats: Optional[List[Threat]] = None):
        self._threats: List[Threat] = list(threats or [])
        self.counts: Counter = Counter()

    def record(self, threat: Threat) -> None:
        self._threats.insert(0, threat)
        self.counts[threat.source.value] += 1
        self.counts[threat.threat_level.value] += 1

    def find_duplicate(self, domain: str, source: ThreatSource) -> Optional[Threat]:
        """Return an earlier threat for the same domain from the same source."""
        for threat in self._threats:
            if threat.domain == domain and threat.source is source:
                return threat
        return None

    def get(self, threat_id: str) -> Optional[Threat]:
        for threat in self._threats:
            if threat.id == threat_id:
                return threat
        return None

    def dismiss(self, threat_id: str) -> bool:
        """Mark a threat dismissed. Unknown or already dismissed ids are a no-op.

        Returns True only when a status actually changed.
        """
        threat = self.get(str(threat_id))
        if threat is None or threat.status is ThreatStatus.DISMISSED:
            return False
        threat.status = ThreatStatus.DISMISSED
        logger.info(f"Dismissed threat: {threat.domain}")
        return True

    def filter(self, predicate: Optional[Callable[[Threat], bool]] = None) -> ThreatView:
        return ThreatView(self._threats, predicate or (lambda threat: True))

    def clear(self) -> None:
        self._threats.clear()
        self.counts.clear()

    def __len__(self) -> int:
        return len(self._threats)

    def to_list(self) -> List[Dict[str, Any]]:
        return [threat.to_dict() for threat in self._threats]

    @classmethod
    def from_list(cls, items: List[Dict[str, Any]]) -> "ThreatStore":
        return cls([Threat.from_dict(item) for item in items])
