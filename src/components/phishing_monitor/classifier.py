"""Threat-level banding.

The user-configurable similarity threshold only gates the "similar" branch
of matching (detection sensitivity). These fixed bands decide severity and
never move with it.
"""

from .models import ThreatLevel

HIGH_THRESHOLD = 0.90
MEDIUM_THRESHOLD = 0.75

REPORTABLE_LEVELS = frozenset({ThreatLevel.HIGH, ThreatLevel.MEDIUM})


def classify(score: float) -> ThreatLevel:
    if score >= HIGH_THRESHOLD:
        return ThreatLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return ThreatLevel.MEDIUM
    return ThreatLevel.LOW


def is_reportable(level: ThreatLevel) -> bool:
    """Only high and medium threats are stored and alerted on."""
    return level in REPORTABLE_LEVELS
