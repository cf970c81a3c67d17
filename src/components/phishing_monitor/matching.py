"""Domain match engine.

Scores a candidate domain against every watch-list entry and keeps the best
result. Evaluation per entry, in watch-list order:

1. exact      - candidate equals entry, score 1.0, returns immediately
2. substring  - either contains the other, fixed score 0.90
3. similar    - Levenshtein similarity, when >= threshold

A later result is only adopted when it strictly beats the best score so far,
so the first entry encountered wins ties.
"""

import re
from typing import Iterable

from .exceptions import InvalidDomainError
from .models import MatchResult, MatchType, NO_MATCH
from .similarity import similarity

SUBSTRING_SCORE = 0.90
DEFAULT_SIMILARITY_THRESHOLD = 0.75

# Dot-separated labels of letters, digits and inner hyphens ("paypal", "paypal.com")
_LABEL = r"[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?"
_DOMAIN_PATTERN = re.compile(rf"^{_LABEL}(?:\.{_LABEL})*$")


def normalize_domain(domain: str) -> str:
    """Lowercase and strip surrounding whitespace and a leading ``*.`` wildcard."""
    domain = domain.strip().lower()
    if domain.startswith("*."):
        domain = domain[2:]
    return domain


def validate_watch_entry(domain: str) -> str:
    """Normalize an operator-supplied domain, raising InvalidDomainError if malformed."""
    normalized = normalize_domain(domain or "")
    if not normalized or len(normalized) > 253 or not _DOMAIN_PATTERN.match(normalized):
        raise InvalidDomainError(f"Invalid domain format: {domain!r}")
    return normalized


def match_domain(
    candidate: str,
    watchlist: Iterable[str],
    threshold: float = DEFAULT_SIMILARITY_THRESHOLD,
) -> MatchResult:
    """Find the best-matching watch entry for an already normalized candidate."""
    if not candidate:
        return NO_MATCH

    best = NO_MATCH
    for entry in watchlist:
        if candidate == entry:
            return MatchResult(matched=True, score=1.0, match_type=MatchType.EXACT, keyword=entry)

        if (entry in candidate or candidate in entry) and SUBSTRING_SCORE > best.score:
            best = MatchResult(matched=True, score=SUBSTRING_SCORE, match_type=MatchType.SUBSTRING, keyword=entry)

        score = similarity(candidate, entry)
        if score >= threshold and score > best.score:
            best = MatchResult(matched=True, score=score, match_type=MatchType.SIMILAR, keyword=entry)

    return best
