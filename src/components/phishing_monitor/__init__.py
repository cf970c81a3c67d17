"""Phishing Monitor Component - dual-feed lookalike domain detection.

## Overview

Watches two independent feeds for domains impersonating a watch-list of
protected domains:

1. **Certstream** (push) - every newly issued TLS certificate, in real time.
   Each SAN is scored against the whole watch-list.
2. **Opensquat** (poll) - newly registered lookalikes per watched domain,
   fetched every N minutes under a 5-lookups-per-day quota. Each result is
   scored against the domain it was looked up for.

## Scoring

- exact match 1.0, substring 0.90, otherwise Levenshtein similarity
  (only when it reaches the configured threshold)
- threat levels: high >= 0.90, medium >= 0.75, else low
- high and medium threats are recorded and trigger email alerts

## Package Structure

- `similarity.py` - normalized Levenshtein similarity
- `matching.py` - watch-list match engine and domain normalization
- `classifier.py` - threat-level bands
- `models.py` - threats, feed records, usage counter, settings
- `threat_store.py` - threat history, dedup, dismissal
- `feed_buffer.py` - 100-entry recency caches per feed
- `poll_feed.py` - opensquat scheduling, pacing and quota
- `alerts.py` - email alert trigger
- `orchestrator.py` - owns all state and wires the feeds together
- `reporting.py` - tables and spreadsheet export

## Usage

```python
from config import get_config
from src.components.phishing_monitor import PhishingMonitor
from src.utils.scheduling import JobScheduler

scheduler = JobScheduler()
monitor = PhishingMonitor.from_config(get_config(), scheduler)
monitor.add_domain("example.com")
scheduler.start()
monitor.start()
```
"""

from .exceptions import DuplicateDomainError, InvalidDomainError, InvalidSettingError, PhishingMonitorError
from .matching import match_domain, normalize_domain
from .models import MatchType, Threat, ThreatLevel, ThreatSource, ThreatStatus
from .orchestrator import PhishingMonitor
from .similarity import similarity

__all__ = [
    "PhishingMonitor",
    "match_domain",
    "normalize_domain",
    "similarity",
    "MatchType",
    "Threat",
    "ThreatLevel",
    "ThreatSource",
    "ThreatStatus",
    "PhishingMonitorError",
    "InvalidDomainError",
    "DuplicateDomainError",
    "InvalidSettingError",
]
