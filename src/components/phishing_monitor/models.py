"""Data model for the phishing monitor.

Everything here is plain data with ``to_dict``/``from_dict`` helpers so the
persistence layer can store it as JSON.
"""

import secrets
from dataclasses import asdict, dataclass, field, fields
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

# Daily cap on opensquat lookups (free API tier)
DAILY_LOOKUP_QUOTA = 5

# Feed ring buffers keep the newest N records
FEED_BUFFER_SIZE = 100


class ThreatLevel(Enum):
    """Severity band derived from a match score."""
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class MatchType(Enum):
    """How a candidate domain matched a watch-list entry."""
    EXACT = "exact"
    SUBSTRING = "substring"
    SIMILAR = "similar"
    NONE = "none"


class ThreatSource(Enum):
    """Feed a detection came from."""
    CERTSTREAM = "certstream"
    OPENSQUAT = "opensquat"


class ThreatStatus(Enum):
    ACTIVE = "active"
    DISMISSED = "dismissed"


@dataclass(frozen=True)
class MatchResult:
    """Outcome of scoring one candidate against the watch-list."""
    matched: bool
    score: float
    match_type: MatchType
    keyword: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matched": self.matched,
            "score": self.score,
            "match_type": self.match_type.value,
            "keyword": self.keyword,
        }


NO_MATCH = MatchResult(matched=False, score=0.0, match_type=MatchType.NONE, keyword="")


def new_threat_id(now: datetime) -> str:
    """Millisecond timestamp plus a random suffix, e.g. ``1760870400000-9f2c41ab``."""
    return f"{int(now.timestamp() * 1000)}-{secrets.token_hex(4)}"


@dataclass
class Threat:
    """A reportable detection. Only ``status`` changes after creation."""
    id: str
    domain: str
    source: ThreatSource
    detected_at: datetime
    threat_level: ThreatLevel
    score: float
    matched_keyword: str
    match_type: MatchType
    raw_evidence: Optional[Dict[str, Any]] = None
    status: ThreatStatus = ThreatStatus.ACTIVE

    @property
    def is_active(self) -> bool:
        return self.status is ThreatStatus.ACTIVE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "domain": self.domain,
            "source": self.source.value,
            "detected_at": self.detected_at.isoformat(),
            "threat_level": self.threat_level.value,
            "score": self.score,
            "matched_keyword": self.matched_keyword,
            "match_type": self.match_type.value,
            "raw_evidence": self.raw_evidence,
            "status": self.status.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Threat":
        return cls(
            id=str(data["id"]),
            domain=data["domain"],
            source=ThreatSource(data["source"]),
            detected_at=datetime.fromisoformat(data["detected_at"]),
            threat_level=ThreatLevel(data["threat_level"]),
            score=float(data["score"]),
            matched_keyword=data.get("matched_keyword", ""),
            match_type=MatchType(data.get("match_type", MatchType.NONE.value)),
            raw_evidence=data.get("raw_evidence"),
            status=ThreatStatus(data.get("status", ThreatStatus.ACTIVE.value)),
        )


@dataclass
class FeedRecord:
    """Recency-cache entry for one feed; may or may not be reportable."""
    domain: str
    source: ThreatSource
    keyword: str
    score: float
    match_type: MatchType
    threat_level: ThreatLevel
    timestamp: datetime
    evidence: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": self.domain,
            "source": self.source.value,
            "keyword": self.keyword,
            "score": self.score,
            "match_type": self.match_type.value,
            "threat_level": self.threat_level.value,
            "timestamp": self.timestamp.isoformat(),
            "evidence": self.evidence,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedRecord":
        return cls(
            domain=data["domain"],
            source=ThreatSource(data["source"]),
            keyword=data.get("keyword", ""),
            score=float(data.get("score", 0.0)),
            match_type=MatchType(data.get("match_type", MatchType.NONE.value)),
            threat_level=ThreatLevel(data.get("threat_level", ThreatLevel.LOW.value)),
            timestamp=datetime.fromisoformat(data["timestamp"]),
            evidence=data.get("evidence"),
        )


@dataclass
class UsageCounter:
    """Opensquat lookups used today."""
    count: int = 0
    date: str = ""
    last_check: Optional[str] = None
    quota: int = DAILY_LOOKUP_QUOTA

    @property
    def remaining(self) -> int:
        return max(0, self.quota - self.count)

    @property
    def exhausted(self) -> bool:
        return self.count >= self.quota

    def roll_over(self, today: date) -> bool:
        """Reset the count on the first evaluation of a new calendar day."""
        today_str = today.isoformat()
        if self.date == today_str:
            return False
        self.count = 0
        self.date = today_str
        return True

    def increment(self) -> bool:
        """Count one successful lookup. Refuses once the quota is reached."""
        if self.exhausted:
            return False
        self.count += 1
        return True

    def to_dict(self) -> Dict[str, Any]:
        return {"count": self.count, "date": self.date, "last_check": self.last_check}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UsageCounter":
        return cls(
            count=int(data.get("count", 0)),
            date=data.get("date", ""),
            last_check=data.get("last_check"),
        )


@dataclass
class Settings:
    """Operator-tunable settings. Changes apply on the next scheduling decision."""
    similarity_threshold: float = 0.75
    auto_alerts: bool = True
    certstream_filtering: bool = True
    opensquat_enabled: bool = True
    opensquat_interval: int = 20  # minutes
    alert_email: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


@dataclass
class Stats:
    certs_processed: int = 0
    certstream_matched: int = 0
    opensquat_found: int = 0
    total_threats: int = 0
    alerts_sent: int = 0
    started_at: Optional[datetime] = field(default=None, compare=False)

    def to_dict(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        data = {
            "certs_processed": self.certs_processed,
            "certstream_matched": self.certstream_matched,
            "opensquat_found": self.opensquat_found,
            "total_threats": self.total_threats,
            "alerts_sent": self.alerts_sent,
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }
        if now and self.started_at:
            data["uptime_seconds"] = int((now - self.started_at).total_seconds())
        return data
