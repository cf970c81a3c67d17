"""Phishing monitor orchestrator.

Owns every piece of shared state (watch-list, settings, usage counter, both
feed buffers, threat history, stats) and wires the two feeds to matching,
classification, storage and alerting.

Both feeds call in from their own threads. Scoring is pure and runs without
the lock against a snapshot of the watch-list; every write-back (counters,
buffers, history, usage, persistence) happens under one re-entrant lock.
Listener callbacks and alert submission happen after the lock is released.
"""

import logging
import threading
import time
from dataclasses import fields
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional
from zoneinfo import ZoneInfo

from services.certstream_feed import (
    CERTSTREAM_URL, CertstreamFeed, ConnectionState, extract_domains_from_cert, summarize_certificate,
)
from services.opensquat import OpensquatClient
from src.utils.json_store import JsonFileStore
from src.utils.logging_utils import get_activity_handler
from .alerts import AlertDispatcher
from .classifier import classify, is_reportable
from .exceptions import DuplicateDomainError, InvalidSettingError
from .feed_buffer import FeedBuffer
from .matching import match_domain, normalize_domain, validate_watch_entry
from .models import (
    FeedRecord, MatchResult, MatchType, Settings, Stats, Threat, ThreatLevel, ThreatSource, UsageCounter,
    new_threat_id,
)
from .poll_feed import PollFeedChannel, PollPassSummary, PollStatus
from .similarity import similarity
from .threat_store import ThreatStore, ThreatView

logger = logging.getLogger(__name__)

KEY_DOMAINS = "monitored_domains"
KEY_SETTINGS = "settings"
KEY_THREATS = "threat_history"
KEY_USAGE = "opensquat_usage"
KEY_CERTSTREAM = "certstream_data"
KEY_OPENSQUAT = "opensquat_data"
STORAGE_KEYS = [KEY_DOMAINS, KEY_SETTINGS, KEY_THREATS, KEY_USAGE, KEY_CERTSTREAM, KEY_OPENSQUAT]

THREAT_FILTERS = ("all", "high", ThreatSource.CERTSTREAM.value, ThreatSource.OPENSQUAT.value)
EXPORT_SECTIONS = ("threats", "certstream", "opensquat", "domains", "stats", "settings", "usage", "logs")

_TRUE_STRINGS = {"true", "on", "yes", "1"}
_FALSE_STRINGS = {"false", "off", "no", "0"}


def _parse_flag(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise InvalidSettingError(f"{name} must be true or false, got {value!r}")


def _dedupe_normalized(domains: Iterable[str]) -> List[str]:
    seen = set()
    result = []
    for domain in domains:
        domain = normalize_domain(domain)
        if domain and domain not in seen:
            seen.add(domain)
            result.append(domain)
    return result


class PhishingMonitor:
    """Dual-feed phishing domain monitor."""

    def __init__(
        self,
        store,
        scheduler,
        lookup_client,
        email_sender=None,
        certstream_url: str = CERTSTREAM_URL,
        dashboard_url: str = "",
        default_alert_email: Optional[str] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], None] = time.sleep,
        certstream_client_factory=None,
        certstream_spawn=None,
        alert_executor=None,
    ):
        """
        Args:
            store: Persistence collaborator with ``load(key, default)``/``save(key, blob)``/``remove(key)``
            scheduler: Timer service with ``call_later`` and ``call_every``
            lookup_client: Opensquat client with ``lookup(domain) -> list[str]``
            email_sender: Alert delivery collaborator with ``send(destination, fields) -> bool``
            certstream_url: Websocket URL for the push feed
            dashboard_url: Link included in alert emails
            default_alert_email: Alert destination used when settings have none
            clock: Timezone-aware "now"; its date defines the quota day
            sleep: Pacing sleep for poll passes
            certstream_client_factory: Websocket client factory override
            certstream_spawn: Runner for the blocking websocket loop
            alert_executor: Executor for alert delivery
        """
        self.store = store
        self.scheduler = scheduler
        self.clock = clock or (lambda: datetime.now(timezone.utc))

        self._lock = threading.RLock()
        self._listeners: List[Callable[[str, Any], None]] = []

        self._load_state(default_alert_email)
        self.stats = Stats(started_at=self.clock())
        self.certstream_paused = False

        self.certstream = CertstreamFeed(
            on_record=self.handle_certificate,
            scheduler=scheduler,
            url=certstream_url,
            on_state_change=self._on_certstream_state,
            client_factory=certstream_client_factory,
            spawn=certstream_spawn,
        )
        self.poll_feed = PollFeedChannel(
            client=lookup_client,
            scheduler=scheduler,
            host=self,
            sleep=sleep,
            clock=self.clock,
            on_status=self._on_poll_status,
        )
        self.alerts = AlertDispatcher(
            sender=email_sender,
            settings_provider=lambda: self.settings,
            dashboard_url=dashboard_url,
            executor=alert_executor,
            on_delivered=self._on_alert_delivered,
            clock=self.clock,
        )

    @classmethod
    def from_config(cls, config, scheduler, email_sender=None, **kwargs) -> "PhishingMonitor":
        tz = ZoneInfo(config.timezone)
        return cls(
            store=JsonFileStore(config.data_dir),
            scheduler=scheduler,
            lookup_client=OpensquatClient(config.opensquat_api_url, timeout=config.opensquat_timeout),
            email_sender=email_sender,
            certstream_url=config.certstream_url,
            dashboard_url=config.dashboard_url,
            default_alert_email=config.alert_email,
            clock=lambda: datetime.now(tz),
            **kwargs,
        )

    # ------------------------------------------------------------------ state

    def _load_state(self, default_alert_email: Optional[str]) -> None:
        domains = self.store.load(KEY_DOMAINS, []) or []
        self.domains: List[str] = _dedupe_normalized(d for d in domains if isinstance(d, str))
        self.settings = Settings.from_dict(self.store.load(KEY_SETTINGS, {}) or {})
        if not self.settings.alert_email and default_alert_email:
            self.settings.alert_email = default_alert_email

        try:
            self.threat_store = ThreatStore.from_list(self.store.load(KEY_THREATS, []) or [])
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Discarding unreadable threat history: {e}")
            self.threat_store = ThreatStore()

        self.certstream_buffer = self._load_buffer(KEY_CERTSTREAM)
        self.opensquat_buffer = self._load_buffer(KEY_OPENSQUAT)
        self.usage = UsageCounter.from_dict(self.store.load(KEY_USAGE, {}) or {})

    def _load_buffer(self, key: str) -> FeedBuffer:
        try:
            return FeedBuffer.from_list(self.store.load(key, []) or [])
        except (KeyError, ValueError, TypeError) as e:
            logger.error(f"Discarding unreadable feed data '{key}': {e}")
            return FeedBuffer()

    def _save(self, *keys: str) -> None:
        blobs = {
            KEY_DOMAINS: lambda: list(self.domains),
            KEY_SETTINGS: self.settings.to_dict,
            KEY_THREATS: self.threat_store.to_list,
            KEY_USAGE: self.usage.to_dict,
            KEY_CERTSTREAM: self.certstream_buffer.to_list,
            KEY_OPENSQUAT: self.opensquat_buffer.to_list,
        }
        for key in keys:
            self.store.save(key, blobs[key]())

    # -------------------------------------------------------------- listeners

    def add_listener(self, callback: Callable[[str, Any], None]) -> None:
        """Register a presentation callback ``callback(event, payload)``."""
        self._listeners.append(callback)

    def _emit(self, event: str, payload: Any = None) -> None:
        for callback in list(self._listeners):
            try:
                callback(event, payload)
            except Exception as e:
                logger.error(f"Listener failed on '{event}': {e}")

    def _on_certstream_state(self, state: ConnectionState) -> None:
        self._emit("connection_status", {"feed": ThreatSource.CERTSTREAM.value, "status": state.value})

    def _on_poll_status(self, status: PollStatus) -> None:
        self._emit("connection_status", {"feed": ThreatSource.OPENSQUAT.value, "status": status.value})

    def _on_alert_delivered(self, threat: Threat) -> None:
        with self._lock:
            self.stats.alerts_sent += 1
        self._emit("stats", self.stats_snapshot())

    # -------------------------------------------------------------- lifecycle

    def start(self) -> None:
        with self._lock:
            if self.usage.roll_over(self.clock().date()):
                self._save(KEY_USAGE)
        logger.info(f"Starting phishing monitor for {len(self.domains)} domains")
        self.certstream.start()
        self._sync_poll_schedule()

    def shutdown(self) -> None:
        self.certstream.stop()
        self.poll_feed.stop()
        self.alerts.shutdown(wait=True)
        logger.info("Phishing monitor stopped")

    def _sync_poll_schedule(self, restart: bool = False) -> None:
        with self._lock:
            should_run = self.settings.opensquat_enabled and bool(self.domains)
            interval = self.settings.opensquat_interval
        if not should_run:
            if self.poll_feed.scheduled:
                self.poll_feed.stop()
        elif restart or not self.poll_feed.scheduled:
            self.poll_feed.start(interval)

    # ---------------------------------------------------------------- threats

    def _new_threat(self, domain: str, source: ThreatSource, match: MatchResult, level: ThreatLevel,
                    evidence: Optional[Dict[str, Any]]) -> Threat:
        now = self.clock()
        return Threat(
            id=new_threat_id(now),
            domain=domain,
            source=source,
            detected_at=now,
            threat_level=level,
            score=match.score,
            matched_keyword=match.keyword,
            match_type=match.match_type,
            raw_evidence=evidence,
        )

    def _record_threat(self, threat: Threat) -> None:
        self.threat_store.record(threat)
        self.stats.total_threats += 1
        logger.warning(
            f"{threat.threat_level.value.upper()} threat detected from {threat.source.value}: {threat.domain}"
        )

    def _publish(self, records: List[FeedRecord], threats: List[Threat]) -> None:
        for record in records:
            self._emit("feed_record", record)
        for threat in threats:
            self._emit("threat", threat)
            self.alerts.maybe_alert(threat)
        self._emit("stats", self.stats_snapshot())

    # ------------------------------------------------------------- push feed

    def handle_certificate(self, message: dict) -> None:
        """Process one Certstream message (the push feed's record callback)."""
        if not isinstance(message, dict) or message.get("message_type") != "certificate_update":
            return

        with self._lock:
            if self.certstream_paused or not self.settings.certstream_filtering:
                self.stats.certs_processed += 1
                return
            watchlist = list(self.domains)
            threshold = self.settings.similarity_threshold

        raw_domains = extract_domains_from_cert(message)
        if raw_domains is None:
            logger.debug("Dropping malformed certificate record")
            return

        matches = []
        for domain in _dedupe_normalized(raw_domains):
            result = match_domain(domain, watchlist, threshold)
            if result.matched:
                matches.append((domain, result))

        records, threats = [], []
        with self._lock:
            self.stats.certs_processed += 1
            if not matches:
                return
            evidence = summarize_certificate(message)
            now = self.clock()
            for domain, result in matches:
                self.stats.certstream_matched += 1
                level = classify(result.score)
                record = FeedRecord(
                    domain=domain,
                    source=ThreatSource.CERTSTREAM,
                    keyword=result.keyword,
                    score=result.score,
                    match_type=result.match_type,
                    threat_level=level,
                    timestamp=now,
                    evidence=evidence,
                )
                self.certstream_buffer.add(record)
                records.append(record)
                if is_reportable(level):
                    threat = self._new_threat(domain, ThreatSource.CERTSTREAM, result, level, evidence)
                    self._record_threat(threat)
                    threats.append(threat)
            self._save(KEY_CERTSTREAM)
            if threats:
                self._save(KEY_THREATS)

        self._publish(records, threats)

    # ------------------------------------------------- poll feed host methods

    def poll_targets(self) -> List[str]:
        with self._lock:
            if not self.settings.opensquat_enabled:
                return []
            return list(self.domains)

    def quota_available(self) -> bool:
        with self._lock:
            if self.usage.roll_over(self.clock().date()):
                logger.info("Opensquat daily usage reset")
                self._save(KEY_USAGE)
            return not self.usage.exhausted

    def handle_lookup_result(self, entry: str, candidates: List[str]) -> None:
        """Score lookup candidates against the originating entry and record them."""
        scored = [(domain, similarity(domain, entry)) for domain in _dedupe_normalized(candidates)]

        records, threats = [], []
        with self._lock:
            self.usage.increment()
            now = self.clock()
            for domain, score in scored:
                if self.threat_store.find_duplicate(domain, ThreatSource.OPENSQUAT):
                    continue
                self.stats.opensquat_found += 1
                level = classify(score)
                evidence = {"original_domain": entry}
                record = FeedRecord(
                    domain=domain,
                    source=ThreatSource.OPENSQUAT,
                    keyword=entry,
                    score=score,
                    match_type=MatchType.SIMILAR,
                    threat_level=level,
                    timestamp=now,
                    evidence=evidence,
                )
                self.opensquat_buffer.add(record)
                records.append(record)
                if is_reportable(level):
                    match = MatchResult(matched=True, score=score, match_type=MatchType.SIMILAR, keyword=entry)
                    threat = self._new_threat(domain, ThreatSource.OPENSQUAT, match, level, evidence)
                    self._record_threat(threat)
                    threats.append(threat)
            self._save(KEY_USAGE, KEY_OPENSQUAT)
            if threats:
                self._save(KEY_THREATS)

        self._emit("usage", self.usage_snapshot())
        self._publish(records, threats)

    def finish_pass(self) -> None:
        with self._lock:
            self.usage.last_check = self.clock().isoformat()
            self._save(KEY_USAGE)
        self._emit("usage", self.usage_snapshot())

    # ------------------------------------------------------ operator commands

    def add_domain(self, domain: str) -> str:
        """Add a watch-list entry. Raises InvalidDomainError or DuplicateDomainError."""
        try:
            normalized = validate_watch_entry(domain)
        except ValueError:
            logger.warning(f"Invalid domain format: {domain}")
            raise
        with self._lock:
            if normalized in self.domains:
                logger.warning(f"Domain already monitored: {normalized}")
                raise DuplicateDomainError(f"Domain already monitored: {normalized}")
            self.domains.append(normalized)
            self._save(KEY_DOMAINS)
            domains = list(self.domains)
        logger.info(f"Added domain to monitoring: {normalized}")
        self._emit("domains", domains)
        self._sync_poll_schedule()
        return normalized

    def remove_domain(self, domain: str) -> bool:
        normalized = normalize_domain(domain or "")
        with self._lock:
            if normalized not in self.domains:
                return False
            self.domains.remove(normalized)
            self._save(KEY_DOMAINS)
            domains = list(self.domains)
        logger.info(f"Removed domain from monitoring: {normalized}")
        self._emit("domains", domains)
        self._sync_poll_schedule()
        return True

    def list_domains(self) -> List[str]:
        with self._lock:
            return list(self.domains)

    def update_settings(self, **changes) -> Settings:
        """Validate and apply settings changes. Feed scheduling follows on the next decision."""
        known = {f.name for f in fields(Settings)}
        unknown = set(changes) - known
        if unknown:
            raise InvalidSettingError(f"Unknown settings: {', '.join(sorted(unknown))}")

        if "similarity_threshold" in changes:
            try:
                threshold = float(changes["similarity_threshold"])
            except (TypeError, ValueError):
                raise InvalidSettingError("similarity_threshold must be a number") from None
            if not 0.0 <= threshold <= 1.0:
                raise InvalidSettingError("similarity_threshold must be between 0 and 1")
            changes["similarity_threshold"] = threshold

        if "opensquat_interval" in changes:
            try:
                interval = int(changes["opensquat_interval"])
            except (TypeError, ValueError):
                raise InvalidSettingError("opensquat_interval must be a whole number of minutes") from None
            if interval < 1:
                raise InvalidSettingError("opensquat_interval must be at least 1 minute")
            changes["opensquat_interval"] = interval

        for name in ("auto_alerts", "certstream_filtering", "opensquat_enabled"):
            if name in changes:
                changes[name] = _parse_flag(name, changes[name])

        if "alert_email" in changes:
            changes["alert_email"] = (changes["alert_email"] or "").strip() or None

        with self._lock:
            reschedule = any(
                name in changes and changes[name] != getattr(self.settings, name)
                for name in ("opensquat_enabled", "opensquat_interval")
            )
            for name, value in changes.items():
                setattr(self.settings, name, value)
            self._save(KEY_SETTINGS)
            settings = Settings.from_dict(self.settings.to_dict())

        logger.info(f"Settings updated: {', '.join(sorted(changes))}")
        self._emit("settings", settings)
        if reschedule:
            self._sync_poll_schedule(restart=True)
        return settings

    def pause_certstream(self) -> None:
        with self._lock:
            self.certstream_paused = True
        logger.info("Certstream feed paused")

    def resume_certstream(self) -> None:
        with self._lock:
            self.certstream_paused = False
        logger.info("Certstream feed resumed")

    def toggle_certstream(self) -> bool:
        """Flip the pause state. Returns True when the feed is now paused."""
        if self.certstream_paused:
            self.resume_certstream()
        else:
            self.pause_certstream()
        return self.certstream_paused

    def clear_certstream_feed(self) -> None:
        with self._lock:
            self.certstream_buffer.clear()
            self._save(KEY_CERTSTREAM)
        logger.info("Certstream feed cleared")

    def clear_opensquat_feed(self) -> None:
        with self._lock:
            self.opensquat_buffer.clear()
            self._save(KEY_OPENSQUAT)
        logger.info("Opensquat feed cleared")

    def manual_poll(self) -> PollPassSummary:
        """Run a lookup pass now, under the same quota rules as a scheduled one."""
        if not self.quota_available():
            logger.warning("Cannot perform manual check: daily limit reached")
            return PollPassSummary(quota_exhausted=True)
        return self.poll_feed.run_pass()

    def reset_usage(self) -> None:
        """Operator override: zero today's opensquat usage."""
        with self._lock:
            self.usage.count = 0
            self.usage.date = self.clock().date().isoformat()
            self._save(KEY_USAGE)
        logger.info("Opensquat usage counter reset")
        self._emit("usage", self.usage_snapshot())

    def dismiss_threat(self, threat_id: str) -> bool:
        with self._lock:
            changed = self.threat_store.dismiss(threat_id)
            if changed:
                self._save(KEY_THREATS)
        return changed

    def threats(self, filter_name: str = "all") -> ThreatView:
        """Active threats, optionally limited to high severity or one source."""
        if filter_name not in THREAT_FILTERS:
            raise ValueError(f"Unknown threat filter '{filter_name}', expected one of {', '.join(THREAT_FILTERS)}")

        def predicate(threat: Threat) -> bool:
            if not threat.is_active:
                return False
            if filter_name == "high":
                return threat.threat_level is ThreatLevel.HIGH
            if filter_name != "all":
                return threat.source.value == filter_name
            return True

        with self._lock:
            return self.threat_store.filter(predicate)

    def clear_all_data(self) -> None:
        """Forget watch-list, history, feed buffers, stats and usage. Settings are kept."""
        with self._lock:
            for key in STORAGE_KEYS:
                if key != KEY_SETTINGS:
                    self.store.remove(key)
            self.domains = []
            self.threat_store.clear()
            self.certstream_buffer.clear()
            self.opensquat_buffer.clear()
            self.stats = Stats(started_at=self.stats.started_at)
            self.usage = UsageCounter(date=self.clock().date().isoformat())
        self._sync_poll_schedule()
        logger.warning("All data cleared")
        self._emit("stats", self.stats_snapshot())

    def send_test_alert(self) -> bool:
        return self.alerts.send_test_alert()

    # -------------------------------------------------------------- snapshots

    def stats_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            data = self.stats.to_dict(now=self.clock())
            data["threats_by_source"] = {
                source.value: self.threat_store.counts.get(source.value, 0) for source in ThreatSource
            }
            return data

    def usage_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            if self.usage.roll_over(self.clock().date()):
                self._save(KEY_USAGE)
            data = self.usage.to_dict()
            data["quota"] = self.usage.quota
            data["remaining"] = self.usage.remaining
        next_run = self.poll_feed.next_run_at
        data["next_check"] = next_run.isoformat() if next_run else None
        data["status"] = self.poll_feed.status.value
        return data

    def status_snapshot(self) -> Dict[str, Any]:
        with self._lock:
            email_ready = bool(self.alerts.sender is not None and self.settings.alert_email)
            paused = self.certstream_paused
        return {
            "certstream": self.certstream.state.value,
            "certstream_paused": paused,
            "opensquat": self.poll_feed.status.value,
            "email_configured": email_ready,
        }

    def export_snapshot(self, section: Optional[str] = None) -> Any:
        """Serializable copy of the monitor's data, or one section of it."""
        if section is not None and section not in EXPORT_SECTIONS:
            raise ValueError(f"Unknown export section '{section}', expected one of {', '.join(EXPORT_SECTIONS)}")

        with self._lock:
            snapshot = {
                "threats": self.threat_store.to_list(),
                "certstream": self.certstream_buffer.to_list(),
                "opensquat": self.opensquat_buffer.to_list(),
                "domains": list(self.domains),
                "stats": self.stats_snapshot(),
                "settings": self.settings.to_dict(),
                "usage": self.usage_snapshot(),
                "logs": get_activity_handler().entries(),
                "export_time": self.clock().isoformat(),
            }
        if section is not None:
            return snapshot[section]
        return snapshot
