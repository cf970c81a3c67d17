"""
Tests for the phishing monitor orchestrator

Covers both feed paths end to end (certificate message or lookup result in,
threat and alert out), the operator commands, quota discipline and
persistence across restarts. All collaborators are the fakes in conftest.
"""

from concurrent.futures import ThreadPoolExecutor

import pytest

from conftest import cert_message, lookup_failure
from services.certstream_feed import ConnectionState
from src.components.phishing_monitor import (
    DuplicateDomainError, InvalidDomainError, InvalidSettingError, MatchType, ThreatLevel, ThreatSource,
)
from src.components.phishing_monitor.orchestrator import EXPORT_SECTIONS


@pytest.fixture
def watched(monitor):
    monitor.add_domain("paypal.com")
    return monitor


@pytest.fixture
def events(monitor):
    received = []
    monitor.add_listener(lambda event, payload: received.append((event, payload)))
    return received


class TestWatchList:

    def test_add_normalizes(self, monitor):
        assert monitor.add_domain("  *.PayPal.COM ") == "paypal.com"
        assert monitor.list_domains() == ["paypal.com"]

    def test_add_duplicate_is_rejected(self, watched):
        with pytest.raises(DuplicateDomainError):
            watched.add_domain("PAYPAL.com")
        assert watched.list_domains() == ["paypal.com"]

    def test_add_invalid_is_rejected(self, monitor):
        with pytest.raises(InvalidDomainError):
            monitor.add_domain("not a domain!")
        assert monitor.list_domains() == []

    def test_remove(self, watched):
        assert watched.remove_domain("PayPal.com")
        assert watched.list_domains() == []

    def test_remove_unknown(self, watched):
        assert not watched.remove_domain("example.com")

    def test_first_domain_schedules_lookups(self, monitor, scheduler):
        assert not scheduler.pending()
        monitor.add_domain("paypal.com")
        assert {t.name for t in scheduler.pending()} == {"opensquat-warmup", "opensquat-interval"}

    def test_removing_last_domain_stops_lookups(self, watched, scheduler):
        watched.remove_domain("paypal.com")
        assert not scheduler.pending()

    def test_domains_event(self, monitor, events):
        monitor.add_domain("paypal.com")
        assert ("domains", ["paypal.com"]) in events


class TestCertificatePath:

    def test_similar_domain_becomes_threat(self, watched, email_sender):
        watched.handle_certificate(cert_message("paypa1.com", "*.paypa1.com"))

        threats = list(watched.threats())
        assert len(threats) == 1
        threat = threats[0]
        assert threat.domain == "paypa1.com"
        assert threat.source is ThreatSource.CERTSTREAM
        assert threat.threat_level is ThreatLevel.HIGH
        assert threat.match_type is MatchType.SIMILAR
        assert threat.matched_keyword == "paypal.com"
        assert threat.raw_evidence["issuer"] == "Let's Encrypt"

        assert len(email_sender.sent) == 1
        stats = watched.stats_snapshot()
        assert stats["certs_processed"] == 1
        assert stats["certstream_matched"] == 1
        assert stats["alerts_sent"] == 1

    def test_medium_match(self, watched):
        watched.handle_certificate(cert_message("paypall.co"))
        assert list(watched.threats())[0].threat_level is ThreatLevel.MEDIUM

    def test_low_match_is_buffered_not_recorded(self, watched, email_sender):
        watched.update_settings(similarity_threshold=0.5)
        watched.handle_certificate(cert_message("paypal-secure.com"))

        assert len(watched.certstream_buffer) == 1
        assert list(watched.certstream_buffer)[0].threat_level is ThreatLevel.LOW
        assert len(watched.threats()) == 0
        assert email_sender.sent == []

    def test_unrelated_certificate(self, watched):
        watched.handle_certificate(cert_message("example.org"))
        assert watched.stats_snapshot()["certs_processed"] == 1
        assert len(watched.certstream_buffer) == 0

    def test_non_certificate_messages_ignored(self, watched):
        watched.handle_certificate({"message_type": "heartbeat"})
        assert watched.stats_snapshot()["certs_processed"] == 0

    def test_malformed_certificate_dropped(self, watched):
        message = cert_message("paypa1.com")
        del message["data"]["leaf_cert"]["subject"]
        watched.handle_certificate(message)
        assert watched.stats_snapshot()["certs_processed"] == 0
        assert len(watched.threats()) == 0

    def test_string_san_list_is_malformed(self, watched, email_sender):
        message = cert_message("paypa1.com")
        message["data"]["leaf_cert"]["all_domains"] = "evil.net"
        watched.handle_certificate(message)

        assert len(watched.threats()) == 0
        assert len(watched.certstream_buffer) == 0
        assert email_sender.sent == []

    @pytest.mark.parametrize("field, value", [
        ("issuer", "Let's Encrypt"),
        ("issuer", None),
        ("source", "Google Argon"),
    ])
    def test_odd_evidence_fields_keep_the_detection(self, watched, field, value):
        message = cert_message("paypa1.com")
        if field == "issuer":
            message["data"]["leaf_cert"]["issuer"] = value
        else:
            message["data"]["source"] = value
        watched.handle_certificate(message)

        threats = list(watched.threats())
        assert len(threats) == 1
        assert threats[0].domain == "paypa1.com"

    def test_paused_feed_counts_but_skips_matching(self, watched):
        watched.pause_certstream()
        watched.handle_certificate(cert_message("paypa1.com"))
        assert watched.stats_snapshot()["certs_processed"] == 1
        assert len(watched.threats()) == 0

        watched.resume_certstream()
        watched.handle_certificate(cert_message("paypa1.com"))
        assert len(watched.threats()) == 1

    def test_toggle(self, watched):
        assert watched.toggle_certstream() is True
        assert watched.toggle_certstream() is False

    def test_clear_feed_buffers(self, watched, lookup_client):
        watched.handle_certificate(cert_message("paypa1.com"))
        lookup_client.responses["paypal.com"] = ["paypal-login.com"]
        watched.manual_poll()

        watched.clear_certstream_feed()
        assert len(watched.certstream_buffer) == 0
        assert len(watched.opensquat_buffer) == 1
        watched.clear_opensquat_feed()
        assert len(watched.opensquat_buffer) == 0
        assert len(watched.threats()) == 1

    def test_filtering_disabled(self, watched):
        watched.update_settings(certstream_filtering=False)
        watched.handle_certificate(cert_message("paypa1.com"))
        assert len(watched.threats()) == 0

    def test_threshold_change_applies_to_next_message(self, watched):
        watched.update_settings(similarity_threshold=0.95)
        watched.handle_certificate(cert_message("paypa1.com"))
        assert len(watched.threats()) == 0

    def test_repeat_certificates_are_separate_detections(self, watched):
        watched.handle_certificate(cert_message("paypa1.com"))
        watched.handle_certificate(cert_message("paypa1.com"))
        assert len(watched.threats()) == 2

    def test_threat_event_emitted(self, watched, events):
        watched.handle_certificate(cert_message("paypa1.com"))
        names = [name for name, _ in events]
        assert "feed_record" in names
        assert "threat" in names
        assert names[-1] == "stats"


class TestLookupPath:

    def test_candidates_scored_against_entry(self, watched, lookup_client):
        lookup_client.responses["paypal.com"] = ["PayPa1.com", "paypal-secure.com", "xyz.net"]
        summary = watched.manual_poll()

        assert summary.succeeded == 1
        threats = list(watched.threats(ThreatSource.OPENSQUAT.value))
        assert [t.domain for t in threats] == ["paypa1.com"]
        assert threats[0].raw_evidence == {"original_domain": "paypal.com"}
        assert threats[0].match_type is MatchType.SIMILAR
        assert len(watched.opensquat_buffer) == 3
        assert watched.stats_snapshot()["opensquat_found"] == 3

    def test_same_source_duplicates_not_recorded(self, watched, lookup_client):
        lookup_client.responses["paypal.com"] = ["paypa1.com"]
        watched.manual_poll()
        watched.manual_poll()
        assert len(watched.threats()) == 1

    def test_cross_source_duplicates_both_recorded(self, watched, lookup_client):
        watched.handle_certificate(cert_message("paypa1.com"))
        lookup_client.responses["paypal.com"] = ["paypa1.com"]
        watched.manual_poll()

        sources = sorted(t.source.value for t in watched.threats())
        assert sources == ["certstream", "opensquat"]

    def test_quota_stops_requests(self, watched, lookup_client):
        for _ in range(5):
            watched.manual_poll()
        summary = watched.manual_poll()

        assert summary.quota_exhausted
        assert len(lookup_client.calls) == 5
        assert watched.usage_snapshot()["remaining"] == 0

    def test_quota_rolls_over_at_midnight(self, watched, lookup_client, clock):
        for _ in range(5):
            watched.manual_poll()
        clock.advance(days=1)
        watched.manual_poll()

        assert len(lookup_client.calls) == 6
        assert watched.usage_snapshot()["count"] == 1

    def test_failed_lookup_does_not_use_quota(self, watched, lookup_client):
        lookup_client.responses["paypal.com"] = lookup_failure("paypal.com")
        summary = watched.manual_poll()
        assert summary.failed == 1
        assert watched.usage_snapshot()["count"] == 0

    def test_usage_snapshot_rolls_over_without_a_lookup(self, watched, clock):
        for _ in range(5):
            watched.manual_poll()
        clock.advance(days=1)

        usage = watched.usage_snapshot()
        assert usage["count"] == 0
        assert usage["remaining"] == 5
        assert usage["date"] == "2026-10-20"

    def test_reset_usage(self, watched):
        for _ in range(5):
            watched.manual_poll()
        watched.reset_usage()
        assert watched.usage_snapshot()["remaining"] == 5

    def test_disabled_lookups_make_no_requests(self, watched, lookup_client):
        watched.update_settings(opensquat_enabled=False)
        watched.manual_poll()
        assert lookup_client.calls == []

    def test_scheduled_pass_after_warmup(self, watched, lookup_client, scheduler):
        scheduler.advance(30)
        assert lookup_client.calls == ["paypal.com"]
        assert watched.usage_snapshot()["last_check"] is not None

    def test_multiple_entries_are_paced(self, watched, sleeps):
        watched.add_domain("acme.com")
        watched.manual_poll()
        assert sleeps == [1]


class TestSettings:

    def test_interval_change_reschedules(self, watched, scheduler):
        watched.update_settings(opensquat_interval=45)
        interval_tasks = scheduler.pending("opensquat-interval")
        assert len(interval_tasks) == 1
        assert interval_tasks[0].interval == 45 * 60

    def test_disable_cancels_schedule(self, watched, scheduler):
        watched.update_settings(opensquat_enabled=False)
        assert not scheduler.pending()
        watched.update_settings(opensquat_enabled=True)
        assert len(scheduler.pending("opensquat-warmup")) == 1

    @pytest.mark.parametrize("changes", [
        {"similarity_threshold": 1.5},
        {"similarity_threshold": "high"},
        {"opensquat_interval": 0},
        {"not_a_setting": True},
        {"auto_alerts": "maybe"},
        {"opensquat_enabled": 2},
        {"certstream_filtering": None},
    ])
    def test_invalid_changes_rejected(self, monitor, changes):
        with pytest.raises(InvalidSettingError):
            monitor.update_settings(**changes)
        assert monitor.settings.similarity_threshold == 0.75

    @pytest.mark.parametrize("raw, expected", [
        ("off", False), ("False", False), ("0", False), (0, False),
        ("on", True), ("true", True), (1, True), (True, True),
    ])
    def test_flag_strings(self, monitor, raw, expected):
        monitor.update_settings(auto_alerts=not expected)
        assert monitor.update_settings(auto_alerts=raw).auto_alerts is expected

    def test_rejected_flag_leaves_settings_untouched(self, monitor):
        with pytest.raises(InvalidSettingError):
            monitor.update_settings(opensquat_interval=30, auto_alerts="maybe")
        assert monitor.settings.opensquat_interval == 20
        assert monitor.settings.auto_alerts is True

    def test_default_alert_email_applied(self, monitor):
        assert monitor.settings.alert_email == "soc@example.com"

    def test_auto_alerts_off(self, watched, email_sender):
        watched.update_settings(auto_alerts=False)
        watched.handle_certificate(cert_message("paypa1.com"))
        assert len(watched.threats()) == 1
        assert email_sender.sent == []


class TestThreatCommands:

    def test_dismiss_hides_threat(self, watched):
        watched.handle_certificate(cert_message("paypa1.com"))
        threat = list(watched.threats())[0]

        assert watched.dismiss_threat(threat.id)
        assert len(watched.threats()) == 0
        assert not watched.dismiss_threat(threat.id)
        assert not watched.dismiss_threat("unknown-id")

    def test_filters(self, watched, lookup_client):
        watched.handle_certificate(cert_message("paypall.co"))
        lookup_client.responses["paypal.com"] = ["paypa1.com"]
        watched.manual_poll()

        assert len(watched.threats("all")) == 2
        assert [t.domain for t in watched.threats("high")] == ["paypa1.com"]
        assert [t.domain for t in watched.threats("certstream")] == ["paypall.co"]

    def test_unknown_filter(self, monitor):
        with pytest.raises(ValueError):
            monitor.threats("critical")

    def test_stats_by_source(self, watched):
        watched.handle_certificate(cert_message("paypa1.com"))
        assert watched.stats_snapshot()["threats_by_source"] == {"certstream": 1, "opensquat": 0}


class TestLifecycle:

    def test_start_connects_and_schedules(self, watched, certstream_factory, scheduler, events):
        watched.start()
        assert watched.certstream.state is ConnectionState.CONNECTING
        assert len(scheduler.pending("opensquat-interval")) == 1

        certstream_factory.latest.on_open()
        assert watched.status_snapshot()["certstream"] == "connected"
        assert ("connection_status", {"feed": "certstream", "status": "connected"}) in events

    def test_certificates_flow_from_the_socket(self, watched, certstream_factory):
        watched.start()
        certstream_factory.latest.message_callback(cert_message("paypa1.com"), None)
        assert len(watched.threats()) == 1

    def test_shutdown(self, watched, scheduler):
        watched.start()
        watched.shutdown()
        assert watched.certstream.state is ConnectionState.DISCONNECTED
        assert not scheduler.pending()

    def test_status_snapshot(self, monitor):
        status = monitor.status_snapshot()
        assert status["certstream"] == "disconnected"
        assert status["opensquat"] == "disabled"
        assert status["email_configured"]


class TestPersistence:

    def test_state_survives_restart(self, make_monitor, lookup_client):
        first = make_monitor()
        first.add_domain("paypal.com")
        first.update_settings(opensquat_interval=30)
        first.handle_certificate(cert_message("paypa1.com"))
        lookup_client.responses["paypal.com"] = ["paypal-login.com"]
        first.manual_poll()

        second = make_monitor()
        assert second.list_domains() == ["paypal.com"]
        assert second.settings.opensquat_interval == 30
        assert len(second.threat_store) == len(first.threat_store)
        assert second.usage_snapshot()["count"] == 1
        assert len(second.certstream_buffer) == 1

    def test_dismissal_persists(self, make_monitor):
        first = make_monitor()
        first.add_domain("paypal.com")
        first.handle_certificate(cert_message("paypa1.com"))
        first.dismiss_threat(list(first.threats())[0].id)

        assert len(make_monitor().threats()) == 0

    def test_clear_all_keeps_settings(self, make_monitor, scheduler):
        first = make_monitor()
        first.add_domain("paypal.com")
        first.update_settings(opensquat_interval=30)
        first.handle_certificate(cert_message("paypa1.com"))
        first.clear_all_data()

        assert first.list_domains() == []
        assert len(first.threat_store) == 0
        assert len(first.certstream_buffer) == 0
        assert first.stats_snapshot()["total_threats"] == 0
        assert not scheduler.pending()

        second = make_monitor()
        assert second.list_domains() == []
        assert second.settings.opensquat_interval == 30

    def test_corrupt_history_is_discarded(self, store, make_monitor):
        store.save("threat_history", [{"id": "1"}])
        assert len(make_monitor().threat_store) == 0


class TestExport:

    def test_full_snapshot(self, watched):
        watched.handle_certificate(cert_message("paypa1.com"))
        snapshot = watched.export_snapshot()

        for section in EXPORT_SECTIONS:
            assert section in snapshot
        assert snapshot["domains"] == ["paypal.com"]
        assert snapshot["threats"][0]["domain"] == "paypa1.com"
        assert "export_time" in snapshot

    def test_single_section(self, watched):
        assert watched.export_snapshot("domains") == ["paypal.com"]

    def test_unknown_section(self, monitor):
        with pytest.raises(ValueError):
            monitor.export_snapshot("passwords")


def test_test_alert(monitor, email_sender):
    assert monitor.send_test_alert()
    assert email_sender.sent[0][1]["threat_domain"] == "test-phishing-domain.com"


class TestConcurrency:

    def test_feed_writes_are_serialized(self, watched):
        """Certificates and lookup results arriving on many threads lose no updates"""
        events = 40

        def certificate(i):
            watched.handle_certificate(cert_message("paypa1.com"))

        def lookup(i):
            watched.handle_lookup_result("paypal.com", [f"paypal.com{i}"])

        with ThreadPoolExecutor(max_workers=8) as pool:
            futures = [pool.submit(certificate, i) for i in range(events)]
            futures += [pool.submit(lookup, i) for i in range(events)]
            for future in futures:
                future.result()

        stats = watched.stats_snapshot()
        assert stats["certs_processed"] == events
        assert stats["certstream_matched"] == events
        assert stats["opensquat_found"] == events
        assert stats["total_threats"] == 2 * events
        assert stats["alerts_sent"] == 2 * events
        assert len(watched.certstream_buffer) == events
        assert len(watched.opensquat_buffer) == events
        assert len(watched.threat_store) == 2 * events
        assert stats["threats_by_source"] == {"certstream": events, "opensquat": events}

    def test_lookup_pass_finishes_after_shutdown(self, make_monitor, lookup_client):
        """A pass still running at shutdown records its threats and completes"""
        monitor = make_monitor(alert_executor=ThreadPoolExecutor(max_workers=1))
        monitor.add_domain("paypal.com")
        monitor.add_domain("acme.com")
        lookup_client.responses["paypal.com"] = ["paypa1.com"]
        lookup_client.responses["acme.com"] = ["acrne.com"]
        monitor.shutdown()

        summary = monitor.manual_poll()

        assert summary.succeeded == 2
        assert sorted(t.domain for t in monitor.threats()) == ["acrne.com", "paypa1.com"]
        assert monitor.usage_snapshot()["last_check"] is not None
