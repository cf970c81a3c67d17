"""Alert trigger for newly recorded threats.

Delivery runs on a small thread pool so recording a threat never waits on
SMTP. Failed deliveries are logged and not retried; the threat stays
recorded either way.
"""

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from .classifier import is_reportable
from .models import Settings, Threat

logger = logging.getLogger(__name__)

TEST_ALERT_FIELDS = {
    "threat_domain": "test-phishing-domain.com",
    "source": "test",
    "matched_keyword": "test-keyword",
    "threat_level": "TEST ALERT",
    "similarity_score": "95%",
}


def _format_time(value: datetime) -> str:
    return value.strftime('%Y-%m-%d %I:%M %p %Z').strip()


def build_alert_fields(threat: Threat, destination: str, dashboard_url: str = "") -> Dict[str, Any]:
    """Template fields handed to the delivery collaborator."""
    return {
        "to_email": destination,
        "threat_domain": threat.domain,
        "source": threat.source.value,
        "matched_keyword": threat.matched_keyword,
        "threat_level": threat.threat_level.value.upper(),
        "similarity_score": f"{round(threat.score * 100)}%",
        "detection_time": _format_time(threat.detected_at),
        "dashboard_url": dashboard_url,
    }


class AlertDispatcher:
    """Decides whether a threat triggers an email and hands it off."""

    def __init__(
        self,
        sender,
        settings_provider: Callable[[], Settings],
        dashboard_url: str = "",
        executor: Optional[ThreadPoolExecutor] = None,
        on_delivered: Optional[Callable[[Threat], None]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Args:
            sender: Delivery collaborator with ``send(destination, fields) -> bool``, or None
            settings_provider: Returns the current Settings (read at trigger time)
            dashboard_url: Link included in every alert
            executor: Pool used for delivery (a 2-worker pool by default)
            on_delivered: Called with the threat after a successful send
            clock: Time source for the test alert
        """
        self.sender = sender
        self.settings_provider = settings_provider
        self.dashboard_url = dashboard_url
        self.executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="alert")
        self.on_delivered = on_delivered
        self.clock = clock or datetime.now

    def _destination(self) -> Optional[str]:
        if self.sender is None:
            return None
        return self.settings_provider().alert_email or None

    def maybe_alert(self, threat: Threat) -> Optional[Future]:
        """Submit an alert for the threat if alerting applies. Returns the delivery future."""
        if not self.settings_provider().auto_alerts:
            return None
        destination = self._destination()
        if not destination:
            return None
        if not is_reportable(threat.threat_level):
            logger.warning(f"Refusing to alert on non-reportable threat: {threat.domain} ({threat.threat_level.value})")
            return None

        fields = build_alert_fields(threat, destination, self.dashboard_url)
        try:
            return self.executor.submit(self._deliver, threat, destination, fields)
        except RuntimeError as e:
            # Executor already shut down; the threat stays recorded
            logger.warning(f"Alert for {threat.domain} not sent, dispatcher is shut down: {e}")
            return None

    def _deliver(self, threat: Threat, destination: str, fields: Dict[str, Any]) -> bool:
        try:
            delivered = bool(self.sender.send(destination, fields))
        except Exception as e:
            logger.error(f"Alert delivery raised for {threat.domain}: {e}")
            delivered = False

        if not delivered:
            logger.error(f"Failed to send email alert for {threat.domain}")
            return False

        logger.info(f"Email alert sent for {threat.domain}")
        if self.on_delivered:
            self.on_delivered(threat)
        return True

    def send_test_alert(self) -> bool:
        """Send fixed placeholder fields to the configured destination, synchronously."""
        destination = self._destination()
        if not destination:
            logger.error("Email settings incomplete")
            return False

        fields = {
            "to_email": destination,
            **TEST_ALERT_FIELDS,
            "detection_time": _format_time(self.clock()),
            "dashboard_url": self.dashboard_url,
        }
        try:
            delivered = bool(self.sender.send(destination, fields))
        except Exception as e:
            logger.error(f"Test email raised: {e}")
            delivered = False

        if delivered:
            logger.info("Test email sent successfully")
        else:
            logger.error("Test email failed")
        return delivered

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)
