"""Certstream push feed.

Keeps a live connection to the Certstream websocket and hands every
certificate message to a callback. The connection follows a simple state
machine:

    disconnected -> connecting -> connected -> disconnected -> (5s) -> connecting ...

There is no retry cap: while the feed is enabled it keeps reconnecting on a
fixed 5 second period, so an unreachable endpoint shows up as a feed stuck
in ``disconnected``/``connecting`` rather than as a crash.

Usage:
    from services.certstream_feed import CertstreamFeed
    from src.utils.scheduling import JobScheduler

    feed = CertstreamFeed(on_record=my_handler, scheduler=JobScheduler())
    feed.start()
"""

import json
import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

from certstream.core import CertStreamClient

logger = logging.getLogger(__name__)

CERTSTREAM_URL = "wss://certstream.calidog.io/"
RECONNECT_DELAY_SECONDS = 5
PING_INTERVAL_SECONDS = 15


class ConnectionState(Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


def extract_domains_from_cert(message: dict) -> Optional[list[str]]:
    """Return the SAN list of a certificate_update message.

    Returns None when the message is malformed (no leaf certificate or
    subject), an empty list when the certificate simply has no names.
    """
    try:
        leaf_cert = message["data"]["leaf_cert"]
        if not leaf_cert.get("subject"):
            return None
        all_domains = leaf_cert.get("all_domains") or []
        if not isinstance(all_domains, (list, tuple)):
            return None
        return [d for d in all_domains if isinstance(d, str) and d]
    except (KeyError, TypeError, AttributeError):
        return None


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def summarize_certificate(message: dict) -> dict[str, Any]:
    """Trimmed certificate details kept as threat evidence. Odd field shapes fall back to "Unknown"."""
    cert_data = _as_dict(message.get("data"))
    leaf_cert = _as_dict(cert_data.get("leaf_cert"))
    issuer = _as_dict(leaf_cert.get("issuer"))
    all_domains = leaf_cert.get("all_domains")
    if not isinstance(all_domains, (list, tuple)):
        all_domains = []
    return {
        "issuer": issuer.get("O") or issuer.get("CN") or "Unknown",
        "not_before": leaf_cert.get("not_before"),
        "not_after": leaf_cert.get("not_after"),
        "all_domains": list(all_domains[:10]),  # Limit SANs for readability
        "source": _as_dict(cert_data.get("source")).get("name") or "Unknown",
    }


def _default_client_factory(message_callback, url, on_open, on_error):
    return CertStreamClient(
        message_callback,
        url,
        skip_heartbeats=True,
        on_open=on_open,
        on_error=on_error,
    )


def _spawn_daemon(target: Callable[[], None]) -> None:
    threading.Thread(target=target, name="certstream-feed", daemon=True).start()


class CertstreamFeed:
    """Push channel for certificate transparency events."""

    def __init__(
        self,
        on_record: Callable[[dict], None],
        scheduler,
        url: str = CERTSTREAM_URL,
        reconnect_delay: float = RECONNECT_DELAY_SECONDS,
        on_state_change: Optional[Callable[[ConnectionState], None]] = None,
        client_factory: Optional[Callable[..., Any]] = None,
        spawn: Optional[Callable[[Callable[[], None]], None]] = None,
    ):
        """
        Args:
            on_record: Called with every decoded message from the stream
            scheduler: Object with ``call_later(delay, func)`` for the reconnect timer
            url: Certstream websocket URL
            reconnect_delay: Fixed backoff between a drop and the next attempt
            on_state_change: Called with the new ConnectionState on every transition
            client_factory: Builds the websocket client (defaults to certstream's client)
            spawn: Runs the blocking client loop (defaults to a daemon thread)
        """
        self.on_record = on_record
        self.scheduler = scheduler
        self.url = url
        self.reconnect_delay = reconnect_delay
        self.on_state_change = on_state_change
        self.client_factory = client_factory or _default_client_factory
        self.spawn = spawn or _spawn_daemon

        self._lock = threading.RLock()
        self._state = ConnectionState.DISCONNECTED
        self._enabled = False
        self._client = None
        self._reconnect_task = None
        self.reconnect_attempts = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def enabled(self) -> bool:
        return self._enabled

    def _set_state(self, state: ConnectionState) -> None:
        with self._lock:
            if self._state is state:
                return
            self._state = state
        if self.on_state_change:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error(f"Certstream state listener failed: {e}")

    def start(self) -> None:
        with self._lock:
            if self._enabled:
                return
            self._enabled = True
        logger.info(f"Starting Certstream feed ({self.url})")
        self._connect()

    def stop(self) -> None:
        with self._lock:
            self._enabled = False
            client, self._client = self._client, None
            if self._reconnect_task:
                self._reconnect_task.cancel()
                self._reconnect_task = None
        if client is not None:
            try:
                client.close()
            except Exception as e:
                logger.warning(f"Error closing Certstream connection: {e}")
        self._set_state(ConnectionState.DISCONNECTED)
        logger.info("Certstream feed stopped")

    def _connect(self) -> None:
        with self._lock:
            if not self._enabled or self._state is not ConnectionState.DISCONNECTED:
                return
            self._reconnect_task = None
        self._set_state(ConnectionState.CONNECTING)
        logger.info("Connecting to Certstream...")

        try:
            client = self.client_factory(self._handle_message, self.url, self.on_connected, self.on_error)
        except Exception as e:
            logger.error(f"Failed to connect to Certstream: {e}")
            self.on_disconnected()
            return

        with self._lock:
            self._client = client
        self.spawn(lambda: self._run_client(client))

    def _run_client(self, client) -> None:
        try:
            client.run_forever(ping_interval=PING_INTERVAL_SECONDS)
        except Exception as e:
            self.on_error(e)
        finally:
            with self._lock:
                current = self._client is client
                if current:
                    self._client = None
            if current:
                self.on_disconnected()

    def _handle_message(self, message: dict, context=None) -> None:
        try:
            self.on_record(message)
        except Exception as e:
            logger.error(f"Failed to process Certstream message: {e}", exc_info=True)

    def on_connected(self) -> None:
        self.reconnect_attempts = 0
        self._set_state(ConnectionState.CONNECTED)
        logger.info("Connected to Certstream")

    def on_disconnected(self) -> None:
        self._set_state(ConnectionState.DISCONNECTED)
        with self._lock:
            if not self._enabled or self._reconnect_task is not None:
                return
            self.reconnect_attempts += 1
            self._reconnect_task = self.scheduler.call_later(
                self.reconnect_delay, self._connect, name="certstream-reconnect"
            )
        logger.warning(f"Disconnected from Certstream, reconnecting in {self.reconnect_delay}s")

    def on_error(self, error: Exception) -> None:
        # Undecodable frames are malformed input, not connection trouble
        if isinstance(error, json.JSONDecodeError):
            logger.debug(f"Dropping malformed Certstream frame: {error}")
            return
        logger.error(f"Certstream error: {error}")
