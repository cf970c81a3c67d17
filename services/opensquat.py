"""Opensquat keyword lookup client.

Queries the domainsec.io free keyword endpoint for newly registered domains
that resemble a monitored domain. The free tier allows a handful of calls
per day; quota bookkeeping lives with the caller.

Usage:
    from services.opensquat import OpensquatClient, LookupFailure

    client = OpensquatClient()
    try:
        suspicious = client.lookup("acme.com")
    except LookupFailure as e:
        ...
"""

import logging
from typing import List, Optional

import requests
from requests.exceptions import HTTPError, RequestException

logger = logging.getLogger(__name__)

OPENSQUAT_API_URL = "https://api.domainsec.io/v1/free/keyword/"
DEFAULT_TIMEOUT = 30


class LookupFailure(Exception):
    """A lookup that produced no usable response (transport, HTTP status or JSON error)."""

    def __init__(self, domain: str, reason: str, status_code: Optional[int] = None):
        super().__init__(f"Opensquat lookup failed for {domain}: {reason}")
        self.domain = domain
        self.reason = reason
        self.status_code = status_code


class OpensquatClient:
    """Thin wrapper around the keyword endpoint with a bounded timeout."""

    def __init__(self, base_url: str = OPENSQUAT_API_URL, timeout: int = DEFAULT_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url if base_url.endswith("/") else f"{base_url}/"
        self.timeout = timeout
        self.session = session or requests.Session()

    def lookup(self, domain: str) -> List[str]:
        """
        Look up suspicious registrations for a monitored domain.

        Args:
            domain: Watch-list entry to query

        Returns:
            Suspicious domain names reported by the service (possibly empty)

        Raises:
            LookupFailure: on non-success status, transport error or invalid JSON
        """
        url = f"{self.base_url}{domain}"
        logger.info(f"Opensquat lookup for: {domain}")
        try:
            response = self.session.get(url, headers={'accept': 'application/json'}, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except HTTPError as e:
            status = e.response.status_code if e.response is not None else None
            raise LookupFailure(domain, f"HTTP {status}", status_code=status) from e
        except RequestException as e:
            raise LookupFailure(domain, str(e)) from e
        except ValueError as e:
            raise LookupFailure(domain, f"invalid JSON response: {e}") from e

        if not isinstance(data, dict):
            raise LookupFailure(domain, "unexpected response shape")

        domains = data.get("domains") or []
        return [str(d).strip().lower() for d in domains if d]

    def close(self):
        self.session.close()
