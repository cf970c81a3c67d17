"""Exceptions raised at the phishing monitor's operator boundary."""


class PhishingMonitorError(Exception):
    """Base class for phishing monitor errors."""


class InvalidDomainError(PhishingMonitorError, ValueError):
    """Raised when a watch-list entry is not a valid domain or keyword."""


class DuplicateDomainError(PhishingMonitorError):
    """Raised when adding a domain that is already on the watch-list."""


class InvalidSettingError(PhishingMonitorError, ValueError):
    """Raised when a settings change is out of range or unknown."""
