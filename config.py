import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


def get_config():
    return Config(
        certstream_url=os.environ.get("CERTSTREAM_URL", "wss://certstream.calidog.io/"),
        opensquat_api_url=os.environ.get("OPENSQUAT_API_URL", "https://api.domainsec.io/v1/free/keyword/"),
        opensquat_timeout=int(os.environ.get("OPENSQUAT_TIMEOUT", "30")),
        data_dir=os.environ.get("PHISHING_MONITOR_DATA_DIR", "data/transient/phishing_monitor"),
        timezone=os.environ.get("PHISHING_MONITOR_TIMEZONE", "UTC"),
        smtp_server=os.environ.get("SMTP_SERVER", "smtp.office365.com"),
        smtp_port=int(os.environ.get("SMTP_PORT", "587")),
        smtp_username=os.environ.get("SMTP_USERNAME"),
        smtp_password=os.environ.get("SMTP_PASSWORD"),
        alert_sender_email=os.environ.get("ALERT_SENDER_EMAIL"),
        alert_email=os.environ.get("ALERT_EMAIL"),
        o365_client_id=os.environ.get("O365_CLIENT_ID"),
        o365_client_secret=os.environ.get("O365_CLIENT_SECRET"),
        o365_tenant_id=os.environ.get("O365_TENANT_ID"),
        dashboard_url=os.environ.get("DASHBOARD_URL", "http://localhost:8080/phishing-monitor"),
        log_dir=os.environ.get("LOG_DIR", "logs"),
        log_level=os.environ.get("LOG_LEVEL", "INFO"),
    )


@dataclass
class Config:
    """Configuration settings for the phishing monitor."""
    certstream_url: str = "wss://certstream.calidog.io/"
    opensquat_api_url: str = "https://api.domainsec.io/v1/free/keyword/"
    opensquat_timeout: int = 30
    data_dir: str = "data/transient/phishing_monitor"
    timezone: str = "UTC"
    # Alert email delivery (Office 365 SMTP by default)
    smtp_server: str = "smtp.office365.com"
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    alert_sender_email: Optional[str] = None
    alert_email: Optional[str] = None
    # Azure AD app registration, enables XOAUTH2 instead of password login
    o365_client_id: Optional[str] = None
    o365_client_secret: Optional[str] = None
    o365_tenant_id: Optional[str] = None
    dashboard_url: str = "http://localhost:8080/phishing-monitor"
    log_dir: str = "logs"
    log_level: str = "INFO"
