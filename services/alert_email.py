"""Email delivery for phishing alerts.

Sends a plain-text message over SMTP. When Azure AD app credentials are
configured the login uses Office 365 XOAUTH2 (token from msal), otherwise a
username/password login, or none for an open relay.
"""

import base64
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any, Mapping, Optional

import msal

logger = logging.getLogger(__name__)

O365_SCOPE = "https://outlook.office365.com/.default"

FIELD_LABELS = [
    ("threat_domain", "Domain"),
    ("threat_level", "Threat level"),
    ("similarity_score", "Similarity"),
    ("matched_keyword", "Matched keyword"),
    ("source", "Source"),
    ("detection_time", "Detected"),
    ("dashboard_url", "Dashboard"),
]


def get_oauth2_access_token(client_id, client_secret, tenant_id, scope=O365_SCOPE):
    authority = f"https://login.microsoftonline.com/{tenant_id}"
    app = msal.ConfidentialClientApplication(
        client_id,
        authority=authority,
        client_credential=client_secret,
    )
    result = app.acquire_token_for_client(scopes=[scope])
    if "access_token" in result:
        return result["access_token"]
    else:
        raise RuntimeError(f"Could not obtain access token: {result.get('error_description', result)}")


def build_message(sender_email: str, destination: str, fields: Mapping[str, Any]) -> MIMEMultipart:
    """Lay the alert fields out as a plain-text email."""
    message = MIMEMultipart()
    message["From"] = sender_email
    message["To"] = destination
    message["Subject"] = f"[{fields.get('threat_level', 'ALERT')}] Phishing domain detected: {fields.get('threat_domain', '')}"
    lines = [f"{label}: {fields[key]}" for key, label in FIELD_LABELS if fields.get(key)]
    message.attach(MIMEText("\n".join(lines), "plain"))
    return message


class EmailAlertSender:
    """SMTP implementation of the alert delivery collaborator."""

    def __init__(self, smtp_server: str, smtp_port: int, sender_email: Optional[str],
                 username: Optional[str] = None, password: Optional[str] = None,
                 client_id: Optional[str] = None, client_secret: Optional[str] = None,
                 tenant_id: Optional[str] = None, timeout: int = 30):
        self.smtp_server = smtp_server
        self.smtp_port = smtp_port
        self.sender_email = sender_email
        self.username = username
        self.password = password
        self.client_id = client_id
        self.client_secret = client_secret
        self.tenant_id = tenant_id
        self.timeout = timeout

    @property
    def uses_oauth2(self) -> bool:
        return bool(self.client_id and self.client_secret and self.tenant_id)

    @classmethod
    def from_config(cls, config) -> "EmailAlertSender":
        return cls(
            smtp_server=config.smtp_server,
            smtp_port=config.smtp_port,
            sender_email=config.alert_sender_email,
            username=config.smtp_username,
            password=config.smtp_password,
            client_id=config.o365_client_id,
            client_secret=config.o365_client_secret,
            tenant_id=config.o365_tenant_id,
        )

    def send(self, destination: str, fields: Mapping[str, Any]) -> bool:
        """Deliver one alert. Returns False (and logs) on any failure."""
        if not self.sender_email:
            logger.error("Alert sender email is not configured")
            return False

        message = build_message(self.sender_email, destination, fields)
        try:
            with smtplib.SMTP(self.smtp_server, self.smtp_port, timeout=self.timeout) as server:
                server.ehlo()
                server.starttls()
                server.ehlo()
                if self.uses_oauth2:
                    access_token = get_oauth2_access_token(self.client_id, self.client_secret, self.tenant_id)
                    auth_string = f"user={self.sender_email}\x01auth=Bearer {access_token}\x01\x01"
                    auth_bytes = base64.b64encode(auth_string.encode("utf-8")).decode("utf-8")
                    server.docmd("AUTH", "XOAUTH2 " + auth_bytes)
                elif self.username and self.password:
                    server.login(self.username, self.password)
                server.sendmail(self.sender_email, [destination], message.as_string())
            return True
        except (smtplib.SMTPException, OSError, RuntimeError) as e:
            logger.error(f"Error sending email to {destination}: {e}")
            return False
