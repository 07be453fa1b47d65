"""Notification delivery channels.

A channel takes a recipient and a rendered message and either reports a
DeliveryStatus or raises UpstreamFailure.
"""

import logging
import smtplib
from abc import ABC, abstractmethod
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Dict, List, Optional

import requests

from ..contracts.exceptions import UpstreamFailure
from ..contracts.models import DeliveryChannel, DeliveryStatus

logger = logging.getLogger(__name__)


class NotificationChannel(ABC):
    """Base class for notification channels."""

    @abstractmethod
    def send(self, recipient: str, message: Dict[str, str]) -> DeliveryStatus:
        """Send a rendered message through this channel."""
        pass

    @abstractmethod
    def get_name(self) -> str:
        """Get the channel name."""
        pass


class EmailChannel(NotificationChannel):
    """Email over SMTP."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: Optional[str] = None,
        password: Optional[str] = None,
        from_email: Optional[str] = None,
        use_tls: bool = True,
        timeout: float = 10.0,
    ):
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.from_email = from_email or user or ""
        self.use_tls = use_tls
        self.timeout = timeout

    def get_name(self) -> str:
        return DeliveryChannel.EMAIL.value

    def send(self, recipient: str, message: Dict[str, str]) -> DeliveryStatus:
        msg = MIMEMultipart()
        msg["From"] = self.from_email
        msg["To"] = recipient
        msg["Subject"] = message["subject"]
        msg.attach(MIMEText(message["body_text"], "plain"))

        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls()
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError) as e:
            raise UpstreamFailure(f"SMTP delivery failed: {e}", service="email")

        logger.info(f"Email sent: {message['subject']}")
        return DeliveryStatus.SENT


class WebhookChannel(NotificationChannel):
    """Short-text delivery through a messaging provider webhook.

    The provider receives ``{"channel", "to", "body"}`` and may answer with
    ``{"status": "delivered"}`` when it confirms delivery synchronously.
    """

    channel = DeliveryChannel.SMS

    def __init__(self, webhook_url: str, api_key: Optional[str] = None, timeout: float = 10.0):
        self.webhook_url = webhook_url
        self.api_key = api_key
        self.timeout = timeout

    def get_name(self) -> str:
        return self.channel.value

    def send(self, recipient: str, message: Dict[str, str]) -> DeliveryStatus:
        headers = {}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        payload = {
            "channel": self.channel.value,
            "to": recipient,
            "body": message["short_text"],
        }

        try:
            response = requests.post(self.webhook_url, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.RequestException as e:
            status_code = e.response.status_code if e.response is not None else None
            raise UpstreamFailure(
                f"{self.channel.value} delivery failed: {e}",
                service=self.channel.value,
                status_code=status_code,
            )

        try:
            reported = response.json().get("status")
        except ValueError:
            reported = None
        if reported == DeliveryStatus.DELIVERED.value:
            return DeliveryStatus.DELIVERED
        return DeliveryStatus.SENT


class SMSChannel(WebhookChannel):
    """SMS through a provider webhook."""

    channel = DeliveryChannel.SMS


class WhatsAppChannel(WebhookChannel):
    """WhatsApp through a provider webhook."""

    channel = DeliveryChannel.WHATSAPP


class LogChannel(NotificationChannel):
    """Writes messages to the log instead of delivering them.

    Used for channels that are not configured. The signing link itself is
    kept in ``sent`` only; log lines carry the subject.
    """

    def __init__(self, channel: DeliveryChannel = DeliveryChannel.EMAIL):
        self.channel = channel
        self.sent: List[Dict[str, str]] = []

    def get_name(self) -> str:
        return self.channel.value

    def send(self, recipient: str, message: Dict[str, str]) -> DeliveryStatus:
        logger.info(f"[{self.channel.value.upper()}] To: {recipient} | {message['subject']}")
        self.sent.append({"to": recipient, **message})
        return DeliveryStatus.SENT
