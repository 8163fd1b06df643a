"""
Channel providers: the transports that actually deliver a notification.

One provider is registered per channel. The delivery worker looks the
provider up by the notification's channel and calls send(); a provider
signals failure by raising DeliveryError.

Providers:
- EmailProvider: SMTP via aiosmtplib, configured from NotificationsSettings
- RecordingChannel: in-process provider that records what it was asked to
  send and can be told to fail (tests, demos)
"""

import logging
import random
from dataclasses import dataclass, field
from datetime import datetime
from email.message import EmailMessage
from email.policy import default as default_policy
from typing import Optional, Protocol, runtime_checkable

import aiosmtplib

from notifications.config import NotificationsSettings
from notifications.errors import ConfigurationError, DeliveryError, UnsupportedChannelError
from notifications.models import NotificationChannel, utcnow

logger = logging.getLogger("notifications")


@runtime_checkable
class ChannelProvider(Protocol):
    """Transport for one channel."""

    channel: NotificationChannel

    async def send(
        self,
        to: str,
        subject: Optional[str] = None,
        html: Optional[str] = None,
        text: Optional[str] = None,
    ) -> None:
        """Deliver one message. Raises DeliveryError on failure."""
        ...


# =============================================================================
# Email (SMTP)
# =============================================================================

class EmailProvider:
    """
    SMTP email provider.

    Configuration is checked when the provider is built, so a service with a
    missing SMTP value fails at startup instead of on its first delivery.
    Port 465 uses implicit TLS; other ports upgrade with STARTTLS when the
    server offers it.
    """

    channel = NotificationChannel.EMAIL

    def __init__(self, settings: NotificationsSettings):
        self.host = self._require_string(settings, "SMTP_HOST")
        self.port = self._require_number(settings, "SMTP_PORT")
        self.username = self._require_string(settings, "SMTP_USER")
        self.password = self._require_string(settings, "SMTP_PASSWORD")
        self.from_address = self._require_string(settings, "EMAIL_FROM_ADDRESS")
        self.timeout = settings.SMTP_TIMEOUT_SECONDS

    @staticmethod
    def _require_string(settings: NotificationsSettings, name: str) -> str:
        value = getattr(settings, name)
        if not isinstance(value, str) or value == "":
            raise ConfigurationError(f"Missing required configuration value: {name}")
        return value

    @staticmethod
    def _require_number(settings: NotificationsSettings, name: str) -> int:
        value = getattr(settings, name)
        if not isinstance(value, int):
            raise ConfigurationError(f"Missing required numeric configuration value: {name}")
        return value

    def build_message(
        self,
        to: str,
        subject: Optional[str] = None,
        html: Optional[str] = None,
        text: Optional[str] = None,
    ) -> EmailMessage:
        message = EmailMessage(policy=default_policy)
        message["From"] = self.from_address
        message["To"] = to
        if subject:
            message["Subject"] = subject

        message.set_content(text or "", subtype="plain", charset="utf-8")
        if html:
            message.add_alternative(html, subtype="html", charset="utf-8")
        return message

    async def send(
        self,
        to: str,
        subject: Optional[str] = None,
        html: Optional[str] = None,
        text: Optional[str] = None,
    ) -> None:
        message = self.build_message(to, subject=subject, html=html, text=text)
        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username,
                password=self.password,
                use_tls=self.port == 465,
                timeout=self.timeout,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            raise DeliveryError(self.channel.value, to, str(e)) from e

        logger.info(f"Email dispatched to {to}")


# =============================================================================
# Recording provider
# =============================================================================

@dataclass
class SentMessage:
    """What a RecordingChannel was asked to send, and whether it succeeded."""
    success: bool
    channel: NotificationChannel
    recipient: str
    subject: Optional[str]
    body: Optional[str]
    timestamp: datetime = field(default_factory=utcnow)
    error: Optional[str] = None

    def __str__(self) -> str:
        status = "✓" if self.success else "✗"
        return f"{status} {self.channel.value} to {self.recipient}: {self.subject}"


class RecordingChannel:
    """
    In-process provider.

    Tracks every send for test assertions. Failures can be forced for the
    first N sends (deterministic) or at a random rate.
    """

    def __init__(
        self,
        channel: NotificationChannel = NotificationChannel.EMAIL,
        fail_first: int = 0,
        fail_rate: float = 0.0,
        error_message: str = "Simulated delivery failure",
    ):
        """
        Args:
            channel: Channel this provider serves
            fail_first: Number of initial sends that fail
            fail_rate: Probability (0.0 to 1.0) that any later send fails
            error_message: Reason carried by the raised DeliveryError
        """
        self.channel = channel
        self.fail_first = fail_first
        self.fail_rate = fail_rate
        self.error_message = error_message
        self.sent_messages: list[SentMessage] = []

    async def send(
        self,
        to: str,
        subject: Optional[str] = None,
        html: Optional[str] = None,
        text: Optional[str] = None,
    ) -> None:
        attempt = len(self.sent_messages) + 1
        failing = attempt <= self.fail_first or random.random() < self.fail_rate
        body = text if text is not None else html

        if failing:
            self.sent_messages.append(SentMessage(
                success=False,
                channel=self.channel,
                recipient=to,
                subject=subject,
                body=body,
                error=self.error_message,
            ))
            logger.error(f"[{self.channel.value} FAILED] To: {to} | Error: {self.error_message}")
            raise DeliveryError(self.channel.value, to, self.error_message)

        self.sent_messages.append(SentMessage(
            success=True,
            channel=self.channel,
            recipient=to,
            subject=subject,
            body=body,
        ))
        logger.info(f"[{self.channel.value}] To: {to} | Subject: {subject}")

    def get_sent_count(self) -> int:
        """Number of sends attempted, successful or not."""
        return len(self.sent_messages)

    def get_successful_sends(self) -> list[SentMessage]:
        return [m for m in self.sent_messages if m.success]

    def clear_history(self):
        self.sent_messages.clear()

    def find_message_to(self, recipient: str) -> Optional[SentMessage]:
        """Last successful message sent to a recipient."""
        for msg in reversed(self.sent_messages):
            if msg.recipient == recipient and msg.success:
                return msg
        return None


# =============================================================================
# Registry
# =============================================================================

class ChannelProviders:
    """
    Providers keyed by the channel they serve.

    Example:
        providers = ChannelProviders([EmailProvider(settings)])
        await providers.get(NotificationChannel.EMAIL).send(to="a@b.com", text="hi")
    """

    def __init__(self, providers: Optional[list[ChannelProvider]] = None):
        self._providers: dict[NotificationChannel, ChannelProvider] = {}
        for provider in providers or []:
            self.register(provider)

    def register(self, provider: ChannelProvider) -> None:
        """Register a provider, replacing any previous one for its channel."""
        self._providers[NotificationChannel(provider.channel)] = provider
        logger.debug(f"Registered provider for {provider.channel}")

    def get(self, channel: NotificationChannel) -> ChannelProvider:
        """
        Raises:
            UnsupportedChannelError: If no provider serves this channel
        """
        provider = self._providers.get(NotificationChannel(channel))
        if provider is None:
            raise UnsupportedChannelError(NotificationChannel(channel).value)
        return provider

    def supports(self, channel: NotificationChannel) -> bool:
        return NotificationChannel(channel) in self._providers

    def __len__(self) -> int:
        return len(self._providers)
