"""
Notification dispatch.

Benachrichtigungen über alle aktiven Kanäle parallel senden; ein
fehlgeschlagener Kanal hält die anderen nicht auf.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
import html
import logging
import smtplib
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence

from aiogram import Bot
from pydantic import BaseModel

from .config import Settings, SmtpConfig
from .models import EngineEvent, EngineEventKind, EventType

logger = logging.getLogger(__name__)


class DeliveryResult(BaseModel):
    channel: str
    success: bool
    error: Optional[str] = None


class Channel(Protocol):
    name: str

    async def send(self, title: str, message: str) -> None: ...


class TelegramChannel:
    name = "telegram"

    def __init__(self, bot: Bot, chat_id: int) -> None:
        self.bot = bot
        self.chat_id = chat_id

    async def send(self, title: str, message: str) -> None:
        text = f"🔔 <b>{html.escape(title)}</b>\n\n{html.escape(message)}"
        await self.bot.send_message(
            chat_id=self.chat_id,
            text=text,
            disable_web_page_preview=True,
        )


class EmailChannel:
    name = "email"

    def __init__(self, smtp: SmtpConfig) -> None:
        self.smtp = smtp

    def _send_sync(self, title: str, message: str) -> None:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = title
        msg["From"] = self.smtp.from_address
        msg["To"] = self.smtp.recipient
        msg.attach(MIMEText(message, "plain", "utf-8"))
        msg.attach(MIMEText(f"<pre style='font-family:sans-serif'>{html.escape(message)}</pre>", "html", "utf-8"))
        with smtplib.SMTP(self.smtp.host, self.smtp.port, timeout=10) as server:
            server.starttls()
            server.login(self.smtp.user, self.smtp.password)
            server.sendmail(self.smtp.user, [self.smtp.recipient], msg.as_string())

    async def send(self, title: str, message: str) -> None:
        await asyncio.to_thread(self._send_sync, title, message)


KNOWN_CHANNELS = ("telegram", "email")


class Notifier:
    """
    Delivers to every configured channel that is switched on.

    Toggles are read at delivery time, so switching a channel off in the
    store takes effect without rebuilding the notifier.
    """

    def __init__(
        self,
        channels: Sequence[Channel],
        timeout: float = 15.0,
        is_enabled: Optional[Callable[[str], bool]] = None,
    ) -> None:
        self.channels = list(channels)
        self.timeout = timeout
        self.is_enabled = is_enabled or (lambda name: True)

    def active_channels(self) -> List[Channel]:
        return [ch for ch in self.channels if self.is_enabled(ch.name)]

    async def _deliver_one(self, channel: Channel, title: str, message: str) -> DeliveryResult:
        try:
            await asyncio.wait_for(channel.send(title, message), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Notification via %s timed out after %.0fs", channel.name, self.timeout)
            return DeliveryResult(channel=channel.name, success=False, error="timeout")
        except Exception as e:  # noqa: BLE001
            logger.warning("Notification via %s failed: %s", channel.name, e)
            return DeliveryResult(channel=channel.name, success=False, error=str(e) or type(e).__name__)
        logger.info("Notification sent via %s", channel.name)
        return DeliveryResult(channel=channel.name, success=True)

    async def deliver(self, title: str, message: str) -> List[DeliveryResult]:
        """Send to every channel concurrently and report each outcome."""
        channels = self.active_channels()
        if not channels:
            logger.info("No notification channel active, dropping %r", title)
            return []
        return list(await asyncio.gather(*(self._deliver_one(ch, title, message) for ch in channels)))

    async def send_test(self) -> List[DeliveryResult]:
        return await self.deliver(
            "🧪 Test notification",
            f"This is a test message from terminwatch.\n\nTime: {datetime.now().strftime('%d.%m.%Y %H:%M:%S')}",
        )

    def describe(self) -> Dict[str, Dict[str, bool]]:
        """Per known channel: configured in .env and switched on in settings."""
        configured = {ch.name for ch in self.channels}
        return {
            name: {"configured": name in configured, "enabled": self.is_enabled(name)}
            for name in KNOWN_CHANNELS
        }


def build_channels(settings: Settings, bot: Optional[Bot] = None) -> List[Channel]:
    """Channels whose credentials are present; on/off toggles live in the store."""
    channels: List[Channel] = []
    if bot is not None and settings.bot.admin_chat_id:
        channels.append(TelegramChannel(bot, settings.bot.admin_chat_id))
    if settings.smtp.is_configured:
        channels.append(EmailChannel(settings.smtp))
    if not channels:
        logger.warning("No notification channel is configured")
    return channels


_TITLES = {
    EventType.AVAILABLE: "🎉 Appointment available!",
    EventType.NEW_AVAILABLE: "🎉 Appointment available!",
    EventType.UNAVAILABLE: "Appointment gone",
}


def notification_handler(
    notifier: Notifier, target_url: Callable[[], str]
) -> Callable[[EngineEvent], Awaitable[None]]:
    """Engine subscriber that forwards appointment and error events."""

    async def handle(event: EngineEvent) -> None:
        if event.kind is EngineEventKind.APPOINTMENT and event.appointment:
            appt = event.appointment
            await notifier.deliver(_TITLES[appt.type], f"{appt.message}\n\nLink: {target_url()}")
        elif event.kind is EngineEventKind.ERROR and event.error:
            err = event.error
            where = f" ({err.date})" if err.date else ""
            await notifier.deliver("⚠️ Monitoring error", f"{err.kind}{where}: {err.message}")

    return handle


__all__ = [
    "DeliveryResult",
    "Channel",
    "TelegramChannel",
    "EmailChannel",
    "Notifier",
    "build_channels",
    "notification_handler",
]
