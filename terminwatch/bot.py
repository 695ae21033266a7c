"""
Telegram bot entrypoint built with aiogram 3.

Steuerung der Terminüberwachung per Telegram:
- /monitor, /stop, /status, /check
- /add, /remove, /dates, /history, /test_notification
- /services, /location, /channels
- Middleware, die nur den Admin-Chat zulässt
"""

from __future__ import annotations

import asyncio
import html
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

from aiogram import BaseMiddleware, Bot, Dispatcher, F, Router
from aiogram.client.default import DefaultBotProperties
from aiogram.enums import ParseMode
from aiogram.filters import Command, CommandObject
from aiogram.types import CallbackQuery, InlineKeyboardButton, InlineKeyboardMarkup, Message
from pydantic import ValidationError

from .config import Settings, get_settings
from .errors import AlreadyActive, BrowserFatalError, ConfigurationError, MonitorBusy, NotActive
from .models import AppointmentEvent, CheckResult, LocationSelection, MonitoringStatus, display_date
from .monitor import MonitorEngine, build_engine
from .notifier import DeliveryResult, Notifier, build_channels, notification_handler
from .site import SERVICE_CATALOG
from .store import ConfigStore
from .utils import setup_logging


logger = logging.getLogger(__name__)


class AdminOnlyMiddleware(BaseMiddleware):
    """Allow only admin chat to interact with bot."""

    def __init__(self, admin_chat_id: int) -> None:
        super().__init__()
        self.admin_chat_id = admin_chat_id

    async def __call__(
        self,
        handler: Callable[[Any, Dict[str, Any]], Awaitable[Any]],
        event: Any,
        data: Dict[str, Any],
    ) -> Any:
        chat = getattr(event, "chat", None)
        if chat is None and getattr(event, "message", None) is not None:
            chat = event.message.chat
        if chat is not None and chat.id != self.admin_chat_id:
            if isinstance(event, Message):
                await event.answer("This bot only serves its owner.")
            return None
        return await handler(event, data)


# region formatting
def format_status(status: MonitoringStatus, watched: List[str], found: List[str]) -> str:
    if status.is_initializing:
        state = "starting"
    elif status.is_currently_checking:
        state = "checking"
    elif status.is_active:
        state = "running"
    else:
        state = "stopped"
    text = (
        "📊 <b>Monitoring status</b>\n"
        f"State: {state}\n"
        f"Interval: {status.interval_minutes}m {status.interval_seconds}s\n"
        f"Checks done: {status.checks_count}\n"
        f"Watched dates: {len(watched)}\n"
        f"Available: {', '.join(display_date(d) for d in found) or 'none'}\n"
    )
    if status.last_check_time:
        text += f"Last check: {status.last_check_time.strftime('%d.%m.%Y %H:%M:%S')} UTC\n"
    if status.last_error:
        text += f"Last error: <code>{html.escape(status.last_error)}</code>\n"
    return text


def format_results(results: List[CheckResult]) -> str:
    if not results:
        return "No results (no watched dates or the check failed, see /status)."
    lines = ["📅 <b>Check results</b>"]
    for r in results:
        mark = "✅" if r.available else "❌"
        line = f"{mark} {r.display_date}"
        if r.metadata and r.available:
            line += f" ({html.escape(r.metadata.time)}, {html.escape(r.metadata.type)})"
        elif r.reason:
            line += f" ({html.escape(r.reason)})"
        lines.append(line)
    return "\n".join(lines)


def format_history(events: List[AppointmentEvent], limit: int = 15) -> str:
    if not events:
        return "No availability changes recorded yet."
    lines = ["🕑 <b>Recent changes</b>"]
    for ev in events[:limit]:
        lines.append(f"{ev.timestamp.strftime('%d.%m. %H:%M')} [{ev.type.value}] {html.escape(ev.message)}")
    return "\n".join(lines)


def format_deliveries(results: List[DeliveryResult]) -> str:
    if not results:
        return "No notification channel is configured and switched on."
    return "\n".join(
        f"{'✅' if r.success else '❌'} {r.channel}" + (f": {html.escape(r.error)}" if r.error else "")
        for r in results
    )


def format_services(selected: Dict[str, bool]) -> str:
    lines = ["🧾 <b>Services</b>"]
    for key, label in SERVICE_CATALOG.items():
        mark = "✅" if selected.get(key) else "▫️"
        lines.append(f"{mark} <code>{key}</code> {html.escape(label)}")
    lines.append("\nSet with /services key [key ...]")
    return "\n".join(lines)


def format_location(location: LocationSelection) -> str:
    if not location.value:
        return "No location selected, the first offered one is used.\nSet with /location value [name]"
    name = f" ({html.escape(location.name)})" if location.name else ""
    return f"📍 Location: <code>{html.escape(location.value)}</code>{name}"


def format_channels(description: Dict[str, Dict[str, bool]]) -> str:
    lines = ["📣 <b>Notification channels</b>"]
    for name, info in description.items():
        if not info["configured"]:
            state = "not configured"
        elif info["enabled"]:
            state = "on"
        else:
            state = "off"
        lines.append(f"{name}: {state}")
    return "\n".join(lines)


def parse_toggle(args: str) -> tuple[str, bool]:
    """'email off' -> ('email', False)"""
    parts = args.split()
    if len(parts) != 2 or parts[1].lower() not in ("on", "off"):
        raise ConfigurationError("Usage: /channels [telegram|email on|off]")
    return parts[0].lower(), parts[1].lower() == "on"


def parse_interval(args: Optional[str], default: tuple[int, int]) -> tuple[int, int]:
    """'/monitor 5 30' -> (5, 30); no args -> default."""
    if not args or not args.strip():
        return default
    parts = args.split()
    if len(parts) > 2:
        raise ConfigurationError("Usage: /monitor [minutes] [seconds]")
    try:
        minutes = int(parts[0])
        seconds = int(parts[1]) if len(parts) == 2 else 0
    except ValueError as e:
        raise ConfigurationError("Usage: /monitor [minutes] [seconds]") from e
    return minutes, seconds


# endregion


def main_keyboard() -> InlineKeyboardMarkup:
    return InlineKeyboardMarkup(
        inline_keyboard=[
            [InlineKeyboardButton(text="▶️ Start monitoring", callback_data="start_monitoring")],
            [InlineKeyboardButton(text="⏹ Stop", callback_data="stop_monitoring")],
            [InlineKeyboardButton(text="🔍 Check now", callback_data="check_now")],
            [InlineKeyboardButton(text="ℹ️ Status", callback_data="status")],
        ]
    )


def build_router(engine: MonitorEngine, notifier: Notifier) -> Router:
    router = Router(name="terminwatch")
    store = engine.store

    def status_text() -> str:
        return "\n".join(
            [
                format_status(engine.get_status(), engine.get_watched_dates(), engine.get_found_appointments()),
                format_channels(notifier.describe()),
            ]
        )

    async def start_monitoring(args: Optional[str]) -> str:
        try:
            minutes, seconds = parse_interval(args, store.get_check_interval())
            await engine.start(minutes, seconds)
        except (ConfigurationError, AlreadyActive) as e:
            return f"⚠️ {html.escape(str(e))}"
        except BrowserFatalError as e:
            return f"❌ Browser could not be started: <code>{html.escape(str(e))}</code>"
        store.set_check_interval(minutes, seconds)
        return f"Monitoring started ✅ (every {minutes}m {seconds}s)"

    async def stop_monitoring() -> str:
        try:
            await engine.stop()
        except NotActive:
            return "Monitoring is not running."
        return "Monitoring stopped ⏹️"

    async def check_now() -> str:
        try:
            results = await engine.check_now()
        except MonitorBusy:
            return "⏳ A check is already running, try again shortly."
        return format_results(results)

    @router.message(Command("start"))
    async def cmd_start(message: Message) -> None:
        await message.answer(
            "👋 I watch the vehicle registration calendar for free appointments.\n\n"
            "/monitor [min] [sec] - start monitoring\n"
            "/stop - stop monitoring\n"
            "/check - check right now\n"
            "/add YYYY/MM/DD, /remove YYYY/MM/DD - manage dates\n"
            "/services key [key ...], /location value [name] - booking form choices\n"
            "/channels [telegram|email on|off] - notification channels\n"
            "/dates, /history, /status, /test_notification",
            reply_markup=main_keyboard(),
        )

    @router.message(Command("monitor"))
    async def cmd_monitor(message: Message, command: CommandObject) -> None:
        await message.answer(await start_monitoring(command.args))

    @router.message(Command("stop"))
    async def cmd_stop(message: Message) -> None:
        await message.answer(await stop_monitoring())

    @router.message(Command("status"))
    async def cmd_status(message: Message) -> None:
        await message.answer(status_text(), reply_markup=main_keyboard())

    @router.message(Command("check"))
    async def cmd_check(message: Message) -> None:
        await message.answer("🔍 Checking, this can take a minute...")
        await message.answer(await check_now())

    @router.message(Command("add"))
    async def cmd_add(message: Message, command: CommandObject) -> None:
        date = (command.args or "").strip()
        try:
            added = engine.add_date(date)
        except ConfigurationError as e:
            await message.answer(f"⚠️ {html.escape(str(e))}")
            return
        if added:
            await message.answer(f"➕ {display_date(date)} is now watched.")
        else:
            await message.answer(f"{display_date(date)} is already watched.")

    @router.message(Command("remove"))
    async def cmd_remove(message: Message, command: CommandObject) -> None:
        date = (command.args or "").strip()
        if engine.remove_date(date):
            await message.answer(f"➖ {html.escape(date)} removed.")
        else:
            await message.answer(f"{html.escape(date)} is not watched.")

    @router.message(Command("dates"))
    async def cmd_dates(message: Message) -> None:
        watched = engine.get_watched_dates()
        if not watched:
            await message.answer("No dates watched. Add one with /add YYYY/MM/DD")
            return
        found = set(engine.get_found_appointments())
        lines = [f"{'✅' if d in found else '⏳'} {display_date(d)}" for d in watched]
        await message.answer("\n".join(lines))

    @router.message(Command("services"))
    async def cmd_services(message: Message, command: CommandObject) -> None:
        keys = (command.args or "").lower().split()
        if keys:
            try:
                selection = {key: False for key in SERVICE_CATALOG}
                selection.update({key: True for key in keys})
                store.set_selected_services(selection)
            except ConfigurationError as e:
                await message.answer(f"⚠️ {html.escape(str(e))}")
                return
        await message.answer(format_services(store.get_selected_services()))

    @router.message(Command("location"))
    async def cmd_location(message: Message, command: CommandObject) -> None:
        args = (command.args or "").strip()
        if args:
            value, _, name = args.partition(" ")
            store.set_selected_location(value, name)
        await message.answer(format_location(store.get_selected_location()))

    @router.message(Command("channels"))
    async def cmd_channels(message: Message, command: CommandObject) -> None:
        if command.args and command.args.strip():
            try:
                channel, enabled = parse_toggle(command.args)
                store.set_channel_enabled(channel, enabled)
            except ConfigurationError as e:
                await message.answer(f"⚠️ {html.escape(str(e))}")
                return
        await message.answer(format_channels(notifier.describe()))

    @router.message(Command("history"))
    async def cmd_history(message: Message) -> None:
        await message.answer(format_history(engine.get_event_history()))

    @router.message(Command("test_notification"))
    async def cmd_test_notification(message: Message) -> None:
        await message.answer(format_deliveries(await notifier.send_test()))

    @router.callback_query(F.data == "start_monitoring")
    async def on_start_monitoring(callback: CallbackQuery) -> None:
        await callback.answer()
        await callback.message.answer(await start_monitoring(None), reply_markup=main_keyboard())

    @router.callback_query(F.data == "stop_monitoring")
    async def on_stop_monitoring(callback: CallbackQuery) -> None:
        await callback.answer()
        await callback.message.answer(await stop_monitoring(), reply_markup=main_keyboard())

    @router.callback_query(F.data == "check_now")
    async def on_check_now(callback: CallbackQuery) -> None:
        await callback.answer("Checking...")
        await callback.message.answer(await check_now(), reply_markup=main_keyboard())

    @router.callback_query(F.data == "status")
    async def on_status(callback: CallbackQuery) -> None:
        await callback.answer()
        await callback.message.edit_text(status_text(), reply_markup=main_keyboard())

    return router


def main() -> None:
    """Entry point for running the bot."""
    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"Invalid configuration in .env:\n{e}", file=sys.stderr)
        sys.exit(1)
    setup_logging(settings.logging)
    asyncio.run(_run(settings))


async def _run(settings: Settings) -> None:
    bot = Bot(
        settings.bot.token,
        default=DefaultBotProperties(parse_mode=ParseMode.HTML),
    )
    store = ConfigStore(settings.store_path)
    engine = build_engine(settings, store)
    notifier = Notifier(
        build_channels(settings, bot),
        timeout=settings.engine.delivery_timeout,
        is_enabled=store.channel_enabled,
    )
    engine.subscribe(notification_handler(notifier, store.get_website_url))

    dp = Dispatcher()
    admin_only = AdminOnlyMiddleware(settings.bot.admin_chat_id)
    dp.message.middleware(admin_only)
    dp.callback_query.middleware(admin_only)
    dp.include_router(build_router(engine, notifier))

    if store.auto_start:
        minutes, seconds = store.get_check_interval()
        try:
            await engine.start(minutes, seconds)
        except (ConfigurationError, BrowserFatalError) as e:
            logger.error("Auto start failed: %s", e)

    logger.info("Starting polling")
    try:
        await dp.start_polling(bot)
    finally:
        await engine.shutdown()
        await bot.session.close()


if __name__ == "__main__":
    main()
