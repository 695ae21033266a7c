"""
File-backed settings store.

Persistierte Benutzereinstellungen (settings.json): überwachte Termine,
Leistungen, Standort, Website, Intervall und Benachrichtigungskanäle.
"""

from __future__ import annotations

from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path
import shutil
import tempfile
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

from .errors import ConfigurationError
from .models import LocationSelection, ServiceSelection, validate_date, validate_interval
from .site import DEFAULT_TARGET_URL, DEFAULT_USER_AGENT, SERVICE_CATALOG

logger = logging.getLogger(__name__)


EXPORT_VERSION = "1.0.0"


class WebsiteSettings(BaseModel):
    url: str = DEFAULT_TARGET_URL
    user_agent: str = DEFAULT_USER_AGENT


class BrowserOptions(BaseModel):
    timeout_ms: int = Field(default=30000, ge=1000)
    selector_timeout_ms: int = Field(default=10000, ge=100)
    settle_delay_ms: int = Field(default=800, ge=0)


class IntervalSettings(BaseModel):
    minutes: int = Field(default=10, ge=0, le=60)
    seconds: int = Field(default=0, ge=0, le=59)


class ChannelToggles(BaseModel):
    telegram: bool = True
    email: bool = True


class StoredConfig(BaseModel):
    watched_dates: List[str] = Field(default_factory=list)
    selected_services: Dict[str, bool] = Field(default_factory=dict)
    selected_location: LocationSelection = Field(default_factory=LocationSelection)
    website: WebsiteSettings = Field(default_factory=WebsiteSettings)
    browser: BrowserOptions = Field(default_factory=BrowserOptions)
    check_interval: IntervalSettings = Field(default_factory=IntervalSettings)
    auto_start: bool = True
    notifications: ChannelToggles = Field(default_factory=ChannelToggles)


class ConfigStore:
    """
    JSON settings file merged over defaults.

    Every mutation is written back immediately; writes go through a temp file
    so a crash never leaves a half-written settings.json behind.
    """

    def __init__(self, path: Path) -> None:
        self.path = path
        self._config = self._load()

    # region persistence
    def _load(self) -> StoredConfig:
        if not self.path.exists():
            logger.info("Creating default settings at %s", self.path)
            config = StoredConfig()
            self._write(config)
            return config
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
            config = self._merge(data)
            logger.info("Settings loaded from %s", self.path)
            return config
        except (OSError, ValueError, ValidationError) as e:
            logger.error("Failed to load settings from %s, using defaults: %s", self.path, e)
            return StoredConfig()

    @staticmethod
    def _merge(data: Dict[str, Any]) -> StoredConfig:
        merged = {**StoredConfig().model_dump(), **data}
        dates: List[str] = []
        for value in merged.get("watched_dates") or []:
            try:
                date = validate_date(value)
            except ConfigurationError:
                logger.warning("Dropping invalid stored date %r", value)
                continue
            if date not in dates:
                dates.append(date)
        merged["watched_dates"] = dates
        return StoredConfig.model_validate(merged)

    def _write(self, config: StoredConfig) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".settings-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(config.model_dump(mode="json"), fh, ensure_ascii=False, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _save(self, config: StoredConfig) -> None:
        # only adopt the new config once it is on disk
        self._write(config)
        self._config = config

    # endregion

    @property
    def config(self) -> StoredConfig:
        return self._config.model_copy(deep=True)

    # region watched dates
    def get_monitored_dates(self) -> List[str]:
        return list(self._config.watched_dates)

    def add_watched_date(self, date: str) -> bool:
        date = validate_date(date)
        if date in self._config.watched_dates:
            return False
        config = self.config
        config.watched_dates.append(date)
        self._save(config)
        logger.info("Date added to watch list: %s", date)
        return True

    def remove_watched_date(self, date: str) -> bool:
        if date not in self._config.watched_dates:
            return False
        config = self.config
        config.watched_dates.remove(date)
        self._save(config)
        logger.info("Date removed from watch list: %s", date)
        return True

    # endregion

    # region selections
    def get_selected_services(self) -> Dict[str, bool]:
        return dict(self._config.selected_services)

    def get_service_selection(self) -> ServiceSelection:
        return ServiceSelection(services=self.get_selected_services())

    def set_selected_services(self, services: Dict[str, bool]) -> None:
        unknown = sorted(set(services) - set(SERVICE_CATALOG))
        if unknown:
            raise ConfigurationError(f"Unknown services: {', '.join(unknown)}")
        config = self.config
        config.selected_services = {key: bool(on) for key, on in services.items()}
        self._save(config)

    def get_selected_location(self) -> LocationSelection:
        return self._config.selected_location.model_copy()

    def set_selected_location(self, value: str, name: str = "") -> None:
        if not value or not value.strip():
            raise ConfigurationError("Location value must not be empty")
        config = self.config
        config.selected_location = LocationSelection(value=value.strip(), name=name.strip())
        self._save(config)

    # endregion

    # region website / browser / interval
    def get_website_url(self) -> str:
        return self._config.website.url

    def get_user_agent(self) -> str:
        return self._config.website.user_agent

    def get_browser_options(self) -> BrowserOptions:
        return self._config.browser.model_copy()

    def get_check_interval(self) -> tuple[int, int]:
        return self._config.check_interval.minutes, self._config.check_interval.seconds

    def set_check_interval(self, minutes: int, seconds: int) -> None:
        validate_interval(minutes, seconds)
        config = self.config
        config.check_interval = IntervalSettings(minutes=minutes, seconds=seconds)
        self._save(config)
        logger.info("Check interval updated: %sm %ss", minutes, seconds)

    @property
    def auto_start(self) -> bool:
        return self._config.auto_start

    def toggle_auto_start(self) -> bool:
        config = self.config
        config.auto_start = not config.auto_start
        self._save(config)
        logger.info("Auto start %s", "enabled" if config.auto_start else "disabled")
        return config.auto_start

    def channel_enabled(self, channel: str) -> bool:
        return bool(getattr(self._config.notifications, channel, False))

    def set_channel_enabled(self, channel: str, enabled: bool) -> None:
        if channel not in ChannelToggles.model_fields:
            raise ConfigurationError(f"Unknown notification channel {channel!r}")
        config = self.config
        setattr(config.notifications, channel, enabled)
        self._save(config)

    # endregion

    # region backup / export
    def create_backup(self) -> Path:
        backup_path = self.path.parent / f"settings_backup_{datetime.now().strftime('%Y%m%d_%H%M%S_%f')}.json"
        if not self.path.exists():
            self._write(self._config)
        shutil.copyfile(self.path, backup_path)
        logger.info("Settings backup created: %s", backup_path)
        return backup_path

    def restore_backup(self, backup_path: Path) -> bool:
        if not backup_path.exists():
            return False
        shutil.copyfile(backup_path, self.path)
        self._config = self._load()
        logger.info("Settings restored from %s", backup_path)
        return True

    def export_config(self) -> Dict[str, Any]:
        return {
            "config": self._config.model_dump(mode="json"),
            "exported": datetime.now(timezone.utc).isoformat(),
            "version": EXPORT_VERSION,
        }

    def import_config(self, exported: Dict[str, Any]) -> bool:
        data: Optional[Dict[str, Any]] = exported.get("config") if isinstance(exported, dict) else None
        if not isinstance(data, dict):
            return False
        try:
            config = self._merge(data)
        except ValidationError as e:
            logger.warning("Rejected settings import: %s", e)
            return False
        self._save(config)
        logger.info("Settings imported")
        return True

    # endregion


__all__ = [
    "ConfigStore",
    "StoredConfig",
    "BrowserOptions",
    "WebsiteSettings",
    "IntervalSettings",
    "ChannelToggles",
]
