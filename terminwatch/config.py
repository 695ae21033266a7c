"""
Process settings via Pydantic v2 and python-dotenv.

Laden der Prozess-Konfiguration aus .env und Umgebungsvariablen.
Benutzerdaten (Termine, Intervall, Standort) liegen im ConfigStore.
"""

from __future__ import annotations

from functools import lru_cache
import os
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from pydantic import BaseModel, Field, computed_field


BASE_DIR = Path(__file__).resolve().parent.parent
# In Docker DATA_DIR=/app/data setzen und als Volume mounten, damit settings.json erhalten bleibt
DATA_DIR = Path(os.environ.get("DATA_DIR", str(BASE_DIR)))
ENV_PATH = BASE_DIR / ".env"

if ENV_PATH.exists():
    load_dotenv(ENV_PATH, override=False)


class BotConfig(BaseModel):
    token: str
    admin_chat_id: int


class SmtpConfig(BaseModel):
    host: str = ""
    port: int = Field(default=587, ge=1, le=65535)
    user: str = ""
    password: str = ""
    recipient: str = ""
    sender: str = ""

    @computed_field  # type: ignore[misc]
    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.user and self.password and self.recipient)

    @property
    def from_address(self) -> str:
        if self.sender.strip():
            return self.sender.strip()
        return f"Terminwatch <{self.user.strip() or 'noreply@localhost'}>"


class EngineConfig(BaseModel):
    history_capacity: int = Field(default=50, ge=1)
    delivery_timeout: float = Field(default=15.0, gt=0)
    headless: bool = True
    debug_screenshots: bool = True


class LoggingConfig(BaseModel):
    logs_dir: Path = Field(default_factory=lambda: BASE_DIR / "logs")
    log_level: str = Field(default="INFO")
    max_bytes: int = Field(default=5 * 1024 * 1024)  # 5 MB
    backup_count: int = Field(default=5)


class Settings(BaseModel):
    bot: BotConfig
    smtp: SmtpConfig = SmtpConfig()
    engine: EngineConfig = EngineConfig()
    logging: LoggingConfig = LoggingConfig()
    data_dir: Path = DATA_DIR

    @property
    def store_path(self) -> Path:
        return self.data_dir / "config" / "settings.json"


def _env_flag(value: Optional[str], default: bool) -> bool:
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@lru_cache
def get_settings() -> Settings:
    """
    Load and cache settings.

    Raises ValidationError if .env is incomplete or invalid.
    """
    env = os.environ

    bot = BotConfig(
        token=env.get("BOT_TOKEN", ""),
        admin_chat_id=int(env.get("ADMIN_CHAT_ID", "0") or "0"),
    )
    smtp = SmtpConfig(
        host=env.get("SMTP_HOST", ""),
        port=int(env.get("SMTP_PORT", "587") or "587"),
        user=env.get("SMTP_USER", ""),
        password=env.get("SMTP_PASSWORD", ""),
        recipient=env.get("NOTIFY_EMAIL", ""),
        sender=env.get("NOTIFY_FROM", ""),
    )
    engine = EngineConfig(
        history_capacity=int(env.get("HISTORY_CAPACITY", "50")),
        delivery_timeout=float(env.get("DELIVERY_TIMEOUT", "15")),
        headless=_env_flag(env.get("HEADLESS"), True),
        debug_screenshots=_env_flag(env.get("DEBUG_SCREENSHOTS"), True),
    )
    logging_cfg = LoggingConfig(log_level=env.get("LOG_LEVEL", "INFO"))
    return Settings(bot=bot, smtp=smtp, engine=engine, logging=logging_cfg)


__all__ = [
    "Settings",
    "BotConfig",
    "SmtpConfig",
    "EngineConfig",
    "LoggingConfig",
    "get_settings",
    "BASE_DIR",
    "DATA_DIR",
]
