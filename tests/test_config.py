from __future__ import annotations

from typing import Iterator

import pytest
from pydantic import ValidationError

from terminwatch.config import get_settings


@pytest.fixture(autouse=True)
def fresh_settings() -> Iterator[None]:
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def test_settings_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("BOT_TOKEN", "123:abc")
    monkeypatch.setenv("ADMIN_CHAT_ID", "42")
    monkeypatch.setenv("HISTORY_CAPACITY", "10")
    monkeypatch.setenv("HEADLESS", "false")
    monkeypatch.delenv("SMTP_HOST", raising=False)

    settings = get_settings()

    assert settings.bot.admin_chat_id == 42
    assert settings.engine.history_capacity == 10
    assert settings.engine.headless is False
    assert settings.smtp.is_configured is False
    assert settings.store_path.name == "settings.json"


def test_invalid_capacity_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("HISTORY_CAPACITY", "0")

    with pytest.raises(ValidationError):
        get_settings()
