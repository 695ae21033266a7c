from __future__ import annotations

import json
from pathlib import Path

import pytest

from terminwatch.errors import ConfigurationError
from terminwatch.site import DEFAULT_TARGET_URL
from terminwatch.store import ConfigStore


def test_missing_file_creates_defaults(tmp_path: Path) -> None:
    path = tmp_path / "config" / "settings.json"

    store = ConfigStore(path)

    assert path.exists()
    assert store.get_monitored_dates() == []
    assert store.get_website_url() == DEFAULT_TARGET_URL
    assert store.get_check_interval() == (10, 0)
    assert store.auto_start is True


def test_partial_file_is_merged_over_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text(
        json.dumps({"watched_dates": ["2025/08/15", "15.08.2025", "2025/08/15"], "auto_start": False}),
        encoding="utf-8",
    )

    store = ConfigStore(path)

    assert store.get_monitored_dates() == ["2025/08/15"]
    assert store.auto_start is False
    assert store.get_browser_options().timeout_ms == 30000


def test_corrupt_file_falls_back_to_defaults(tmp_path: Path) -> None:
    path = tmp_path / "settings.json"
    path.write_text("{not json", encoding="utf-8")

    store = ConfigStore(path)

    assert store.get_monitored_dates() == []


def test_mutations_are_persisted(store: ConfigStore) -> None:
    assert store.add_watched_date("2025/08/15") is True
    store.set_selected_services({"neuzulassung": True, "umschreibung": False})
    store.set_selected_location("dillenburg", "Dillenburg")
    store.set_check_interval(2, 30)

    reloaded = ConfigStore(store.path)

    assert reloaded.get_monitored_dates() == ["2025/08/15"]
    assert reloaded.get_service_selection().enabled() == ["neuzulassung"]
    assert reloaded.get_selected_location().name == "Dillenburg"
    assert reloaded.get_check_interval() == (2, 30)


def test_invalid_values_are_rejected(store: ConfigStore) -> None:
    with pytest.raises(ConfigurationError):
        store.add_watched_date("2025/02/30")
    with pytest.raises(ConfigurationError):
        store.set_selected_services({"fuehrerschein": True})
    with pytest.raises(ConfigurationError):
        store.set_selected_location("  ")
    with pytest.raises(ConfigurationError):
        store.set_check_interval(0, 0)
    with pytest.raises(ConfigurationError):
        store.set_channel_enabled("sms", True)

    assert store.get_monitored_dates() == []
    assert store.get_check_interval() == (10, 0)


def test_config_returns_a_copy(store: ConfigStore) -> None:
    store.config.watched_dates.append("2025/08/15")

    assert store.get_monitored_dates() == []


def test_toggles(store: ConfigStore) -> None:
    assert store.toggle_auto_start() is False
    store.set_channel_enabled("email", False)

    assert store.channel_enabled("email") is False
    assert store.channel_enabled("telegram") is True
    assert ConfigStore(store.path).auto_start is False


def test_backup_and_restore(store: ConfigStore) -> None:
    store.add_watched_date("2025/08/15")
    backup = store.create_backup()
    store.remove_watched_date("2025/08/15")

    assert store.restore_backup(backup) is True
    assert store.get_monitored_dates() == ["2025/08/15"]
    assert store.restore_backup(backup.parent / "missing.json") is False


def test_export_and_import(store: ConfigStore, tmp_path: Path) -> None:
    store.add_watched_date("2025/08/15")
    exported = store.export_config()

    other = ConfigStore(tmp_path / "other.json")

    assert exported["version"] == "1.0.0"
    assert other.import_config(exported) is True
    assert other.get_monitored_dates() == ["2025/08/15"]
    assert other.import_config({"version": "1.0.0"}) is False
    assert other.import_config({"config": {"check_interval": {"minutes": 99}}}) is False
    assert other.get_check_interval() == (10, 0)
