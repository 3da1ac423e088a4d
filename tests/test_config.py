from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from storewatch.config import ENV_OVERRIDES, WatchConfig, load_config


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch) -> None:
    for name in (*ENV_OVERRIDES, "STOREWATCH_CONFIG"):
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path: Path) -> None:
    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.diff_threshold_percent == 5.0
    assert config.pixel_threshold == 0.1
    assert config.max_failures_before_inactive == 5
    assert config.visual_interval_seconds == 900
    assert config.ping_interval_seconds == 300
    assert config.store_delay_seconds == 5.0
    assert config.capture_timeout_seconds == 45.0
    assert config.advance_baseline_on_alert is False
    assert config.ping_alert_cooldown_seconds == 0


def test_yaml_file_values(tmp_path: Path) -> None:
    path = tmp_path / "storewatch.yaml"
    path.write_text("diff_threshold_percent: 2.5\nvisual_interval_seconds: 60\ntelegram_chat_id: '-100'\n")

    config = load_config(str(path))

    assert config.diff_threshold_percent == 2.5
    assert config.visual_interval_seconds == 60
    assert config.telegram_chat_id == "-100"


def test_env_overrides_file(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "storewatch.yaml"
    path.write_text("diff_threshold_percent: 2.5\n")
    monkeypatch.setenv("DIFF_THRESHOLD_PERCENT", "7.5")
    monkeypatch.setenv("ADVANCE_BASELINE_ON_ALERT", "yes")
    monkeypatch.setenv("STOREWATCH_DB_PATH", "/tmp/other.db")

    config = load_config(str(path))

    assert config.diff_threshold_percent == 7.5
    assert config.advance_baseline_on_alert is True
    assert config.database_path == "/tmp/other.db"


def test_unparseable_env_value_is_ignored(tmp_path: Path, monkeypatch) -> None:
    monkeypatch.setenv("VISUAL_INTERVAL_SECONDS", "every so often")
    monkeypatch.setenv("BROWSER_HEADLESS", "maybe")

    config = load_config(str(tmp_path / "missing.yaml"))

    assert config.visual_interval_seconds == 900
    assert config.browser_headless is True


def test_config_path_from_environment(tmp_path: Path, monkeypatch) -> None:
    path = tmp_path / "custom.yaml"
    path.write_text("ping_interval_seconds: 42\n")
    monkeypatch.setenv("STOREWATCH_CONFIG", str(path))

    assert load_config().ping_interval_seconds == 42


def test_pixel_threshold_is_bounded() -> None:
    with pytest.raises(ValidationError):
        WatchConfig(pixel_threshold=1.5)
