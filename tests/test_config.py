from pathlib import Path

import pytest

from giveawaybot.config import ConfigError, load_config

EXAMPLE = Path(__file__).resolve().parent.parent / "config" / "config.example.yaml"


def write_config(tmp_path, text):
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


def test_example_config_loads(monkeypatch):
    monkeypatch.setenv("DISCORD_TOKEN", "secret-token")

    config = load_config(EXAMPLE)

    assert config.token == "secret-token"
    assert config.default_timezone == "Europe/Berlin"
    assert config.manual_defaults.duration_minutes == 1440
    assert config.storage.path == Path("data/giveaways.sqlite")
    assert config.conclusion.store_retry_attempts == 3
    assert config.conclusion.store_retry_delay_seconds == 0.5
    assert config.recovery.sweep_interval_minutes == 1
    assert config.permissions.development_guild_id is None
    assert config.logging.logger_channel_id is None


def test_minimal_config_uses_defaults(tmp_path):
    config = load_config(write_config(tmp_path, "token: abc\napplication_id: 42\n"))

    assert config.application_id == 42
    assert config.default_timezone == "UTC"
    assert config.logging.level == "INFO"
    assert config.conclusion.store_retry_attempts == 3


def test_missing_env_reference_is_reported(tmp_path, monkeypatch):
    monkeypatch.delenv("MISSING_TOKEN", raising=False)
    path = write_config(tmp_path, "token: ${MISSING_TOKEN}\napplication_id: 1\n")

    with pytest.raises(ConfigError, match="MISSING_TOKEN"):
        load_config(path)


@pytest.mark.parametrize(
    "body, message",
    [
        ("application_id: 1\n", "Missing required config key: token"),
        ("token: abc\napplication_id: nope\n", "application_id must be an integer"),
        ("token: abc\napplication_id: 1\ndefault_timezone: Mars/Base\n", "Invalid timezone"),
        (
            "token: abc\napplication_id: 1\nmanual_defaults:\n  duration_minutes: 0\n",
            "duration_minutes",
        ),
        (
            "token: abc\napplication_id: 1\nconclusion:\n  store_retry_attempts: 0\n",
            "store_retry_attempts",
        ),
        (
            "token: abc\napplication_id: 1\nconclusion:\n  store_retry_delay_seconds: -1\n",
            "must not be negative",
        ),
        (
            "token: abc\napplication_id: 1\nrecovery:\n  sweep_interval_minutes: 0\n",
            "sweep_interval_minutes",
        ),
        (
            "token: abc\napplication_id: 1\npermissions:\n  development_guild_id: abc\n",
            "development_guild_id",
        ),
        ("token: abc\napplication_id: 1\nlogging: [1, 2]\n", "logging must be a mapping"),
        ("- just\n- a list\n", "mapping at the root"),
    ],
)
def test_invalid_values_raise_config_error(tmp_path, body, message):
    with pytest.raises(ConfigError, match=message):
        load_config(write_config(tmp_path, body))


def test_missing_file(tmp_path):
    with pytest.raises(ConfigError, match="does not exist"):
        load_config(tmp_path / "absent.yaml")
