import yaml

from prayer_reminder.core.config import DEFAULT_CONFIG, Config, merge_defaults


def test_missing_keys_come_from_defaults(config, tmp_path):
    assert config.data["reminders"] == {"enabled": True, "interval_minutes": 10}
    assert config.data["location"]["latitude"] == 41.0082
    assert config.data["windows"]["extend_last_window_to_next_day"] is False
    assert config.data["logging"]["file"] == str(tmp_path / "test.log")
    assert config.data["logging"]["level"] == "DEBUG"


def test_merge_defaults_is_recursive_and_copies():
    merged = merge_defaults(DEFAULT_CONFIG, {"location": {"city": "Plano"}})
    assert merged["location"]["city"] == "Plano"
    assert merged["location"]["method"] == 13
    merged["location"]["method"] = 2
    assert DEFAULT_CONFIG["location"]["method"] == 13


def test_default_file_is_created(tmp_path):
    path = tmp_path / "nested" / "config.yaml"
    cfg = Config(config_path=str(path), watch=False)
    assert path.exists()
    assert yaml.safe_load(path.read_text())["refresh_time"] == "10:00"
    assert cfg.reminder_settings() == {"enabled": True, "interval_minutes": 10}


def test_env_substitution(tmp_path, monkeypatch):
    monkeypatch.setenv("PRAYER_LAT", "32.9")
    path = tmp_path / "config.yaml"
    path.write_text("location:\n  latitude: ${PRAYER_LAT}\n  city: $UNSET_PRAYER_CITY\n")
    cfg = Config(config_path=str(path), watch=False)
    assert cfg.data["location"]["latitude"] == "32.9"
    assert cfg.data["location"]["city"] == "$UNSET_PRAYER_CITY"


def test_env_file_loaded_without_overriding(tmp_path, monkeypatch):
    monkeypatch.setenv("PRAYER_CITY", "Sachse")
    monkeypatch.delenv("PRAYER_METHOD", raising=False)
    (tmp_path / ".env").write_text("# comment\nPRAYER_CITY=Dallas\nPRAYER_METHOD='2'\n")
    path = tmp_path / "config.yaml"
    path.write_text("location:\n  city: ${PRAYER_CITY}\n  method: ${PRAYER_METHOD}\n")
    cfg = Config(config_path=str(path), watch=False)
    assert cfg.data["location"]["city"] == "Sachse"
    assert cfg.data["location"]["method"] == "2"
    monkeypatch.delenv("PRAYER_METHOD", raising=False)


def test_invalid_reload_keeps_previous(config):
    config.config_file.write_text("- not\n- a mapping\n")
    config.reload()
    assert config.data["reminders"]["interval_minutes"] == 10


def test_reload_notifies_callbacks(config):
    seen = []
    config.register_change_callback(lambda old, new: seen.append((old["reminders"], new["reminders"])))
    config.config_file.write_text("reminders:\n  interval_minutes: 25\n")
    config.reload()
    assert seen == [({"enabled": True, "interval_minutes": 10}, {"enabled": True, "interval_minutes": 25})]


def test_save_reminder_settings_persists(config):
    config.save_reminder_settings(15, False)
    reread = Config(config_path=str(config.config_file), watch=False)
    assert reread.reminder_settings() == {"enabled": False, "interval_minutes": 15}


def test_save_reminder_settings_keeps_raw_values(tmp_path, monkeypatch):
    monkeypatch.setenv("PRAYER_API_HOST", "10.0.0.5")
    path = tmp_path / "config.yaml"
    path.write_text(
        "api:\n  host: ${PRAYER_API_HOST}\n"
        "logging:\n  file: ~/prayer.log\n"
        "reminders:\n  enabled: true\n  interval_minutes: 10\n"
    )
    cfg = Config(config_path=str(path), watch=False)
    assert cfg.data["api"]["host"] == "10.0.0.5"

    cfg.save_reminder_settings(20, True)
    raw = yaml.safe_load(path.read_text())
    assert raw["api"] == {"host": "${PRAYER_API_HOST}"}
    assert raw["logging"] == {"file": "~/prayer.log"}
    assert raw["reminders"] == {"enabled": True, "interval_minutes": 20}
    assert "location" not in raw
    assert cfg.reminder_settings() == {"enabled": True, "interval_minutes": 20}
