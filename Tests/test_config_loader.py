import json
import logging
import threading
import time

import pytest

from shared.addon_base import (
    parse_addon_args,
    parse_log_level,
    run_addon_loop,
    set_log_level,
    setup_logging,
    sleep_with_shutdown_check,
)
from shared.config_loader import ConfigError, get_env_with_fallback, load_addon_config

logger = logging.getLogger("ha-addons-tests")


def write_options(tmp_path, data):
    path = tmp_path / "options.json"
    path.write_text(json.dumps(data))
    return str(path)


class TestLoadAddonConfig:
    def test_reads_options_file_and_applies_defaults(self, tmp_path):
        path = write_options(tmp_path, {"api_key": "k", "ilert_email": "a@b.c"})
        config = load_addon_config(path, defaults={"poll_interval": 300}, required_fields=["api_key"])
        assert config["api_key"] == "k"
        assert config["poll_interval"] == 300

    def test_missing_required_field_raises(self, tmp_path, monkeypatch):
        monkeypatch.delenv("API_KEY", raising=False)
        path = write_options(tmp_path, {"api_key": ""})
        with pytest.raises(ConfigError) as excinfo:
            load_addon_config(path, required_fields=["api_key"])
        assert "api_key" in str(excinfo.value)

    def test_required_field_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("API_KEY", "from-env")
        config = load_addon_config(str(tmp_path / "missing.json"), required_fields=["api_key"])
        assert config["api_key"] == "from-env"

    def test_env_prefix(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ES_EMAIL", "user@example.com")
        config = load_addon_config(str(tmp_path / "missing.json"), required_fields=["email"], env_prefix="ES_")
        assert config["email"] == "user@example.com"

    def test_defaults_are_cast_from_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "120")
        monkeypatch.setenv("CALENDAR_PERSONAL_ONLY", "true")
        config = load_addon_config(
            str(tmp_path / "missing.json"),
            defaults={"poll_interval": 300, "calendar_personal_only": False},
        )
        assert config["poll_interval"] == 120
        assert config["calendar_personal_only"] is True

    def test_bad_integer_in_environment(self, tmp_path, monkeypatch):
        monkeypatch.setenv("POLL_INTERVAL", "soon")
        with pytest.raises(ConfigError):
            load_addon_config(str(tmp_path / "missing.json"), defaults={"poll_interval": 300})

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "options.json"
        path.write_text("{not json")
        with pytest.raises(ConfigError):
            load_addon_config(str(path))

    def test_config_error_is_value_error(self):
        assert issubclass(ConfigError, ValueError)


class TestEnvHelpers:
    def test_fallback_when_unset(self, monkeypatch):
        monkeypatch.delenv("SOME_FLAG", raising=False)
        assert get_env_with_fallback("SOME_FLAG", False) is False

    def test_list_cast(self, monkeypatch):
        monkeypatch.setenv("SERVICES", "https://a, https://b,")
        assert get_env_with_fallback("SERVICES", [], list) == ["https://a", "https://b"]


class TestAddonBase:
    def test_parse_log_level(self):
        assert parse_log_level("debug") == logging.DEBUG
        assert parse_log_level("WARNING") == logging.WARNING
        assert parse_log_level("nonsense") == logging.INFO
        assert parse_log_level(None) == logging.INFO

    def test_parse_addon_args(self, monkeypatch):
        monkeypatch.delenv("RUN_ONCE", raising=False)
        args = parse_addon_args("test", ["--config", "/tmp/options.json"])
        assert args.config == "/tmp/options.json"
        assert args.once is False

    def test_run_once_from_environment(self, monkeypatch):
        monkeypatch.setenv("RUN_ONCE", "1")
        assert parse_addon_args("test", []).once is True

    def test_sleep_returns_false_on_shutdown(self):
        event = threading.Event()
        event.set()
        assert sleep_with_shutdown_check(event, 10) is False

    def test_sleep_ends_early_on_wake(self):
        wake = threading.Event()
        wake.set()
        started = time.monotonic()
        assert sleep_with_shutdown_check(threading.Event(), 60, wake_event=wake) is True
        assert time.monotonic() - started < 5
        assert not wake.is_set()

    def test_loop_survives_exceptions(self):
        event = threading.Event()
        calls = []

        def update():
            calls.append(1)
            if len(calls) == 2:
                event.set()
            raise RuntimeError("transient")

        run_addon_loop(update, 0, event)
        assert len(calls) == 2

    def test_configured_level_reaches_log_file(self, tmp_path):
        root = logging.getLogger()
        root_level = root.level
        handler_levels = [(handler, handler.level) for handler in root.handlers]
        addon_logger = setup_logging(name="level_check", log_dir=str(tmp_path))
        try:
            set_log_level(logging.DEBUG, "level_check")
            addon_logger.debug("debug line for the file")

            content = (tmp_path / "level_check.log").read_text()
            assert "debug line for the file" in content
        finally:
            for handler in list(addon_logger.handlers):
                addon_logger.removeHandler(handler)
                handler.close()
            addon_logger.setLevel(logging.NOTSET)
            root.setLevel(root_level)
            for handler, level in handler_levels:
                handler.setLevel(level)
