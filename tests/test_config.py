import logging

from pythonjsonlogger.json import JsonFormatter

from resident_messaging.config import Settings
from resident_messaging.core.logging import configure_logging
from resident_messaging.core.request_context import RequestIdLogFilter


def test_messaging_defaults():
    settings = Settings(_env_file=None)

    assert settings.buildings == ["A", "B", "C", "D"]
    assert settings.emergency_overrides_read_state is True
    assert settings.email_subject_prefix == "SPR-HOA: "
    assert settings.sender_display_name == "SPR Admin"


def test_environment_overrides_messaging_policy(monkeypatch):
    monkeypatch.setenv("BUILDINGS", '["A", "B", "E"]')
    monkeypatch.setenv("ADMIN_USER_IDS", "[7, 9]")
    monkeypatch.setenv("EMERGENCY_OVERRIDES_READ_STATE", "false")

    settings = Settings(_env_file=None)

    assert settings.buildings == ["A", "B", "E"]
    assert settings.admin_user_ids == [7, 9]
    assert settings.emergency_overrides_read_state is False


def test_request_id_filter_defaults_to_dash():
    record = logging.LogRecord("test", logging.INFO, __file__, 1, "hello", None, None)

    assert RequestIdLogFilter().filter(record) is True
    assert record.request_id == "-"


def test_configure_logging_installs_json_handler():
    configure_logging("DEBUG")

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(handler.formatter, JsonFormatter) for handler in root.handlers)
    configure_logging("INFO")
