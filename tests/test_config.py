"""
Tests for environment-driven settings.
"""
from config import Settings


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("STRICT_ORDER_TRANSITIONS", "Yes")
    monkeypatch.setenv("PREDICTION_CACHE_TTL", "30")
    monkeypatch.setenv("NOTIFICATION_TASK_QUEUE", "mail-tq")

    settings = Settings.from_env()

    assert settings.strict_order_transitions is True
    assert settings.prediction_cache_ttl == 30.0
    assert settings.notification_task_queue == "mail-tq"
    assert settings.sql_echo is True


def test_defaults(monkeypatch):
    for name in ("LOG_LEVEL", "STRICT_ORDER_TRANSITIONS", "PREDICTION_CACHE_TTL"):
        monkeypatch.delenv(name, raising=False)

    settings = Settings.from_env()

    assert settings.strict_order_transitions is False
    assert settings.prediction_cache_ttl == 600.0
    assert settings.sql_echo is False
