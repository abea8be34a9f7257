import logging

import pytest

from conftest import make_settings
from rembg_gateway.core.config import DEFAULT_REMBG_PATH, parse_listen_address
from rembg_gateway.core.logging import parse_level


def test_defaults(monkeypatch):
    for name in ("LISTEN_ADDRESS", "LISTEN", "LOG_LEVEL", "LEVEL"):
        monkeypatch.delenv(name, raising=False)

    settings = make_settings()

    assert settings.listen_address is None
    assert settings.log_level == "info"
    assert settings.shutdown_timeout == 30.0
    assert settings.rembg_command == [DEFAULT_REMBG_PATH, "i"]


def test_reads_environment(monkeypatch):
    monkeypatch.setenv("LISTEN_ADDRESS", "127.0.0.1:9000")
    monkeypatch.setenv("LOG_LEVEL", "debug")
    monkeypatch.setenv("REMBG_ARGS", '["i", "-a"]')
    monkeypatch.setenv("SHUTDOWN_TIMEOUT", "5")

    settings = make_settings()

    assert settings.listen_address == "127.0.0.1:9000"
    assert settings.log_level == "debug"
    assert settings.rembg_args == ["i", "-a"]
    assert settings.shutdown_timeout == 5.0


def test_legacy_variable_names(monkeypatch):
    monkeypatch.delenv("LISTEN_ADDRESS", raising=False)
    monkeypatch.delenv("LOG_LEVEL", raising=False)
    monkeypatch.setenv("LISTEN", ":8080")
    monkeypatch.setenv("LEVEL", "warn")

    settings = make_settings()

    assert settings.listen_address == ":8080"
    assert settings.log_level == "warn"


@pytest.mark.parametrize(
    "value,expected",
    [
        ("127.0.0.1:8080", ("127.0.0.1", 8080)),
        (":8080", ("0.0.0.0", 8080)),
        ("[::1]:9000", ("::1", 9000)),
        ("localhost:0", ("localhost", 0)),
    ],
)
def test_parse_listen_address(value, expected):
    assert parse_listen_address(value) == expected


@pytest.mark.parametrize("value", [None, "", "8080", "host:http", "host:70000"])
def test_parse_listen_address_rejects(value):
    with pytest.raises(ValueError):
        parse_listen_address(value)


@pytest.mark.parametrize(
    "name,expected",
    [
        ("debug", logging.DEBUG),
        ("INFO", logging.INFO),
        ("warn", logging.WARNING),
        ("trace", logging.DEBUG),
        ("fatal", logging.CRITICAL),
        ("loud", None),
    ],
)
def test_parse_level(name, expected):
    assert parse_level(name) == expected
