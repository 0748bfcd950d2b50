"""Tests for server configuration and the command-line parser."""

import pytest

from py_taskcal.cmd.server import build_parser
from py_taskcal.config import ServerConfig


def test_defaults_from_environment(monkeypatch):
    monkeypatch.setenv("TASKCAL_PORT", "9090")
    monkeypatch.setenv("TASKCAL_USER", "alice")
    monkeypatch.setenv("TASKCAL_PREFIX", "dav/")
    monkeypatch.setenv("TASKCAL_DEBUG", "yes")

    config = ServerConfig()

    assert config.port == 9090
    assert config.username == "alice"
    assert config.prefix == "/dav"
    assert config.debug is True


def test_builtin_defaults(monkeypatch):
    for name in ("TASKCAL_HOST", "TASKCAL_PORT", "TASKCAL_PREFIX", "TASKCAL_CALENDAR", "TASKCAL_DEBUG"):
        monkeypatch.delenv(name, raising=False)

    config = ServerConfig()

    assert config.host == "127.0.0.1"
    assert config.port == 8080
    assert config.prefix == ""
    assert config.calendar_slug == "personal"
    assert config.debug is False


def test_invalid_port():
    with pytest.raises(ValueError, match="invalid port"):
        ServerConfig(port=70000)


def test_parser_uses_config_defaults():
    parser = build_parser(ServerConfig(port=9000, username="alice"))

    args = parser.parse_args([])
    assert args.port == 9000
    assert args.user == "alice"

    args = parser.parse_args(["--port", "8000", "--prefix", "/dav", "--debug"])
    assert args.port == 8000
    assert args.prefix == "/dav"
    assert args.debug is True
