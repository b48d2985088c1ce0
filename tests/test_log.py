import logging

import pytest

from appbuilder.log import get_logger, init_logger, is_colored, is_debug_enabled


@pytest.fixture(autouse=True)
def _reset_handlers():
    yield
    logging.getLogger("appbuilder").handlers.clear()


@pytest.mark.parametrize("value", ["1", "true", ""])
def test_force_color_enables(monkeypatch, value):
    monkeypatch.setenv("FORCE_COLOR", value)
    assert is_colored() is True


@pytest.mark.parametrize("value", ["0", "false"])
def test_force_color_disables(monkeypatch, value):
    monkeypatch.setenv("FORCE_COLOR", value)
    assert is_colored() is False


def test_dumb_terminal_not_colored(monkeypatch):
    monkeypatch.delenv("FORCE_COLOR", raising=False)
    monkeypatch.setenv("TERM", "dumb")
    assert is_colored() is False


def test_debug_enabled_by_env(monkeypatch):
    monkeypatch.setenv("DEBUG", "electron-builder")
    init_logger()
    assert is_debug_enabled() is True


def test_debug_false_keeps_info(monkeypatch):
    monkeypatch.setenv("DEBUG", "false")
    init_logger()
    assert is_debug_enabled() is False


def test_debug_unset(monkeypatch):
    monkeypatch.delenv("DEBUG", raising=False)
    init_logger()
    assert is_debug_enabled() is False


def test_messages_with_fields(monkeypatch, capsys):
    monkeypatch.setenv("FORCE_COLOR", "0")
    monkeypatch.delenv("DEBUG", raising=False)
    init_logger()
    logger = get_logger()
    logger.info("downloaded", extra={"fields": {"url": "https://example.com/a.zip"}})
    logger.debug("hidden message")
    err = capsys.readouterr().err
    assert "downloaded url=https://example.com/a.zip" in err
    assert "hidden message" not in err
    assert "\x1b[" not in err


def test_child_logger_propagates(monkeypatch, capsys):
    monkeypatch.setenv("FORCE_COLOR", "0")
    init_logger()
    logging.getLogger("appbuilder.fs").warning("child message")
    assert "warning child message" in capsys.readouterr().err