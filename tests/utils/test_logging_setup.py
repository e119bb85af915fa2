import logging

import pytest

from adaptive_research.config.settings import LoggingConfig
from adaptive_research.utils.logging import (
    ColoredFormatter,
    PlainFormatter,
    get_file_handler,
    remove_file_handler,
    setup_colored_logging,
    setup_logging_from_config,
    strip_ansi_codes,
)


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    level = root.level
    yield root
    remove_file_handler()
    for handler in list(root.handlers):
        if isinstance(handler.formatter, ColoredFormatter):
            root.removeHandler(handler)
    root.setLevel(level)


def _record(name, level=logging.INFO, msg="hello %s", args=("world",)):
    return logging.LogRecord(name, level, __file__, 1, msg, args, None)


def test_colored_formatter_themes_components():
    text = ColoredFormatter().format(_record("adaptive_research.workflow.router"))

    assert "🧭" in text
    assert "router" in text
    assert strip_ansi_codes(text).endswith("hello world")


def test_colored_formatter_falls_back_for_unknown_loggers():
    text = ColoredFormatter().format(_record("somewhere.else"))
    assert "•" in text


def test_warnings_are_coloured():
    text = ColoredFormatter().format(_record("adaptive_research.workflow.executor", logging.WARNING))
    assert ColoredFormatter.COLORS["WARNING"] + "hello world" in text


def test_plain_formatter_strips_ansi():
    record = _record("adaptive_research.workflow.steps", msg="\033[31mred\033[0m", args=())
    text = PlainFormatter().format(record)

    assert "\033[" not in text
    assert text.endswith("| steps        | red")


def test_setup_writes_plain_text_to_the_log_file(tmp_path, restore_root_logger):
    log_file = tmp_path / "logs" / "run.log"
    setup_colored_logging("debug", log_file)

    logging.getLogger("adaptive_research.workflow.graph").info("run started")
    get_file_handler().flush()

    content = log_file.read_text(encoding="utf-8")
    assert "run started" in content
    assert "\033[" not in content
    assert restore_root_logger.level == logging.DEBUG


def test_setup_from_config(restore_root_logger):
    setup_logging_from_config(LoggingConfig(level="WARNING"))

    assert restore_root_logger.level == logging.WARNING
    assert get_file_handler() is None
    assert isinstance(restore_root_logger.handlers[0].formatter, ColoredFormatter)


def test_setup_defaults_to_the_global_settings(monkeypatch, restore_root_logger):
    monkeypatch.setenv("ADAPTIVE_RESEARCH_LOGGING__LEVEL", "DEBUG")

    setup_logging_from_config()

    assert restore_root_logger.level == logging.DEBUG
