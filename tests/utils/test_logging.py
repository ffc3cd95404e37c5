# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the structured JSON logger.

We verify:
  - output is valid JSON
  - all mandatory fields are present (ts, level, module, msg)
  - log levels filter correctly
  - extra context fields get merged into the JSON
  - tracebacks are attached when exc_info is set
  - package loggers pick up the configured level
"""

import json
import logging
from pathlib import Path

import pytest

from nmtrain.logging.logger import configure_package_loggers, get_logger


@pytest.fixture(autouse=True)
def _reset_loggers() -> None:
    """Clear test logger handlers so each test starts from a fresh logger."""
    yield  # type: ignore[misc]
    for name in list(logging.Logger.manager.loggerDict):
        if name.startswith("nmtrain.test") or name.startswith("pkgtest"):
            logger = logging.getLogger(name)
            for handler in logger.handlers:
                handler.close()
            logger.handlers.clear()


class TestJsonOutput:
    def test_mandatory_fields_are_present(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("nmtrain.test.fields", log_level="INFO")
        logger.info("test message")
        parsed = json.loads(capsys.readouterr().out.strip())

        assert {"ts", "level", "module", "msg"} <= parsed.keys()
        assert parsed["level"] == "INFO"
        assert parsed["module"] == "nmtrain.test.fields"
        assert parsed["msg"] == "test message"

    def test_extra_fields_are_included(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("nmtrain.test.extra", log_level="DEBUG")
        logger.info("Training progress", extra={"step": 100, "ppl": 12.5})
        parsed = json.loads(capsys.readouterr().out.strip())

        assert parsed["step"] == 100
        assert parsed["ppl"] == 12.5

    def test_exception_is_attached(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("nmtrain.test.exc", log_level="INFO")
        try:
            raise RuntimeError("boom")
        except RuntimeError:
            logger.error("Training aborted", exc_info=True)
        parsed = json.loads(capsys.readouterr().out.strip())

        assert "RuntimeError: boom" in parsed["exception"]

    def test_non_json_values_are_stringified(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("nmtrain.test.path", log_level="INFO")
        logger.info("saved", extra={"path": Path("/tmp/model.pt")})
        parsed = json.loads(capsys.readouterr().out.strip())
        assert parsed["path"] == "/tmp/model.pt"


class TestLogLevelFiltering:
    def test_debug_messages_hidden_at_info_level(self, capsys: pytest.CaptureFixture[str]) -> None:
        logger = get_logger("nmtrain.test.level_filter", log_level="INFO")
        logger.debug("this should not appear")
        assert capsys.readouterr().out.strip() == ""

    def test_level_can_be_raised_later(self, capsys: pytest.CaptureFixture[str]) -> None:
        get_logger("nmtrain.test.relevel", log_level="DEBUG")
        logger = get_logger("nmtrain.test.relevel", log_level="ERROR")
        logger.warning("hidden")
        assert capsys.readouterr().out.strip() == ""
        assert len(logger.handlers) == 1

    def test_invalid_level_raises_value_error(self) -> None:
        with pytest.raises(ValueError, match="Invalid log level"):
            get_logger("nmtrain.test.invalid", log_level="LOUD")


class TestPackageLoggers:
    def test_configure_relevels_existing_loggers(self, capsys: pytest.CaptureFixture[str]) -> None:
        child = get_logger("pkgtest.child", log_level="INFO")
        get_logger("pkgtest_other", log_level="INFO")

        configure_package_loggers("WARNING", prefix="pkgtest")

        child.info("hidden")
        assert capsys.readouterr().out.strip() == ""
        assert logging.getLogger("pkgtest_other").level == logging.INFO

    def test_configure_adds_file_handler_once(self, tmp_path: Path) -> None:
        log_file = tmp_path / "logs" / "run.log"
        child = get_logger("pkgtest.file", log_level="INFO")

        configure_package_loggers("INFO", log_file, prefix="pkgtest")
        configure_package_loggers("INFO", log_file, prefix="pkgtest")
        child.info("to file")

        file_handlers = [h for h in child.handlers if isinstance(h, logging.FileHandler)]
        assert len(file_handlers) == 1
        lines = log_file.read_text(encoding="utf-8").strip().splitlines()
        assert json.loads(lines[-1])["msg"] == "to file"


class TestFileOutput:
    def test_logs_are_written_to_file(self, tmp_path: Path) -> None:
        log_file = tmp_path / "test.log"
        logger = get_logger("nmtrain.test.file_output", log_level="INFO", log_file=log_file)
        logger.info("file log test")

        parsed = json.loads(log_file.read_text(encoding="utf-8").strip())
        assert parsed["msg"] == "file log test"
