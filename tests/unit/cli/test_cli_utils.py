"""Unit tests for CLI utilities."""

import logging
from logging.handlers import RotatingFileHandler

import pytest

from xrdeploy.cli_utils import ErrorFormatter, PathValidator, setup_logging


@pytest.fixture(autouse=True)
def reset_logging():
    yield
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_xrd_handler", False):
            root.removeHandler(handler)
            handler.close()


class TestSetupLogging:
    def test_log_file_under_project(self, tmp_path):
        log_file = setup_logging(tmp_path)
        assert log_file == tmp_path / ".xrd" / "logs" / "xrd.log"
        logging.info("pipeline started")
        for handler in logging.getLogger().handlers:
            handler.flush()
        assert "pipeline started" in log_file.read_text()

    def test_repeated_setup_does_not_duplicate_handlers(self, tmp_path):
        setup_logging(tmp_path)
        setup_logging(tmp_path)
        ours = [h for h in logging.getLogger().handlers if getattr(h, "_xrd_handler", False)]
        assert len(ours) == 2
        assert sum(isinstance(h, RotatingFileHandler) for h in ours) == 1

    def test_console_only(self):
        assert setup_logging(None) is None

    def test_verbose_lowers_level(self, tmp_path):
        setup_logging(tmp_path, verbose=True)
        assert logging.getLogger().level == logging.DEBUG


class TestErrorFormatter:
    def test_print_problems(self, capsys):
        ErrorFormatter.print_problems("Configuration invalid", ["first", "second"])
        out = capsys.readouterr().out
        assert "✗ Configuration invalid" in out
        assert "  - first\n  - second" in out

    def test_print_success(self, capsys):
        ErrorFormatter.print_success("Build successful!")
        assert "✓ Build successful!" in capsys.readouterr().out

    def test_keyboard_interrupt_exit_code(self):
        with pytest.raises(SystemExit) as exc_info:
            ErrorFormatter.handle_keyboard_interrupt()
        assert exc_info.value.code == 130


class TestPathValidator:
    def test_valid_directory(self, tmp_path):
        PathValidator.validate_project_dir(tmp_path)

    def test_missing(self, tmp_path):
        with pytest.raises(SystemExit) as exc_info:
            PathValidator.validate_project_dir(tmp_path / "missing")
        assert exc_info.value.code == 2
