import logging
import logging.handlers
import threading
from pathlib import Path

import pytest

from ws_monitor.app import logging_setup
from ws_monitor.app.errors import ConfigurationError

from support import make_settings


@pytest.fixture()
def restore_logging():
    root = logging.getLogger()
    app = logging.getLogger(logging_setup.APP_LOGGER_NAME)
    handlers, root_level, app_level = list(root.handlers), root.level, app.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(root_level)
    app.setLevel(app_level)


def _flush() -> None:
    for handler in logging.getLogger().handlers:
        handler.flush()


def _ours():
    return [h for h in logging.getLogger().handlers if getattr(h, logging_setup._HANDLER_TAG, False)]


@pytest.mark.unit
def test_file_lines_carry_component_and_thread(tmp_path: Path, restore_logging) -> None:
    settings = make_settings(tmp_path, log_file=tmp_path / "out" / "monitor.log", log_level="INFO")

    log_path = logging_setup.setup_logging(settings, console=False)
    logging.getLogger("workspace_monitor.monitor").debug("Scan queued: project=api")
    worker = threading.Thread(
        target=lambda: logging.getLogger("workspace_monitor.watcher").info("Change: project=api"),
        name="watcher-poll",
    )
    worker.start()
    worker.join()
    _flush()

    assert log_path == tmp_path / "out" / "monitor.log"
    text = log_path.read_text(encoding="utf-8")
    assert "INFO app [MainThread] Logging initialized" in text
    assert "DEBUG monitor [MainThread] Scan queued: project=api" in text
    assert "INFO watcher [watcher-poll] Change: project=api" in text


@pytest.mark.unit
def test_default_location_is_the_monitor_directory(tmp_path: Path, restore_logging) -> None:
    settings = make_settings(tmp_path)

    log_path = logging_setup.setup_logging(settings, console=False)

    assert log_path == tmp_path / "monitor" / "logs" / logging_setup.LOG_FILE_NAME
    assert log_path.exists()


@pytest.mark.unit
def test_unwritable_log_file_falls_back(tmp_path: Path, restore_logging) -> None:
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("", encoding="utf-8")
    settings = make_settings(tmp_path, log_file=blocker / "monitor.log")

    log_path = logging_setup.setup_logging(settings, console=False)

    assert log_path == tmp_path / "monitor" / "logs" / logging_setup.LOG_FILE_NAME


@pytest.mark.unit
def test_console_uses_configured_level_and_setup_replaces_handlers(tmp_path: Path, restore_logging) -> None:
    settings = make_settings(tmp_path, log_level="warning")

    logging_setup.setup_logging(settings)
    first = _ours()
    logging_setup.setup_logging(settings)
    second = _ours()

    assert len(first) == len(second) == 2
    assert not set(first) & set(second)
    console = [h for h in second if not isinstance(h, logging.handlers.RotatingFileHandler)]
    assert console[0].level == logging.WARNING
    assert logging.getLogger(logging_setup.APP_LOGGER_NAME).level == logging.DEBUG


@pytest.mark.unit
def test_unknown_level_is_a_configuration_error(tmp_path: Path, restore_logging) -> None:
    with pytest.raises(ConfigurationError):
        logging_setup.setup_logging(make_settings(tmp_path, log_level="chatty"), console=False)
    assert logging_setup.resolve_level("warn") == logging.WARNING


@pytest.mark.unit
def test_third_party_loggers_are_quiet_unless_debugging(restore_logging) -> None:
    logging_setup.configure_third_party_loggers(logging.INFO)
    assert logging.getLogger("watchdog").level == logging.WARNING

    logging_setup.configure_third_party_loggers(logging.DEBUG)
    assert logging.getLogger("docker").level == logging.INFO
    assert logging.getLogger("urllib3.connectionpool").level == logging.WARNING
