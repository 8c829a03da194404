import logging
import os
import sys

from autoseo.utils import configure_logging, log_event


def test_configure_logging_idempotent(tmp_path, monkeypatch):
    log_file = tmp_path / "app.log"
    monkeypatch.setenv("AUTOSEO_LOG_LEVEL", "INFO")
    monkeypatch.setenv("AUTOSEO_LOG_FILE", str(log_file))

    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    try:
        root.handlers = []
        configure_logging("autoseo.worker")
        after_first = list(root.handlers)
        configure_logging("autoseo.worker")

        assert root.handlers == after_first
        stdout_handlers = [
            handler
            for handler in root.handlers
            if isinstance(handler, logging.StreamHandler)
            and getattr(handler, "stream", None) is sys.stdout
        ]
        file_handlers = [
            handler for handler in root.handlers if isinstance(handler, logging.FileHandler)
        ]
        assert len(stdout_handlers) == 1
        assert len(file_handlers) == 1
        assert os.path.abspath(file_handlers[0].baseFilename) == os.path.abspath(
            str(log_file)
        )
    finally:
        for handler in root.handlers:
            if handler not in original_handlers:
                handler.close()
        root.handlers = original_handlers
        root.setLevel(original_level)


def test_log_level_overrides(monkeypatch):
    monkeypatch.setenv("AUTOSEO_LOG_LEVELS", "autoseo.publishing=DEBUG, autoseo.queue=warning")
    try:
        configure_logging("autoseo.cli")
        assert logging.getLogger("autoseo.publishing").level == logging.DEBUG
        assert logging.getLogger("autoseo.queue").level == logging.WARNING
    finally:
        logging.getLogger("autoseo.publishing").setLevel(logging.NOTSET)
        logging.getLogger("autoseo.queue").setLevel(logging.NOTSET)


def test_log_event_format(caplog):
    logger = logging.getLogger("autoseo.test")
    with caplog.at_level(logging.INFO, logger="autoseo.test"):
        log_event(logger, logging.INFO, "job_claimed", job_id="job_1", attempt=2)
    assert "event=job_claimed job_id=job_1 attempt=2" in caplog.text
