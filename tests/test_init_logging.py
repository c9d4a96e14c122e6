import json
import logging
from logging.handlers import TimedRotatingFileHandler

from fastapi import FastAPI

from supportsync.app_logging import APP_LOGGER_NAME, JsonFormatter, init_logging


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


def test_init_logging_adds_handlers(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")
    app_logger = _clear_handlers(APP_LOGGER_NAME)
    access_logger = _clear_handlers("uvicorn.access")

    app = FastAPI()
    init_logging(app)

    app_handler = next(h for h in app_logger.handlers if isinstance(h, TimedRotatingFileHandler))
    assert app_handler.when == "MIDNIGHT"
    assert app_handler.backupCount == 5
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)
    assert app.logger is app_logger

    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_module_loggers_reach_app_log(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    app_logger = _clear_handlers(APP_LOGGER_NAME)
    _clear_handlers("uvicorn.access")

    init_logging()
    logging.getLogger("supportsync.support.service").info("reconciled conversation 42")
    for handler in app_logger.handlers:
        handler.flush()

    assert "reconciled conversation 42" in (tmp_path / "app.log").read_text()

    app_logger.handlers.clear()
    logging.getLogger("uvicorn.access").handlers.clear()


def test_init_logging_replaces_existing_access_handlers(monkeypatch, tmp_path):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    access_logger = _clear_handlers("uvicorn.access")

    stream_handler = logging.StreamHandler()
    access_logger.addHandler(stream_handler)

    init_logging()

    assert stream_handler not in access_logger.handlers
    assert any(isinstance(h, TimedRotatingFileHandler) for h in access_logger.handlers)
    access_logger.handlers.clear()
    logging.getLogger(APP_LOGGER_NAME).handlers.clear()


def test_json_formatter_includes_logger_name():
    record = logging.LogRecord(
        "supportsync.support.fanout", logging.WARNING, __file__, 1, "dispatch %s", ("failed",), None
    )

    data = json.loads(JsonFormatter().format(record))

    assert data["logger"] == "supportsync.support.fanout"
    assert data["level"] == "WARNING"
    assert data["message"] == "dispatch failed"
