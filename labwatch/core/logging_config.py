import logging
import logging.config
import os
from datetime import datetime
from labwatch.core.config import settings

LOG_STREAMS = ("app", "access", "error", "alerts", "celery")

LINE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
TRACE_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s - %(funcName)s:%(lineno)d - %(message)s"


def _file_handler(log_dir: str, stream: str, level: str, formatter: str, stamp: str) -> dict:
    return {
        "class": "logging.handlers.RotatingFileHandler",
        "level": level,
        "formatter": formatter,
        "filename": os.path.join(log_dir, stream, f"{stream}-{stamp}.log"),
        "maxBytes": settings.LOG_FILE_MAX_BYTES,
        "backupCount": settings.LOG_FILE_BACKUPS,
        "encoding": "utf-8",
    }


def build_logging_config(log_dir: str) -> dict:
    """dictConfig for the API process and the sweep worker.

    Alert fan-out and real-time push get their own file so a failed dispatch
    can be traced without the request noise of logs/app.
    """
    level = settings.LOG_LEVEL.upper()
    stamp = datetime.now().strftime("%Y-%m-%d")

    handlers = {
        "console": {
            "class": "logging.StreamHandler",
            "level": level,
            "formatter": "line",
            "stream": "ext://sys.stdout",
        },
        "app_file": _file_handler(log_dir, "app", level, "trace", stamp),
        "error_file": _file_handler(log_dir, "error", "ERROR", "trace", stamp),
        "access_file": _file_handler(log_dir, "access", "INFO", "access", stamp),
        "alerts_file": _file_handler(log_dir, "alerts", "INFO", "line", stamp),
        "celery_file": _file_handler(log_dir, "celery", "INFO", "trace", stamp),
    }

    def logger(*handler_names: str, level_name: str = "INFO") -> dict:
        return {"level": level_name, "handlers": list(handler_names), "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "line": {"format": LINE_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            "trace": {"format": TRACE_FORMAT, "datefmt": "%Y-%m-%d %H:%M:%S"},
            "access": {"format": "%(asctime)s - %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"},
        },
        "handlers": handlers,
        "loggers": {
            "": logger("console", "app_file", "error_file", level_name=level),
            "labwatch.services.alerts": logger("console", "alerts_file", "app_file", "error_file"),
            "labwatch.services.realtime": logger("console", "alerts_file", "error_file"),
            "labwatch.services.breakdown.inactivity_sweep": logger("console", "celery_file", "app_file", "error_file"),
            "labwatch.workers": logger("console", "celery_file", "error_file"),
            "celery": logger("console", "celery_file"),
            "access": logger("access_file"),
            "uvicorn.access": logger("access_file"),
            # Statement echo stays off unless DEBUG
            "sqlalchemy.engine": logger("app_file", level_name="INFO" if settings.DEBUG else "WARNING"),
        },
    }


def setup_logging(log_dir: str = None):
    """Create the log directories and install the handlers"""
    log_dir = log_dir or settings.LOG_DIR
    for stream in LOG_STREAMS:
        os.makedirs(os.path.join(log_dir, stream), exist_ok=True)

    logging.config.dictConfig(build_logging_config(log_dir))

    logger = logging.getLogger(__name__)
    logger.info(f"LabWatch logging ready: level={settings.LOG_LEVEL} dir={log_dir} env={settings.ENVIRONMENT}")
