import logging
import logging.config
import os
import re

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "personal_cfo.log"

# Access tokens show up in Authorization headers, cookies and exception text.
_SECRET_PATTERNS = (
    re.compile(r"(?i)(bearer\s+)[A-Za-z0-9._~+/=-]+"),
    re.compile(r"(?i)(access_token[\"']?\s*[=:]\s*[\"']?)[^\"'\s;,&}]+"),
)

# Library loggers that get their own level instead of the root one.
_LIBRARY_LEVELS = {
    "uvicorn": "INFO",
    "uvicorn.error": "INFO",
    "uvicorn.access": "INFO",
    "httpx": "WARNING",
    "httpcore": "WARNING",
}


def redact(text: str) -> str:
    for pattern in _SECRET_PATTERNS:
        text = pattern.sub(r"\1[REDACTED]", text)
    return text


class TokenRedactingFilter(logging.Filter):
    """Replaces bearer and cookie tokens in the rendered message."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


class ColourizedFormatter(logging.Formatter):
    """ANSI-coloured level names for the console handler."""

    RESET = "\x1b[0m"
    LEVEL_COLOURS = {
        logging.DEBUG: "\x1b[90m",
        logging.INFO: "\x1b[32m",
        logging.WARNING: "\x1b[33m",
        logging.ERROR: "\x1b[31m",
        logging.CRITICAL: "\x1b[31;1m",
    }

    def format(self, record: logging.LogRecord) -> str:
        colour = self.LEVEL_COLOURS.get(record.levelno)
        if colour is None:
            return super().format(record)
        plain = record.levelname
        record.levelname = f"{colour}{plain}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = plain


def _level_name(raw: str | None) -> str:
    name = (raw or "INFO").strip().upper()
    return name if isinstance(logging.getLevelName(name), int) else "INFO"


def get_logging_config() -> dict:
    handlers: dict[str, dict] = {
        "console": {
            "class": "logging.StreamHandler",
            "stream": "ext://sys.stdout",
            "formatter": "colour",
            "filters": ["redact"],
        },
    }
    log_dir = os.getenv("LOG_DIR")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        handlers["file"] = {
            "class": "logging.FileHandler",
            "filename": os.path.join(log_dir, LOG_FILENAME),
            "formatter": "plain",
            "filters": ["redact"],
            "encoding": "utf-8",
        }
    handler_names = list(handlers)

    loggers: dict[str, dict] = {
        "": {"handlers": handler_names, "level": _level_name(os.getenv("LOG_LEVEL"))},
    }
    for name, level in _LIBRARY_LEVELS.items():
        loggers[name] = {"handlers": handler_names, "level": level, "propagate": False}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"redact": {"()": "personal_cfo.logger.TokenRedactingFilter"}},
        "formatters": {
            "colour": {"()": "personal_cfo.logger.ColourizedFormatter", "format": LOG_FORMAT},
            "plain": {"format": LOG_FORMAT},
        },
        "handlers": handlers,
        "loggers": loggers,
    }


def setup_logging() -> None:
    logging.config.dictConfig(get_logging_config())


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
