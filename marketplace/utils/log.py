import logging
import logging.handlers
import os


# configs
LOG_FILE = os.getenv('LOG_FILE', 'latest.log')
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def _coerce_level(level: str) -> int:
    value = logging.getLevelName(level.upper())
    return value if isinstance(value, int) else logging.INFO


def setup_logging(log_file: str | None = LOG_FILE, level: str = LOG_LEVEL) -> None:
    """Log to the console and, unless `log_file` is None, a rotating file.

    Calling it again replaces the handlers it installed before.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(_coerce_level(level))

    for handler in list(root_logger.handlers):
        if getattr(handler, "_marketplace", False):
            root_logger.removeHandler(handler)
            handler.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.handlers.RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8",
        ))
    for handler in handlers:
        handler.setFormatter(formatter)
        handler._marketplace = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)
