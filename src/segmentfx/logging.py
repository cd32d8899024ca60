import logging
import sys

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# third-party loggers that report every single prompt
CHATTY_LOGGERS = ("ultralytics",)


def setup_logging(log_level: str = "INFO", log_file: str | None = None):
    """
    Configures the root logger for segmentation runs and the viewer.

    Args:
        log_level: The minimum log level to output (e.g., "INFO", "DEBUG").
            Unknown names fall back to INFO.
        log_file: If provided, logs are appended to this file. Otherwise, logs
            are written to stdout.

    Model libraries in CHATTY_LOGGERS are held at WARNING unless DEBUG is
    requested, so a few hundred grid prompts do not drown the run summary.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
        handler.close()

    if log_file:
        handler = logging.FileHandler(log_file, mode="a")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root_logger.addHandler(handler)

    chatty_level = level if level <= logging.DEBUG else max(level, logging.WARNING)
    for name in CHATTY_LOGGERS:
        logging.getLogger(name).setLevel(chatty_level)


def get_logger(name: str) -> logging.Logger:
    """Module logger; every segmentfx module calls this with ``__name__``."""
    return logging.getLogger(name)
