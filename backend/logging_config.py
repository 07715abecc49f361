# backend/logging_config.py
import logging
import sys


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a timestamped stdout handler."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    root_logger.setLevel(level.upper())
    root_logger.addHandler(handler)

    # Third-party chatter
    for noisy in ("urllib3", "httpx", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
