"""Projectline: workspace API with a confirm-before-apply assistant.

Importing the package sets up logging once. Records read
``[PROJECTLINE][LEVEL] logger: event key=value ...`` so the ``extra``
fields that modules attach to their events stay visible.
"""

import logging
import os


_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class EventFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__("[PROJECTLINE][%(levelname)s] %(name)s: %(message)s")

    def formatMessage(self, record: logging.LogRecord) -> str:
        text = super().formatMessage(record)
        fields = [f"{k}={v}" for k, v in vars(record).items() if k not in _RECORD_ATTRS and not k.startswith("_")]
        return " ".join([text, *fields])


def _level(env: str, default: int) -> int:
    value = getattr(logging, (os.getenv(env) or "").upper(), None)
    return value if isinstance(value, int) else default


def _configure_logging() -> None:
    level = _level("PROJECTLINE_LOG_LEVEL", logging.INFO)
    # named event loggers ("projectline.llm", ...) and module loggers under this package
    for root in {"projectline", __name__}:
        logger = logging.getLogger(root)
        if not logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(EventFormatter())
            logger.addHandler(handler)
        logger.setLevel(level)
    logging.getLogger("projectline.llm").setLevel(_level("PROJECTLINE_LLM_LOG_LEVEL", level))


_configure_logging()
