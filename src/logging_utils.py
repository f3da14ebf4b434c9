"""Shared logging utilities.

Story evaluations run for minutes and are often started from a detached
worker or an API process that gets reloaded mid-run. The handlers here keep
logging from crashing a run when stdout goes away.
"""
import logging
import logging.handlers
import os

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that ignores broken pipe and closed file errors.

    When stdout is closed (uvicorn reload, detached terminal), the standard
    StreamHandler raises BrokenPipeError or ValueError on every record. File
    handlers attached to the same logger keep working.
    """

    def emit(self, record):
        try:
            super().emit(record)
        except BrokenPipeError:
            pass  # stdout closed
        except ValueError:
            pass  # I/O operation on closed file


def configure_safe_logging(level=logging.INFO, log_file=None):
    """Configure the root logger with a SafeStreamHandler.

    Safe to call multiple times; handlers are only added once.

    Args:
        level: Logging level to set (default: INFO)
        log_file: Optional path for a rotating file handler (10MB x 3)
    """
    root = logging.getLogger()

    if not any(isinstance(h, SafeStreamHandler) for h in root.handlers):
        handler = SafeStreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        root.addHandler(handler)

    if log_file and not any(
        isinstance(h, logging.handlers.RotatingFileHandler)
        and getattr(h, "baseFilename", None) == os.path.abspath(log_file)
        for h in root.handlers
    ):
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=3,
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        file_handler.setLevel(level)
        root.addHandler(file_handler)

    # The OpenAI SDK pulls in httpx, which logs every request at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)

    if root.level == logging.NOTSET or root.level > level:
        root.setLevel(level)
