import logging
from pathlib import Path

from ..config import get_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_name: str = "strongbond.log") -> None:
    """Configure root logging with a file handler and a console handler.

    Safe to call more than once; handlers are only installed the first time.
    """
    settings = get_settings()
    root_logger = logging.getLogger()
    if getattr(root_logger, "_strongbond_configured", False):
        return

    # Ensure logs directory exists
    logs_dir = Path(settings.LOG_DIR)
    if not logs_dir.is_absolute():
        logs_dir = Path(__file__).resolve().parents[2] / logs_dir
    logs_dir.mkdir(parents=True, exist_ok=True)

    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format=LOG_FORMAT,
        handlers=[
            logging.FileHandler(logs_dir / log_name, encoding="utf-8"),
            logging.StreamHandler(),
        ],
    )
    # httpx logs every request at INFO, including the OpenAI ones
    logging.getLogger("httpx").setLevel(logging.WARNING)
    root_logger._strongbond_configured = True  # type: ignore[attr-defined]


def shutdown_logging() -> None:
    """Flush and close root handlers so tests do not leak open log files."""
    root_logger = logging.getLogger()
    for h in list(root_logger.handlers):
        try:
            h.flush()
            h.close()
        except (OSError, ValueError) as e:
            logging.getLogger(__name__).debug("Closing log handler failed: %s", e)
        root_logger.removeHandler(h)
    root_logger._strongbond_configured = False  # type: ignore[attr-defined]


def mask_secret(value: str) -> str:
    """Render a credential for logs without revealing it."""
    return f"len={len(value)} {value[:3]}...{value[-4:]}" if value else "<empty>"
