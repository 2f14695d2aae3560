import logging
import sys

from pythonjsonlogger import jsonlogger

from app.core.config import get_settings


def setup_logging() -> None:
    """Install the JSON stdout handler once; CLI, poller and API all share it."""
    settings = get_settings()
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        jsonlogger.JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            static_fields={"service": "market-fusion", "env": settings.app_env},
        )
    )

    root_logger.setLevel(settings.log_level.upper())
    root_logger.addHandler(handler)

    # Embedding and LLM request headers carry API keys.
    for noisy in ("httpx", "httpcore"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
