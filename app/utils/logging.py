import logging
import sys
from app.config import get_settings

settings = get_settings()

def setup_logging():
    logger = logging.getLogger("repair_dispatch")
    logger.setLevel(settings.LOG_LEVEL)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(settings.LOG_LEVEL)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )
    handler.setFormatter(formatter)

    if not logger.handlers:
        logger.addHandler(handler)

    # Route the app.* module loggers through the same handler
    app_logger = logging.getLogger("app")
    app_logger.setLevel(settings.LOG_LEVEL)
    if not app_logger.handlers:
        app_logger.addHandler(handler)

    return logger

logger = setup_logging()
