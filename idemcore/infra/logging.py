import logging
import sys

from idemcore.infra.config import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def _create_logger() -> logging.Logger:
    logger = logging.getLogger("idemcore")
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    logger.setLevel(settings.log_level.upper())
    return logger


logger = _create_logger()
