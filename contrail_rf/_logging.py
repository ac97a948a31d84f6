import logging

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure default logging output if no handlers exist."""
    root_logger = logging.getLogger()
    if not root_logger.handlers:
        logging.basicConfig(level=level, format=LOG_FORMAT)
    logger = logging.getLogger("contrail_rf")
    logger.setLevel(level)
    return logger
