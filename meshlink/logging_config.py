import logging
import os
from logging.handlers import RotatingFileHandler


LOG_DIR_NAME = ".meshlink"
LOG_FILE_NAME = "app.log"
ENV_LOG_DIR = "MESHLINK_LOG_DIR"


def _file_handler(log_dir):
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.join(log_dir, LOG_FILE_NAME)
    return RotatingFileHandler(log_path, maxBytes=1_048_576, backupCount=3), log_path


def configure_logging(level=logging.INFO):
    """Install rotating file + console handlers once; return the log file path."""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers:
        path = getattr(handler, 'baseFilename', None)
        if path:
            return path
    if root_logger.handlers:
        return None

    log_dir = os.environ.get(ENV_LOG_DIR) or os.path.join(os.path.expanduser("~"), LOG_DIR_NAME)
    try:
        file_handler, log_path = _file_handler(log_dir)
    except OSError:
        file_handler, log_path = _file_handler(os.path.join(os.getcwd(), LOG_DIR_NAME))

    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    )
    file_handler.setFormatter(formatter)

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)

    root_logger.setLevel(level)
    root_logger.addHandler(file_handler)
    root_logger.addHandler(console_handler)

    root_logger.info("Logging initialized; writing to %s", log_path)
    return log_path
