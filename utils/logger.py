# utils/logger.py - Centralized logging configuration for the chat API
import logging
import sys

# Log format with timestamp, level, module, and message
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logger(name: str, level: int = logging.INFO) -> logging.Logger:
    """Create a configured logger instance."""
    logger = logging.getLogger(name)

    # Avoid adding handlers multiple times
    if not logger.handlers:
        logger.setLevel(level)

        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(console_handler)

    return logger


# Pre-configured loggers for different modules
def get_server_logger():
    """Logger for HTTP routing and admin operations."""
    return setup_logger("sitechat.server")


def get_admission_logger():
    """Logger for origin, key, rate and budget gating."""
    return setup_logger("sitechat.admission")


def get_knowledge_logger():
    """Logger for page fetches, chunking and embeddings."""
    return setup_logger("sitechat.knowledge")


def get_chat_logger():
    """Logger for prompt assembly, inference and reply parsing."""
    return setup_logger("sitechat.chat")


def get_actions_logger():
    """Logger for outbound webhook delivery."""
    return setup_logger("sitechat.actions")
