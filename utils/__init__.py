# utils/__init__.py
from .logger import (
    setup_logger,
    get_server_logger,
    get_admission_logger,
    get_knowledge_logger,
    get_chat_logger,
    get_actions_logger,
)
from .validators import validate_url, validate_bot_id, normalize_origin, URLValidationError
from .rate_limiter import check_rate_limit, get_client_ip

__all__ = [
    "setup_logger",
    "get_server_logger",
    "get_admission_logger",
    "get_knowledge_logger",
    "get_chat_logger",
    "get_actions_logger",
    "validate_url",
    "validate_bot_id",
    "normalize_origin",
    "URLValidationError",
    "check_rate_limit",
    "get_client_ip",
]
