# utils/text.py - Small string helpers shared by the prompt and knowledge code
import hashlib
import math

from config import CHARS_PER_TOKEN


def safe_trim(text: str, max_chars: int) -> str:
    """Cut text to at most max_chars, marking the cut with an ellipsis."""
    if max_chars <= 0:
        return ""
    if len(text) <= max_chars:
        return text
    return text[: max_chars - 1] + "…"


def content_hash(*parts: str) -> str:
    """Stable hex digest used to build cache keys."""
    digest = hashlib.sha256()
    digest.update("\n".join(parts).encode("utf-8"))
    return digest.hexdigest()


def estimate_tokens(*texts: str) -> int:
    """Rough token count at ~4 characters per token."""
    total = sum(len(t) for t in texts if t)
    return max(1, math.ceil(total / CHARS_PER_TOKEN))
