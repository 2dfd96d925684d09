# knowledge/fetcher.py
"""
Knowledge page fetching with a TTL cache in the KV store.

A failed fetch never fails a chat request: it is logged and the page is
left out of the context block.
"""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import requests

from config import FETCH_TIMEOUT_SECONDS, FETCH_WORKERS, MAX_FETCH_BYTES
from utils.logger import get_knowledge_logger
from utils.text import content_hash
from utils.validators import URLValidationError, validate_url

from .cleaner import clean_html

logger = get_knowledge_logger()

HEADERS = {
    "User-Agent": "sitechat-knowledge/1.0",
    "Accept": "text/html,application/xhtml+xml,application/json,text/plain;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.9",
}


class FetchError(Exception):
    """A knowledge page could not be fetched or read."""
    pass


def page_cache_key(url: str) -> str:
    return f"kb:page:{content_hash(url)}"


def fetch_text(url: str, timeout: float = FETCH_TIMEOUT_SECONDS) -> str:
    """
    Fetch one page and return its plain text.

    HTML is stripped to text; any other content type is passed through.

    Raises:
        FetchError: On invalid URL, network failure, non-200 status or timeout
    """
    deadline = time.monotonic() + timeout

    try:
        url = validate_url(url)
    except URLValidationError as e:
        raise FetchError(str(e))

    try:
        response = requests.get(url, headers=HEADERS, timeout=timeout, allow_redirects=True, stream=True)
    except requests.exceptions.Timeout:
        raise FetchError(f"Request timeout: {url}")
    except requests.exceptions.TooManyRedirects:
        raise FetchError(f"Too many redirects: {url}")
    except requests.exceptions.RequestException as e:
        raise FetchError(f"Request failed for {url}: {str(e)}")

    try:
        if response.status_code != 200:
            raise FetchError(f"Non-200 status ({response.status_code}): {url}")

        body = bytearray()
        for chunk in response.iter_content(chunk_size=64 * 1024):
            body.extend(chunk)
            if time.monotonic() > deadline:
                raise FetchError(f"Read deadline exceeded: {url}")
            if len(body) >= MAX_FETCH_BYTES:
                logger.debug(f"Truncated oversized page at {MAX_FETCH_BYTES} bytes: {url}")
                break
    except requests.exceptions.RequestException as e:
        raise FetchError(f"Failed reading {url}: {str(e)}")
    finally:
        response.close()

    raw = decode_body(bytes(body[:MAX_FETCH_BYTES]), response.encoding)
    content_type = response.headers.get("Content-Type", "").lower()
    if "html" not in content_type:
        return raw.strip()

    try:
        return clean_html(raw)
    except Exception as e:
        raise FetchError(f"Could not parse HTML from {url}: {str(e)}")


def decode_body(body: bytes, encoding: Optional[str]) -> str:
    """Decode with the declared charset, falling back to UTF-8 for unknown ones."""
    try:
        return body.decode(encoding or "utf-8", errors="replace")
    except LookupError:
        logger.debug(f"Unknown charset {encoding!r}, decoding as utf-8")
        return body.decode("utf-8", errors="replace")


def get_page_text(store, url: str, ttl_seconds: int, force_refresh: bool = False) -> Optional[str]:
    """Cached page text, or None when the page could not be fetched."""
    key = page_cache_key(url)

    if not force_refresh:
        cached = store.get(key)
        if cached is not None:
            return cached

    try:
        text = fetch_text(url)
    except FetchError as e:
        logger.warning(f"Knowledge fetch skipped: {e}")
        return None

    store.put(key, text, ttl_seconds=ttl_seconds)
    logger.debug(f"Cached {len(text)} chars for {url}")
    return text


def fetch_pages(store, urls: List[str], ttl_seconds: int, force_refresh: bool = False) -> Dict[str, str]:
    """
    Fetch several pages concurrently and wait for all of them.

    Returns:
        url -> text for pages that produced text, in the order given
    """
    if not urls:
        return {}

    with ThreadPoolExecutor(max_workers=min(FETCH_WORKERS, len(urls))) as pool:
        texts = list(pool.map(lambda u: get_page_text(store, u, ttl_seconds, force_refresh), urls))

    return {url: text for url, text in zip(urls, texts) if text}


def clear_page_cache(store, urls: List[str]) -> int:
    for url in urls:
        store.delete(page_cache_key(url))
    return len(urls)
