# knowledge/retrieval.py
"""
Knowledge retrieval: turns a bot's configured knowledge into one bounded
context block for the current question.

The bot record is reduced to exactly one knowledge source variant and the
engine dispatches on it:

    NoKnowledge          -> ""
    StaticKnowledge      -> the admin's text, verbatim
    UrlSimpleKnowledge   -> best-matching pages, cached, as raw excerpts
    UrlEmbedKnowledge    -> page chunks ranked by embedding similarity

Fetch and embedding failures are logged and skipped. When the question
itself cannot be embedded, embed mode falls back to raw excerpts.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Dict, List, Tuple, Union

from bots.models import BotConfig, RagMode
from config import FETCH_WORKERS, MAX_CONTEXT_CHARS, MAX_PAGE_EXCERPT_CHARS
from utils.logger import get_knowledge_logger
from utils.text import safe_trim

from .chunker import create_chunks
from .embedder import EmbeddingError, cosine_similarity, embed_texts
from .fetcher import clear_page_cache, fetch_pages
from .ranking import rank_urls

logger = get_knowledge_logger()


@dataclass(frozen=True)
class NoKnowledge:
    pass


@dataclass(frozen=True)
class StaticKnowledge:
    text: str


@dataclass(frozen=True)
class UrlSimpleKnowledge:
    urls: Tuple[str, ...]
    max_urls: int
    ttl_seconds: int


@dataclass(frozen=True)
class UrlEmbedKnowledge:
    urls: Tuple[str, ...]
    max_urls: int
    ttl_seconds: int
    embed_model: str
    top_k: int
    chunk_size: int


KnowledgeSource = Union[NoKnowledge, StaticKnowledge, UrlSimpleKnowledge, UrlEmbedKnowledge]


def knowledge_source(config: BotConfig) -> KnowledgeSource:
    """Pick the single knowledge variant a bot's record describes."""
    rag = config.rag
    if rag.enabled and config.knowledge_urls:
        urls = tuple(config.knowledge_urls)
        if rag.mode == RagMode.EMBED:
            return UrlEmbedKnowledge(
                urls=urls,
                max_urls=rag.max_urls,
                ttl_seconds=rag.cache_ttl_seconds,
                embed_model=rag.embed_model,
                top_k=rag.top_k,
                chunk_size=rag.chunk_size,
            )
        return UrlSimpleKnowledge(urls=urls, max_urls=rag.max_urls, ttl_seconds=rag.cache_ttl_seconds)

    if config.knowledge_text:
        return StaticKnowledge(text=config.knowledge_text)

    return NoKnowledge()


def retrieve(config: BotConfig, question: str, store, embedder) -> str:
    """
    Build the context block for one chat request.

    Args:
        config: Normalized bot record
        question: Latest user message (may be empty)
        store: KV store used for page and embedding caches
        embedder: Service exposing run(model, texts) -> vectors

    Returns:
        Context block, at most MAX_CONTEXT_CHARS long (possibly empty)
    """
    source = knowledge_source(config)

    if isinstance(source, StaticKnowledge):
        block = source.text
    elif isinstance(source, UrlSimpleKnowledge):
        block = _simple_block(store, source, question)
    elif isinstance(source, UrlEmbedKnowledge):
        block = _embedded_block(store, embedder, source, question)
    else:
        block = ""

    logger.debug(f"[{config.bot_id}] {type(source).__name__} produced {len(block)} chars of context")
    return safe_trim(block, MAX_CONTEXT_CHARS)


def format_excerpts(pages: Dict[str, str]) -> str:
    sections = [
        f"[Source: {url}]\n{safe_trim(text, MAX_PAGE_EXCERPT_CHARS)}"
        for url, text in pages.items()
    ]
    return "\n\n".join(sections)


def _simple_block(store, source: UrlSimpleKnowledge, question: str) -> str:
    chosen = rank_urls(list(source.urls), question, source.max_urls)
    pages = fetch_pages(store, chosen, source.ttl_seconds)
    return format_excerpts(pages)


def _embedded_block(store, embedder, source: UrlEmbedKnowledge, question: str) -> str:
    chosen = rank_urls(list(source.urls), question, source.max_urls)
    pages = fetch_pages(store, chosen, source.ttl_seconds)
    if not pages:
        return ""

    # Nothing to rank against
    if not question.strip():
        return format_excerpts(pages)

    try:
        question_vector = embed_texts(store, embedder, source.embed_model, [question], source.ttl_seconds)[0]
    except EmbeddingError as e:
        logger.warning(f"Question embedding failed, using raw excerpts: {e}")
        return format_excerpts(pages)

    def embed_page(item: Tuple[str, str]) -> List[Tuple[str, str, List[float]]]:
        url, text = item
        chunks = create_chunks(text, source.chunk_size)
        if not chunks:
            return []
        try:
            vectors = embed_texts(store, embedder, source.embed_model, chunks, source.ttl_seconds)
        except EmbeddingError as e:
            logger.warning(f"Chunk embedding failed for {url}, page skipped: {e}")
            return []
        return [(url, chunk, vector) for chunk, vector in zip(chunks, vectors)]

    with ThreadPoolExecutor(max_workers=min(FETCH_WORKERS, len(pages))) as pool:
        embedded = [row for rows in pool.map(embed_page, pages.items()) for row in rows]

    if not embedded:
        return format_excerpts(pages)

    scored = [(cosine_similarity(question_vector, vector), url, chunk) for url, chunk, vector in embedded]
    scored.sort(key=lambda row: row[0], reverse=True)

    sections = [
        f"[Source: {url} | relevance {score:.2f}]\n{chunk}"
        for score, url, chunk in scored[: source.top_k]
    ]
    return "\n\n".join(sections)


def refresh_knowledge(config: BotConfig, store) -> Dict[str, List[str]]:
    """Re-fetch every configured URL, bypassing the cache."""
    urls = list(config.knowledge_urls)
    pages = fetch_pages(store, urls, config.rag.cache_ttl_seconds, force_refresh=True)
    return {
        "refreshed": [url for url in urls if url in pages],
        "failed": [url for url in urls if url not in pages],
    }


def clear_knowledge(config: BotConfig, store) -> int:
    """Drop cached page text for the bot's URLs. Embeddings expire on their own."""
    return clear_page_cache(store, list(config.knowledge_urls))
