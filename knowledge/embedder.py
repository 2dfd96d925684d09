# knowledge/embedder.py
import json
from typing import Dict, List, Optional

import numpy as np
from langchain_openai import OpenAIEmbeddings

from config import EMBED_TIMEOUT_SECONDS
from utils.logger import get_knowledge_logger
from utils.text import content_hash

logger = get_knowledge_logger()


class EmbeddingError(Exception):
    """The embedding service failed or returned something unusable."""
    pass


class OpenAIEmbeddingService:
    """Embedding service behind run(model, texts) -> vectors, via LangChain's OpenAI wrapper."""

    def __init__(self, timeout: float = EMBED_TIMEOUT_SECONDS):
        self.timeout = timeout
        self._clients: Dict[str, OpenAIEmbeddings] = {}

    def get_embeddings(self, model: str) -> OpenAIEmbeddings:
        """Get (and keep) an OpenAI embeddings instance per model."""
        if model not in self._clients:
            self._clients[model] = OpenAIEmbeddings(model=model, timeout=self.timeout, max_retries=0)
        return self._clients[model]

    def run(self, model: str, texts: List[str]) -> List[List[float]]:
        return self.get_embeddings(model).embed_documents(texts)


def embedding_cache_key(model: str, text: str) -> str:
    return f"kb:emb:{content_hash(model, text)}"


def _load_vector(raw: Optional[str]) -> Optional[List[float]]:
    if raw is None:
        return None
    try:
        vector = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return vector if isinstance(vector, list) and vector else None


def embed_texts(store, service, model: str, texts: List[str], ttl_seconds: int) -> List[List[float]]:
    """
    Embed texts, reusing cached vectors keyed by hash(model, text).

    Raises:
        EmbeddingError: If the service call fails or returns the wrong shape
    """
    vectors: List[Optional[List[float]]] = [
        _load_vector(store.get(embedding_cache_key(model, text))) for text in texts
    ]
    missing = [i for i, vector in enumerate(vectors) if vector is None]
    if not missing:
        return vectors

    try:
        fresh = service.run(model, [texts[i] for i in missing])
    except Exception as e:
        raise EmbeddingError(f"Embedding call failed ({model}): {e}")

    if not isinstance(fresh, list) or len(fresh) != len(missing):
        raise EmbeddingError(f"Embedding call returned {type(fresh).__name__} for {len(missing)} inputs")

    for i, vector in zip(missing, fresh):
        try:
            vector = [float(x) for x in vector]
        except (TypeError, ValueError):
            raise EmbeddingError("Embedding call returned a non-numeric vector")
        if not vector:
            raise EmbeddingError("Embedding call returned an empty vector")
        vectors[i] = vector
        store.put(embedding_cache_key(model, texts[i]), json.dumps(vector), ttl_seconds=ttl_seconds)

    logger.debug(f"Embedded {len(missing)} texts ({len(texts) - len(missing)} from cache) with {model}")
    return vectors


def cosine_similarity(a: List[float], b: List[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape:
        return 0.0
    denom = np.linalg.norm(va) * np.linalg.norm(vb)
    if denom == 0:
        return 0.0
    return float(np.dot(va, vb) / denom)
