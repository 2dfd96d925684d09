# knowledge/__init__.py
from .retrieval import (
    KnowledgeSource,
    NoKnowledge,
    StaticKnowledge,
    UrlEmbedKnowledge,
    UrlSimpleKnowledge,
    clear_knowledge,
    knowledge_source,
    refresh_knowledge,
    retrieve,
)

__all__ = [
    "KnowledgeSource",
    "NoKnowledge",
    "StaticKnowledge",
    "UrlEmbedKnowledge",
    "UrlSimpleKnowledge",
    "clear_knowledge",
    "knowledge_source",
    "refresh_knowledge",
    "retrieve",
]
