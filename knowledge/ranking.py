# knowledge/ranking.py
"""
Cheap relevance ranking of a bot's knowledge URLs against a question.

Only the URL path is scored (no fetch needed): one point per question term
found in the path, plus a boost when the path names a high-value page
(pricing, contact, ...) and the question asks about that topic. Ties keep
the configured order.
"""

import re
from typing import List
from urllib.parse import urlparse

PATH_BOOST = 3
MIN_TERM_LENGTH = 3

STOPWORDS = {
    "the", "and", "for", "are", "but", "not", "you", "your", "yours", "can", "could", "would",
    "should", "what", "whats", "when", "where", "which", "who", "why", "how", "does", "did",
    "have", "has", "had", "with", "this", "that", "there", "their", "they", "them", "from",
    "about", "into", "any", "all", "our", "out", "was", "were", "will", "just", "want", "need",
    "tell", "please", "thanks", "thank", "hello", "some", "much", "many", "get",
}

# Path keyword -> question terms that make that page worth boosting
BOOST_KEYWORDS = {
    "pricing": ("price", "prices", "pricing", "cost", "costs", "plan", "plans", "quote", "fee", "fees",
                "rate", "rates", "subscription", "cheap", "expensive", "budget"),
    "contact": ("contact", "email", "phone", "call", "reach", "talk", "address", "location", "hours",
                "book", "booking", "appointment", "demo"),
    "privacy": ("privacy", "data", "gdpr", "cookie", "cookies", "personal", "tracking", "delete"),
    "terms": ("terms", "refund", "refunds", "cancel", "cancellation", "contract", "legal", "warranty",
              "guarantee", "policy", "liability"),
}


def tokenize(text: str) -> List[str]:
    """Lowercase word terms of a question, stopwords and short words removed, first occurrence kept."""
    terms = []
    for word in re.findall(r"[a-z0-9]+", (text or "").lower()):
        if len(word) < MIN_TERM_LENGTH or word in STOPWORDS or word in terms:
            continue
        terms.append(word)
    return terms


def score_url(url: str, terms: List[str]) -> int:
    parsed = urlparse(url)
    path = f"{parsed.path}?{parsed.query}".lower() if parsed.query else parsed.path.lower()

    score = sum(1 for term in terms if term in path)
    for keyword, triggers in BOOST_KEYWORDS.items():
        if keyword in path and any(term in triggers for term in terms):
            score += PATH_BOOST
    return score


def rank_urls(urls: List[str], question: str, limit: int) -> List[str]:
    """
    Order URLs by relevance and keep the first `limit`.

    Never filters to nothing: with no matching terms the configured order
    is returned, cut to the limit.
    """
    if limit <= 0 or not urls:
        return []

    terms = tokenize(question)
    # sorted() is stable, so equal scores keep their configured order
    ranked = sorted(urls, key=lambda url: score_url(url, terms), reverse=True)
    return ranked[:limit]
