# knowledge/chunker.py
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from config import CHUNK_OVERLAP, MAX_CHUNKS_PER_PAGE


def create_chunks(text: str, chunk_size: int, max_chunks: int = MAX_CHUNKS_PER_PAGE) -> List[str]:
    """Split one page into bounded chunks; pages past max_chunks are cut off."""
    if not text or not text.strip():
        return []

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=chunk_size,
        chunk_overlap=min(CHUNK_OVERLAP, chunk_size // 4),
        separators=["\n\n", "\n", ". ", " ", ""],
    )
    chunks = [c.strip() for c in splitter.split_text(text) if c.strip()]
    return chunks[:max_chunks]
