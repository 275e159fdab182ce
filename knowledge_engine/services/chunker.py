"""Word-bounded, overlapping text chunking for embedding."""

import re
from typing import List

from knowledge_engine.constants import (
    DEFAULT_CHUNK_OVERLAP_WORDS,
    DEFAULT_CHUNK_SIZE_WORDS,
)

_WORD = re.compile(r"\S+")


def chunk_text(
    text: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE_WORDS,
    overlap: int = DEFAULT_CHUNK_OVERLAP_WORDS,
) -> List[str]:
    """
    Split text into chunks of at most chunk_size words.

    Consecutive chunks share `overlap` words: each chunk starts
    chunk_size - overlap words after the previous one. The final chunk may
    be shorter. Chunks never break mid-word; each chunk is the slice of the
    original text from its first word to its last word, so whitespace
    between words (including newlines) is kept as written.

    Args:
        text: Arbitrary text
        chunk_size: Target words per chunk
        overlap: Words repeated at the start of the next chunk (< chunk_size)

    Returns:
        Ordered list of chunk strings (empty for empty/whitespace input)

    Raises:
        ValueError: If chunk_size < 1 or overlap is not in [0, chunk_size)
    """
    if chunk_size < 1:
        raise ValueError("chunk_size must be >= 1")
    if overlap < 0 or overlap >= chunk_size:
        raise ValueError("overlap must be >= 0 and smaller than chunk_size")

    if not text:
        return []
    spans = [m.span() for m in _WORD.finditer(text)]
    if not spans:
        return []

    step = chunk_size - overlap
    chunks: List[str] = []
    start = 0
    while start < len(spans):
        end = min(start + chunk_size, len(spans))
        chunks.append(text[spans[start][0] : spans[end - 1][1]])
        if end >= len(spans):
            break
        start += step
    return chunks
