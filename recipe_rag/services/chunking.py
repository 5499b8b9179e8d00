import math
from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter


# Rough estimate used everywhere a token budget is applied.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def split_for_embedding(text: str, max_tokens: int | None) -> List[str]:
    """
    Split text that exceeds the embedding model's context window into pieces
    that fit, using LangChain's RecursiveCharacterTextSplitter.
    """
    if max_tokens is None or estimate_tokens(text) <= max_tokens:
        return [text]
    if max_tokens <= 0:
        raise ValueError("max_tokens must be positive.")

    splitter = RecursiveCharacterTextSplitter(
        chunk_size=max_tokens * CHARS_PER_TOKEN,
        chunk_overlap=0,
        separators=["\n\n", "\n", " ", ""],
    )
    pieces = [p.strip() for p in splitter.split_text(text) if p.strip()]
    return pieces or [text]
