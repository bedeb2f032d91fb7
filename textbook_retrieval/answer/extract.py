from __future__ import annotations

from typing import List

from ..index.schema import Citation, RetrievalResult, ScoredChunk

NO_CONTENT_MESSAGE = "No relevant textbook content found for this query."


def format_chunks_for_prompt(
    scored: List[ScoredChunk],
    include_page_numbers: bool = True,
    include_scores: bool = False,
    max_chars_per_chunk: int = 1500,
) -> str:
    """Numbered excerpts ready to drop into a chat prompt."""
    if not scored:
        return NO_CONTENT_MESSAGE

    pieces: List[str] = []
    for i, item in enumerate(scored, start=1):
        txt = item.chunk.content
        if len(txt) > max_chars_per_chunk:
            txt = txt[:max_chars_per_chunk] + "..."

        header = []
        if include_page_numbers:
            header.append(f"[Page {item.chunk.page_number}]")
        if include_scores:
            header.append(f"(relevance: {item.score * 100:.0f}%)")
        pieces.append(f"--- Excerpt {i} {' '.join(header)} ---\n{txt}")
    return "\n\n".join(pieces)


def get_retrieved_page_numbers(scored: List[ScoredChunk]) -> List[int]:
    return sorted({s.chunk.page_number for s in scored})


def build_citations(scored: List[ScoredChunk]) -> List[Citation]:
    return [
        Citation(chunk_id=s.chunk.id, page_number=s.chunk.page_number, relevance_score=s.score)
        for s in scored
    ]


def has_minimum_content(result: RetrievalResult, min_chunks: int = 1, min_score: float = 0.2) -> bool:
    if len(result.chunks) < min_chunks:
        return False
    return any(c.score >= min_score for c in result.chunks)


def get_retrieval_summary(result: RetrievalResult) -> str:
    pages = get_retrieved_page_numbers(result.chunks)
    n = len(result.chunks)
    avg = sum(c.score for c in result.chunks) / n if n else 0.0
    return ", ".join(
        [
            f"Found {n} chunks",
            f"from pages: {', '.join(str(p) for p in pages) or 'none'}",
            f"avg relevance: {avg * 100:.0f}%",
            f"total tokens: {result.total_tokens}",
            f"query terms: {', '.join(result.query_terms)}",
        ]
    )
