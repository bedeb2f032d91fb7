from __future__ import annotations

import logging
from typing import List, Optional

from ..index.lexical import BoostOptions, Stemmer, TermClassifier, extract_query_terms, score_chunks
from ..index.schema import (
    RetrievableChunk,
    RetrievalContext,
    RetrievalOptions,
    RetrievalResult,
    ScoredChunk,
)
from ..ingest.tokens import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_RETRIEVAL_OPTIONS = RetrievalOptions()


def chunk_tokens(chunk: RetrievableChunk) -> int:
    if chunk.token_estimate is not None:
        return chunk.token_estimate
    return estimate_tokens(chunk.content)


def select_with_token_budget(
    scored: List[ScoredChunk], top_k: int, max_tokens: int
) -> List[ScoredChunk]:
    """Greedy pick in rank order; chunks that would overflow the budget are skipped."""
    selected: List[ScoredChunk] = []
    used = 0
    for item in scored:
        if len(selected) >= top_k:
            break
        t = chunk_tokens(item.chunk)
        if used + t <= max_tokens:
            selected.append(item)
            used += t
    return selected


def retrieve_chunks(
    chunks: List[RetrievableChunk],
    context: RetrievalContext,
    options: Optional[RetrievalOptions] = None,
    classifier: Optional[TermClassifier] = None,
    stemmer: Optional[Stemmer] = None,
) -> RetrievalResult:
    """
    Keyword retrieval over a textbook's chunks.

    Deterministic: same chunks + context + options -> same result.
    """
    opts = options or DEFAULT_RETRIEVAL_OPTIONS

    candidates = [c for c in chunks if c.textbook_id == context.textbook_id]
    if opts.page_range is not None:
        lo, hi = opts.page_range.start, opts.page_range.end
        candidates = [c for c in candidates if lo <= c.page_number <= hi]

    boosts = BoostOptions(
        target_lesson_id=context.lesson_id or opts.lesson_id,
        current_page=context.current_page,
        lesson_boost=opts.lesson_boost,
        page_proximity_boost=opts.page_proximity_boost if opts.boost_recent_pages else 0.0,
    )
    scored = score_chunks(candidates, context.query, boosts, classifier, stemmer)
    above = [s for s in scored if s.score >= opts.min_score]
    selected = select_with_token_budget(above, opts.top_k, opts.max_tokens)

    total = sum(chunk_tokens(s.chunk) for s in selected)
    logger.debug(
        "retrieve: %d candidates, %d above %.2f, %d selected (%d tokens)",
        len(candidates),
        len(above),
        opts.min_score,
        len(selected),
        total,
    )
    return RetrievalResult(
        chunks=selected,
        total_tokens=total,
        query_terms=extract_query_terms(context.query, classifier, stemmer),
    )
