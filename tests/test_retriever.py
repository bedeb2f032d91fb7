import pytest

from textbook_retrieval.index.lexical import extract_query_terms
from textbook_retrieval.index.schema import (
    PageRange,
    RetrievableChunk,
    RetrievalContext,
    RetrievalOptions,
)
from textbook_retrieval.retrieve.retriever import (
    DEFAULT_RETRIEVAL_OPTIONS,
    chunk_tokens,
    retrieve_chunks,
    select_with_token_budget,
)


def _chunk(cid, content, page, tokens=None, lesson_id=None, textbook_id="tb"):
    return RetrievableChunk(
        id=cid,
        textbook_id=textbook_id,
        lesson_id=lesson_id,
        page_number=page,
        chunk_index=0,
        content=content,
        token_estimate=tokens,
    )


def _ctx(query, textbook_id="tb", **kw):
    return RetrievalContext(query=query, textbook_id=textbook_id, **kw)


def test_default_options():
    assert DEFAULT_RETRIEVAL_OPTIONS.top_k == 5
    assert DEFAULT_RETRIEVAL_OPTIONS.min_score == 0.1
    assert DEFAULT_RETRIEVAL_OPTIONS.max_tokens == 2000
    assert DEFAULT_RETRIEVAL_OPTIONS.boost_recent_pages is False


def test_only_requested_textbook(sample_chunks):
    result = retrieve_chunks(sample_chunks, _ctx("addition", "textbook-1"))
    assert result.chunks
    assert all(s.chunk.textbook_id == "textbook-1" for s in result.chunks)


def test_unknown_textbook_is_empty(sample_chunks):
    result = retrieve_chunks(sample_chunks, _ctx("addition", "missing"))
    assert result.chunks == []
    assert result.total_tokens == 0


def test_top_k(sample_chunks):
    result = retrieve_chunks(sample_chunks, _ctx("addition", "textbook-1"), RetrievalOptions(top_k=2))
    assert len(result.chunks) == 2


def test_tight_budget(sample_chunks):
    result = retrieve_chunks(
        sample_chunks, _ctx("addition subtraction", "textbook-1"), RetrievalOptions(max_tokens=50)
    )
    assert result.total_tokens <= 50


def test_page_range(sample_chunks):
    opts = RetrievalOptions(page_range=PageRange(start=10, end=15))
    result = retrieve_chunks(sample_chunks, _ctx("addition", "textbook-1"), opts)
    assert result.chunks
    assert all(10 <= s.chunk.page_number <= 15 for s in result.chunks)


def test_query_terms_reported(sample_chunks):
    result = retrieve_chunks(sample_chunks, _ctx("How do I add numbers?", "textbook-1"))
    assert "add" in result.query_terms
    assert "numbers" in result.query_terms
    assert result.query_terms == extract_query_terms("How do I add numbers?")


def test_min_score_filters_unmatched(sample_chunks):
    result = retrieve_chunks(sample_chunks, _ctx("quantum physics", "textbook-1"))
    assert result.chunks == []


def test_budget_skips_oversized_chunk_and_keeps_going():
    chunks = [
        _chunk("a", "fraction decimal", 1, tokens=100),
        _chunk("b", "fraction decimal percent", 2, tokens=1500),
        _chunk("c", "fraction decimal percent integer", 3, tokens=50),
    ]
    result = retrieve_chunks(chunks, _ctx("fraction"), RetrievalOptions(max_tokens=160))
    assert [s.chunk.id for s in result.chunks] == ["a", "c"]
    assert result.total_tokens == 150


def test_total_tokens_is_sum_of_selected(sample_chunks):
    result = retrieve_chunks(sample_chunks, _ctx("addition", "textbook-1"))
    assert result.total_tokens == sum(s.chunk.token_estimate for s in result.chunks)


def test_missing_token_estimate_is_estimated():
    ch = _chunk("a", "fraction decimal", 1)
    assert chunk_tokens(ch) == 4
    result = retrieve_chunks([ch], _ctx("fraction"))
    assert result.total_tokens == 4


def test_select_with_token_budget_respects_top_k():
    from textbook_retrieval.index.schema import ScoredChunk

    scored = [ScoredChunk(chunk=_chunk(str(i), "x", i, tokens=10), score=0.5) for i in range(6)]
    picked = select_with_token_budget(scored, top_k=3, max_tokens=1000)
    assert [s.chunk.id for s in picked] == ["0", "1", "2"]
    assert select_with_token_budget(scored, top_k=10, max_tokens=25) == scored[:2]


def test_context_lesson_boost():
    chunks = [
        _chunk("p1", "fraction decimal percent integer", 1, tokens=10, lesson_id="L1"),
        _chunk("p2", "fraction decimal percent integer", 2, tokens=10, lesson_id="L2"),
    ]
    plain = retrieve_chunks(chunks, _ctx("fraction"))
    assert [s.chunk.id for s in plain.chunks] == ["p1", "p2"]

    boosted = retrieve_chunks(chunks, _ctx("fraction", lesson_id="L2"))
    assert [s.chunk.id for s in boosted.chunks] == ["p2", "p1"]
    assert boosted.chunks[0].score == pytest.approx(0.52)


def test_options_lesson_used_when_context_has_none():
    chunks = [
        _chunk("p1", "fraction decimal percent integer", 1, tokens=10, lesson_id="L1"),
        _chunk("p2", "fraction decimal percent integer", 2, tokens=10, lesson_id="L2"),
    ]
    result = retrieve_chunks(chunks, _ctx("fraction"), RetrievalOptions(lesson_id="L2"))
    assert result.chunks[0].chunk.id == "p2"
    # context wins over options
    result = retrieve_chunks(chunks, _ctx("fraction", lesson_id="L1"), RetrievalOptions(lesson_id="L2"))
    assert result.chunks[0].chunk.id == "p1"


def test_recent_page_boost_only_when_enabled():
    chunks = [
        _chunk("early", "fraction decimal percent integer", 1, tokens=10),
        _chunk("near", "fraction decimal percent integer", 30, tokens=10),
    ]
    ctx = _ctx("fraction", current_page=30)
    assert retrieve_chunks(chunks, ctx).chunks[0].chunk.id == "early"

    result = retrieve_chunks(chunks, ctx, RetrievalOptions(boost_recent_pages=True))
    assert result.chunks[0].chunk.id == "near"
    assert result.chunks[0].score == pytest.approx(0.48)


def test_retrieval_is_deterministic(sample_chunks):
    ctx = _ctx("inverse of addition", "textbook-1")
    a = retrieve_chunks(sample_chunks, ctx)
    b = retrieve_chunks(sample_chunks, ctx)
    assert a == b


def test_custom_stemmer_reaches_scoring():
    class ShapeStemmer:
        def stem(self, token):
            return {token, "triangle"} if token == "shapes" else {token}

    chunks = [_chunk("a", "triangle sides", 1, tokens=10)]
    ctx = _ctx("shapes")
    assert retrieve_chunks(chunks, ctx).chunks == []

    result = retrieve_chunks(chunks, ctx, stemmer=ShapeStemmer())
    assert [s.chunk.id for s in result.chunks] == ["a"]
    assert result.query_terms == ["shapes", "triangle"]
