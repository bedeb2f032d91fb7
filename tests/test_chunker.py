import re

from textbook_retrieval.index.schema import ChunkerOptions, LayoutElement
from textbook_retrieval.ingest.chunker import DEFAULT_CHUNKER_OPTIONS, chunk_page, chunk_pages
from textbook_retrieval.ingest.hashing import hash_content


def _paragraph(i: int) -> str:
    # 5 sentences, 59 estimated tokens for single-digit i
    return " ".join(f"Paragraph {i} sentence {j} talks about adding fractions." for j in range(1, 6))


def test_defaults():
    assert DEFAULT_CHUNKER_OPTIONS.target_tokens == 450
    assert DEFAULT_CHUNKER_OPTIONS.min_tokens == 300
    assert DEFAULT_CHUNKER_OPTIONS.max_tokens == 600
    assert DEFAULT_CHUNKER_OPTIONS.overlap_tokens == 50
    assert DEFAULT_CHUNKER_OPTIONS.preserve_paragraphs is True
    assert DEFAULT_CHUNKER_OPTIONS.preserve_sentences is True


def test_short_text_is_single_chunk():
    text = "This is a short paragraph."
    chunks = chunk_page(1, text)
    assert len(chunks) == 1
    assert chunks[0].page_number == 1
    assert chunks[0].chunk_index == 0
    assert chunks[0].content == text
    assert chunks[0].content_hash == hash_content(text)


def test_empty_and_whitespace_pages():
    assert chunk_page(1, "") == []
    assert chunk_page(1, "   ") == []
    assert chunk_page(1, "   \n\n   ") == []


def test_whitespace_is_normalized():
    chunks = chunk_page(2, "  Fractions and\tdecimals\r\n\n\n\nRatios   too.  ")
    assert chunks[0].content == "Fractions and decimals\n\nRatios too."


def test_long_text_splits_into_indexed_chunks():
    text = "This is a paragraph with enough words to generate tokens. " * 50
    chunks = chunk_page(5, text)
    assert len(chunks) > 1
    for i, ch in enumerate(chunks):
        assert ch.page_number == 5
        assert ch.chunk_index == i
        assert ch.content
        assert re.fullmatch(r"[0-9a-f]{8}", ch.content_hash)
        assert ch.content_hash == hash_content(ch.content)
        assert ch.token_estimate <= DEFAULT_CHUNKER_OPTIONS.max_tokens


def test_custom_options_bound_chunk_size():
    text = "Word " * 200
    chunks = chunk_page(1, text, ChunkerOptions(target_tokens=100, min_tokens=50, max_tokens=150))
    assert len(chunks) == 4
    for ch in chunks:
        assert ch.token_estimate <= 100


def test_oversized_run_without_punctuation_falls_back_to_words():
    chunks = chunk_page(1, "word " * 600)
    assert len(chunks) == 3
    assert [c.token_estimate for c in chunks] == [450, 450, 300]


def test_paragraph_packing_with_sentence_overlap():
    text = "\n\n".join(_paragraph(i) for i in range(1, 10))
    opts = ChunkerOptions(target_tokens=150, min_tokens=100, max_tokens=200, overlap_tokens=20)
    chunks = chunk_page(3, text, opts)

    assert len(chunks) == 5
    assert chunks[0].content.endswith("Paragraph 2 sentence 5 talks about adding fractions.")
    # next chunk opens with the last two sentences of the previous one
    assert chunks[1].content.startswith(
        "Paragraph 2 sentence 4 talks about adding fractions. Paragraph 2 sentence 5"
    )
    assert "Paragraph 3 sentence 1" in chunks[1].content
    assert all(c.token_estimate <= opts.max_tokens for c in chunks)


def test_no_overlap_when_disabled():
    text = "\n\n".join(_paragraph(i) for i in range(1, 10))
    opts = ChunkerOptions(target_tokens=150, min_tokens=100, max_tokens=200, overlap_tokens=0)
    chunks = chunk_page(3, text, opts)
    assert chunks[1].content.startswith("Paragraph 3 sentence 1")


def test_small_trailing_piece_merges_into_previous_chunk():
    text = f"{_paragraph(1)}\n\n{_paragraph(2)}\n\nShort note."
    opts = ChunkerOptions(target_tokens=110, min_tokens=100, max_tokens=120, overlap_tokens=0)
    chunks = chunk_page(1, text, opts)
    assert len(chunks) == 1
    assert chunks[0].content.endswith("Short note.")
    assert chunks[0].token_estimate == 122


def test_small_trailing_piece_kept_when_merge_would_overflow():
    text = f"{_paragraph(1)}\n\n{_paragraph(2)}\n\nShort note."
    opts = ChunkerOptions(
        target_tokens=110, min_tokens=100, max_tokens=120, overlap_tokens=0, merge_overflow_ratio=1.0
    )
    chunks = chunk_page(1, text, opts)
    assert len(chunks) == 2
    assert chunks[1].content == "Short note."
    assert chunks[1].chunk_index == 1


def test_sentence_units_when_paragraphs_not_preserved():
    text = " ".join(f"Sentence {i} explains how to multiply two fractions." for i in range(80))
    opts = ChunkerOptions(preserve_paragraphs=False, target_tokens=100, min_tokens=60, max_tokens=150)
    chunks = chunk_page(1, text, opts)
    assert len(chunks) > 1
    assert [c.chunk_index for c in chunks] == list(range(len(chunks)))
    for c in chunks:
        assert c.content.endswith(".")


def test_chunking_is_deterministic():
    text = "\n\n".join(_paragraph(i) for i in range(1, 10))
    opts = ChunkerOptions(target_tokens=150, min_tokens=100, max_tokens=200)
    assert chunk_page(7, text, opts) == chunk_page(7, text, opts)


def test_chunk_pages_filters_and_sorts(make_record):
    records = [
        make_record(doc_type="cover", isbn13="9780123456789", raw_text="Cover text"),
        make_record(doc_type="toc", page_number=3, raw_text="Table of contents"),
        make_record(doc_type="page", page_number=9, raw_text="Content of page nine."),
        make_record(doc_type="page", page_number=None, raw_text="Unnumbered page."),
        make_record(doc_type="page", page_number=2, raw_text="Content of page two."),
    ]
    chunks = chunk_pages(records)
    assert [(c.page_number, c.chunk_index) for c in chunks] == [(2, 0), (9, 0)]


def test_chunk_pages_prefers_layout(make_record):
    rec = make_record(
        doc_type="page",
        page_number=4,
        raw_text="ignored",
        layout=[
            LayoutElement(type="heading", content="Adding Fractions"),
            LayoutElement(type="paragraph", content="Find a common denominator first."),
            LayoutElement(type="equation", content="1/2 + 1/4 = 3/4"),
            LayoutElement(type="figure", content="Pie split into quarters"),
        ],
    )
    content = chunk_pages([rec])[0].content
    assert "ignored" not in content
    assert content.startswith("## Adding Fractions")
    assert "[Equation: 1/2 + 1/4 = 3/4]" in content
    assert "[Figure: Pie split into quarters]" in content


def test_oversized_sentence_inside_paragraph_is_split_by_words():
    giant = "Alpha " + "word " * 700 + "end."
    text = f"Short intro sentence here. {giant} Closing line."
    chunks = chunk_page(1, text)

    assert len(chunks) == 6
    assert chunks[0].content == "Short intro sentence here."
    assert chunks[1].content.startswith("Alpha word")
    assert chunks[4].content.endswith("end.")
    assert chunks[-1].content == "Closing line."
    assert all(c.token_estimate <= DEFAULT_CHUNKER_OPTIONS.max_tokens for c in chunks)
    assert [c.chunk_index for c in chunks] == list(range(6))
