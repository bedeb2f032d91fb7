from __future__ import annotations

import logging
import re
from typing import Iterable, List, Optional, Tuple

from ..index.schema import ChunkerOptions, OCRResult, TextChunk
from .clean import normalize_text, render_layout
from .hashing import ContentHash, hash_content
from .tokens import estimate_tokens

logger = logging.getLogger(__name__)

DEFAULT_CHUNKER_OPTIONS = ChunkerOptions()

_PARA_SPLIT_RE = re.compile(r"\n\n+")
_SENT_SPLIT_RE = re.compile(r"(?<=[.!?])\s+(?=[A-Z])")
_SENT_END_RE = re.compile(r"[.!?]$")

# (content, token_estimate)
Piece = Tuple[str, int]


def _split_paragraphs(text: str) -> List[str]:
    paras = _PARA_SPLIT_RE.split(text)
    return [p.strip() for p in paras if p.strip()]


def _split_sentences(text: str) -> List[str]:
    sentences: List[str] = []
    current = ""
    for part in _SENT_SPLIT_RE.split(text):
        current = f"{current} {part}" if current else part
        if _SENT_END_RE.search(current.strip()):
            sentences.append(current.strip())
            current = ""
    if current:
        sentences.append(current.strip())
    return [s for s in sentences if s]


def _pack(pieces: Iterable[str], target: int, joiner: str) -> List[Piece]:
    out: List[Piece] = []
    buf = ""
    buf_tokens = 0
    for piece in pieces:
        t = estimate_tokens(piece)
        if buf_tokens + t > target and buf_tokens > 0:
            out.append((buf, buf_tokens))
            buf, buf_tokens = piece, t
        else:
            buf = buf + joiner + piece if buf else piece
            buf_tokens += t
    if buf:
        out.append((buf, buf_tokens))
    return out


def _split_large_unit(text: str, opts: ChunkerOptions) -> List[Piece]:
    """Break a paragraph/sentence that alone exceeds max_tokens."""
    if opts.preserve_paragraphs:
        sentences = _split_sentences(text)
        if len(sentences) > 1:
            out: List[Piece] = []
            pending: List[str] = []
            for s in sentences:
                if estimate_tokens(s) > opts.max_tokens:
                    out.extend(_pack(pending, opts.target_tokens, " "))
                    pending = []
                    out.extend(_pack(s.split(), opts.target_tokens, " "))
                else:
                    pending.append(s)
            out.extend(_pack(pending, opts.target_tokens, " "))
            return out

    # Word-level fallback
    return _pack(text.split(), opts.target_tokens, " ")


def _overlap_tail(text: str, overlap_tokens: int) -> str:
    """Trailing sentences of `text` worth about `overlap_tokens` (capped at 1.5x)."""
    if overlap_tokens <= 0:
        return ""
    sentences = _split_sentences(text)
    picked: List[str] = []
    tokens = 0
    for s in reversed(sentences):
        if tokens >= overlap_tokens:
            break
        st = estimate_tokens(s)
        if tokens + st > overlap_tokens * 1.5:
            break
        picked.insert(0, s)
        tokens += st
    return " ".join(picked)


def _make_chunk(
    page_number: int,
    chunk_index: int,
    content: str,
    token_estimate: int,
    hasher: Optional[ContentHash] = None,
) -> TextChunk:
    content = content.strip()
    return TextChunk(
        page_number=page_number,
        chunk_index=chunk_index,
        content=content,
        content_hash=hash_content(content, hasher),
        token_estimate=token_estimate,
    )


def chunk_page(
    page_number: int,
    text: str,
    options: Optional[ChunkerOptions] = None,
    hasher: Optional[ContentHash] = None,
) -> List[TextChunk]:
    opts = options or DEFAULT_CHUNKER_OPTIONS
    cleaned = normalize_text(text)
    if not cleaned:
        return []

    total = estimate_tokens(cleaned)
    if total <= opts.max_tokens:
        return [_make_chunk(page_number, 0, cleaned, total, hasher)]

    if opts.preserve_paragraphs:
        units = _split_paragraphs(cleaned)
    elif opts.preserve_sentences:
        units = _split_sentences(cleaned)
    else:
        units = [cleaned]

    pieces: List[Piece] = []
    buf = ""
    buf_tokens = 0

    for unit in units:
        unit_tokens = estimate_tokens(unit)

        if unit_tokens > opts.max_tokens:
            if buf:
                pieces.append((buf, buf_tokens))
                buf, buf_tokens = "", 0
            pieces.extend(_split_large_unit(unit, opts))
            continue

        if buf_tokens + unit_tokens > opts.target_tokens and buf_tokens >= opts.min_tokens:
            pieces.append((buf, buf_tokens))
            overlap = _overlap_tail(buf, opts.overlap_tokens)
            buf = f"{overlap}\n\n{unit}" if overlap else unit
            buf_tokens = estimate_tokens(buf)
        else:
            # Under target, or not enough content yet to close a chunk
            buf = f"{buf}\n\n{unit}" if buf else unit
            buf_tokens += unit_tokens

    if buf:
        if buf_tokens >= opts.min_tokens / 2 or not pieces:
            pieces.append((buf, buf_tokens))
        else:
            last, _ = pieces[-1]
            merged = f"{last}\n\n{buf}"
            merged_tokens = estimate_tokens(merged)
            if merged_tokens <= opts.max_tokens * opts.merge_overflow_ratio:
                pieces[-1] = (merged, merged_tokens)
            else:
                pieces.append((buf, buf_tokens))

    chunks = [
        _make_chunk(page_number, i, content, tokens, hasher)
        for i, (content, tokens) in enumerate(pieces)
    ]
    logger.debug("page %s: %d tokens -> %d chunks", page_number, total, len(chunks))
    return chunks


def page_text(record: OCRResult) -> str:
    """Layout-aware text for a page record; falls back to raw_text."""
    if record.layout:
        return render_layout(record.layout)
    return record.raw_text


def chunk_pages(
    ocr_results: List[OCRResult],
    options: Optional[ChunkerOptions] = None,
    hasher: Optional[ContentHash] = None,
) -> List[TextChunk]:
    pages = [r for r in ocr_results if r.doc_type == "page" and r.page_number is not None]
    pages.sort(key=lambda r: r.page_number)

    out: List[TextChunk] = []
    for page in pages:
        out.extend(chunk_page(page.page_number, page_text(page), options, hasher))
    logger.info("Chunked %d pages into %d chunks", len(pages), len(out))
    return out
