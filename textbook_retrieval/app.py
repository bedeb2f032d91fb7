import json
import logging
import re
import time
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import yaml

from .answer.extract import (
    build_citations,
    format_chunks_for_prompt,
    get_retrieval_summary,
    get_retrieved_page_numbers,
    has_minimum_content,
)
from .index.lexical import contains_math_content
from .index.schema import (
    ChunkerOptions,
    IngestResult,
    OCRResult,
    PageRange,
    ParsedLesson,
    ParsedTOC,
    RetrievableChunk,
    RetrievalContext,
    RetrievalOptions,
)
from .ingest.chunker import chunk_pages
from .ingest.cover import parse_cover
from .ingest.ocr import load_ocr_records
from .ingest.toc import parse_toc
from .retrieve.retriever import retrieve_chunks
from .utils.log import Logger

logger = logging.getLogger(__name__)

LOG_DIR = Path("logs")


def load_config(path: str | Path) -> dict:
    with open(path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


def _section(cfg: dict, name: str) -> dict:
    return (cfg or {}).get(name) or {}


def chunker_options_from_config(cfg: dict) -> ChunkerOptions:
    sec = _section(cfg, "ingest")
    return ChunkerOptions(**{k: sec[k] for k in ChunkerOptions.model_fields if k in sec})


def retrieval_options_from_config(cfg: dict) -> RetrievalOptions:
    sec = _section(cfg, "retrieval")
    return RetrievalOptions(**{k: sec[k] for k in RetrievalOptions.model_fields if k in sec})


def _safe_name(s: str) -> str:
    return re.sub(r"[^A-Za-z0-9._-]+", "_", s).strip("_") or "textbook"


def textbook_dir(cfg: dict, textbook_id: str) -> Path:
    index_dir = Path(_section(cfg, "app").get("index_dir", "index"))
    return index_dir.resolve() / _safe_name(textbook_id)


# ---- Lessons ----

def lesson_id(textbook_id: str, unit_number: int, lesson: ParsedLesson) -> str:
    return f"{textbook_id}:u{unit_number}:l{lesson.lesson_number}:p{lesson.page_start}"


def _lesson_spans(toc: ParsedTOC) -> Iterator[Tuple[int, ParsedLesson, Optional[int]]]:
    # The last lesson of a unit has no successor; it ends where its unit does.
    for unit in toc.units:
        for lesson in unit.lessons:
            end = lesson.page_end if lesson.page_end is not None else unit.page_end
            yield unit.unit_number, lesson, end
    for lesson in toc.orphan_lessons:
        yield 0, lesson, lesson.page_end


def lesson_id_for_page(toc: ParsedTOC, textbook_id: str, page_number: int) -> Optional[str]:
    """Id of the lesson whose page range holds `page_number` (latest start wins)."""
    best: Optional[Tuple[int, ParsedLesson]] = None
    for unit_number, lesson, end in _lesson_spans(toc):
        if lesson.page_start <= page_number and (end is None or page_number <= end):
            if best is None or lesson.page_start > best[1].page_start:
                best = (unit_number, lesson)
    if best is None:
        return None
    return lesson_id(textbook_id, *best)


# ---- Ingest ----

def ingest_records(records: List[OCRResult], textbook_id: str, cfg: dict) -> IngestResult:
    ing = _section(cfg, "ingest")
    covers = [r for r in records if r.doc_type == "cover"]
    cover = parse_cover(covers[0]) if covers else None
    toc = parse_toc(records)

    chunks: List[RetrievableChunk] = []
    seen = set()
    dedupe = bool(ing.get("dedupe", True))
    for ch in chunk_pages(records, chunker_options_from_config(cfg)):
        if dedupe and ch.content_hash in seen:
            logger.debug("duplicate chunk p%s#%s (%s) dropped", ch.page_number, ch.chunk_index, ch.content_hash)
            continue
        seen.add(ch.content_hash)
        chunks.append(
            RetrievableChunk(
                id=f"{textbook_id}:p{ch.page_number}:c{ch.chunk_index}",
                textbook_id=textbook_id,
                lesson_id=lesson_id_for_page(toc, textbook_id, ch.page_number),
                page_number=ch.page_number,
                chunk_index=ch.chunk_index,
                content=ch.content,
                content_hash=ch.content_hash,
                token_estimate=ch.token_estimate,
            )
        )
    return IngestResult(textbook_id=textbook_id, cover=cover, toc=toc, chunks=chunks)


def ingest_path(records_path: Path, cfg: dict, textbook_id: str) -> IngestResult:
    out_dir = textbook_dir(cfg, textbook_id)
    out_dir.mkdir(parents=True, exist_ok=True)
    log = Logger(LOG_DIR / "ingest.log.jsonl")

    records = load_ocr_records(records_path, event_log=log)
    result = ingest_records(records, textbook_id, cfg)

    with open(out_dir / "chunks.jsonl", "w", encoding="utf-8") as out:
        for ch in result.chunks:
            out.write(ch.model_dump_json() + "\n")
    (out_dir / "toc.json").write_text(result.toc.model_dump_json(indent=2), encoding="utf-8")
    cover = result.cover.model_dump() if result.cover else None
    (out_dir / "cover.json").write_text(json.dumps(cover, indent=2), encoding="utf-8")

    log.write(
        {
            "event": "ingest",
            "textbook_id": textbook_id,
            "records": len(records),
            "units": len(result.toc.units),
            "chunks": len(result.chunks),
        }
    )
    logger.info("Ingest complete: %d chunks -> %s", len(result.chunks), out_dir)
    return result


def load_chunks(out_dir: Path) -> List[RetrievableChunk]:
    path = Path(out_dir) / "chunks.jsonl"
    if not path.exists():
        logger.warning("No chunks at %s", path)
        return []
    with open(path, "r", encoding="utf-8") as f:
        return [RetrievableChunk.model_validate_json(ln) for ln in f if ln.strip()]


# ---- Query ----

def query_text(
    question: str,
    cfg: dict,
    textbook_id: str,
    lesson_id: Optional[str] = None,
    current_page: Optional[int] = None,
    top_k: Optional[int] = None,
    page_range: Optional[Tuple[int, int]] = None,
    max_tokens: Optional[int] = None,
    boost_recent_pages: Optional[bool] = None,
    chunks: Optional[List[RetrievableChunk]] = None,
) -> dict:
    """
    Lexical retrieval -> token-budgeted selection -> prompt-ready excerpts.

    `chunks` skips loading from the index dir (callers that already hold them).
    """
    timers = {}
    t0 = time.perf_counter()
    if chunks is None:
        chunks = load_chunks(textbook_dir(cfg, textbook_id))
    timers["load_ms"] = int((time.perf_counter() - t0) * 1000)

    # Per-call overrides on top of config
    overrides = {}
    if top_k is not None:
        overrides["top_k"] = int(top_k)
    if max_tokens is not None:
        overrides["max_tokens"] = int(max_tokens)
    if boost_recent_pages is not None:
        overrides["boost_recent_pages"] = bool(boost_recent_pages)
    if page_range is not None:
        overrides["page_range"] = PageRange(start=page_range[0], end=page_range[1])
    opts = retrieval_options_from_config(cfg).model_copy(update=overrides)

    ctx = RetrievalContext(
        query=question, textbook_id=textbook_id, lesson_id=lesson_id, current_page=current_page
    )

    t1 = time.perf_counter()
    result = retrieve_chunks(chunks, ctx, opts)
    timers["retrieve_ms"] = int((time.perf_counter() - t1) * 1000)

    ans_cfg = _section(cfg, "answer")
    suff_cfg = _section(cfg, "sufficiency")
    answer = format_chunks_for_prompt(
        result.chunks,
        include_page_numbers=bool(ans_cfg.get("include_page_numbers", True)),
        include_scores=bool(ans_cfg.get("include_scores", False)),
        max_chars_per_chunk=int(ans_cfg.get("max_chars_per_chunk", 1500)),
    )
    sufficient = has_minimum_content(
        result,
        min_chunks=int(suff_cfg.get("min_chunks", 1)),
        min_score=float(suff_cfg.get("min_score", 0.2)),
    )
    timers["total_ms"] = int((time.perf_counter() - t0) * 1000)

    citations = [c.model_dump() for c in build_citations(result.chunks)]
    summary = get_retrieval_summary(result)
    trace = {
        "candidates": len(chunks),
        "query_terms": result.query_terms,
        "selected_ids": [s.chunk.id for s in result.chunks],
        "total_tokens": result.total_tokens,
        "options": opts.model_dump(),
        "timers_ms": timers,
    }
    logger.info(summary)

    Logger(LOG_DIR / "queries.log.jsonl").write(
        {"question": question, "textbook_id": textbook_id, "trace": trace, "citations": citations}
    )

    return {
        "answer": answer,
        "citations": citations,
        "pages": get_retrieved_page_numbers(result.chunks),
        "sufficient": sufficient,
        "summary": summary,
        "trace": trace,
        "contexts": [
            {
                "id": s.chunk.id,
                "page": s.chunk.page_number,
                "lesson_id": s.chunk.lesson_id,
                "score": s.score,
                "matched_terms": s.matched_terms,
                "has_math": contains_math_content(s.chunk.content),
                "text": s.chunk.content,
            }
            for s in result.chunks
        ],
    }
