from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import BaseModel, field_validator

DOC_TYPES = ("cover", "toc", "page", "unknown")


class LayoutElement(BaseModel):
    type: Literal["heading", "paragraph", "list", "equation", "figure", "table"]
    content: str
    bbox: Optional[List[float]] = None


class OCRResult(BaseModel):
    doc_type: str = "unknown"     # "cover" | "toc" | "page" | "unknown"
    isbn13: Optional[str] = None
    title: Optional[str] = None
    publisher: Optional[str] = None
    edition: Optional[str] = None
    page_number: Optional[int] = None
    raw_text: str = ""
    layout: Optional[List[LayoutElement]] = None
    confidence: float = 0.0

    @field_validator("doc_type", mode="before")
    @classmethod
    def _coerce_doc_type(cls, v):
        v = str(v or "").strip().lower()
        return v if v in DOC_TYPES else "unknown"

    @field_validator("raw_text", mode="before")
    @classmethod
    def _none_text(cls, v):
        return "" if v is None else v


# ---- Curriculum structure ----

class ParsedTOCEntry(BaseModel):
    type: Literal["unit", "lesson"]
    number: int
    title: str
    page_start: int
    page_end: Optional[int] = None
    parent_number: Optional[int] = None   # lessons only


class ParsedLesson(BaseModel):
    lesson_number: int
    title: str
    page_start: int
    page_end: Optional[int] = None


class ParsedUnit(BaseModel):
    unit_number: int
    title: str
    page_start: int
    page_end: Optional[int] = None
    lessons: List[ParsedLesson] = []


class ParsedTOC(BaseModel):
    entries: List[ParsedTOCEntry] = []
    units: List[ParsedUnit] = []
    orphan_lessons: List[ParsedLesson] = []


class CoverMetadata(BaseModel):
    title: Optional[str] = None
    publisher: Optional[str] = None
    isbn13: Optional[str] = None
    edition: Optional[str] = None


# ---- Chunks ----

class ChunkerOptions(BaseModel):
    target_tokens: int = 450
    min_tokens: int = 300
    max_tokens: int = 600
    overlap_tokens: int = 50
    preserve_paragraphs: bool = True
    preserve_sentences: bool = True
    merge_overflow_ratio: float = 1.2   # trailing merge may exceed max_tokens by this factor


class TextChunk(BaseModel):
    page_number: int
    chunk_index: int
    content: str
    content_hash: str
    token_estimate: int


class RetrievableChunk(BaseModel):
    id: str
    textbook_id: str
    lesson_id: Optional[str] = None
    page_number: int
    chunk_index: int
    content: str
    content_hash: Optional[str] = None
    token_estimate: Optional[int] = None


# ---- Retrieval ----

class ScoredChunk(BaseModel):
    chunk: RetrievableChunk
    score: float
    matched_terms: List[str] = []


class PageRange(BaseModel):
    start: int
    end: int


class RetrievalOptions(BaseModel):
    top_k: int = 5
    min_score: float = 0.1
    max_tokens: int = 2000
    lesson_id: Optional[str] = None
    page_range: Optional[PageRange] = None
    boost_recent_pages: bool = False
    lesson_boost: float = 0.3
    page_proximity_boost: float = 0.2


class RetrievalContext(BaseModel):
    query: str
    textbook_id: str
    lesson_id: Optional[str] = None
    current_page: Optional[int] = None


class RetrievalResult(BaseModel):
    chunks: List[ScoredChunk] = []
    total_tokens: int = 0
    query_terms: List[str] = []


class Citation(BaseModel):
    chunk_id: str
    page_number: int
    relevance_score: float


class IngestResult(BaseModel):
    textbook_id: str
    cover: Optional[CoverMetadata] = None
    toc: ParsedTOC = ParsedTOC()
    chunks: List[RetrievableChunk] = []
