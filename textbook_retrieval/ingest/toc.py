"""
Table-of-contents parsing.

Turns the OCR text of TOC pages into a unit -> lesson hierarchy with page
ranges. Each line goes through two ordered rule lists:

1. PAGE_NUMBER_RULES pull the trailing page number off the line
   ("Intro .... 5", "Intro 5", "Intro - 5", "Intro | 5"). Lines with no page
   number are not TOC entries.
2. ENTRY_RULES classify the remainder as a unit or a lesson. The first rule
   that returns an entry wins; support for a new format is added by appending
   a rule.
"""

from __future__ import annotations

import logging
import re
from typing import List, Optional, Tuple

from ..index.schema import OCRResult, ParsedLesson, ParsedTOC, ParsedTOCEntry, ParsedUnit

logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r"^(?:table\s+of\s+contents|contents|index)\b", re.IGNORECASE)

PAGE_NUMBER_RULES = (
    re.compile(r"\.{2,}\s*(\d+)\s*$"),      # dot leader
    re.compile(r"\s+(\d+)\s*$"),            # trailing number
    re.compile(r"\s*[-–—]\s*(\d+)\s*$"),    # dash separated
    re.compile(r"\s*\|\s*(\d+)\s*$"),       # pipe separated
)


def _clean_title(title: str) -> str:
    # trailing dot leaders and separators left behind by the page number
    title = re.sub(r"[\s.:|\-–—]+$", "", title.strip())
    return re.sub(r"\s+", " ", title).strip()


class UnitRule:
    def __init__(self, pattern: str):
        self.pattern = re.compile(pattern, re.IGNORECASE)

    def match(self, text: str, page_start: int) -> Optional[ParsedTOCEntry]:
        m = self.pattern.match(text)
        if not m or not m.group(2).strip():
            return None
        return ParsedTOCEntry(
            type="unit",
            number=int(m.group(1)),
            title=_clean_title(m.group(2)),
            page_start=page_start,
        )


class LessonRule:
    """Lesson numbers may be dotted ("2.3"): parent unit 2, lesson 3."""

    def __init__(self, pattern: str):
        self.pattern = re.compile(pattern, re.IGNORECASE)

    def match(self, text: str, page_start: int) -> Optional[ParsedTOCEntry]:
        m = self.pattern.match(text)
        if not m or not m.group(2).strip():
            return None
        parts = m.group(1).split(".")
        if len(parts) > 1:
            parent, number = int(parts[0]), int(parts[1])
        else:
            parent, number = None, int(parts[0])
        return ParsedTOCEntry(
            type="lesson",
            number=number,
            title=_clean_title(m.group(2)),
            page_start=page_start,
            parent_number=parent,
        )


class UnnumberedLessonRule:
    """Anything left with a page number is a lesson of unknown number."""

    def match(self, text: str, page_start: int) -> Optional[ParsedTOCEntry]:
        title = _clean_title(text)
        if not title:
            return None
        return ParsedTOCEntry(type="lesson", number=0, title=title, page_start=page_start)


# (?!\.?\d) keeps dotted numbers ("1.2") out of the unit rules
ENTRY_RULES = [
    UnitRule(r"^(?:unit|chapter|module|section)\s*(\d+)(?!\.?\d)[:\s.-]*(.+)"),
    UnitRule(r"^(\d+)(?!\.?\d)\s*[:\s.-]+\s*(.+)"),
    LessonRule(r"^(?:lesson|topic|section)\s*(\d+(?:\.\d+)?)[:\s.-]*(.+)"),
    LessonRule(r"^(\d+\.\d+)\s*[:\s.-]+\s*(.+)"),
    UnnumberedLessonRule(),
]


def split_page_number(line: str) -> Tuple[Optional[int], str]:
    for rule in PAGE_NUMBER_RULES:
        m = rule.search(line)
        if m:
            return int(m.group(1)), line[: m.start()].strip()
    return None, line


def parse_line(line: str, rules=None) -> Optional[ParsedTOCEntry]:
    if len(line) < 3 or _HEADER_RE.match(line):
        return None

    page_start, rest = split_page_number(line)
    if not page_start:
        return None

    for rule in rules if rules is not None else ENTRY_RULES:
        entry = rule.match(rest, page_start)
        if entry is not None:
            return entry
    return None


def parse_entries(text: str, rules=None) -> List[ParsedTOCEntry]:
    lines = [ln.strip() for ln in text.split("\n")]
    entries = [e for e in (parse_line(ln, rules) for ln in lines if ln) if e is not None]

    for cur, nxt in zip(entries, entries[1:]):
        if cur.page_end is None and nxt.page_start > 0:
            cur.page_end = nxt.page_start - 1
    return entries


def _as_lesson(entry: ParsedTOCEntry) -> ParsedLesson:
    return ParsedLesson(
        lesson_number=entry.number,
        title=entry.title,
        page_start=entry.page_start,
        page_end=entry.page_end,
    )


def build_hierarchy(entries: List[ParsedTOCEntry]) -> ParsedTOC:
    units: List[ParsedUnit] = []
    orphans: List[ParsedLesson] = []
    current: Optional[ParsedUnit] = None

    for entry in entries:
        if entry.type == "unit":
            if current is not None:
                units.append(current)
            current = ParsedUnit(
                unit_number=entry.number, title=entry.title, page_start=entry.page_start
            )
            continue

        lesson = _as_lesson(entry)
        if entry.parent_number is not None:
            parent = next((u for u in units if u.unit_number == entry.parent_number), None)
            if parent is None and current is not None and current.unit_number == entry.parent_number:
                parent = current
        else:
            parent = current

        if parent is not None and lesson.page_start >= parent.page_start:
            parent.lessons.append(lesson)
        else:
            orphans.append(lesson)

    if current is not None:
        units.append(current)

    for i, unit in enumerate(units):
        candidates = []
        if unit.lessons and unit.lessons[-1].page_end is not None:
            candidates.append(unit.lessons[-1].page_end)
        if i + 1 < len(units):
            candidates.append(units[i + 1].page_start - 1)
        if candidates:
            unit.page_end = max(candidates)

    return ParsedTOC(entries=entries, units=units, orphan_lessons=orphans)


def parse_toc(ocr_results: List[OCRResult], rules=None) -> ParsedTOC:
    toc_pages = [r for r in ocr_results if r.doc_type == "toc"]
    if not toc_pages:
        return ParsedTOC()

    toc_pages.sort(key=lambda r: r.page_number or 0)
    text = "\n".join(p.raw_text for p in toc_pages)

    toc = build_hierarchy(parse_entries(text, rules))
    logger.info(
        "Parsed TOC: %d entries, %d units, %d orphan lessons",
        len(toc.entries),
        len(toc.units),
        len(toc.orphan_lessons),
    )
    return toc
