import sys
from pathlib import Path

import pytest

# Repo root = one level above tests/
REPO_ROOT = Path(__file__).resolve().parents[1]

# Ensure repo root is on sys.path so `textbook_retrieval` and `cli` import
# without an install.
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from textbook_retrieval.index.schema import OCRResult  # noqa: E402


@pytest.fixture
def make_record():
    def _make(doc_type="page", page_number=None, raw_text="", **kw):
        return OCRResult(doc_type=doc_type, page_number=page_number, raw_text=raw_text, **kw)

    return _make


@pytest.fixture
def sample_chunks():
    from textbook_retrieval.index.schema import RetrievableChunk

    rows = [
        ("chunk-1", "textbook-1", "lesson-1", 10, 25,
         "Addition is the process of combining two or more numbers to find their sum. For example, 5 + 3 = 8."),
        ("chunk-2", "textbook-1", "lesson-1", 11, 30,
         "Subtraction is the inverse of addition. When we subtract, we find the difference between numbers. "
         "For example, 8 - 3 = 5."),
        ("chunk-3", "textbook-1", "lesson-2", 20, 30,
         "Multiplication is repeated addition. When you multiply 3 x 4, you add 3 four times: 3 + 3 + 3 + 3 = 12."),
        ("chunk-4", "textbook-1", "lesson-2", 21, 20,
         "Division is the inverse of multiplication. It splits a number into equal parts."),
        ("chunk-5", "textbook-2", None, 5, 25,
         "The water cycle describes how water moves through the environment through evaporation, "
         "condensation, and precipitation."),
    ]
    return [
        RetrievableChunk(
            id=cid,
            textbook_id=tb,
            lesson_id=lesson,
            page_number=page,
            chunk_index=0,
            content=content,
            token_estimate=tokens,
        )
        for cid, tb, lesson, page, tokens, content in rows
    ]
