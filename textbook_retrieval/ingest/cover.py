import re
from typing import Optional

from ..index.schema import CoverMetadata, OCRResult

_ISBN10_RE = re.compile(r"^\d{9}[\dX]$")
_ISBN13_RE = re.compile(r"^\d{13}$")


def isbn10_to_isbn13(isbn10: str) -> Optional[str]:
    if not _ISBN10_RE.match(isbn10):
        return None
    base = "978" + isbn10[:9]
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(base))
    return base + str((10 - total % 10) % 10)


def normalize_isbn(isbn: Optional[str]) -> Optional[str]:
    """
    Normalize an OCR'd ISBN to ISBN-13.

    Hyphens, spaces and any other noise are dropped. ISBN-10 input is
    converted (978 prefix, recomputed check digit). Anything else is None.
    """
    if not isbn:
        return None
    cleaned = re.sub(r"[^0-9X]", "", isbn.upper())
    if _ISBN13_RE.match(cleaned):
        return cleaned
    if len(cleaned) == 10:
        return isbn10_to_isbn13(cleaned)
    return None


def parse_cover(ocr: OCRResult) -> CoverMetadata:
    return CoverMetadata(
        title=ocr.title,
        publisher=ocr.publisher,
        isbn13=normalize_isbn(ocr.isbn13),
        edition=ocr.edition,
    )
