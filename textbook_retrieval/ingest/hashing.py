from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Iterator

FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619


class ContentHash(ABC):
    """Identity key for chunk content. Used for dedup only, not integrity."""

    @abstractmethod
    def digest(self, content: str) -> str:
        ...


def _utf16_units(s: str) -> Iterator[int]:
    for ch in s:
        cp = ord(ch)
        if cp > 0xFFFF:
            cp -= 0x10000
            yield 0xD800 + (cp >> 10)
            yield 0xDC00 + (cp & 0x3FF)
        else:
            yield cp


class FNV1aHash(ContentHash):
    """32-bit FNV-1a over UTF-16 code units, as 8 lowercase hex digits."""

    def digest(self, content: str) -> str:
        h = FNV_OFFSET_BASIS
        for unit in _utf16_units(content or ""):
            h ^= unit
            h = (h * FNV_PRIME) & 0xFFFFFFFF
        return f"{h:08x}"


DEFAULT_HASH = FNV1aHash()


def hash_content(content: str, hasher: ContentHash | None = None) -> str:
    return (hasher or DEFAULT_HASH).digest(content)
