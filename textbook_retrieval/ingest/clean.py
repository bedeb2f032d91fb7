import re
from typing import List

from ..index.schema import LayoutElement

# Layout element types that get an inline marker when rendered to text
_MARKERS = {
    "equation": "[Equation: {}]",
    "figure": "[Figure: {}]",
    "table": "[Table: {}]",
}


def normalize_text(s: str) -> str:
    if not s:
        return ""
    # Normalize Windows line endings
    s = s.replace("\r\n", "\n")
    s = s.replace("\t", " ")
    s = s.replace("\u00a0", " ")  # nbsp -> space
    # Collapse runs of spaces
    s = re.sub(r" +", " ", s)
    # Trim excessive blank lines
    s = re.sub(r"\n{3,}", "\n\n", s)
    return s.strip()


def render_layout(layout: List[LayoutElement]) -> str:
    parts = []
    for el in layout:
        if el.type == "heading":
            parts.append(f"## {el.content}\n")
        elif el.type in _MARKERS:
            parts.append(_MARKERS[el.type].format(el.content))
        else:
            parts.append(el.content)
    return "\n\n".join(parts)
