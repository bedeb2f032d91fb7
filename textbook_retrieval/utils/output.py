from __future__ import annotations

import datetime
import json
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from ..index.lexical import highlight_matches

FORMATS = ("json", "md", "txt")


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _slug(s: str, max_len: int = 60) -> str:
    s = s.strip().lower()
    s = re.sub(r"[^a-z0-9\-\s_]+", "", s)
    s = re.sub(r"[\s_]+", "-", s)
    return s[:max_len].strip("-") or "query"


def infer_format(out_path: Optional[str], fmt: Optional[str]) -> str:
    if fmt:
        return fmt.lower()
    if out_path:
        ext = Path(out_path).suffix.lower().lstrip(".")
        if ext in FORMATS:
            return ext
    return "json"


def ensure_outpath(out_path: Optional[str], fmt: str, save_dir: Optional[str], question: str) -> Path:
    if out_path:
        p = Path(out_path)
        p.parent.mkdir(parents=True, exist_ok=True)
        return p
    base_dir = Path(save_dir or "outputs")
    base_dir.mkdir(parents=True, exist_ok=True)
    return base_dir / f"{_timestamp()}_{_slug(question)}.{fmt}"


def _citation_line(c: Dict[str, Any]) -> str:
    score = float(c.get("relevance_score") or 0.0)
    return f"{c.get('chunk_id', '?')} | Page {c.get('page_number', '?')} | relevance {score:.2f}"


def as_markdown(ans: Dict[str, Any]) -> str:
    lines: List[str] = [f"# {ans.get('question', '')}\n"]
    if ans.get("summary"):
        lines.append(f"_{ans['summary']}_\n")
    if not ans.get("sufficient", True):
        lines.append("> Not enough textbook content was found to answer confidently.\n")

    contexts = ans.get("contexts") or []
    if contexts:
        lines.append("## Excerpts")
        for i, ctx in enumerate(contexts, start=1):
            score = float(ctx.get("score") or 0.0)
            lines.append(f"### {i}. Page {ctx.get('page', '?')} ({score:.0%})")
            lines.append(highlight_matches(ctx.get("text") or "", ctx.get("matched_terms") or []))
            lines.append("")
    elif (ans.get("answer") or "").strip():
        lines.append(ans["answer"].strip())
        lines.append("")

    cites = ans.get("citations") or []
    if cites:
        lines.append("## Citations")
        lines.extend(f"- `{_citation_line(c)}`" for c in cites)
        lines.append("")
    timers = (ans.get("trace") or {}).get("timers_ms")
    if timers:
        lines.append("## Timers (ms)")
        lines.append("```json")
        lines.append(json.dumps(timers, indent=2))
        lines.append("```")
    return "\n".join(lines).strip() + "\n"


def as_text(ans: Dict[str, Any]) -> str:
    lines: List[str] = [f"QUESTION: {ans.get('question', '')}", ""]
    if ans.get("summary"):
        lines.append(f"SUMMARY: {ans['summary']}")
    lines.append(f"SUFFICIENT: {'yes' if ans.get('sufficient') else 'no'}")
    lines.append("")
    lines.append((ans.get("answer") or "").strip())
    lines.append("")
    cites = ans.get("citations") or []
    if cites:
        lines.append("CITATIONS:")
        lines.extend(f"- {_citation_line(c)}" for c in cites)
        lines.append("")
    timers = (ans.get("trace") or {}).get("timers_ms")
    if timers:
        lines.append("TIMERS_MS: " + json.dumps(timers))
    return "\n".join(lines).strip() + "\n"


def write_output(
    question: str,
    payload: Dict[str, Any],
    out_path: Optional[str] = None,
    fmt: Optional[str] = None,
    save_dir: Optional[str] = None,
) -> Path:
    fmt2 = infer_format(out_path, fmt)
    if fmt2 not in FORMATS:
        raise ValueError(f"Unsupported format: {fmt2}")
    target = ensure_outpath(out_path, fmt2, save_dir, question)
    obj = {
        "question": question,
        "answer": payload.get("answer"),
        "summary": payload.get("summary"),
        "sufficient": payload.get("sufficient"),
        "pages": payload.get("pages"),
        "citations": payload.get("citations"),
        "trace": payload.get("trace"),
        "contexts": payload.get("contexts"),
    }
    if fmt2 == "json":
        target.write_text(json.dumps(obj, ensure_ascii=False, indent=2), encoding="utf-8")
    elif fmt2 == "md":
        target.write_text(as_markdown(obj), encoding="utf-8")
    else:
        target.write_text(as_text(obj), encoding="utf-8")
    return target
