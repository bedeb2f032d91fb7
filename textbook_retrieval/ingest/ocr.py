"""
Boundary between the external vision/OCR call and the ingestion core.

- parse_ocr_response(): model output (JSON, possibly fenced or wrapped in
  chatter) -> OCRResult; prose replies become plain-text records
- load_ocr_records(): .json / .jsonl file of OCR records -> List[OCRResult];
  invalid records are logged and skipped
"""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..index.schema import OCRResult
from ..utils.log import Logger

logger = logging.getLogger(__name__)

# Strip common wrappers around model JSON (markdown fences, leading junk)
_CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE | re.MULTILINE)
_BOM_RE = re.compile(r"^\ufeff")

# Keys the OCR prompt uses that differ from OCRResult field names
_ALIASES = {"extracted_text": "raw_text", "detected_page": "page_number", "type": "doc_type"}

# Model replied in prose instead of JSON
PLAIN_TEXT_CONFIDENCE = 0.7


def extract_first_json_object(text: str) -> Dict[str, Any]:
    """
    Extract the first top-level JSON object from a string.
    Tolerates markdown fences, BOM, and trailing/leading noise.
    """
    if not isinstance(text, str):
        raise ValueError("Model output is not a string")

    cleaned = _CODE_FENCE_RE.sub("", _BOM_RE.sub("", text))

    start = cleaned.find("{")
    if start == -1:
        raise ValueError("No '{' found in model output.")

    depth = 0
    esc = False
    in_str = False
    for i in range(start, len(cleaned)):
        ch = cleaned[i]
        if in_str:
            if esc:
                esc = False
            elif ch == "\\":
                esc = True
            elif ch == '"':
                in_str = False
            continue
        if ch == '"':
            in_str = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return json.loads(cleaned[start : i + 1])

    raise ValueError("Unbalanced JSON braces in model output.")


def _normalize_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    out = dict(data)
    for src, dst in _ALIASES.items():
        if src in out and dst not in out:
            out[dst] = out.pop(src)
    return out


def parse_ocr_response(text: str, defaults: Optional[Dict[str, Any]] = None) -> OCRResult:
    """
    Parse raw vision-model output into an OCRResult.

    `defaults` fills fields the model did not report (e.g. the doc_type and
    page_number the upload was tagged with). Output with no recoverable JSON
    object is kept as plain text at PLAIN_TEXT_CONFIDENCE.

    Raises:
        ValueError: `text` is not a string.
        pydantic.ValidationError: the JSON object does not fit OCRResult.
    """
    if not isinstance(text, str):
        raise ValueError("Model output is not a string")

    merged = dict(defaults or {})
    try:
        data = _normalize_keys(extract_first_json_object(text))
    except ValueError as e:
        logger.warning("OCR output is not JSON (%s); keeping it as plain text", e)
        merged.update(raw_text=text.strip(), confidence=PLAIN_TEXT_CONFIDENCE)
        return OCRResult.model_validate(merged)

    merged.update({k: v for k, v in data.items() if v is not None})
    return OCRResult.model_validate(merged)


def _iter_raw_records(path: Path) -> List[Any]:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".jsonl":
        return [ln for ln in text.splitlines() if ln.strip()]
    data = json.loads(text)
    return data if isinstance(data, list) else [data]


def load_ocr_records(path: str | Path, event_log: Optional[Logger] = None) -> List[OCRResult]:
    path = Path(path)
    records: List[OCRResult] = []
    for i, raw in enumerate(_iter_raw_records(path), start=1):
        try:
            if isinstance(raw, str):
                rec = parse_ocr_response(raw)
            elif isinstance(raw, dict):
                rec = OCRResult.model_validate(_normalize_keys(raw))
            else:
                raise ValueError(f"expected an object, got {type(raw).__name__}")
        except (ValueError, ValidationError) as e:
            logger.warning("Skipping OCR record %d in %s: %s", i, path, e)
            if event_log is not None:
                event_log.write(
                    {"event": "parse_error", "file": str(path), "record": i, "error": str(e)}
                )
            continue
        records.append(rec)
    logger.info("Loaded %d OCR records from %s", len(records), path)
    return records
