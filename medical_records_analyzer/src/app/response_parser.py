import json
import re
from typing import Any, List, Optional

from loguru import logger

from app.state import ExtractedDiagnosis, looks_like_diagnosis

_FENCE_RE = re.compile(r"```(?:json|JSON)?")


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text).strip()


def _first_balanced(text: str, open_char: str, close_char: str) -> Optional[str]:
    """Return the first balanced ``open_char ... close_char`` substring, ignoring brackets in strings."""
    start = text.find(open_char)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == open_char:
            depth += 1
        elif ch == close_char:
            depth -= 1
            if depth == 0:
                return text[start:i + 1]

    # Unbalanced (e.g. truncated output): fall back to the last closing bracket
    end = text.rfind(close_char)
    return text[start:end + 1] if end > start else None


def _loads(candidate: Optional[str]) -> Any:
    if candidate is None:
        return None
    try:
        return json.loads(candidate, strict=False)
    except json.JSONDecodeError:
        return None


def _normalize_items(items: List[Any]) -> List[ExtractedDiagnosis]:
    diagnoses: List[ExtractedDiagnosis] = []
    for item in items:
        if isinstance(item, dict):
            diagnoses.append(ExtractedDiagnosis.from_untrusted(item))
        elif isinstance(item, str) and item.strip():
            # Back-compat: bare list of condition names
            diagnoses.append(ExtractedDiagnosis.from_untrusted({"conditionName": item}))
    return diagnoses


def parse_diagnoses(raw_text: str) -> List[ExtractedDiagnosis]:
    """Turn raw model output into normalized diagnoses. Never raises."""
    cleaned = strip_code_fences(raw_text or "")
    if not cleaned:
        logger.warning("Model returned an empty response")
        return []

    brace = cleaned.find("{")
    bracket = cleaned.find("[")
    if brace != -1 and (bracket == -1 or brace < bracket):
        # An object comes first; searching it for "[" would only find its quote list
        parsed = _loads(_first_balanced(cleaned, "{", "}"))
        if isinstance(parsed, dict) and not looks_like_diagnosis(parsed):
            parsed = parsed.get("diagnoses")
    else:
        parsed = _loads(_first_balanced(cleaned, "[", "]"))

    if isinstance(parsed, list):
        return _normalize_items(parsed)
    if looks_like_diagnosis(parsed):
        return [ExtractedDiagnosis.from_untrusted(parsed)]

    logger.warning("Failed to parse model output as a diagnosis list")
    logger.debug(f"Model response text: {cleaned[:500]}")
    return []
