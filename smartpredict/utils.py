import json
import re
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

_APOSTROPHES = str.maketrans({"\u2019": "'", "\u2018": "'", "\u02bc": "'"})


def normalize_message(text: str) -> str:
    """Purpose: Normalize a chat message for stable rule matching.
    Inputs/Outputs: Input is a raw string; output is lowercase text with curly
        apostrophes straightened and whitespace collapsed.
    Side Effects / State: None; pure function.
    Dependencies: Uses regex; called by the intent router and mood detector.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Rule patterns miss messages that differ only in case or spacing.
    Testing Notes: Validate "  What’s   in my CART " becomes "what's in my cart".
    """
    # Lowercase, straighten quotes, and collapse whitespace.
    if not text:
        return ""
    lowered = text.translate(_APOSTROPHES).lower()
    return re.sub(r"\s+", " ", lowered).strip()


def contains_term(haystack: str, needle: str) -> bool:
    """Case-insensitive substring test used by every catalog tier."""
    if not needle:
        return False
    return needle.lower() in (haystack or "").lower()


def extract_json_array(text: str) -> Optional[str]:
    """Purpose: Extract the outermost JSON array block from an arbitrary string.
    Inputs/Outputs: Input is a raw string; output is the array substring or None.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins; used by safe_json_array.
    Failure Modes: Returns None if brackets are missing or inverted.
    If Removed: Model replies with surrounding prose cannot be parsed.
    Testing Notes: Provide text before/after a JSON array and ensure extraction.
    """
    # Locate the outermost brackets to extract a parseable block.
    if not text:
        return None
    cleaned = text.strip()
    start = cleaned.find("[")
    end = cleaned.rfind("]")
    if start == -1 or end == -1 or end <= start:
        return None
    return cleaned[start : end + 1]


def safe_json_array(text: str) -> Optional[List[Dict[str, Any]]]:
    """Purpose: Parse a JSON array of objects from a model reply safely.
    Inputs/Outputs: Input is raw text; output is a list of dicts or None.
    Side Effects / State: None; pure function.
    Dependencies: Uses extract_json_array and json.loads.
    Failure Modes: Returns None on JSONDecodeError, a missing block, or non-object entries.
    If Removed: Insight generation crashes on malformed model output.
    Testing Notes: Validate fenced JSON parses and truncated JSON returns None.
    """
    block = extract_json_array(text)
    if not block:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, list) or not all(isinstance(entry, dict) for entry in data):
        return None
    return data


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
