import json
import re
import unicodedata
from typing import Any, Dict, Iterable, Optional

_ASCII_WORD = re.compile(r"[a-z0-9]")
_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")
_TRAILING_COMMA = re.compile(r",\s*([}\]])")
_SMART_QUOTES = {
    "“": '"',
    "”": '"',
    "„": '"',
    "‘": "'",
    "’": "'",
    "＂": '"',
}


def normalize_text(text: str) -> str:
    """Purpose: Normalize free-form text for stable matching in the engine.
    Inputs/Outputs: Input is a raw string; output is a lowercase NFKC string with
        whitespace collapsed. CJK characters are preserved.
    Side Effects / State: None; pure function.
    Dependencies: Uses unicodedata and regex; called by every matcher.
    Failure Modes: Returns an empty string when input is falsy.
    If Removed: Full-width input (e.g. "ＬＭ３８４０") stops matching catalog data.
    Testing Notes: Validate full-width latin folds to ASCII and spaces collapse.
    """
    # Fold width variants and case before any keyword comparison.
    if not text:
        return ""
    folded = unicodedata.normalize("NFKC", str(text)).lower()
    return re.sub(r"\s+", " ", folded).strip()


def normalize_key(text: str) -> str:
    """Purpose: Produce a compact normalization key without spaces.
    Inputs/Outputs: Input is a raw string; output is normalized string with spaces removed.
    Side Effects / State: None; pure function.
    Dependencies: Calls normalize_text; used by the symptom matcher and keyword lookups.
    Failure Modes: Returns empty string for falsy input; otherwise deterministic.
    If Removed: Callers lose stable keying and matching for map/set operations.
    Testing Notes: Ensure spaces are removed after normalization.
    """
    # Collapse normalization output into a compact key.
    return normalize_text(text).replace(" ", "")


def contains_keyword(text: str, keyword: str) -> bool:
    """Purpose: Case-insensitive keyword containment that respects ASCII word edges.
    Inputs/Outputs: Inputs are haystack text and a keyword; output is a bool.
    Side Effects / State: None; pure function.
    Dependencies: normalize_text.
    Failure Modes: Empty keyword never matches.
    If Removed: Short latin keywords ("ev", "jet") match inside unrelated words
        ("every", "jetta") and misclassify vehicles.
    Testing Notes: "cbr600" contains "cbr"; "jetta" does not contain "jet".
    """
    # CJK keywords match as plain substrings; latin keywords need a left word edge
    # and may only be followed by a non-letter (digits allowed, as in "cbr600").
    haystack = normalize_text(text)
    needle = normalize_text(keyword)
    if not haystack or not needle:
        return False
    start = haystack.find(needle)
    while start != -1:
        end = start + len(needle)
        before = haystack[start - 1] if start > 0 else ""
        after = haystack[end] if end < len(haystack) else ""
        left_ok = not (_ASCII_WORD.match(needle[0]) and before and _ASCII_WORD.match(before))
        right_ok = not (
            _ASCII_WORD.match(needle[-1]) and after and re.match(r"[a-z]", after)
        )
        if left_ok and right_ok:
            return True
        start = haystack.find(needle, start + 1)
    return False


def find_keywords(text: str, keywords: Iterable[str]) -> list:
    """Return the keywords contained in text, preserving keyword order."""
    return [keyword for keyword in keywords if contains_keyword(text, keyword)]


def extract_json_block(text: str) -> Optional[str]:
    """Purpose: Extract the first JSON object block from an arbitrary string.
    Inputs/Outputs: Input is a raw string; output is JSON substring or None.
    Side Effects / State: None; pure function.
    Dependencies: None beyond built-ins; used by safe_json_loads.
    Failure Modes: Returns None if braces are missing or inverted.
    If Removed: Model outputs cannot be parsed safely, breaking intent parsing.
    Testing Notes: Provide strings with extra text before/after JSON and ensure extraction.
    """
    # Locate the outermost JSON braces to extract a parseable block.
    if not text:
        return None
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end == -1 or end <= start:
        return None
    return text[start : end + 1]


def repair_json(text: str) -> str:
    """Purpose: Best-effort cleanup of model-produced JSON before parsing.
    Inputs/Outputs: Input is a raw JSON-ish string; output is the repaired string.
    Side Effects / State: None; pure function.
    Dependencies: Module-level regexes.
    Failure Modes: Single quotes are only rewritten when the text has no double
        quotes at all, so apostrophes inside valid JSON strings survive.
    If Removed: Trailing commas and smart quotes from the LLM cause parse failures.
    Testing Notes: '{"a": 1,}' and '{“a”: 1}' both parse after repair.
    """
    # Strip fences and control characters, then fix quotes and trailing commas.
    if not text:
        return ""
    repaired = _CODE_FENCE.sub("", text)
    repaired = _CONTROL_CHARS.sub("", repaired)
    for smart, plain in _SMART_QUOTES.items():
        repaired = repaired.replace(smart, plain)
    if '"' not in repaired:
        repaired = repaired.replace("'", '"')
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return repaired.strip()


def safe_json_loads(text: str) -> Optional[Dict[str, Any]]:
    """Purpose: Parse a JSON object from a model output string safely.
    Inputs/Outputs: Input is raw text; output is a dict or None if parsing fails.
    Side Effects / State: None; pure function.
    Dependencies: Uses repair_json, extract_json_block and json.loads.
    Failure Modes: Returns None on JSONDecodeError, missing JSON block, or a
        top-level value that is not an object.
    If Removed: Intent parsing becomes brittle and crashes on malformed model output.
    Testing Notes: Validate valid JSON parses and malformed JSON returns None.
    """
    # Parse only the extracted JSON block to avoid non-JSON prefixes/suffixes.
    block = extract_json_block(repair_json(text))
    if not block:
        return None
    try:
        data = json.loads(block)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None
