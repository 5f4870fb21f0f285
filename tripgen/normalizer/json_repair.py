"""Best-effort recovery of a JSON object from model output text."""

import json
import logging
import re
from typing import Any, Dict, Iterator, Optional, Tuple

logger = logging.getLogger(__name__)

_CODE_FENCE = re.compile(r"^```[\w-]*[ \t]*\r?\n?(.*?)\r?\n?```$", re.DOTALL)
# "//" preceded by ":" is a URL scheme, not a comment
_LINE_COMMENT = re.compile(r"(?<!:)//.*?(?=\r?\n|$)")
_BLOCK_COMMENT = re.compile(r"/\*[\s\S]*?\*/")
_BARE_KEY = re.compile(r"([{,])\s*([A-Za-z0-9_]+)\s*:")
_TRAILING_COMMA = re.compile(r",(\s*[\]}])")


class ItineraryParseError(ValueError):
    """Raised when model output cannot be recovered as a JSON object."""


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code block (```json ... ```), if any."""
    cleaned = text.strip()
    match = _CODE_FENCE.match(cleaned)
    if match:
        return match.group(1).strip()
    return cleaned


def extract_braced(text: str) -> Optional[str]:
    """Greedy match from the first ``{`` to the last ``}``."""
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        return None
    return text[start : end + 1]


def repair_json_text(text: str) -> str:
    """Apply textual repairs for the usual LLM JSON mistakes.

    Strips ``//`` and ``/* */`` comments, quotes bare object keys, drops
    trailing commas and turns single quotes into double quotes. Purely
    textual: apostrophes inside string values are not protected.
    """
    repaired = _LINE_COMMENT.sub("", text)
    repaired = _BLOCK_COMMENT.sub("", repaired)
    repaired = _BARE_KEY.sub(r'\1"\2":', repaired)
    repaired = _TRAILING_COMMA.sub(r"\1", repaired)
    return repaired.replace("'", '"')


def _candidates(text: str) -> Iterator[Tuple[str, str]]:
    yield "direct", text
    braced = extract_braced(text)
    if braced is not None:
        yield "extracted", braced
    repaired = repair_json_text(text)
    yield "repaired", repaired
    repaired_braced = extract_braced(repaired)
    if repaired_braced is not None and repaired_braced != repaired:
        yield "repaired_extracted", repaired_braced


def parse_itinerary_text(raw: str) -> Dict[str, Any]:
    """Parse model output into a dict: direct parse, brace extraction, then repairs.

    The first strategy that yields a JSON object wins. If none does, raises
    ``ItineraryParseError`` with the message of the first parse failure.
    """
    if raw is None or not raw.strip():
        raise ItineraryParseError("Received empty response from the model")

    text = strip_code_fences(raw)
    first_error: Optional[str] = None

    for strategy, candidate in _candidates(text):
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError as exc:
            logger.debug("JSON %s parse failed: %s", strategy, exc)
            if first_error is None:
                first_error = str(exc)
            continue
        if not isinstance(parsed, dict):
            if first_error is None:
                first_error = f"Parsed result is not a JSON object (got {type(parsed).__name__})"
            continue
        if strategy != "direct":
            logger.info("Recovered itinerary JSON via %s parse", strategy)
        return parsed

    raise ItineraryParseError(first_error or "Could not parse model output")
