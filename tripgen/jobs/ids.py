"""Job identifiers and their mapping to numeric storage keys.

Job ids are opaque strings (``job_1718000000000_k3j9x0a``) that clients and
logs see. The ``jobs`` table is keyed by a bigint, so every id is mapped to a
number without a lookup table:

1. numeric strings map to their own value;
2. ``job_``/``debug_``/``test_`` ids map to the embedded millisecond timestamp;
3. anything else maps to a 32-bit polynomial hash (``h * 31 + c``, signed
   wraparound, absolute value).

The mapping must stay byte-for-byte compatible with rows already stored by
earlier deployments, including the hash fallback and its collisions.
"""

import math
import re
import secrets
import string
import time

JOB_ID_PREFIXES = ("job", "debug", "test")

_PREFIXED_ID = re.compile(r"^(job|debug|test)_([0-9]+)")
_ALPHABET = string.digits + string.ascii_lowercase
_SUFFIX_LENGTH = 7

_INTEGER = re.compile(r"[+-]?[0-9]+")
_RADIX = re.compile(r"0([xXoObB])([0-9a-fA-F]+)")
_RADIX_BASES = {"x": 16, "o": 8, "b": 2}
_DECIMAL = re.compile(r"[+-]?([0-9]+\.?[0-9]*|\.[0-9]+)([eE][+-]?[0-9]+)?")


def generate_job_id(prefix: str = "job") -> str:
    """Return a new ``<prefix>_<epoch-millis>_<random>`` job id."""
    if prefix not in JOB_ID_PREFIXES:
        raise ValueError(f"Unknown job id prefix '{prefix}'. Valid: {list(JOB_ID_PREFIXES)}")
    timestamp = int(time.time() * 1000)
    suffix = "".join(secrets.choice(_ALPHABET) for _ in range(_SUFFIX_LENGTH))
    return f"{prefix}_{timestamp}_{suffix}"


def _numeric_value(value: str):
    """Parse ``value`` the way a JS ``Number()`` cast would, or return None.

    Only ASCII digits count, ``_`` separators are rejected and a
    whitespace-only string is 0. ``Infinity`` is not a usable key and falls
    through to the other rules.
    """
    text = value.strip()
    if not text:
        return 0
    if _INTEGER.fullmatch(text):
        return int(text)
    radix = _RADIX.fullmatch(text)
    if radix:
        try:
            return int(radix.group(2), _RADIX_BASES[radix.group(1).lower()])
        except ValueError:
            return None
    if not _DECIMAL.fullmatch(text):
        return None
    number = float(text)
    if not math.isfinite(number):
        return None
    return int(number) if number.is_integer() else number


def polynomial_hash(value: str) -> int:
    """32-bit ``h * 31 + c`` hash over UTF-16 code units, returned as ``abs(h)``."""
    h = 0
    encoded = value.encode("utf-16-le")
    for i in range(0, len(encoded), 2):
        code_unit = encoded[i] | (encoded[i + 1] << 8)
        h = (h * 31 + code_unit) & 0xFFFFFFFF
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


def storage_key(job_id: str):
    """Map a job id to its numeric storage key. Pure and deterministic."""
    if not job_id:
        raise ValueError("job_id must be a non-empty string")

    numeric = _numeric_value(job_id)
    if numeric is not None:
        return numeric

    match = _PREFIXED_ID.match(job_id)
    if match:
        return int(match.group(2))

    return polynomial_hash(job_id)
