"""Court-file reference numbers: canonical form and extraction from text.

Romanian court files are numbered ``number/court/year`` (``1234/3/2024``) or
``number/year`` (``4521/2024``); people type them with dashes, dots, stray
spaces and mixed case. Matching is always done on :func:`normalize_reference`
output on both sides.
"""

from __future__ import annotations

import re
from typing import Iterable


_WHITESPACE_RE = re.compile(r"\s+")
_SEPARATOR_RUN_RE = re.compile(r"[/\\\-._–—]+")
_DISALLOWED_RE = re.compile(r"[^0-9a-z/]")
_SLASH_RUN_RE = re.compile(r"/{2,}")

_YEAR = r"(?:19|20)\d{2}"
_SEP = r"[ \t]*/[ \t]*"

# Longest shape first; overlaps are resolved by span length anyway.
_REFERENCE_PATTERNS = (
    re.compile(rf"(?<![\d/])\d{{1,6}}{_SEP}\d{{1,4}}{_SEP}{_YEAR}(?![\d/])"),
    re.compile(rf"(?<![\d/])\d{{1,6}}{_SEP}{_YEAR}(?![\d/])"),
    re.compile(r"(?<![\w-])CTR-\d{4}-\d{3,6}(?![\w-])", re.IGNORECASE),
    re.compile(r"(?<![\w-])REF-\d{4,10}(?![\w-])", re.IGNORECASE),
)


def normalize_reference(raw: str | None) -> str:
    """Canonical comparable form of a reference number.

    >>> normalize_reference("  1234 / 2024 ")
    '1234/2024'
    >>> normalize_reference("CTR-2025-001")
    'ctr/2025/001'
    """
    if not raw or not isinstance(raw, str):
        return ""
    value = _WHITESPACE_RE.sub("", raw.lower())
    value = _SEPARATOR_RUN_RE.sub("/", value)
    value = _DISALLOWED_RE.sub("", value)
    value = _SLASH_RUN_RE.sub("/", value)
    return value.strip("/")


def extract_reference_numbers(text: str | None) -> list[str]:
    """Reference-shaped substrings of ``text`` in order of appearance.

    Duplicates (by normalized form) are dropped, keeping the first spelling.
    """
    if not text or not isinstance(text, str):
        return []

    spans: list[tuple[int, int]] = []
    for pattern in _REFERENCE_PATTERNS:
        spans.extend(m.span() for m in pattern.finditer(text))

    # Earliest start wins; at equal start the longer match wins.
    spans.sort(key=lambda s: (s[0], -(s[1] - s[0])))

    found: list[str] = []
    seen: set[str] = set()
    last_end = -1
    for start, end in spans:
        if start < last_end:
            continue
        last_end = end
        raw = text[start:end].strip()
        key = normalize_reference(raw)
        if key and key not in seen:
            seen.add(key)
            found.append(raw)
    return found


def references_match(
    candidates: Iterable[str | None], known: Iterable[str | None]
) -> str | None:
    """Return the first known reference equal (normalized) to a candidate."""
    known_by_key: dict[str, str] = {}
    for ref in known:
        key = normalize_reference(ref)
        if key:
            known_by_key.setdefault(key, ref)  # type: ignore[arg-type]
    if not known_by_key:
        return None
    for candidate in candidates:
        key = normalize_reference(candidate)
        if key in known_by_key:
            return known_by_key[key]
    return None
