"""Pure text heuristics that pull structured signals out of free text."""

from __future__ import annotations

import json
import re


_NUMBERED_LINE_RE = re.compile(r"^\s*\d+\.")

_FENCE_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)

APPROVAL_PHRASES = (
    "yes",
    "those look good",
    "i like these",
    "good",
    "perfect",
    "great",
    "approved",
    "lets finish",
    "continue",
    "proceed",
    "move on",
)


def extract_numbered_questions(text: str) -> str | None:
    """Return the lines of ``text`` that start with ``<digits>.``, joined.

    >>> extract_numbered_questions("1. A\\n2. B\\nnot a question")
    '1. A\\n2. B'
    """
    if not text:
        return None
    matches = [line for line in text.splitlines() if _NUMBERED_LINE_RE.match(line)]
    if not matches:
        return None
    return "\n".join(matches)


def detect_approval(text: str) -> bool:
    """Detect whether the user is approving a proposed list of questions."""
    lowered = (text or "").lower()
    if any(phrase in lowered for phrase in APPROVAL_PHRASES):
        return True
    return "like" in lowered and "question" in lowered


def try_parse_json(text: str):
    """Try to parse text as JSON. Returns the parsed value or None."""
    if not isinstance(text, str):
        return None
    text = text.strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None


def parse_envelope(text: str) -> dict | None:
    """Return the JSON object a caller wrapped around a user message, if any."""
    parsed = try_parse_json(text)
    return parsed if isinstance(parsed, dict) else None


def unwrap_json_message(text: str) -> str:
    """Return the envelope's ``message`` string, or ``text`` unchanged."""
    envelope = parse_envelope(text)
    if envelope is not None and isinstance(envelope.get("message"), str):
        return envelope["message"]
    return text


def strip_fences(text: str) -> str:
    """Strip markdown code fences from LLM output if present."""
    match = _FENCE_RE.search(text)
    return match.group(1).strip() if match else text.strip()
