"""Normalize raw LLM completions into a validated list of actions.

The completion is expected to be JSON but is adversarial in practice. It is
first classified into one of three shapes (action array, legacy object,
unparseable) and then projected into actions. A parse failure is never
retried; it becomes a safe fallback message.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

from studysetup.actions import (
    CompleteAction,
    MessageAction,
    parse_action,
)
from studysetup.extractors import strip_fences

logger = logging.getLogger(__name__)


ERROR_MESSAGE = "I encountered an error processing your request. Please try again."
EMPTY_RESPONSE_MESSAGE = "I received an empty response. Please try again."

# Keys under which a json_object response wraps its action array
_ARRAY_KEYS = ("actions", "response", "content")


# ---------------------------------------------------------------------------
# Shape classification
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ActionArray:
    items: list


@dataclass(frozen=True)
class LegacyObject:
    data: dict


@dataclass(frozen=True)
class Unparseable:
    reason: str


def parse_completion(text: str) -> ActionArray | LegacyObject | Unparseable:
    """Classify a completion by shape without raising."""
    try:
        parsed = json.loads(strip_fences(text))
    except (json.JSONDecodeError, ValueError) as e:
        return Unparseable(reason=f"invalid JSON: {e}")

    if isinstance(parsed, list):
        return ActionArray(items=parsed)
    if isinstance(parsed, str):
        return LegacyObject(data={"message": parsed})
    if isinstance(parsed, dict):
        for key in _ARRAY_KEYS:
            if isinstance(parsed.get(key), list):
                return ActionArray(items=parsed[key])
        return LegacyObject(data=parsed)
    return Unparseable(reason=f"unexpected JSON type {type(parsed).__name__}")


# ---------------------------------------------------------------------------
# Projection
# ---------------------------------------------------------------------------

def _validated(items: list) -> list:
    actions = []
    for raw in items:
        action = parse_action(raw)
        if action is None:
            logger.warning(f"Dropping invalid action from LLM output: {raw!r}")
            continue
        actions.append(action)
    return actions


def _project_legacy(data: dict) -> list:
    """Project a single legacy-shaped object into actions."""
    if "type" in data:
        action = parse_action(data)
        return [action] if action is not None else []

    actions = []

    msg = data.get("message")
    if isinstance(msg, dict):
        msg = msg.get("content")
    if isinstance(msg, str) and msg.strip():
        actions.append(MessageAction(content=msg))

    updates = data.get("field_updates")
    if isinstance(updates, dict):
        actions.extend(
            _validated([
                {"type": "field_update", "field": field, "value": value}
                for field, value in updates.items()
            ])
        )

    single = data.get("field_update")
    if isinstance(single, dict):
        actions.extend(_validated([{"type": "field_update", **single}]))

    section = data.get("focus")
    if isinstance(section, dict):
        section = section.get("section")
    if section:
        actions.extend(_validated([{"type": "focus", "section": section}]))

    done = data.get("complete")
    if isinstance(done, dict):
        done = done.get("value")
    if done:
        actions.append(CompleteAction())

    return actions


def normalize_completion(text: str) -> list:
    """Turn an LLM completion into a non-empty list of actions."""
    if not text or not text.strip():
        logger.error("Empty response from LLM")
        return [MessageAction(content=EMPTY_RESPONSE_MESSAGE)]

    shape = parse_completion(text)
    if isinstance(shape, Unparseable):
        logger.error(f"Could not parse LLM output ({shape.reason}): {text[:200]!r}")
        return [MessageAction(content=ERROR_MESSAGE)]

    if isinstance(shape, ActionArray):
        actions = _validated(shape.items)
    else:
        actions = _project_legacy(shape.data)

    if not actions:
        logger.error(f"LLM output produced no usable actions: {text[:200]!r}")
        return [MessageAction(content=ERROR_MESSAGE)]
    return actions
