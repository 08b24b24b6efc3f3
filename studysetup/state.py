"""TurnState definition for the LangGraph turn graph."""

from __future__ import annotations

from typing import TypedDict


class TurnState(TypedDict, total=False):
    # Request
    messages: list[dict]
    study: dict
    is_editing: bool
    is_initial_setup: bool
    payload: dict

    # Derived from the last user message
    user_text: str
    envelope: dict | None
    active_section: str | None

    # Output
    route: str
    actions: list
