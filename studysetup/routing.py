"""Routing (conditional edge) function for the turn graph.

route_turn takes a TurnState dict and returns the name of the node that
handles the turn. Only the last node, llm_fallback, calls the LLM.
"""

from __future__ import annotations

from studysetup.extractors import detect_approval, extract_numbered_questions, try_parse_json
from studysetup.fields import is_known_field, missing_fields


def pending_questions(messages: list[dict]) -> str | None:
    """Numbered questions proposed by the most recent assistant message."""
    for msg in reversed(messages or []):
        if msg.get("role") == "assistant":
            return extract_numbered_questions(msg.get("content") or "")
    return None


def _is_control_payload(text: str) -> bool:
    return isinstance(try_parse_json(text), (dict, list))


def route_turn(state: dict) -> str:
    study = state.get("study") or {}
    payload = state.get("payload") or {}
    action = payload.get("action")

    if state.get("is_initial_setup"):
        missing = missing_fields(study)
        if missing == ["interview_questions"]:
            return "initial_questions"
        if missing:
            return "initial_prompt"

    if action == "next":
        return "next_field"

    if payload.get("selectedStudyType"):
        return "select_study_type"

    if action == "complete_setup":
        return "complete_setup"

    user_text = (state.get("user_text") or "").strip()
    if not user_text or _is_control_payload(user_text):
        return "llm_fallback"

    section = state.get("active_section")
    if section and not is_known_field(section):
        section = None

    # An answer for another section is never an approval of the questions
    if section and section != "interview_questions":
        return "free_text_answer"

    if pending_questions(state.get("messages")) and detect_approval(user_text):
        return "approve_questions"

    if section:
        return "free_text_answer"

    return "llm_fallback"
