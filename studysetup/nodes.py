"""Node functions for the turn graph.

Each node takes TurnState (and optionally a services dict for the LLM,
store and config) and returns a partial state dict with the turn's
``actions``. Every node except llm_fallback is a scripted path and never
calls the LLM.
"""

from __future__ import annotations

import logging
import time

from studysetup import actions as act
from studysetup import prompts
from studysetup.config import DEFAULT_CONFIG, resilience_options
from studysetup.fields import canonical_study_type, next_field
from studysetup.llm import AuthError
from studysetup.normalizer import normalize_completion
from studysetup.resilience import call_with_resilience
from studysetup.routing import pending_questions

logger = logging.getLogger(__name__)


def _field_prompt(field: str) -> list:
    """Scripted copy for a field, plus focus and (for study_type) the options."""
    result = [act.message(prompts.FIELD_PROMPTS[field]), act.focus(field)]
    if field == "study_type":
        result.append(act.study_type_options(prompts.STUDY_TYPE_OPTIONS))
    return result


def _starter_questions_text(study: dict) -> str:
    return prompts.numbered(prompts.starter_questions(study))


# ---------------------------------------------------------------------------
# Initial setup
# ---------------------------------------------------------------------------

def initial_questions_node(state: dict, **kwargs) -> dict:
    questions = _starter_questions_text(state["study"])
    return {
        "actions": [
            act.message(prompts.starter_questions_message(questions)),
            act.focus("interview_questions"),
        ],
    }


def initial_prompt_node(state: dict, **kwargs) -> dict:
    field = next_field(state["study"])
    return {"actions": _field_prompt(field)}


# ---------------------------------------------------------------------------
# Explicit "next"
# ---------------------------------------------------------------------------

def next_field_node(state: dict, **kwargs) -> dict:
    field = next_field(state["study"])
    if field is None:
        return {"actions": [act.message(prompts.ALL_COMPLETE_MESSAGE)]}

    if field == "interview_questions":
        questions = _starter_questions_text(state["study"])
        return {
            "actions": [
                act.message(prompts.starter_questions_message(questions)),
                act.field_update("interview_questions", questions),
                act.focus("interview_questions"),
            ],
        }

    return {"actions": _field_prompt(field)}


# ---------------------------------------------------------------------------
# Study type selection
# ---------------------------------------------------------------------------

def select_study_type_node(state: dict, **kwargs) -> dict:
    selected = state["payload"].get("selectedStudyType")
    study_type = canonical_study_type(selected)
    if study_type is None:
        logger.warning(f"Rejected study type selection: {selected!r}")
        return {
            "actions": [
                act.message(prompts.INVALID_STUDY_TYPE_MESSAGE),
                act.study_type_options(prompts.STUDY_TYPE_OPTIONS),
                act.focus("study_type"),
            ],
        }
    return {
        "actions": [
            act.field_update("study_type", study_type),
            act.message(prompts.study_type_confirmation(study_type)),
            act.focus("study_type"),
        ],
    }


# ---------------------------------------------------------------------------
# Complete setup
# ---------------------------------------------------------------------------

def complete_setup_node(state: dict, **kwargs) -> dict:
    questions = state["study"].get("interview_questions") or ""
    return {
        "actions": [
            act.field_update("interview_questions", questions),
            act.message(prompts.SETUP_COMPLETE_MESSAGE),
            act.complete(),
        ],
    }


# ---------------------------------------------------------------------------
# Free-text answers
# ---------------------------------------------------------------------------

def approve_questions_node(state: dict, **kwargs) -> dict:
    questions = pending_questions(state["messages"])
    return {
        "actions": [
            act.field_update("interview_questions", questions),
            act.message(prompts.QUESTIONS_APPROVED_MESSAGE),
            act.complete(),
        ],
    }


def free_text_answer_node(state: dict, **kwargs) -> dict:
    section = state["active_section"]
    answer = state["user_text"].strip()
    if section == "study_type" and canonical_study_type(answer) is None:
        # Free text is not a valid enum value; offer the choices instead
        return {
            "actions": [
                act.message(prompts.INVALID_STUDY_TYPE_MESSAGE),
                act.study_type_options(prompts.STUDY_TYPE_OPTIONS),
                act.focus("study_type"),
            ],
        }
    return {
        "actions": [
            act.message(prompts.field_acknowledgement(section)),
            act.field_update(section, answer),
            act.focus(section),
        ],
    }


# ---------------------------------------------------------------------------
# LLM fallback
# ---------------------------------------------------------------------------

def _chat_messages(state: dict) -> list[dict]:
    system = {
        "role": "system",
        "content": prompts.setup_system_prompt(state.get("is_editing", False)),
    }
    history = [
        {"role": m.get("role", "user"), "content": m.get("content") or ""}
        for m in state.get("messages", [])
        if m.get("role") in ("user", "assistant")
    ]
    return [system] + history


def llm_fallback_node(state: dict, services: dict | None = None, **kwargs) -> dict:
    services = services or {}
    llm = services.get("llm")
    if llm is None:
        raise AuthError("LLM API key is not configured")
    config = services.get("config") or DEFAULT_CONFIG
    options = config["llm"]
    chat = _chat_messages(state)

    logger.info(f"Calling LLM with {len(chat)} messages (model={options['model']})")
    started = time.monotonic()
    content = call_with_resilience(
        lambda: llm.complete(
            chat,
            model=options["model"],
            temperature=options["temperature"],
            max_tokens=options["max_tokens"],
            response_format={"type": "json_object"},
        ),
        cancel=services.get("cancel"),
        sleep=services.get("sleep"),
        **resilience_options(config),
    )
    elapsed = (time.monotonic() - started) * 1000
    logger.info(f"LLM response received in {elapsed:.0f}ms ({len(content)} chars)")

    return {"actions": normalize_completion(content)}
