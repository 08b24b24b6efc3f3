"""LangGraph turn graph for the study-setup agent.

build_graph() returns the compiled StateGraph. run_turn() validates a turn
request, serializes turns per study, invokes the graph and returns the
ordered action list. The graph always runs:

    prepare -> <branch chosen by route_turn> -> apply_actions

so field updates reach the store before the caller sees the actions.
"""

from __future__ import annotations

import logging
import threading
import time
import weakref
from concurrent.futures import Future, ThreadPoolExecutor

from langgraph.graph import StateGraph, START, END

from studysetup import actions as act
from studysetup import prompts
from studysetup.db import StudyStoreProtocol
from studysetup.extractors import parse_envelope, unwrap_json_message
from studysetup.nodes import (
    initial_questions_node,
    initial_prompt_node,
    next_field_node,
    select_study_type_node,
    complete_setup_node,
    approve_questions_node,
    free_text_answer_node,
    llm_fallback_node,
)
from studysetup.routing import route_turn
from studysetup.state import TurnState

logger = logging.getLogger(__name__)


class TurnInputError(Exception):
    """Raised when a turn request is missing its messages or study."""


_BRANCHES = {
    "initial_questions": initial_questions_node,
    "initial_prompt": initial_prompt_node,
    "next_field": next_field_node,
    "select_study_type": select_study_type_node,
    "complete_setup": complete_setup_node,
    "approve_questions": approve_questions_node,
    "free_text_answer": free_text_answer_node,
    "llm_fallback": llm_fallback_node,
}


# ---------------------------------------------------------------------------
# Per-study serialization and background status writes
# ---------------------------------------------------------------------------

class StudyLocks:
    """One lock per study id, so turns for the same study never interleave."""

    def __init__(self):
        self._guard = threading.Lock()
        # A lock is dropped once no turn holds a reference to it
        self._locks: weakref.WeakValueDictionary = weakref.WeakValueDictionary()

    def __len__(self) -> int:
        return len(self._locks)

    def for_study(self, study_id) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(str(study_id))
            if lock is None:
                lock = threading.Lock()
                self._locks[str(study_id)] = lock
            return lock


_default_executor: ThreadPoolExecutor | None = None


def _get_default_executor() -> ThreadPoolExecutor:
    global _default_executor
    if _default_executor is None:
        _default_executor = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="study-status"
        )
    return _default_executor


class StatusUpdater:
    """Fire-and-forget study status writes.

    A failed write is logged and counted in ``failures``; it never reaches
    the caller of the turn.
    """

    def __init__(self, store: StudyStoreProtocol, executor=None):
        self._store = store
        self._executor = executor
        self._lock = threading.Lock()
        self.failures = 0

    def schedule(self, study_id, status: str = "active") -> Future:
        executor = self._executor or _get_default_executor()
        return executor.submit(self._write, study_id, status)

    def _write(self, study_id, status: str) -> None:
        started = time.monotonic()
        try:
            self._store.set_study_status(study_id, status)
        except Exception:
            with self._lock:
                self.failures += 1
            elapsed = (time.monotonic() - started) * 1000
            logger.exception(
                f"Failed to set status '{status}' on study {study_id} after {elapsed:.0f}ms"
            )
            return
        logger.info(f"Study {study_id} status set to '{status}'")


# ---------------------------------------------------------------------------
# Prepare / apply nodes
# ---------------------------------------------------------------------------

def _last_user_text(state: dict) -> str:
    """Extract text of the last user message."""
    for msg in reversed(state.get("messages", [])):
        if msg.get("role") == "user":
            return msg.get("content") or ""
    return ""


def prepare_node(state: dict, **kwargs) -> dict:
    raw = _last_user_text(state)
    envelope = parse_envelope(raw)
    payload = state.get("payload") or {}
    active_section = payload.get("activeSection")
    if not active_section and envelope:
        active_section = envelope.get("activeSection")

    derived = {
        "user_text": unwrap_json_message(raw),
        "envelope": envelope,
        "active_section": active_section,
    }
    route = route_turn({**state, **derived})
    logger.info(f"Study {state['study'].get('id')}: routing turn to '{route}'")
    return {**derived, "route": route}


def apply_actions_node(state: dict, services: dict | None = None, **kwargs) -> dict:
    """Persist field updates and schedule status writes for the turn's actions."""
    services = services or {}
    actions = list(state.get("actions") or [])
    if not actions:
        actions = [act.message(prompts.FALLBACK_MESSAGE)]

    study = dict(state["study"])
    store = services.get("store")
    study_id = study.get("id")

    for action in actions:
        if isinstance(action, act.FieldUpdateAction):
            study[action.field] = action.value
            if store is not None and study_id is not None:
                store.update_study_field(study_id, action.field, action.value)
        elif isinstance(action, act.CompleteAction):
            updater = services.get("status_updater")
            if updater is not None and study_id is not None:
                updater.schedule(study_id, "active")

    return {"actions": actions, "study": study}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def build_graph(services: dict | None = None):
    """Build and compile the turn graph with services bound to its nodes."""
    def _wrap(fn):
        def wrapper(state: dict) -> dict:
            return fn(state, services=services)
        wrapper.__name__ = fn.__name__
        return wrapper

    builder = StateGraph(TurnState)

    builder.add_node("prepare", prepare_node)
    for name, fn in _BRANCHES.items():
        builder.add_node(name, _wrap(fn))
    builder.add_node("apply_actions", _wrap(apply_actions_node))

    builder.add_edge(START, "prepare")
    builder.add_conditional_edges(
        "prepare", lambda state: state["route"], list(_BRANCHES)
    )
    for name in _BRANCHES:
        builder.add_edge(name, "apply_actions")
    builder.add_edge("apply_actions", END)

    return builder.compile()


def validate_turn_request(request: dict) -> dict:
    """Check a raw turn request and convert it to an initial TurnState.

    Raises:
        TurnInputError: If messages or study are missing or malformed.
    """
    messages = request.get("messages")
    if not isinstance(messages, list):
        raise TurnInputError("Invalid messages format")
    for msg in messages:
        if not isinstance(msg, dict) or not isinstance(msg.get("content", ""), str):
            raise TurnInputError("Invalid messages format")

    study = request.get("study")
    if not isinstance(study, dict) or not study:
        raise TurnInputError("Study details are required")

    return {
        "messages": messages,
        "study": study,
        "is_editing": bool(request.get("isEditing", False)),
        "is_initial_setup": bool(request.get("isInitialSetup", False)),
        "payload": request.get("payload") or {},
    }


def run_turn(graph, request: dict, services: dict | None = None) -> list:
    """Handle one turn and return its non-empty, ordered action list.

    Args:
        graph: Compiled graph from build_graph().
        request: Turn request with messages, study, flags and payload.
        services: Dict with llm, store, config, status_updater, locks, cancel.

    Raises:
        TurnInputError: For a malformed request (no LLM call is made).
        LLMError: Upstream failures on the LLM path, after retries.
    """
    state = validate_turn_request(request)
    services = services or {}
    locks = services.get("locks")
    study_id = state["study"].get("id")

    started = time.monotonic()
    if locks is not None and study_id is not None:
        with locks.for_study(study_id):
            result = graph.invoke(state)
    else:
        result = graph.invoke(state)

    elapsed = (time.monotonic() - started) * 1000
    logger.info(
        f"Study {study_id}: turn '{result.get('route')}' produced "
        f"{len(result['actions'])} action(s) in {elapsed:.0f}ms"
    )
    return result["actions"]
