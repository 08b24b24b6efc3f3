"""Interview conversation threads.

A thread is the ordered chat history of one interview, starting with the
interviewer system prompt. Threads live in an injected session store keyed
by an opaque id, so any process holding the store can continue a thread.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Protocol, runtime_checkable

import psycopg
from psycopg.rows import dict_row

from studysetup import prompts
from studysetup.config import DEFAULT_CONFIG, resilience_options
from studysetup.resilience import call_with_resilience

logger = logging.getLogger(__name__)


class ThreadNotFoundError(Exception):
    """Raised when an interview thread id is unknown."""


@runtime_checkable
class InterviewSessionStore(Protocol):
    def create(self, messages: list[dict]) -> str: ...
    def get(self, thread_id: str) -> list[dict] | None: ...
    def save(self, thread_id: str, messages: list[dict]) -> None: ...


class InMemorySessionStore:
    """Thread store held in process memory, for tests and single-process use."""

    def __init__(self):
        self._threads: dict[str, list[dict]] = {}

    def create(self, messages: list[dict]) -> str:
        thread_id = uuid.uuid4().hex
        self._threads[thread_id] = list(messages)
        return thread_id

    def get(self, thread_id: str) -> list[dict] | None:
        messages = self._threads.get(thread_id)
        return list(messages) if messages is not None else None

    def save(self, thread_id: str, messages: list[dict]) -> None:
        self._threads[thread_id] = list(messages)


class PgSessionStore:
    """Thread store backed by the interview_threads table."""

    def __init__(self, connection_string: str | None = None):
        self._conninfo = connection_string or os.environ.get(
            "DATABASE_URL", "postgresql://localhost/studysetup"
        )

    def create(self, messages: list[dict]) -> str:
        thread_id = uuid.uuid4().hex
        self.save(thread_id, messages)
        return thread_id

    def get(self, thread_id: str) -> list[dict] | None:
        with psycopg.connect(self._conninfo, row_factory=dict_row) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT messages FROM interview_threads WHERE thread_id = %s",
                    (thread_id,)
                )
                row = cur.fetchone()
                if row:
                    messages = row["messages"]
                    return json.loads(messages) if isinstance(messages, str) else messages
        return None

    def save(self, thread_id: str, messages: list[dict]) -> None:
        with psycopg.connect(self._conninfo) as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO interview_threads (thread_id, messages)
                    VALUES (%s, %s)
                    ON CONFLICT (thread_id) DO UPDATE
                    SET messages = EXCLUDED.messages, updated_at = NOW()
                    """,
                    (thread_id, json.dumps(messages))
                )
                conn.commit()


def start_interview(
    store: InterviewSessionStore,
    questions: list[str],
    instructions: str = "",
) -> str:
    """Open a new interview thread seeded with the interviewer prompt."""
    system = {
        "role": "system",
        "content": prompts.interviewer_system_prompt(questions, instructions),
    }
    thread_id = store.create([system])
    logger.info(f"Interview started with thread {thread_id} ({len(questions)} questions)")
    return thread_id


def process_response(
    store: InterviewSessionStore,
    llm,
    thread_id: str,
    user_response: str,
    config: dict | None = None,
    cancel=None,
    sleep=None,
) -> str:
    """Append a participant answer, get the interviewer's reply and save both.

    Raises:
        ThreadNotFoundError: If ``thread_id`` is not in the store.
    """
    messages = store.get(thread_id)
    if messages is None:
        raise ThreadNotFoundError(f"Thread not found: {thread_id}")

    config = config or DEFAULT_CONFIG
    options = config["interview"]
    messages = messages + [{"role": "user", "content": user_response}]

    reply = call_with_resilience(
        lambda: llm.complete(
            messages,
            model=options["model"],
            temperature=options["temperature"],
            max_tokens=options["max_tokens"],
        ),
        cancel=cancel,
        sleep=sleep,
        **resilience_options(config),
    ) or ""

    messages.append({"role": "assistant", "content": reply})
    store.save(thread_id, messages)
    return reply
