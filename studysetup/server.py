"""FastAPI server for the study-setup agent.

Provides REST endpoints for setup turns, interview guide generation and
interview threads.
"""

from __future__ import annotations

import logging
import os
import time

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from studysetup.actions import dump_actions
from studysetup.config import load_agent_config
from studysetup.db import Database
from studysetup.extractors import unwrap_json_message
from studysetup.graph import StatusUpdater, StudyLocks, TurnInputError, build_graph, run_turn
from studysetup.guide import generate_interview_guide
from studysetup.interview import (
    InMemorySessionStore,
    PgSessionStore,
    ThreadNotFoundError,
    process_response,
    start_interview,
)
from studysetup.llm import AuthError, LLMError, LLMTimeoutError, OpenAIChatLLM, RateLimitError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class TurnPayload(BaseModel):
    model_config = ConfigDict(extra="allow")

    action: str | None = None
    selectedStudyType: str | None = None
    activeSection: str | None = None
    missingFields: list[str] | None = None


class TurnRequest(BaseModel):
    messages: list[dict] | None = None
    study: dict | None = None
    isEditing: bool = False
    isInitialSetup: bool = False
    payload: TurnPayload | None = None


class InterviewRequest(BaseModel):
    action: str
    data: dict = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------

TIMEOUT_MESSAGE = (
    "The request timed out. Please try again with a smaller input or check "
    "your connection."
)
RATE_LIMIT_MESSAGE = (
    "The AI service is currently experiencing high demand. Please try again "
    "in a few minutes."
)
AUTH_MESSAGE = "There is an issue with the AI service API key. Please contact support."
UPSTREAM_MESSAGE = (
    "An error occurred while communicating with the AI service. Please try again."
)
INTERNAL_MESSAGE = "An error occurred while processing your request. Please try again."


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


def _upstream_error_response(e: LLMError) -> JSONResponse:
    if isinstance(e, LLMTimeoutError):
        return _error(504, TIMEOUT_MESSAGE)
    if isinstance(e, RateLimitError):
        return _error(429, RATE_LIMIT_MESSAGE)
    if isinstance(e, AuthError):
        return _error(500, AUTH_MESSAGE)
    return _error(500, UPSTREAM_MESSAGE)


def _elapsed_ms(started: float) -> float:
    return (time.monotonic() - started) * 1000


# ---------------------------------------------------------------------------
# Default services
# ---------------------------------------------------------------------------

def default_services(config: dict | None = None) -> dict:
    """Build services from the environment.

    The LLM is left unset when no API key is configured; turns that need it
    then fail with AuthError. Without DATABASE_URL, field updates are
    returned to the caller but not persisted here.
    """
    config = config or load_agent_config()
    try:
        llm = OpenAIChatLLM(
            request_timeout=float(config["resilience"]["timeout_seconds"])
        )
    except AuthError:
        logger.warning("OPENAI_API_KEY is not configured; LLM turns will fail")
        llm = None

    if os.environ.get("DATABASE_URL"):
        store = Database()
        sessions = PgSessionStore()
    else:
        store = None
        sessions = InMemorySessionStore()

    return {
        "llm": llm,
        "store": store,
        "config": config,
        "sessions": sessions,
        "locks": StudyLocks(),
        "status_updater": StatusUpdater(store) if store is not None else None,
    }


# ---------------------------------------------------------------------------
# App factory
# ---------------------------------------------------------------------------

def create_app(services: dict | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        services: Dict with llm, store, config, sessions, locks and
                  status_updater for dependency injection.
    """
    app = FastAPI(title="Study Setup Agent")

    if services is None:
        services = default_services()
    services.setdefault("config", load_agent_config())
    services.setdefault("locks", StudyLocks())
    services.setdefault("sessions", InMemorySessionStore())
    if services.get("store") is not None:
        services.setdefault("status_updater", StatusUpdater(services["store"]))

    graph = build_graph(services)

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(request: Request, exc: RequestValidationError):
        logger.error(f"Invalid request to {request.url.path}: {exc.errors()}")
        return _error(400, "Invalid request format")

    @app.get("/health")
    def health():
        return {"status": "ok"}

    @app.post("/api/gpt")
    def gpt(req: TurnRequest):
        started = time.monotonic()
        body = req.model_dump()
        payload = body.get("payload") or {}

        if payload.get("action") == "generate_interview_guide":
            return _guide(body, started)

        try:
            actions = run_turn(graph, body, services)
        except TurnInputError as e:
            logger.error(f"Invalid turn request: {e}")
            return _error(400, str(e))
        except LLMError as e:
            logger.error(f"LLM failure after {_elapsed_ms(started):.0f}ms: {e!r}")
            return _upstream_error_response(e)
        except Exception:
            logger.exception(f"Error handling turn after {_elapsed_ms(started):.0f}ms")
            return _error(500, INTERNAL_MESSAGE)

        return {"content": dump_actions(actions)}

    def _guide(body: dict, started: float):
        study = body.get("study")
        if not isinstance(study, dict) or not study:
            return _error(400, "Study details are required")

        prompt = None
        messages = body.get("messages") or []
        if messages:
            prompt = unwrap_json_message(messages[-1].get("content") or "") or None

        llm = services.get("llm")
        try:
            if llm is None:
                raise AuthError("LLM API key is not configured")
            guide = generate_interview_guide(
                llm, study, prompt=prompt, config=services["config"],
                sleep=services.get("sleep"),
            )
        except LLMError as e:
            logger.error(
                f"Interview guide LLM failure after {_elapsed_ms(started):.0f}ms: {e!r}"
            )
            return _upstream_error_response(e)
        except Exception as e:
            logger.exception(
                f"Interview guide generation failed after {_elapsed_ms(started):.0f}ms"
            )
            return _error(500, str(e) or "Unknown error")

        return {"content": guide}

    @app.post("/api/interview")
    def interview(req: InterviewRequest):
        started = time.monotonic()
        sessions = services["sessions"]

        if req.action == "startInterview":
            questions = req.data.get("questions")
            if not isinstance(questions, list) or not questions:
                return _error(400, "Interview questions are required")
            thread_id = start_interview(
                sessions,
                [str(q) for q in questions],
                req.data.get("instructions") or "",
            )
            return {"threadId": thread_id}

        if req.action == "processResponse":
            thread_id = req.data.get("threadId")
            user_response = req.data.get("userResponse")
            if not thread_id or not isinstance(user_response, str):
                return _error(400, "threadId and userResponse are required")
            llm = services.get("llm")
            try:
                if llm is None:
                    raise AuthError("LLM API key is not configured")
                reply = process_response(
                    sessions, llm, thread_id, user_response,
                    config=services["config"], sleep=services.get("sleep"),
                )
            except ThreadNotFoundError:
                logger.error(f"Thread not found: {thread_id}")
                return _error(404, "Thread not found")
            except LLMError as e:
                logger.error(
                    f"Interview LLM failure after {_elapsed_ms(started):.0f}ms: {e!r}"
                )
                return _upstream_error_response(e)
            return {"response": reply}

        return _error(400, "Invalid action")

    return app
