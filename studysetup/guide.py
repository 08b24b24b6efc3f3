"""One-shot interview guide generation.

Separate from the setup turn graph: a single system + user exchange asking
the LLM for a JSON interview guide. Unlike the conversational path, a guide
that fails to parse is an error for the caller.
"""

from __future__ import annotations

import json
import logging
import time

from studysetup import prompts
from studysetup.config import DEFAULT_CONFIG, resilience_options
from studysetup.extractors import strip_fences
from studysetup.resilience import call_with_resilience

logger = logging.getLogger(__name__)


GUIDE_KEYS = (
    "questions",
    "instructions",
    "system_prompt",
    "duration_minutes",
    "supplementary_materials",
)


class GuideGenerationError(Exception):
    """Raised when the LLM does not return a usable interview guide."""


def generate_interview_guide(
    llm,
    study: dict,
    prompt: str | None = None,
    config: dict | None = None,
    cancel=None,
    sleep=None,
) -> dict:
    """Ask the LLM for an interview guide and return the parsed object as-is.

    Args:
        llm: LLMProvider used for the request.
        study: Study record; its type, questions and audience shape the prompt.
        prompt: Caller-supplied request text. Defaults to the built-in
                guide request for ``study``.
        config: Agent config; the ``guide`` section supplies model options.

    Returns:
        The guide dict, typically with questions, instructions,
        system_prompt, duration_minutes and supplementary_materials.

    Raises:
        GuideGenerationError: If the response is empty, not JSON, or not
                              a JSON object.
    """
    config = config or DEFAULT_CONFIG
    options = config.get("guide") or config["llm"]
    messages = [
        {"role": "system", "content": prompts.GUIDE_SYSTEM_PROMPT},
        {"role": "user", "content": prompt or prompts.guide_request_prompt(study)},
    ]

    started = time.monotonic()
    content = call_with_resilience(
        lambda: llm.complete(
            messages,
            model=options["model"],
            temperature=options["temperature"],
            max_tokens=options["max_tokens"],
            response_format={"type": "json_object"},
        ),
        cancel=cancel,
        sleep=sleep,
        **resilience_options(config),
    )
    elapsed = (time.monotonic() - started) * 1000

    if not content or not content.strip():
        raise GuideGenerationError("No content in LLM response")

    try:
        guide = json.loads(strip_fences(content))
    except json.JSONDecodeError as e:
        logger.error(f"Interview guide was not valid JSON after {elapsed:.0f}ms: {e}")
        raise GuideGenerationError(f"Invalid interview guide JSON: {e}") from e

    if not isinstance(guide, dict):
        raise GuideGenerationError("Invalid interview guide format received from LLM")

    missing = [k for k in GUIDE_KEYS if k not in guide]
    if missing:
        logger.warning(f"Interview guide for study {study.get('id')} is missing {missing}")

    logger.info(f"Interview guide for study {study.get('id')} generated in {elapsed:.0f}ms")
    return guide
