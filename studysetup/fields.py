"""Required study fields and the setup state derived from them.

A study has no persisted "setup state". The state is recomputed every turn
from which of the five required fields are filled, so it can never drift
from the data.
"""

from __future__ import annotations

from dataclasses import dataclass


# ---------------------------------------------------------------------------
# Required fields, in the order the setup flow asks for them
# ---------------------------------------------------------------------------

FIELD_ORDER = (
    "description",
    "study_type",
    "objective",
    "target_audience",
    "interview_questions",
)

STUDY_TYPES = ("Exploratory", "Comparative", "Attitudinal", "Behavioral")

_STUDY_TYPES_LOWER = {t.lower(): t for t in STUDY_TYPES}


def is_known_field(field: str) -> bool:
    return field in FIELD_ORDER


def is_filled(field: str, value) -> bool:
    """A field is filled iff its value is a string with non-whitespace content."""
    return isinstance(value, str) and len(value.strip()) > 0


def canonical_study_type(value) -> str | None:
    """Map a study type (any casing) to its enum value, or None if unknown."""
    if not isinstance(value, str):
        return None
    return _STUDY_TYPES_LOWER.get(value.strip().lower())


def missing_fields(study: dict | None) -> list[str]:
    """Return the unfilled required fields in canonical order."""
    study = study or {}
    return [f for f in FIELD_ORDER if not is_filled(f, study.get(f))]


def next_field(study: dict | None) -> str | None:
    """Return the first missing field, or None when every field is filled."""
    missing = missing_fields(study)
    return missing[0] if missing else None


# ---------------------------------------------------------------------------
# Derived setup state
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class AllFilled:
    pass


@dataclass(frozen=True)
class MissingField:
    name: str
    remaining: tuple[str, ...]


def setup_state(study: dict | None) -> AllFilled | MissingField:
    missing = missing_fields(study)
    if not missing:
        return AllFilled()
    return MissingField(name=missing[0], remaining=tuple(missing))
