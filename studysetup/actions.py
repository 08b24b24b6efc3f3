"""Action protocol exchanged between the orchestrator and its caller.

Every turn returns an ordered list of actions. Each action is a small
pydantic model tagged by ``type``; anything that fails validation never
reaches the caller.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, ValidationError, field_validator, model_validator

from studysetup.fields import canonical_study_type

logger = logging.getLogger(__name__)


FieldName = Literal[
    "description",
    "study_type",
    "objective",
    "target_audience",
    "interview_questions",
]


class MessageAction(BaseModel):
    type: Literal["message"] = "message"
    content: str


class FieldUpdateAction(BaseModel):
    type: Literal["field_update"] = "field_update"
    field: FieldName
    value: str

    @field_validator("value", mode="before")
    @classmethod
    def _stringify(cls, value):
        # LLMs occasionally send question lists as arrays
        if isinstance(value, list):
            return "\n".join(str(v) for v in value)
        return value

    @model_validator(mode="after")
    def _check_study_type(self):
        if self.field == "study_type":
            canonical = canonical_study_type(self.value)
            if canonical is None:
                raise ValueError(f"Unknown study type: {self.value!r}")
            self.value = canonical
        return self


class FocusAction(BaseModel):
    type: Literal["focus"] = "focus"
    section: FieldName


class StudyTypeOption(BaseModel):
    value: str
    description: str
    recommended: bool | None = None


class StudyTypeOptionsAction(BaseModel):
    type: Literal["study_type_options"] = "study_type_options"
    options: list[StudyTypeOption]


class CompleteAction(BaseModel):
    type: Literal["complete"] = "complete"
    value: Literal[True] = True


Action = Annotated[
    Union[
        MessageAction,
        FieldUpdateAction,
        FocusAction,
        StudyTypeOptionsAction,
        CompleteAction,
    ],
    Field(discriminator="type"),
]

_ACTION_ADAPTER = TypeAdapter(Action)


def parse_action(raw) -> Action | None:
    """Validate a raw dict as an Action. Returns None if it is not one."""
    if not isinstance(raw, dict):
        return None
    try:
        return _ACTION_ADAPTER.validate_python(raw)
    except ValidationError as e:
        logger.warning(f"Rejected action {raw!r}: {e.error_count()} validation error(s)")
        return None


def dump_actions(actions: list) -> list[dict]:
    """Serialize actions to their wire form."""
    return [a.model_dump(exclude_none=True) for a in actions]


# ---------------------------------------------------------------------------
# Constructors used by the scripted paths
# ---------------------------------------------------------------------------

def message(content: str) -> MessageAction:
    return MessageAction(content=content)


def field_update(field: str, value: str) -> FieldUpdateAction:
    return FieldUpdateAction(field=field, value=value)


def focus(section: str) -> FocusAction:
    return FocusAction(section=section)


def complete() -> CompleteAction:
    return CompleteAction()


def study_type_options(options: list[dict]) -> StudyTypeOptionsAction:
    return StudyTypeOptionsAction(
        options=[StudyTypeOption(**o) for o in options]
    )
