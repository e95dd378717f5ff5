"""Document shapes shared by the store, the transports and the synchronizer.

On disk and on the wire every attribute is camelCase, exactly as the original
JSON files were written; in Python the same attributes are snake_case. The
pydantic models carry the aliases so both sides round-trip without a
hand-written mapping.
"""

from enum import Enum
from typing import Annotated, Optional

from pydantic import AwareDatetime, BaseModel, ConfigDict, Field, StrictBool, TypeAdapter, model_validator
from pydantic import ValidationError as PydanticValidationError

from mtt.common.errors import ValidationError
from mtt.util.misc import MAX_INPUT_LENGTH, ms_between

NonNegativeMs = Annotated[int, Field(strict=True, ge=0)]
Label = Annotated[str, Field(min_length=1, max_length=MAX_INPUT_LENGTH)]

# Seed content for the suggestions document on first run.
DEFAULT_SUGGESTIONS = [
    "Project Gemini / Coding",
    "Project Gemini / Documentation",
    "Internal Admin / Meetings",
    "Internal Admin / Email Response",
    "Client X / Proposal Draft",
    "Learning / Tutorial Videos",
]


class DocumentKind(Enum):
    """The three documents the store owns."""
    ENTRIES = "entries"
    ACTIVE_STATE = "active_state"
    SUGGESTIONS = "suggestions"

    @property
    def filename(self):
        return _FILENAMES[self]

    @property
    def label(self):
        return _LABELS[self]

    def default(self):
        """A fresh copy of the content used when the document doesn't exist yet."""
        if self is DocumentKind.ENTRIES:
            return []
        if self is DocumentKind.ACTIVE_STATE:
            return {}
        return list(DEFAULT_SUGGESTIONS)


_FILENAMES = {
    DocumentKind.ENTRIES: "mtt-data.json",
    DocumentKind.ACTIVE_STATE: "mtt-active-state.json",
    DocumentKind.SUGGESTIONS: "mtt-suggestions.json",
}

_LABELS = {
    DocumentKind.ENTRIES: "data",
    DocumentKind.ACTIVE_STATE: "activeState",
    DocumentKind.SUGGESTIONS: "suggestions",
}


class HistoricalEntry(BaseModel):
    """A finished piece of work. Never changed once written."""

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    project: Label
    task: Label
    total_duration_ms: NonNegativeMs = Field(alias="totalDurationMs")
    duration_seconds: NonNegativeMs = Field(alias="durationSeconds")
    end_time: AwareDatetime = Field(alias="endTime")
    created_at: Optional[AwareDatetime] = Field(default=None, alias="createdAt")
    notes: str = ""

    @model_validator(mode="after")
    def _check_order(self):
        if self.created_at is not None and self.end_time < self.created_at:
            raise ValueError("endTime must not be earlier than createdAt")
        return self

    @property
    def topic(self):
        return f"{self.project.strip()} / {self.task.strip()}"

    def to_json(self):
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class ActiveTimer(BaseModel):
    """A running or paused timer.

    Running timers have a start_time and is_paused False; paused timers have no
    start_time and keep their banked time in accumulated_ms.
    """

    model_config = ConfigDict(populate_by_name=True, extra="allow", frozen=True)

    project: Label
    task: Label
    start_time: Optional[AwareDatetime] = Field(default=None, alias="startTime")
    accumulated_ms: NonNegativeMs = Field(default=0, alias="accumulatedMs")
    is_paused: StrictBool = Field(default=False, alias="isPaused")
    notes: str = ""
    created_at: Optional[AwareDatetime] = Field(default=None, alias="createdAt")

    @model_validator(mode="after")
    def _check_running_or_paused(self):
        if self.is_paused and self.start_time is not None:
            raise ValueError("a paused timer must not have a startTime")
        if not self.is_paused and self.start_time is None:
            raise ValueError("a running timer needs a startTime")
        return self

    @property
    def is_running(self):
        return not self.is_paused

    def elapsed_ms(self, now):
        elapsed = self.accumulated_ms
        if not self.is_paused and self.start_time is not None:
            elapsed += ms_between(self.start_time, now)
        return elapsed

    def to_json(self):
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        # startTime is always written, null while paused
        data.setdefault("startTime", None)
        return data


ENTRIES_ADAPTER = TypeAdapter(list[HistoricalEntry])
ACTIVE_STATE_ADAPTER = TypeAdapter(dict[str, ActiveTimer])
SUGGESTIONS_ADAPTER = TypeAdapter(list[str])

_ADAPTERS = {
    DocumentKind.ENTRIES: ENTRIES_ADAPTER,
    DocumentKind.ACTIVE_STATE: ACTIVE_STATE_ADAPTER,
    DocumentKind.SUGGESTIONS: SUGGESTIONS_ADAPTER,
}

_ITEM_NAMES = {
    DocumentKind.ENTRIES: "entry at index",
    DocumentKind.ACTIVE_STATE: "timer",
    DocumentKind.SUGGESTIONS: "suggestion at index",
}


def _describe(kind, error):
    first = error.errors()[0]
    loc = first.get("loc", ())
    where = ""
    if loc:
        where = f"{_ITEM_NAMES[kind]} {loc[0]}"
        if len(loc) > 1:
            where += f", field {'.'.join(str(part) for part in loc[1:])}"
        where += ": "
    return f"Invalid {where}{first.get('msg', 'invalid value')}"


def check_top_level(kind, content):
    """Raise ValidationError unless content has the container type of its document."""
    if kind is DocumentKind.ACTIVE_STATE:
        if not isinstance(content, dict):
            raise ValidationError("Active state must be an object")
    elif not isinstance(content, list):
        if kind is DocumentKind.ENTRIES:
            raise ValidationError("Data must be an array")
        raise ValidationError("Suggestions must be an array")


def validate_content(kind, content):
    """Schema-check raw JSON content for a document and return the parsed models.

    The content itself is left untouched; callers persist what they were given.
    """
    check_top_level(kind, content)
    try:
        return _ADAPTERS[kind].validate_python(content)
    except PydanticValidationError as e:
        raise ValidationError(_describe(kind, e)) from e


def entries_to_json(entries):
    return [entry.to_json() for entry in entries]


def timers_to_json(timers):
    return {timer_id: timer.to_json() for timer_id, timer in timers.items()}
