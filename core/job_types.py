"""Job types."""

from datetime import datetime
from enum import Enum
from typing import Annotated, Dict, Literal, Optional, Union

from pydantic import BaseModel as _BaseModel, ConfigDict, Field, model_validator

from core.timing import minutes_from_midnight, minutes_to_time


class BaseModel(_BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class JobCategory(str, Enum):
    BRIEF = "brief"
    MARKET = "market"
    GOALS = "goals"
    PROJECTS = "projects"
    ADHOC = "adhoc"


class TimeWindow(BaseModel):
    """[start, end) span of wall-clock minutes on one calendar day."""
    model_config = ConfigDict(frozen=True)

    start: int = Field(ge=0, lt=24 * 60)
    end: int = Field(gt=0, le=24 * 60)

    @model_validator(mode="after")
    def _check_order(self):
        if self.start >= self.end:
            raise ValueError(f"window start {self.start} must be before end {self.end}")
        return self

    @classmethod
    def between(cls, start: tuple, end: tuple) -> "TimeWindow":
        return cls(start=minutes_from_midnight(*start), end=minutes_from_midnight(*end))

    def contains(self, minute: int) -> bool:
        return self.start <= minute < self.end

    def __str__(self) -> str:
        return f"{minutes_to_time(self.start)}-{minutes_to_time(self.end)}"


class JobDefinition(BaseModel):
    """A recurring job. Immutable, loaded at startup."""
    model_config = ConfigDict(frozen=True)

    id: str
    category: JobCategory
    window: TimeWindow
    weekdays_only: bool = False
    conditional: bool = False
    description: str = ""
    # Category tag handed to the delivery adapter
    notification_tag: str = "system"


# ── Outcomes ──────────────────────────────────────────────────

def _now() -> datetime:
    return datetime.now().astimezone()


class Sent(BaseModel):
    status: Literal["sent"] = "sent"
    message_length: int = Field(0, alias="messageLength")
    at: datetime = Field(default_factory=_now)


class Skipped(BaseModel):
    status: Literal["skipped"] = "skipped"
    reason: str
    at: datetime = Field(default_factory=_now)


class Failed(BaseModel):
    status: Literal["failed"] = "failed"
    error: str
    at: datetime = Field(default_factory=_now)


JobOutcome = Annotated[Union[Sent, Skipped, Failed], Field(discriminator="status")]


# ── Runtime & persisted state ────────────────────────────────

class JobRuntimeState(BaseModel):
    """Per-job state, mirrored to the state store."""
    target_minute: Optional[int] = Field(None, alias="targetMinute")
    fired_today: bool = Field(False, alias="firedToday")
    last_result: Optional[JobOutcome] = Field(None, alias="lastResult")


class SchedulerState(BaseModel):
    """Whole-process snapshot. Each write fully replaces the prior one."""
    date: Optional[str] = None
    daily_message_count: int = Field(0, alias="dailyMessageCount")
    jobs: Dict[str, JobRuntimeState] = Field(default_factory=dict)
    last_saved: Optional[datetime] = Field(None, alias="lastSaved")
