from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator

from ..enums.drill_down import FetchStatus
from ..utils.time_utils import ensure_utc


class RecordingSpan(BaseModel):
    """First and last recorded instant of a pod."""
    pod_id: str
    earliest_time: datetime
    latest_time: datetime

    @field_validator("earliest_time", "latest_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class PodDaysResult(BaseModel):
    """Calendar days (UTC) with at least one recorded sample."""
    pod_id: str
    status: FetchStatus
    days: List[date] = Field(default_factory=list)
    error: Optional[str] = None

    def contains(self, day: date) -> bool:
        return day in self.days
