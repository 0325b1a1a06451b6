from datetime import date, datetime, timedelta
from typing import Dict

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..enums.drill_down import Granularity
from ..utils.time_utils import day_start, ensure_utc, to_iso


class TimeWindow(BaseModel):
    """Half-open time window [start, end)."""
    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> "TimeWindow":
        if self.end <= self.start:
            raise ValueError(f"end ({self.end}) must be after start ({self.start})")
        return self

    @property
    def duration(self) -> timedelta:
        return self.end - self.start

    @property
    def duration_seconds(self) -> float:
        return self.duration.total_seconds()

    def bucket_count(self, bucket_seconds: int) -> int:
        """Number of whole buckets of the given width inside the window."""
        if bucket_seconds <= 0:
            raise ValueError(f"bucket_seconds must be positive, got {bucket_seconds}")
        return self.duration // timedelta(seconds=bucket_seconds)

    def bucket_start(self, index: int, bucket_seconds: int) -> datetime:
        return self.start + index * timedelta(seconds=bucket_seconds)

    def to_query_params(self) -> Dict[str, str]:
        return {"p_time_start": to_iso(self.start), "p_time_end": to_iso(self.end)}

    @classmethod
    def for_day(cls, day: date) -> "TimeWindow":
        """The UTC calendar day [00:00, 24:00)."""
        start = day_start(day)
        return cls(start=start, end=start + timedelta(hours=24))

    @classmethod
    def from_selection(
        cls, parent_start: datetime, selection: "Selection", bucket_seconds: int
    ) -> "TimeWindow":
        """
        Convert a finalized selection into a window.

        The end is exclusive: one bucket width past the last selected bucket, so a
        single-index selection spans exactly one bucket.
        """
        width = timedelta(seconds=bucket_seconds)
        return cls(
            start=parent_start + selection.start_index * width,
            end=parent_start + (selection.end_index + 1) * width,
        )

    def __str__(self) -> str:
        return f"[{to_iso(self.start)}, {to_iso(self.end)})"


class Selection(BaseModel):
    """Normalized index range selected on a bucket level."""
    model_config = ConfigDict(frozen=True)

    granularity: Granularity
    start_index: int = Field(ge=0)
    end_index: int = Field(ge=0)

    @model_validator(mode="after")
    def _check_order(self) -> "Selection":
        if self.start_index > self.end_index:
            raise ValueError(
                f"start_index ({self.start_index}) must not exceed end_index ({self.end_index})"
            )
        return self

    @classmethod
    def from_drag(cls, granularity: Granularity, first: int, second: int) -> "Selection":
        """Build a selection from drag endpoints given in either order."""
        return cls(
            granularity=granularity,
            start_index=min(first, second),
            end_index=max(first, second),
        )

    @property
    def size(self) -> int:
        return self.end_index - self.start_index + 1
