from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field, computed_field, field_validator

from ..enums.drill_down import FetchStatus
from ..utils.time_utils import ensure_utc
from .window import TimeWindow

LEAD_FIELDS = (
    "lead_on_p_1", "lead_on_p_2", "lead_on_p_3",
    "lead_on_n_1", "lead_on_n_2", "lead_on_n_3",
)
QUALITY_FIELDS = ("quality_1_percent", "quality_2_percent", "quality_3_percent")


class AggregateRow(BaseModel):
    """One row of the bucket aggregation query."""
    time_bucket: datetime
    lead_on_p_1: float = Field(default=0.0, ge=0.0, le=1.0)
    lead_on_p_2: float = Field(default=0.0, ge=0.0, le=1.0)
    lead_on_p_3: float = Field(default=0.0, ge=0.0, le=1.0)
    lead_on_n_1: float = Field(default=0.0, ge=0.0, le=1.0)
    lead_on_n_2: float = Field(default=0.0, ge=0.0, le=1.0)
    lead_on_n_3: float = Field(default=0.0, ge=0.0, le=1.0)
    quality_1_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    quality_2_percent: float = Field(default=0.0, ge=0.0, le=100.0)
    quality_3_percent: float = Field(default=0.0, ge=0.0, le=100.0)

    @field_validator(*LEAD_FIELDS, *QUALITY_FIELDS, mode="before")
    @classmethod
    def _null_as_zero(cls, value):
        # The service reports NULL for channels without any sample in the bucket
        return 0.0 if value is None else value

    @field_validator("time_bucket")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    @property
    def lead_on_fraction(self) -> Tuple[float, float, float]:
        return (
            (self.lead_on_p_1 + self.lead_on_n_1) / 2,
            (self.lead_on_p_2 + self.lead_on_n_2) / 2,
            (self.lead_on_p_3 + self.lead_on_n_3) / 2,
        )

    @property
    def quality_percent(self) -> Tuple[float, float, float]:
        return (self.quality_1_percent, self.quality_2_percent, self.quality_3_percent)


class TimeBucket(BaseModel):
    """Summary statistics of one fixed-width time slot."""
    bucket_start: datetime
    lead_on_fraction: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    quality_percent: Tuple[float, float, float] = (0.0, 0.0, 0.0)
    missing: bool = False
    below_threshold: bool = False

    @computed_field
    @property
    def aggregate_quality(self) -> float:
        """Mean channel quality as a fraction in [0, 1]."""
        return sum(self.quality_percent) / len(self.quality_percent) / 100.0

    @computed_field
    @property
    def aggregate_lead_on(self) -> float:
        """Mean of the per-channel (positive + negative) / 2 lead-on fractions."""
        return sum(self.lead_on_fraction) / len(self.lead_on_fraction)

    @classmethod
    def from_row(cls, row: AggregateRow, bucket_start: datetime) -> "TimeBucket":
        return cls(
            bucket_start=bucket_start,
            lead_on_fraction=row.lead_on_fraction,
            quality_percent=row.quality_percent,
        )

    @classmethod
    def missing_at(cls, bucket_start: datetime) -> "TimeBucket":
        return cls(bucket_start=bucket_start, missing=True)


class BucketFilter(BaseModel):
    """Thresholds under which a bucket is flagged (never removed)."""
    quality_threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    lead_on_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    def rejects(self, bucket: TimeBucket) -> bool:
        if bucket.missing:
            return False
        if self.quality_threshold is not None and bucket.aggregate_quality * 100.0 < self.quality_threshold:
            return True
        if self.lead_on_threshold is not None and bucket.aggregate_lead_on < self.lead_on_threshold:
            return True
        return False

    def apply(self, buckets: List[TimeBucket]) -> List[TimeBucket]:
        """Copies of the buckets with below_threshold recomputed."""
        return [bucket.model_copy(update={"below_threshold": self.rejects(bucket)}) for bucket in buckets]


class AggregationResult(BaseModel):
    """Gap-filled bucket array of one aggregation fetch, or its failure."""
    pod_id: str
    window: TimeWindow
    bucket_seconds: int
    status: FetchStatus
    buckets: List[TimeBucket] = Field(default_factory=list)
    error: Optional[str] = None
    dropped_rows: int = 0

    @property
    def has_data(self) -> bool:
        return any(not bucket.missing for bucket in self.buckets)

    @property
    def bucket_count(self) -> int:
        return len(self.buckets)
