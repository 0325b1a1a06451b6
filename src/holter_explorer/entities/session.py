from datetime import date, datetime
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, model_validator

from ..enums.drill_down import DrillDownState, FetchStatus, Granularity
from ..enums.plot import YRangeOperation
from .window import Selection, TimeWindow


class LevelSnapshot(BaseModel):
    """State of one drag-select bucket level."""
    granularity: Granularity
    bucket_seconds: int
    window: Optional[TimeWindow] = None
    status: FetchStatus = FetchStatus.IDLE
    error: Optional[str] = None
    bucket_count: int = 0
    populated_count: int = 0
    dropped_rows: int = 0
    selection: Optional[Selection] = None
    drag: Optional[Tuple[int, int]] = None
    enabled: bool = False


class WaveformSnapshot(BaseModel):
    status: FetchStatus = FetchStatus.IDLE
    sample_count: int = 0
    point_budget: Optional[int] = None
    error: Optional[str] = None
    dropped_rows: int = 0


class ExplorerSnapshot(BaseModel):
    """Serializable view of a drill-down session."""
    session_id: Optional[str] = None
    pod_id: str
    state: DrillDownState
    finest_granularity: Granularity
    days_status: FetchStatus = FetchStatus.IDLE
    days_error: Optional[str] = None
    available_days: List[date] = Field(default_factory=list)
    selected_day: Optional[date] = None
    levels: Dict[str, LevelSnapshot] = Field(default_factory=dict)
    final_window: Optional[TimeWindow] = None
    point_budget_override: Optional[int] = None
    waveform: WaveformSnapshot = Field(default_factory=WaveformSnapshot)
    closed: bool = False
    last_activity: Optional[datetime] = None


# ===== request bodies =====

class CreateSessionRequest(BaseModel):
    pod_id: str = Field(min_length=1)
    initial_day: Optional[date] = None
    finest_granularity: Granularity = Granularity.MINUTE
    point_budget_override: Optional[int] = None
    quality_threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    lead_on_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class SelectDayRequest(BaseModel):
    day: date


class PointerRequest(BaseModel):
    """Pointer position on a bucket level, either as a bucket index or as a pixel x."""
    index: Optional[int] = None
    x: Optional[float] = None
    width: Optional[int] = Field(default=None, gt=0)

    @model_validator(mode="after")
    def _one_position(self) -> "PointerRequest":
        if (self.index is None) == (self.x is None):
            raise ValueError("exactly one of index or x is required")
        return self


class PointBudgetRequest(BaseModel):
    point_budget_override: Optional[int] = None


class FinestGranularityRequest(BaseModel):
    finest_granularity: Granularity


class BucketFilterRequest(BaseModel):
    quality_threshold: Optional[float] = Field(default=None, ge=0.0, le=100.0)
    lead_on_threshold: Optional[float] = Field(default=None, ge=0.0, le=1.0)


class WheelRequest(BaseModel):
    delta_y: float


class PlotPointerRequest(BaseModel):
    action: Literal["down", "move", "up", "leave"]
    x: float = 0.0
    y: float = 0.0


class YRangeRequest(BaseModel):
    operation: YRangeOperation


class KeyRequest(BaseModel):
    key: str = Field(min_length=1)
