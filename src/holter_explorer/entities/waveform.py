import math
from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from ..enums.drill_down import FetchStatus
from ..utils.time_utils import ensure_utc
from .window import TimeWindow

CHANNEL_FIELDS = ("channel_1", "channel_2", "channel_3")
FLAG_FIELDS = (
    "lead_on_p_1", "lead_on_p_2", "lead_on_p_3",
    "lead_on_n_1", "lead_on_n_2", "lead_on_n_3",
    "quality_1", "quality_2", "quality_3",
)


class DownsampleRow(BaseModel):
    """One row of the waveform downsample query."""
    model_config = ConfigDict(populate_by_name=True)

    sample_time: datetime
    channel_1: float = Field(validation_alias=AliasChoices("downsampled_channel_1", "channel_1", "channel1"))
    channel_2: float = Field(validation_alias=AliasChoices("downsampled_channel_2", "channel_2", "channel2"))
    channel_3: float = Field(validation_alias=AliasChoices("downsampled_channel_3", "channel_3", "channel3"))
    lead_on_p_1: bool = False
    lead_on_p_2: bool = False
    lead_on_p_3: bool = False
    lead_on_n_1: bool = False
    lead_on_n_2: bool = False
    lead_on_n_3: bool = False
    quality_1: bool = False
    quality_2: bool = False
    quality_3: bool = False

    @field_validator(*CHANNEL_FIELDS)
    @classmethod
    def _finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError(f"amplitude must be finite, got {value}")
        return value

    @field_validator(*FLAG_FIELDS, mode="before")
    @classmethod
    def _null_as_false(cls, value):
        return False if value is None else value

    @field_validator("sample_time")
    @classmethod
    def _as_utc(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class WaveformSample(BaseModel):
    """Decimated 3-channel sample with per-channel electrode contact flags."""
    sample_time: datetime
    channels: Tuple[float, float, float]
    lead_on_p: Tuple[bool, bool, bool]
    lead_on_n: Tuple[bool, bool, bool]
    quality: Tuple[bool, bool, bool] = (False, False, False)

    def value(self, channel: int) -> float:
        """Amplitude (µV) of channel 1..3."""
        return self.channels[channel - 1]

    def lead_on(self, channel: int) -> bool:
        """Both electrodes of channel 1..3 in contact."""
        return self.lead_on_p[channel - 1] and self.lead_on_n[channel - 1]

    @classmethod
    def from_row(cls, row: DownsampleRow) -> "WaveformSample":
        return cls(
            sample_time=row.sample_time,
            channels=(row.channel_1, row.channel_2, row.channel_3),
            lead_on_p=(row.lead_on_p_1, row.lead_on_p_2, row.lead_on_p_3),
            lead_on_n=(row.lead_on_n_1, row.lead_on_n_2, row.lead_on_n_3),
            quality=(row.quality_1, row.quality_2, row.quality_3),
        )


class DecimationRequest(BaseModel):
    """Downsampling request for a final window."""
    model_config = ConfigDict(frozen=True)

    pod_id: str = Field(min_length=1)
    window: TimeWindow
    point_budget_override: Optional[int] = None


class WaveformResult(BaseModel):
    """Decimated samples of one request, or the reason there are none."""
    request: Optional[DecimationRequest] = None
    status: FetchStatus = FetchStatus.IDLE
    samples: List[WaveformSample] = Field(default_factory=list)
    point_budget: Optional[int] = None
    error: Optional[str] = None
    dropped_rows: int = 0

    @property
    def sample_count(self) -> int:
        return len(self.samples)


class LeadQuality(BaseModel):
    """Share of samples of one lead that were usable or lead-off."""
    channel: int
    quality_percent: float
    lead_off_percent: float


class QualitySummary(BaseModel):
    sample_count: int
    leads: List[LeadQuality] = Field(default_factory=list)
