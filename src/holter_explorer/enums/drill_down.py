from enum import Enum


class Granularity(str, Enum):
    """Drill-down granularity of a bucket level."""
    DAY = "day"
    HOUR = "hour"
    MINUTE = "minute"


class DrillDownState(str, Enum):
    """States of the drill-down controller."""
    DAY_SELECTION = "day_selection"
    HOUR_SELECTION = "hour_selection"
    MINUTE_SELECTION = "minute_selection"
    WAVEFORM_READY = "waveform_ready"


class FetchStatus(str, Enum):
    """Outcome of the latest fetch of a level or of the waveform."""
    IDLE = "idle"
    LOADING = "loading"
    READY = "ready"
    EMPTY = "empty"
    ERROR = "error"
