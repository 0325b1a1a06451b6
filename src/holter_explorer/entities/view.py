from datetime import datetime
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

Point = Tuple[float, float]


class ViewTransform(BaseModel):
    """Per-plot zoom, pan and amplitude range."""
    scale_x: float = 1.0
    translate_x: float = 0.0
    y_min: float = -50.0
    y_max: float = 50.0


class Tooltip(BaseModel):
    visible: bool = False
    x: float = 0.0
    y: float = 0.0
    sample_time: Optional[datetime] = None
    value: Optional[float] = None


class RenderPlan(BaseModel):
    """Screen-space drawing instructions for one channel plot."""
    channel: int
    label: str
    title: str
    width: int
    height: int
    background: str
    trace_color: str
    grid_x: List[float] = Field(default_factory=list)
    grid_y: List[float] = Field(default_factory=list)
    subpaths: List[List[Point]] = Field(default_factory=list)
    placeholder: Optional[str] = None
    transform: ViewTransform
    tooltip: Tooltip = Field(default_factory=Tooltip)

    @property
    def is_empty(self) -> bool:
        return self.placeholder is not None

    def svg_path(self, precision: int = 2) -> str:
        """Subpaths as an SVG path `d` attribute, one M command per subpath."""
        parts = []
        for subpath in self.subpaths:
            for i, (x, y) in enumerate(subpath):
                command = "M" if i == 0 else "L"
                parts.append(f"{command}{x:.{precision}f},{y:.{precision}f}")
        return " ".join(parts)


class TimelineSegment(BaseModel):
    index: int
    x: float
    width: float
    color: str
    missing: bool = False
    below_threshold: bool = False


class TimelinePlan(BaseModel):
    """Coloured bucket bar with drag and selection highlights in pixels."""
    width: int
    height: int
    bucket_count: int
    segments: List[TimelineSegment] = Field(default_factory=list)
    drag_highlight: Optional[Tuple[float, float]] = None
    selection_highlight: Optional[Tuple[float, float]] = None
    disabled: bool = False
