import math
from typing import List, Optional, Tuple

from ..app_settings import app_settings
from ..entities.bucket import TimeBucket
from ..entities.view import TimelinePlan, TimelineSegment
from ..entities.window import Selection

MISSING_COLOR = "#374151"

# (upper bound of mean quality in percent, colour)
QUALITY_COLORS = [
    (20.0, "#ef4444"),
    (40.0, "#f97316"),
    (60.0, "#f59e0b"),
    (80.0, "#eab308"),
]
GOOD_COLOR = "#4ade80"


def quality_color(bucket: TimeBucket) -> str:
    if bucket.missing:
        return MISSING_COLOR
    percent = bucket.aggregate_quality * 100.0
    for bound, color in QUALITY_COLORS:
        if percent < bound:
            return color
    return GOOD_COLOR


class TimelineBar:
    """Drag-select bar over one bucket level: pixel/index mapping and the coloured plan."""

    def __init__(self, width: Optional[int] = None, height: Optional[int] = None):
        self.width = width or app_settings.timeline_width
        self.height = height or app_settings.timeline_height

    def index_at(self, x: float, bucket_count: int) -> int:
        """Bucket under a pixel position, clamped to the bar."""
        if bucket_count <= 0:
            return 0
        index = math.floor(x / self.width * bucket_count)
        return max(0, min(bucket_count - 1, index))

    def span_px(self, selection: Selection, bucket_count: int) -> Tuple[float, float]:
        step = self.width / bucket_count
        return selection.start_index * step, (selection.end_index + 1) * step

    def plan(
        self,
        buckets: List[TimeBucket],
        selection: Optional[Selection] = None,
        drag: Optional[Selection] = None,
        disabled: bool = False,
    ) -> TimelinePlan:
        count = len(buckets)
        plan = TimelinePlan(width=self.width, height=self.height, bucket_count=count, disabled=disabled)
        if not count:
            return plan

        step = self.width / count
        plan.segments = [
            TimelineSegment(
                index=i,
                x=i * step,
                width=step,
                color=quality_color(bucket),
                missing=bucket.missing,
                below_threshold=bucket.below_threshold,
            )
            for i, bucket in enumerate(buckets)
        ]
        if selection is not None:
            plan.selection_highlight = self.span_px(selection, count)
        if drag is not None:
            plan.drag_highlight = self.span_px(drag, count)
        return plan
