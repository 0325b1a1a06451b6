import logging
from datetime import date
from typing import Callable, List, Optional

from ..clients.query_service import QueryServiceClient
from ..entities.bucket import BucketFilter
from ..entities.view import TimelinePlan
from ..entities.waveform import QualitySummary, WaveformResult
from ..entities.window import TimeWindow
from ..enums.drill_down import Granularity
from ..exceptions.explorer_exceptions import InvalidSelectionError
from ..rendering.timeline import TimelineBar
from ..rendering.waveform_renderer import WaveformRenderer
from ..utils.quality_metrics import summarize_quality
from .drill_down import DrillDownController

logger = logging.getLogger(__name__)

CloseListener = Callable[[], None]


class ExplorerView:
    """
    Mountable explorer of one pod: drill-down, drag bars and channel plots.

    Finalized windows are reported through add_window_listener(); close() emits the
    close signal once.
    """

    def __init__(
        self,
        pod_id: str,
        query_client: QueryServiceClient,
        initial_day: Optional[date] = None,
        finest_granularity: Granularity = Granularity.MINUTE,
        point_budget_override: Optional[int] = None,
        bucket_filter: Optional[BucketFilter] = None,
    ):
        self.pod_id = pod_id
        self.initial_day = initial_day
        self.controller = DrillDownController(
            pod_id,
            query_client,
            finest_granularity=finest_granularity,
            point_budget_override=point_budget_override,
            bucket_filter=bucket_filter,
        )
        self.renderer = WaveformRenderer()
        self.timelines = {
            Granularity.HOUR: TimelineBar(),
            Granularity.MINUTE: TimelineBar(),
        }
        self._close_listeners: List[CloseListener] = []
        self.closed = False
        self.controller.downsampler.add_listener(self._on_waveform)

    def _on_waveform(self, result: WaveformResult) -> None:
        self.renderer.load(result.samples)

    def add_window_listener(self, listener: Callable[[TimeWindow], None]) -> None:
        self.controller.add_window_listener(listener)

    def add_close_listener(self, listener: CloseListener) -> None:
        self._close_listeners.append(listener)

    async def open(self) -> None:
        """Load the recording days and, when given, enter the initial day."""
        await self.controller.load_days()
        if self.initial_day is None:
            return
        if not self.controller.days.contains(self.initial_day):
            logger.warning(
                f"Initial day {self.initial_day.isoformat()} unavailable for pod {self.pod_id}, staying on day selection"
            )
            return
        await self.controller.select_day(self.initial_day)

    def timeline(self, granularity: Granularity) -> TimelineBar:
        try:
            return self.timelines[granularity]
        except KeyError:
            raise InvalidSelectionError(f"No drag bar for granularity {granularity.value}") from None

    def timeline_plan(self, granularity: Granularity) -> TimelinePlan:
        level = self.controller.level(granularity)
        return self.timeline(granularity).plan(
            level.buckets,
            selection=level.selection,
            drag=level.drag_range(),
            disabled=not level.enabled,
        )

    def index_at(self, granularity: Granularity, x: float, width: Optional[int] = None) -> int:
        """Bucket index under a pixel x of a level's drag bar."""
        bar = self.timeline(granularity)
        if width is not None:
            bar.width = width
        return bar.index_at(x, self.controller.level(granularity).bucket_count)

    def quality_summary(self) -> QualitySummary:
        return summarize_quality(self.controller.downsampler.samples)

    def close(self) -> None:
        if self.closed:
            return
        self.controller.close()
        self.renderer.load([])
        self.closed = True
        logger.info(f"Explorer for pod {self.pod_id} closed")
        for listener in self._close_listeners:
            listener()
