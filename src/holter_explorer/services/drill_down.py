import logging
from datetime import date
from typing import Callable, Dict, List, Optional

from ..app_settings import app_settings
from ..clients.query_service import QueryServiceClient
from ..entities.bucket import AggregationResult, BucketFilter, TimeBucket
from ..entities.pod import PodDaysResult
from ..entities.session import ExplorerSnapshot, LevelSnapshot, WaveformSnapshot
from ..entities.waveform import DecimationRequest, WaveformResult
from ..entities.window import Selection, TimeWindow
from ..enums.drill_down import DrillDownState, FetchStatus, Granularity
from ..exceptions.explorer_exceptions import InvalidSelectionError, QueryServiceError, SelectionDisabledError
from ..repos.bucket_aggregation_repo import BucketAggregationRepository
from ..repos.pod_repo import PodRepository
from ..utils.generation import GenerationCounter
from .waveform_downsampler import WaveformDownsampler

logger = logging.getLogger(__name__)

WindowListener = Callable[[TimeWindow], None]


class BucketLevel:
    """One drag-select level: its window, buckets, fetch status and selection."""

    def __init__(self, granularity: Granularity, bucket_seconds: int):
        self.granularity = granularity
        self.bucket_seconds = bucket_seconds
        self.generation = GenerationCounter()
        self.window: Optional[TimeWindow] = None
        self.buckets: List[TimeBucket] = []
        self.status = FetchStatus.IDLE
        self.error: Optional[str] = None
        self.dropped_rows = 0
        self.selection: Optional[Selection] = None
        self.drag_anchor: Optional[int] = None
        self.drag_current: Optional[int] = None

    @property
    def bucket_count(self) -> int:
        return len(self.buckets)

    @property
    def enabled(self) -> bool:
        return self.status == FetchStatus.READY

    @property
    def dragging(self) -> bool:
        return self.drag_anchor is not None

    def drag_range(self) -> Optional[Selection]:
        if not self.dragging:
            return None
        return Selection.from_drag(self.granularity, self.drag_anchor, self.drag_current)

    def clear(self) -> None:
        """Forget everything and make any in-flight fetch stale."""
        self.generation.invalidate()
        self.window = None
        self.buckets = []
        self.status = FetchStatus.IDLE
        self.error = None
        self.dropped_rows = 0
        self.selection = None
        self.drag_anchor = None
        self.drag_current = None

    def start_loading(self, window: TimeWindow) -> int:
        self.clear()
        self.window = window
        self.status = FetchStatus.LOADING
        return self.generation.issue()

    def apply(self, result: AggregationResult) -> None:
        self.buckets = result.buckets
        self.status = result.status
        self.error = result.error
        self.dropped_rows = result.dropped_rows

    def snapshot(self) -> LevelSnapshot:
        drag = self.drag_range()
        return LevelSnapshot(
            granularity=self.granularity,
            bucket_seconds=self.bucket_seconds,
            window=self.window,
            status=self.status,
            error=self.error,
            bucket_count=self.bucket_count,
            populated_count=sum(1 for b in self.buckets if not b.missing),
            dropped_rows=self.dropped_rows,
            selection=self.selection,
            drag=(drag.start_index, drag.end_index) if drag else None,
            enabled=self.enabled,
        )


class DrillDownController:
    """
    Day -> hour -> minute -> waveform drill-down of one pod.

    Every transition clears the state below it: a new day empties the hour
    selection, the minute level and the waveform; a new hour window empties the
    minute level and the waveform. Each level owns a generation counter so a
    fetch that completes after its level was cleared or reloaded is dropped.
    """

    def __init__(
        self,
        pod_id: str,
        query_client: QueryServiceClient,
        finest_granularity: Granularity = Granularity.MINUTE,
        point_budget_override: Optional[int] = None,
        bucket_filter: Optional[BucketFilter] = None,
    ):
        self.pod_id = pod_id
        self.pod_repo = PodRepository(query_client)
        self.bucket_repo = BucketAggregationRepository(query_client)
        self.downsampler = WaveformDownsampler(query_client)
        self.finest_granularity = self._check_finest(finest_granularity)
        self.point_budget_override = point_budget_override
        self.bucket_filter = bucket_filter

        self.state = DrillDownState.DAY_SELECTION
        self.days = PodDaysResult(pod_id=pod_id, status=FetchStatus.IDLE)
        self.selected_day: Optional[date] = None
        self.levels: Dict[Granularity, BucketLevel] = {
            Granularity.HOUR: BucketLevel(Granularity.HOUR, app_settings.hour_bucket_seconds),
            Granularity.MINUTE: BucketLevel(Granularity.MINUTE, app_settings.minute_bucket_seconds),
        }
        self.final_window: Optional[TimeWindow] = None
        self.closed = False
        self._days_generation = GenerationCounter()
        self._window_listeners: List[WindowListener] = []

    @staticmethod
    def _check_finest(granularity: Granularity) -> Granularity:
        if granularity not in (Granularity.HOUR, Granularity.MINUTE):
            raise InvalidSelectionError(f"Finest granularity must be hour or minute, got {granularity.value}")
        return granularity

    def level(self, granularity: Granularity) -> BucketLevel:
        try:
            return self.levels[granularity]
        except KeyError:
            raise InvalidSelectionError(f"No drag level for granularity {granularity.value}") from None

    def add_window_listener(self, listener: WindowListener) -> None:
        """Called with every finalized waveform window."""
        self._window_listeners.append(listener)

    # ===== days =====

    async def load_days(self) -> Optional[PodDaysResult]:
        token = self._days_generation.issue()
        result = await self.pod_repo.get_available_days(self.pod_id)
        if not self._days_generation.is_current(token):
            logger.debug(f"Discarding stale day list for pod {self.pod_id}")
            return None
        self.days = result
        logger.info(f"Pod {self.pod_id}: {len(result.days)} recording days ({result.status.value})")
        return result

    async def select_day(self, day: date) -> Optional[AggregationResult]:
        """Enter hour selection for a recording day and fetch its hourly buckets."""
        if self.days.status in (FetchStatus.IDLE, FetchStatus.ERROR):
            await self.load_days()
        if self.days.status == FetchStatus.ERROR:
            raise QueryServiceError(
                f"Recording days of pod {self.pod_id} unavailable: {self.days.error}",
                function=app_settings.pod_days_function,
            )
        if not self.days.contains(day):
            raise InvalidSelectionError(f"Pod {self.pod_id} has no recording on {day.isoformat()}")

        self.selected_day = day
        self.state = DrillDownState.HOUR_SELECTION
        self._clear_below(Granularity.HOUR)
        return await self._load_level(Granularity.HOUR, TimeWindow.for_day(day))

    # ===== drag gestures =====

    def _check_draggable(self, level: BucketLevel) -> None:
        if level.window is None:
            raise InvalidSelectionError(f"The {level.granularity.value} level has not been loaded")
        if not level.enabled:
            reason = level.error or f"status is {level.status.value}"
            raise SelectionDisabledError(f"The {level.granularity.value} level is not selectable: {reason}")

    def press(self, granularity: Granularity, index: int) -> Selection:
        """Start a drag on a level at a bucket index."""
        level = self.level(granularity)
        self._check_draggable(level)
        if index < 0 or index >= level.bucket_count:
            raise InvalidSelectionError(
                f"Index {index} outside the {level.granularity.value} level (0..{level.bucket_count - 1})"
            )
        level.drag_anchor = index
        level.drag_current = index
        return level.drag_range()

    def move(self, granularity: Granularity, index: int) -> Optional[Selection]:
        """Extend the current drag; the index is clamped to the level. No-op without a drag."""
        level = self.level(granularity)
        if not level.dragging:
            return None
        level.drag_current = max(0, min(level.bucket_count - 1, index))
        return level.drag_range()

    async def release(self, granularity: Granularity) -> Optional[TimeWindow]:
        """
        Finalize the drag of a level, wherever the pointer is.

        Returns the window of the finalized selection, None when no drag was in
        progress.
        """
        level = self.level(granularity)
        selection = level.drag_range()
        if selection is None:
            return None
        level.drag_anchor = None
        level.drag_current = None
        level.selection = selection

        window = TimeWindow.from_selection(level.window.start, selection, level.bucket_seconds)
        logger.info(
            f"Pod {self.pod_id}: {granularity.value} buckets {selection.start_index}..{selection.end_index} -> {window}"
        )

        if granularity == Granularity.HOUR:
            self._clear_below(Granularity.MINUTE)
            if self.finest_granularity == Granularity.HOUR:
                await self._finalize(window)
            else:
                self.state = DrillDownState.MINUTE_SELECTION
                await self._load_level(Granularity.MINUTE, window)
        else:
            await self._finalize(window)
        return window

    # ===== waveform =====

    def _request(self) -> DecimationRequest:
        return DecimationRequest(
            pod_id=self.pod_id,
            window=self.final_window,
            point_budget_override=self.point_budget_override,
        )

    async def _finalize(self, window: TimeWindow) -> Optional[WaveformResult]:
        self.final_window = window
        self.state = DrillDownState.WAVEFORM_READY
        for listener in self._window_listeners:
            listener(window)
        return await self.downsampler.load(self._request())

    async def set_point_budget_override(self, value: Optional[int]) -> Optional[WaveformResult]:
        """Change the point budget; the waveform is refetched when one is shown."""
        self.point_budget_override = value
        if self.state == DrillDownState.WAVEFORM_READY and self.final_window is not None:
            return await self.downsampler.load(self._request())
        return None

    def set_finest_granularity(self, granularity: Granularity) -> None:
        """Applies from the next hour release."""
        self.finest_granularity = self._check_finest(granularity)

    def set_bucket_filter(self, bucket_filter: Optional[BucketFilter]) -> None:
        """Re-flag loaded buckets; the arrays keep their length."""
        self.bucket_filter = bucket_filter
        active = bucket_filter or BucketFilter()
        for level in self.levels.values():
            level.buckets = active.apply(level.buckets)

    # ===== lifecycle =====

    async def _load_level(self, granularity: Granularity, window: TimeWindow) -> Optional[AggregationResult]:
        level = self.level(granularity)
        token = level.start_loading(window)
        result = await self.bucket_repo.fetch_buckets(
            self.pod_id, window, level.bucket_seconds, self.bucket_filter
        )
        if not level.generation.is_current(token):
            logger.debug(f"Discarding stale {granularity.value} buckets for {window}")
            return None
        # the filter may have changed while the fetch was in flight
        result.buckets = (self.bucket_filter or BucketFilter()).apply(result.buckets)
        level.apply(result)
        return result

    def _clear_below(self, granularity: Granularity) -> None:
        """Clear the given level and everything finer, including the waveform."""
        if granularity == Granularity.HOUR:
            self.levels[Granularity.HOUR].clear()
        self.levels[Granularity.MINUTE].clear()
        self.final_window = None
        self.downsampler.reset()

    def reset(self) -> None:
        """Back to day selection; every in-flight fetch becomes stale."""
        self._clear_below(Granularity.HOUR)
        self.selected_day = None
        self.state = DrillDownState.DAY_SELECTION

    def close(self) -> None:
        self.reset()
        self._days_generation.invalidate()
        self.closed = True

    def snapshot(self) -> ExplorerSnapshot:
        waveform = self.downsampler.result
        return ExplorerSnapshot(
            pod_id=self.pod_id,
            state=self.state,
            finest_granularity=self.finest_granularity,
            days_status=self.days.status,
            days_error=self.days.error,
            available_days=self.days.days,
            selected_day=self.selected_day,
            levels={g.value: level.snapshot() for g, level in self.levels.items()},
            final_window=self.final_window,
            point_budget_override=self.point_budget_override,
            waveform=WaveformSnapshot(
                status=waveform.status,
                sample_count=waveform.sample_count,
                point_budget=waveform.point_budget,
                error=waveform.error,
                dropped_rows=waveform.dropped_rows,
            ),
            closed=self.closed,
        )
