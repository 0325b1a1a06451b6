"""
Unit tests for the day -> hour -> minute -> waveform drill-down.
"""

import asyncio
import logging
from datetime import date, datetime, timedelta, timezone

import pytest

from holter_explorer.entities.bucket import BucketFilter
from holter_explorer.enums.drill_down import DrillDownState, FetchStatus, Granularity
from holter_explorer.exceptions.explorer_exceptions import (
    InvalidSelectionError,
    QueryServiceError,
    SelectionDisabledError,
)
from holter_explorer.services.drill_down import DrillDownController
from holter_explorer.services.explorer_view import ExplorerView

DAY = date(2024, 3, 10)
NEXT_DAY = date(2024, 3, 11)
D = datetime(2024, 3, 10, tzinfo=timezone.utc)
HOUR = Granularity.HOUR
MINUTE = Granularity.MINUTE
AGGREGATE = "aggregate_leads"
DOWNSAMPLE = "peak_preserving_downsample_ecg"


def make_controller(query_client, **kwargs) -> DrillDownController:
    return DrillDownController("pod-1", query_client, **kwargs)


async def drag(controller, granularity, first, last):
    controller.press(granularity, first)
    controller.move(granularity, last)
    return await controller.release(granularity)


class TestDays:

    def test_initial_state(self, query_client):
        controller = make_controller(query_client)
        assert controller.state == DrillDownState.DAY_SELECTION
        assert controller.final_window is None

    def test_days_are_sorted_and_deduplicated(self, fake_service, query_client):
        fake_service.days = ["2024-03-11", "2024-03-10T00:00:00+00:00", "2024-03-10", "bogus", None]
        result = asyncio.run(make_controller(query_client).load_days())

        assert result.status == FetchStatus.READY
        assert result.days == [DAY, NEXT_DAY]

    def test_days_failure_is_reported(self, fake_service, query_client):
        fake_service.failures["get_pod_days"] = 500
        result = asyncio.run(make_controller(query_client).load_days())
        assert result.status == FetchStatus.ERROR
        assert result.days == []

    def test_failed_day_list_is_reloaded_on_selection(self, fake_service, query_client):
        fake_service.failures["get_pod_days"] = 503
        controller = make_controller(query_client)

        async def scenario():
            await controller.load_days()
            assert controller.days.status == FetchStatus.ERROR
            del fake_service.failures["get_pod_days"]
            await controller.select_day(DAY)

        asyncio.run(scenario())
        assert len(fake_service.calls_to("get_pod_days")) == 2
        assert controller.days.status == FetchStatus.READY
        assert controller.state == DrillDownState.HOUR_SELECTION

    def test_day_list_still_failing_is_a_service_error(self, fake_service, query_client):
        fake_service.failures["get_pod_days"] = 503
        controller = make_controller(query_client)

        with pytest.raises(QueryServiceError):
            asyncio.run(controller.select_day(DAY))
        assert controller.state == DrillDownState.DAY_SELECTION
        assert controller.level(HOUR).status == FetchStatus.IDLE

    def test_unavailable_day_is_rejected(self, query_client):
        controller = make_controller(query_client)
        with pytest.raises(InvalidSelectionError):
            asyncio.run(controller.select_day(date(2024, 1, 1)))
        assert controller.state == DrillDownState.DAY_SELECTION

    def test_select_day_loads_24_hourly_buckets(self, fake_service, query_client):
        controller = make_controller(query_client)
        result = asyncio.run(controller.select_day(DAY))

        assert controller.state == DrillDownState.HOUR_SELECTION
        assert result.status == FetchStatus.READY
        level = controller.level(HOUR)
        assert level.bucket_count == 24
        assert level.window.start == D
        assert fake_service.calls_to(AGGREGATE)[0]["p_bucket_seconds"] == 3600


class TestDragSelection:

    def test_hour_range_drag(self, fake_service, query_client):
        fake_service.quality = lambda i, s: {3: 10.0, 4: 50.0, 5: 90.0}.get(i, 70.0) if s == 3600 else 80.0
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            return await drag(controller, HOUR, 3, 5)

        window = asyncio.run(scenario())
        hour_buckets = controller.level(HOUR).buckets
        assert [b.quality_percent[0] for b in hour_buckets[3:6]] == [10.0, 50.0, 90.0]
        assert window.start == D + timedelta(hours=3)
        assert window.end == D + timedelta(hours=6)
        assert controller.state == DrillDownState.MINUTE_SELECTION
        assert controller.level(MINUTE).bucket_count == 180

    def test_drag_direction_does_not_matter(self, query_client):
        forward = make_controller(query_client)
        backward = make_controller(query_client)

        async def scenario():
            await forward.select_day(DAY)
            await backward.select_day(DAY)
            return await drag(forward, HOUR, 3, 5), await drag(backward, HOUR, 5, 3)

        first, second = asyncio.run(scenario())
        assert first == second
        assert forward.level(HOUR).selection == backward.level(HOUR).selection

    def test_single_minute_click(self, fake_service, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            hour_window = await drag(controller, HOUR, 10, 10)
            minute_window = await drag(controller, MINUTE, 10, 10)
            return hour_window, minute_window

        hour_window, minute_window = asyncio.run(scenario())
        assert hour_window.start == D + timedelta(hours=10)
        assert hour_window.end == D + timedelta(hours=11)
        assert controller.level(MINUTE).bucket_count == 60
        assert minute_window.start == D + timedelta(hours=10, minutes=10)
        assert minute_window.end == D + timedelta(hours=10, minutes=11)
        assert controller.state == DrillDownState.WAVEFORM_READY
        assert controller.final_window == minute_window

        downsample = fake_service.calls_to(DOWNSAMPLE)
        assert len(downsample) == 1
        assert downsample[0]["p_time_start"] == "2024-03-10T10:10:00.000Z"
        assert downsample[0]["p_max_pts"] == 3000
        assert controller.downsampler.status == FetchStatus.READY

    def test_move_clamps_to_level(self, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            controller.press(HOUR, 20)
            preview = controller.move(HOUR, 99)
            return preview, await controller.release(HOUR)

        preview, window = asyncio.run(scenario())
        assert (preview.start_index, preview.end_index) == (20, 23)
        assert window.end == D + timedelta(hours=24)

    def test_move_and_release_without_press_are_ignored(self, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            assert controller.move(HOUR, 4) is None
            return await controller.release(HOUR)

        assert asyncio.run(scenario()) is None
        assert controller.state == DrillDownState.HOUR_SELECTION

    def test_press_outside_level_is_rejected(self, query_client):
        controller = make_controller(query_client)
        asyncio.run(controller.select_day(DAY))
        with pytest.raises(InvalidSelectionError):
            controller.press(HOUR, 24)

    def test_minute_level_needs_an_hour_window(self, query_client):
        controller = make_controller(query_client)
        asyncio.run(controller.select_day(DAY))
        with pytest.raises(InvalidSelectionError):
            controller.press(MINUTE, 0)

    def test_day_level_has_no_drag(self, query_client):
        controller = make_controller(query_client)
        with pytest.raises(InvalidSelectionError):
            controller.press(Granularity.DAY, 0)


class TestDisabledLevels:

    def test_empty_level_refuses_drags(self, fake_service, query_client):
        fake_service.aggregate_override = lambda params: []
        controller = make_controller(query_client)
        asyncio.run(controller.select_day(DAY))

        with pytest.raises(SelectionDisabledError):
            controller.press(HOUR, 3)
        snapshot = controller.snapshot().levels["hour"]
        assert snapshot.status == FetchStatus.EMPTY
        assert snapshot.bucket_count == 24
        assert snapshot.populated_count == 0
        assert not snapshot.enabled

    def test_failed_level_refuses_drags(self, fake_service, query_client):
        fake_service.failures[AGGREGATE] = 502
        controller = make_controller(query_client)
        asyncio.run(controller.select_day(DAY))

        with pytest.raises(SelectionDisabledError):
            controller.press(HOUR, 3)
        snapshot = controller.snapshot().levels["hour"]
        assert snapshot.status == FetchStatus.ERROR
        assert "HTTP 502" in snapshot.error

    def test_empty_minute_level_after_hour_release(self, fake_service, query_client):
        fake_service.quality = lambda i, s: 80.0 if s == 3600 else None
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 1, 1)

        asyncio.run(scenario())
        assert controller.state == DrillDownState.MINUTE_SELECTION
        assert controller.level(MINUTE).status == FetchStatus.EMPTY
        with pytest.raises(SelectionDisabledError):
            controller.press(MINUTE, 0)


class TestResetRules:

    def test_new_day_clears_everything_below(self, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 10, 10)
            await drag(controller, MINUTE, 10, 12)
            await controller.select_day(NEXT_DAY)

        asyncio.run(scenario())
        assert controller.state == DrillDownState.HOUR_SELECTION
        assert controller.selected_day == NEXT_DAY
        assert controller.level(HOUR).selection is None
        assert controller.level(MINUTE).status == FetchStatus.IDLE
        assert controller.level(MINUTE).buckets == []
        assert controller.final_window is None
        assert controller.downsampler.samples == []

    def test_new_hour_window_returns_to_minute_selection(self, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 10, 10)
            await drag(controller, MINUTE, 10, 12)
            return await drag(controller, HOUR, 14, 15)

        window = asyncio.run(scenario())
        assert controller.state == DrillDownState.MINUTE_SELECTION
        assert controller.level(MINUTE).selection is None
        assert controller.level(MINUTE).window == window
        assert controller.level(MINUTE).bucket_count == 120
        assert controller.final_window is None
        assert controller.downsampler.status == FetchStatus.IDLE

    def test_waveform_ready_is_reenterable(self, fake_service, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 10, 10)
            await drag(controller, MINUTE, 10, 10)
            return await drag(controller, MINUTE, 30, 40)

        window = asyncio.run(scenario())
        assert controller.state == DrillDownState.WAVEFORM_READY
        assert controller.final_window == window
        assert window.duration == timedelta(minutes=11)
        assert len(fake_service.calls_to(DOWNSAMPLE)) == 2

    def test_reset_returns_to_day_selection(self, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 10, 10)

        asyncio.run(scenario())
        controller.reset()
        assert controller.state == DrillDownState.DAY_SELECTION
        assert controller.selected_day is None
        assert controller.level(HOUR).window is None
        assert controller.level(MINUTE).window is None


class TestHourOnly:

    def test_hour_release_goes_straight_to_waveform(self, fake_service, query_client):
        controller = make_controller(query_client, finest_granularity=HOUR)

        async def scenario():
            await controller.select_day(DAY)
            return await drag(controller, HOUR, 2, 2)

        window = asyncio.run(scenario())
        assert controller.state == DrillDownState.WAVEFORM_READY
        assert window == controller.final_window
        assert window.start == D + timedelta(hours=2)
        assert len(fake_service.calls_to(AGGREGATE)) == 1
        assert fake_service.calls_to(DOWNSAMPLE)[0]["p_max_pts"] == 20000

    def test_day_is_not_a_valid_finest_granularity(self, query_client):
        with pytest.raises(InvalidSelectionError):
            make_controller(query_client, finest_granularity=Granularity.DAY)


class TestWaveformHandOff:

    def test_window_listener_receives_final_windows_only(self, query_client):
        controller = make_controller(query_client)
        windows = []
        controller.add_window_listener(windows.append)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 10, 10)
            await drag(controller, MINUTE, 10, 10)

        asyncio.run(scenario())
        assert windows == [controller.final_window]

    def test_point_budget_change_refetches_waveform(self, fake_service, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            await drag(controller, HOUR, 10, 10)
            await drag(controller, MINUTE, 10, 10)
            return await controller.set_point_budget_override(500)

        result = asyncio.run(scenario())
        calls = fake_service.calls_to(DOWNSAMPLE)
        assert [c["p_max_pts"] for c in calls] == [3000, 500]
        assert result.point_budget == 500

    def test_point_budget_change_before_waveform_does_not_fetch(self, fake_service, query_client):
        controller = make_controller(query_client)
        assert asyncio.run(controller.set_point_budget_override(500)) is None
        assert fake_service.calls_to(DOWNSAMPLE) == []
        assert controller.point_budget_override == 500

    def test_bucket_filter_flags_loaded_levels(self, fake_service, query_client):
        fake_service.quality = lambda i, s: 10.0 if i == 0 else 90.0
        controller = make_controller(query_client)
        asyncio.run(controller.select_day(DAY))

        controller.set_bucket_filter(BucketFilter(quality_threshold=50.0))
        flags = [b.below_threshold for b in controller.level(HOUR).buckets]
        assert flags[0] and not any(flags[1:])

        controller.set_bucket_filter(None)
        assert not any(b.below_threshold for b in controller.level(HOUR).buckets)


class TestStaleResults:

    def test_slow_day_fetch_is_discarded(self, fake_service, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.load_days()
            gate = fake_service.gate(AGGREGATE)
            slow = asyncio.create_task(controller.select_day(DAY))
            await fake_service.wait_for_calls(AGGREGATE)
            fast = await controller.select_day(NEXT_DAY)
            gate.set()
            return await slow, fast

        stale, current = asyncio.run(scenario())
        assert stale is None
        assert current.window.start == D + timedelta(days=1)
        assert controller.selected_day == NEXT_DAY
        assert controller.level(HOUR).window.start == D + timedelta(days=1)
        assert controller.level(HOUR).status == FetchStatus.READY

    def test_minute_fetch_discarded_after_new_day(self, fake_service, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.select_day(DAY)
            gate = fake_service.gate(AGGREGATE)
            controller.press(HOUR, 4)
            release = asyncio.create_task(controller.release(HOUR))
            await fake_service.wait_for_calls(AGGREGATE, 2)
            await controller.select_day(NEXT_DAY)
            gate.set()
            await release

        asyncio.run(scenario())
        assert controller.state == DrillDownState.HOUR_SELECTION
        assert controller.level(MINUTE).status == FetchStatus.IDLE
        assert controller.level(MINUTE).buckets == []

    def test_filter_changed_during_fetch_applies_on_landing(self, fake_service, query_client):
        fake_service.quality = lambda i, s: 30.0
        controller = make_controller(query_client)

        async def scenario():
            await controller.load_days()
            gate = fake_service.gate(AGGREGATE)
            task = asyncio.create_task(controller.select_day(DAY))
            await fake_service.wait_for_calls(AGGREGATE)
            controller.set_bucket_filter(BucketFilter(quality_threshold=50.0))
            gate.set()
            await task

        asyncio.run(scenario())
        buckets = controller.level(HOUR).buckets
        assert len(buckets) == 24
        assert all(b.below_threshold for b in buckets)

    def test_filter_cleared_during_fetch_unflags_on_landing(self, fake_service, query_client):
        fake_service.quality = lambda i, s: 30.0
        controller = make_controller(query_client, bucket_filter=BucketFilter(quality_threshold=50.0))

        async def scenario():
            await controller.load_days()
            gate = fake_service.gate(AGGREGATE)
            task = asyncio.create_task(controller.select_day(DAY))
            await fake_service.wait_for_calls(AGGREGATE)
            controller.set_bucket_filter(None)
            gate.set()
            await task

        asyncio.run(scenario())
        assert not any(b.below_threshold for b in controller.level(HOUR).buckets)

    def test_close_discards_in_flight_fetches(self, fake_service, query_client):
        controller = make_controller(query_client)

        async def scenario():
            await controller.load_days()
            gate = fake_service.gate(AGGREGATE)
            task = asyncio.create_task(controller.select_day(DAY))
            await fake_service.wait_for_calls(AGGREGATE)
            controller.close()
            gate.set()
            return await task

        assert asyncio.run(scenario()) is None
        assert controller.closed
        assert controller.state == DrillDownState.DAY_SELECTION
        assert controller.level(HOUR).buckets == []


class TestExplorerView:

    def test_initial_day_is_entered(self, query_client):
        view = ExplorerView("pod-1", query_client, initial_day=DAY)
        asyncio.run(view.open())
        assert view.controller.state == DrillDownState.HOUR_SELECTION

    def test_unavailable_initial_day_stays_on_day_selection(self, query_client, caplog):
        view = ExplorerView("pod-1", query_client, initial_day=date(2023, 1, 1))
        with caplog.at_level(logging.WARNING):
            asyncio.run(view.open())
        assert view.controller.state == DrillDownState.DAY_SELECTION
        assert "unavailable" in caplog.text

    def test_waveform_reaches_the_plots(self, fake_service, query_client):
        view = ExplorerView("pod-1", query_client, initial_day=DAY)

        async def scenario():
            await view.open()
            await drag(view.controller, HOUR, 10, 10)
            await drag(view.controller, MINUTE, 10, 10)

        asyncio.run(scenario())
        for channel in (1, 2, 3):
            assert len(view.renderer.plot(channel).samples) == fake_service.sample_count
        summary = view.quality_summary()
        assert summary.sample_count == fake_service.sample_count
        assert [lead.quality_percent for lead in summary.leads] == [100.0, 100.0, 100.0]

    def test_plots_are_cleared_while_a_new_minute_window_loads(self, fake_service, query_client):
        view = ExplorerView("pod-1", query_client, initial_day=DAY)

        async def scenario():
            await view.open()
            await drag(view.controller, HOUR, 10, 10)
            await drag(view.controller, MINUTE, 10, 10)
            gate = fake_service.gate(DOWNSAMPLE)
            task = asyncio.create_task(drag(view.controller, MINUTE, 20, 20))
            await fake_service.wait_for_calls(DOWNSAMPLE, 2)
            during = len(view.renderer.plot(1).samples)
            gate.set()
            await task
            return during

        assert asyncio.run(scenario()) == 0
        assert len(view.renderer.plot(1).samples) == fake_service.sample_count

    def test_timeline_plan_follows_level(self, query_client):
        view = ExplorerView("pod-1", query_client, initial_day=DAY)
        asyncio.run(view.open())
        view.controller.press(HOUR, view.index_at(HOUR, 80.0))
        plan = view.timeline_plan(HOUR)

        assert plan.bucket_count == 24
        assert plan.drag_highlight == (75.0, 100.0)
        assert not plan.disabled

    def test_close_emits_signal_once(self, query_client):
        view = ExplorerView("pod-1", query_client)
        closed = []
        view.add_close_listener(lambda: closed.append(True))
        view.close()
        view.close()
        assert closed == [True]
        assert view.controller.closed
