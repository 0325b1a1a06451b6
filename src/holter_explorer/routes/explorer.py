import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from ..app_settings import app_settings
from ..clients.query_service import QueryServiceClient
from ..dependencies.query_service import get_query_client, get_session_store
from ..entities.bucket import BucketFilter
from ..entities.session import (
    BucketFilterRequest,
    CreateSessionRequest,
    ExplorerSnapshot,
    FinestGranularityRequest,
    KeyRequest,
    PlotPointerRequest,
    PointBudgetRequest,
    PointerRequest,
    SelectDayRequest,
    WheelRequest,
    YRangeRequest,
)
from ..enums.drill_down import Granularity
from ..enums.plot import ExportFormat
from ..exceptions.explorer_exceptions import (
    ExplorerException,
    InvalidSelectionError,
    InvalidWindowError,
    QueryServiceError,
    SelectionDisabledError,
    SessionNotFoundError,
)
from ..repos.pod_repo import PodRepository
from ..services.explorer_view import ExplorerView
from ..services.session_store import ExplorerSession, SessionStore
from ..utils.arrow_response import (
    client_wants_arrow,
    dataframe_to_arrow_streaming_response,
    dataframe_to_csv_streaming_response,
    samples_to_dataframe,
)

logger = logging.getLogger(__name__)

router = APIRouter()


def _to_http(e: ExplorerException) -> HTTPException:
    if isinstance(e, SessionNotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, SelectionDisabledError):
        return HTTPException(409, str(e))
    if isinstance(e, (InvalidSelectionError, InvalidWindowError)):
        return HTTPException(422, str(e))
    if isinstance(e, QueryServiceError):
        return HTTPException(502, f"Query service error: {e}")
    return HTTPException(400, str(e))


def _snapshot(session: ExplorerSession) -> ExplorerSnapshot:
    return session.view.controller.snapshot().model_copy(
        update={"session_id": session.session_id, "last_activity": session.last_activity}
    )


def _bucket_filter(quality_threshold: Optional[float], lead_on_threshold: Optional[float]) -> Optional[BucketFilter]:
    if quality_threshold is None and lead_on_threshold is None:
        return None
    return BucketFilter(quality_threshold=quality_threshold, lead_on_threshold=lead_on_threshold)


def _bucket_index(session: ExplorerSession, granularity: Granularity, body: PointerRequest) -> int:
    if body.index is not None:
        return body.index
    return session.view.index_at(granularity, body.x, body.width)


# ===== sessions =====

@router.post("/explorer/sessions", status_code=201)
async def create_session(
    body: CreateSessionRequest,
    query_client: QueryServiceClient = Depends(get_query_client),
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    """Open an explorer on a pod, optionally entering an initial day."""
    try:
        view = ExplorerView(
            body.pod_id,
            query_client,
            initial_day=body.initial_day,
            finest_granularity=body.finest_granularity,
            point_budget_override=body.point_budget_override,
            bucket_filter=_bucket_filter(body.quality_threshold, body.lead_on_threshold),
        )
        await view.open()
        session = session_store.add(view)
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)
    except Exception as e:
        logger.error(f"Failed to open explorer for pod {body.pod_id}: {e}")
        raise HTTPException(500, f"Failed to open explorer: {str(e)}")


@router.get("/explorer/sessions/{session_id}")
async def get_session(
    session_id: str,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    try:
        return _snapshot(session_store.get(session_id))
    except ExplorerException as e:
        raise _to_http(e)


@router.delete("/explorer/sessions/{session_id}")
async def close_session(
    session_id: str,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    """Close an explorer; in-flight fetches are discarded."""
    try:
        session_store.close(session_id)
        return {"session_id": session_id, "closed": True}
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/reset")
async def reset_session(
    session_id: str,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    try:
        session = session_store.get(session_id)
        session.view.controller.reset()
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/day")
async def select_day(
    session_id: str,
    body: SelectDayRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    """Select a recording day and load its hourly buckets."""
    try:
        session = session_store.get(session_id)
        await session.view.controller.select_day(body.day)
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)
    except Exception as e:
        logger.error(f"Error selecting day {body.day} in session {session_id}: {e}")
        raise HTTPException(500, f"Day selection failed: {str(e)}")


# ===== drag gestures =====

@router.post("/explorer/sessions/{session_id}/levels/{granularity}/press")
async def press_level(
    session_id: str,
    granularity: Granularity,
    body: PointerRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    try:
        session = session_store.get(session_id)
        session.view.controller.press(granularity, _bucket_index(session, granularity, body))
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/levels/{granularity}/move")
async def move_level(
    session_id: str,
    granularity: Granularity,
    body: PointerRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    try:
        session = session_store.get(session_id)
        session.view.controller.move(granularity, _bucket_index(session, granularity, body))
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/levels/{granularity}/release")
async def release_level(
    session_id: str,
    granularity: Granularity,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    """Finalize the drag of a level and load the next one (or the waveform)."""
    try:
        session = session_store.get(session_id)
        await session.view.controller.release(granularity)
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)
    except Exception as e:
        logger.error(f"Error finalizing {granularity.value} selection in session {session_id}: {e}")
        raise HTTPException(500, f"Selection failed: {str(e)}")


@router.get("/explorer/sessions/{session_id}/levels/{granularity}/buckets")
async def get_level_buckets(
    session_id: str,
    granularity: Granularity,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    try:
        level = session_store.get(session_id).view.controller.level(granularity)
        return {
            "level": level.snapshot().model_dump(mode="json"),
            "buckets": [bucket.model_dump(mode="json") for bucket in level.buckets],
        }
    except ExplorerException as e:
        raise _to_http(e)


@router.get("/explorer/sessions/{session_id}/levels/{granularity}/timeline")
async def get_level_timeline(
    session_id: str,
    granularity: Granularity,
    width: Optional[int] = Query(None, gt=0, description="Bar width in pixels"),
    session_store: SessionStore = Depends(get_session_store),
):
    try:
        view = session_store.get(session_id).view
        if width is not None:
            view.timeline(granularity).width = width
        return view.timeline_plan(granularity)
    except ExplorerException as e:
        raise _to_http(e)


# ===== settings =====

@router.put("/explorer/sessions/{session_id}/point-budget")
async def set_point_budget(
    session_id: str,
    body: PointBudgetRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    """Change the point budget override (None or <= 0 selects the automatic budget)."""
    try:
        session = session_store.get(session_id)
        await session.view.controller.set_point_budget_override(body.point_budget_override)
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)


@router.put("/explorer/sessions/{session_id}/finest-granularity")
async def set_finest_granularity(
    session_id: str,
    body: FinestGranularityRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    try:
        session = session_store.get(session_id)
        session.view.controller.set_finest_granularity(body.finest_granularity)
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)


@router.put("/explorer/sessions/{session_id}/bucket-filter")
async def set_bucket_filter(
    session_id: str,
    body: BucketFilterRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> ExplorerSnapshot:
    try:
        session = session_store.get(session_id)
        session.view.controller.set_bucket_filter(
            _bucket_filter(body.quality_threshold, body.lead_on_threshold)
        )
        return _snapshot(session)
    except ExplorerException as e:
        raise _to_http(e)


# ===== plots =====

@router.get("/explorer/sessions/{session_id}/plots/{channel}")
async def render_plot(
    session_id: str,
    channel: int,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    """Screen coordinates of one channel plot."""
    try:
        plan = session_store.get(session_id).view.renderer.render(channel)
        return {**plan.model_dump(mode="json"), "svg_path": plan.svg_path()}
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/plots/{channel}/wheel")
async def wheel_plot(
    session_id: str,
    channel: int,
    body: WheelRequest,
    session_store: SessionStore = Depends(get_session_store),
):
    try:
        plot = session_store.get(session_id).view.renderer.plot(channel)
        plot.wheel(body.delta_y)
        return plot.transform
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/plots/{channel}/pointer")
async def pointer_plot(
    session_id: str,
    channel: int,
    body: PlotPointerRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    try:
        plot = session_store.get(session_id).view.renderer.plot(channel)
        if body.action == "down":
            plot.pointer_down(body.x)
        elif body.action == "move":
            plot.pointer_move(body.x, body.y)
        elif body.action == "up":
            plot.pointer_up()
        else:
            plot.pointer_leave()
        return {
            "transform": plot.transform.model_dump(mode="json"),
            "tooltip": plot.tooltip.model_dump(mode="json"),
            "panning": plot.panning,
        }
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/plots/{channel}/y-range")
async def y_range_plot(
    session_id: str,
    channel: int,
    body: YRangeRequest,
    session_store: SessionStore = Depends(get_session_store),
):
    try:
        plot = session_store.get(session_id).view.renderer.plot(channel)
        return plot.apply_y_range(body.operation)
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/plots/{channel}/palette")
async def toggle_palette(
    session_id: str,
    channel: int,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    try:
        plot = session_store.get(session_id).view.renderer.plot(channel)
        return {"palette": plot.toggle_palette().value}
    except ExplorerException as e:
        raise _to_http(e)


@router.post("/explorer/sessions/{session_id}/plots/{channel}/key")
async def key_plot(
    session_id: str,
    channel: int,
    body: KeyRequest,
    session_store: SessionStore = Depends(get_session_store),
) -> Dict[str, Any]:
    try:
        plot = session_store.get(session_id).view.renderer.plot(channel)
        handled = plot.handle_key(body.key)
        return {
            "handled": handled,
            "transform": plot.transform.model_dump(mode="json"),
            "palette": plot.palette.value,
        }
    except ExplorerException as e:
        raise _to_http(e)


# ===== samples =====

@router.get("/explorer/sessions/{session_id}/samples")
async def export_samples(
    request: Request,
    session_id: str,
    format: ExportFormat = Query(ExportFormat.JSON, description="json|csv|arrow"),
    session_store: SessionStore = Depends(get_session_store),
):
    """Decimated samples of the final window (Arrow when the client asks for it)."""
    try:
        controller = session_store.get(session_id).view.controller
        result = controller.downsampler.result
        df = samples_to_dataframe(result.samples)

        window = controller.final_window
        stem = f"ecg_{controller.pod_id}_{window.start.strftime('%Y%m%dT%H%M%SZ') if window else 'none'}"

        if format == ExportFormat.ARROW or client_wants_arrow(request):
            return dataframe_to_arrow_streaming_response(df, filename=f"{stem}.arrow")
        if format == ExportFormat.CSV:
            return dataframe_to_csv_streaming_response(df, filename=f"{stem}.csv")

        return {
            "pod_id": controller.pod_id,
            "window": window.model_dump(mode="json") if window else None,
            "status": result.status.value,
            "point_budget": result.point_budget,
            "returned_points": len(df),
            "samples": [sample.model_dump(mode="json") for sample in result.samples],
        }
    except ExplorerException as e:
        raise _to_http(e)
    except Exception as e:
        logger.error(f"Error exporting samples of session {session_id}: {e}")
        raise HTTPException(500, f"Export failed: {str(e)}")


@router.get("/explorer/sessions/{session_id}/quality")
async def get_quality(
    session_id: str,
    session_store: SessionStore = Depends(get_session_store),
):
    try:
        return session_store.get(session_id).view.quality_summary()
    except ExplorerException as e:
        raise _to_http(e)


# ===== pods =====

@router.get("/pods/{pod_id}/days")
async def get_pod_days(
    pod_id: str,
    query_client: QueryServiceClient = Depends(get_query_client),
):
    """Recording days of a pod (UTC)."""
    return await PodRepository(query_client).get_available_days(pod_id)


@router.get("/pods/{pod_id}/span")
async def get_pod_span(
    pod_id: str,
    query_client: QueryServiceClient = Depends(get_query_client),
):
    try:
        span = await PodRepository(query_client).get_recording_span(pod_id)
    except ExplorerException as e:
        raise _to_http(e)
    if span is None:
        raise HTTPException(404, f"No recording for pod {pod_id}")
    return span


# ===== diagnostics =====

@router.get("/diagnostics/queries")
async def get_query_diagnostics(
    limit: int = Query(20, ge=1, le=1000),
    query_client: QueryServiceClient = Depends(get_query_client),
) -> Dict[str, Any]:
    tracker = query_client.tracker
    return {
        "stats": tracker.stats().model_dump(mode="json"),
        "recent": [record.model_dump(mode="json") for record in tracker.history(limit)],
    }


@router.delete("/diagnostics/queries")
async def clear_query_diagnostics(
    query_client: QueryServiceClient = Depends(get_query_client),
) -> Dict[str, Any]:
    query_client.tracker.clear()
    return {"cleared": True}


@router.get("/api/constraints")
async def get_api_constraints() -> Dict[str, Any]:
    """Point budget, zoom and window bounds for frontends."""
    return app_settings.get_api_constraints()
