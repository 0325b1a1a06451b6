import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..app_settings import app_settings
from ..entities.window import TimeWindow
from ..exceptions.explorer_exceptions import QueryServiceError
from ..services.query_tracker import QueryTracker

logger = logging.getLogger(__name__)


class QueryServiceClient:
    """Async client for the read-only aggregation and downsampling RPC endpoints."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        tracker: Optional[QueryTracker] = None,
    ):
        self.base_url = (base_url or app_settings.query_service_url).rstrip("/")
        key = app_settings.query_service_key if api_key is None else api_key
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if key:
            headers["apikey"] = key
            headers["Authorization"] = f"Bearer {key}"
        self.tracker = tracker or QueryTracker()
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout or app_settings.query_service_timeout,
            transport=transport,
        )

    async def call(self, function: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        """
        POST an RPC call and return its rows.

        Transport failures, non-2xx statuses and non-list payloads are raised as
        QueryServiceError. Every call, failed or not, is recorded in the tracker.
        """
        path = app_settings.rpc_path_template.format(function=function)
        started = time.perf_counter()
        rows: List[Dict[str, Any]] = []
        error: Optional[str] = None
        try:
            try:
                response = await self._client.post(path, json=params)
            except httpx.TimeoutException as e:
                raise QueryServiceError(f"{function} timed out: {e}", function=function) from e
            except httpx.HTTPError as e:
                raise QueryServiceError(f"{function} transport error: {e}", function=function) from e

            if response.status_code >= 400:
                raise QueryServiceError(
                    f"{function} failed with HTTP {response.status_code}: {response.text[:200]}",
                    function=function,
                    status_code=response.status_code,
                )

            try:
                payload = response.json()
            except ValueError as e:
                raise QueryServiceError(f"{function} returned invalid JSON", function=function) from e

            if payload is None:
                payload = []
            if not isinstance(payload, list):
                raise QueryServiceError(
                    f"{function} returned {type(payload).__name__}, expected a list of rows",
                    function=function,
                )
            rows = payload
            return rows
        except QueryServiceError as e:
            error = str(e)
            logger.error(error)
            raise
        finally:
            self.tracker.record(
                function=function,
                duration_ms=(time.perf_counter() - started) * 1000.0,
                rows=len(rows),
                pod_id=params.get("p_pod_id"),
                time_start=params.get("p_time_start"),
                time_end=params.get("p_time_end"),
                error=error,
            )

    async def get_pod_days(self, pod_id: str) -> List[Dict[str, Any]]:
        return await self.call(app_settings.pod_days_function, {"p_pod_id": pod_id})

    async def get_pod_span(self, pod_id: str) -> List[Dict[str, Any]]:
        return await self.call(app_settings.pod_span_function, {"p_pod_id": pod_id})

    async def aggregate_leads(
        self, pod_id: str, window: TimeWindow, bucket_seconds: int
    ) -> List[Dict[str, Any]]:
        params = {"p_pod_id": pod_id, **window.to_query_params(), "p_bucket_seconds": bucket_seconds}
        return await self.call(app_settings.aggregation_function, params)

    async def downsample(self, pod_id: str, window: TimeWindow, max_points: int) -> List[Dict[str, Any]]:
        params = {"p_pod_id": pod_id, **window.to_query_params(), "p_max_pts": max_points}
        return await self.call(app_settings.downsample_function, params)

    async def aclose(self) -> None:
        """Close the underlying HTTP connection pool."""
        await self._client.aclose()
