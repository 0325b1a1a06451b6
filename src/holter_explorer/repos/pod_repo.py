import logging
from datetime import date
from typing import Optional, Set

from pydantic import ValidationError

from ..app_settings import app_settings
from ..clients.query_service import QueryServiceClient
from ..entities.pod import PodDaysResult, RecordingSpan
from ..enums.drill_down import FetchStatus
from ..exceptions.explorer_exceptions import QueryServiceError

logger = logging.getLogger(__name__)


class PodRepository:
    """Repository for recording availability of a pod."""

    def __init__(self, query_client: QueryServiceClient):
        self.client = query_client

    async def get_available_days(self, pod_id: str) -> PodDaysResult:
        """Days with data, ascending and de-duplicated. Failures come back as an ERROR result."""
        try:
            rows = await self.client.get_pod_days(pod_id)
        except QueryServiceError as e:
            return PodDaysResult(pod_id=pod_id, status=FetchStatus.ERROR, error=str(e))

        days: Set[date] = set()
        for row in rows:
            value = row.get("day_value") if isinstance(row, dict) else None
            try:
                # accepts both "YYYY-MM-DD" and full timestamps
                days.add(date.fromisoformat(str(value)[:10]))
            except (TypeError, ValueError):
                logger.warning(f"Skipping unparsable day value for pod {pod_id}: {value!r}")

        status = FetchStatus.READY if days else FetchStatus.EMPTY
        return PodDaysResult(pod_id=pod_id, status=status, days=sorted(days))

    async def get_recording_span(self, pod_id: str) -> Optional[RecordingSpan]:
        """Earliest and latest recorded instants, None when the pod has no data."""
        rows = await self.client.get_pod_span(pod_id)
        if not rows:
            return None
        row = rows[0]
        if row.get("earliest_time") is None or row.get("latest_time") is None:
            return None
        try:
            return RecordingSpan(
                pod_id=pod_id,
                earliest_time=row["earliest_time"],
                latest_time=row["latest_time"],
            )
        except ValidationError as e:
            raise QueryServiceError(
                f"Invalid recording span for pod {pod_id}: {e.error_count()} errors",
                function=app_settings.pod_span_function,
            ) from e
