import logging
from datetime import timedelta

from pydantic import ValidationError

from ..app_settings import app_settings
from ..clients.query_service import QueryServiceClient
from ..entities.waveform import DecimationRequest, DownsampleRow, WaveformResult, WaveformSample
from ..enums.drill_down import FetchStatus
from ..exceptions.explorer_exceptions import InvalidWindowError, QueryServiceError
from ..utils.point_budget import resolve_point_budget

logger = logging.getLogger(__name__)


class WaveformRepository:
    """Repository for peak-preserving decimated waveform samples."""

    def __init__(self, query_client: QueryServiceClient):
        self.client = query_client

    def _check_window(self, request: DecimationRequest) -> None:
        limit = timedelta(hours=app_settings.max_window_hours)
        if request.window.duration > limit:
            raise InvalidWindowError(
                f"Window {request.window} exceeds {app_settings.max_window_hours}h"
            )

    async def fetch_samples(self, request: DecimationRequest) -> WaveformResult:
        """Decimated samples for a final window, sorted by time. Failures become an ERROR result."""
        budget = resolve_point_budget(request.window.duration_seconds, request.point_budget_override)
        try:
            self._check_window(request)
            rows = await self.client.downsample(request.pod_id, request.window, budget)
        except (InvalidWindowError, QueryServiceError) as e:
            logger.error(f"Downsampling failed for pod {request.pod_id} {request.window}: {e}")
            return WaveformResult(
                request=request, status=FetchStatus.ERROR, point_budget=budget, error=str(e)
            )

        samples = []
        dropped = 0
        for raw in rows:
            try:
                samples.append(WaveformSample.from_row(DownsampleRow.model_validate(raw)))
            except ValidationError as e:
                dropped += 1
                logger.warning(f"Dropping malformed sample for pod {request.pod_id}: {e.error_count()} errors")

        # stable, keeps the service order for equal timestamps
        samples.sort(key=lambda s: s.sample_time)

        status = FetchStatus.READY if samples else FetchStatus.EMPTY
        logger.info(
            f"Downsampled pod {request.pod_id} {request.window}: "
            f"{len(samples)} samples (budget {budget}), {dropped} dropped"
        )
        return WaveformResult(
            request=request,
            status=status,
            samples=samples,
            point_budget=budget,
            dropped_rows=dropped,
        )
