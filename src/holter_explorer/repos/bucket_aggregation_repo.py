import logging
import math
from typing import List, Optional

from pydantic import ValidationError

from ..clients.query_service import QueryServiceClient
from ..entities.bucket import AggregateRow, AggregationResult, BucketFilter, TimeBucket
from ..entities.window import TimeWindow
from ..enums.drill_down import FetchStatus
from ..exceptions.explorer_exceptions import MalformedRowError, QueryServiceError

logger = logging.getLogger(__name__)


class BucketAggregationRepository:
    """Repository turning aggregation rows into a dense, gap-filled bucket array."""

    def __init__(self, query_client: QueryServiceClient):
        self.client = query_client

    def _slot_index(self, row: AggregateRow, window: TimeWindow, bucket_seconds: int, bucket_count: int) -> int:
        offset = (row.time_bucket - window.start).total_seconds() / bucket_seconds
        index = math.floor(offset + 0.5)
        if index < 0 or index >= bucket_count:
            raise MalformedRowError(
                f"bucket {row.time_bucket.isoformat()} outside {window} (slot {index} of {bucket_count})"
            )
        return index

    async def fetch_buckets(
        self,
        pod_id: str,
        window: TimeWindow,
        bucket_seconds: int,
        bucket_filter: Optional[BucketFilter] = None,
    ) -> AggregationResult:
        """
        Fetch per-bucket lead-on and quality statistics for a window.

        The result always holds exactly floor(duration / bucket_seconds) buckets in
        ascending order; slots without a row are marked missing. Out-of-range and
        malformed rows are dropped. Service failures are returned as an ERROR result
        with no buckets, never raised.
        """
        try:
            rows = await self.client.aggregate_leads(pod_id, window, bucket_seconds)
        except QueryServiceError as e:
            logger.error(f"Aggregation failed for pod {pod_id} {window}: {e}")
            return AggregationResult(
                pod_id=pod_id,
                window=window,
                bucket_seconds=bucket_seconds,
                status=FetchStatus.ERROR,
                error=str(e),
            )

        bucket_count = window.bucket_count(bucket_seconds)
        slots: List[Optional[TimeBucket]] = [None] * bucket_count
        dropped = 0

        for raw in rows:
            try:
                try:
                    row = AggregateRow.model_validate(raw)
                except ValidationError as e:
                    raise MalformedRowError(f"{e.error_count()} invalid fields in {raw!r}") from e
                index = self._slot_index(row, window, bucket_seconds, bucket_count)
            except MalformedRowError as e:
                dropped += 1
                logger.warning(f"Dropping aggregation row for pod {pod_id}: {e}")
                continue

            if slots[index] is not None:
                logger.debug(f"Duplicate aggregation row for slot {index}, keeping the last one")
            slots[index] = TimeBucket.from_row(row, window.bucket_start(index, bucket_seconds))

        buckets = [
            slot if slot is not None else TimeBucket.missing_at(window.bucket_start(i, bucket_seconds))
            for i, slot in enumerate(slots)
        ]

        if bucket_filter is not None:
            buckets = bucket_filter.apply(buckets)

        populated = sum(1 for bucket in buckets if not bucket.missing)
        status = FetchStatus.READY if populated else FetchStatus.EMPTY
        logger.info(
            f"Aggregated pod {pod_id} {window} at {bucket_seconds}s: "
            f"{populated}/{bucket_count} buckets populated, {dropped} rows dropped"
        )
        return AggregationResult(
            pod_id=pod_id,
            window=window,
            bucket_seconds=bucket_seconds,
            status=status,
            buckets=buckets,
            dropped_rows=dropped,
        )
