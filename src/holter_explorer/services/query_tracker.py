import logging
from collections import deque
from datetime import datetime, timezone
from typing import Deque, List, Optional

from ..app_settings import app_settings
from ..entities.diagnostics import QueryRecord, QueryStats

logger = logging.getLogger(__name__)


class QueryTracker:
    """Bounded history of RPC calls for the diagnostics endpoint."""

    def __init__(self, max_history: Optional[int] = None):
        self._history: Deque[QueryRecord] = deque(
            maxlen=max_history or app_settings.diagnostics_history
        )

    def record(
        self,
        function: str,
        duration_ms: float,
        rows: int = 0,
        pod_id: Optional[str] = None,
        time_start: Optional[str] = None,
        time_end: Optional[str] = None,
        error: Optional[str] = None,
    ) -> QueryRecord:
        entry = QueryRecord(
            function=function,
            pod_id=pod_id,
            time_start=time_start,
            time_end=time_end,
            rows=rows,
            duration_ms=round(duration_ms, 2),
            success=error is None,
            error=error,
            finished_at=datetime.now(timezone.utc),
        )
        self._history.append(entry)
        logger.debug(f"{function} pod={pod_id} rows={rows} {entry.duration_ms}ms success={entry.success}")
        return entry

    def history(self, limit: Optional[int] = None) -> List[QueryRecord]:
        """Most recent calls first."""
        records = list(reversed(self._history))
        return records[:limit] if limit else records

    def stats(self) -> QueryStats:
        if not self._history:
            return QueryStats()
        durations = [r.duration_ms for r in self._history]
        rows = [r.rows for r in self._history]
        return QueryStats(
            total_queries=len(self._history),
            error_count=sum(1 for r in self._history if not r.success),
            total_rows=sum(rows),
            avg_duration_ms=round(sum(durations) / len(durations), 2),
            max_duration_ms=max(durations),
            avg_rows=round(sum(rows) / len(rows), 2),
            max_rows=max(rows),
        )

    def clear(self) -> None:
        self._history.clear()
