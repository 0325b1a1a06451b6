from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class QueryRecord(BaseModel):
    """One RPC call as seen by the query service client."""
    function: str
    pod_id: Optional[str] = None
    time_start: Optional[str] = None
    time_end: Optional[str] = None
    rows: int = 0
    duration_ms: float
    success: bool
    error: Optional[str] = None
    finished_at: datetime


class QueryStats(BaseModel):
    total_queries: int = 0
    error_count: int = 0
    total_rows: int = 0
    avg_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    avg_rows: float = 0.0
    max_rows: int = 0
