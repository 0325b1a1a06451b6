import logging
from datetime import datetime as dt

from fastapi import APIRouter, Depends

from ..app_settings import app_settings
from ..clients.query_service import QueryServiceClient
from ..dependencies.query_service import get_query_client, get_session_store
from ..services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health")
async def health_check(
    query_client: QueryServiceClient = Depends(get_query_client),
    session_store: SessionStore = Depends(get_session_store),
):
    """Health check endpoint."""
    stats = query_client.tracker.stats()
    recent = query_client.tracker.history(limit=1)

    # degraded when the latest query failed
    is_healthy = not recent or recent[0].success

    return {
        "status": "healthy" if is_healthy else "degraded",
        "query_service": app_settings.get_rpc_url(app_settings.aggregation_function),
        "last_query_error": None if is_healthy else recent[0].error,
        "queries": f"{stats.total_queries} recent queries, {stats.error_count} failed",
        "sessions": len(session_store),
        "timestamp": dt.utcnow().isoformat() + "Z",
    }
