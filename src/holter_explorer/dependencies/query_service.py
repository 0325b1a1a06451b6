from functools import lru_cache

from ..clients.query_service import QueryServiceClient
from ..services.session_store import SessionStore


@lru_cache()
def get_query_client() -> QueryServiceClient:
    """Get query service client instance (singleton)."""
    return QueryServiceClient()


@lru_cache()
def get_session_store() -> SessionStore:
    """Get explorer session store (singleton)."""
    return SessionStore()
