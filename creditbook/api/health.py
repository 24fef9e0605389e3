from fastapi import APIRouter, Depends

from .. import __version__
from ..core.errors import StoreError
from ..db.store import DocumentStore
from .credits.main import get_store

router = APIRouter()


@router.get("/health", tags=["System"])
def get_system_health(store: DocumentStore = Depends(get_store)):
    """
    Returns the service health status including store reachability.
    """
    try:
        store_ok = store.ping()
    except StoreError:
        store_ok = False

    return {
        "status": "ok" if store_ok else "degraded",
        "version": __version__,
        "store": "up" if store_ok else "down",
    }
