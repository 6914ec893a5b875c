from fastapi import APIRouter, Depends

from errors import CivicError
from routers.reports import get_store, http_error
from schemas import StatsResponse

router = APIRouter(prefix="/api/admin", tags=["Admin"])


@router.get("/stats", response_model=StatsResponse)
def get_stats(store=Depends(get_store)):
    """
    Ticket counts per status and per category, plus the total number of
    submissions absorbed (sum of report_count).
    """
    try:
        return store.stats()
    except CivicError as e:
        raise http_error(e)
