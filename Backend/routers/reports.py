import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response

from errors import CivicError, InvalidInput, InvalidTransition, NotFound, StoreUnavailable
from schemas import ReportSubmission, StatusUpdate, SubmitResponse, TicketListResponse, TicketResponse
from services.report_service import submit_report

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/reports", tags=["Reports"])

ERROR_STATUS = {
    InvalidInput: 400,
    NotFound: 404,
    InvalidTransition: 409,
    StoreUnavailable: 503,
}


def http_error(e: CivicError) -> HTTPException:
    status_code = next((code for cls, code in ERROR_STATUS.items() if isinstance(e, cls)), 500)
    if status_code >= 500:
        logger.error(f"{e.__class__.__name__}: {e}")
    else:
        logger.info(f"Rejected request ({status_code}): {e}")
    return HTTPException(status_code=status_code, detail=str(e))


# --------------------------------------------------
# Dependencies (handles built in main.create_app)
# --------------------------------------------------
def get_store(request: Request):
    return request.app.state.store


def get_dedup_engine(request: Request):
    return request.app.state.dedup_engine


def get_settings(request: Request):
    return request.app.state.settings


# --------------------------------------------------
# SUBMIT A REPORT (create or merge)
# --------------------------------------------------
@router.post("", response_model=SubmitResponse)
def create_report(
    submission: ReportSubmission,
    response: Response,
    engine=Depends(get_dedup_engine),
    settings=Depends(get_settings),
):
    """
    Submit a geotagged report.
    - 201 + status "created" when it opens a new ticket.
    - 200 + status "duplicate" when it was merged into an open ticket nearby;
      `duplicate_id` lets the client offer "upvote instead".
    """
    try:
        result = submit_report(engine, submission, geocode=settings.geocode_enabled)
    except CivicError as e:
        raise http_error(e)

    ticket = TicketResponse.model_validate(result.ticket)
    if result.merged:
        response.status_code = 200
        return SubmitResponse(
            status="duplicate",
            message="A similar issue is already reported nearby. Your report was added to it.",
            ticket=ticket,
            duplicate_id=ticket.ticket_id,
            distance_meters=round(result.distance_meters, 2),
        )

    response.status_code = 201
    return SubmitResponse(status="created", message="Report successfully submitted!", ticket=ticket)


# --------------------------------------------------
# LIST TICKETS (map / dashboard)
# --------------------------------------------------
@router.get("", response_model=TicketListResponse)
def list_reports(
    category: Optional[str] = Query(None, description="Filter by category, e.g. Pothole"),
    status: Optional[str] = Query(None, description="Filter by status, e.g. Pending"),
    order_by: str = Query("created_at", description="created_at | report_count | upvotes"),
    store=Depends(get_store),
):
    try:
        tickets = store.list_all(order_by=order_by, category=category, status=status)
    except CivicError as e:
        raise http_error(e)

    return {
        "status": "success",
        "count": len(tickets),
        "tickets": [TicketResponse.model_validate(t) for t in tickets],
    }


@router.get("/{ticket_id}", response_model=TicketResponse)
def get_report(ticket_id: str, store=Depends(get_store)):
    try:
        return TicketResponse.model_validate(store.get(ticket_id))
    except CivicError as e:
        raise http_error(e)


# --------------------------------------------------
# UPVOTE
# --------------------------------------------------
@router.post("/{ticket_id}/vote", response_model=TicketResponse)
def vote(ticket_id: str, store=Depends(get_store)):
    try:
        return TicketResponse.model_validate(store.increment_upvotes(ticket_id))
    except CivicError as e:
        raise http_error(e)


# --------------------------------------------------
# STATUS CHANGE
# --------------------------------------------------
@router.post("/{ticket_id}/status", response_model=TicketResponse)
def update_status(ticket_id: str, update: StatusUpdate, store=Depends(get_store)):
    """
    Move a ticket through its lifecycle. Admins drive the normal flow;
    any citizen may dispute a Resolved ticket.
    """
    try:
        ticket = store.set_status(ticket_id, update.status, role=update.role)
    except CivicError as e:
        raise http_error(e)
    return TicketResponse.model_validate(ticket)
