from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict

from app_utils.constants import Category, TicketStatus


class ReportSubmission(BaseModel):
    # Category / coordinate ranges are checked by the engine so the error
    # taxonomy stays in one place.
    category: str
    lat: float
    lng: float
    description: str = ""
    image_ref: Optional[str] = None


class TicketResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    ticket_id: str
    category: Category
    latitude: float
    longitude: float
    description: str
    status: TicketStatus
    report_count: int
    upvotes: int
    image_path: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class SubmitResponse(BaseModel):
    status: str                # "created" | "duplicate"
    message: str
    ticket: TicketResponse
    duplicate_id: Optional[str] = None
    distance_meters: Optional[float] = None


class StatusUpdate(BaseModel):
    status: str
    role: str = "USER"


class TicketListResponse(BaseModel):
    status: str
    count: int
    tickets: List[TicketResponse]


class StatsResponse(BaseModel):
    total: int
    total_reports: int
    by_status: Dict[str, int]
    by_category: Dict[str, int]
