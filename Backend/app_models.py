from datetime import datetime, timezone

from sqlalchemy import Column, Integer, String, Float, DateTime, Enum, Index, CheckConstraint
from database import Base
from app_utils.constants import Category, TicketStatus


def utcnow():
    return datetime.now(timezone.utc)


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint("report_count >= 1", name="ck_tickets_report_count"),
        CheckConstraint("upvotes >= 0", name="ck_tickets_upvotes"),
        Index("ix_tickets_category_status_lat_lng", "category", "status", "latitude", "longitude"),
    )

    id = Column(Integer, primary_key=True)
    ticket_id = Column(String, unique=True, index=True, nullable=False)

    # Write-once: the incident site and its kind never change
    category = Column(Enum(Category, native_enum=False, length=32), nullable=False)
    latitude = Column(Float(precision=53), nullable=False)
    longitude = Column(Float(precision=53), nullable=False)
    description = Column(String, nullable=False, default="")
    image_path = Column(String, nullable=True)

    status = Column(Enum(TicketStatus, native_enum=False, length=32), nullable=False, default=TicketStatus.PENDING)
    report_count = Column(Integer, nullable=False, default=1)
    upvotes = Column(Integer, nullable=False, default=0)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    # Last status change; merges and votes only move the counters
    updated_at = Column(DateTime(timezone=True))
    resolved_at = Column(DateTime(timezone=True))

    def __repr__(self):
        return (
            f"<Ticket {self.ticket_id} {self.category.value} "
            f"({self.latitude}, {self.longitude}) {self.status.value} x{self.report_count}>"
        )
