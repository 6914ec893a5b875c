"""
TicketStore

Owns every read and write of the tickets table. Counters are bumped with a
single UPDATE ... SET x = x + 1 so concurrent merges never lose an
increment; create-or-merge decisions run inside region_transaction(),
which serialises writers whose search boxes overlap.
"""
import uuid
import logging
from contextlib import contextmanager

from sqlalchemy import or_, func, text
from sqlalchemy.exc import OperationalError, InterfaceError, DisconnectionError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from app_models import Ticket, utcnow
from app_utils.constants import Category, TicketStatus, Role, TICKET_ID_PREFIX
from app_utils.geo import bounding_box
from app_utils.lifecycle import check_transition, parse_status, parse_category
from app_utils.region_lock import RegionLocks, advisory_key
from database import make_session_factory
from errors import NotFound, StoreUnavailable, InvalidInput

logger = logging.getLogger(__name__)

STORE_ERRORS = (OperationalError, InterfaceError, DisconnectionError, PoolTimeoutError)

ORDERINGS = {
    "created_at": Ticket.created_at,
    "report_count": Ticket.report_count,
    "upvotes": Ticket.upvotes,
}


def new_ticket_id():
    return f"{TICKET_ID_PREFIX}-{uuid.uuid4().hex[:12].upper()}"


class TicketStore:

    def __init__(self, engine, region_locks=None, lock_timeout=-1):
        self.engine = engine
        self.session_factory = make_session_factory(engine)
        self.region_locks = region_locks or RegionLocks()
        self.lock_timeout = lock_timeout

    def close(self):
        self.engine.dispose()

    # ---------- Transactions ----------
    @contextmanager
    def session(self, read_only=False):
        """One transaction: commit on success, roll back on any error."""
        try:
            with self.session_factory() as db:
                with db.begin():
                    if read_only:
                        db.connection(execution_options={"read_only": True})
                    yield db
        except STORE_ERRORS as e:
            logger.debug(f"Store error: {e}")
            raise StoreUnavailable(f"Ticket store unavailable: {e.__class__.__name__}") from e

    @contextmanager
    def region_transaction(self, category, coordinate, radius):
        """
        Transaction that no other region_transaction for the same category
        and an overlapping search box can interleave with.
        """
        keys = self.region_locks.keys_for(category, bounding_box(coordinate, radius))
        try:
            with self.region_locks.hold(keys, timeout=self.lock_timeout):
                with self.session() as db:
                    if self.engine.dialect.name == "postgresql":
                        # Same keys across processes / app instances
                        for key in keys:
                            db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key(key)})
                    yield db
        except TimeoutError as e:
            raise StoreUnavailable(str(e)) from e

    # ---------- Building blocks (caller supplies the session) ----------
    def insert_in(self, db, category, coordinate, description="", image_path=None):
        ticket = Ticket(
            ticket_id=new_ticket_id(),
            category=category,
            latitude=coordinate.latitude,
            longitude=coordinate.longitude,
            description=description or "",
            image_path=image_path,
            status=TicketStatus.PENDING,
            report_count=1,
            upvotes=0,
            created_at=utcnow(),
        )
        db.add(ticket)
        db.flush()
        db.refresh(ticket)
        return ticket

    def _increment_in(self, db, ticket_id, column):
        updated = (
            db.query(Ticket)
            .filter(Ticket.ticket_id == ticket_id)
            .update({column: column + 1}, synchronize_session=False)
        )
        if not updated:
            raise NotFound(ticket_id)
        return (
            db.query(Ticket)
            .filter(Ticket.ticket_id == ticket_id)
            .populate_existing()
            .one()
        )

    def increment_report_count_in(self, db, ticket_id):
        return self._increment_in(db, ticket_id, Ticket.report_count)

    def query_by_category_near_in(self, db, category, coordinate, bounding_radius, exclude_statuses=()):
        box = bounding_box(coordinate, bounding_radius)
        query = (
            db.query(Ticket)
            .filter(Ticket.category == category)
            .filter(Ticket.latitude.between(box.min_lat, box.max_lat))
        )
        if box.wraps:
            query = query.filter(or_(Ticket.longitude >= box.min_lon, Ticket.longitude <= box.max_lon))
        else:
            query = query.filter(Ticket.longitude.between(box.min_lon, box.max_lon))
        if exclude_statuses:
            query = query.filter(Ticket.status.notin_(list(exclude_statuses)))
        return query.all()

    # ---------- Public operations ----------
    def insert(self, category, coordinate, description="", image_path=None):
        """
        Raw insert for seeding and admin tools: no neighbour check, so it can
        place a ticket next to an open one. It still takes the region lock of
        its point, so it never lands between a submit's lookup and its write.
        """
        with self.region_transaction(category, coordinate, 0) as db:
            return self.insert_in(db, category, coordinate, description, image_path)

    def increment_report_count(self, ticket_id):
        with self.session() as db:
            return self.increment_report_count_in(db, ticket_id)

    def increment_upvotes(self, ticket_id):
        with self.session() as db:
            return self._increment_in(db, ticket_id, Ticket.upvotes)

    def set_status(self, ticket_id, new_status, role=Role.ADMIN):
        target = parse_status(new_status)
        with self.session() as db:
            ticket = (
                db.query(Ticket)
                .filter(Ticket.ticket_id == ticket_id)
                .with_for_update()
                .first()
            )
            if not ticket:
                raise NotFound(ticket_id)

            previous = ticket.status
            check_transition(previous, target, role)

            ticket.status = target
            ticket.updated_at = utcnow()
            if target == TicketStatus.RESOLVED:
                ticket.resolved_at = utcnow()
            elif target == TicketStatus.DISPUTED:
                ticket.resolved_at = None
            db.flush()
            db.refresh(ticket)

        logger.info(f"Ticket {ticket_id}: {previous.value} -> {target.value}")
        return ticket

    def get(self, ticket_id):
        with self.session(read_only=True) as db:
            ticket = db.query(Ticket).filter(Ticket.ticket_id == ticket_id).first()
        if not ticket:
            raise NotFound(ticket_id)
        return ticket

    def query_by_category_near(self, category, coordinate, bounding_radius, exclude_statuses=()):
        with self.session(read_only=True) as db:
            return self.query_by_category_near_in(db, category, coordinate, bounding_radius, exclude_statuses)

    def list_all(self, order_by="created_at", category=None, status=None, descending=True):
        column = ORDERINGS.get(order_by)
        if column is None:
            raise InvalidInput(f"Cannot order by {order_by!r}; use one of {sorted(ORDERINGS)}")

        with self.session(read_only=True) as db:
            query = db.query(Ticket)
            if category is not None:
                query = query.filter(Ticket.category == parse_category(category))
            if status is not None:
                query = query.filter(Ticket.status == parse_status(status))
            primary = column.desc() if descending else column.asc()
            return query.order_by(primary, Ticket.id.desc() if descending else Ticket.id.asc()).all()

    def stats(self):
        with self.session(read_only=True) as db:
            by_status = dict(db.query(Ticket.status, func.count(Ticket.id)).group_by(Ticket.status).all())
            by_category = dict(db.query(Ticket.category, func.count(Ticket.id)).group_by(Ticket.category).all())
            total_reports = db.query(func.coalesce(func.sum(Ticket.report_count), 0)).scalar()

        return {
            "total": sum(by_status.values()),
            "total_reports": int(total_reports),
            "by_status": {s.value: by_status.get(s, 0) for s in TicketStatus},
            "by_category": {c.value: by_category.get(c, 0) for c in Category},
        }
