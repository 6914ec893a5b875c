"""
Proximity Deduplication Service

RULES:
1. Same category + open ticket within the merge threshold -> merge
   (report_count + 1 on the nearest one, earliest created wins a tie)
2. Same category + only Resolved tickets nearby -> new ticket
3. Different category at the same spot -> new ticket
4. Nothing nearby -> new ticket

The lookup and the insert/increment run in one region transaction, so
two reports of the same incident arriving together produce one ticket.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from app_models import Ticket
from app_utils.constants import DEFAULT_MERGE_THRESHOLD
from app_utils.geo import Coordinate, distance_meters, validate_coordinate
from app_utils.lifecycle import NON_MERGEABLE_STATUSES, parse_category
from errors import InvalidInput

logger = logging.getLogger(__name__)

CREATED = "created"
MERGED = "merged"


@dataclass(frozen=True)
class SubmitResult:
    outcome: str
    ticket: Ticket
    distance_meters: Optional[float] = None

    @property
    def created(self):
        return self.outcome == CREATED

    @property
    def merged(self):
        return self.outcome == MERGED


def _tie_key(ticket):
    return (ticket.created_at, ticket.id)


def find_nearest(candidates, coordinate, threshold):
    """
    Pick the merge target: smallest distance <= threshold, earliest
    created_at (then lowest id) on a tie. Returns (ticket, distance) or (None, None).
    """
    best, best_distance = None, None
    for ticket in candidates:
        distance = distance_meters(coordinate, Coordinate(ticket.latitude, ticket.longitude))
        if distance > threshold:
            continue
        if (
            best is None
            or distance < best_distance
            or (distance == best_distance and _tie_key(ticket) < _tie_key(best))
        ):
            best, best_distance = ticket, distance
    return best, best_distance


class DedupEngine:

    def __init__(self, store, threshold_m=DEFAULT_MERGE_THRESHOLD):
        if not threshold_m > 0:
            raise InvalidInput(f"Merge threshold must be positive, got {threshold_m}")
        self.store = store
        self.threshold_m = float(threshold_m)

    def submit(self, category, coordinate, description="", image_ref=None) -> SubmitResult:
        """
        Merge the report into the nearest open ticket of the same category,
        or create a new one. Raises InvalidInput / StoreUnavailable.
        """
        category = parse_category(category)
        try:
            lat, lon = coordinate
        except (TypeError, ValueError):
            raise InvalidInput(f"Coordinate must be a (latitude, longitude) pair, got {coordinate!r}")
        coordinate = validate_coordinate(lat, lon)

        with self.store.region_transaction(category, coordinate, self.threshold_m) as db:
            candidates = self.store.query_by_category_near_in(
                db, category, coordinate, self.threshold_m, exclude_statuses=NON_MERGEABLE_STATUSES
            )
            match, distance = find_nearest(candidates, coordinate, self.threshold_m)

            if match is not None:
                ticket = self.store.increment_report_count_in(db, match.ticket_id)
                result = SubmitResult(MERGED, ticket, distance)
            else:
                ticket = self.store.insert_in(db, category, coordinate, description, image_ref)
                result = SubmitResult(CREATED, ticket)

        # Logged only once the transaction has committed
        if result.merged:
            logger.info(
                f"Merged {category.value} report into {ticket.ticket_id} "
                f"({distance:.2f} m away, report_count={ticket.report_count})"
            )
        else:
            logger.info(f"Created {category.value} ticket {ticket.ticket_id} at {coordinate}")
        return result
