# tests/test_dedup.py
# Run: pytest tests/test_dedup.py -v

import math
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest import mock

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from app_utils.constants import Category, EARTH_RADIUS_METERS, TicketStatus
from app_utils.deduplication import DedupEngine, find_nearest
from app_utils.geo import Coordinate
from crud import TicketStore
from database import create_tables
from errors import InvalidInput, StoreUnavailable

BHOPAL = Coordinate(23.2599, 77.4126)
THRESHOLD = 25.0


def _north(point, meters):
    return Coordinate(point.latitude + math.degrees(meters / EARTH_RADIUS_METERS), point.longitude)


# ─────────────────────────────────────────────────────────────────────────────
# End-to-end scenario
# ─────────────────────────────────────────────────────────────────────────────

def test_reference_scenario(dedup, store):
    first = dedup.submit("Pothole", (23.2599, 77.4126), "Near MP Nagar")
    assert first.created
    assert first.ticket.report_count == 1
    assert first.distance_meters is None

    second = dedup.submit("Pothole", (23.25991, 77.41261), "Same pothole")
    assert second.merged
    assert second.ticket.ticket_id == first.ticket.ticket_id
    assert second.ticket.report_count == 2
    assert second.distance_meters < 2.0
    # Merges never touch the original description
    assert second.ticket.description == "Near MP Nagar"

    garbage = dedup.submit("Garbage", (23.2599, 77.4126))
    assert garbage.created
    assert garbage.ticket.ticket_id != first.ticket.ticket_id

    store.set_status(first.ticket.ticket_id, TicketStatus.RESOLVED)
    after_fix = dedup.submit("Pothole", (23.2599, 77.4126))
    assert after_fix.created
    assert after_fix.ticket.ticket_id != first.ticket.ticket_id
    assert store.get(first.ticket.ticket_id).report_count == 2


# ─────────────────────────────────────────────────────────────────────────────
# Threshold and mergeability
# ─────────────────────────────────────────────────────────────────────────────

def test_just_inside_threshold_merges(dedup):
    origin = dedup.submit(Category.POTHOLE, BHOPAL).ticket
    result = dedup.submit(Category.POTHOLE, _north(BHOPAL, THRESHOLD - 0.01))
    assert result.merged
    assert result.ticket.ticket_id == origin.ticket_id


def test_just_outside_threshold_creates(dedup):
    origin = dedup.submit(Category.POTHOLE, BHOPAL).ticket
    result = dedup.submit(Category.POTHOLE, _north(BHOPAL, THRESHOLD + 0.01))
    assert result.created
    assert result.ticket.ticket_id != origin.ticket_id


def test_resolved_ticket_is_not_a_merge_target(dedup, store):
    old = dedup.submit(Category.GARBAGE, BHOPAL).ticket
    store.set_status(old.ticket_id, TicketStatus.RESOLVED)

    result = dedup.submit(Category.GARBAGE, BHOPAL)
    assert result.created
    assert result.ticket.status == TicketStatus.PENDING


@pytest.mark.parametrize("status", [TicketStatus.IN_PROGRESS, TicketStatus.DISPUTED])
def test_active_statuses_absorb_reports(dedup, store, status):
    ticket = dedup.submit(Category.WATER_LEAK, BHOPAL).ticket
    if status == TicketStatus.DISPUTED:
        store.set_status(ticket.ticket_id, TicketStatus.RESOLVED)
    store.set_status(ticket.ticket_id, status)

    result = dedup.submit(Category.WATER_LEAK, BHOPAL)
    assert result.merged
    assert result.ticket.ticket_id == ticket.ticket_id
    assert result.ticket.status == status


def test_merges_into_the_nearest_candidate(dedup, store):
    far = store.insert(Category.POTHOLE, _north(BHOPAL, 20))
    near = store.insert(Category.POTHOLE, _north(BHOPAL, 5))

    result = dedup.submit(Category.POTHOLE, BHOPAL)
    assert result.ticket.ticket_id == near.ticket_id
    assert store.get(far.ticket_id).report_count == 1


def test_tie_goes_to_earliest_ticket(dedup, store):
    first = store.insert(Category.STREET_LIGHT, BHOPAL)
    store.insert(Category.STREET_LIGHT, BHOPAL)

    result = dedup.submit(Category.STREET_LIGHT, BHOPAL)
    assert result.ticket.ticket_id == first.ticket_id


def test_find_nearest_rules():
    t0 = datetime(2024, 1, 1, 12, 0, 0)
    late = SimpleNamespace(id=1, latitude=BHOPAL.latitude, longitude=BHOPAL.longitude, created_at=t0 + timedelta(hours=1))
    early = SimpleNamespace(id=2, latitude=BHOPAL.latitude, longitude=BHOPAL.longitude, created_at=t0)
    outside = SimpleNamespace(id=3, latitude=_north(BHOPAL, 30).latitude, longitude=BHOPAL.longitude, created_at=t0)

    match, distance = find_nearest([late, early, outside], BHOPAL, THRESHOLD)
    assert match is early
    assert distance == 0.0

    assert find_nearest([outside], BHOPAL, THRESHOLD) == (None, None)
    assert find_nearest([], BHOPAL, THRESHOLD) == (None, None)


def test_submissions_at_the_antimeridian_merge(dedup):
    first = dedup.submit(Category.POTHOLE, (12.5, 179.99999))
    second = dedup.submit(Category.POTHOLE, (12.5, -179.99999))
    assert second.merged
    assert second.ticket.ticket_id == first.ticket.ticket_id


# ─────────────────────────────────────────────────────────────────────────────
# Errors
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("category, coordinate", [
    ("Graffiti", BHOPAL),
    ("Pothole", (91.0, 77.0)),
    ("Pothole", (23.0, -180.5)),
    ("Pothole", (float("nan"), 77.0)),
    ("Pothole", (23.0,)),
    ("Pothole", None),
])
def test_invalid_input_rejected_before_touching_store(dedup, store, category, coordinate):
    with pytest.raises(InvalidInput):
        dedup.submit(category, coordinate)
    assert store.list_all() == []


def test_threshold_must_be_positive(store):
    with pytest.raises(InvalidInput):
        DedupEngine(store, threshold_m=0)


def test_store_down_is_surfaced_not_treated_as_no_duplicate(dedup, store):
    def offline(*args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("connection refused"))

    with mock.patch.object(store, "session_factory", side_effect=offline):
        with pytest.raises(StoreUnavailable):
            dedup.submit(Category.POTHOLE, BHOPAL)
    assert store.list_all() == []


def test_failure_after_insert_leaves_no_ticket(dedup, store):
    real_insert = store.insert_in

    def insert_then_fail(db, *args, **kwargs):
        real_insert(db, *args, **kwargs)
        raise OperationalError("COMMIT", {}, Exception("connection lost"))

    with mock.patch.object(store, "insert_in", side_effect=insert_then_fail):
        with pytest.raises(StoreUnavailable):
            dedup.submit(Category.POTHOLE, BHOPAL)

    assert store.list_all() == []
    assert dedup.submit(Category.POTHOLE, BHOPAL).created


def test_failure_during_merge_does_not_double_count(dedup, store):
    ticket = dedup.submit(Category.POTHOLE, BHOPAL).ticket
    real_increment = store.increment_report_count_in

    def increment_then_fail(db, ticket_id):
        real_increment(db, ticket_id)
        raise OperationalError("COMMIT", {}, Exception("connection lost"))

    with mock.patch.object(store, "increment_report_count_in", side_effect=increment_then_fail):
        with pytest.raises(StoreUnavailable):
            dedup.submit(Category.POTHOLE, BHOPAL)

    assert store.get(ticket.ticket_id).report_count == 1


# ─────────────────────────────────────────────────────────────────────────────
# Concurrency
# ─────────────────────────────────────────────────────────────────────────────

@pytest.mark.parametrize("n", [1, 2, 8, 24])
def test_concurrent_submissions_create_exactly_one_ticket(dedup, store, n):
    barrier = threading.Barrier(n)

    def submit(i):
        # Spread the reports over a few metres around the same spot
        point = _north(BHOPAL, (i % 5) * 2.0)
        barrier.wait()
        return dedup.submit(Category.POTHOLE, point, f"report {i}")

    with ThreadPoolExecutor(max_workers=n) as pool:
        results = list(pool.map(submit, range(n)))

    created = [r for r in results if r.created]
    merged = [r for r in results if r.merged]
    assert len(created) == 1
    assert len(merged) == n - 1
    ticket_id = created[0].ticket.ticket_id
    assert all(r.ticket.ticket_id == ticket_id for r in merged)

    tickets = store.list_all()
    assert len(tickets) == 1
    assert tickets[0].report_count == n


def test_region_transaction_blocks_only_overlapping_writers(store):
    held = threading.Event()
    release = threading.Event()

    def holder():
        with store.region_transaction(Category.POTHOLE, BHOPAL, THRESHOLD):
            held.set()
            release.wait(5)

    def enter(category, point):
        entered = threading.Event()

        def run():
            with store.region_transaction(category, point, THRESHOLD):
                entered.set()

        thread = threading.Thread(target=run)
        thread.start()
        return thread, entered

    worker = threading.Thread(target=holder)
    worker.start()
    assert held.wait(5)
    try:
        far_thread, far = enter(Category.POTHOLE, _north(BHOPAL, 1000))
        other_thread, other = enter(Category.GARBAGE, BHOPAL)
        near_thread, near = enter(Category.POTHOLE, _north(BHOPAL, 10))
        assert far.wait(5)
        assert other.wait(5)
        assert not near.wait(0.3)
    finally:
        release.set()
        worker.join()

    assert near.wait(5)
    for thread in (far_thread, other_thread, near_thread):
        thread.join()


@pytest.fixture
def deferred_dedup(tmp_path):
    # Plain pysqlite transactions: lookups take no database write lock, so
    # only the region locks keep racing submissions apart.
    engine = create_engine(
        f"sqlite:///{tmp_path / 'deferred.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    create_tables(engine)
    store = TicketStore(engine, lock_timeout=30)
    yield DedupEngine(store, threshold_m=THRESHOLD)
    store.close()


@pytest.mark.parametrize("n", [8, 24])
def test_region_locks_alone_prevent_duplicate_tickets(deferred_dedup, n):
    barrier = threading.Barrier(n)
    # Straddles a lock-cell corner so the racers lock different cell sets
    corner = Coordinate(23.001, 77.001)

    def submit(i):
        point = _north(corner, (i % 5) * 4.0 - 8.0)
        barrier.wait()
        return deferred_dedup.submit(Category.POTHOLE, point)

    with ThreadPoolExecutor(max_workers=n) as pool:
        results = list(pool.map(submit, range(n)))

    assert sum(r.created for r in results) == 1
    tickets = deferred_dedup.store.list_all()
    assert len(tickets) == 1
    assert tickets[0].report_count == n


def test_concurrent_categories_stay_separate(dedup, store):
    categories = [Category.POTHOLE, Category.GARBAGE, Category.WATER_LEAK, Category.STREET_LIGHT] * 4
    barrier = threading.Barrier(len(categories))

    def submit(category):
        barrier.wait()
        return dedup.submit(category, BHOPAL)

    with ThreadPoolExecutor(max_workers=len(categories)) as pool:
        results = list(pool.map(submit, categories))

    assert sum(r.created for r in results) == 4
    tickets = store.list_all()
    assert sorted(t.category.value for t in tickets) == ["Garbage", "Pothole", "StreetLight", "WaterLeak"]
    assert all(t.report_count == 4 for t in tickets)


def test_counters_never_decrease(dedup, store):
    ticket_id = dedup.submit(Category.POTHOLE, BHOPAL).ticket.ticket_id
    history = []

    def snapshot():
        t = store.get(ticket_id)
        history.append((t.report_count, t.upvotes))

    snapshot()
    for step in range(6):
        if step % 2:
            store.increment_upvotes(ticket_id)
        else:
            dedup.submit(Category.POTHOLE, BHOPAL)
        snapshot()
    store.set_status(ticket_id, TicketStatus.RESOLVED)
    dedup.submit(Category.POTHOLE, BHOPAL)
    snapshot()

    for before, after in zip(history, history[1:]):
        assert after[0] >= before[0]
        assert after[1] >= before[1]
    assert history[-1] == (4, 3)
