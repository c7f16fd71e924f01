# Overview: Pytest coverage for the unit-of-work helper, sequence allocation and racing approvals.

"""
Unit of work tests

The shared in-memory store cannot hold two connections, so most conflict
paths are driven by raising the errors SQLAlchemy would raise. TestRacingApprovals
runs real threads against a file-backed SQLite database instead.
"""

import threading
from types import SimpleNamespace

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm.exc import StaleDataError

from litorder import create_app
from litorder.actor import Actor, ROLE_LOCALITY, ROLE_REGION
from litorder.errors import ConcurrencyConflictError, ValidationError
from litorder.extensions import db
from litorder.models import InventoryRecord, Literature, Order, Organization, OrderEvent, OrderSequence
from litorder.models.organizations import ORG_TYPE_LOCALITY, ORG_TYPE_REGION
from litorder.services import inventory_service, order_service
from litorder.services.concurrency import run_in_unit_of_work
from litorder.services.order_event_service import EVENT_STATUS_CHANGED
from litorder.services.sequence_service import next_order_number, order_number_prefix


class TestRunInUnitOfWork:

    def test_commits_on_success(self, db_session):
        def _op():
            org = Organization(name="North Region", type=ORG_TYPE_REGION)
            db.session.add(org)
            return org

        org = run_in_unit_of_work(_op)
        db_session.expire_all()
        assert db_session.get(Organization, org.id) is not None

    def test_business_error_rolls_back_everything(self, db_session):
        def _op():
            db.session.add(Organization(name="Ghost Region", type=ORG_TYPE_REGION))
            db.session.flush()
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            run_in_unit_of_work(_op)
        assert db_session.query(Organization).filter_by(name="Ghost Region").count() == 0

    def test_stale_data_is_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise StaleDataError("version mismatch")
            return "done"

        assert run_in_unit_of_work(_op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_exhausted_stale_data_becomes_conflict(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            db.session.add(Organization(name="Racing Region", type=ORG_TYPE_REGION))
            db.session.flush()
            raise StaleDataError("version mismatch")

        with pytest.raises(ConcurrencyConflictError) as exc:
            run_in_unit_of_work(_op, attempts=2, backoff_base=0)

        assert len(calls) == 2
        assert exc.value.to_dict()["retryable"] is True
        assert exc.value.status_code == 409
        assert db_session.query(Organization).filter_by(name="Racing Region").count() == 0

    def test_exhausted_operational_error_propagates(self, db_session):
        def _op():
            raise OperationalError("UPDATE inventory_records", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_in_unit_of_work(_op, attempts=2, backoff_base=0)


class TestOrderSequence:

    def test_numbers_are_consecutive_per_day(self, db_session):
        numbers = run_in_unit_of_work(lambda: [next_order_number() for _ in range(3)])

        prefix = order_number_prefix()
        assert numbers == [f"{prefix}-0001", f"{prefix}-0002", f"{prefix}-0003"]
        assert db_session.query(OrderSequence).filter_by(prefix=prefix).one().next_number == 4


@pytest.fixture
def race(tmp_path):
    """
    App on a file-backed SQLite database, so each thread gets its own
    connection. Region holds 100 x Basic Text.
    """
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'race.sqlite3'}",
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'RECEIVE_ON_DELIVERY': True,
        'ENFORCE_ORDER_HIERARCHY': True,
        'UNIT_OF_WORK_ATTEMPTS': 5,
    })

    with app.app_context():
        db.create_all()

        region = Organization(name="Central Region", type=ORG_TYPE_REGION)
        db.session.add(region)
        db.session.flush()
        locality = Organization(name="Riverside Locality", type=ORG_TYPE_LOCALITY, parent_id=region.id)
        literature = Literature(title="Basic Text", category="BOOK", price_cents=2599)
        db.session.add_all([locality, literature])
        db.session.commit()

        run_in_unit_of_work(lambda: inventory_service.receive_incoming(region.id, literature.id, 100))

        yield SimpleNamespace(
            app=app,
            literature_id=literature.id,
            region_id=region.id,
            requester=Actor(user_id=2, role=ROLE_LOCALITY, organization_id=locality.id),
            approver=Actor(user_id=1, role=ROLE_REGION, organization_id=region.id),
        )

        db.session.remove()
        db.engine.dispose()


def _pending_order(race, quantity):
    order = order_service.create_order(
        race.requester,
        from_organization_id=race.requester.organization_id,
        to_organization_id=race.region_id,
        items=[{"literature_id": race.literature_id, "quantity": quantity}],
    )
    return order_service.transition_order(race.requester, order.id, "PENDING").id


def _reads_meet_before_writes(monkeypatch, parties=2):
    """Hold each thread after its first stock read until every thread has read."""
    barrier = threading.Barrier(parties)
    seen = threading.local()
    original = inventory_service._load_records

    def _load_records(organization_id, literature_ids):
        records = original(organization_id, literature_ids)
        if not getattr(seen, "done", False):
            seen.done = True
            barrier.wait(timeout=10)
        return records

    monkeypatch.setattr(inventory_service, "_load_records", _load_records)


def _approve_concurrently(race, order_ids, **kwargs):
    results = {}

    def _approve(slot, order_id):
        with race.app.app_context():
            try:
                order_service.transition_order(race.approver, order_id, "APPROVED", **kwargs)
                results[slot] = "ok"
            except Exception as exc:
                results[slot] = type(exc).__name__

    threads = [threading.Thread(target=_approve, args=(slot, order_id)) for slot, order_id in enumerate(order_ids)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)
    return results


def _region_stock(race):
    db.session.expire_all()
    return db.session.query(InventoryRecord).filter_by(
        organization_id=race.region_id, literature_id=race.literature_id
    ).one()


class TestRacingApprovals:

    def test_competing_orders_cannot_oversell(self, race, monkeypatch):
        first = _pending_order(race, 60)
        second = _pending_order(race, 60)
        _reads_meet_before_writes(monkeypatch)

        results = _approve_concurrently(race, [first, second])

        assert sorted(results.values()) == ["InsufficientInventoryError", "ok"]
        record = _region_stock(race)
        assert (record.quantity, record.reserved_quantity) == (100, 60)

        statuses = sorted(status for (status,) in db.session.query(Order.status).filter(Order.id.in_([first, second])))
        assert statuses == ["APPROVED", "PENDING"]

    def test_same_order_is_reserved_once(self, race, monkeypatch):
        order_id = _pending_order(race, 10)
        _reads_meet_before_writes(monkeypatch)

        results = _approve_concurrently(race, [order_id, order_id], expected_status="PENDING")

        assert results == {0: "ok", 1: "ok"}
        assert _region_stock(race).reserved_quantity == 10

        approvals = db.session.query(OrderEvent).filter_by(
            order_id=order_id, event_type=EVENT_STATUS_CHANGED, to_status="APPROVED"
        ).count()
        assert approvals == 1
