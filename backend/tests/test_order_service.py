# Overview: Pytest coverage for order creation, item edits, edit lock and lifecycle effects.

import re
from decimal import Decimal

import pytest
from conftest import advance, record_of

from litorder.actor import Actor, ROLE_LOCALITY
from litorder.errors import (
    ConcurrencyConflictError,
    InsufficientInventoryError,
    InvalidTransitionError,
    NotFoundError,
    OrderLockedError,
    PermissionDeniedError,
    ValidationError,
)
from litorder.models import InventoryTransaction, Order, OrderEvent
from litorder.money import cents_to_decimal
from litorder.services import order_service
from litorder.services.order_event_service import EVENT_ORDER_CREATED, EVENT_ORDER_UPDATED, EVENT_STATUS_CHANGED


def _assert_total_invariant(order):
    assert order.total_amount_cents == sum(i.quantity * i.unit_price_cents for i in order.items)


class TestCreateOrder:

    def test_scenario_a_total_from_captured_price(self, db_session, draft_order, basic_text):
        assert draft_order.status == "DRAFT"
        assert draft_order.total_amount_cents == 51980
        assert cents_to_decimal(draft_order.total_amount_cents) == Decimal("519.80")
        assert draft_order.to_dict()["total_amount"] == "519.80"

        item = draft_order.items[0]
        assert item.literature_id == basic_text.id
        assert item.unit_price_cents == 2599
        assert item.total_price_cents == 51980

    def test_order_number_format_and_sequence(self, db_session, draft_order, locality_user, locality, region, pamphlet):
        second = order_service.create_order(
            locality_user,
            from_organization_id=locality.id,
            to_organization_id=region.id,
            items=[{"literature_id": pamphlet.id, "quantity": 1}],
        )
        assert re.fullmatch(r"ORD-\d{8}-\d{4}", draft_order.order_number)
        assert int(second.order_number[-4:]) == int(draft_order.order_number[-4:]) + 1

    def test_price_is_frozen_after_catalog_change(self, db_session, draft_order, basic_text):
        basic_text.price_cents = 9999
        db_session.commit()

        db_session.expire_all()
        order = db_session.get(Order, draft_order.id)
        assert order.items[0].unit_price_cents == 2599
        assert order.total_amount_cents == 51980

    def test_creation_is_recorded(self, db_session, draft_order):
        events = db_session.query(OrderEvent).filter_by(order_id=draft_order.id).all()
        assert [e.event_type for e in events] == [EVENT_ORDER_CREATED]

    @pytest.mark.parametrize("items", [
        [],
        None,
        [{"literature_id": 1, "quantity": 0}],
        [{"literature_id": 1, "quantity": -3}],
        [{"literature_id": 1}],
        [{"literature_id": 1, "quantity": 1}, {"literature_id": 1, "quantity": 2}],
    ])
    def test_invalid_items_rejected(self, db_session, region, locality, locality_user, items):
        with pytest.raises(ValidationError):
            order_service.create_order(
                locality_user,
                from_organization_id=locality.id,
                to_organization_id=region.id,
                items=items,
            )
        assert db_session.query(Order).count() == 0

    def test_to_organization_required(self, db_session, locality_user, basic_text):
        with pytest.raises(ValidationError):
            order_service.create_order(
                locality_user, to_organization_id=None, items=[{"literature_id": basic_text.id, "quantity": 1}]
            )

    def test_unknown_literature(self, db_session, region, locality, locality_user):
        with pytest.raises(NotFoundError):
            order_service.create_order(
                locality_user,
                from_organization_id=locality.id,
                to_organization_id=region.id,
                items=[{"literature_id": 424242, "quantity": 1}],
            )

    def test_unknown_receiver(self, db_session, locality, locality_user, basic_text):
        with pytest.raises(NotFoundError):
            order_service.create_order(
                locality_user,
                from_organization_id=locality.id,
                to_organization_id=424242,
                items=[{"literature_id": basic_text.id, "quantity": 1}],
            )

    def test_inactive_literature_cannot_be_ordered(self, db_session, region, locality, locality_user, retired_title):
        with pytest.raises(ValidationError):
            order_service.create_order(
                locality_user,
                from_organization_id=locality.id,
                to_organization_id=region.id,
                items=[{"literature_id": retired_title.id, "quantity": 1}],
            )

    def test_actor_must_belong_to_requesting_organization(self, db_session, region, locality, outsider, basic_text):
        with pytest.raises(PermissionDeniedError):
            order_service.create_order(
                outsider,
                from_organization_id=locality.id,
                to_organization_id=region.id,
                items=[{"literature_id": basic_text.id, "quantity": 1}],
            )

    def test_admin_may_order_for_any_organization(self, db_session, region, locality, admin, basic_text):
        order = order_service.create_order(
            admin,
            from_organization_id=locality.id,
            to_organization_id=region.id,
            items=[{"literature_id": basic_text.id, "quantity": 1}],
        )
        assert order.created_by_user_id == admin.user_id

    def test_cannot_order_from_itself(self, db_session, region, region_user, basic_text):
        with pytest.raises(ValidationError):
            order_service.create_order(
                region_user,
                from_organization_id=region.id,
                to_organization_id=region.id,
                items=[{"literature_id": basic_text.id, "quantity": 1}],
            )

    def test_hierarchy_rules(self, db_session, app, group, group_user, locality, other_locality, basic_text):
        # Groups order from localities
        order_service.create_order(
            group_user,
            from_organization_id=group.id,
            to_organization_id=locality.id,
            items=[{"literature_id": basic_text.id, "quantity": 1}],
        )

        # Localities do not order from other localities
        sibling = Actor(user_id=5, role=ROLE_LOCALITY, organization_id=other_locality.id)
        with pytest.raises(ValidationError):
            order_service.create_order(
                sibling,
                from_organization_id=other_locality.id,
                to_organization_id=locality.id,
                items=[{"literature_id": basic_text.id, "quantity": 1}],
            )

        app.config["ENFORCE_ORDER_HIERARCHY"] = False
        try:
            order_service.create_order(
                sibling,
                from_organization_id=other_locality.id,
                to_organization_id=locality.id,
                items=[{"literature_id": basic_text.id, "quantity": 1}],
            )
        finally:
            app.config["ENFORCE_ORDER_HIERARCHY"] = True

    def test_supply_order_without_requesting_organization(self, db_session, region_stock, admin, basic_text):
        order = order_service.create_order(
            admin, to_organization_id=region_stock.id, items=[{"literature_id": basic_text.id, "quantity": 5}]
        )
        assert order.from_organization_id is None
        assert order.total_amount_cents == 5 * 2599


class TestVisibility:

    def test_non_party_sees_not_found(self, db_session, draft_order, outsider):
        with pytest.raises(NotFoundError):
            order_service.get_order(outsider, draft_order.id)

    def test_both_parties_and_admin_can_read(self, db_session, draft_order, locality_user, region_user, admin):
        for actor in (locality_user, region_user, admin):
            assert order_service.get_order(actor, draft_order.id).id == draft_order.id

    def test_list_orders_is_scoped(self, db_session, draft_order, locality_user, outsider, admin):
        assert order_service.list_orders(locality_user)["total"] == 1
        assert order_service.list_orders(outsider)["total"] == 0
        assert order_service.list_orders(admin)["total"] == 1

    def test_list_orders_filters_and_paging(self, db_session, draft_order, locality_user, locality, region, pamphlet):
        for _ in range(3):
            order_service.create_order(
                locality_user,
                from_organization_id=locality.id,
                to_organization_id=region.id,
                items=[{"literature_id": pamphlet.id, "quantity": 1}],
            )
        order_service.transition_order(locality_user, draft_order.id, "PENDING")

        pending = order_service.list_orders(locality_user, status="PENDING")
        assert [o.id for o in pending["orders"]] == [draft_order.id]

        page = order_service.list_orders(locality_user, page=2, per_page=3)
        assert page["total"] == 4
        assert len(page["orders"]) == 1

        with pytest.raises(ValidationError):
            order_service.list_orders(locality_user, status="LOST")


class TestLifecycleEffects:

    def test_scenario_b_approval_reserves(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"))

        record = record_of(region.id, basic_text.id)
        assert record.quantity == 100
        assert record.reserved_quantity == 10
        assert record.available_quantity == 90

    def test_scenario_c_shipping_commits(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        order = advance(
            draft_order,
            (locality_user, "PENDING"),
            (region_user, "APPROVED"),
            (region_user, "IN_ASSEMBLY"),
            (region_user, "SHIPPED"),
        )

        record = record_of(region.id, basic_text.id)
        assert record.quantity == 90
        assert record.reserved_quantity == 0

        outgoing = db_session.query(InventoryTransaction).filter_by(order_id=order.id, type="OUTGOING").all()
        assert len(outgoing) == 1
        assert outgoing[0].quantity == 10
        assert outgoing[0].from_organization_id == region.id
        assert outgoing[0].total_amount_cents == 51980

    def test_approval_with_insufficient_stock_changes_nothing(
        self, db_session, region_stock, locality, locality_user, region_user, basic_text, pamphlet
    ):
        order = order_service.create_order(
            locality_user,
            from_organization_id=locality.id,
            to_organization_id=region_stock.id,
            items=[
                {"literature_id": basic_text.id, "quantity": 5},
                {"literature_id": pamphlet.id, "quantity": 51},
            ],
        )
        order_service.transition_order(locality_user, order.id, "PENDING")

        with pytest.raises(InsufficientInventoryError) as exc:
            order_service.transition_order(region_user, order.id, "APPROVED")

        assert exc.value.literature_id == pamphlet.id
        assert exc.value.literature_title == "Introductory Guide"
        assert exc.value.shortfall == 1
        assert record_of(region_stock.id, basic_text.id).reserved_quantity == 0
        assert record_of(region_stock.id, pamphlet.id).reserved_quantity == 0
        assert db_session.get(Order, order.id).status == "PENDING"

    def test_rejecting_approved_order_releases(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"), (region_user, "REJECTED"))

        record = record_of(region.id, basic_text.id)
        assert record.reserved_quantity == 0
        assert record.quantity == 100

    def test_revert_to_approved_keeps_reservation(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        advance(
            draft_order,
            (locality_user, "PENDING"),
            (region_user, "APPROVED"),
            (region_user, "IN_ASSEMBLY"),
            (region_user, "APPROVED"),
        )
        assert record_of(region.id, basic_text.id).reserved_quantity == 10

    def test_delivery_books_incoming_at_requester(
        self, db_session, draft_order, locality_user, region_user, locality, basic_text
    ):
        advance(
            draft_order,
            (locality_user, "PENDING"),
            (region_user, "APPROVED"),
            (region_user, "IN_ASSEMBLY"),
            (region_user, "SHIPPED"),
            (locality_user, "DELIVERED"),
        )

        record = record_of(locality.id, basic_text.id)
        assert record.quantity == 10
        incoming = db_session.query(InventoryTransaction).filter_by(order_id=draft_order.id, type="INCOMING").one()
        assert incoming.to_organization_id == locality.id
        assert incoming.unit_price_cents == 2599

    def test_delivery_receipt_can_be_switched_off(
        self, db_session, app, draft_order, locality_user, region_user, locality, basic_text
    ):
        app.config["RECEIVE_ON_DELIVERY"] = False
        try:
            advance(
                draft_order,
                (locality_user, "PENDING"),
                (region_user, "APPROVED"),
                (region_user, "IN_ASSEMBLY"),
                (region_user, "SHIPPED"),
                (locality_user, "DELIVERED"),
            )
        finally:
            app.config["RECEIVE_ON_DELIVERY"] = True

        assert record_of(locality.id, basic_text.id).quantity == 0
        assert db_session.query(InventoryTransaction).filter_by(order_id=draft_order.id, type="INCOMING").count() == 0

    def test_submitting_empty_draft_fails(self, db_session, draft_order, locality_user, basic_text):
        order_service.remove_item(locality_user, draft_order.id, basic_text.id)

        with pytest.raises(ValidationError):
            order_service.transition_order(locality_user, draft_order.id, "PENDING")

    def test_status_changes_are_recorded(self, db_session, draft_order, locality_user, region_user):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"))

        events = (
            db_session.query(OrderEvent)
            .filter_by(order_id=draft_order.id, event_type=EVENT_STATUS_CHANGED)
            .order_by(OrderEvent.id)
            .all()
        )
        assert [(e.from_status, e.to_status) for e in events] == [("DRAFT", "PENDING"), ("PENDING", "APPROVED")]
        assert events[1].actor_user_id == region_user.user_id


class TestRetryIdempotence:

    def test_retried_approval_reserves_once(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        order_service.transition_order(locality_user, draft_order.id, "PENDING")

        first = order_service.transition_order(region_user, draft_order.id, "APPROVED", expected_status="PENDING")
        second = order_service.transition_order(region_user, draft_order.id, "APPROVED", expected_status="PENDING")

        assert first.status == second.status == "APPROVED"
        assert record_of(region.id, basic_text.id).reserved_quantity == 10
        assert db_session.query(OrderEvent).filter_by(
            order_id=draft_order.id, event_type=EVENT_STATUS_CHANGED, to_status="APPROVED"
        ).count() == 1

    def test_retried_shipment_commits_once(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"), (region_user, "IN_ASSEMBLY"))

        for _ in range(2):
            order_service.transition_order(region_user, draft_order.id, "SHIPPED", expected_status="IN_ASSEMBLY")

        assert record_of(region.id, basic_text.id).quantity == 90
        assert db_session.query(InventoryTransaction).filter_by(order_id=draft_order.id, type="OUTGOING").count() == 1

    def test_stale_view_is_a_conflict(self, db_session, draft_order, locality_user, region_user):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "REJECTED"))

        with pytest.raises(ConcurrencyConflictError):
            order_service.transition_order(region_user, draft_order.id, "APPROVED", expected_status="PENDING")

    def test_second_approval_without_expected_status_fails(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"))

        with pytest.raises(InvalidTransitionError):
            order_service.transition_order(region_user, draft_order.id, "APPROVED")
        assert record_of(region.id, basic_text.id).reserved_quantity == 10


class TestItemEdits:

    def test_add_update_remove_keep_total(self, db_session, draft_order, locality_user, basic_text, pamphlet):
        order = order_service.add_item(locality_user, draft_order.id, pamphlet.id, 4)
        _assert_total_invariant(order)
        assert order.total_amount_cents == 51980 + 1400

        order = order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 2)
        _assert_total_invariant(order)
        assert order.total_amount_cents == 2 * 2599 + 1400

        order = order_service.remove_item(locality_user, draft_order.id, pamphlet.id)
        _assert_total_invariant(order)
        assert [i.literature_id for i in order.items] == [basic_text.id]

    def test_set_items_replaces_lines(self, db_session, draft_order, locality_user, basic_text, pamphlet):
        order = order_service.update_order_items(
            locality_user,
            draft_order.id,
            [{"literature_id": pamphlet.id, "quantity": 3}, {"literature_id": basic_text.id, "quantity": 1}],
        )
        _assert_total_invariant(order)
        assert sorted((i.literature_id, i.quantity) for i in order.items) == sorted(
            [(pamphlet.id, 3), (basic_text.id, 1)]
        )

    def test_quantity_must_be_positive(self, db_session, draft_order, locality_user, basic_text):
        with pytest.raises(ValidationError):
            order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 0)

    def test_duplicate_add_rejected(self, db_session, draft_order, locality_user, basic_text):
        with pytest.raises(ValidationError):
            order_service.add_item(locality_user, draft_order.id, basic_text.id, 1)

    def test_unknown_item(self, db_session, draft_order, locality_user, pamphlet):
        with pytest.raises(NotFoundError):
            order_service.update_item_quantity(locality_user, draft_order.id, pamphlet.id, 2)

    def test_last_item_may_only_go_in_draft(self, db_session, draft_order, locality_user, basic_text):
        order_service.transition_order(locality_user, draft_order.id, "PENDING")

        with pytest.raises(ValidationError):
            order_service.remove_item(locality_user, draft_order.id, basic_text.id)
        assert len(db_session.get(Order, draft_order.id).items) == 1

    def test_structurally_locked_after_assembly(self, db_session, draft_order, locality_user, region_user, basic_text):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"), (region_user, "IN_ASSEMBLY"))

        with pytest.raises(OrderLockedError):
            order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 5)

    def test_outsider_cannot_edit(self, db_session, draft_order, outsider, basic_text):
        with pytest.raises(NotFoundError):
            order_service.update_item_quantity(outsider, draft_order.id, basic_text.id, 5)

    def test_approved_increase_reserves_difference(
        self, db_session, draft_order, locality_user, region_user, region, basic_text, pamphlet
    ):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"))

        order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 25)
        order_service.add_item(locality_user, draft_order.id, pamphlet.id, 5)

        assert record_of(region.id, basic_text.id).reserved_quantity == 25
        assert record_of(region.id, pamphlet.id).reserved_quantity == 5

    def test_approved_decrease_releases_difference(self, db_session, draft_order, locality_user, region_user, region, basic_text):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"))

        order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 4)

        assert record_of(region.id, basic_text.id).reserved_quantity == 4

    def test_approved_increase_beyond_stock_fails_whole_edit(
        self, db_session, draft_order, locality_user, region_user, region, basic_text
    ):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"))

        with pytest.raises(InsufficientInventoryError):
            order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 101)

        db_session.expire_all()
        assert db_session.get(Order, draft_order.id).items[0].quantity == 10
        assert record_of(region.id, basic_text.id).reserved_quantity == 10


class TestUpdateOrder:

    def test_notes_change_is_recorded(self, db_session, draft_order, region_user):
        order = order_service.update_order(region_user, draft_order.id, notes="Ship with the March batch")

        assert order.notes == "Ship with the March batch"
        events = db_session.query(OrderEvent).filter_by(order_id=draft_order.id, event_type=EVENT_ORDER_UPDATED).all()
        assert len(events) == 1
        assert events[0].actor_user_id == region_user.user_id

    def test_edit_lock_blocks_update(self, db_session, draft_order, locality_user, region_user):
        order_service.lock_order(region_user, draft_order.id)

        with pytest.raises(OrderLockedError):
            order_service.update_order(locality_user, draft_order.id, notes="too late")
        with pytest.raises(OrderLockedError):
            order_service.update_order(region_user, draft_order.id, notes="even for the receiver")
        assert db_session.get(Order, draft_order.id).notes is None

        order_service.unlock_order(region_user, draft_order.id)
        assert order_service.update_order(locality_user, draft_order.id, notes="now").notes == "now"

    def test_frozen_after_assembly(self, db_session, draft_order, locality_user, region_user):
        advance(draft_order, (locality_user, "PENDING"), (region_user, "APPROVED"), (region_user, "IN_ASSEMBLY"))

        with pytest.raises(OrderLockedError):
            order_service.update_order(region_user, draft_order.id, notes="packed")

    def test_outsider_cannot_update(self, db_session, draft_order, outsider):
        with pytest.raises(NotFoundError):
            order_service.update_order(outsider, draft_order.id, notes="hello")


class TestEditLock:

    def test_lock_excludes_item_edits_until_unlock(self, db_session, draft_order, locality_user, region_user, basic_text):
        order = order_service.lock_order(region_user, draft_order.id)
        assert order.locked_by_user_id == region_user.user_id
        assert order.is_locked is True
        assert order.is_editable is False

        with pytest.raises(OrderLockedError):
            order_service.update_order_items(
                locality_user, draft_order.id, [{"literature_id": basic_text.id, "quantity": 3}]
            )
        with pytest.raises(OrderLockedError):
            order_service.add_item(locality_user, draft_order.id, basic_text.id + 1000, 1)

        order_service.unlock_order(region_user, draft_order.id)
        order = order_service.update_order_items(
            locality_user, draft_order.id, [{"literature_id": basic_text.id, "quantity": 3}]
        )
        assert order.items[0].quantity == 3

    def test_lock_holds_regardless_of_status(self, db_session, draft_order, locality_user, region_user, basic_text):
        order_service.transition_order(locality_user, draft_order.id, "PENDING")
        order_service.lock_order(region_user, draft_order.id)

        with pytest.raises(OrderLockedError):
            order_service.update_item_quantity(locality_user, draft_order.id, basic_text.id, 1)

    def test_lock_does_not_block_transitions(self, db_session, draft_order, locality_user, region_user):
        order_service.lock_order(region_user, draft_order.id)
        order = order_service.transition_order(locality_user, draft_order.id, "PENDING")
        assert order.status == "PENDING"

    def test_only_receiver_locks(self, db_session, draft_order, locality_user):
        with pytest.raises(PermissionDeniedError):
            order_service.lock_order(locality_user, draft_order.id)

    def test_double_lock_and_spurious_unlock(self, db_session, draft_order, region_user):
        with pytest.raises(ValidationError):
            order_service.unlock_order(region_user, draft_order.id)

        order_service.lock_order(region_user, draft_order.id)
        with pytest.raises(OrderLockedError):
            order_service.lock_order(region_user, draft_order.id)


class TestDeleteAndStatistics:

    def test_requester_deletes_draft(self, db_session, draft_order, locality_user):
        order_service.delete_order(locality_user, draft_order.id)

        assert db_session.query(Order).count() == 0
        assert db_session.query(OrderEvent).count() == 0

    def test_only_drafts_are_deleted(self, db_session, draft_order, locality_user):
        order_service.transition_order(locality_user, draft_order.id, "PENDING")

        with pytest.raises(ValidationError):
            order_service.delete_order(locality_user, draft_order.id)

    def test_receiver_cannot_delete(self, db_session, draft_order, region_user):
        with pytest.raises(PermissionDeniedError):
            order_service.delete_order(region_user, draft_order.id)

    def test_statistics_by_status(self, db_session, draft_order, locality_user, locality, region, pamphlet, admin):
        other = order_service.create_order(
            locality_user,
            from_organization_id=locality.id,
            to_organization_id=region.id,
            items=[{"literature_id": pamphlet.id, "quantity": 2}],
        )
        order_service.transition_order(locality_user, other.id, "PENDING")

        stats = order_service.get_order_statistics(admin)
        assert stats["total_orders"] == 2
        assert stats["by_status"]["DRAFT"]["count"] == 1
        assert stats["by_status"]["PENDING"]["total_amount_cents"] == 700
        assert stats["by_status"]["COMPLETED"]["count"] == 0
        assert stats["total_amount_cents"] == 51980 + 700

        scoped = order_service.get_order_statistics(locality_user, organization_id=locality.id)
        assert scoped["total_orders"] == 2

    def test_statistics_for_foreign_organization_denied(self, db_session, draft_order, outsider, locality):
        with pytest.raises(PermissionDeniedError):
            order_service.get_order_statistics(outsider, organization_id=locality.id)
