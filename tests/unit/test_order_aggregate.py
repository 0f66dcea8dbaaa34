"""
Unit tests for the Order aggregate and its state machine.
"""

import random
from uuid import uuid4

import pytest

from checkoutsaga.aggregates.order import ALLOWED_TRANSITIONS, Order, OrderLine, OrderStatus
from checkoutsaga.exceptions import InvalidLineError, InvalidStateError, InvalidTransitionError


def line(product_id: str = "A", price: int = 500, qty: int = 2) -> OrderLine:
    return OrderLine(product_id=product_id, unit_price_cents=price, quantity=qty)


def placed_order(*lines: OrderLine) -> Order:
    order = Order.start("user-1")
    order.add_lines(lines or [line()])
    order.place()
    return order


# =============================================================================
# Construction
# =============================================================================


class TestOrderStart:
    """Tests for Order.start."""

    def test_starts_in_draft(self) -> None:
        order = Order.start("user-1")

        assert order.status == OrderStatus.DRAFT
        assert order.user_id == "user-1"
        assert order.lines == ()
        assert order.total_cents == 0
        assert order.version == 0

    def test_uses_given_order_id(self) -> None:
        order_id = uuid4()
        order = Order.start("user-1", order_id=order_id)

        assert order.order_id == order_id
        assert order.aggregate_id == order_id

    def test_new_order_has_changes(self) -> None:
        assert Order.start("user-1").has_changes


class TestAddLines:
    """Tests for adding lines and computing the total."""

    def test_total_is_sum_of_subtotals(self) -> None:
        order = Order.start("user-1")
        order.add_lines([line("A", 500, 2), line("B", 125, 3)])

        assert order.total_cents == 500 * 2 + 125 * 3
        assert len(order.lines) == 2

    def test_lines_accumulate(self) -> None:
        order = Order.start("user-1")
        order.add_lines([line("A", 500, 1)])
        order.add_lines([line("B", 100, 1)])

        assert [ln.product_id for ln in order.lines] == ["A", "B"]
        assert order.total_cents == 600

    def test_zero_price_is_allowed(self) -> None:
        order = Order.start("user-1")
        order.add_lines([line("FREEBIE", 0, 1)])

        assert order.total_cents == 0

    @pytest.mark.parametrize(
        "bad_line, reason",
        [
            (line("A", 500, 0), "quantity"),
            (line("A", 500, -1), "quantity"),
            (line("A", -1, 1), "price"),
            (line("", 500, 1), "product id"),
        ],
    )
    def test_rejects_invalid_lines(self, bad_line: OrderLine, reason: str) -> None:
        order = Order.start("user-1")

        with pytest.raises(InvalidLineError) as exc_info:
            order.add_lines([bad_line])

        assert reason in exc_info.value.reason
        assert order.lines == ()

    def test_invalid_line_rejects_whole_batch(self) -> None:
        order = Order.start("user-1")

        with pytest.raises(InvalidLineError):
            order.add_lines([line("A", 500, 1), line("B", 500, 0)])

        assert order.lines == ()
        assert order.total_cents == 0

    def test_cannot_add_lines_after_placing(self) -> None:
        order = placed_order()

        with pytest.raises(InvalidStateError):
            order.add_lines([line("B")])


class TestTotalProperty:
    """total_cents equals the sum of line subtotals for any valid cart."""

    def test_total_matches_subtotals_for_random_carts(self) -> None:
        rng = random.Random(20240611)
        for _ in range(200):
            items = [
                line(f"P{rng.randint(1, 50)}", rng.randint(0, 100_000), rng.randint(1, 20))
                for _ in range(rng.randint(1, 12))
            ]
            order = Order.start("user-1")
            order.add_lines(items)

            assert order.total_cents == sum(i.unit_price_cents * i.quantity for i in items)
            assert order.snapshot().total_cents == order.total_cents


# =============================================================================
# State machine
# =============================================================================


class TestPlace:
    def test_draft_to_placed(self) -> None:
        order = placed_order()
        assert order.status == OrderStatus.PLACED

    def test_cannot_place_without_lines(self) -> None:
        order = Order.start("user-1")

        with pytest.raises(InvalidStateError):
            order.place()

    def test_cannot_place_twice(self) -> None:
        order = placed_order()

        with pytest.raises(InvalidStateError):
            order.place()


class TestTransitions:
    """Tests for the payment, fulfilment and cancellation transitions."""

    def test_happy_path(self) -> None:
        order = placed_order()
        order.mark_payment_pending()
        order.mark_paid()
        order.fulfill()

        assert order.status == OrderStatus.FULFILLED
        assert order.is_terminal

    def test_payment_failure_records_reason(self) -> None:
        order = placed_order()
        order.mark_payment_pending()
        order.mark_payment_failed("card_declined")

        assert order.status == OrderStatus.PAYMENT_FAILED
        assert order.failure_reason == "card_declined"

    def test_retry_after_failure_clears_reason(self) -> None:
        order = placed_order()
        order.mark_payment_pending()
        order.mark_payment_failed("card_declined")
        order.mark_payment_pending()

        assert order.status == OrderStatus.PAYMENT_PENDING
        assert order.failure_reason is None

    @pytest.mark.parametrize(
        "prepare",
        [
            lambda o: None,
            lambda o: o.mark_payment_pending(),
            lambda o: (o.mark_payment_pending(), o.mark_payment_failed("timeout")),
        ],
        ids=["placed", "payment_pending", "payment_failed"],
    )
    def test_cancel_allowed_before_payment(self, prepare) -> None:
        order = placed_order()
        prepare(order)

        order.cancel("changed_mind")

        assert order.status == OrderStatus.CANCELLED
        assert order.cancellation_reason == "changed_mind"

    def test_cancel_defaults_reason(self) -> None:
        order = placed_order()
        order.cancel()

        assert order.cancellation_reason == "customer_request"

    def test_cannot_cancel_fulfilled(self) -> None:
        order = placed_order()
        order.mark_payment_pending()
        order.mark_paid()
        order.fulfill()

        with pytest.raises(InvalidTransitionError) as exc_info:
            order.cancel()

        assert exc_info.value.from_status == "Fulfilled"
        assert exc_info.value.to_status == "Cancelled"

    def test_cannot_pay_without_pending(self) -> None:
        order = placed_order()

        with pytest.raises(InvalidTransitionError):
            order.mark_paid()

    def test_cannot_fulfil_unpaid(self) -> None:
        order = placed_order()
        order.mark_payment_pending()

        with pytest.raises(InvalidTransitionError):
            order.fulfill()

    def test_terminal_states_have_no_exits(self) -> None:
        assert ALLOWED_TRANSITIONS[OrderStatus.FULFILLED] == frozenset()
        assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()

    def test_every_status_has_a_transition_entry(self) -> None:
        assert set(ALLOWED_TRANSITIONS) == set(OrderStatus)

    def test_can_transition_to(self) -> None:
        order = placed_order()

        assert order.can_transition_to(OrderStatus.PAYMENT_PENDING)
        assert order.can_transition_to(OrderStatus.CANCELLED)
        assert not order.can_transition_to(OrderStatus.PAID)


# =============================================================================
# Snapshots and records
# =============================================================================


class TestSnapshotAndRecord:
    def test_snapshot_copies_order_data(self) -> None:
        order = placed_order(line("A", 500, 2))
        snapshot = order.snapshot()

        assert snapshot.order_id == order.order_id
        assert snapshot.user_id == "user-1"
        assert snapshot.lines == order.lines
        assert snapshot.total_cents == 1000

    def test_snapshot_is_frozen(self) -> None:
        snapshot = placed_order().snapshot()

        with pytest.raises(ValueError):
            snapshot.total_cents = 1  # type: ignore[misc]

    def test_record_round_trip_preserves_state(self) -> None:
        order = placed_order(line("A", 500, 2), line("B", 100, 1))
        order.mark_payment_pending()
        order.mark_payment_failed("card_declined")

        restored = Order.from_record(order.order_id, order.to_record(), version=3)

        assert restored.status == OrderStatus.PAYMENT_FAILED
        assert restored.failure_reason == "card_declined"
        assert restored.lines == order.lines
        assert restored.total_cents == 1100
        assert restored.version == 3
        assert not restored.has_changes

    def test_record_is_json_compatible(self) -> None:
        record = placed_order().to_record()

        assert record["status"] == "Placed"
        assert isinstance(record["order_id"], str)

    def test_mark_committed_clears_changes(self) -> None:
        order = placed_order()
        order.mark_committed(1)

        assert order.version == 1
        assert not order.has_changes
