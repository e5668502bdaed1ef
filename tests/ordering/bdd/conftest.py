"""Shared BDD fixtures and step definitions for the Ordering domain."""

import json

import pytest
from ordering.exceptions import ConflictError, IdempotencyViolation, RetriableExternalError
from ordering.order.creation import PlaceOrder
from ordering.order.lifecycle import AcceptOrder, AdvanceOrder, CancelOrder, OverrideOrderStatus
from ordering.order.order import Order
from ordering.shipment.dispatch import run_stage
from protean import current_domain
from protean.exceptions import ObjectNotFoundError, ValidationError
from pytest_bdd import given, parsers, then, when

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "+91 98765 43210",
    "email": "asha@example.com",
    "line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postal_code": "560001",
}

_CAPTURED = (ValidationError, ConflictError, ObjectNotFoundError, RetriableExternalError, IdempotencyViolation)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------
@pytest.fixture()
def error():
    """Container for the exception raised by the last When step."""
    return {"exc": None}


@pytest.fixture()
def attempt(error):
    """Run a callable, capturing domain failures into ``error`` instead of raising."""

    def _attempt(fn, *args, **kwargs):
        error["exc"] = None
        try:
            return fn(*args, **kwargs)
        except _CAPTURED as exc:
            error["exc"] = exc
            return None

    return _attempt


def _process(command):
    return current_domain.process(command, asynchronous=False)


def _order(order_id) -> Order:
    return current_domain.repository_for(Order).get(order_id)


# ---------------------------------------------------------------------------
# Given steps
# ---------------------------------------------------------------------------
@given(
    parsers.cfparse('a "{method}" order for {quantity:d} units at {price:d} paise'),
    target_fixture="order_id",
)
def _(method, quantity, price):
    items = [{"product_id": "prod-001", "name": "Brake Pad", "sku": "BP-001", "quantity": quantity, "unit_price": price}]
    return _process(
        PlaceOrder(
            customer_id="cust-001",
            items=json.dumps(items),
            shipping_address=json.dumps(ADDRESS),
            payment_method=method,
        )
    )


@given(parsers.cfparse('the order status was overridden to "{status}"'))
def _(order_id, status):
    _process(OverrideOrderStatus(order_id=order_id, status=status, justification="Backfilled", actor="ops"))


@given("the carrier is unavailable")
def _(carrier):
    carrier.configure(should_succeed=False, failure_mode="unavailable")


# ---------------------------------------------------------------------------
# When steps
# ---------------------------------------------------------------------------
@when("the order is accepted")
def _(order_id, attempt):
    attempt(_process, AcceptOrder(order_id=order_id))


@when(parsers.cfparse("the order is advanced {times:d} times"))
def _(order_id, attempt, times):
    for _ in range(times):
        attempt(_process, AdvanceOrder(order_id=order_id))


@when("the order is advanced")
def _(order_id, attempt):
    attempt(_process, AdvanceOrder(order_id=order_id))


@when(parsers.cfparse('the order is cancelled with reason "{reason}"'))
def _(order_id, attempt, reason):
    attempt(_process, CancelOrder(order_id=order_id, reason=reason, cancelled_by="cust-001"))


@when(parsers.cfparse('the "{stage}" shipment stage runs'))
def _(order_id, attempt, stage):
    attempt(run_stage, stage, order_id)


# ---------------------------------------------------------------------------
# Then steps
# ---------------------------------------------------------------------------
@then(parsers.cfparse('the order status is "{status}"'))
def _(order_id, status):
    assert _order(order_id).status == status


@then(parsers.cfparse('the payment status is "{status}"'))
def _(order_id, status):
    assert _order(order_id).payment.status == status


@then(parsers.re(r'"(?P<topic>[^"]+)" was announced (?P<count>\d+) times?'), converters={"count": int})
def _(event_bus, topic, count):
    assert len(event_bus.messages(topic)) == count


@then("the command succeeds")
def _(error):
    assert error["exc"] is None


@then("the command fails with a conflict")
def _(error):
    assert isinstance(error["exc"], ConflictError)


@then(parsers.cfparse('the command fails with a validation error on "{field}"'))
def _(error, field):
    assert isinstance(error["exc"], ValidationError)
    assert field in error["exc"].messages
