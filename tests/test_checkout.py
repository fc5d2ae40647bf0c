"""Tests for checkout orchestration on top of the discount engine."""
import logging
from unittest import mock

import pytest
from sqlalchemy.exc import OperationalError

from discount_engine.checkout import CheckoutSaga
from discount_engine.errors import DiscountExpiredError
from discount_engine.models import CheckoutRequest

# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)


def _order_logs(saga, order_id: int) -> list[str]:
    return [line for line in saga.logs if f"[order={order_id}]" in line]


def _remaining(store, code: str) -> int:
    return store.find_all_by_codes([code])[0].remaining_uses


class Charges:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.calls = []

    def __call__(self, discounts):
        self.calls.append([d.code for d in discounts])
        if self.fail:
            raise RuntimeError("card declined")


def test_checkout_without_codes(service):
    """Checkout with no codes skips redemption and still charges."""
    saga = CheckoutSaga(service)
    charge = Charges()

    result = saga.execute(CheckoutRequest(order_id=1, codes=[]), charge)

    assert result.success is True
    assert result.discounts == []
    assert charge.calls == [[]]

    logs = _order_logs(saga, 1)
    assert any("STEP RedeemDiscounts" in l for l in logs) is False
    assert any("STEP ChargeOrder OK" in l for l in logs)
    assert any("CHECKOUT OK" in l for l in logs)


def test_checkout_with_codes_consumes_uses(service, any_store):
    """Successful checkout takes one use of every code."""
    saga = CheckoutSaga(service)
    charge = Charges()

    result = saga.execute(CheckoutRequest(order_id=2, codes=["VALID10", "MULTI1"]), charge)

    assert result.success is True
    assert charge.calls == [["VALID10", "MULTI1"]]
    assert _remaining(any_store, "VALID10") == 4
    assert _remaining(any_store, "MULTI1") == 2

    logs = _order_logs(saga, 2)
    assert any("STEP RedeemDiscounts OK" in l for l in logs)
    assert any("STEP FinalizeOrder OK" in l for l in logs)


def test_invalid_code_rejects_checkout(service, any_store):
    """Validation errors reach the caller and nothing is consumed or charged."""
    saga = CheckoutSaga(service)
    charge = Charges()

    with pytest.raises(DiscountExpiredError, match="discount has expired"):
        saga.execute(CheckoutRequest(order_id=3, codes=["VALID10", "EXPIRED20"]), charge)

    assert charge.calls == []
    assert _remaining(any_store, "VALID10") == 5
    assert any("STEP" in l for l in _order_logs(saga, 3)) is False


def test_failed_charge_restores_uses(service, any_store):
    """A declined charge compensates the redemption."""
    saga = CheckoutSaga(service)

    result = saga.execute(CheckoutRequest(order_id=4, codes=["VALID10"]), Charges(fail=True))

    assert result.success is False
    assert isinstance(result.error, RuntimeError)
    assert _remaining(any_store, "VALID10") == 5

    logs = _order_logs(saga, 4)
    assert any("CHECKOUT FAILED: card declined" in l for l in logs)
    assert any("COMPENSATE RedeemDiscounts OK" in l for l in logs)
    assert any("COMPENSATE ChargeOrder" in l for l in logs) is False


def test_lost_race_restores_partial_redemption(service, any_store):
    """Losing the last use of one code gives back the uses already taken."""
    saga = CheckoutSaga(service)
    # Another checkout takes ONETIME between validation and redemption.
    original = service.validate_and_get_discounts

    def validate_then_lose_race(codes):
        discounts = original(codes)
        service.update_discount_usage(original(["ONETIME"]))
        return discounts

    charge = Charges()
    with mock.patch.object(service, "validate_and_get_discounts", side_effect=validate_then_lose_race):
        result = saga.execute(CheckoutRequest(order_id=5, codes=["MULTI1", "ONETIME", "MULTI2"]), charge)

    assert result.success is False
    assert result.error.code == "ONETIME"
    assert charge.calls == []
    assert _remaining(any_store, "MULTI1") == 3
    assert _remaining(any_store, "MULTI2") == 2
    assert _remaining(any_store, "ONETIME") == 0

    logs = _order_logs(saga, 5)
    assert any("discount uses restored: MULTI1" in l for l in logs)


def test_store_outage_mid_redemption_restores_taken_uses(service, any_store):
    """An infrastructure error after some codes were redeemed still gives their uses back."""
    saga = CheckoutSaga(service)
    outage = OperationalError("UPDATE discounts", {}, Exception("server closed the connection"))
    decrement = any_store.decrement_if_positive
    calls = []

    def fail_second_decrement(discount_id):
        calls.append(discount_id)
        if len(calls) == 2:
            raise outage
        return decrement(discount_id)

    charge = Charges()
    with mock.patch.object(any_store, "decrement_if_positive", side_effect=fail_second_decrement):
        result = saga.execute(CheckoutRequest(order_id=7, codes=["MULTI1", "MULTI2"]), charge)

    assert result.success is False
    assert result.error is outage
    assert charge.calls == []
    assert _remaining(any_store, "MULTI1") == 3
    assert _remaining(any_store, "MULTI2") == 2

    logs = _order_logs(saga, 7)
    assert any("discount uses restored: MULTI1" in l for l in logs)
    assert any("COMPENSATE RedeemDiscounts OK" in l for l in logs)

def test_artificial_failure_at_finalize(service, any_store):
    """Late failure compensates every completed step."""
    saga = CheckoutSaga(service)

    result = saga.execute(
        CheckoutRequest(order_id=6, codes=["MULTI2"]),
        Charges(),
        fail_at_step="FinalizeOrder",
    )

    assert result.success is False
    assert _remaining(any_store, "MULTI2") == 2

    logs = _order_logs(saga, 6)
    assert any("COMPENSATE ChargeOrder OK" in l for l in logs)
    assert any("COMPENSATE RedeemDiscounts OK" in l for l in logs)
    assert any("CHECKOUT END (failed)" in l for l in logs)
