"""Pytest fixtures: seeded discount stores and a service with a fixed clock."""

from datetime import date, timedelta
from decimal import Decimal

import pytest

from discount_engine.services import DiscountService
from discount_engine.sql_store import SqlDiscountStore
from discount_engine.store import DiscountStore, InMemoryDiscountStore

TODAY = date(2024, 6, 15)


def seed(store: DiscountStore) -> DiscountStore:
    day = timedelta(days=1)
    store.add_discount("VALID10", 5, Decimal("10.00"), TODAY - day, TODAY + 30 * day)
    store.add_discount("EXPIRED20", 3, Decimal("20.00"), TODAY - 30 * day, TODAY - day)
    store.add_discount("FUTURE15", 2, Decimal("15.00"), TODAY + day, TODAY + 30 * day)
    store.add_discount("NOUSE25", 0, Decimal("25.00"), TODAY - day, TODAY + 30 * day)
    store.add_discount("ONETIME", 1, Decimal("50.00"), TODAY - day, TODAY + 30 * day)
    store.add_discount("MULTI1", 3, Decimal("10.00"), TODAY - day, TODAY + 30 * day)
    store.add_discount("MULTI2", 2, Decimal("15.00"), TODAY - day, TODAY + 30 * day)
    store.add_discount("LASTDAY", 1, Decimal("5.00"), TODAY - 10 * day, TODAY)
    store.add_discount("FIRSTDAY", 1, Decimal("5.00"), TODAY, TODAY + 10 * day)
    return store


@pytest.fixture
def today() -> date:
    return TODAY


@pytest.fixture
def store() -> InMemoryDiscountStore:
    return seed(InMemoryDiscountStore())


@pytest.fixture
def sql_store(tmp_path) -> SqlDiscountStore:
    url = f"sqlite:///{tmp_path / 'discounts.db'}"
    store = SqlDiscountStore.from_url(url, connect_args={"timeout": 30})
    yield seed(store)
    store.engine.dispose()


@pytest.fixture(params=["memory", "sql"])
def any_store(request) -> DiscountStore:
    """Runs a test once per store implementation."""
    return request.getfixturevalue("store" if request.param == "memory" else "sql_store")


@pytest.fixture
def service(any_store) -> DiscountService:
    return DiscountService(any_store, clock=lambda: TODAY)
