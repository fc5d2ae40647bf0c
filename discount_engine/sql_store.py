from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Iterable, List

from sqlalchemy import Date, Integer, Numeric, String, create_engine, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from discount_engine.errors import DuplicateDiscountError
from discount_engine.models import Discount
from discount_engine.store import DiscountStore

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class DiscountRow(Base):
    __tablename__ = "discounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(64), unique=True, index=True, nullable=False)
    percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)
    remaining_uses: Mapped[int] = mapped_column(Integer, nullable=False)
    quota: Mapped[int] = mapped_column(Integer, nullable=False)
    valid_from: Mapped[date] = mapped_column(Date, nullable=False)
    valid_until: Mapped[date] = mapped_column(Date, nullable=False)

    def to_discount(self) -> Discount:
        return Discount(
            id=self.id,
            code=self.code,
            percentage=self.percentage,
            remaining_uses=self.remaining_uses,
            valid_from=self.valid_from,
            valid_until=self.valid_until,
            quota=self.quota,
        )


class SqlDiscountStore(DiscountStore):
    """
    Relational store. Counter changes are single conditional UPDATE statements,
    so the database serializes concurrent redemptions of the same row.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, url: str, **engine_kwargs) -> "SqlDiscountStore":
        store = cls(create_engine(url, **engine_kwargs))
        store.create_schema()
        return store

    def create_schema(self) -> None:
        Base.metadata.create_all(self.engine)

    def find_all_by_codes(self, codes: Iterable[str]) -> List[Discount]:
        wanted = set(codes)
        if not wanted:
            return []
        with self.session_factory() as session:
            rows = session.scalars(select(DiscountRow).where(DiscountRow.code.in_(wanted)).order_by(DiscountRow.id))
            return [row.to_discount() for row in rows]

    def find_all(self) -> List[Discount]:
        with self.session_factory() as session:
            rows = session.scalars(select(DiscountRow).order_by(DiscountRow.id))
            return [row.to_discount() for row in rows]

    def decrement_if_positive(self, discount_id: int) -> bool:
        stmt = (
            update(DiscountRow)
            .where(DiscountRow.id == discount_id, DiscountRow.remaining_uses > 0)
            .values(remaining_uses=DiscountRow.remaining_uses - 1)
            .execution_options(synchronize_session=False)
        )
        if not self._apply(stmt, discount_id):
            logger.warning("decrement refused: discount id=%s has no remaining uses", discount_id)
            return False
        logger.info("discount redeemed: id=%s", discount_id)
        return True

    def increment_if_below_quota(self, discount_id: int) -> bool:
        stmt = (
            update(DiscountRow)
            .where(DiscountRow.id == discount_id, DiscountRow.remaining_uses < DiscountRow.quota)
            .values(remaining_uses=DiscountRow.remaining_uses + 1)
            .execution_options(synchronize_session=False)
        )
        if not self._apply(stmt, discount_id):
            logger.warning("restore refused: discount id=%s already at quota", discount_id)
            return False
        logger.info("discount use restored: id=%s", discount_id)
        return True

    def add(self, discount: Discount) -> Discount:
        row = DiscountRow(
            id=discount.id,
            code=discount.code,
            percentage=discount.percentage,
            remaining_uses=discount.remaining_uses,
            quota=discount.quota,
            valid_from=discount.valid_from,
            valid_until=discount.valid_until,
        )
        try:
            with self.session_factory.begin() as session:
                session.add(row)
        except IntegrityError as e:
            raise DuplicateDiscountError(discount.id, discount.code) from e
        return row.to_discount()

    def _apply(self, stmt, discount_id: int) -> bool:
        """Run a guarded counter UPDATE; False when the guard held the row back."""
        with self.session_factory.begin() as session:
            if session.execute(stmt).rowcount == 1:
                return True
            if session.get(DiscountRow, discount_id) is None:
                raise KeyError(f"Discount {discount_id} not found")
        return False
