# src/idle_counter/models/counter.py
"""Singleton counter record."""

from datetime import datetime

from sqlalchemy import BigInteger, CheckConstraint, DateTime, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from idle_counter.db.session import Base

# The counter lives at a fixed primary key so concurrent first readers collide
# on insert instead of creating two rows.
SINGLETON_SLOT = 1


class CounterRecord(Base):
    """The one shared counter.

    ``version`` is bumped by every committed update and acts as the
    compare-and-set token for optimistic concurrency.
    """

    __tablename__ = "counter"
    __table_args__ = (CheckConstraint("value >= 0", name="ck_counter_value_non_negative"),)

    slot: Mapped[int] = mapped_column(Integer, primary_key=True, default=SINGLETON_SLOT)
    counter_id: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_updated: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    version: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
