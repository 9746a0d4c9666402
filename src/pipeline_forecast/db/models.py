"""ORM models mirroring the CRM tables the forecasting engine reads.

The CRM application owns these tables (and their migrations); only the
columns the engine needs are mapped here.
"""

from sqlalchemy import Column, DateTime, Integer, Numeric, String, Text, func
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class User(Base):
    """Sales representative (any CRM user can own opportunities)."""

    __tablename__ = "users"

    id = Column(String(50), primary_key=True)
    email = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class Account(Base):
    """Customer account; used for display joins only."""

    __tablename__ = "accounts"

    id = Column(String(100), primary_key=True)  # ACCT-2025-00001
    name = Column(Text, nullable=False)
    owner_id = Column(String(50), nullable=False)


class Opportunity(Base):
    """Sales opportunity snapshot.

    ``updated_at`` doubles as the close timestamp for closed_won/closed_lost
    rows and as the last-touched timestamp for open ones.
    """

    __tablename__ = "opportunities"

    id = Column(String(100), primary_key=True)  # OPP-2025-000001
    account_id = Column(String(100), nullable=False, index=True)
    owner_id = Column(String(50), nullable=False, index=True)
    name = Column(Text, nullable=False, default="")
    stage = Column(String(32), nullable=False, default="prospecting", index=True)
    amount = Column(Numeric(15, 2, asdecimal=True), nullable=True)
    probability = Column(Integer, nullable=True)  # 0-100 override
    close_date = Column(DateTime(timezone=True), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
