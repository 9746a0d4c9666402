"""Read-only access to opportunities, accounts and users.

The analytics functions only need the :class:`OpportunityReader` shape, so
anything exposing the three coroutines below can stand in for the database
(a fixture list in tests, a pre-loaded snapshot, ...).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from pipeline_forecast.analytics.common import as_utc
from pipeline_forecast.db.models import Account, Opportunity, User

logger = logging.getLogger(__name__)

OPEN_STAGES = ("prospecting", "qualification", "proposal", "negotiation")
CLOSED_STAGES = ("closed_won", "closed_lost")


@dataclass(frozen=True)
class OpportunityFilter:
    """Server-side filter for opportunity reads. All bounds are inclusive."""
    stages: tuple[str, ...] | None = None
    owner_id: str | None = None
    updated_from: datetime | None = None
    updated_to: datetime | None = None
    close_from: datetime | None = None
    close_to: datetime | None = None
    has_close_date: bool = False

    def matches(self, opp) -> bool:
        """Apply the filter in memory, with the same semantics as the SQL."""
        if self.stages is not None and opp.stage not in self.stages:
            return False
        if self.owner_id is not None and opp.owner_id != self.owner_id:
            return False
        updated = as_utc(opp.updated_at)
        if self.updated_from is not None and (updated is None or updated < as_utc(self.updated_from)):
            return False
        if self.updated_to is not None and (updated is None or updated > as_utc(self.updated_to)):
            return False
        close = as_utc(opp.close_date)
        needs_close = self.has_close_date or self.close_from is not None or self.close_to is not None
        if needs_close and close is None:
            return False
        if self.close_from is not None and close < as_utc(self.close_from):
            return False
        if self.close_to is not None and close > as_utc(self.close_to):
            return False
        return True


class OpportunityReader(Protocol):
    """Store-read contract the analytics layer depends on."""

    async def get_opportunities(
        self, criteria: OpportunityFilter | None = None,
    ) -> Sequence[Opportunity]: ...

    async def get_accounts(self) -> Sequence[Account]: ...

    async def get_users(self) -> Sequence[User]: ...


class SqlOpportunityStore:
    """OpportunityReader backed by the CRM database.

    Every read opens its own session so callers may run reads concurrently
    (an AsyncSession can only execute one statement at a time).  Database
    errors propagate unchanged; retry policy belongs to the caller.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_opportunities(
        self, criteria: OpportunityFilter | None = None,
    ) -> list[Opportunity]:
        q = select(Opportunity)
        if criteria is not None:
            q = _apply_filter(q, criteria)
        async with self._session_factory() as session:
            result = await session.execute(q)
            rows = list(result.scalars().all())
        logger.debug("Fetched %d opportunities (criteria=%s)", len(rows), criteria)
        return rows

    async def get_accounts(self) -> list[Account]:
        async with self._session_factory() as session:
            result = await session.execute(select(Account))
            return list(result.scalars().all())

    async def get_users(self) -> list[User]:
        async with self._session_factory() as session:
            result = await session.execute(select(User).order_by(User.name))
            return list(result.scalars().all())


def _apply_filter(q, f: OpportunityFilter):
    """Translate an OpportunityFilter into WHERE clauses."""
    if f.stages is not None:
        q = q.where(Opportunity.stage.in_(f.stages))
    if f.owner_id is not None:
        q = q.where(Opportunity.owner_id == f.owner_id)
    if f.updated_from is not None:
        q = q.where(Opportunity.updated_at >= f.updated_from)
    if f.updated_to is not None:
        q = q.where(Opportunity.updated_at <= f.updated_to)
    if f.has_close_date:
        q = q.where(Opportunity.close_date.is_not(None))
    if f.close_from is not None:
        q = q.where(Opportunity.close_date >= f.close_from)
    if f.close_to is not None:
        q = q.where(Opportunity.close_date <= f.close_to)
    return q


class SnapshotStore:
    """OpportunityReader over records that are already in memory.

    Lets the analytics run against a frozen snapshot (an export, a
    backtest fixture) with the same filter semantics as the database.
    """

    def __init__(
        self,
        opportunities: Sequence = (),
        accounts: Sequence = (),
        users: Sequence = (),
    ):
        self._opportunities = list(opportunities)
        self._accounts = list(accounts)
        self._users = list(users)

    async def get_opportunities(self, criteria: OpportunityFilter | None = None) -> list:
        if criteria is None:
            return list(self._opportunities)
        return [o for o in self._opportunities if criteria.matches(o)]

    async def get_accounts(self) -> list:
        return list(self._accounts)

    async def get_users(self) -> list:
        return list(self._users)
