from __future__ import annotations

import datetime
import logging
import uuid
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from signaldesk.db.models import AlphaSignal, Portfolio, PortfolioHistory, SignalAttribution
from signaldesk.schemas import signals as schemas
from signaldesk.schemas.portfolio import (
    Holding,
    PortfolioHistoryEntry,
    PortfolioRequest,
    PortfolioResponse,
)


logger = logging.getLogger(__name__)


class PortfolioStore(Protocol):
    async def get_portfolio(self, user_id: str) -> PortfolioResponse | None: ...


class SignalRepository(Protocol):
    async def recent_signals(
        self, user_id: str, since: datetime.datetime
    ) -> list[schemas.AlphaSignal]: ...

    async def save_signal(self, signal: schemas.AlphaSignal) -> schemas.AlphaSignal | None: ...

    async def list_attributions(
        self, user_id: str, signal_id: uuid.UUID
    ) -> list[schemas.Attribution]: ...


def _portfolio_response(row: Portfolio) -> PortfolioResponse:
    return PortfolioResponse(
        user_id=row.user_id,
        holdings=[Holding.model_validate(item) for item in row.holdings or []],
        total_value=row.total_value,
        method=row.method,
        version=row.version,
        updated_at=row.updated_at,
    )


def _history_entry(row: PortfolioHistory) -> PortfolioHistoryEntry:
    return PortfolioHistoryEntry(
        version=row.version,
        holdings=[Holding.model_validate(item) for item in row.holdings or []],
        total_value=row.total_value,
        method=row.method,
        action=row.action,
        updated_at=row.updated_at,
        recorded_at=row.recorded_at,
    )


def _snapshot(row: Portfolio, action: str, now: datetime.datetime) -> PortfolioHistory:
    return PortfolioHistory(
        id=uuid.uuid4(),
        user_id=row.user_id,
        version=row.version,
        holdings=list(row.holdings or []),
        total_value=row.total_value,
        method=row.method,
        action=action,
        updated_at=row.updated_at,
        recorded_at=now,
    )


def _total_value(payload: PortfolioRequest) -> float:
    if payload.total_value is not None:
        return payload.total_value
    return sum(holding.shares * holding.avg_cost for holding in payload.holdings)


class SqlPortfolioStore:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_portfolio(self, user_id: str) -> PortfolioResponse | None:
        row = await self.session.get(Portfolio, user_id)
        if row is None:
            return None
        return _portfolio_response(row)

    async def save_portfolio(self, user_id: str, payload: PortfolioRequest) -> PortfolioResponse:
        holdings = [holding.model_dump() for holding in payload.holdings]
        total_value = _total_value(payload)
        now = datetime.datetime.now(datetime.UTC)

        stmt = insert(Portfolio).values(
            user_id=user_id,
            holdings=holdings,
            total_value=total_value,
            method=payload.method,
            version=1,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[Portfolio.user_id],
            set_={
                Portfolio.holdings: holdings,
                Portfolio.total_value: total_value,
                Portfolio.method: payload.method,
                Portfolio.version: Portfolio.version + 1,
                Portfolio.updated_at: now,
            },
        )
        await self.session.execute(stmt)
        await self.session.commit()

        result = await self.session.execute(select(Portfolio).where(Portfolio.user_id == user_id))
        row = result.scalar_one()
        await self.session.refresh(row)
        return _portfolio_response(row)

    async def update_portfolio(
        self, user_id: str, payload: PortfolioRequest
    ) -> PortfolioResponse | None:
        """Replace the stored portfolio, keeping the previous version in history."""
        row = await self.session.get(Portfolio, user_id)
        if row is None:
            return None
        now = datetime.datetime.now(datetime.UTC)
        self.session.add(_snapshot(row, "update", now))

        row.holdings = [holding.model_dump() for holding in payload.holdings]
        row.total_value = _total_value(payload)
        row.method = payload.method
        row.version = (row.version or 0) + 1
        row.updated_at = now
        await self.session.commit()
        await self.session.refresh(row)
        return _portfolio_response(row)

    async def delete_portfolio(self, user_id: str) -> bool:
        row = await self.session.get(Portfolio, user_id)
        if row is None:
            return False
        self.session.add(_snapshot(row, "delete", datetime.datetime.now(datetime.UTC)))
        await self.session.delete(row)
        await self.session.commit()
        return True

    async def list_history(
        self,
        user_id: str,
        limit: int | None = 10,
        since: datetime.datetime | None = None,
    ) -> list[PortfolioHistoryEntry]:
        stmt = select(PortfolioHistory).where(PortfolioHistory.user_id == user_id)
        if since is not None:
            stmt = stmt.where(PortfolioHistory.recorded_at >= since)
        result = await self.session.execute(
            stmt.order_by(PortfolioHistory.recorded_at.desc()).limit(limit)
        )
        return [_history_entry(row) for row in result.scalars().all()]


class SqlSignalRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def recent_signals(
        self, user_id: str, since: datetime.datetime
    ) -> list[schemas.AlphaSignal]:
        result = await self.session.execute(
            select(AlphaSignal)
            .where(AlphaSignal.user_id == user_id, AlphaSignal.created_at >= since)
            .order_by(AlphaSignal.created_at.asc())
        )
        return [schemas.AlphaSignal.model_validate(row) for row in result.scalars().all()]

    async def save_signal(self, signal: schemas.AlphaSignal) -> schemas.AlphaSignal | None:
        row = AlphaSignal(
            id=uuid.uuid4(),
            user_id=signal.user_id,
            asset=signal.asset,
            direction=signal.direction,
            confidence=signal.confidence,
            time_horizon=signal.time_horizon,
            insight=signal.insight,
            sources=signal.sources,
            category=signal.category,
            source=signal.source,
            provider=signal.provider,
            batch_source=signal.batch_source,
            batch_reason=signal.batch_reason,
            created_at=signal.created_at or datetime.datetime.now(datetime.UTC),
        )
        row.attributions = [
            SignalAttribution(
                id=uuid.uuid4(),
                source=attribution.source,
                title=attribution.title,
                snippet=attribution.snippet,
                url=attribution.url,
                published_at=attribution.published_at,
            )
            for attribution in signal.attributions
        ]
        self.session.add(row)
        try:
            await self.session.commit()
        except SQLAlchemyError:
            await self.session.rollback()
            logger.exception("Failed to persist signal for %s/%s", signal.user_id, signal.asset)
            return None
        return schemas.AlphaSignal.model_validate(row)

    async def list_attributions(
        self, user_id: str, signal_id: uuid.UUID
    ) -> list[schemas.Attribution]:
        result = await self.session.execute(
            select(SignalAttribution)
            .join(AlphaSignal, SignalAttribution.signal_id == AlphaSignal.id)
            .where(SignalAttribution.signal_id == signal_id, AlphaSignal.user_id == user_id)
            .order_by(SignalAttribution.published_at.desc())
        )
        return [schemas.Attribution.model_validate(row) for row in result.scalars().all()]
