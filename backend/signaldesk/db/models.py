# backend/signaldesk/db/models.py

import datetime
import uuid

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class Portfolio(Base):
    __tablename__ = "portfolios"

    user_id = Column(String, primary_key=True)
    holdings = Column("holdings_json", JSONB, nullable=False, default=list)
    total_value = Column(Float, nullable=False, default=0.0)
    method = Column(String, nullable=False, default="manual")
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def __repr__(self):
        return f"<Portfolio(user_id='{self.user_id}', version={self.version})>"


class PortfolioHistory(Base):
    __tablename__ = "portfolio_history"

    # One row per replaced or deleted portfolio version.
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    version = Column(Integer, nullable=False)
    holdings = Column("holdings_json", JSONB, nullable=False, default=list)
    total_value = Column(Float, nullable=False, default=0.0)
    method = Column(String, nullable=False)
    action = Column(String, nullable=False)
    updated_at = Column(DateTime(timezone=True))
    recorded_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    def __repr__(self):
        return (
            f"<PortfolioHistory(user_id='{self.user_id}', "
            f"version={self.version}, action='{self.action}')>"
        )


class AlphaSignal(Base):
    __tablename__ = "alpha_signals"

    # Rows are history; regenerations append, never update.
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id = Column(String, nullable=False, index=True)
    asset = Column(String, nullable=False, index=True)
    direction = Column(String, nullable=False)
    confidence = Column(Float, nullable=False)
    time_horizon = Column(String, nullable=False)
    insight = Column(Text, nullable=False)
    sources = Column(Integer, nullable=False, default=0)
    category = Column(String, nullable=False)
    source = Column(String, nullable=False)
    provider = Column(String, nullable=False)
    # Provenance of the whole generation run, replayed during the cooldown.
    batch_source = Column(String, nullable=False, default="live")
    batch_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), default=_utcnow, index=True)

    attributions = relationship(
        "SignalAttribution",
        back_populates="signal",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    def __repr__(self):
        return f"<AlphaSignal(asset='{self.asset}', direction='{self.direction}')>"


class SignalAttribution(Base):
    __tablename__ = "signal_attributions"

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    signal_id = Column(
        UUID(as_uuid=True), ForeignKey("alpha_signals.id"), nullable=False, index=True
    )
    source = Column(String)
    title = Column(Text, nullable=False)
    snippet = Column(Text)
    url = Column(Text)
    published_at = Column(DateTime(timezone=True))

    signal = relationship("AlphaSignal", back_populates="attributions")

    def __repr__(self):
        return f"<SignalAttribution(signal_id='{self.signal_id}', source='{self.source}')>"
