import asyncio
import datetime
import uuid

from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import SQLAlchemyError

from signaldesk.db.models import AlphaSignal, Portfolio, PortfolioHistory
from signaldesk.db.repositories import SqlPortfolioStore, SqlSignalRepository
from signaldesk.schemas import signals as schemas
from signaldesk.schemas.portfolio import Holding, PortfolioRequest

NOW = datetime.datetime(2026, 1, 5, 15, 30, tzinfo=datetime.UTC)


class FakeResult:
    def __init__(self, rows: list) -> None:
        self.rows = rows

    def scalar_one(self):
        return self.rows[0]

    def scalars(self) -> "FakeResult":
        return self

    def all(self) -> list:
        return list(self.rows)


class FakeSession:
    def __init__(self, rows: list | None = None, stored=None, fail_commit: bool = False) -> None:
        self.rows = rows or []
        self.stored = stored
        self.fail_commit = fail_commit
        self.statements = []
        self.added = []
        self.deleted = []
        self.commits = 0
        self.rollbacks = 0

    async def execute(self, stmt) -> FakeResult:
        self.statements.append(stmt)
        return FakeResult(self.rows)

    async def get(self, model, key):
        return self.stored

    def add(self, obj) -> None:
        self.added.append(obj)

    async def delete(self, obj) -> None:
        self.deleted.append(obj)

    async def commit(self) -> None:
        if self.fail_commit:
            raise SQLAlchemyError("insert failed")
        self.commits += 1

    async def rollback(self) -> None:
        self.rollbacks += 1

    async def refresh(self, obj) -> None:
        return None


def _compiled(stmt):
    return stmt.compile(dialect=postgresql.dialect())


def _signal_row(**overrides) -> AlphaSignal:
    values = dict(
        id=uuid.uuid4(),
        user_id="user-1",
        asset="AAPL",
        direction="bullish",
        confidence=64.4,
        time_horizon="3-7 days",
        insight="AAPL is up",
        sources=0,
        category="Price Action",
        source="live",
        provider="primary",
        batch_source="demo",
        batch_reason="News unavailable: newsapi: missing_key",
        created_at=NOW,
    )
    values.update(overrides)
    return AlphaSignal(**values)


def _portfolio_row(version: int = 1) -> Portfolio:
    return Portfolio(
        user_id="user-1",
        holdings=[{"symbol": "AAPL", "shares": 10.0, "avg_cost": 150.0}],
        total_value=1500.0,
        method="manual",
        version=version,
        updated_at=NOW,
    )


def test_recent_signals_filters_by_user_and_window() -> None:
    session = FakeSession(rows=[_signal_row()])
    since = NOW - datetime.timedelta(seconds=300)

    signals = asyncio.run(SqlSignalRepository(session).recent_signals("user-1", since))

    compiled = _compiled(session.statements[0])
    sql = str(compiled)
    assert "alpha_signals.user_id = " in sql
    assert "alpha_signals.created_at >= " in sql
    assert "ORDER BY alpha_signals.created_at ASC" in sql
    assert set(compiled.params.values()) == {"user-1", since}
    assert signals[0].asset == "AAPL"
    assert signals[0].batch_source == "demo"
    assert signals[0].batch_reason.startswith("News unavailable")


def test_save_signal_persists_batch_provenance() -> None:
    session = FakeSession()
    signal = schemas.AlphaSignal(
        user_id="user-1",
        asset="AAPL",
        direction="bullish",
        confidence=64.4,
        time_horizon="3-7 days",
        insight="AAPL is up",
        category="Price Action + News",
        source="live",
        provider="primary",
        batch_source="demo",
        batch_reason="News unavailable",
        created_at=NOW,
        attributions=[schemas.Attribution(title="AAPL beats estimates", source="Wire")],
    )

    saved = asyncio.run(SqlSignalRepository(session).save_signal(signal))

    row = session.added[0]
    assert session.commits == 1
    assert row.batch_source == "demo"
    assert row.batch_reason == "News unavailable"
    assert row.attributions[0].title == "AAPL beats estimates"
    assert saved.id == row.id
    assert saved.attributions[0].source == "Wire"


def test_save_signal_failure_rolls_back_and_drops() -> None:
    session = FakeSession(fail_commit=True)
    signal = schemas.AlphaSignal(
        user_id="user-1",
        asset="MSFT",
        direction="neutral",
        confidence=55.0,
        time_horizon="7-14 days",
        insight="MSFT is flat",
        category="Price Action",
        source="live",
        provider="primary",
    )

    saved = asyncio.run(SqlSignalRepository(session).save_signal(signal))

    assert saved is None
    assert session.rollbacks == 1


def test_list_attributions_joins_on_owner() -> None:
    session = FakeSession()
    signal_id = uuid.uuid4()

    attributions = asyncio.run(SqlSignalRepository(session).list_attributions("user-2", signal_id))

    compiled = _compiled(session.statements[0])
    sql = str(compiled)
    assert attributions == []
    assert "JOIN alpha_signals ON signal_attributions.signal_id = alpha_signals.id" in sql
    assert "alpha_signals.user_id = " in sql
    assert "ORDER BY signal_attributions.published_at DESC" in sql
    assert "user-2" in compiled.params.values()
    assert signal_id in compiled.params.values()


def test_save_portfolio_upsert_bumps_version() -> None:
    session = FakeSession(rows=[_portfolio_row(version=2)])
    payload = PortfolioRequest(holdings=[Holding(symbol="AAPL", shares=10, avg_cost=150.0)])

    portfolio = asyncio.run(SqlPortfolioStore(session).save_portfolio("user-1", payload))

    insert_stmt = session.statements[0]
    update_mapping = insert_stmt._post_values_clause.update_values_to_set  # type: ignore[attr-defined]
    columns = {column.name: value for column, value in update_mapping}
    assert set(columns) == {"holdings_json", "total_value", "method", "version", "updated_at"}
    assert "portfolios.version +" in str(columns["version"])
    assert session.commits == 1
    assert portfolio.version == 2
    assert portfolio.holdings[0].avg_cost == 150.0


def test_update_portfolio_snapshots_previous_version() -> None:
    row = _portfolio_row(version=3)
    session = FakeSession(stored=row)
    payload = PortfolioRequest(
        holdings=[Holding(symbol="MSFT", shares=2, avg_cost=400.0)], method="plaid"
    )

    portfolio = asyncio.run(SqlPortfolioStore(session).update_portfolio("user-1", payload))

    snapshot = session.added[0]
    assert isinstance(snapshot, PortfolioHistory)
    assert snapshot.version == 3
    assert snapshot.action == "update"
    assert snapshot.holdings[0]["symbol"] == "AAPL"
    assert snapshot.total_value == 1500.0
    assert portfolio.version == 4
    assert portfolio.total_value == 800.0
    assert portfolio.method == "plaid"
    assert session.commits == 1


def test_update_missing_portfolio_returns_none() -> None:
    session = FakeSession(stored=None)
    payload = PortfolioRequest(holdings=[Holding(symbol="MSFT", shares=2, avg_cost=400.0)])

    assert asyncio.run(SqlPortfolioStore(session).update_portfolio("user-1", payload)) is None
    assert session.added == []


def test_delete_portfolio_archives_before_delete() -> None:
    row = _portfolio_row()
    session = FakeSession(stored=row)

    deleted = asyncio.run(SqlPortfolioStore(session).delete_portfolio("user-1"))

    assert deleted is True
    assert session.added[0].action == "delete"
    assert session.added[0].version == 1
    assert session.deleted == [row]
    assert session.commits == 1
    assert asyncio.run(SqlPortfolioStore(FakeSession()).delete_portfolio("user-1")) is False


def test_list_history_is_newest_first_and_limited() -> None:
    history_row = PortfolioHistory(
        id=uuid.uuid4(),
        user_id="user-1",
        version=1,
        holdings=[{"symbol": "AAPL", "shares": 10.0, "avg_cost": 150.0}],
        total_value=1500.0,
        method="manual",
        action="update",
        updated_at=NOW,
        recorded_at=NOW,
    )
    session = FakeSession(rows=[history_row])
    since = NOW - datetime.timedelta(days=30)
    store = SqlPortfolioStore(session)

    entries = asyncio.run(store.list_history("user-1"))
    asyncio.run(store.list_history("user-1", limit=None, since=since))

    limited = _compiled(session.statements[0])
    windowed = _compiled(session.statements[1])
    assert "ORDER BY portfolio_history.recorded_at DESC" in str(limited)
    assert "LIMIT" in str(limited)
    assert 10 in limited.params.values()
    assert "portfolio_history.recorded_at >= " in str(windowed)
    assert "LIMIT" not in str(windowed)
    assert since in windowed.params.values()
    assert entries[0].version == 1
    assert entries[0].holdings[0].avg_cost == 150.0
