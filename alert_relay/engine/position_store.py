"""Position store: durable trade rows behind a small conditional-update API.

Every mutation of an existing row goes through ``update_where_open``, which
only touches rows whose ``closed_at`` is still NULL. Nothing here takes a
lock: two concurrent updates to the same open row can both succeed, and the
lifecycle engine repairs a missed final close afterwards.
"""

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from sqlalchemy import Engine, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import Session, select

from alert_relay.engine.errors import StoreError
from alert_relay.models.trade import Trade
from alert_relay.utils.constants import MAX_RECENT_TRADES

logger = logging.getLogger(__name__)


@contextmanager
def _store_errors(stage: str, trade_id: str | None = None):
    try:
        yield
    except SQLAlchemyError as e:
        raise StoreError(str(e), trade_id=trade_id, stage=stage) from e


class PositionStore:
    def __init__(self, engine: Engine):
        self._engine = engine

    def _session(self) -> Session:
        return Session(self._engine, expire_on_commit=False)

    def get(self, trade_id: str) -> Trade | None:
        """Most recent row for an identifier, open or closed."""
        stmt = (
            select(Trade)
            .where(Trade.trade_id == trade_id)
            .order_by(Trade.id.desc())
            .limit(1)
        )
        with _store_errors("read", trade_id), self._session() as session:
            return session.exec(stmt).first()

    def get_open(self, trade_id: str) -> Trade | None:
        stmt = select(Trade).where(
            Trade.trade_id == trade_id,
            Trade.closed_at.is_(None),
        )
        with _store_errors("read", trade_id), self._session() as session:
            return session.exec(stmt).first()

    def latest_open(self, symbol: str, timeframe: int, direction: str) -> Trade | None:
        """Most recently opened trade still open for symbol+timeframe+direction."""
        stmt = (
            select(Trade)
            .where(
                Trade.symbol == symbol,
                Trade.timeframe == timeframe,
                Trade.direction == direction,
                Trade.closed_at.is_(None),
            )
            .order_by(Trade.started_at.desc(), Trade.id.desc())
            .limit(1)
        )
        with _store_errors("read"), self._session() as session:
            return session.exec(stmt).first()

    def put_if_absent(self, trade: Trade) -> bool:
        """Insert an open trade. Returns False if the identifier is already open."""
        trade.open_marker = 1
        with _store_errors("insert", trade.trade_id):
            try:
                with self._session() as session:
                    session.add(trade)
                    session.commit()
                    session.refresh(trade)
            except IntegrityError:
                logger.info(f"[store] {trade.trade_id} already open, insert skipped")
                return False
        return True

    def update_where_open(self, trade_id: str, patch: dict[str, Any]) -> int:
        """Apply ``patch`` only if the trade is still open. Returns rows affected."""
        values = dict(patch)
        if values.get("closed_at") is not None:
            values["open_marker"] = None
        stmt = (
            update(Trade)
            .where(Trade.trade_id == trade_id, Trade.closed_at.is_(None))
            .values(**values)
        )
        with _store_errors("update", trade_id), self._engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount

    def list_recent(
        self,
        limit: int = 200,
        closed_since: datetime | None = None,
    ) -> list[Trade]:
        """Open trades plus trades closed since ``closed_since``, newest first."""
        limit = max(1, min(limit, MAX_RECENT_TRADES))
        stmt = select(Trade)
        if closed_since is not None:
            stmt = stmt.where(or_(Trade.closed_at.is_(None), Trade.closed_at >= closed_since))
        stmt = stmt.order_by(Trade.started_at.desc(), Trade.id.desc()).limit(limit)
        with _store_errors("read"), self._session() as session:
            return list(session.exec(stmt).all())
