from __future__ import annotations

import json
import logging
from datetime import timezone
from decimal import Decimal, InvalidOperation

from sqlalchemy import Column, DateTime, Integer, MetaData, String, Table, Text, insert, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from costengine.currency_conversion import RateCacheError, RateTable

logger = logging.getLogger(__name__)

metadata = MetaData()

exchange_rates = Table(
    "exchange_rates",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("base_currency", String(3), nullable=False, unique=True),
    Column("rates", Text, nullable=False),
    Column("last_updated", DateTime(timezone=True)),
)


class RateCache:
    """Single-record-per-base persistence for the last good rate table."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def ensure_schema(self) -> None:
        metadata.create_all(self.engine)

    def load(self, base_currency: str) -> RateTable | None:
        stmt = select(exchange_rates).where(
            exchange_rates.c.base_currency == base_currency.strip().upper()
        )
        try:
            with self.engine.connect() as conn:
                row = conn.execute(stmt).mappings().first()
        except SQLAlchemyError as exc:
            raise RateCacheError("Failed to read cached exchange rates") from exc
        if row is None:
            return None

        try:
            raw_rates = json.loads(row["rates"])
            rates = {code: Decimal(value) for code, value in raw_rates.items()}
        except (ValueError, InvalidOperation) as exc:
            raise RateCacheError("Cached exchange rates are corrupt") from exc

        last_updated = row["last_updated"]
        if last_updated is not None and last_updated.tzinfo is None:
            # SQLite drops the offset; values are always written in UTC.
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return RateTable(base=row["base_currency"], rates=rates, last_updated=last_updated)

    def save(self, table: RateTable) -> None:
        payload = json.dumps({code: str(rate) for code, rate in table.rates.items()})
        values = {"rates": payload, "last_updated": table.last_updated}
        try:
            with self.engine.begin() as conn:
                existing = conn.execute(
                    select(exchange_rates.c.id).where(
                        exchange_rates.c.base_currency == table.base
                    )
                ).first()
                if existing is None:
                    conn.execute(
                        insert(exchange_rates).values(base_currency=table.base, **values)
                    )
                else:
                    conn.execute(
                        update(exchange_rates)
                        .where(exchange_rates.c.id == existing.id)
                        .values(**values)
                    )
        except SQLAlchemyError as exc:
            raise RateCacheError("Failed to persist exchange rates") from exc
        logger.debug("Persisted %d exchange rates for %s", len(table.rates), table.base)
