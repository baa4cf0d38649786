import os
import tempfile
import unittest
from datetime import datetime, timezone
from decimal import Decimal

from sqlalchemy import create_engine, insert

from costengine.currency_conversion import RateCacheError, RateTable
from costengine.rate_cache import RateCache, exchange_rates

UPDATED_AT = datetime(2025, 5, 15, 12, 0, tzinfo=timezone.utc)


class RateCacheTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmpdir = tempfile.TemporaryDirectory()
        path = os.path.join(self.tmpdir.name, "rates.db")
        self.engine = create_engine(f"sqlite:///{path}")
        self.cache = RateCache(self.engine)
        self.cache.ensure_schema()

    def tearDown(self) -> None:
        self.engine.dispose()
        self.tmpdir.cleanup()

    def test_missing_base_loads_nothing(self) -> None:
        self.assertIsNone(self.cache.load("USD"))

    def test_save_then_load_restores_snapshot(self) -> None:
        self.cache.save(
            RateTable(
                base="USD",
                rates={"EUR": Decimal("0.92"), "JPY": Decimal("154.82")},
                last_updated=UPDATED_AT,
            )
        )

        loaded = self.cache.load("usd")

        self.assertEqual(loaded.base, "USD")
        self.assertEqual(
            dict(loaded.rates),
            {"USD": Decimal("1"), "EUR": Decimal("0.92"), "JPY": Decimal("154.82")},
        )
        self.assertEqual(loaded.last_updated, UPDATED_AT)

    def test_save_replaces_previous_record(self) -> None:
        self.cache.save(RateTable(base="USD", rates={"EUR": Decimal("0.92")}))
        self.cache.save(
            RateTable(base="USD", rates={"GBP": Decimal("0.79")}, last_updated=UPDATED_AT)
        )

        loaded = self.cache.load("USD")

        self.assertIsNone(loaded.rate_for("EUR"))
        self.assertEqual(loaded.rate_for("GBP"), Decimal("0.79"))

    def test_snapshots_are_kept_per_base(self) -> None:
        self.cache.save(RateTable(base="USD", rates={"EUR": Decimal("0.5")}))
        self.cache.save(RateTable(base="EUR", rates={"USD": Decimal("2")}))

        self.assertEqual(self.cache.load("USD").rate_for("EUR"), Decimal("0.5"))
        self.assertEqual(self.cache.load("EUR").rate_for("USD"), Decimal("2"))

    def test_corrupt_record_raises_cache_error(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(
                insert(exchange_rates).values(base_currency="USD", rates="not json")
            )

        with self.assertRaises(RateCacheError):
            self.cache.load("USD")


if __name__ == "__main__":
    unittest.main()
