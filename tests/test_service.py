"""
Unit Tests for the Stocker Service

Runs the full plan, fetch and store flow against the synthetic provider and
a temporary data directory.
"""

import tempfile
import unittest
from datetime import date
from pathlib import Path
from unittest import mock

from stocker.models import FetchStatus, SplitEvent
from stocker.providers.mock_provider import MockDataProvider
from stocker.registry import ReferenceRegistry
from stocker.series import series_dates
from stocker.service import StockerService
from stocker.storage import StorageError
from stocker.storage.local_storage import LocalTickerStore
from tests.factories import weekdays

TODAY = date(2024, 3, 15)
HISTORY = weekdays("2024-01-01", "2024-03-15")


class TestStockerService(unittest.IsolatedAsyncioTestCase):
    """Unit tests for StockerService"""

    def setUp(self):
        """Set up a service over a mock provider and temporary storage"""
        self.tmp = tempfile.TemporaryDirectory()
        self.data_dir = data_dir = Path(self.tmp.name)
        self.provider = MockDataProvider(
            history_start=date(2024, 1, 1),
            today=TODAY,
            unknown_symbols=["BAD"],
            failing_symbols=["FAIL"],
            split_events={"NVDA": [SplitEvent(date=date(2024, 2, 7), ratio="2/1")]},
        )
        self.store = LocalTickerStore(data_dir)
        self.registry = ReferenceRegistry(data_dir / "reference" / "tickers.csv")
        self.service = StockerService(
            provider=self.provider,
            store=self.store,
            registry=self.registry,
            max_workers=3,
            today=lambda: TODAY,
        )

    def tearDown(self):
        self.tmp.cleanup()

    async def test_initial_fetch(self):
        """Test a new symbol gets its full history and is registered"""
        outcome = await self.service.fetch_symbol("aapl")

        self.assertEqual(outcome.symbol, "AAPL")
        self.assertEqual(outcome.status, FetchStatus.FETCHED)
        self.assertEqual(outcome.intent, "initial")
        self.assertEqual(outcome.records, len(HISTORY))
        self.assertEqual(outcome.summary.record_count, len(HISTORY))
        self.assertEqual(outcome.describe(), f"fetched {len(HISTORY)} records")

        reference = self.registry.get("AAPL")
        self.assertEqual(reference.first_trade_date, HISTORY[0])
        self.assertEqual(reference.last_price_date, HISTORY[-1])
        self.assertEqual(reference.data_sources, ["mock"])

    async def test_existing_symbol_is_skipped(self):
        """Test a second plain fetch makes no provider call"""
        await self.service.fetch_symbol("AAPL")
        outcome = await self.service.fetch_symbol("AAPL")

        self.assertEqual(outcome.status, FetchStatus.SKIPPED)
        self.assertEqual(outcome.describe(), "skipped (exists, not forced)")
        self.assertIsNotNone(outcome.summary)
        self.assertEqual(len(self.provider.calls), 1)

    async def test_update_when_current(self):
        """Test an update of current data reports no new data without fetching"""
        await self.service.fetch_symbol("AAPL")
        outcome = await self.service.fetch_symbol("AAPL", update=True)

        self.assertEqual(outcome.status, FetchStatus.NO_DATA)
        self.assertEqual(outcome.describe(), "no new data")
        self.assertEqual(len(self.provider.calls), 1)

    async def test_tail_update(self):
        """Test an update fetches only the days after the last stored bar"""
        await self.service.fetch_symbol("AAPL", end=date(2024, 3, 8))
        outcome = await self.service.fetch_symbol("AAPL", update=True)

        self.assertEqual(outcome.status, FetchStatus.FETCHED)
        self.assertEqual(outcome.intent, "tail")
        self.assertEqual(outcome.records, 5)
        self.assertEqual(self.provider.calls[-1], ("AAPL", date(2024, 3, 9), TODAY))
        self.assertEqual(outcome.summary.record_count, len(HISTORY))

    async def test_backfill_fills_gaps(self):
        """Test an update of a series with gaps refills the missing days"""
        missing = [date(2024, 2, 5), date(2024, 2, 6), date(2024, 2, 7)]
        self.provider.missing_dates = {"AAPL": set(missing)}
        await self.service.fetch_symbol("AAPL")

        info = await self.service.info("AAPL")
        self.assertEqual(len(info.gaps), 1)
        self.assertEqual(info.gaps[0].days, 3)

        self.provider.missing_dates = {}
        outcome = await self.service.fetch_symbol("AAPL", update=True)

        self.assertEqual(outcome.intent, "backfill")
        self.assertEqual(outcome.status, FetchStatus.FETCHED)
        self.assertEqual(self.provider.calls[-1], ("AAPL", None, None))

        info = await self.service.info("AAPL")
        self.assertEqual(info.gaps, [])
        self.assertEqual(info.summary.record_count, len(HISTORY))

    async def test_empty_result_leaves_summary_untouched(self):
        """Test a fetch returning no bars does not write or restamp"""
        await self.service.fetch_symbol("AAPL", end=date(2024, 3, 15))
        before = await self.store.get_summary("AAPL")

        outcome = await self.service.fetch_symbol(
            "AAPL", start=date(2024, 3, 16), end=date(2024, 3, 17), update=True
        )

        self.assertEqual(outcome.status, FetchStatus.NO_DATA)
        self.assertEqual(await self.store.get_summary("AAPL"), before)

    async def test_force_refresh(self):
        """Test force re-fetches the full history"""
        await self.service.fetch_symbol("AAPL", start=date(2024, 3, 1))
        outcome = await self.service.fetch_symbol("AAPL", force=True)

        self.assertEqual(outcome.intent, "refresh")
        self.assertEqual(outcome.summary.first_date, HISTORY[0])

    async def test_explicit_window_keeps_other_rows(self):
        """Test an explicit range on stored data merges rather than replaces"""
        await self.service.fetch_symbol("AAPL")
        outcome = await self.service.fetch_symbol(
            "AAPL", start=date(2024, 2, 1), end=date(2024, 2, 29)
        )

        self.assertEqual(outcome.intent, "refresh")
        self.assertEqual(outcome.summary.record_count, len(HISTORY))

    async def test_split_dates_are_tagged(self):
        """Test bars on split dates carry the split flag"""
        await self.service.fetch_symbol("NVDA")

        series = await self.service.get_prices("NVDA")
        split_dates = [ts.date() for ts in series.index[series["split"]]]
        self.assertEqual(split_dates, [date(2024, 2, 7)])

    async def test_default_start_applies_to_initial_fetch(self):
        """Test the configured default start limits initial fetches"""
        self.service.default_start = date(2024, 3, 1)

        outcome = await self.service.fetch_symbol("AAPL")

        self.assertEqual(outcome.summary.first_date, date(2024, 3, 1))

    async def test_symbol_not_found(self):
        """Test unknown symbols are reported as errors"""
        outcome = await self.service.fetch_symbol("BAD")

        self.assertEqual(outcome.status, FetchStatus.ERROR)
        self.assertEqual(outcome.error_type, "SymbolNotFoundError")
        self.assertTrue(outcome.failed)
        self.assertFalse(await self.store.exists("BAD"))

    async def test_storage_failure_is_reported(self):
        """Test storage errors become error outcomes"""
        with mock.patch.object(
            self.store, "write_series", side_effect=StorageError("disk full", "local", "write_series")
        ):
            outcome = await self.service.fetch_symbol("AAPL")

        self.assertEqual(outcome.status, FetchStatus.ERROR)
        self.assertEqual(outcome.error_type, "StorageError")
        self.assertEqual(outcome.message, "disk full")

    async def test_batch_isolates_failures(self):
        """Test one failing symbol does not stop the others"""
        completed = []
        outcomes = await self.service.fetch_many(
            ["AAPL", "BAD", "msft", "FAIL", "aapl"],
            on_complete=completed.append
        )

        self.assertEqual([o.symbol for o in outcomes], ["AAPL", "BAD", "MSFT", "FAIL"])
        self.assertEqual(
            [o.status for o in outcomes],
            [FetchStatus.FETCHED, FetchStatus.ERROR, FetchStatus.FETCHED, FetchStatus.ERROR]
        )
        self.assertEqual(outcomes[3].error_type, "TransientFetchError")
        self.assertEqual(len(completed), 4)
        self.assertEqual(await self.service.list_tickers(), ["AAPL", "MSFT"])

    async def test_batch_reports_invalid_symbols(self):
        """Test blank and path-like symbols fail alone and the batch completes"""
        outcomes = await self.service.fetch_many(["AAPL", "  ", "../ESCAPE", "MSFT"])

        self.assertEqual(
            [o.status for o in outcomes],
            [FetchStatus.FETCHED, FetchStatus.ERROR, FetchStatus.ERROR, FetchStatus.FETCHED]
        )
        self.assertEqual(outcomes[1].error_type, "ValueError")
        self.assertTrue(outcomes[2].describe().startswith("error: Invalid ticker symbol"))
        self.assertEqual(await self.service.list_tickers(), ["AAPL", "MSFT"])
        self.assertFalse((self.data_dir / "ESCAPE").exists())
        self.assertEqual(sorted(call[0] for call in self.provider.calls), ["AAPL", "MSFT"])

    async def test_registry_updated_for_every_symbol_in_batch(self):
        """Test concurrent fetches all land in the registry file"""
        symbols = ["AAPL", "MSFT", "GOOG", "AMZN", "NVDA", "META"]

        await self.service.fetch_many(symbols, max_workers=len(symbols))

        reloaded = ReferenceRegistry(self.data_dir / "reference" / "tickers.csv")
        self.assertEqual([e.symbol for e in reloaded.all()], sorted(symbols))
        self.assertTrue(all(e.last_price_date == HISTORY[-1] for e in reloaded.all()))

    async def test_batch_reports_unexpected_exceptions(self):
        """Test unexpected exceptions are reported per symbol"""
        original = self.provider.fetch_daily

        async def flaky(symbol, start_date=None, end_date=None):
            if symbol == "BOOM":
                raise RuntimeError("unexpected")
            return await original(symbol, start_date, end_date)

        with mock.patch.object(self.provider, "fetch_daily", side_effect=flaky):
            outcomes = await self.service.fetch_many(["BOOM", "AAPL"])

        self.assertEqual(outcomes[0].status, FetchStatus.ERROR)
        self.assertEqual(outcomes[0].error_type, "RuntimeError")
        self.assertEqual(outcomes[1].status, FetchStatus.FETCHED)

    async def test_update_all_uses_stored_symbols(self):
        """Test update_all without symbols updates every stored ticker"""
        await self.service.fetch_many(["AAPL", "MSFT"], end=date(2024, 3, 8))

        outcomes = await self.service.update_all()

        self.assertEqual([o.symbol for o in outcomes], ["AAPL", "MSFT"])
        self.assertTrue(all(o.intent == "tail" for o in outcomes))
        self.assertTrue(all(o.records == 5 for o in outcomes))

    async def test_info_for_unknown_symbol(self):
        """Test info returns None when nothing is stored"""
        self.assertIsNone(await self.service.info("NOPE"))

    async def test_price_queries(self):
        """Test range, first and latest price queries"""
        await self.service.fetch_symbol("AAPL")

        window = await self.service.get_prices("aapl", date(2024, 1, 8), date(2024, 1, 12))
        first = await self.service.get_first_price("AAPL")
        latest = await self.service.get_latest_price("AAPL")

        self.assertEqual(series_dates(window), weekdays("2024-01-08", "2024-01-12"))
        self.assertEqual(first.date, HISTORY[0])
        self.assertEqual(latest.date, HISTORY[-1])


if __name__ == "__main__":
    unittest.main()
