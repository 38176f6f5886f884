"""
Unit Tests for the Reference Registry
"""

import tempfile
import unittest
from datetime import date
from pathlib import Path

from stocker.registry import ReferenceRegistry


class TestReferenceRegistry(unittest.TestCase):
    """Unit tests for ReferenceRegistry"""

    def setUp(self):
        """Set up a registry file in a temporary directory"""
        self.tmp = tempfile.TemporaryDirectory()
        self.path = Path(self.tmp.name) / "reference" / "tickers.csv"
        self.registry = ReferenceRegistry(self.path)

    def tearDown(self):
        self.tmp.cleanup()

    def test_empty_registry(self):
        """Test a missing file is an empty registry"""
        self.assertEqual(self.registry.all(), [])
        self.assertFalse(self.registry.is_registered("AAPL"))
        self.assertIsNone(self.registry.get("AAPL"))

    def test_register_persists(self):
        """Test registered tickers survive a reload"""
        self.registry.register("aapl", name="Apple Inc.", exchange="NASDAQ", sector="Technology")

        reloaded = ReferenceRegistry(self.path)
        entry = reloaded.get("AAPL")

        self.assertTrue(self.path.exists())
        self.assertEqual(entry.symbol, "AAPL")
        self.assertEqual(entry.name, "Apple Inc.")
        self.assertEqual(entry.exchange, "NASDAQ")
        self.assertEqual(entry.status, "active")
        self.assertIsNone(entry.industry)
        self.assertEqual(entry.data_sources, [])

    def test_update_keeps_first_seen(self):
        """Test re-registering updates metadata but not first_seen"""
        first = self.registry.register("MSFT", name="Microsoft")
        second = self.registry.register("MSFT", status="delisted")

        self.assertEqual(second.first_seen, first.first_seen)
        self.assertEqual(second.name, "Microsoft")
        self.assertEqual(second.status, "delisted")
        self.assertGreaterEqual(second.last_updated, first.last_updated)

    def test_record_prices(self):
        """Test price ranges and sources are recorded without duplicates"""
        self.registry.record_prices("AAPL", date(2020, 1, 2), date(2024, 3, 15), "eod")
        self.registry.record_prices("AAPL", date(2020, 1, 2), date(2024, 3, 18), "yahoo")
        self.registry.record_prices("AAPL", date(2020, 1, 2), date(2024, 3, 19), "eod")

        entry = ReferenceRegistry(self.path).get("AAPL")

        self.assertEqual(entry.first_trade_date, date(2020, 1, 2))
        self.assertEqual(entry.last_price_date, date(2024, 3, 19))
        self.assertEqual(entry.data_sources, ["eod", "yahoo"])

    def test_search(self):
        """Test search matches symbol or name, case-insensitively"""
        self.registry.register("AAPL", name="Apple Inc.")
        self.registry.register("MSFT", name="Microsoft Corporation")
        self.registry.register("APLE", name="Apple Hospitality REIT")

        self.assertEqual([e.symbol for e in self.registry.search("apple")], ["AAPL", "APLE"])
        self.assertEqual([e.symbol for e in self.registry.search("msf")], ["MSFT"])
        self.assertEqual(self.registry.search("zzz"), [])

    def test_stats(self):
        """Test registry statistics"""
        self.registry.register("AAPL", exchange="NASDAQ")
        self.registry.register("IBM", exchange="NYSE")
        self.registry.register("ENRN", status="delisted")
        self.registry.record_prices("AAPL", date(2020, 1, 2), date(2024, 1, 2), "eod")

        stats = self.registry.stats()

        self.assertEqual(stats["total"], 3)
        self.assertEqual(stats["active"], 2)
        self.assertEqual(stats["delisted"], 1)
        self.assertEqual(stats["with_prices"], 1)
        self.assertEqual(stats["by_exchange"], {"NASDAQ": 1, "NYSE": 1, "UNKNOWN": 1})

    def test_all_filters_by_status(self):
        """Test listing by status"""
        self.registry.register("AAPL")
        self.registry.register("ENRN", status="delisted")

        self.assertEqual([e.symbol for e in self.registry.all(status="delisted")], ["ENRN"])
        self.assertEqual([e.symbol for e in self.registry.all()], ["AAPL", "ENRN"])


if __name__ == "__main__":
    unittest.main()
