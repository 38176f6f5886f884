"""
Unit Tests for the EOD Historical Data Provider

HTTP is mocked at the requests session; no network access is needed.
"""

import unittest
from datetime import date
from unittest import mock

import pandas as pd
import requests

from stocker.providers import (
    DataQualityError,
    ProviderError,
    RateLimitError,
    SymbolNotFoundError,
    TransientFetchError,
)
from stocker.providers.eodhd_provider import EODHDProvider, transform_eod_row

ROWS = [
    {
        "date": "2024-01-02",
        "open": 100.0,
        "high": 110.0,
        "low": 95.0,
        "close": 105.0,
        "adjusted_close": 52.5,
        "volume": 1000,
        "change_p": 1.25,
    },
    {
        "date": "2024-01-03",
        "open": 105.0,
        "high": 106.0,
        "low": 101.0,
        "close": 102.0,
        "adjusted_close": 51.0,
        "volume": 2000,
    },
]


def make_response(status_code=200, payload=None, reason="OK"):
    response = mock.Mock(spec=requests.Response)
    response.status_code = status_code
    response.reason = reason
    response.json.return_value = payload
    return response


class TestTransformEodRow(unittest.TestCase):
    """Unit tests for transform_eod_row"""

    def test_adjusted_values_use_close_ratio(self):
        """Test adjusted prices scale by adjusted_close / close"""
        record = transform_eod_row(ROWS[0], pd.Timestamp("2024-01-02 22:00"))

        self.assertEqual(record["adj_close"], 52.5)
        self.assertAlmostEqual(record["adj_open"], 50.0)
        self.assertAlmostEqual(record["adj_high"], 55.0)
        self.assertAlmostEqual(record["adj_low"], 47.5)
        self.assertEqual(record["adj_volume"], 2000)
        self.assertEqual(record["percent_change"], 1.25)
        self.assertEqual(record["data_source"], "eod")
        self.assertFalse(record["split"])

    def test_missing_adjusted_close(self):
        """Test rows without adjusted_close use raw values"""
        row = {k: v for k, v in ROWS[1].items() if k != "adjusted_close"}
        record = transform_eod_row(row, pd.Timestamp("2024-01-03"))

        self.assertEqual(record["adj_close"], 102.0)
        self.assertEqual(record["adj_volume"], 2000)
        self.assertIsNone(record["percent_change"])


class TestEODHDProvider(unittest.IsolatedAsyncioTestCase):
    """Unit tests for EODHDProvider"""

    def setUp(self):
        """Set up a provider over a mocked session"""
        self.session = mock.Mock(spec=requests.Session)
        self.provider = EODHDProvider(
            api_key="test-key",
            base_url="https://example.test/api/",
            rate_limit_delay=0.0,
            max_retries=1,
            session=self.session,
        )

    def test_requires_api_key(self):
        """Test a provider cannot be built without a key"""
        with self.assertRaises(ValueError):
            EODHDProvider(api_key="")

    async def test_fetch_daily(self):
        """Test rows become a normalized series and the query is correct"""
        self.session.get.return_value = make_response(payload=ROWS)

        series = await self.provider.fetch_daily("AAPL", date(2024, 1, 1), date(2024, 1, 31))

        self.assertEqual(len(series), 2)
        self.assertEqual(series.index[0], pd.Timestamp("2024-01-02"))
        self.assertEqual(series["adj_close"].tolist(), [52.5, 51.0])
        self.assertTrue(pd.isna(series["percent_change"].iloc[1]))

        args, kwargs = self.session.get.call_args
        self.assertEqual(args[0], "https://example.test/api/eod/AAPL")
        self.assertEqual(
            kwargs["params"],
            {"api_token": "test-key", "fmt": "json", "from": "2024-01-01", "to": "2024-01-31"}
        )

    async def test_fetch_without_range_omits_dates(self):
        """Test an open range sends no from/to parameters"""
        self.session.get.return_value = make_response(payload=ROWS)

        await self.provider.fetch_daily("AAPL")

        params = self.session.get.call_args.kwargs["params"]
        self.assertNotIn("from", params)
        self.assertNotIn("to", params)

    async def test_empty_payload(self):
        """Test an empty list is an empty series, not an error"""
        self.session.get.return_value = make_response(payload=[])

        series = await self.provider.fetch_daily("AAPL", date(2024, 1, 6), date(2024, 1, 7))

        self.assertTrue(series.empty)

    async def test_status_classification(self):
        """Test HTTP statuses map onto the provider error taxonomy"""
        cases = [
            (404, SymbolNotFoundError),
            (429, RateLimitError),
            (503, TransientFetchError),
            (401, ProviderError),
        ]
        for status, error_type in cases:
            with self.subTest(status=status):
                self.session.get.return_value = make_response(status_code=status, reason="X")
                with self.assertRaises(error_type) as ctx:
                    await self.provider.fetch_daily("AAPL")
                self.assertEqual(ctx.exception.symbol, "AAPL")
                self.assertEqual(ctx.exception.provider, "eod")

    async def test_network_errors_are_transient(self):
        """Test timeouts and connection failures are transient"""
        for error in (requests.exceptions.Timeout("slow"), requests.exceptions.ConnectionError("down")):
            with self.subTest(error=type(error).__name__):
                self.session.get.side_effect = error
                with self.assertRaises(TransientFetchError):
                    await self.provider.fetch_daily("AAPL")

    async def test_invalid_payload(self):
        """Test non-list payloads and malformed rows are provider errors"""
        self.session.get.return_value = make_response(payload={"error": "bad"})
        with self.assertRaises(ProviderError):
            await self.provider.fetch_daily("AAPL")

        self.session.get.return_value = make_response(payload=[{"date": "2024-01-02"}])
        with self.assertRaises(ProviderError):
            await self.provider.fetch_daily("AAPL")

    async def test_negative_values_are_rejected(self):
        """Test negative prices or volumes raise DataQualityError"""
        for field, value in (("low", -0.01), ("volume", -5)):
            with self.subTest(field=field):
                self.session.get.return_value = make_response(
                    payload=[ROWS[0], {**ROWS[1], field: value}]
                )
                with self.assertRaises(DataQualityError) as ctx:
                    await self.provider.fetch_daily("AAPL")
                self.assertIn("2024-01-03", ctx.exception.message)
                self.assertEqual(ctx.exception.symbol, "AAPL")

    async def test_transient_errors_are_retried(self):
        """Test a transient failure is retried before succeeding"""
        self.provider.max_retries = 2
        self.session.get.side_effect = [
            make_response(status_code=502, reason="Bad Gateway"),
            make_response(payload=ROWS),
        ]

        series = await self.provider.fetch_daily("AAPL")

        self.assertEqual(len(series), 2)
        self.assertEqual(self.session.get.call_count, 2)

    async def test_not_found_is_not_retried(self):
        """Test permanent failures are raised on the first attempt"""
        self.provider.max_retries = 3
        self.session.get.return_value = make_response(status_code=404, reason="Not Found")

        with self.assertRaises(SymbolNotFoundError):
            await self.provider.fetch_daily("NOPE")
        self.assertEqual(self.session.get.call_count, 1)

    async def test_split_events(self):
        """Test split rows become split events"""
        self.session.get.return_value = make_response(
            payload=[{"date": "2020-08-31", "split": "4.000000/1.000000"}]
        )

        events = await self.provider.fetch_split_events("AAPL")

        self.assertEqual(len(events), 1)
        self.assertEqual(events[0].date, date(2020, 8, 31))
        self.assertEqual(events[0].ratio, "4.000000/1.000000")
        self.assertTrue(self.session.get.call_args.args[0].endswith("/splits/AAPL"))

    async def test_split_failure_returns_empty(self):
        """Test split lookup failures do not fail the fetch"""
        self.session.get.return_value = make_response(status_code=500, reason="Server Error")

        self.assertEqual(await self.provider.fetch_split_events("AAPL"), [])

    async def test_close_closes_session(self):
        """Test close releases the session"""
        await self.provider.close()

        self.session.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
