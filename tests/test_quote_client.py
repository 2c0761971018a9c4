import unittest

import requests

from quote_pipeline.services.name_cache import NameCache
from quote_pipeline.services.quote_client import QuoteClient


class StubRestClient:
    def __init__(self, quotes=None, profiles=None) -> None:
        self.quotes = quotes or {}
        self.profiles = profiles or {}
        self.quote_calls: list[str] = []
        self.profile_calls: list[str] = []

    def _answer(self, table, symbol):
        value = table.get(symbol)
        if isinstance(value, list):
            value = value.pop(0)
        if isinstance(value, Exception):
            raise value
        return value

    def get_quote(self, symbol: str) -> dict:
        self.quote_calls.append(symbol)
        return self._answer(self.quotes, symbol)

    def get_profile(self, symbol: str) -> dict:
        self.profile_calls.append(symbol)
        return self._answer(self.profiles, symbol)


class FakeClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


class QuoteClientFetchTest(unittest.TestCase):
    def test_fetch_quote_success(self):
        rest = StubRestClient(quotes={"AAPL": {"c": 150.25, "d": 2.2, "dp": 1.5, "t": 1700000000}})
        client = QuoteClient(rest)

        result = client.fetch_quote("AAPL")

        self.assertTrue(result.ok)
        self.assertEqual(result.quote.current_price, 150.25)
        self.assertEqual(result.quote.percent_change, 1.5)
        self.assertEqual(result.quote.timestamp, 1700000000)
        self.assertEqual(client.statistics()["requests"], 1)
        self.assertEqual(client.statistics()["errors"], 0)

    def test_missing_price_field_is_an_error(self):
        rest = StubRestClient(quotes={"AAPL": {"d": 0.1, "dp": 0.2}})
        client = QuoteClient(rest)

        result = client.fetch_quote("AAPL")

        self.assertFalse(result.ok)
        self.assertIsNone(result.quote)
        self.assertIn("MalformedResponseError", result.error)
        self.assertEqual(client.statistics()["errors"], 1)

    def test_empty_and_invalid_payloads_are_errors(self):
        rest = StubRestClient(quotes={"A": [None, {}, {"c": "not-a-number"}]})
        client = QuoteClient(rest)

        results = [client.fetch_quote("A") for _ in range(3)]

        self.assertTrue(all(not r.ok for r in results))
        self.assertEqual(client.statistics()["requests"], 3)
        self.assertEqual(client.statistics()["errors"], 3)

    def test_transport_failures_never_raise(self):
        rest = StubRestClient(
            quotes={"AAPL": [requests.Timeout("read timed out"), requests.ConnectionError("refused")]}
        )
        client = QuoteClient(rest)

        first = client.fetch_quote("AAPL")
        second = client.fetch_quote("AAPL")

        self.assertFalse(first.ok)
        self.assertIn("TransportError", first.error)
        self.assertIn("read timed out", first.error)
        self.assertFalse(second.ok)
        self.assertEqual(client.statistics()["errors"], 2)

    def test_success_rate_is_zero_without_requests(self):
        client = QuoteClient(StubRestClient())

        stats = client.statistics()

        self.assertEqual(stats["requests"], 0)
        self.assertEqual(stats["success_rate"], 0.0)

    def test_success_rate_ratio(self):
        rest = StubRestClient(quotes={"A": [{"c": 1.0}, {"c": 2.0}, {"c": 3.0}, {}]})
        client = QuoteClient(rest)

        for _ in range(4):
            client.fetch_quote("A")

        self.assertEqual(client.statistics()["success_rate"], 75.0)

    def test_health_check_uses_health_symbol(self):
        rest = StubRestClient(quotes={"SPY": [{"c": 450.0}, {"dp": 1.0}]})
        client = QuoteClient(rest, health_symbol="SPY")

        self.assertTrue(client.health_check())
        self.assertFalse(client.health_check())
        self.assertEqual(rest.quote_calls, ["SPY", "SPY"])


class QuoteClientResolveNameTest(unittest.TestCase):
    def test_first_lookup_is_cached_permanently(self):
        rest = StubRestClient(profiles={"AAPL": {"name": "Apple Inc"}})
        client = QuoteClient(rest)

        self.assertEqual(client.resolve_name("AAPL"), "Apple Inc")
        self.assertEqual(client.resolve_name("AAPL"), "Apple Inc")
        self.assertEqual(client.resolve_name("AAPL"), "Apple Inc")

        self.assertEqual(rest.profile_calls, ["AAPL"])

    def test_retries_with_exponential_backoff_then_succeeds(self):
        rest = StubRestClient(
            profiles={"MSFT": [requests.Timeout("t1"), requests.Timeout("t2"), {"name": "Microsoft Corp"}]}
        )
        sleeps = []
        client = QuoteClient(rest, sleep_fn=sleeps.append)

        self.assertEqual(client.resolve_name("MSFT"), "Microsoft Corp")
        self.assertEqual(sleeps, [1.0, 2.0])
        self.assertEqual(len(rest.profile_calls), 3)

    def test_exhausted_retries_fall_back_to_symbol(self):
        rest = StubRestClient(profiles={"TSLA": [requests.ConnectionError("down")] * 3})
        sleeps = []
        client = QuoteClient(rest, sleep_fn=sleeps.append)

        self.assertEqual(client.resolve_name("TSLA"), "TSLA")
        # no sleep after the last attempt
        self.assertEqual(sleeps, [1.0, 2.0])
        self.assertEqual(len(rest.profile_calls), 3)
        self.assertTrue(client.name_cache.is_fallback("TSLA"))

    def test_profile_without_name_falls_back_without_retry(self):
        rest = StubRestClient(profiles={"ZZZZ": {}})
        sleeps = []
        client = QuoteClient(rest, sleep_fn=sleeps.append)

        self.assertEqual(client.resolve_name("ZZZZ"), "ZZZZ")
        self.assertEqual(rest.profile_calls, ["ZZZZ"])
        self.assertEqual(sleeps, [])

    def test_fallback_is_retried_after_ttl(self):
        clock = FakeClock()
        rest = StubRestClient(
            profiles={"AMZN": [requests.Timeout("t")] * 3 + [{"name": "Amazon.com Inc"}]}
        )
        client = QuoteClient(
            rest,
            name_cache=NameCache(fallback_ttl_sec=300, clock=clock),
            sleep_fn=lambda _sec: None,
        )

        self.assertEqual(client.resolve_name("AMZN"), "AMZN")
        clock.now = 299
        self.assertEqual(client.resolve_name("AMZN"), "AMZN")
        self.assertEqual(len(rest.profile_calls), 3)

        clock.now = 300
        self.assertEqual(client.resolve_name("AMZN"), "Amazon.com Inc")
        self.assertFalse(client.name_cache.is_fallback("AMZN"))
        self.assertEqual(len(rest.profile_calls), 4)

    def test_non_positive_ttl_keeps_fallback_forever(self):
        clock = FakeClock()
        rest = StubRestClient(profiles={"GOOGL": [{}, {"name": "Alphabet Inc"}]})
        client = QuoteClient(rest, name_cache=NameCache(fallback_ttl_sec=0, clock=clock))

        self.assertEqual(client.resolve_name("GOOGL"), "GOOGL")
        clock.now = 10_000_000
        self.assertEqual(client.resolve_name("GOOGL"), "GOOGL")
        self.assertEqual(rest.profile_calls, ["GOOGL"])

    def test_warm_up_resolves_all_symbols(self):
        rest = StubRestClient(
            profiles={"AAPL": {"name": "Apple Inc"}, "BAD": [requests.Timeout("t")] * 3}
        )
        client = QuoteClient(rest, sleep_fn=lambda _sec: None)

        resolved = client.warm_up(["AAPL", "BAD"])

        self.assertEqual(resolved, {"AAPL": "Apple Inc", "BAD": "BAD"})
        self.assertEqual(client.statistics()["cached_names"], 2)


if __name__ == "__main__":
    unittest.main()
