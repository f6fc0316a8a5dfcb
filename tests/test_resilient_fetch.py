import asyncio
import unittest

import httpx

from core import (
    ApplicationError,
    ConnectivityMonitor,
    ConnectivityProbe,
    ConnectivityTimeout,
    ConnectivityWaiter,
    FetchExhausted,
    MalformedResponse,
    ResilientFetcher,
    build_client,
    classify_error,
    get_json,
    get_successful_fetch,
)


class CountingWaiter:
    def __init__(self, fail_with=None):
        self.calls = []
        self.fail_with = fail_with

    async def wait_for_connectivity(self, timeout_s):
        self.calls.append(timeout_s)
        if self.fail_with is not None:
            raise self.fail_with


def _flaky_transport(failures, body=b'{"url": "https://x/y.mp3"}', status=200):
    calls = {"count": 0}

    def handler(request):
        if request.method == "HEAD":
            return httpx.Response(204)
        calls["count"] += 1
        if calls["count"] <= failures:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(status, content=body)

    return httpx.MockTransport(handler), calls


class ResilientFetchTests(unittest.IsolatedAsyncioTestCase):
    async def _fetcher(self, transport, waiter, notice=None):
        client = build_client(transport)
        self.addAsyncCleanup(client.aclose)
        return ResilientFetcher(client, waiter, notice=notice, connectivity_timeout_s=60)

    async def test_succeeds_on_first_attempt_without_waiting(self):
        transport, calls = _flaky_transport(0)
        waiter = CountingWaiter()
        fetcher = await self._fetcher(transport, waiter)

        resp = await fetcher.fetch("https://api.test/a")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(calls["count"], 1)
        self.assertEqual(waiter.calls, [])

    async def test_retries_after_network_errors(self):
        transport, calls = _flaky_transport(3)
        waiter = CountingWaiter()
        notices = []
        fetcher = await self._fetcher(transport, waiter, notice=lambda msg, ttl: notices.append((msg, ttl)))

        resp = await fetcher.fetch("https://api.test/a", max_attempts=10)

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(calls["count"], 4)
        self.assertEqual(waiter.calls, [60, 60, 60])
        self.assertEqual(len(notices), 3)
        self.assertIn("waiting to reconnect", notices[0][0])
        self.assertEqual(notices[0][1], 65)

    async def test_exhausts_after_max_attempts(self):
        transport, calls = _flaky_transport(100)
        fetcher = await self._fetcher(transport, CountingWaiter())

        with self.assertRaises(FetchExhausted) as ctx:
            await fetcher.fetch("https://api.test/a", max_attempts=4)

        self.assertEqual(calls["count"], 4)
        self.assertEqual(ctx.exception.max_attempts, 4)
        self.assertEqual(ctx.exception.url, "https://api.test/a")
        self.assertIsInstance(ctx.exception.last_error, httpx.ConnectError)

    async def test_connectivity_timeout_stops_attempts(self):
        transport, calls = _flaky_transport(100)
        waiter = CountingWaiter(fail_with=ConnectivityTimeout(60.0, 60))
        fetcher = await self._fetcher(transport, waiter)

        with self.assertRaises(ConnectivityTimeout) as ctx:
            await fetcher.fetch("https://api.test/a", max_attempts=10)

        self.assertEqual(calls["count"], 1)
        self.assertEqual(len(waiter.calls), 1)
        self.assertEqual(ctx.exception.timeout_s, 60)
        self.assertEqual(ctx.exception.url, "https://api.test/a")

    async def test_http_error_status_is_not_retried(self):
        transport, calls = _flaky_transport(0, body=b"nope", status=404)
        waiter = CountingWaiter()
        fetcher = await self._fetcher(transport, waiter)

        with self.assertRaises(ApplicationError) as ctx:
            await fetcher.fetch("https://api.test/a")

        self.assertEqual(ctx.exception.status_code, 404)
        self.assertEqual(calls["count"], 1)
        self.assertEqual(waiter.calls, [])

    async def test_read_timeout_is_treated_as_application_error(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            raise httpx.ReadTimeout("slow", request=request)

        waiter = CountingWaiter()
        fetcher = await self._fetcher(httpx.MockTransport(handler), waiter)

        with self.assertRaises(ApplicationError):
            await fetcher.fetch("https://api.test/a")
        self.assertEqual(calls["count"], 1)
        self.assertEqual(waiter.calls, [])

    async def test_get_json_rejects_non_json_body(self):
        transport, _ = _flaky_transport(0, body=b"not json")
        fetcher = await self._fetcher(transport, CountingWaiter())

        with self.assertRaises(MalformedResponse):
            await fetcher.get_json("https://api.test/a")

    async def test_rejects_zero_attempts(self):
        transport, calls = _flaky_transport(0)
        fetcher = await self._fetcher(transport, CountingWaiter())

        with self.assertRaises(ValueError):
            await fetcher.fetch("https://api.test/a", max_attempts=0)
        self.assertEqual(calls["count"], 0)

    async def test_connect_timeout_is_retried_as_network_error(self):
        calls = {"count": 0}

        def handler(request):
            calls["count"] += 1
            if calls["count"] == 1:
                raise httpx.ConnectTimeout("syn timeout", request=request)
            return httpx.Response(200, content=b"ok")

        waiter = CountingWaiter()
        fetcher = await self._fetcher(httpx.MockTransport(handler), waiter)

        resp = await fetcher.fetch("https://api.test/a")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(calls["count"], 2)
        self.assertEqual(waiter.calls, [60])

    async def test_invalid_url_is_application_error(self):
        waiter = CountingWaiter()
        fetcher = await self._fetcher(httpx.MockTransport(lambda request: httpx.Response(200)), waiter)

        with self.assertRaises(ApplicationError):
            await fetcher.fetch("http://[bad")
        self.assertEqual(waiter.calls, [])


class OutageRecoveryTests(unittest.IsolatedAsyncioTestCase):
    def _outage_transport(self, duration_s):
        loop = asyncio.get_running_loop()
        outage_ends = loop.time() + duration_s
        gets = {"count": 0}

        def handler(request):
            if request.method == "GET":
                gets["count"] += 1
            if loop.time() < outage_ends:
                raise httpx.ConnectError("network is unreachable", request=request)
            return httpx.Response(200, content=b'{"url": "https://x/y.mp3"}')

        return httpx.MockTransport(handler), gets, outage_ends

    async def _client(self, transport):
        client = build_client(transport)
        self.addAsyncCleanup(client.aclose)
        return client

    async def test_fetch_outlasts_outage_with_running_reachability_loop(self):
        transport, gets, outage_ends = self._outage_transport(0.3)
        client = await self._client(transport)
        monitor = ConnectivityMonitor(online=True)
        probe = ConnectivityProbe(monitor, client, url="https://reachability.test/", interval_s=0.05)
        probe.start()
        self.addAsyncCleanup(probe.stop)
        fetcher = ResilientFetcher(client, ConnectivityWaiter(monitor, probe=probe), connectivity_timeout_s=5)

        resp = await fetcher.fetch("https://api.test/a", max_attempts=3)

        self.assertEqual(resp.status_code, 200)
        self.assertGreaterEqual(asyncio.get_running_loop().time(), outage_ends)
        self.assertLessEqual(gets["count"], 3)

    async def test_fetch_outlasts_outage_when_waiter_polls(self):
        transport, gets, outage_ends = self._outage_transport(0.3)
        client = await self._client(transport)
        monitor = ConnectivityMonitor(online=True)
        probe = ConnectivityProbe(monitor, client, url="https://reachability.test/", interval_s=0.05)
        fetcher = ResilientFetcher(client, ConnectivityWaiter(monitor, probe=probe), connectivity_timeout_s=5)

        resp = await fetcher.fetch("https://api.test/a", max_attempts=3)

        self.assertEqual(resp.status_code, 200)
        self.assertGreaterEqual(asyncio.get_running_loop().time(), outage_ends)
        self.assertLessEqual(gets["count"], 3)
        self.assertFalse(probe.running)

    async def test_outage_longer_than_budget_times_out(self):
        transport, gets, _ = self._outage_transport(60)
        client = await self._client(transport)
        monitor = ConnectivityMonitor(online=True)
        probe = ConnectivityProbe(monitor, client, url="https://reachability.test/", interval_s=0.02)
        fetcher = ResilientFetcher(client, ConnectivityWaiter(monitor, probe=probe), connectivity_timeout_s=0.1)

        with self.assertRaises(ConnectivityTimeout):
            await fetcher.fetch("https://api.test/a", max_attempts=10)
        self.assertEqual(gets["count"], 1)


class ModuleHelperTests(unittest.IsolatedAsyncioTestCase):
    async def test_get_successful_fetch_with_online_monitor(self):
        transport, calls = _flaky_transport(2)
        resp = await get_successful_fetch(
            "https://api.test/a",
            max_attempts=5,
            monitor=ConnectivityMonitor(online=True),
            transport=transport,
        )
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(calls["count"], 3)

    async def test_get_json_decodes_body(self):
        transport, _ = _flaky_transport(0, body=b'{"songs": []}')
        data = await get_json("https://api.test/a", transport=transport)
        self.assertEqual(data, {"songs": []})


class ClassifyErrorTests(unittest.TestCase):
    def test_transport_failures_are_network_errors(self):
        request = httpx.Request("GET", "https://api.test/")
        self.assertEqual(classify_error(httpx.ConnectError("x", request=request)), "network")
        self.assertEqual(classify_error(httpx.ConnectTimeout("x", request=request)), "network")
        self.assertEqual(classify_error(httpx.ReadError("x", request=request)), "network")

    def test_everything_else_is_application(self):
        request = httpx.Request("GET", "https://api.test/")
        self.assertEqual(classify_error(httpx.ReadTimeout("x", request=request)), "application")
        self.assertEqual(classify_error(ValueError("bad")), "application")


if __name__ == "__main__":
    unittest.main()
