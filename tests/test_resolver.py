import unittest

import httpx

from core import ConnectivityMonitor, ConnectivityWaiter, MalformedResponse, ResilientFetcher, build_client
from lib.player.resolver import SourceResolver

ENDPOINT = "https://resolver.test/ajax.php/?url=https://www.mixcloud.com{key}"


class SourceResolverTests(unittest.IsolatedAsyncioTestCase):
    def _resolver(self, body: bytes):
        self.requests = []

        def handler(request):
            self.requests.append(request)
            return httpx.Response(200, content=body)

        client = build_client(httpx.MockTransport(handler))
        self.addAsyncCleanup(client.aclose)
        fetcher = ResilientFetcher(client, ConnectivityWaiter(ConnectivityMonitor()))
        return SourceResolver(fetcher, endpoint=ENDPOINT)

    async def test_returns_url_field(self):
        resolver = self._resolver(b'{"url": "https://x/y.mp3"}')

        url = await resolver.resolve("/artist/some-mix/")

        self.assertEqual(url, "https://x/y.mp3")
        self.assertEqual(len(self.requests), 1)
        self.assertIn("/artist/some-mix/", str(self.requests[0].url))

    async def test_missing_url_field_is_malformed(self):
        resolver = self._resolver(b'{"not_url": 1}')
        with self.assertRaises(MalformedResponse):
            await resolver.resolve("/artist/some-mix/")

    async def test_non_json_body_is_malformed(self):
        resolver = self._resolver(b"not json")
        with self.assertRaises(MalformedResponse):
            await resolver.resolve("/artist/some-mix/")
        self.assertEqual(len(self.requests), 1)

    async def test_non_object_body_is_malformed(self):
        resolver = self._resolver(b'["https://x/y.mp3"]')
        with self.assertRaises(MalformedResponse):
            await resolver.resolve("/artist/some-mix/")

    async def test_empty_url_means_no_source(self):
        self.assertIsNone(await self._resolver(b'{"url": ""}').resolve("/a/"))
        self.assertIsNone(await self._resolver(b'{"url": null}').resolve("/a/"))

    def test_key_is_substituted_verbatim(self):
        resolver = SourceResolver(fetcher=None, endpoint=ENDPOINT)
        self.assertEqual(
            resolver.build_target("/dj/mix-1/"),
            "https://resolver.test/ajax.php/?url=https://www.mixcloud.com/dj/mix-1/",
        )


if __name__ == "__main__":
    unittest.main()
