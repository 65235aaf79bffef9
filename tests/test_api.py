import json
import unittest

from fastapi.testclient import TestClient
from starlette.requests import Request

from app.api.search import search as search_endpoint
from app.core.constants import SEARCH_CANCELLED, SEARCH_COMPLETED, SEARCH_DEGRADED, SERVICE_UNAVAILABLE
from app.main import create_app
from app.pipeline.runtime import build_runtime
from app.schemas.messages import ExpandReply, Stage
from app.schemas.search import SearchRequest

from tests.helpers import FailingClient, ListSearcher, ReverseRanker, StaticExpander, fast_settings, wait_for


class SearchApiTests(unittest.TestCase):
    def _client(self, **collaborators):
        settings = fast_settings(expand_timeout_seconds=1, retrieve_timeout_seconds=1, rank_timeout_seconds=0.1)
        self.runtime = build_runtime(settings, **collaborators)
        return TestClient(create_app(self.runtime))

    def test_search_returns_envelope(self):
        with self._client(
            expander=StaticExpander(),
            dense=ListSearcher("dense", ["a", "b"]),
            sparse=ListSearcher("sparse", ["b", "c"]),
            ranker=ReverseRanker(),
        ) as client:
            resp = client.post("/api/v1/search", json={"query": "ballast water"})

        self.assertEqual(resp.status_code, 200)
        body = resp.json()
        self.assertEqual(body["status"], "success")
        self.assertEqual(body["message"], SEARCH_COMPLETED)
        self.assertEqual([r["id"] for r in body["data"]["results"]], ["c", "a", "b"])
        self.assertEqual(body["data"]["query"], "ballast water")

    def test_degraded_search_still_succeeds(self):
        with self._client(
            expander=StaticExpander(),
            dense=ListSearcher("dense", ["a", "b"]),
            sparse=ListSearcher("sparse", ["b", "c"]),
        ) as client:
            resp = client.post("/api/v1/search", json={"query": "ballast water"})

        body = resp.json()
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(body["message"], SEARCH_DEGRADED)
        self.assertEqual(body["data"]["degraded_stages"], ["rank"])
        self.assertTrue(all(r["score"] == 0.0 for r in body["data"]["results"]))

    def test_dispatch_failure_is_503(self):
        with self._client() as client:
            orchestrator = self.runtime.orchestrator
            orchestrator.clients[Stage.EXPAND] = FailingClient(orchestrator.definition_for(Stage.EXPAND))
            resp = client.post("/api/v1/search", json={"query": "ballast water"})

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json()["status"], "error")
        self.assertEqual(resp.json()["message"], SERVICE_UNAVAILABLE)

    def test_empty_query_rejected(self):
        with self._client() as client:
            resp = client.post("/api/v1/search", json={"query": ""})
        self.assertEqual(resp.status_code, 422)

    def test_health_and_fallback(self):
        with self._client() as client:
            health = client.get("/api/health")
            fallback = client.get("/api/fallback")

        self.assertEqual(health.json(), {"status": "ok", "service": "searchsaga", "in_flight": 0})
        self.assertEqual(fallback.status_code, 503)
        self.assertEqual(fallback.json()["message"], SERVICE_UNAVAILABLE)


class ClientDisconnectTests(unittest.IsolatedAsyncioTestCase):
    """The route driven directly with an ASGI receive that reports a disconnect."""

    async def asyncSetUp(self):
        # No stage workers and long timeouts: the saga stays in flight until the client leaves
        self.runtime = build_runtime(
            fast_settings(expand_timeout_seconds=5, retrieve_timeout_seconds=5, rank_timeout_seconds=5),
        )
        await self.runtime.start()
        self.expand_requests = []

        async def capture(message):
            self.expand_requests.append(message)

        self.runtime.bus.subscribe(self.runtime.settings.expand_request_channel, capture)

    async def asyncTearDown(self):
        await self.runtime.stop()

    async def test_disconnect_returns_499_and_evicts_saga(self):
        async def receive():
            return {"type": "http.disconnect"}

        request = Request({"type": "http", "method": "POST", "path": "/api/v1/search", "headers": []}, receive)
        orchestrator = self.runtime.orchestrator

        response = await search_endpoint(SearchRequest(query="ballast"), request, orchestrator)

        self.assertEqual(response.status_code, 499)
        body = json.loads(response.body)
        self.assertEqual(body["status"], "error")
        self.assertEqual(body["message"], SEARCH_CANCELLED)

        await wait_for(lambda: orchestrator.in_flight() == 0)
        await wait_for(lambda: len(self.expand_requests) == 1)
        cid = self.expand_requests[0]["correlation_id"]

        late = ExpandReply(correlation_id=cid, variants=["late"])
        applied = await self.runtime.router.route(
            orchestrator.definition_for(Stage.EXPAND), late.model_dump(mode="json"),
        )
        self.assertFalse(applied)
        self.assertEqual(orchestrator.in_flight(), 0)


if __name__ == "__main__":
    unittest.main()
