import unittest

from app.pipeline.stages import build_stage_definitions
from app.pipeline.workers import ExpansionWorker, RankingWorker, RetrievalWorker
from app.schemas.messages import ExpandRequest, RankRequest, RetrieveRequest, Stage
from app.services.bus import MessageBus

from tests.helpers import (
    FailingExpander,
    ListSearcher,
    ReverseRanker,
    StaticExpander,
    candidates,
    fast_settings,
)


class WorkerTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.settings = fast_settings()
        self.definitions = {d.stage: d for d in build_stage_definitions(self.settings)}
        self.bus = MessageBus(workers_per_channel=1)
        self.replies = []

        async def capture(message):
            self.replies.append(message)

        for definition in self.definitions.values():
            self.bus.subscribe(definition.reply_channel, capture)

    async def asyncTearDown(self):
        await self.bus.close()


class RetrievalWorkerTests(WorkerTestCase):
    def _worker(self, dense, sparse):
        return RetrievalWorker(self.definitions[Stage.RETRIEVE], self.bus, dense, sparse)

    def _request(self, top_k=10):
        return RetrieveRequest(correlation_id="cid", query="q", variants=["q", "q2"], top_k=top_k)

    async def test_fuses_both_sources(self):
        worker = self._worker(ListSearcher("dense", ["a", "b", "c"]), ListSearcher("sparse", ["b", "d"]))
        reply = await worker.process(self._request())
        self.assertEqual([c.id for c in reply.candidates], ["b", "a", "d", "c"])
        self.assertEqual(reply.candidates[0].source, "dense+sparse")
        self.assertEqual(reply.degraded_sources, [])

    async def test_respects_top_k(self):
        worker = self._worker(ListSearcher("dense", ["a", "b", "c"]), ListSearcher("sparse", ["d", "e"]))
        reply = await worker.process(self._request(top_k=2))
        self.assertEqual(len(reply.candidates), 2)

    async def test_surviving_source_skips_fusion(self):
        worker = self._worker(
            ListSearcher("dense", ["a", "b"], fail=True),
            ListSearcher("sparse", ["x", "y", "z"]),
        )
        reply = await worker.process(self._request())
        self.assertEqual([c.id for c in reply.candidates], ["x", "y", "z"])
        self.assertEqual([c.source for c in reply.candidates], ["sparse"] * 3)
        self.assertAlmostEqual(reply.candidates[0].score, 1.0)
        self.assertEqual(reply.degraded_sources, ["dense"])

    async def test_both_sources_down_publishes_error_reply(self):
        worker = self._worker(
            ListSearcher("dense", ["a"], fail=True),
            ListSearcher("sparse", ["b"], fail=True),
        )
        await worker.handle(self._request().model_dump())
        await self.bus.drain()

        self.assertEqual(len(self.replies), 1)
        self.assertEqual(self.replies[0]["correlation_id"], "cid")
        self.assertIn("dense", self.replies[0]["error"])
        self.assertEqual(self.replies[0]["candidates"], [])


class ExpansionWorkerTests(WorkerTestCase):
    async def test_reply_carries_variants(self):
        worker = ExpansionWorker(self.definitions[Stage.EXPAND], self.bus, StaticExpander(["v1", "v2"]))
        await worker.handle(ExpandRequest(correlation_id="cid", query="q").model_dump())
        await self.bus.drain()
        self.assertEqual(self.replies[0]["variants"], ["v1", "v2"])
        self.assertIsNone(self.replies[0]["error"])

    async def test_collaborator_error_becomes_error_reply(self):
        worker = ExpansionWorker(self.definitions[Stage.EXPAND], self.bus, FailingExpander())
        await worker.handle(ExpandRequest(correlation_id="cid", query="q").model_dump())
        await self.bus.drain()
        self.assertEqual(self.replies[0]["error"], "llm unavailable")

    async def test_malformed_request_is_dropped(self):
        expander = StaticExpander()
        worker = ExpansionWorker(self.definitions[Stage.EXPAND], self.bus, expander)
        await worker.handle({"query": "no correlation id"})
        await self.bus.drain()
        self.assertEqual(self.replies, [])
        self.assertEqual(expander.calls, 0)


class RankingWorkerTests(WorkerTestCase):
    async def test_ranks_candidates(self):
        worker = RankingWorker(self.definitions[Stage.RANK], self.bus, ReverseRanker())
        reply = await worker.process(
            RankRequest(correlation_id="cid", query="q", candidates=candidates(["a", "b"]))
        )
        self.assertEqual([r.id for r in reply.ranked], ["b", "a"])


if __name__ == "__main__":
    unittest.main()
