import asyncio
import unittest

from app.core.errors import DuplicateCorrelationIdError
from app.pipeline.state_store import InFlightStore, SagaEntry
from app.schemas.pipeline import PipelineState


class InFlightStoreTests(unittest.IsolatedAsyncioTestCase):
    def _entry(self, cid="cid-1"):
        loop = asyncio.get_running_loop()
        return SagaEntry(state=PipelineState(correlation_id=cid, query="q"), future=loop.create_future())

    async def test_insert_get_remove(self):
        store = InFlightStore(shards=4)
        entry = self._entry()
        store.insert(entry)
        self.assertIn("cid-1", store)
        self.assertIs(store.get("cid-1"), entry)
        self.assertIs(store.remove("cid-1"), entry)
        self.assertIsNone(store.remove("cid-1"))
        self.assertEqual(len(store), 0)

    async def test_duplicate_insert_rejected(self):
        store = InFlightStore()
        store.insert(self._entry())
        with self.assertRaises(DuplicateCorrelationIdError):
            store.insert(self._entry())

    async def test_remove_cancels_timer(self):
        store = InFlightStore()
        entry = self._entry()
        store.insert(entry)
        handle = asyncio.get_running_loop().call_later(60, lambda: None)
        entry.replace_timer(handle)
        store.remove("cid-1")
        self.assertTrue(handle.cancelled())
        self.assertIsNone(entry.timer)

    async def test_replace_timer_keeps_one_live_timer(self):
        entry = self._entry()
        loop = asyncio.get_running_loop()
        first = loop.call_later(60, lambda: None)
        second = loop.call_later(60, lambda: None)
        entry.replace_timer(first)
        entry.replace_timer(second)
        self.assertTrue(first.cancelled())
        self.assertIs(entry.timer, second)
        entry.cancel_timer()

    async def test_locked_yields_none_after_removal(self):
        store = InFlightStore()
        store.insert(self._entry())
        store.remove("cid-1")
        async with store.locked("cid-1") as entry:
            self.assertIsNone(entry)

    async def test_same_id_serializes(self):
        store = InFlightStore(shards=16)
        store.insert(self._entry())
        order = []

        async def critical(tag):
            async with store.locked("cid-1"):
                order.append(f"{tag}-in")
                await asyncio.sleep(0.01)
                order.append(f"{tag}-out")

        await asyncio.gather(critical("a"), critical("b"))
        self.assertEqual(order, ["a-in", "a-out", "b-in", "b-out"])

    async def test_lock_is_stable_per_id(self):
        store = InFlightStore(shards=16)
        self.assertIs(store.lock_for("abc"), store.lock_for("abc"))


if __name__ == "__main__":
    unittest.main()
