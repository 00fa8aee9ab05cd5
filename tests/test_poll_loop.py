import tempfile
import threading
import time
import unittest
from pathlib import Path
from unittest import mock

from cloudwatch_tail.exceptions import FetchError, ThrottledError
from cloudwatch_tail.models import FetchPage
from cloudwatch_tail.poll_loop import PollLoop
from cloudwatch_tail.start_position import Beginning, RelativeSeconds

from fakes import ListEmitter, ScriptedFetcher, SpyStore, record

NOW = 1_700_000_000_000


class PollLoopTestCase(unittest.TestCase):
    def setUp(self):
        td = tempfile.TemporaryDirectory()
        self.addCleanup(td.cleanup)
        self.path = Path(td.name) / ".sincedb"
        self.store = SpyStore(self.path)
        self.fetcher = ScriptedFetcher()
        self.emitter = ListEmitter()

    def make_loop(self, **kwargs):
        params = dict(
            group="g",
            log_streams=(),
            fetcher=self.fetcher,
            emitter=self.emitter,
            store=self.store,
            start_position=Beginning(),
            interval_sec=0,
            clock=lambda: NOW,
            backoff_jitter=0,
        )
        params.update(kwargs)
        return PollLoop(**params)


class TestCycle(PollLoopTestCase):
    def test_two_pages_consumed_and_saved_after_each(self):
        self.fetcher.push(
            FetchPage([record(100), record(105)], "t1"),
            FetchPage([record(110)], None),
        )
        loop = self.make_loop()

        stats = loop.run_once()

        self.assertEqual((stats.pages, stats.records, stats.events), (2, 3, 3))
        self.assertFalse(stats.throttled or stats.failed)
        self.assertEqual(self.store.saved, [{"g": 106}, {"g": 111}])
        self.assertEqual(self.path.read_text(encoding="utf-8"), "g 111\n")
        cursors = [c for _, _, c in self.fetcher.calls]
        self.assertEqual(cursors[0].start_time, 0)
        self.assertIsNone(cursors[0].next_token)
        self.assertEqual(cursors[1].next_token, "t1")
        self.assertIsNone(cursors[1].start_time)
        self.assertEqual(loop.priority, ["g"])

    def test_throttle_on_page_two_keeps_page_one_progress(self):
        self.fetcher.push(
            FetchPage([record(100), record(200)], "t1"),
            ThrottledError("slow down", code="ThrottlingException"),
            FetchPage([record(300)], None),
        )
        loop = self.make_loop()

        stats = loop.run_once()

        self.assertTrue(stats.throttled)
        self.assertEqual(stats.checkpoint, 201)
        self.assertEqual(self.path.read_text(encoding="utf-8"), "g 201\n")
        self.assertEqual([r.timestamp for _, r in self.emitter.emitted], [100, 200])
        self.assertEqual(loop.priority, [])

        self.fetcher.steps.clear()
        self.fetcher.push(FetchPage([record(201)], None))
        loop.run_once()
        self.assertEqual(self.fetcher.calls[-1][2].start_time, 201)
        self.assertEqual(loop.checkpoint(), 202)

    def test_failed_save_keeps_in_memory_offset_for_next_cycle(self):
        self.fetcher.push(FetchPage([record(10)], None))
        loop = self.make_loop()
        with mock.patch("cloudwatch_tail.checkpoints.tempfile.mkstemp", side_effect=PermissionError("denied")):
            stats = loop.run_once()

        self.assertFalse(stats.failed)
        self.assertEqual(loop.checkpoint(), 11)
        self.assertFalse(self.path.exists())

        self.fetcher.push(FetchPage([record(20)], None))
        loop.run_once()
        self.assertEqual(self.fetcher.calls[-1][2].start_time, 11)
        self.assertEqual(self.path.read_text(encoding="utf-8"), "g 21\n")

    def test_offset_never_decreases(self):
        self.fetcher.push(FetchPage([record(500), record(300)], None))
        loop = self.make_loop()
        loop.run_once()
        self.assertEqual(loop.checkpoint(), 501)

        self.fetcher.push(FetchPage([record(400)], None))
        loop.run_once()
        self.assertEqual(loop.checkpoint(), 501)

    def test_persisted_offset_wins_over_policy(self):
        self.path.write_text("g 42\nother 7\n", encoding="utf-8")
        self.fetcher.push(FetchPage([record(50)], None))
        loop = self.make_loop(start_position=RelativeSeconds(100))

        loop.run_once()

        self.assertEqual(self.fetcher.calls[0][2].start_time, 42)
        self.assertEqual(self.store.load(), {"g": 51, "other": 7})

    def test_unseen_group_resolved_from_policy(self):
        loop = self.make_loop(start_position=RelativeSeconds(100))
        loop.run_once()
        self.assertEqual(self.fetcher.calls[0][2].start_time, 1_699_999_900_000)
        self.assertEqual(loop.checkpoint(), 1_699_999_900_000)

    def test_corrupt_checkpoint_file_falls_back_to_policy(self):
        self.path.write_text("this is not a sincedb\n", encoding="utf-8")
        loop = self.make_loop(start_position=RelativeSeconds(100))
        loop.run_once()
        self.assertEqual(self.fetcher.calls[0][2].start_time, 1_699_999_900_000)

    def test_other_fetch_failure_is_contained(self):
        self.fetcher.push(FetchError("boom"))
        loop = self.make_loop()
        stats = loop.run_once()
        self.assertTrue(stats.failed)
        self.assertEqual(loop.throttle_streak, 0)

    def test_streams_passed_through(self):
        loop = self.make_loop(log_streams=("a", "b"))
        loop.run_once()
        self.assertEqual(self.fetcher.calls[0][1], ("a", "b"))

    def test_stop_mid_cycle_finishes_current_page(self):
        loop = self.make_loop()

        class StoppingEmitter(ListEmitter):
            def emit(inner, rec, group):
                loop.stop()
                return super().emit(rec, group)

        loop.emitter = StoppingEmitter()
        self.fetcher.push(FetchPage([record(10), record(20)], "t1"), FetchPage([record(30)], None))

        stats = loop.run_once()

        self.assertEqual(stats.pages, 1)
        self.assertEqual(self.path.read_text(encoding="utf-8"), "g 21\n")
        self.assertEqual(len(self.fetcher.steps), 1)


class TestBackoff(PollLoopTestCase):
    def test_delay_grows_with_consecutive_throttles_and_resets(self):
        loop = self.make_loop(interval_sec=10, backoff_base_sec=2, backoff_max_sec=5)
        self.assertEqual(loop.next_delay(), 10)

        self.fetcher.push(ThrottledError("x"))
        loop.run_once()
        self.assertEqual(loop.next_delay(), 12)

        self.fetcher.push(ThrottledError("x"))
        loop.run_once()
        self.assertEqual(loop.next_delay(), 14)

        self.fetcher.push(ThrottledError("x"))
        loop.run_once()
        self.assertEqual(loop.next_delay(), 15)

        loop.run_once()
        self.assertEqual(loop.next_delay(), 10)


class TestRun(PollLoopTestCase):
    def test_stop_interrupts_sleep(self):
        cycled = threading.Event()

        class SignallingFetcher(ScriptedFetcher):
            def fetch_page(inner, group, log_streams, cursor):
                cycled.set()
                return super().fetch_page(group, log_streams, cursor)

        self.fetcher = SignallingFetcher()
        loop = self.make_loop(interval_sec=60)
        worker = threading.Thread(target=loop.run, daemon=True)
        worker.start()

        self.assertTrue(cycled.wait(5))
        time.sleep(0.05)
        started = time.monotonic()
        loop.stop()
        worker.join(5)

        self.assertFalse(worker.is_alive())
        self.assertLess(time.monotonic() - started, 2)

    def test_stop_before_start_runs_no_cycle(self):
        loop = self.make_loop()
        loop.stop()
        loop.run()
        self.assertEqual(self.fetcher.calls, [])


if __name__ == "__main__":
    unittest.main()
