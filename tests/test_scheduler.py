"""
Tests for the timer scheduler and virtual time.
"""

import threading
import unittest

from focuscoach.core.scheduler import InlineExecutor, Scheduler, VirtualClock, VirtualScheduler


class TestVirtualClock(unittest.TestCase):

    def test_advance(self):
        clock = VirtualClock(10.0)
        self.assertEqual(clock.advance(2.5), 12.5)
        self.assertEqual(clock.now(), 12.5)

    def test_cannot_go_backwards(self):
        clock = VirtualClock(5.0)
        with self.assertRaises(ValueError):
            clock.set(4.0)


class TestVirtualScheduler(unittest.TestCase):

    def setUp(self):
        self.scheduler = VirtualScheduler()
        self.calls = []

    def test_call_later_fires_at_deadline(self):
        self.scheduler.call_later(2.0, lambda: self.calls.append(self.scheduler.now()))
        self.scheduler.advance(1.9)
        self.assertEqual(self.calls, [])
        self.scheduler.advance(0.1)
        self.assertEqual(self.calls, [2.0])

    def test_call_every_repeats_until_cancelled(self):
        handle = self.scheduler.call_every(1.0, lambda: self.calls.append(self.scheduler.now()))
        self.scheduler.advance(3.5)
        self.assertEqual(self.calls, [1.0, 2.0, 3.0])
        handle.cancel()
        self.scheduler.advance(5.0)
        self.assertEqual(len(self.calls), 3)
        self.assertEqual(self.scheduler.pending_timers(), 0)

    def test_first_delay(self):
        self.scheduler.call_every(1.5, lambda: self.calls.append(self.scheduler.now()), first_delay=0.0)
        self.scheduler.advance(3.0)
        self.assertEqual(self.calls, [0.0, 1.5, 3.0])

    def test_invalid_interval(self):
        with self.assertRaises(ValueError):
            self.scheduler.call_every(0, lambda: None)

    def test_deadline_order(self):
        self.scheduler.call_later(3.0, self.calls.append, "c")
        self.scheduler.call_later(1.0, self.calls.append, "a")
        self.scheduler.call_later(2.0, self.calls.append, "b")
        self.scheduler.advance_to(5.0)
        self.assertEqual(self.calls, ["a", "b", "c"])
        self.assertEqual(self.scheduler.now(), 5.0)

    def test_callback_cancelling_its_own_timer(self):
        handles = []

        def once():
            self.calls.append(self.scheduler.now())
            handles[0].cancel()

        handles.append(self.scheduler.call_every(1.0, once))
        self.scheduler.advance(5.0)
        self.assertEqual(self.calls, [1.0])

    def test_failing_callback_does_not_stop_scheduler(self):
        def broken():
            raise RuntimeError("timer failure")

        self.scheduler.call_later(1.0, broken)
        self.scheduler.call_later(2.0, self.calls.append, "after")
        self.scheduler.advance(2.0)
        self.assertEqual(self.calls, ["after"])

    def test_call_soon_threadsafe_from_worker(self):
        worker = threading.Thread(target=self.scheduler.call_soon_threadsafe,
                                  args=(self.calls.append, "from worker"))
        worker.start()
        worker.join()
        self.assertEqual(self.calls, [])
        self.assertEqual(self.scheduler.run_pending(), 1)
        self.assertEqual(self.calls, ["from worker"])

    def test_queued_callbacks_run_during_advance(self):
        self.scheduler.call_later(1.0, lambda: self.scheduler.call_soon_threadsafe(self.calls.append, "queued"))
        self.scheduler.advance(1.0)
        self.assertEqual(self.calls, ["queued"])


class TestScheduler(unittest.TestCase):

    def test_run_pending_uses_clock(self):
        clock = VirtualClock(100.0)
        scheduler = Scheduler(clock)
        calls = []
        scheduler.call_later(1.0, calls.append, 1)
        self.assertEqual(scheduler.run_pending(), 0)
        clock.advance(1.0)
        self.assertEqual(scheduler.run_pending(), 1)
        self.assertEqual(calls, [1])

    def test_run_forever_stops(self):
        scheduler = Scheduler()
        calls = []

        def finish():
            calls.append("done")
            scheduler.stop()

        scheduler.call_later(0.01, finish)
        scheduler.run_forever(max_sleep=0.01)
        self.assertEqual(calls, ["done"])


class TestInlineExecutor(unittest.TestCase):

    def test_result_and_exception(self):
        executor = InlineExecutor()
        self.assertEqual(executor.submit(lambda x: x * 2, 21).result(), 42)

        def broken():
            raise ValueError("bad")

        future = executor.submit(broken)
        self.assertIsInstance(future.exception(), ValueError)


if __name__ == '__main__':
    unittest.main()
