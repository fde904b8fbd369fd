import random
import threading
import time
import unittest

from bounded_fetch import run_bounded


class RunBoundedTests(unittest.TestCase):
    def test_results_follow_input_order_regardless_of_completion_order(self):
        rng = random.Random(7)
        delays = [rng.uniform(0, 0.03) for _ in range(20)]

        def make(i, delay):
            def produce():
                time.sleep(delay)
                return i
            return produce

        for limit in (1, 3, 8, 20):
            results = run_bounded([make(i, d) for i, d in enumerate(delays)], limit)
            self.assertEqual(results, list(range(20)))

    def test_never_exceeds_concurrency_limit(self):
        lock = threading.Lock()
        state = {"active": 0, "peak": 0}

        def produce():
            with lock:
                state["active"] += 1
                state["peak"] = max(state["peak"], state["active"])
            time.sleep(0.01)
            with lock:
                state["active"] -= 1
            return True

        results = run_bounded([produce] * 25, 4)

        self.assertEqual(len(results), 25)
        self.assertLessEqual(state["peak"], 4)
        self.assertGreaterEqual(state["peak"], 2)

    def test_empty_input_returns_empty_list(self):
        self.assertEqual(run_bounded([], 5), [])

    def test_limit_above_task_count_runs_everything(self):
        self.assertEqual(run_bounded([lambda: "a", lambda: "b"], 50), ["a", "b"])

    def test_rejects_limit_below_one(self):
        with self.assertRaises(ValueError):
            run_bounded([lambda: 1], 0)

    def test_free_slot_is_reused_while_slow_task_runs(self):
        # With two slots, the slow task only finishes once all fast tasks
        # have run in the other slot; fixed batches would never get there.
        released = threading.Event()
        done = []
        lock = threading.Lock()

        def slow():
            return released.wait(timeout=5)

        def fast():
            with lock:
                done.append(1)
                if len(done) == 4:
                    released.set()
            return "fast"

        results = run_bounded([slow, fast, fast, fast, fast], 2)

        self.assertTrue(results[0])
        self.assertEqual(results[1:], ["fast"] * 4)

    def test_raising_producer_gets_fallback_and_siblings_complete(self):
        def boom():
            raise RuntimeError("upstream exploded")

        results = run_bounded([lambda: 1, boom, lambda: 3], 2, fallback="degraded")

        self.assertEqual(results, [1, "degraded", 3])


if __name__ == "__main__":
    unittest.main()
