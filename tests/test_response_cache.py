import threading
import unittest

from proworkflow import UpstreamUnavailable
from response_cache import ResponseCache, cached_request

from fakes import FakeClock, FakeProWorkflow

TTLS = {"list": 300, "messages": 30, "config": 3600}


class ResponseCacheTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.cache = ResponseCache(ttls=TTLS, default_ttl=120, clock=self.clock)

    def test_set_then_get_returns_value(self):
        self.cache.set("/projects", {"projects": []}, "list")
        self.assertEqual(self.cache.get("/projects", "list"), {"projects": []})

    def test_expired_entry_is_absent_but_kept_until_swept(self):
        self.cache.set("/projects", {"projects": [1]}, "list")

        self.clock.advance(299)
        self.assertIsNotNone(self.cache.get("/projects"))

        self.clock.advance(1)
        self.assertIsNone(self.cache.get("/projects"))
        self.assertEqual(len(self.cache), 1)

        self.assertEqual(self.cache.sweep_expired(), 1)
        self.assertEqual(len(self.cache), 0)

    def test_ttl_depends_on_category(self):
        self.cache.set("/projects/1/messages", {"messages": []}, "messages")
        self.cache.set("/contacts", {"contacts": []}, "config")

        self.clock.advance(60)

        self.assertIsNone(self.cache.get("/projects/1/messages"))
        self.assertIsNotNone(self.cache.get("/contacts"))

    def test_unknown_category_uses_default_ttl(self):
        self.assertEqual(self.cache.ttl_for("mystery"), 120)
        self.cache.set("k", "v", "mystery")
        self.clock.advance(119)
        self.assertEqual(self.cache.get("k"), "v")
        self.clock.advance(1)
        self.assertIsNone(self.cache.get("k"))

    def test_invalidate_removes_every_key_under_tag(self):
        self.cache.set("k1", "v", "list", ["tagA"])
        self.cache.set("k2", "v", "list", ["tagA", "tagB"])
        self.cache.set("k3", "v", "list", ["tagC"])

        self.assertEqual(self.cache.invalidate("tagA"), 2)
        self.assertIsNone(self.cache.get("k1"))
        self.assertIsNone(self.cache.get("k2"))
        self.assertEqual(self.cache.get("k3"), "v")

        self.assertEqual(self.cache.invalidate("tagB"), 0)

    def test_invalidate_unknown_tag_is_noop(self):
        self.cache.set("k1", "v", "list", ["tagA"])
        self.assertEqual(self.cache.invalidate("nope"), 0)
        self.assertEqual(len(self.cache), 1)

    def test_set_overwrites_and_registers_new_tags(self):
        self.cache.set("k", "old", "list", ["tagA"])
        self.cache.set("k", "new", "list", ["tagB"])

        self.assertEqual(self.cache.get("k"), "new")
        self.assertIn("k", self.cache.tagged_keys("tagB"))
        self.assertEqual(self.cache.invalidate("tagB"), 1)
        self.assertIsNone(self.cache.get("k"))

    def test_overwrite_refreshes_age(self):
        self.cache.set("k", "v1", "messages")
        self.clock.advance(25)
        self.cache.set("k", "v2", "messages")
        self.clock.advance(25)
        self.assertEqual(self.cache.get("k"), "v2")

    def test_clear_returns_count_and_empties_index(self):
        self.cache.set("k1", "v", "list", ["tagA"])
        self.cache.set("k2", "v", "list", ["tagB"])

        self.assertEqual(self.cache.clear(), 2)
        self.assertEqual(len(self.cache), 0)
        self.assertEqual(self.cache.tagged_keys("tagA"), set())

    def test_sweep_prunes_tag_index(self):
        self.cache.set("k1", "v", "messages", ["tagA"])
        self.cache.set("k2", "v", "config", ["tagA"])
        self.clock.advance(31)

        self.assertEqual(self.cache.sweep_expired(), 1)
        self.assertEqual(self.cache.tagged_keys("tagA"), {"k2"})

    def test_stats_track_hits_and_misses(self):
        self.cache.set("k", "v", "list")
        self.cache.get("k")
        self.cache.get("missing")
        self.clock.advance(301)
        self.cache.get("k")

        stats = self.cache.stats()
        self.assertEqual(stats["hits"], 1)
        self.assertEqual(stats["misses"], 2)
        self.assertEqual(stats["expired_reads"], 1)
        self.assertEqual(stats["sets"], 1)
        self.assertEqual(stats["size"], 1)

    def test_debug_snapshot_lists_entries_and_index(self):
        long_key = "/projects/" + "x" * 80
        self.cache.set(long_key, {"a": 1}, "list", ["projects"])
        self.clock.advance(10)

        snapshot = self.cache.debug_snapshot()

        self.assertEqual(snapshot["dependency_index"], {"projects": 1})
        entry = snapshot["entries"][0]
        self.assertTrue(entry["key"].endswith("..."))
        self.assertEqual(entry["age_seconds"], 10.0)
        self.assertEqual(entry["ttl_seconds"], 300)
        self.assertFalse(entry["expired"])
        self.assertEqual(entry["tags"], ["projects"])
        self.assertEqual(snapshot["stats"]["size"], 1)

    def test_concurrent_writers_keep_index_consistent(self):
        def writer(n):
            for i in range(200):
                self.cache.set(f"k{n}-{i % 10}", i, "list", [f"tag{i % 3}", "all"])
                if i % 7 == 0:
                    self.cache.invalidate(f"tag{i % 3}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(6)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        snapshot = self.cache.debug_snapshot(limit=1000)
        for entry in snapshot["entries"]:
            for tag in entry["tags"]:
                self.assertIn(entry["key"], self.cache.tagged_keys(tag))
        self.cache.invalidate("all")
        self.assertEqual(len(self.cache), 0)


class CachedRequestTests(unittest.TestCase):
    def setUp(self):
        self.cache = ResponseCache(ttls=TTLS, clock=FakeClock())

    def test_second_read_is_served_from_cache(self):
        upstream = FakeProWorkflow({"/projects": {"projects": [{"id": 1}]}})

        first, first_hit = cached_request(self.cache, upstream, "/projects", "list", ["projects"])
        second, second_hit = cached_request(self.cache, upstream, "/projects", "list", ["projects"])

        self.assertEqual(first, second)
        self.assertFalse(first_hit)
        self.assertTrue(second_hit)
        self.assertEqual(upstream.count("/projects"), 1)

    def test_failures_are_not_cached(self):
        upstream = FakeProWorkflow({"/projects": UpstreamUnavailable("down", "/projects", 503)})

        with self.assertRaises(UpstreamUnavailable):
            cached_request(self.cache, upstream, "/projects", "list")
        self.assertEqual(len(self.cache), 0)


if __name__ == "__main__":
    unittest.main()
