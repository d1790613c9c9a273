import threading
import unittest
from urllib.parse import urlsplit

from sitemirror.crawler.registry import (
    ERROR_STATES,
    TERMINAL_STATES,
    ResourceRegistry,
    ResourceState,
)
from sitemirror.crawler.urls import parse_seed


class TestResourceRegistry(unittest.TestCase):

    def setUp(self):
        self.registry = ResourceRegistry(parse_seed("example.com"))

    def test_register_once(self):
        first, created = self.registry.register(urlsplit("http://example.com/a"))
        again, created_again = self.registry.register(urlsplit("http://example.com/a"))
        self.assertTrue(created)
        self.assertFalse(created_again)
        self.assertIs(first, again)
        self.assertEqual(len(self.registry), 1)

    def test_classification_on_register(self):
        local, _ = self.registry.register(urlsplit("http://example.com/a"))
        foreign, _ = self.registry.register(urlsplit("https://other.com/"))
        mail, _ = self.registry.register(urlsplit("mailto:me@example.com"))

        self.assertFalse(local.is_external)
        self.assertTrue(local.is_interesting)
        self.assertTrue(foreign.is_external)
        self.assertTrue(foreign.is_interesting)
        self.assertFalse(mail.is_interesting)
        self.assertEqual(local.state, ResourceState.WAIT)

    def test_snapshot_keeps_insertion_order(self):
        for name in ("c", "a", "b"):
            self.registry.register(urlsplit(f"http://example.com/{name}"))
        urls = [r.url for r in self.registry.snapshot()]
        self.assertEqual(urls, ["http://example.com/c", "http://example.com/a", "http://example.com/b"])
        self.assertIsNotNone(self.registry.get("http://example.com/a"))
        self.assertIsNone(self.registry.get("http://example.com/missing"))

    def test_concurrent_registration_creates_one_record(self):
        threads = 16
        barrier = threading.Barrier(threads)
        results = []
        results_lock = threading.Lock()

        def worker():
            barrier.wait()
            outcome = self.registry.register(urlsplit("http://example.com/shared"))
            with results_lock:
                results.append(outcome)

        workers = [threading.Thread(target=worker) for _ in range(threads)]
        for t in workers:
            t.start()
        for t in workers:
            t.join()

        self.assertEqual(sum(1 for _, created in results if created), 1)
        self.assertEqual(len({id(resource) for resource, _ in results}), 1)
        self.assertEqual(len(self.registry), 1)


class TestResource(unittest.TestCase):

    def setUp(self):
        registry = ResourceRegistry(parse_seed("example.com"))
        self.resource, _ = registry.register(urlsplit("http://example.com/page"))

    def test_terminal_states_are_final(self):
        self.resource.set_state(ResourceState.SKIP)
        with self.assertRaises(RuntimeError):
            self.resource.set_state(ResourceState.REQUEST)

    def test_fail_attempt_bounded(self):
        r = self.resource
        r.set_state(ResourceState.REQUEST)
        self.assertEqual(r.fail_attempt("boom", 1, ResourceState.REQUEST_WAIT_REPEAT, ResourceState.REQUEST_ERROR),
                         (ResourceState.REQUEST_WAIT_REPEAT, 1))
        r.set_state(ResourceState.REQUEST)
        self.assertEqual(r.fail_attempt("boom", 1, ResourceState.REQUEST_WAIT_REPEAT, ResourceState.REQUEST_ERROR),
                         (ResourceState.REQUEST_ERROR, 2))
        self.assertEqual(r.view().error, "boom")

    def test_fail_attempt_unbounded(self):
        r = self.resource
        for attempt in range(1, 20):
            r.set_state(ResourceState.REQUEST)
            state, repeats = r.fail_attempt("503", None, ResourceState.REQUEST_WAIT_REPEAT,
                                            ResourceState.REQUEST_ERROR)
            self.assertEqual(state, ResourceState.REQUEST_WAIT_REPEAT)
            self.assertEqual(repeats, attempt)

    def test_abandon_uses_phase_error(self):
        r = self.resource
        r.set_state(ResourceState.REQUEST)
        r.set_state(ResourceState.DOWNLOAD)
        self.assertIs(r.abandon("stalled"), ResourceState.DOWNLOAD_ERROR)
        self.assertEqual(r.view().error, "stalled")
        self.assertIsNone(r.abandon("again"))
        self.assertEqual(r.view().error, "stalled")

    def test_abandon_while_saving(self):
        r = self.resource
        for state in (ResourceState.REQUEST, ResourceState.DOWNLOAD, ResourceState.READ, ResourceState.SAVE):
            r.set_state(state)
        self.assertIs(r.abandon("disk vanished"), ResourceState.SAVE_ERROR)

    def test_view_is_a_copy(self):
        self.resource.set_mime("text/html; charset=utf-8")
        self.resource.set_size(42)
        view = self.resource.view()
        self.resource.set_size(43)
        self.assertEqual(view.size, 42)
        self.assertEqual(view.mime, "text/html; charset=utf-8")

    def test_state_groups(self):
        self.assertEqual(ERROR_STATES, {ResourceState.REQUEST_ERROR, ResourceState.DOWNLOAD_ERROR,
                                        ResourceState.SAVE_ERROR})
        self.assertIn(ResourceState.COMPLETE, TERMINAL_STATES)
        self.assertIn(ResourceState.SKIP, TERMINAL_STATES)
        self.assertFalse(ResourceState.REQUEST_WAIT_REPEAT.is_terminal)
        self.assertTrue(ResourceState.SAVE_ERROR.is_error)


if __name__ == "__main__":
    unittest.main()
