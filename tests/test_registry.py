"""Tests for the ScraperRegistry class."""

import threading
import unittest

from research_scraper.errors import PluginUnavailable, ValidationError
from research_scraper.plugins import ImpersonatedHtmlScraper, JsonApiScraper, StaticHtmlScraper
from research_scraper.registry import ScraperRegistry

from support import FakeScraper, make_config_scraper


class TestRegistryLoading(unittest.TestCase):
    """Plugin loading and registration."""

    def test_default_plugins_load(self):
        """The built-in plugins are all registered."""
        registry = ScraperRegistry()
        registry.initialize()
        ids = {p.id for p in registry.get_all_scrapers()}
        self.assertEqual(ids, {"static", "api", "impersonate"})

    def test_initialize_is_idempotent(self):
        """A second initialize keeps the same instances."""
        registry = ScraperRegistry([FakeScraper])
        registry.initialize()
        first = registry.get_scraper_by_id("fake")
        registry.initialize()
        self.assertIs(registry.get_scraper_by_id("fake"), first)

    def test_concurrent_initialize_waits_for_loading(self):
        """A second caller returns only once every plugin is registered."""
        started = threading.Event()
        release = threading.Event()

        class SlowPlugin(FakeScraper):
            CONFIG = dict(FakeScraper.CONFIG, id="slow")

            def __init__(self, *args, **kwargs):
                started.set()
                release.wait(5)
                super().__init__(*args, **kwargs)

        registry = ScraperRegistry([SlowPlugin, FakeScraper])
        seen = []

        def second_caller():
            registry.initialize()
            seen.append(sorted(p.id for p in registry.get_all_scrapers()))

        loader = threading.Thread(target=registry.initialize)
        loader.start()
        self.assertTrue(started.wait(5))
        waiter = threading.Thread(target=second_caller)
        waiter.start()
        waiter.join(0.2)
        self.assertTrue(waiter.is_alive())

        release.set()
        loader.join(5)
        waiter.join(5)
        self.assertEqual(seen, [["fake", "slow"]])

    def test_invalid_plugin_is_skipped(self):
        """A plugin with a bad config is logged and skipped."""
        broken = make_config_scraper("broken", priority=500)
        registry = ScraperRegistry([broken, FakeScraper])
        with self.assertLogs("research_scraper.registry", level="ERROR"):
            registry.initialize()
        self.assertIsNone(registry.get_scraper_by_id("broken"))
        self.assertIsNotNone(registry.get_scraper_by_id("fake"))

    def test_duplicate_id_later_wins(self):
        """Registering an existing id replaces it with a warning."""
        registry = ScraperRegistry([])
        first = FakeScraper()
        second = FakeScraper()
        registry.register(first)
        with self.assertLogs("research_scraper.registry", level="WARNING"):
            registry.register(second)
        self.assertIs(registry.get_scraper_by_id("fake"), second)
        self.assertEqual(len(registry.get_all_scrapers()), 1)

    def test_register_rejects_non_plugins(self):
        """Only BaseScraper instances can be registered."""
        with self.assertRaises(ValidationError):
            ScraperRegistry([]).register(object())

    def test_register_path(self):
        """Plugins can be registered by 'module:Class' path."""
        registry = ScraperRegistry([])
        registry.register_path("research_scraper.plugins:StaticHtmlScraper")
        self.assertIsInstance(registry.get_scraper_by_id("static"), StaticHtmlScraper)
        with self.assertRaises(ValidationError):
            registry.register_path("research_scraper.plugins")
        with self.assertRaises(ValidationError):
            registry.register_path("research_scraper.plugins:DoesNotExist")

    def test_clear(self):
        """clear() empties the registry."""
        registry = ScraperRegistry([FakeScraper])
        registry.initialize()
        registry.clear()
        self.assertEqual(registry.get_all_scrapers(), [])


class TestSelection(unittest.TestCase):
    """Choosing the plugin for a URL."""

    def test_highest_priority_wins(self):
        """Among matching plugins the highest priority is chosen."""
        registry = ScraperRegistry([])
        low = make_config_scraper("low", priority=5)()
        high = make_config_scraper("high", priority=90)()
        registry.register(low)
        registry.register(high)
        self.assertIs(registry.get_best_scraper("https://example.com/"), high)

    def test_can_handle_exception_counts_as_false(self):
        """A plugin whose can_handle raises is skipped."""
        class Exploding(FakeScraper):
            CONFIG = dict(FakeScraper.CONFIG, id="exploding", priority=99)

            def can_handle(self, url):
                raise RuntimeError("boom")

        registry = ScraperRegistry([])
        registry.register(Exploding())
        registry.register(FakeScraper())
        with self.assertLogs("research_scraper.registry", level="WARNING"):
            best = registry.get_best_scraper("https://example.com/")
        self.assertEqual(best.id, "fake")

    def test_no_match_returns_none(self):
        """No matching plugin gives None."""
        registry = ScraperRegistry([])
        registry.register(make_config_scraper("narrow", supported=[r"^https://only\.example\.org"])())
        self.assertIsNone(registry.get_best_scraper("https://example.com/"))

    def test_default_routing(self):
        """Built-in plugins route pages, APIs and binaries as expected."""
        registry = ScraperRegistry()
        registry.initialize()
        self.assertIsInstance(registry.get_best_scraper("https://example.com/about"), StaticHtmlScraper)
        self.assertIsInstance(registry.get_best_scraper("https://example.com/api/v1/items"), JsonApiScraper)
        self.assertIsInstance(registry.get_best_scraper("https://api.example.com/items"), JsonApiScraper)
        self.assertIsNone(registry.get_best_scraper("https://example.com/brochure.pdf"))

    def test_require_raises_for_unknown_id(self):
        """require() raises for an unknown id."""
        with self.assertRaises(PluginUnavailable):
            ScraperRegistry([]).require("missing")

    def test_summary_sorted_by_priority(self):
        """The summary lists plugins by descending priority."""
        registry = ScraperRegistry([StaticHtmlScraper, JsonApiScraper, ImpersonatedHtmlScraper])
        registry.initialize()
        self.assertEqual([s["id"] for s in registry.summary()], ["api", "static", "impersonate"])


if __name__ == "__main__":
    unittest.main()
