"""Tests for data model classes."""

import unittest

import pydantic

from research_scraper.models import (
    ExecutionOptions,
    ExtractedData,
    PageResult,
    ScraperConfig,
    ScrapingStats,
)


def _config(**overrides):
    values = {"id": "static", "name": "Static", "strategy": "static"}
    values.update(overrides)
    return ScraperConfig(**values)


class TestScraperConfig(unittest.TestCase):
    """Verify declared plugin configuration is validated."""

    def test_defaults(self):
        """Optional fields get their defaults."""
        config = _config()
        self.assertEqual(config.priority, 0)
        self.assertEqual(config.timeout_seconds, 30.0)
        self.assertEqual(config.max_retries, 3)
        self.assertEqual(config.speed, "medium")

    def test_rejects_out_of_range_values(self):
        """Numeric fields outside their ranges are refused."""
        for overrides in (
            {"priority": 101},
            {"priority": -1},
            {"timeout_seconds": 0.5},
            {"timeout_seconds": 301},
            {"max_retries": 11},
            {"max_concurrency": 0},
        ):
            with self.assertRaises(pydantic.ValidationError, msg=str(overrides)):
                _config(**overrides)

    def test_rejects_unknown_strategy_and_speed(self):
        """Strategy and speed must be known values."""
        with self.assertRaises(pydantic.ValidationError):
            _config(strategy="magic")
        with self.assertRaises(pydantic.ValidationError):
            _config(speed="instant")

    def test_rejects_blank_name_and_unknown_fields(self):
        """Blank names and extra keys are refused."""
        with self.assertRaises(pydantic.ValidationError):
            _config(name="   ")
        with self.assertRaises(pydantic.ValidationError):
            _config(colour="blue")

    def test_rejects_patterns_that_do_not_compile(self):
        """URL patterns must be valid regular expressions."""
        with self.assertRaises(pydantic.ValidationError):
            _config(supported_patterns=["(unclosed"])

    def test_config_is_immutable(self):
        """A validated config cannot be modified."""
        config = _config()
        with self.assertRaises(pydantic.ValidationError):
            config.priority = 99


class TestExecutionOptions(unittest.TestCase):
    """Per-run execution options."""

    def test_cancelled_follows_event(self):
        """cancelled reflects the cancel event."""
        import threading

        event = threading.Event()
        options = ExecutionOptions(cancel_event=event)
        self.assertFalse(options.cancelled)
        event.set()
        self.assertTrue(options.cancelled)
        self.assertFalse(ExecutionOptions().cancelled)


class TestExtractedData(unittest.TestCase):
    """Counting extracted data."""

    def test_data_points(self):
        """Data points count every extracted item."""
        data = ExtractedData(
            title="Acme",
            description="",
            text_content="Body",
            links=["https://acme.com/a", "https://acme.com/b"],
            contact_info={"emails": ["a@acme.com"], "phones": ["555 1234 567"]},
            social_links={"twitter": "https://twitter.com/acme"},
            structured_data={"json_ld": []},
        )
        # title + text, 2 contacts, 1 social, 1 structured key, 2 links
        self.assertEqual(data.data_points(), 8)


class TestScrapingStats(unittest.TestCase):
    """Verify stats are derived from page results."""

    def test_from_pages(self):
        """Stats are derived from the page results."""
        pages = [
            PageResult(url="https://a.com/1", success=True, status_code=200, scraper_id="s",
                       data=ExtractedData(title="x"), duration=1.0, bytes_downloaded=100),
            PageResult(url="https://a.com/2", success=True, status_code=200, scraper_id="s",
                       duration=3.0, bytes_downloaded=50),
            PageResult(url="https://a.com/3", success=False, status_code=None, scraper_id="s",
                       error="boom", error_code="TIMEOUT", duration=2.0),
        ]
        stats = ScrapingStats.from_pages(pages, duration=4.0, links_discovered=7)
        self.assertEqual(stats.pages_attempted, 3)
        self.assertEqual(stats.pages_succeeded, 2)
        self.assertEqual(stats.pages_failed, 1)
        self.assertEqual(stats.bytes_downloaded, 150)
        self.assertEqual(stats.data_points_extracted, 1)
        self.assertEqual(stats.links_discovered, 7)
        self.assertAlmostEqual(stats.average_time_per_page, 2.0)
        self.assertAlmostEqual(stats.success_rate, 200.0 / 3)

    def test_empty_pages(self):
        """No pages gives zeroed stats."""
        stats = ScrapingStats.from_pages([], duration=0.0, links_discovered=0)
        self.assertEqual(stats.success_rate, 0.0)
        self.assertEqual(stats.average_time_per_page, 0.0)

    def test_page_result_is_immutable(self):
        """Page results cannot be modified after creation."""
        page = PageResult(url="https://a.com", success=True, status_code=200, scraper_id="s")
        with self.assertRaises(AttributeError):
            page.success = False


if __name__ == "__main__":
    unittest.main()
