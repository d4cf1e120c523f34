"""Tests for URL normalisation."""

import unittest

from research_scraper.normalization import dedupe_urls, normalize_url, unique_normalized


class TestNormalizeUrl(unittest.TestCase):
    """Canonical URL keys used for dedupe and aggregation."""

    def test_case_and_trailing_slash(self):
        """Host case and a trailing slash do not change the key."""
        self.assertEqual(normalize_url("https://Example.com/a/"), normalize_url("https://example.com/a"))
        self.assertEqual(normalize_url("https://Example.com/a/"), "https://example.com/a")

    def test_root_keeps_slash(self):
        """The root path keeps its slash."""
        self.assertEqual(normalize_url("https://example.com"), "https://example.com/")
        self.assertEqual(normalize_url("https://example.com/"), "https://example.com/")

    def test_default_port_and_fragment_dropped(self):
        """Default ports and fragments are stripped."""
        self.assertEqual(normalize_url("HTTPS://example.com:443/x#section"), "https://example.com/x")
        self.assertEqual(normalize_url("http://example.com:8080/x"), "http://example.com:8080/x")

    def test_query_parameters_sorted(self):
        """Query parameters are sorted."""
        self.assertEqual(normalize_url("https://example.com/s?b=2&a=1"), "https://example.com/s?a=1&b=2")

    def test_bare_host_gets_scheme(self):
        """A bare host is treated as https."""
        self.assertEqual(normalize_url("example.com/about"), "https://example.com/about")

    def test_unusable_inputs(self):
        """Blank and non-http inputs normalize to an empty string."""
        for value in ("", "   ", None, 42, "mailto:a@b.com", "ftp://example.com/file", "not a url"):
            self.assertEqual(normalize_url(value), "", repr(value))

    def test_unique_normalized_keeps_order(self):
        """Dedupe keeps the first-seen order."""
        urls = ["https://b.com/", "https://A.com/x/", "https://a.com/x", "", "https://b.com"]
        self.assertEqual(unique_normalized(urls), ["https://b.com/", "https://a.com/x"])

    def test_dedupe_urls_keeps_first_raw_spelling(self):
        """Duplicates collapse by normalized key but the discovered spelling is returned."""
        urls = ["https://example.com/docs/?b=2&a=1;c=3", "https://Example.com/docs?a=1;c=3&b=2", "", "nope nope"]
        self.assertEqual(dedupe_urls(urls), ["https://example.com/docs/?b=2&a=1;c=3"])

    def test_dedupe_urls_adds_scheme_to_bare_host(self):
        """A bare host is made fetchable without otherwise changing it."""
        self.assertEqual(dedupe_urls(["example.com/About/"]), ["https://example.com/About/"])


if __name__ == "__main__":
    unittest.main()
