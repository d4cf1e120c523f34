"""Shared fixtures for the test suite: a scriptable plugin and SQLite stores."""

import os
import tempfile
import threading

from research_scraper.backoff import BackoffStrategy
from research_scraper.base import BaseScraper, FetchedPage
from research_scraper.db import create_db_engine, create_session_factory, init_db
from research_scraper.extractors import extract_html

PAGE_HTML = """
<html>
  <head>
    <title>{title}</title>
    <meta name="description" content="About {title}">
  </head>
  <body>
    <h1>{title}</h1>
    <p>Contact us at hello@example.com</p>
    <a href="/about">About</a>
    <a href="https://example.com/pricing/">Pricing</a>
    <a href="https://twitter.com/example">Twitter</a>
  </body>
</html>
"""


class FakeScraper(BaseScraper):
    """Plugin whose fetch() behaviour is scripted per URL.

    `responses` maps a URL to a status code, an exception instance to
    raise, or a callable taking the URL and returning either of those.
    Unlisted URLs return 200 with PAGE_HTML."""

    CONFIG = {
        "id": "fake",
        "name": "Fake Scraper",
        "strategy": "static",
        "priority": 10,
        "max_retries": 1,
        "max_concurrency": 2,
    }

    def __init__(self, responses=None, **kwargs):
        kwargs.setdefault("backoff", BackoffStrategy(base_seconds=0.001, max_seconds=0.01))
        super().__init__(**kwargs)
        self.responses = responses or {}
        self.calls = []
        self._calls_lock = threading.Lock()

    def fetch(self, url, options):
        with self._calls_lock:
            self.calls.append(url)
        behaviour = self.responses.get(url, 200)
        if callable(behaviour) and not isinstance(behaviour, type):
            behaviour = behaviour(url)
        if isinstance(behaviour, Exception):
            raise behaviour
        title = url.rstrip("/").rsplit("/", 1)[-1] or "home"
        html = PAGE_HTML.format(title=title)
        return FetchedPage(url=url, status_code=behaviour, text=html, bytes_downloaded=len(html))

    def parse(self, page):
        return extract_html(page.text, page.url)


def make_config_scraper(plugin_id, priority=10, supported=None, excluded=None, base=FakeScraper):
    """Build a FakeScraper subclass with its own id and patterns."""
    config = dict(base.CONFIG)
    config.update({"id": plugin_id, "name": f"{plugin_id} scraper", "priority": priority})
    if supported is not None:
        config["supported_patterns"] = supported
    if excluded is not None:
        config["excluded_patterns"] = excluded
    return type(f"{plugin_id.title()}Scraper", (base,), {"CONFIG": config})


def memory_session_factory():
    engine = create_db_engine("sqlite://")
    init_db(engine)
    return create_session_factory(engine)


class TempDatabase:
    """SQLite file database for tests that need real cross-connection behaviour."""

    def __init__(self):
        fd, self.path = tempfile.mkstemp(suffix=".db")
        os.close(fd)
        self.engine = create_db_engine(f"sqlite:///{self.path}")
        init_db(self.engine)
        self.session_factory = create_session_factory(self.engine)

    def close(self):
        self.engine.dispose()
        try:
            os.remove(self.path)
        except OSError:
            pass
