from __future__ import annotations

import argparse
import json
from typing import Optional

from research_scraper.aggregator import AggregatedData, DataAggregator
from research_scraper.auth import StaticAuthProvider
from research_scraper.config import Settings, get_settings
from research_scraper.db import create_db_engine, create_session_factory, init_db
from research_scraper.errors import ResearchScraperError
from research_scraper.locks import ExecutionLockManager
from research_scraper.logging_utils import configure_logging
from research_scraper.orchestrator import ScraperOrchestrator
from research_scraper.registry import ScraperRegistry
from research_scraper.service import ScrapingService
from research_scraper.storage import SQLAlchemySessionStore
from research_scraper.sweeper import LockSweeper

DEFAULT_USER_ID = "local"


def _load_urls(path: str, limit: int = 1000) -> list[str]:
    urls: list[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            url = line.strip()
            if not url or url.startswith("#"):
                continue
            urls.append(url)
            if len(urls) >= limit:
                break
    if not urls:
        raise ValueError(f"No URLs found in {path}")
    return urls


class App:
    """Wires the store, locks, registry and service for one CLI invocation."""

    def __init__(self, settings: Settings, user_id: str, database_url: Optional[str] = None) -> None:
        engine = create_db_engine(database_url or settings.database_url)
        init_db(engine)
        factory = create_session_factory(engine)

        self.store = SQLAlchemySessionStore(factory)
        self.locks = ExecutionLockManager(factory)
        self.registry = ScraperRegistry()
        self.registry.initialize()
        self.orchestrator = ScraperOrchestrator(
            self.registry,
            store=self.store,
            lock_manager=self.locks,
            aggregator=DataAggregator(),
            settings=settings,
        )
        self.service = ScrapingService(
            self.orchestrator,
            self.store,
            self.registry,
            StaticAuthProvider.for_user_id(user_id),
            settings=settings,
        )
        self.sweeper = LockSweeper(self.locks, settings.sweep_interval_seconds)


def _print_event(event: dict) -> None:
    payload = event["payload"]
    if event["type"] == "progress":
        print(f"[{payload['current']}/{payload['total']}] {payload['message']}")
    else:
        print(f"{event['type']}: {json.dumps(payload, default=str)}")


def create_session(app: App, user_id: str, domain: str, urls_path: str, limit: int) -> None:
    urls = _load_urls(urls_path, limit=limit)
    session = app.store.create_or_get_session(user_id, domain, urls)
    print(f"session={session.id} domain={session.domain} urls={len(session.discovered_urls)}")


def run_session(app: App, session_id: str, scraper_id: Optional[str], max_pages: Optional[int], stream: bool) -> None:
    request = {"session_id": session_id, "scraper_id": scraper_id, "options": {"max_pages": max_pages}}
    if stream:
        app.service.execute_with_streaming(request, _print_event)
        return

    result = app.service.execute(request)
    for page in result.pages:
        print(
            f"url={page.url} success={page.success} status={page.status_code} "
            f"duration_s={page.duration:.2f} error={page.error_code}"
        )
    stats = result.stats
    print(
        f"\nDONE: status={result.status} scraper={result.scraper_id} success={stats.pages_succeeded} "
        f"fail={stats.pages_failed} total={stats.pages_attempted} data_points={stats.data_points_extracted}"
    )
    for warning in result.metadata.get("warnings", []):
        print(f"WARNING: {warning}")
    for suggestion in result.suggestions:
        print(f"SUGGESTION: {suggestion}")


def print_status(app: App, session_id: str, show_data: bool) -> None:
    status = app.service.get_session_status(session_id)
    print(json.dumps(status.to_dict(), indent=2, default=str))
    if show_data:
        session = app.store.get_session(session_id)
        data = AggregatedData.from_dict(session.accumulated_data if session else None)
        print(json.dumps(DataAggregator().format_for_ui(data), indent=2, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description="Research scraping core")
    parser.add_argument("--database-url", default=None, help="SQLAlchemy database URL (overrides settings)")
    parser.add_argument("--user", default=DEFAULT_USER_ID, help="User id the commands run as")

    parser.add_argument("--create-session", metavar="DOMAIN", help="Create or extend a session for DOMAIN")
    parser.add_argument("--urls", help="Path to a file with one discovered URL per line")
    parser.add_argument("--limit", type=int, default=1000, help="Max number of URLs to load")

    parser.add_argument("--run", metavar="SESSION_ID", help="Scrape the session's discovered URLs")
    parser.add_argument("--scraper", default=None, help="Force a scraper id (see --list-scrapers)")
    parser.add_argument("--max-pages", type=int, default=None, help="Scrape at most this many URLs")
    parser.add_argument("--stream", action="store_true", help="Print progress events while running")

    parser.add_argument("--status", metavar="SESSION_ID", help="Print session status and suggestions")
    parser.add_argument("--show-data", action="store_true", help="With --status, print the aggregated data")
    parser.add_argument("--list-scrapers", action="store_true", help="List registered scrapers")
    parser.add_argument("--sweep", action="store_true", help="Release expired execution locks")

    args = parser.parse_args()

    settings = get_settings()
    configure_logging(settings.log_level)
    app = App(settings, args.user, args.database_url)

    try:
        if args.create_session:
            if not args.urls:
                parser.error("--create-session requires --urls")
            create_session(app, args.user, args.create_session, args.urls, args.limit)
        elif args.run:
            run_session(app, args.run, args.scraper, args.max_pages, args.stream)
        elif args.status:
            print_status(app, args.status, args.show_data)
        elif args.list_scrapers:
            for scraper in app.service.get_available_scrapers():
                print(
                    f"{scraper['id']:<12} priority={scraper['priority']:<3} strategy={scraper['strategy']:<7} "
                    f"{scraper['name']}"
                )
        elif args.sweep:
            print(f"swept={app.sweeper.sweep_once()}")
        else:
            print("Nothing to do. Use --create-session, --run, --status, --list-scrapers or --sweep.")
    except ResearchScraperError as exc:
        raise SystemExit(f"error: {exc.code}: {exc.message}") from exc


if __name__ == "__main__":
    main()
