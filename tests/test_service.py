"""Tests for ScrapingService: validation, authorization and streaming."""

import threading
import unittest

from research_scraper.auth import StaticAuthProvider
from research_scraper.config import Settings
from research_scraper.errors import SessionNotFound, Unauthorized, ValidationError
from research_scraper.locks import ExecutionLockManager
from research_scraper.models import ExecutionStatus
from research_scraper.orchestrator import ScraperOrchestrator
from research_scraper.registry import ScraperRegistry
from research_scraper.service import ExecutionRequest, ScrapingService
from research_scraper.storage import SQLAlchemySessionStore

from support import FakeScraper, memory_session_factory

URLS = ["https://example.com/a", "https://example.com/b"]


class ServiceTestCase(unittest.TestCase):
    """Shared fixture: a service over an in-memory store and a fake plugin."""

    def setUp(self):
        """Build the stack and a session owned by user-1."""
        factory = memory_session_factory()
        self.store = SQLAlchemySessionStore(factory)
        self.locks = ExecutionLockManager(factory)
        self.registry = ScraperRegistry([FakeScraper])
        self.registry.initialize()
        self.settings = Settings()
        self.orchestrator = ScraperOrchestrator(self.registry, self.store, self.locks, settings=self.settings)
        self.session = self.store.create_or_get_session("user-1", "example.com", URLS)

    def make_service(self, user_id="user-1"):
        auth = StaticAuthProvider.for_user_id(user_id) if user_id else StaticAuthProvider()
        return ScrapingService(self.orchestrator, self.store, self.registry, auth, settings=self.settings)


class TestValidation(ServiceTestCase):
    """Request validation before anything runs."""

    def test_missing_session_id(self):
        """session_id is required."""
        with self.assertRaises(ValidationError) as ctx:
            self.make_service().execute({})
        self.assertIn("session_id", ctx.exception.details["fields"])

    def test_unknown_field_rejected(self):
        """Extra request fields are refused."""
        with self.assertRaises(ValidationError):
            self.make_service().execute({"session_id": self.session.id, "urls": URLS})

    def test_bad_option(self):
        """Invalid options are reported with their field path."""
        with self.assertRaises(ValidationError) as ctx:
            self.make_service().execute({"session_id": self.session.id, "options": {"max_pages": 0}})
        self.assertIn("options.max_pages", ctx.exception.details["fields"])

    def test_non_object_body(self):
        """The request body must be an object."""
        with self.assertRaises(ValidationError):
            self.make_service().execute(["not", "an", "object"])


class TestAuthorization(ServiceTestCase):
    """Only the session's owner may run it."""

    def test_no_user(self):
        """An anonymous caller cannot execute."""
        with self.assertRaises(Unauthorized):
            self.make_service(user_id=None).execute({"session_id": self.session.id})

    def test_other_users_session(self):
        """Another user's session is refused before any fetch."""
        with self.assertRaises(Unauthorized):
            self.make_service(user_id="user-2").execute({"session_id": self.session.id})
        self.assertEqual(self.registry.get_scraper_by_id("fake").calls, [])

    def test_missing_session(self):
        """An unknown session is reported as not found."""
        with self.assertRaises(SessionNotFound):
            self.make_service().execute({"session_id": "missing"})


class TestExecute(ServiceTestCase):
    """Blocking execution through the service."""

    def test_execute_with_model_request(self):
        """A request model is accepted as well as a dict."""
        request = ExecutionRequest(session_id=self.session.id, scraper_id="fake")
        result = self.make_service().execute(request)
        self.assertEqual(result.status, ExecutionStatus.COMPLETED)
        self.assertEqual(result.scraper_id, "fake")

    def test_cancelled_execution(self):
        """A pre-set cancel event stops the run before fetching."""
        cancel = threading.Event()
        cancel.set()
        result = self.make_service().execute({"session_id": self.session.id}, cancel_event=cancel)
        self.assertEqual(result.status, ExecutionStatus.CANCELLED)
        self.assertEqual(self.registry.get_scraper_by_id("fake").calls, [])


class TestStreaming(ServiceTestCase):
    """Streaming execution through a callback."""

    def stream(self, request, service=None):
        events = []
        (service or self.make_service()).execute_with_streaming(request, events.append)
        return events

    def test_event_order(self):
        """Events go start, progress per page, complete, done."""
        events = self.stream({"session_id": self.session.id})
        types = [e["type"] for e in events]
        self.assertEqual(types[0], "start")
        self.assertEqual(types[-1], "done")
        self.assertEqual(types.count("progress"), len(URLS))
        self.assertEqual(types[-2], "complete")
        self.assertNotIn("error", types)

        sequences = [e["sequence"] for e in events]
        self.assertEqual(sequences, sorted(sequences))
        self.assertEqual(len({e["correlation_id"] for e in events}), 1)
        self.assertTrue(all(e["session_id"] == self.session.id for e in events))

        summary = events[-2]["payload"]["summary"]
        self.assertTrue(summary["success"])
        self.assertEqual(summary["pages_succeeded"], 2)
        self.assertTrue(events[-1]["payload"]["success"])

    def test_invalid_request_streams_error(self):
        """A bad request still streams a closing done event."""
        events = self.stream({"session_id": ""})
        self.assertEqual([e["type"] for e in events], ["start", "error", "done"])
        self.assertEqual(events[1]["payload"]["code"], "VALIDATION_ERROR")
        self.assertFalse(events[-1]["payload"]["success"])

    def test_unauthorized_streams_error(self):
        """Authorization failures are streamed as error events."""
        events = self.stream({"session_id": self.session.id}, service=self.make_service(user_id="user-2"))
        self.assertEqual([e["type"] for e in events], ["start", "error", "done"])
        self.assertEqual(events[1]["payload"]["error_type"], "Unauthorized")

    def test_failing_callback_does_not_break_execution(self):
        """A callback that raises does not stop the run or its persistence."""
        seen = []

        def callback(event):
            seen.append(event["type"])
            if event["type"] == "progress":
                raise RuntimeError("socket closed")

        self.make_service().execute_with_streaming({"session_id": self.session.id}, callback)
        self.assertEqual(seen[-1], "done")
        self.assertIsNotNone(self.store.get_session(self.session.id).accumulated_data)


class TestStatus(ServiceTestCase):
    """Session status and plugin listing."""

    def test_available_scrapers(self):
        """The registered plugins are listed."""
        scrapers = self.make_service().get_available_scrapers()
        self.assertEqual([s["id"] for s in scrapers], ["fake"])

    def test_empty_session_status(self):
        """An owned session with no runs yet only suggests starting."""
        status = self.make_service().get_session_status(self.session.id)
        self.assertEqual(status.scraper_runs, 0)
        self.assertEqual(status.pages_scraped, 0)
        self.assertEqual(status.used_scrapers, [])
        self.assertEqual(status.suggestions, ["Start scraping to collect data"])

    def test_unknown_session_status(self):
        """A missing session is reported as not found."""
        with self.assertRaises(SessionNotFound):
            self.make_service().get_session_status("missing")

    def test_status_requires_user(self):
        """Anonymous callers cannot read a session's stats."""
        service = self.make_service()
        service.execute({"session_id": self.session.id})
        with self.assertRaises(Unauthorized):
            self.make_service(user_id=None).get_session_status(self.session.id)

    def test_status_of_other_users_session(self):
        """Another user's session is refused even after it was scraped."""
        self.make_service().execute({"session_id": self.session.id})
        with self.assertRaises(Unauthorized):
            self.make_service(user_id="user-2").get_session_status(self.session.id)

    def test_status_after_run(self):
        """Status reflects the merged data after a run."""
        service = self.make_service()
        service.execute({"session_id": self.session.id})
        status = service.get_session_status(self.session.id)
        self.assertEqual(status.scraper_runs, 1)
        self.assertEqual(status.used_scrapers, ["fake"])
        self.assertEqual(status.pages_scraped, 2)
        self.assertGreater(status.total_data_points, 0)


if __name__ == "__main__":
    unittest.main()
