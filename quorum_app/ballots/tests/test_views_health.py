from unittest.mock import patch

from django.test import TestCase


class HealthViewsTests(TestCase):
    def test_healthz_returns_ok(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp["Content-Type"], "application/json")
        self.assertEqual(resp.json(), {"status": "ok"})

    def test_readyz_checks_database_and_cache(self) -> None:
        resp = self.client.get("/readyz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json(), {"status": "ready", "database": "ok", "cache": "ok"})

    def test_readyz_returns_503_when_db_unavailable(self) -> None:
        with (
            patch("django.db.connection.ensure_connection", side_effect=RuntimeError("db down")),
            self.assertLogs("ballots.views_health", level="ERROR"),
        ):
            resp = self.client.get("/readyz")

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(resp.json(), {"status": "not ready", "database": "error", "error": "db down"})

    def test_readyz_returns_503_when_cache_unavailable(self) -> None:
        with (
            patch("ballots.views_health.cache.set", side_effect=ConnectionError("cache down")),
            self.assertLogs("ballots.views_health", level="ERROR"),
        ):
            resp = self.client.get("/readyz")

        self.assertEqual(resp.status_code, 503)
        self.assertEqual(
            resp.json(),
            {"status": "not ready", "database": "ok", "cache": "error", "error": "cache down"},
        )

    def test_post_not_allowed(self) -> None:
        self.assertEqual(self.client.post("/healthz").status_code, 405)
