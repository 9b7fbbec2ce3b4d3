import logging

from django.test import SimpleTestCase

from config.logging_filters import HealthEndpointFilter


def _record(msg: str, args: object = ()) -> logging.LogRecord:
    return logging.LogRecord(
        name="gunicorn.access",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg=msg,
        args=args,
        exc_info=None,
    )


class LoggingFilterTests(SimpleTestCase):
    def test_gunicorn_atoms(self) -> None:
        filt = HealthEndpointFilter()

        self.assertFalse(filt.filter(_record("%(r)s %(s)s", {"U": "/healthz", "s": "200", "r": "GET /healthz"})))
        self.assertFalse(filt.filter(_record("%(r)s %(s)s", {"U": "/readyz", "s": 200, "r": "GET /readyz"})))
        self.assertTrue(filt.filter(_record("%(r)s %(s)s", {"U": "/readyz", "s": "503", "r": "GET /readyz"})))
        self.assertTrue(
            filt.filter(_record("%(r)s %(s)s", {"U": "/ballots/1/vote", "s": "200", "r": "POST /ballots/1/vote"}))
        )

    def test_plain_message_fallback(self) -> None:
        filt = HealthEndpointFilter()

        self.assertFalse(filt.filter(_record('- - - [27/Jan/2026:10:49:08 +0000] "GET /readyz HTTP/1.1" 200 37 "-"')))
        self.assertTrue(filt.filter(_record('"GET /healthz HTTP/1.1" 503 12')))
        self.assertTrue(filt.filter(_record('"GET /notifications HTTP/1.1" 200 12')))
