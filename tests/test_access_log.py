"""
Tests for response capture and the per-request access record
"""

import asyncio
import io
import logging
import os
import tempfile
import time
import unittest

from aiohttp.test_utils import AioHTTPTestCase, make_mocked_request

from distserve.inc.assets import AssetStore
from distserve.inc.capture import DEFAULT_STATUS, ResponseCapture, capture_key
from distserve.inc.logging import AccessLogger, configure_logging, formatter
from distserve.inc.settings import Settings
from distserve.inc.webserver import create_app

from _bundle import make_bundle

SLOW_DELAY = 0.2


class ListHandler(logging.Handler):
    def __init__(self):
        super().__init__()
        self.records = []

    def emit(self, record):
        self.records.append(record)


class SlowStore(AssetStore):
    """Blocks while resolving anything under /slow/ to stretch the handling time."""

    def resolve(self, path):
        if path.startswith("slow/"):
            time.sleep(SLOW_DELAY)
        return super().resolve(path)


class FakeClock:
    def __init__(self, *ticks):
        self.ticks = list(ticks)

    def __call__(self):
        return self.ticks.pop(0)


class TestResponseCapture(unittest.TestCase):

    def test_first_status_wins(self):
        cap = ResponseCapture(clock=FakeClock(10.0, 10.5, 11.0))
        self.assertFalse(cap.recorded)
        self.assertTrue(cap.record(404))
        self.assertFalse(cap.record(200))
        self.assertEqual(cap.status, 404)
        self.assertEqual(cap.header_latency, 0.5)

    def test_begin_attaches_to_request(self):
        req = make_mocked_request("GET", "/x")
        cap = ResponseCapture.begin(req)
        self.assertIs(req[capture_key], cap)
        self.assertGreater(cap.started, 0)


class TestAccessLoggerFields(unittest.TestCase):

    def test_fields(self):
        req = make_mocked_request("GET", "/app.js", headers={"User-Agent": "probe/1.0"})
        cap = ResponseCapture(clock=FakeClock(1.0, 1.25))
        cap.record(200)
        fields = AccessLogger(clock=lambda: 3.0).fields(req, cap)
        self.assertEqual(fields, {
            "method": "GET",
            "path": "/app.js",
            "user_agent": "probe/1.0",
            "status_code": 200,
            "latency": 2.0,
        })

    def test_unflushed_capture_uses_default_status(self):
        req = make_mocked_request("HEAD", "/")
        cap = ResponseCapture(clock=FakeClock(5.0))
        fields = AccessLogger(clock=lambda: 5.5).fields(req, cap)
        self.assertEqual(fields["status_code"], DEFAULT_STATUS)
        self.assertEqual(fields["status_code"], 0)
        self.assertEqual(fields["user_agent"], "")

    def test_missing_capture(self):
        fields = AccessLogger().fields(make_mocked_request("GET", "/"), None)
        self.assertEqual((fields["status_code"], fields["latency"]), (0, 0.0))

    def test_latency_never_negative(self):
        cap = ResponseCapture(clock=FakeClock(9.0))
        fields = AccessLogger(clock=lambda: 8.0).fields(make_mocked_request("GET", "/"), cap)
        self.assertEqual(fields["latency"], 0.0)

    def test_line_format(self):
        log = logging.getLogger("tests.access.format")
        log.setLevel(logging.INFO)
        log.propagate = False
        handler = ListHandler()
        log.addHandler(handler)
        self.addCleanup(log.removeHandler, handler)
        req = make_mocked_request("GET", "/a b", headers={"User-Agent": "Mozilla/5.0 (X11)"})
        cap = ResponseCapture()
        cap.record(404)
        AccessLogger(log).log_request(req, cap)
        msg = handler.records[0].getMessage()
        self.assertTrue(msg.startswith("method=GET path='/a b' user_agent='Mozilla/5.0 (X11)' status_code=404 latency="))
        self.assertEqual(handler.records[0].access["status_code"], 404)

    def test_control_characters_cannot_split_the_line(self):
        log = logging.getLogger("tests.access.controls")
        log.setLevel(logging.INFO)
        log.propagate = False
        handler = ListHandler()
        log.addHandler(handler)
        self.addCleanup(log.removeHandler, handler)
        req = make_mocked_request("GET", "/a%0Afake=record.js",
                                  headers={"User-Agent": "evil\r\nmethod=GET status_code=200\x1b[0m"})
        cap = ResponseCapture()
        cap.record(404)
        AccessLogger(log).log_request(req, cap)
        self.assertEqual(len(handler.records), 1)
        msg = handler.records[0].getMessage()
        self.assertNotIn("\n", msg)
        self.assertNotIn("\r", msg)
        self.assertNotIn("\x1b", msg)
        self.assertIn(r"evil\r\nmethod=GET", msg)
        self.assertIn(r"\x1b[0m", msg)
        self.assertTrue(msg.endswith(tuple("0123456789")))
        # the structured fields keep the raw values
        self.assertEqual(handler.records[0].access["user_agent"], "evil\r\nmethod=GET status_code=200\x1b[0m")


class PipelineLogTestCase(AioHTTPTestCase):

    async def asyncSetUp(self):
        self._tmp, self.root = make_bundle({
            "index.html": b"root",
            "app.js": b"js",
            "slow/app.js": b"slow",
        })
        self.store = SlowStore.load(self.root)
        self.log = logging.getLogger(f"tests.access.{self.id()}")
        self.log.setLevel(logging.INFO)
        self.log.propagate = False
        self.handler = ListHandler()
        self.log.addHandler(self.handler)
        await super().asyncSetUp()

    async def asyncTearDown(self):
        await super().asyncTearDown()
        self.log.removeHandler(self.handler)
        self._tmp.cleanup()

    async def get_application(self):
        return create_app(self.store, access_logger=AccessLogger(self.log))

    async def settle(self, count):
        # the record is written right after the body, give the server a moment
        for _ in range(100):
            if len(self.handler.records) >= count:
                break
            await asyncio.sleep(0.01)
        return [r.access for r in self.handler.records]


class TestPipelineLogging(PipelineLogTestCase):

    async def test_one_record_per_request(self):
        expected = [("/app.js", 200), ("/missing", 404), ("/slow", 301), ("/", 200)]
        for path, _status in expected:
            async with self.client.get(path, allow_redirects=False, headers={"User-Agent": "suite"}) as resp:
                await resp.read()
        records = await self.settle(len(expected))
        self.assertEqual(len(records), len(expected))
        for rec, (path, status) in zip(records, expected):
            self.assertEqual(rec["path"], path)
            self.assertEqual(rec["status_code"], status)
            self.assertEqual(rec["method"], "GET")
            self.assertEqual(rec["user_agent"], "suite")
            self.assertGreaterEqual(rec["latency"], 0.0)

    async def test_status_matches_response(self):
        async with self.client.post("/app.js") as resp:
            sent = resp.status
        records = await self.settle(1)
        self.assertEqual(records[0]["status_code"], sent)
        self.assertEqual(sent, 405)

    async def test_latency_tracks_handling_time(self):
        async with self.client.get("/app.js") as resp:
            await resp.read()
        async with self.client.get("/slow/app.js") as resp:
            self.assertEqual(await resp.read(), b"slow")
        fast, slow = await self.settle(2)
        self.assertGreaterEqual(slow["latency"], SLOW_DELAY)
        self.assertGreater(slow["latency"], fast["latency"])

    async def test_concurrent_requests_keep_their_own_capture(self):
        paths = ["/app.js", "/nope-1", "/", "/nope-2", "/empty/", "/app.js"] * 5
        expected = {"/app.js": 200, "/": 200}

        async def fetch(path):
            async with self.client.get(path, allow_redirects=False) as resp:
                await resp.read()
                return path, resp.status

        results = await asyncio.gather(*(fetch(p) for p in paths))
        for path, status in results:
            self.assertEqual(status, expected.get(path, 404))
        records = await self.settle(len(paths))
        self.assertEqual(len(records), len(paths))
        for rec in records:
            self.assertEqual(rec["status_code"], expected.get(rec["path"], 404))


class BrokenLog:
    def info(self, *args, **kwargs):
        raise RuntimeError("sink is gone")


class TestLoggingFailure(PipelineLogTestCase):

    async def get_application(self):
        return create_app(self.store, access_logger=AccessLogger(BrokenLog()))

    async def test_response_survives_a_broken_sink(self):
        with self.assertLogs("distserve", level="ERROR") as cm:
            async with self.client.get("/app.js") as resp:
                self.assertEqual(resp.status, 200)
                self.assertEqual(await resp.read(), b"js")
            for _ in range(100):
                if cm.records:
                    break
                await asyncio.sleep(0.01)
        self.assertIn("failed to write access record", cm.output[0])


class TestConfigureLogging(unittest.TestCase):

    def tearDown(self):
        configure_logging(Settings("/nonexistent.ini", environ={}), stream=io.StringIO())

    def test_stderr_style_output(self):
        stream = io.StringIO()
        configure_logging(Settings("/nonexistent.ini", environ={}), stream=stream)
        logging.getLogger("distserve.access").info("method=GET path=/")
        self.assertRegex(stream.getvalue(), r"^\[\d{4}-\d\d-\d\d \d\d:\d\d:\d\d\] \[INFO    \] distserve.access: method=GET path=/\n$")

    def test_idempotent(self):
        log = configure_logging(Settings("/nonexistent.ini", environ={}), stream=io.StringIO())
        configure_logging(Settings("/nonexistent.ini", environ={}), stream=io.StringIO())
        self.assertEqual(len(log.handlers), 1)
        self.assertIs(log.handlers[0].formatter, formatter)

    def test_level_and_rotating_file(self):
        with tempfile.TemporaryDirectory() as d:
            path = os.path.join(d, "logs", "distserve.log")
            env = {"DISTSERVE__LOG__level": "warning", "DISTSERVE__LOG__path": path}
            log = configure_logging(Settings("/nonexistent.ini", environ=env), stream=io.StringIO())
            self.assertEqual(log.level, logging.WARNING)
            self.assertEqual(len(log.handlers), 2)
            log.warning("to file")
            for h in log.handlers:
                h.flush()
            with open(path, encoding="utf-8") as fh:
                self.assertIn("to file", fh.read())
            configure_logging(Settings("/nonexistent.ini", environ={}), stream=io.StringIO())


if __name__ == '__main__':
    unittest.main()
