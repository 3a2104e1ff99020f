from __future__ import annotations

import os
import tempfile
import threading
import time
import unittest
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import requests

from harvester.models import CollectedItem, CollectResult
from harvester.orchestrator import DownloadOrchestrator
from harvester.settings import DownloadSettings
from harvester.transfer import HttpTransfer


def make_response(status: int = 200, chunks=(b"abc", b"def")) -> MagicMock:
    response = MagicMock()
    response.status_code = status
    response.__enter__.return_value = response
    response.__exit__.return_value = False
    response.iter_content.return_value = list(chunks)
    if status >= 400:
        response.raise_for_status.side_effect = requests.exceptions.HTTPError(response=response)
    return response


class HttpTransferTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self._temp = tempfile.TemporaryDirectory()
        self.base = self._temp.name
        self.transfer = HttpTransfer(base_path=self.base)

    def tearDown(self) -> None:
        self.transfer.close()
        self._temp.cleanup()

    def target(self, name: str = "1-image.png") -> str:
        return os.path.join(self.base, "harvest-session", "2024-05-01_13-02-09", name)

    async def test_streams_file_into_session_folder(self) -> None:
        with patch.object(self.transfer.session, "get", return_value=make_response()) as get:
            outcome = await self.transfer.initiate_transfer(
                "https://assets.grok.com/a/image.png",
                "harvest-session/2024-05-01_13-02-09/1-image.png",
            )

        self.assertTrue(outcome.success)
        get.assert_called_once()
        with open(self.target(), "rb") as handle:
            self.assertEqual(b"abcdef", handle.read())
        leftovers = [name for name in os.listdir(os.path.dirname(self.target())) if name.endswith(".part")]
        self.assertEqual([], leftovers)

    async def test_not_found_is_a_failure(self) -> None:
        with patch.object(self.transfer.session, "get", return_value=make_response(404)):
            outcome = await self.transfer.initiate_transfer("https://assets.grok.com/a/x.png", "s/1-image.png")

        self.assertFalse(outcome.success)
        self.assertIn("404", outcome.message)
        self.assertFalse(os.path.exists(os.path.join(self.base, "s", "1-image.png")))

    def test_server_error_is_a_failure(self) -> None:
        with patch.object(self.transfer.session, "get", return_value=make_response(500)):
            outcome = self.transfer._download("https://assets.grok.com/a/x.png", self.target())

        self.assertFalse(outcome.success)
        self.assertEqual("HTTP 500: https://assets.grok.com/a/x.png", outcome.message)

    def test_network_errors_become_outcomes(self) -> None:
        cases = [
            (requests.exceptions.Timeout(), "Timeout downloading"),
            (requests.exceptions.ConnectionError(), "Connection error"),
        ]
        for error, expected in cases:
            with patch.object(self.transfer.session, "get", side_effect=error):
                outcome = self.transfer._download("https://assets.grok.com/a/x.png", self.target())
            self.assertFalse(outcome.success)
            self.assertTrue(outcome.message.startswith(expected))

    def test_absolute_destination_kept(self) -> None:
        absolute = os.path.join(self.base, "elsewhere", "x.png")
        self.assertEqual(absolute, self.transfer.resolve_destination(absolute))


class HttpTransferSessionTests(unittest.TestCase):
    def test_cookie_string_and_headers_applied(self) -> None:
        transfer = HttpTransfer(cookies="sso=abc; theme=dark; broken", custom_headers="Referer: https://grok.com/\nX-Empty")
        try:
            self.assertEqual("abc", transfer.session.cookies.get("sso"))
            self.assertEqual("dark", transfer.session.cookies.get("theme"))
            self.assertEqual("https://grok.com/", transfer.session.headers["Referer"])
        finally:
            transfer.close()

    def test_browser_cookies_loaded(self) -> None:
        transfer = HttpTransfer()
        try:
            loaded = transfer.load_browser_cookies([
                {"name": "sso", "value": "token", "domain": ".grok.com", "path": "/"},
                {"value": "nameless"},
            ])
            self.assertEqual(1, loaded)
            self.assertEqual("token", transfer.session.cookies.get("sso", domain=".grok.com"))
        finally:
            transfer.close()

    def test_only_connection_setup_is_retried_by_the_adapter(self) -> None:
        transfer = HttpTransfer()
        try:
            retries = transfer.session.get_adapter("https://assets.grok.com/").max_retries
            self.assertEqual(2, retries.connect)
            self.assertEqual(0, retries.read)
            self.assertEqual(0, retries.status)
        finally:
            transfer.close()


class SlowAssetHandler(BaseHTTPRequestHandler):
    """Trickles a small body one byte at a time."""

    body = b"abcde"
    pause = 0.1

    def do_GET(self):
        self.send_response(200)
        self.send_header("Content-Type", "image/png")
        self.send_header("Content-Length", str(len(self.body)))
        self.end_headers()
        try:
            for value in self.body:
                self.wfile.write(bytes([value]))
                self.wfile.flush()
                time.sleep(self.pause)
        except (BrokenPipeError, ConnectionResetError):
            pass

    def log_message(self, format, *args):
        pass


class CountingTransfer(HttpTransfer):
    """Records how many download threads run at the same time."""

    def __init__(self, *args, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.lock = threading.Lock()
        self.running = 0
        self.peak = 0
        self.calls = 0

    def _download(self, url, target, cancelled=None):
        with self.lock:
            self.running += 1
            self.calls += 1
            self.peak = max(self.peak, self.running)
        try:
            return super()._download(url, target, cancelled)
        finally:
            with self.lock:
                self.running -= 1


class SingleItemCollector:
    def __init__(self, url: str) -> None:
        self.url = url

    async def collect(self, strategy, limit=0, media_kind="all", debug=False):
        return CollectResult(status="ok", items=[CollectedItem(url=self.url, kind="image", container_id=0, group_id=1)])


class TimedOutTransferTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self) -> None:
        self.server = ThreadingHTTPServer(("127.0.0.1", 0), SlowAssetHandler)
        self.server.daemon_threads = True
        threading.Thread(target=self.server.serve_forever, daemon=True).start()
        self._temp = tempfile.TemporaryDirectory()
        self.base = self._temp.name

    def tearDown(self) -> None:
        self.server.shutdown()
        self.server.server_close()
        self._temp.cleanup()

    async def test_timed_out_download_stops_before_retry(self) -> None:
        url = f"http://127.0.0.1:{self.server.server_address[1]}/generated/a/image.png"
        transfer = CountingTransfer(base_path=self.base)
        orchestrator = DownloadOrchestrator(
            transfer,
            collector=SingleItemCollector(url),
            settings=DownloadSettings(base_path=self.base, delay_ms=0, retry_delay_ms=0, timeout_ms=150, max_retries=1),
        )
        surface = SimpleNamespace(surface_id="tab-1", url="https://grok.com/imagine/favorites", strategy=object())

        try:
            response = await orchestrator.start(surface)
            await orchestrator.wait_until_idle()
        finally:
            transfer.close()

        self.assertEqual("started", response["status"])
        self.assertEqual(2, transfer.calls)
        self.assertEqual(1, transfer.peak)
        self.assertEqual(0, transfer.running)
        self.assertEqual({"total": 1, "successes": 0, "failures": 1}, orchestrator.state.last_summary)
        written = [name for _, _, names in os.walk(self.base) for name in names]
        self.assertEqual([], written)


if __name__ == "__main__":
    unittest.main()
