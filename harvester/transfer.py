"""
File transfer backends used by the download orchestrator
"""
import asyncio
import logging
import os
import tempfile
import threading

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .models import TransferOutcome
from .utils import parse_cookie_string, parse_header_lines

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    'User-Agent': 'Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36',
    'Accept': 'image/avif,image/webp,image/apng,video/*,*/*;q=0.8',
    'Accept-Language': 'en-US,en;q=0.9',
    'Connection': 'keep-alive',
}


class Transfer:
    """An opaque transfer capability: one call, one definite outcome."""

    async def initiate_transfer(self, url, destination_path):
        raise NotImplementedError


class HttpTransfer(Transfer):
    """Streams a URL to disk with requests.

    Args:
        base_path: directory that destination paths are relative to
        cookies: optional "name=value; name2=value2" string
        custom_headers: optional "Header-Name: value" lines
        request_timeout: per-request socket timeout in seconds
    """

    def __init__(self, base_path='Downloads', cookies=None, custom_headers=None, request_timeout=30):
        self.base_path = base_path
        self.request_timeout = request_timeout
        self.session = requests.Session()

        # Only connection setup is retried here; failed downloads go back through the orchestrator
        retry_strategy = Retry(
            total=None,
            connect=2,
            read=0,
            status=0,
            other=0,
            redirect=5,
            backoff_factor=0.5,
        )
        adapter = HTTPAdapter(
            pool_connections=4,
            pool_maxsize=4,
            max_retries=retry_strategy,
            pool_block=False
        )
        self.session.mount('http://', adapter)
        self.session.mount('https://', adapter)
        self.session.headers.update(DEFAULT_HEADERS)

        for name, value in parse_cookie_string(cookies).items():
            self.session.cookies.set(name, value)
        self.session.headers.update(parse_header_lines(custom_headers))

    def load_browser_cookies(self, cookies):
        """Copy cookies exported by a Playwright browser context into the session"""
        loaded = 0
        for cookie in cookies or []:
            name = cookie.get('name')
            if not name:
                continue
            self.session.cookies.set(
                name,
                cookie.get('value', ''),
                domain=cookie.get('domain') or '',
                path=cookie.get('path') or '/',
            )
            loaded += 1
        return loaded

    def resolve_destination(self, destination_path):
        if os.path.isabs(destination_path):
            return destination_path
        return os.path.join(self.base_path, *destination_path.split('/'))

    async def initiate_transfer(self, url, destination_path):
        """Download in a worker thread.

        If the awaiting task is cancelled (e.g. by a timeout) the worker is told
        to stop and is awaited before the cancellation propagates. Nothing is
        written to the destination after that point.
        """
        target = self.resolve_destination(destination_path)
        cancelled = threading.Event()
        worker = asyncio.ensure_future(asyncio.to_thread(self._download, url, target, cancelled))
        try:
            return await asyncio.shield(worker)
        except asyncio.CancelledError:
            cancelled.set()
            await asyncio.wait([worker])
            raise

    def _download(self, url, target, cancelled=None):
        """Blocking download into target; never raises for network or disk errors.

        When cancelled is set the partial file is discarded and target is left untouched.
        """
        temp_path = None
        try:
            directory = os.path.dirname(target) or '.'
            os.makedirs(directory, exist_ok=True)

            with self.session.get(url, timeout=self.request_timeout, stream=True) as response:
                if response.status_code == 403:
                    return TransferOutcome(False, f"HTTP 403 Forbidden: {url[:80]}")
                if response.status_code == 404:
                    return TransferOutcome(False, f"HTTP 404 Not Found: {url[:80]}")
                response.raise_for_status()

                fd, temp_path = tempfile.mkstemp(prefix='.harvest_', suffix='.part', dir=directory)
                written = 0
                with os.fdopen(fd, 'wb') as f:
                    for chunk in response.iter_content(chunk_size=8192):
                        if cancelled is not None and cancelled.is_set():
                            return TransferOutcome(False, f"Cancelled: {url[:80]}")
                        if chunk:
                            f.write(chunk)
                            written += len(chunk)

            if cancelled is not None and cancelled.is_set():
                return TransferOutcome(False, f"Cancelled: {url[:80]}")
            os.replace(temp_path, target)
            temp_path = None
            return TransferOutcome(True, f"Saved {os.path.basename(target)} ({written / (1024 * 1024):.2f} MB)")

        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else '?'
            return TransferOutcome(False, f"HTTP {status}: {url[:80]}")
        except requests.exceptions.Timeout:
            return TransferOutcome(False, f"Timeout downloading: {url[:80]}")
        except requests.exceptions.ConnectionError:
            return TransferOutcome(False, f"Connection error: {url[:80]}")
        except requests.exceptions.RequestException as e:
            return TransferOutcome(False, f"Request error ({type(e).__name__}): {str(e)[:100]}")
        except OSError as e:
            logger.warning("Could not write %s: %s", target, e)
            return TransferOutcome(False, f"Write error: {e}")
        finally:
            if temp_path and os.path.exists(temp_path):
                try:
                    os.remove(temp_path)
                except OSError:
                    pass

    def close(self):
        self.session.close()
