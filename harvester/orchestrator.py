"""
Download orchestrator: turns a collected gallery snapshot into a serialized,
retrying, rate-limited transfer run and reports progress as status events.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from .collector import Collector
from .download_queue import DownloadQueue, create_session_folder_name, prepare_queue
from .history import StatusHistory
from .models import (
    EVENT_DEBUG,
    EVENT_ERROR,
    EVENT_IDLE,
    EVENT_RUNNING,
    MEDIA_KINDS,
    QueueItem,
    StatusEvent,
    TransferOutcome,
    TransferResult,
)
from .settings import DownloadSettings
from .utils import truncate

logger = logging.getLogger(__name__)

START_STARTED = 'started'
START_BUSY = 'busy'
START_NEED_TARGET = 'need_target'
START_EMPTY = 'empty'
START_ERROR = 'error'

_INTERNAL_URL_PREFIXES = ('chrome://', 'about:', 'edge://', 'chrome-extension://')

GRID_NOT_READY_MESSAGE = 'Gallery grid not detected. Solve verification prompts, reload the page, then try again.'


@dataclass
class RunState:
    """Mutable state of the current run, owned by one orchestrator."""
    run_id: int = 0
    active: bool = False
    collecting: bool = False
    surface_id: Optional[str] = None
    debug: bool = False
    session_folder: str = ''
    queue: DownloadQueue = field(default_factory=DownloadQueue)
    results: List[TransferResult] = field(default_factory=list)
    retry_queue: List[QueueItem] = field(default_factory=list)
    retry_attempts: Dict[str, int] = field(default_factory=dict)
    permanent_failures: List[QueueItem] = field(default_factory=list)
    last_summary: Optional[Dict[str, int]] = None
    total: int = 0
    completed: int = 0
    progress: Dict[str, int] = field(default_factory=lambda: {'total': 0, 'completed': 0})
    history: StatusHistory = field(default_factory=StatusHistory)

    @property
    def index(self) -> int:
        return self.queue.index

    @property
    def busy(self) -> bool:
        return self.active or self.collecting


class DownloadOrchestrator:
    """Single-run download pipeline.

    One instance owns one RunState. Runs are started with start(), observed
    through attached observers or request_state(), and invalidated with
    reset_for_surface(). Every await in the drain loop is followed by a run_id
    check; a continuation from a superseded run returns without touching state.
    """

    def __init__(self, transfer, collector: Optional[Collector] = None,
                 settings: Optional[DownloadSettings] = None,
                 sleep: Optional[Callable] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.transfer = transfer
        self.collector = collector or Collector()
        self.settings = settings or DownloadSettings()
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or datetime.now
        self.state = RunState(history=StatusHistory(self.settings.max_history))
        self._observers: Dict[str, Callable[[Dict], None]] = {}
        self._broadcast: List[Callable[[Dict], None]] = []
        self._task: Optional[asyncio.Task] = None

    # Observers ----------------------------------------------------------
    def attach_observer(self, surface_id, callback: Callable[[Dict], None]) -> None:
        self._observers[surface_id] = callback

    def add_broadcast_listener(self, callback: Callable[[Dict], None]) -> None:
        self._broadcast.append(callback)

    def _deliver(self, message: Dict) -> None:
        observer = self._observers.get(self.state.surface_id) if self.state.surface_id is not None else None
        targets = [observer] if observer else list(self._broadcast)
        for target in targets:
            try:
                target(message)
            except Exception:
                logger.warning("Status delivery failed", exc_info=True)

    # Status events ------------------------------------------------------
    def _snapshot_progress(self, progress: Optional[Dict] = None) -> Optional[Dict[str, int]]:
        state = self.state
        if progress:
            normalized = {
                'total': max(0, _as_int(progress.get('total'))),
                'completed': max(0, _as_int(progress.get('completed'))),
            }
            state.progress = normalized
            return dict(normalized)
        if state.progress.get('total') or state.progress.get('completed'):
            return dict(state.progress)
        return None

    def _send_status(self, event: StatusEvent) -> None:
        self.state.history.append(event)
        self._deliver(event.to_message())

    def notify(self, text: str, state: str = EVENT_RUNNING, progress: Optional[Dict] = None) -> None:
        self._send_status(StatusEvent(
            text=text,
            state=state,
            timestamp=int(time.time() * 1000),
            progress=self._snapshot_progress(progress),
        ))

    def _emit_debug_logs(self, lines: Optional[List[str]]) -> None:
        if not self.state.debug or not lines:
            return
        progress = self._snapshot_progress()
        for line in lines:
            if isinstance(line, str) and line.strip():
                self._send_status(StatusEvent(
                    text=line.strip(),
                    state=EVENT_DEBUG,
                    timestamp=int(time.time() * 1000),
                    progress=progress,
                ))

    def _current_progress(self) -> Dict[str, int]:
        return {'total': self.state.total, 'completed': self.state.completed}

    # Inbound interface --------------------------------------------------
    def request_state(self) -> Dict:
        state = self.state
        return {
            'history': state.history.as_messages(),
            'progress': dict(state.progress),
            'active': state.active,
            'total': state.total,
            'completed': state.completed,
        }

    def reset_for_surface(self, surface_id=None) -> None:
        """Invalidate the current run generation and clear all per-run state"""
        state = self.state
        state.run_id += 1
        state.active = False
        state.collecting = False
        state.queue = DownloadQueue()
        state.results = []
        state.session_folder = ''
        state.total = 0
        state.completed = 0
        state.debug = False
        state.progress = {'total': 0, 'completed': 0}
        state.history.clear()
        state.retry_queue = []
        state.retry_attempts.clear()
        state.permanent_failures = []
        state.last_summary = None
        if surface_id is not None:
            state.surface_id = surface_id

    async def start(self, surface, debug_enabled=False, limit=0, media_kind='all') -> Dict:
        """Scan the surface and begin downloading in the background.

        Returns immediately after the queue is built; draining continues on
        the running event loop.
        """
        state = self.state
        if state.busy:
            return {'status': START_BUSY}

        url = getattr(surface, 'url', None) if surface is not None else None
        strategy = getattr(surface, 'strategy', None) if surface is not None else None
        if not url or strategy is None or url.startswith(_INTERNAL_URL_PREFIXES):
            return {'status': START_NEED_TARGET}

        state.surface_id = getattr(surface, 'surface_id', state.surface_id)
        state.debug = bool(debug_enabled)
        download_limit = max(0, _as_int(limit))
        media_filter = media_kind if media_kind in MEDIA_KINDS else 'all'

        type_label = {'all': 'files', 'image': 'images', 'video': 'videos'}[media_filter]
        if download_limit > 0:
            self.notify(f"Scanning gallery page (will limit to {download_limit} {type_label})…")
        else:
            self.notify(f"Scanning gallery page for {type_label}…")

        generation = state.run_id
        state.collecting = True
        try:
            result = await self.collector.collect(strategy, download_limit, media_filter, state.debug)
        finally:
            if generation == state.run_id:
                state.collecting = False

        if generation != state.run_id:
            return {'status': START_ERROR, 'message': 'Run was reset while scanning the page.'}

        self._emit_debug_logs(result.debug)

        if not result.ok:
            self.notify(result.message or GRID_NOT_READY_MESSAGE, EVENT_ERROR)
            return {'status': START_ERROR, 'message': GRID_NOT_READY_MESSAGE}

        if not result.items:
            self.notify('Could not locate any downloadable media on this page.', EVENT_ERROR)
            return {'status': START_EMPTY}

        self.notify(f"✓ Found {len(result.items)} media items. Preparing download queue…")

        session_folder = create_session_folder_name(self._clock(), self.settings.session_root)
        items = result.items
        if download_limit > 0 and len(items) > download_limit:
            items = items[:download_limit]
            self.notify(f"Limited to first {download_limit} items.")

        prepared = prepare_queue(items, session_folder)
        if not prepared:
            self.notify('Collected media but failed to prepare download queue.', EVENT_ERROR)
            return {'status': START_EMPTY}

        state.run_id += 1
        run_id = state.run_id
        state.active = True
        state.queue = DownloadQueue(prepared)
        state.results = []
        state.retry_queue = []
        state.retry_attempts.clear()
        state.permanent_failures = []
        state.last_summary = None
        state.session_folder = session_folder
        state.total = len(prepared)
        state.completed = 0
        self._snapshot_progress({'total': state.total, 'completed': 0})

        self.notify(
            f"Starting download of {state.total} files to {session_folder}/",
            EVENT_RUNNING,
            {'total': state.total, 'completed': 0},
        )
        self._task = asyncio.create_task(self._process_queue(run_id))
        return {'status': START_STARTED, 'total': state.total}

    async def wait_until_idle(self) -> None:
        """Wait for the background drain task of the latest run, if any"""
        if self._task is not None:
            await self._task

    # Drain loop ---------------------------------------------------------
    def _is_current(self, run_id: int) -> bool:
        return self.state.active and run_id == self.state.run_id

    async def _dispatch(self, item: QueueItem) -> TransferOutcome:
        timeout = self.settings.timeout_ms / 1000.0
        try:
            return await asyncio.wait_for(self.transfer.initiate_transfer(item.url, item.filename), timeout)
        except asyncio.TimeoutError:
            return TransferOutcome(False, f"Download timed out after {timeout:g}s")

    async def _process_queue(self, run_id: int) -> None:
        state = self.state
        delay = self.settings.delay_ms / 1000.0

        while self._is_current(run_id) and not state.queue.exhausted:
            item = state.queue.current()
            index = state.queue.index
            name = truncate(item.label or item.filename or item.url)

            if state.debug or index % self.settings.progress_every == 0:
                self.notify(f"Downloading {index + 1} of {len(state.queue)}…", EVENT_RUNNING, self._current_progress())

            try:
                outcome = await self._dispatch(item)
                error = None
            except Exception as e:
                logger.warning("Transfer raised for %s", item.url, exc_info=True)
                outcome = TransferOutcome(False, str(e))
                error = e

            if not self._is_current(run_id):
                return

            state.results.append(TransferResult(item.url, outcome.success, outcome.message, item.filename))
            state.completed += 1
            progress = self._snapshot_progress(self._current_progress())

            if outcome.success:
                if state.debug:
                    self.notify(f"✔ Download finished for {name}", EVENT_RUNNING, progress)
            else:
                state.retry_queue.append(item)
                if error is not None:
                    self.notify(f"✖ Error: {name} - {error} (will retry)", EVENT_RUNNING, progress)
                elif state.debug:
                    self.notify(
                        f"✖ Failed: {name} - {outcome.message or 'unknown error'} (will retry)",
                        EVENT_RUNNING,
                        progress,
                    )
                else:
                    self.notify(f"✖ Failed: {name} (will retry)", EVENT_RUNNING, progress)

            state.queue.advance()
            await self._sleep(delay)

        if not self._is_current(run_id):
            return

        if state.retry_queue:
            self.notify(f"Retrying {len(state.retry_queue)} failed downloads...")
            if not await self._process_retries(run_id):
                return

        self._finalize_run()

    async def _process_retries(self, run_id: int) -> bool:
        """Work through the retry queue in cycles; False if the run was superseded"""
        state = self.state
        ceiling = self.settings.max_retries
        retry_delay = self.settings.retry_delay_ms / 1000.0

        while state.retry_queue:
            if not self._is_current(run_id):
                return False

            items_to_retry = list(state.retry_queue)
            state.retry_queue = []

            for item in items_to_retry:
                if not self._is_current(run_id):
                    return False

                name = truncate(item.label or item.filename or item.url)
                attempts = state.retry_attempts.get(item.url, 0)
                if attempts >= ceiling:
                    self._mark_permanent_failure(item, name)
                    continue

                attempt_number = attempts + 1
                state.retry_attempts[item.url] = attempt_number
                self.notify(f"Retry attempt {attempt_number}/{ceiling} for {name}")

                await self._sleep(retry_delay)
                if not self._is_current(run_id):
                    return False

                try:
                    outcome = await self._dispatch(item)
                except Exception as e:
                    logger.warning("Transfer raised on retry for %s", item.url, exc_info=True)
                    outcome = TransferOutcome(False, str(e))

                if not self._is_current(run_id):
                    return False

                if outcome.success:
                    self.notify(f"✔ Retry successful for {name}")
                    self._upgrade_result(item, outcome)
                elif attempt_number < ceiling:
                    state.retry_queue.append(item)
                else:
                    self._mark_permanent_failure(item, name)

        return self._is_current(run_id)

    def _upgrade_result(self, item: QueueItem, outcome: TransferOutcome) -> None:
        for position, result in enumerate(self.state.results):
            if result.url == item.url and not result.success:
                self.state.results[position] = TransferResult(item.url, True, outcome.message, item.filename)
                return

    def _mark_permanent_failure(self, item: QueueItem, name: str) -> None:
        self.state.permanent_failures.append(item)
        self.notify(f"✖ Permanently failed: {name} (max retries exceeded)")

    def _finalize_run(self) -> None:
        state = self.state
        successes = sum(1 for result in state.results if result.success)
        failures = len(state.results) - successes
        self._snapshot_progress({'total': state.total, 'completed': state.total})
        state.last_summary = {
            'total': state.total,
            'successes': successes,
            'failures': failures,
        }

        if failures > 0:
            self.notify(f"✓ Downloads complete. Success: {successes}, Failed: {failures}.", EVENT_IDLE)
        else:
            self.notify(f"✓ All downloads complete! Success: {successes}.", EVENT_IDLE)

        state.active = False
        state.queue = DownloadQueue()
        state.results = []
        state.session_folder = ''
        state.debug = False
        state.retry_queue = []
        state.retry_attempts.clear()


def _as_int(value) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
