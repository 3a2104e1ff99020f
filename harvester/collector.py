"""
Gallery collector: scrolls a virtualized, lazily rendered list until it stops
growing and extracts every media reference it saw along the way.
"""
from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from .models import MEDIA_KINDS, STATUS_NOT_READY, STATUS_OK, CollectedItem, CollectResult
from .settings import CollectorSettings

logger = logging.getLogger(__name__)

SKIP_URL_MARKERS = ('profile-picture', 'avatar')
GENERATED_URL_MARKERS = ('/generated/', '/images/', 'generated_video')


@dataclass(frozen=True)
class ScrollSnapshot:
    height: int = 0
    scroll_top: int = 0


class GalleryStrategy:
    """Page-specific knowledge the collector relies on.

    Everything that depends on the gallery's markup (selectors, the ancestor
    walk that finds an entry's container, which element scrolls, what the
    pagination controls look like) lives behind this interface.
    """

    def matches_surface(self, url: str) -> bool:
        raise NotImplementedError

    async def current_url(self) -> str:
        raise NotImplementedError

    async def probe(self, media_kind: str) -> Tuple[bool, bool]:
        """Return (media element present, gallery container present)"""
        raise NotImplementedError

    async def locate_scroll_container(self) -> Optional[Dict[str, int]]:
        """Find the virtualized viewport; return its geometry or None"""
        raise NotImplementedError

    async def scroll_to_top(self) -> None:
        raise NotImplementedError

    async def scroll_step(self) -> None:
        raise NotImplementedError

    async def scroll_snapshot(self) -> ScrollSnapshot:
        raise NotImplementedError

    async def count_media(self, media_kind: str) -> int:
        raise NotImplementedError

    async def visible_media(self, media_kind: str) -> List[Dict]:
        """Currently rendered media as dicts with url, kind, poster, container"""
        raise NotImplementedError

    async def advance_page(self) -> Optional[str]:
        """Click a pagination control; return a description of it, or None"""
        raise NotImplementedError


def is_generated_media_url(url: str) -> bool:
    if any(marker in url for marker in SKIP_URL_MARKERS):
        return False
    return any(marker in url for marker in GENERATED_URL_MARKERS)


def group_items(items: List[CollectedItem]) -> Tuple[List[CollectedItem], Dict[int, List[CollectedItem]]]:
    """Number containers 1..n in discovery order and flatten them back out"""
    groups: Dict[int, List[CollectedItem]] = {}
    for item in items:
        groups.setdefault(item.container_id, []).append(item)

    grouped: List[CollectedItem] = []
    for group_id, container_id in enumerate(sorted(groups), start=1):
        grouped.extend(replace(item, group_id=group_id) for item in groups[container_id])
    return grouped, groups


class _ScanState:
    """Per-call bookkeeping: seen URLs and container ids in first-encounter order"""

    def __init__(self):
        self.seen_urls = set()
        self.container_ids: Dict[str, int] = {}
        self.items: List[CollectedItem] = []

    def container_id_for(self, key: str) -> int:
        if key not in self.container_ids:
            self.container_ids[key] = len(self.container_ids)
        return self.container_ids[key]


class Collector:
    """Discovers media on a gallery surface through a GalleryStrategy."""

    def __init__(self, settings: Optional[CollectorSettings] = None,
                 sleep: Optional[Callable] = None, rng: Optional[Callable[[], float]] = None):
        self.settings = settings or CollectorSettings()
        self._sleep = sleep or asyncio.sleep
        self._random = rng or random.random

    async def _wait(self, timing) -> None:
        if isinstance(timing, tuple):
            base, jitter = timing
            ms = base + self._random() * jitter
        else:
            ms = timing
        await self._sleep(ms / 1000.0)

    async def collect(self, strategy: GalleryStrategy, limit: int = 0,
                      media_kind: str = 'all', debug: bool = False) -> CollectResult:
        """Scroll the surface and return everything found.

        Never raises; failures are reported as a not_ready result.
        """
        trace: Optional[List[str]] = [] if debug else None

        def log(message: str) -> None:
            if trace is not None:
                trace.append(message)

        if media_kind not in MEDIA_KINDS:
            media_kind = 'all'
        try:
            limit = max(0, int(limit or 0))
        except (TypeError, ValueError):
            limit = 0

        try:
            return await self._collect(strategy, limit, media_kind, log, trace)
        except Exception as e:
            logger.debug("Collector failed", exc_info=True)
            log(f"Collector error: {type(e).__name__}: {e}")
            return CollectResult(
                status=STATUS_NOT_READY,
                message=f"Gallery scan failed: {e}",
                debug=trace,
            )

    async def _collect(self, strategy, limit, media_kind, log, trace) -> CollectResult:
        settings = self.settings
        log(f"Media filter: {media_kind}, limit: {limit or 'none'}")

        url = await strategy.current_url()
        if not strategy.matches_surface(url or ''):
            log('Page URL is not a gallery surface; aborting scan.')
            return CollectResult(status=STATUS_NOT_READY, message='Not a gallery page.', debug=trace)

        if not await self._ensure_grid_visible(strategy, media_kind, log):
            return CollectResult(
                status=STATUS_NOT_READY,
                message='Gallery grid not detected. Solve verification prompts, reload the page, then try again.',
                debug=trace,
            )

        geometry = await strategy.locate_scroll_container()
        if not geometry:
            log('Could not find scrollable container')
            return CollectResult(status=STATUS_NOT_READY, message='No scrollable gallery container found.', debug=trace)
        log(
            f"Found scroll container: scrollHeight={geometry.get('scrollHeight', 0)}, "
            f"clientHeight={geometry.get('clientHeight', 0)}, scrollTop={geometry.get('scrollTop', 0)}"
        )

        await strategy.scroll_to_top()
        await self._wait(settings.settle_ms)

        scan = _ScanState()
        await self._scroll_and_collect(strategy, scan, limit, media_kind, log)

        await self._collect_visible(strategy, scan, media_kind)
        log(f"Final collection: {len(scan.items)} total unique media items")

        if not scan.items:
            log('No media items were collected during scrolling.')
            return CollectResult(status=STATUS_NOT_READY, message='No media items found.', debug=trace)

        items, groups = group_items(scan.items)
        log(f"Processed {len(items)} media items into {len(groups)} groups.")
        if trace is not None:
            sizes = Counter(len(members) for members in groups.values())
            distribution = ', '.join(f"{count} groups with {size} items" for size, count in sorted(sizes.items()))
            log(f"Group size distribution: {distribution}")

        return CollectResult(status=STATUS_OK, items=items, debug=trace)

    async def _ensure_grid_visible(self, strategy, media_kind, log) -> bool:
        attempts = self.settings.probe_attempts
        for attempt in range(attempts):
            has_media, has_gallery = await strategy.probe(media_kind)
            log(
                f"ensureGrid attempt {attempt + 1}: media={'yes' if has_media else 'no'}, "
                f"gallery={'yes' if has_gallery else 'no'}"
            )
            if has_media:
                log('Media element detected; grid ready for scanning.')
                return True
            if has_gallery:
                log('Gallery container present but media missing; performing additional scroll.')
                await strategy.scroll_step()
                await self._wait(self.settings.probe_scroll_wait_ms)
                continue
            await self._wait(self.settings.probe_wait_ms)
        log('Failed to detect gallery grid after repeated attempts.')
        return False

    async def _collect_visible(self, strategy, scan: _ScanState, media_kind) -> None:
        for node in await strategy.visible_media(media_kind) or []:
            url = node.get('url') or ''
            if not url or url in scan.seen_urls:
                continue
            if not is_generated_media_url(url):
                continue
            scan.seen_urls.add(url)
            kind = 'video' if node.get('kind') == 'video' else 'image'
            poster = (node.get('poster') or '') if kind == 'video' else ''
            scan.items.append(CollectedItem(
                url=url,
                kind=kind,
                container_id=scan.container_id_for(str(node.get('container') or url)),
                poster_url=poster,
            ))

    async def _scroll_and_collect(self, strategy, scan: _ScanState, limit, media_kind, log) -> None:
        settings = self.settings
        threshold = settings.stable_passes
        stable_height = 0
        stable_media = 0
        pagination_cycles = 0
        last_snapshot = await strategy.scroll_snapshot()
        last_media_count = await strategy.count_media(media_kind)

        for attempt in range(settings.max_scroll_passes):
            await self._collect_visible(strategy, scan, media_kind)

            if limit and len(scan.items) >= limit:
                log(f"Reached limit of {limit} items, stopping scan early.")
                return

            await strategy.scroll_step()
            await self._wait(settings.scroll_wait_ms)

            snapshot = await strategy.scroll_snapshot()
            media_count = await strategy.count_media(media_kind)
            log(
                f"scroll pass {attempt + 1}: media={media_count}, height={snapshot.height}, "
                f"scrollTop={snapshot.scroll_top}, collected={len(scan.items)}, "
                f"stableHeight={stable_height}, stableMedia={stable_media}"
            )

            stable_height = stable_height + 1 if snapshot == last_snapshot else 0
            stable_media = stable_media + 1 if media_count == last_media_count else 0
            last_snapshot = snapshot
            last_media_count = media_count

            if media_count == 0:
                continue

            if stable_height >= threshold and stable_media >= threshold:
                if pagination_cycles < settings.max_pagination_cycles:
                    control = await strategy.advance_page()
                    if control:
                        log(f"Advancing pagination via {control}")
                        await self._wait(settings.pagination_click_wait_ms)
                        pagination_cycles += 1
                        stable_height = 0
                        stable_media = 0
                        last_snapshot = await strategy.scroll_snapshot()
                        last_media_count = await strategy.count_media(media_kind)
                        await self._wait(settings.pagination_settle_ms)
                        continue
                log('Scroll geometry and media count stable; list exhausted.')
                return

        log(f"Stopped after {settings.max_scroll_passes} scroll passes.")
