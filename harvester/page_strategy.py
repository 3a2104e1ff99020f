"""
Playwright implementation of the gallery page heuristics
"""
from typing import Dict, List, Optional, Tuple

from .collector import GalleryStrategy, ScrollSnapshot

IMAGE_SELECTOR = 'img[src*="assets.grok.com"], img[src*="imagine-public.x.ai"], img[src*="x.ai"]'
VIDEO_SELECTOR = 'video[src]'

GALLERY_MARKERS = (
    '[data-testid="drop-container"], [data-testid="favorites-scroll"], '
    '[data-radix-scroll-area-viewport]'
)

PAGINATION_SELECTORS = [
    'button[aria-label*="Next" i]:not([disabled])',
    'button[data-testid*="next" i]:not([disabled])',
    'button[aria-disabled="false"][data-testid*="pagination"]',
    'a[rel="next"]',
]

SURFACE_PATH_MARKER = '/imagine'


def media_selector(media_kind: str) -> str:
    if media_kind == 'image':
        return IMAGE_SELECTOR
    if media_kind == 'video':
        return VIDEO_SELECTOR
    return f"{IMAGE_SELECTOR}, {VIDEO_SELECTOR}"


# Finds the element that actually scrolls (overflow: scroll and materially
# taller than its viewport) and tags it so later steps address the same node.
_LOCATE_CONTAINER_JS = r'''() => {
    const tagged = document.querySelector('[data-harvest-scroll]');
    if (tagged && tagged.isConnected) {
        return { scrollHeight: tagged.scrollHeight, clientHeight: tagged.clientHeight, scrollTop: tagged.scrollTop };
    }
    const found = Array.from(document.querySelectorAll('div')).find((el) => {
        const style = getComputedStyle(el);
        const hasScrollOverflow = style.overflowY === 'scroll' || style.overflow === 'scroll';
        return hasScrollOverflow && el.scrollHeight > el.clientHeight + 100;
    });
    if (!found) return null;
    found.setAttribute('data-harvest-scroll', '1');
    return { scrollHeight: found.scrollHeight, clientHeight: found.clientHeight, scrollTop: found.scrollTop };
}'''

_CONTAINER_LOOKUP_JS = r'''
    const container = document.querySelector('[data-harvest-scroll]') || Array.from(document.querySelectorAll('div')).find((el) => {
        const style = getComputedStyle(el);
        return (style.overflowY === 'scroll' || style.overflow === 'scroll') && el.scrollHeight > el.clientHeight + 100;
    });
'''

# Step by 90% of the window height so virtualized rows are never skipped.
_SCROLL_STEP_JS = r'''() => {''' + _CONTAINER_LOOKUP_JS + r'''
    if (!container) return false;
    const step = Math.max(280, Math.floor((window.innerHeight || 900) * 0.9));
    const current = container.scrollTop || 0;
    container.scrollTop = Math.min(current + step, container.scrollHeight - container.clientHeight);
    return true;
}'''

_SCROLL_TOP_JS = r'''() => {''' + _CONTAINER_LOOKUP_JS + r'''
    if (container) container.scrollTop = 0;
}'''

_SNAPSHOT_JS = r'''() => {''' + _CONTAINER_LOOKUP_JS + r'''
    if (!container) return { height: 0, scrollTop: 0 };
    return { height: container.scrollHeight || 0, scrollTop: container.scrollTop || 0 };
}'''

# Each media node is attributed to the nearest ancestor holding the entry's
# "Unsave" button (falls back to the parent). Containers get a sequence tag so
# the same entry keeps its key across passes.
_VISIBLE_MEDIA_JS = r'''(selector) => {
    window.__harvestContainerSeq = window.__harvestContainerSeq || 0;
    const results = [];
    document.querySelectorAll(selector).forEach((node) => {
        if (!node || !node.src) return;
        const url = node.currentSrc || node.src;
        if (!url) return;
        const kind = node.tagName.toLowerCase() === 'video' ? 'video' : 'image';
        const poster = kind === 'video' ? (node.poster || node.getAttribute('poster') || '') : '';

        let container = node.parentElement;
        while (container && container !== document.body) {
            if (container.querySelector('button[aria-label="Unsave"]')) break;
            container = container.parentElement;
        }
        if (!container || container === document.body) {
            container = node.parentElement;
        }

        let key = '';
        if (container) {
            key = container.getAttribute('data-harvest-container') || '';
            if (!key) {
                window.__harvestContainerSeq += 1;
                key = String(window.__harvestContainerSeq);
                container.setAttribute('data-harvest-container', key);
            }
        }
        results.push({ url, kind, poster, container: key });
    });
    return results;
}'''

_ADVANCE_PAGE_JS = r'''(selectors) => {
    for (const selector of selectors) {
        const control = document.querySelector(selector);
        if (control) {
            control.click();
            return `selector: ${selector}`;
        }
    }
    const fallback = Array.from(document.querySelectorAll('button, a')).find((element) => {
        if (element.disabled || element.getAttribute('aria-disabled') === 'true') return false;
        const label = (element.getAttribute('aria-label') || '').trim();
        const text = (element.textContent || '').trim();
        return /^(next|older|more)$/i.test(label || text) || /^[>›»]+$/.test(text);
    });
    if (fallback) {
        fallback.click();
        return 'fallback control';
    }
    return null;
}'''


class PlaywrightGalleryStrategy(GalleryStrategy):
    """Drives an async Playwright Page showing the favorites gallery."""

    def __init__(self, page):
        self.page = page

    def matches_surface(self, url: str) -> bool:
        return SURFACE_PATH_MARKER in (url or '')

    async def current_url(self) -> str:
        return self.page.url

    async def probe(self, media_kind: str) -> Tuple[bool, bool]:
        has_media = await self.page.evaluate(
            '(selector) => Boolean(document.querySelector(selector))', media_selector(media_kind)
        )
        has_gallery = await self.page.evaluate(
            '(selector) => Boolean(document.querySelector(selector))', GALLERY_MARKERS
        )
        return bool(has_media), bool(has_gallery)

    async def locate_scroll_container(self) -> Optional[Dict[str, int]]:
        return await self.page.evaluate(_LOCATE_CONTAINER_JS)

    async def scroll_to_top(self) -> None:
        await self.page.evaluate(_SCROLL_TOP_JS)

    async def scroll_step(self) -> None:
        await self.page.evaluate(_SCROLL_STEP_JS)

    async def scroll_snapshot(self) -> ScrollSnapshot:
        data = await self.page.evaluate(_SNAPSHOT_JS) or {}
        return ScrollSnapshot(height=int(data.get('height') or 0), scroll_top=int(data.get('scrollTop') or 0))

    async def count_media(self, media_kind: str) -> int:
        return int(await self.page.evaluate(
            '(selector) => document.querySelectorAll(selector).length', media_selector(media_kind)
        ) or 0)

    async def visible_media(self, media_kind: str) -> List[Dict]:
        return await self.page.evaluate(_VISIBLE_MEDIA_JS, media_selector(media_kind)) or []

    async def advance_page(self) -> Optional[str]:
        return await self.page.evaluate(_ADVANCE_PAGE_JS, PAGINATION_SELECTORS)
