"""
Playwright browser session hosting the gallery page
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import async_playwright

from .page_strategy import PlaywrightGalleryStrategy

# Suppress asyncio and playwright error logging
logging.getLogger('playwright').setLevel(logging.CRITICAL)
logging.getLogger('asyncio').setLevel(logging.CRITICAL)


@dataclass
class PageSurface:
    """A rendered page the orchestrator can harvest from."""
    surface_id: str
    page: object
    strategy: PlaywrightGalleryStrategy

    @property
    def url(self):
        return self.page.url


class BrowserSession:
    """Persistent Chromium profile so a logged-in session survives restarts.

    Use as an async context manager; open_surface() navigates a fresh page.
    """

    def __init__(self, user_data_dir='browser_profile', headless=False, progress_callback=None):
        self.user_data_dir = user_data_dir
        self.headless = headless
        self.progress_callback = progress_callback
        self._playwright = None
        self._context = None
        self._surface_count = 0

    async def __aenter__(self):
        os.makedirs(self.user_data_dir, exist_ok=True)
        self._playwright = await async_playwright().start()
        self._context = await self._playwright.chromium.launch_persistent_context(
            self.user_data_dir,
            headless=self.headless,
            viewport={"width": 1920, "height": 1080},
        )
        return self

    async def __aexit__(self, exc_type, exc, tb):
        try:
            if self._context is not None:
                await self._context.close()
        finally:
            if self._playwright is not None:
                await self._playwright.stop()
        self._context = None
        self._playwright = None

    async def open_surface(self, url, timeout=60000) -> PageSurface:
        page = await self._context.new_page()
        page.on('dialog', lambda dialog: asyncio.ensure_future(dialog.dismiss()))
        try:
            await page.goto(url, wait_until='domcontentloaded', timeout=timeout)
        except Exception as e:
            # The gallery may still render after a slow navigation
            if self.progress_callback:
                self.progress_callback(f"Navigation timeout (page may still be usable): {str(e)[:100]}")
        self._surface_count += 1
        return PageSurface(
            surface_id=f"page-{self._surface_count}",
            page=page,
            strategy=PlaywrightGalleryStrategy(page),
        )

    async def cookies(self, urls: Optional[list] = None):
        """Export the browser context's cookies (optionally scoped to urls)"""
        if urls:
            return await self._context.cookies(urls)
        return await self._context.cookies()
