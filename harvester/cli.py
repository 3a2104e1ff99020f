"""
Command-line interface: open the gallery in Chromium and harvest it
"""
import argparse
import asyncio
import logging
import os
import sys

from .browser import BrowserSession
from .collector import Collector
from .orchestrator import START_STARTED, DownloadOrchestrator
from .settings import BrowserSettings, CollectorSettings, DownloadSettings
from .transfer import HttpTransfer
from .utils import ConfigManager

STATE_MARKERS = {
    'running': '•',
    'idle': '✓',
    'error': '❌',
    'debug': '·',
}


def build_parser():
    parser = argparse.ArgumentParser(
        prog='harvester',
        description='Download every image and video from a virtualized gallery page.',
    )
    parser.add_argument('--config', default='config.json', help='Path to config.json (default: %(default)s)')
    parser.add_argument('--url', help='Gallery page to open (default: browser.target_url from config)')
    parser.add_argument('--output', help='Download root directory (default: downloads.base_path from config)')
    parser.add_argument('--limit', type=int, default=0, help='Stop after this many items (0 = all)')
    parser.add_argument('--media', choices=['all', 'image', 'video'], default='all', help='Media kinds to download')
    parser.add_argument('--debug', action='store_true', help='Print every scan and download decision')
    parser.add_argument('--headless', action='store_true', help='Run Chromium without a window')
    parser.add_argument('--no-wait', action='store_true', help='Do not wait for Enter before scanning')
    return parser


def print_status(message):
    marker = STATE_MARKERS.get(message.get('state'), '•')
    progress = message.get('progress')
    suffix = f" [{progress['completed']}/{progress['total']}]" if progress else ''
    print(f"{marker} {message.get('text', '')}{suffix}", flush=True)


async def wait_for_initial_load(page, timeout=60000):
    """Let the first navigation fire its load event; later loads mean the page was reloaded"""
    try:
        await page.wait_for_load_state('load', timeout=timeout)
    except Exception as e:
        print(f"Page did not finish loading, continuing anyway: {str(e)[:100]}")


async def run(args):
    config = ConfigManager(args.config)
    browser_settings = BrowserSettings.from_config(config)
    download_settings = DownloadSettings.from_config(config)
    if args.output:
        download_settings.base_path = args.output
    if args.headless:
        browser_settings.headless = True
    target_url = args.url or browser_settings.target_url

    transfer = HttpTransfer(
        base_path=download_settings.base_path,
        cookies=browser_settings.cookies,
        custom_headers=browser_settings.headers,
    )
    orchestrator = DownloadOrchestrator(
        transfer,
        collector=Collector(CollectorSettings.from_config(config)),
        settings=download_settings,
    )
    orchestrator.add_broadcast_listener(print_status)

    try:
        async with BrowserSession(browser_settings.user_data_dir, browser_settings.headless, print) as session:
            print(f"Opening {target_url}")
            surface = await session.open_surface(target_url)
            await wait_for_initial_load(surface.page)
            orchestrator.reset_for_surface(surface.surface_id)
            surface.page.on('load', lambda _page: orchestrator.reset_for_surface(surface.surface_id))

            if not browser_settings.headless and not args.no_wait:
                # Login and verification prompts have to be solved by hand
                await asyncio.to_thread(input, "Log in if needed, wait for the gallery to show, then press Enter...")

            loaded = transfer.load_browser_cookies(await session.cookies())
            if args.debug:
                print(f"Loaded {loaded} browser cookies into the download session")

            response = await orchestrator.start(surface, args.debug, args.limit, args.media)
            if response.get('status') != START_STARTED:
                print(f"Run did not start: {response.get('status')} {response.get('message', '')}".rstrip())
                return 2

            await orchestrator.wait_until_idle()
    finally:
        transfer.close()

    summary = orchestrator.state.last_summary or {}
    print(
        f"📊 {summary.get('successes', 0)}/{summary.get('total', 0)} files saved under "
        f"{os.path.abspath(download_settings.base_path)}"
    )
    return 1 if summary.get('failures') else 0


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.WARNING,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        return asyncio.run(run(args))
    except KeyboardInterrupt:
        print("\n🛑 Interrupted")
        return 130


if __name__ == '__main__':
    sys.exit(main())
