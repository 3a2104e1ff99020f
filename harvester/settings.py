"""
Typed runtime settings built from the JSON configuration
"""
from __future__ import annotations

from dataclasses import dataclass

DEFAULT_TARGET_URL = 'https://grok.com/imagine/favorites'
DEFAULT_SESSION_ROOT = 'harvest-session'


def _int_setting(config, key, default):
    if config is None:
        return default
    try:
        return max(0, int(config.get(key, default)))
    except (TypeError, ValueError):
        return default


def _bool_setting(config, key, default):
    if config is None:
        return default
    value = config.get(key, default)
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def _str_setting(config, key, default):
    if config is None:
        return default
    value = config.get(key, default)
    return default if value is None else str(value)


@dataclass
class CollectorSettings:
    max_scroll_passes: int = 1500
    max_pagination_cycles: int = 100
    stable_passes: int = 3
    probe_attempts: int = 60
    # (base, jitter) pairs in milliseconds
    probe_wait_ms: tuple = (250, 200)
    probe_scroll_wait_ms: tuple = (400, 200)
    settle_ms: int = 300
    scroll_wait_ms: tuple = (520, 320)
    pagination_click_wait_ms: tuple = (900, 400)
    pagination_settle_ms: tuple = (600, 300)

    @classmethod
    def from_config(cls, config) -> 'CollectorSettings':
        return cls(
            max_scroll_passes=_int_setting(config, 'collector.max_scroll_passes', 1500),
            max_pagination_cycles=_int_setting(config, 'collector.max_pagination_cycles', 100),
            stable_passes=max(1, _int_setting(config, 'collector.stable_passes', 3)),
            probe_attempts=max(1, _int_setting(config, 'collector.probe_attempts', 60)),
        )

    @classmethod
    def immediate(cls, **overrides) -> 'CollectorSettings':
        """Settings with every wait set to zero, for synthetic pages"""
        values = dict(
            probe_wait_ms=(0, 0),
            probe_scroll_wait_ms=(0, 0),
            settle_ms=0,
            scroll_wait_ms=(0, 0),
            pagination_click_wait_ms=(0, 0),
            pagination_settle_ms=(0, 0),
        )
        values.update(overrides)
        return cls(**values)


@dataclass
class DownloadSettings:
    base_path: str = 'Downloads'
    session_root: str = DEFAULT_SESSION_ROOT
    delay_ms: int = 350
    timeout_ms: int = 30000
    max_retries: int = 3
    retry_delay_ms: int = 1000
    progress_every: int = 10
    max_history: int = 500

    @classmethod
    def from_config(cls, config) -> 'DownloadSettings':
        return cls(
            base_path=_str_setting(config, 'downloads.base_path', 'Downloads'),
            session_root=_str_setting(config, 'downloads.session_root', DEFAULT_SESSION_ROOT),
            delay_ms=_int_setting(config, 'downloads.delay_ms', 350),
            timeout_ms=_int_setting(config, 'downloads.timeout_ms', 30000),
            max_retries=_int_setting(config, 'downloads.max_retries', 3),
            retry_delay_ms=_int_setting(config, 'downloads.retry_delay_ms', 1000),
            progress_every=max(1, _int_setting(config, 'downloads.progress_every', 10)),
            max_history=max(1, _int_setting(config, 'history.max_entries', 500)),
        )


@dataclass
class BrowserSettings:
    target_url: str = DEFAULT_TARGET_URL
    headless: bool = False
    user_data_dir: str = 'browser_profile'
    cookies: str = ''
    headers: str = ''

    @classmethod
    def from_config(cls, config) -> 'BrowserSettings':
        return cls(
            target_url=_str_setting(config, 'browser.target_url', DEFAULT_TARGET_URL),
            headless=_bool_setting(config, 'browser.headless', False),
            user_data_dir=_str_setting(config, 'browser.user_data_dir', 'browser_profile'),
            cookies=_str_setting(config, 'http.cookies', ''),
            headers=_str_setting(config, 'http.headers', ''),
        )
