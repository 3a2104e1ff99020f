"""
Utility module for configuration, paths and small string helpers
"""
import json
import os
import shutil


class ConfigManager:
    """Manages application configuration"""

    def __init__(self, config_path='config.json'):
        self.config_path = config_path
        self._ensure_config_exists()
        self.config = self.load_config()

    def _ensure_config_exists(self):
        """Create config from template if it doesn't exist"""
        if not os.path.exists(self.config_path):
            template_path = self.config_path + '.template'
            if os.path.exists(template_path):
                shutil.copy(template_path, self.config_path)
                print(f"✓ Created {self.config_path} from template")

    def load_config(self):
        """Load configuration from JSON file"""
        if os.path.exists(self.config_path):
            try:
                with open(self.config_path, 'r', encoding='utf-8') as f:
                    data = json.load(f)
            except (OSError, json.JSONDecodeError) as e:
                print(f"Warning: Failed to read {self.config_path}: {e}")
                return {}
            return data if isinstance(data, dict) else {}
        return {}

    def get(self, key, default=None):
        """Get configuration value using a dotted key (e.g. 'downloads.delay_ms')"""
        value = self.config
        for part in key.split('.'):
            if not isinstance(value, dict):
                return default
            value = value.get(part, default)
        return value


def parse_cookie_string(cookies):
    """Parse "name1=value1; name2=value2" into a dict, ignoring malformed parts"""
    cookie_dict = {}
    if not cookies:
        return cookie_dict
    for cookie in cookies.split(';'):
        cookie = cookie.strip()
        if '=' in cookie:
            name, value = cookie.split('=', 1)
            if name.strip():
                cookie_dict[name.strip()] = value.strip()
    return cookie_dict


def parse_header_lines(custom_headers):
    """Parse one "Header-Name: value" per line into a dict"""
    headers = {}
    if not custom_headers:
        return headers
    for line in custom_headers.strip().split('\n'):
        line = line.strip()
        if ':' in line:
            name, value = line.split(':', 1)
            if name.strip():
                headers[name.strip()] = value.strip()
    return headers


def truncate(text, max_length=64):
    """Shorten text for status lines, marking the cut with '...'"""
    if not text or len(text) <= max_length:
        return text
    return f"{text[:max_length - 3]}..."
