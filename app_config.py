"""
Configuration for Biblia.
Read from biblia_config.json when present, with environment variable fallback.
"""

import json
import logging
import os
from dataclasses import dataclass, asdict
from typing import Optional

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "biblia_config.json"
DEFAULT_DATA_DIR = os.path.join(os.path.expanduser("~"), ".biblia")


@dataclass
class AppConfig:
    """Configuration for the reading app's storage and content services."""
    data_dir: str = DEFAULT_DATA_DIR
    supabase_url: str = ""
    supabase_anon_key: str = ""
    content_base_url: str = "http://localhost:5173"
    request_timeout: float = 30.0

    @property
    def remote_enabled(self) -> bool:
        """Remote sync is only available when Supabase is fully configured."""
        return bool(self.supabase_url and self.supabase_anon_key)


def _from_environment() -> AppConfig:
    return AppConfig(
        data_dir=os.environ.get("BIBLIA_DATA_DIR", DEFAULT_DATA_DIR),
        supabase_url=os.environ.get("BIBLIA_SUPABASE_URL", ""),
        supabase_anon_key=os.environ.get("BIBLIA_SUPABASE_ANON_KEY", ""),
        content_base_url=os.environ.get("BIBLIA_CONTENT_URL", "http://localhost:5173"),
    )


def load_config(path: Optional[str] = None) -> AppConfig:
    """Load config from file, falling back to environment variables per key."""
    defaults = _from_environment()
    config_path = path or os.path.join(defaults.data_dir, CONFIG_FILENAME)

    if not os.path.exists(config_path):
        return defaults

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = json.load(f)
        supabase = data.get("supabase", {})
        return AppConfig(
            data_dir=data.get("data_dir") or defaults.data_dir,
            supabase_url=supabase.get("url") or defaults.supabase_url,
            supabase_anon_key=supabase.get("anon_key") or defaults.supabase_anon_key,
            content_base_url=data.get("content_base_url") or defaults.content_base_url,
            request_timeout=float(data.get("request_timeout", defaults.request_timeout)),
        )
    except (OSError, ValueError, AttributeError) as e:
        logger.warning("Ignoring unreadable config %s: %s", config_path, e)
        return defaults


def save_config(config: AppConfig, path: Optional[str] = None):
    """Save config to file."""
    config_path = path or os.path.join(config.data_dir, CONFIG_FILENAME)
    os.makedirs(os.path.dirname(config_path) or ".", exist_ok=True)
    raw = asdict(config)
    data = {
        "data_dir": raw["data_dir"],
        "supabase": {
            "url": raw["supabase_url"],
            "anon_key": raw["supabase_anon_key"],
        },
        "content_base_url": raw["content_base_url"],
        "request_timeout": raw["request_timeout"],
    }
    with open(config_path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
