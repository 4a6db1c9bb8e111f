"""
Simple config loader for the bridge.
Reads the TOML config file shipped next to the settings module.

@.architecture
Incoming: config/settings.py --- {optional TOML file path, load_config calls}
Processing: load_config(), get_fallback_config() --- {2 jobs: config_loading, fallback_generation}
Outgoing: config/settings.py --- {Dict[str, Any] config data}
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import toml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = Path(__file__).parent.parent / "config" / "devtools.toml"


def load_config(config_file: Optional[Path] = None) -> Dict[str, Any]:
    """Load configuration from the TOML file, or the fallback if it can't be read."""
    config_file = config_file or DEFAULT_CONFIG_FILE
    try:
        with open(config_file, 'r') as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as e:
        logger.warning(f"Failed to load config {config_file}: {e}")
        return get_fallback_config()


def get_fallback_config() -> Dict[str, Any]:
    """Fallback configuration if the TOML file can't be loaded."""
    return {
        "relay": {
            "ws_port": 8081,
            "tcp_port": 8082,
            "internet": False,
        },
        "deploy": {
            "debounce_seconds": 0.5,
            "poll_interval": 0.25,
        },
        "proxy": {
            "localhost": False,
        },
    }
