# Config - config.json next to main.py, merged over defaults

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).resolve().parent.parent / 'config.json'

DEFAULT_CONFIG: Dict[str, Any] = {
    # HTTP listener (push /print and the print queue)
    'http_host': '0.0.0.0',
    'http_port': 3003,
    'public_url': None,

    # Print queue
    'queue_dir': 'print-queue',
    'grace_period_seconds': 30,
    'unfetched_ttl_seconds': 3600,
    'sweep_interval_seconds': 5,

    # Printers
    'printer_name': None,
    'usb_enabled': True,
    'usb_vendor_ids': None,  # None = built-in thermal vendor list
    'usb_timeout_ms': 5000,
    'command_timeout_seconds': 10,
    'browser_fallback': True,
    'archive_dir': None,

    # Receipt layout
    'shop_name': 'DELIVERY',
    'currency_symbol': 'R$',
    'decimal_separator': '.',

    # Upstream backend and remote queue (agent side)
    'upstream_url': None,
    'api_key': None,
    'queue_url': None,
    'poll_timeout_seconds': 3,
    'poll_interval_seconds': 2,
    'notify_max_retries': 3,
    'notify_retry_delay_seconds': 2,

    # Logging
    'log_path': None,
    'log_level': 'INFO',
}


class ConfigError(ValueError):
    """config.json is present but unusable"""


def load_config(path: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
    """Defaults overlaid with config.json; unknown keys are kept as-is"""
    config = dict(DEFAULT_CONFIG)
    config_path = Path(path) if path else CONFIG_PATH
    if not config_path.exists():
        if path:
            raise ConfigError(f"Config file not found: {config_path}")
        return config

    try:
        with open(config_path, encoding='utf-8') as f:
            overrides = json.load(f)
    except ValueError as e:
        raise ConfigError(f"Invalid JSON in {config_path}: {e}")
    if not isinstance(overrides, dict):
        raise ConfigError(f"{config_path} must contain a JSON object")

    config.update(overrides)
    logger.debug(f"Loaded config from {config_path}")
    return config
