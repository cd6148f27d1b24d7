"""
Settings Module for the SMC Backtester.

This module loads and saves strategy settings as JSON, supporting both
the built-in defaults and settings persisted after an optimization run.

The tool can toggle between default and optimized settings with the
USE_OPTIMIZED_SETTINGS environment variable.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

from config import SETTINGS_FILE, USE_OPTIMIZED_SETTINGS
from smc_core import SMCSettings

logger = logging.getLogger(__name__)


def load_settings_file(path: Union[str, Path, None] = None) -> Optional[Dict[str, Any]]:
    """Load the raw settings dict from JSON, or None when unavailable."""
    path = Path(path) if path is not None else SETTINGS_FILE
    if not path.exists():
        return None

    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Error loading settings from %s: %s", path, e)
        return None

    if not isinstance(data, dict):
        logger.warning("Ignoring settings file %s: expected a JSON object", path)
        return None
    return data


def get_strategy_settings(
    path: Union[str, Path, None] = None,
    use_optimized: Optional[bool] = None,
) -> SMCSettings:
    """
    Get strategy settings for a run.

    An explicit path is always read. Without one, the default settings
    file is read only in optimized mode. Missing files give defaults;
    invalid persisted values are logged and replaced by defaults.

    Args:
        path: Settings file (SMC_SETTINGS_FILE if None)
        use_optimized: Overrides the mode; defaults to True for an explicit
            path, USE_OPTIMIZED_SETTINGS otherwise

    Returns:
        SMCSettings
    """
    if use_optimized is None:
        use_optimized = path is not None or USE_OPTIMIZED_SETTINGS

    if not use_optimized:
        return SMCSettings()

    data = load_settings_file(path)
    if data is None:
        return SMCSettings()

    try:
        return SMCSettings.from_dict(data)
    except (TypeError, ValueError) as e:
        logger.warning("Invalid persisted settings, using defaults: %s", e)
        return SMCSettings()


def save_settings(settings: SMCSettings, path: Union[str, Path, None] = None) -> Path:
    """Save settings to the settings file."""
    path = Path(path) if path is not None else SETTINGS_FILE
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w") as f:
        json.dump(settings.to_dict(), f, indent=2)

    logger.info("Settings saved to %s", path)
    return path


def get_config_status(path: Union[str, Path, None] = None) -> Dict[str, Any]:
    """Get current configuration status."""
    path = Path(path) if path is not None else SETTINGS_FILE
    data = load_settings_file(path)

    return {
        "optimized_mode": USE_OPTIMIZED_SETTINGS,
        "settings_file": str(path),
        "settings_file_exists": data is not None,
        "settings": data,
    }


def print_config_status(path: Union[str, Path, None] = None):
    """Print current configuration status."""
    status = get_config_status(path)

    print("\n" + "=" * 50)
    print("SMC SETTINGS STATUS")
    print("=" * 50)
    print(f"Optimized Mode: {'ENABLED' if status['optimized_mode'] else 'DISABLED'}")
    print(f"Settings File: {status['settings_file']}")
    print(f"File Exists: {'YES' if status['settings_file_exists'] else 'NO'}")

    if status["settings"]:
        print("\nPersisted Settings:")
        for key, value in sorted(status["settings"].items()):
            print(f"  {key}: {value}")

    print("=" * 50 + "\n")
