# config.py
"""
Configuration for the SMC Backtester.

You keep:
- machine specific values (paths, log level) in a .env file or env vars
- public defaults (symbol, timeframes, optimizer workers) here
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

PROJECT_DIR = Path(__file__).parent

ENV_FILE = PROJECT_DIR / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE)


def _get_int_env(env_name: str, default: int) -> int:
    """Get an integer from the environment or use default."""
    val = os.getenv(env_name)
    if val:
        try:
            return int(val)
        except ValueError:
            logger.warning("Invalid %s value '%s', using default %s", env_name, val, default)
    return default


def _get_bool_env(env_name: str, default: bool) -> bool:
    val = os.getenv(env_name)
    if val is None:
        return default
    return val.strip().lower() in ("1", "true", "yes", "on")


# ==== Paths ====

DATA_DIR = Path(os.getenv("SMC_DATA_DIR", str(PROJECT_DIR / "data")))
SETTINGS_FILE = Path(os.getenv("SMC_SETTINGS_FILE", "smc_settings.json"))
BEST_CONFIG_FILE = Path(os.getenv("SMC_BEST_CONFIG_FILE", "best_smc_config.json"))


# ==== Logging ====

LOG_LEVEL = os.getenv("SMC_LOG_LEVEL", "INFO")
LOG_FILE = os.getenv("SMC_LOG_FILE") or None


# ==== Market data ====

DEFAULT_SYMBOL = os.getenv("SMC_SYMBOL", "BTCUSDT")

# Coarsest to finest
HTF_INTERVAL = os.getenv("SMC_HTF_INTERVAL", "4h")
MTF_INTERVAL = os.getenv("SMC_MTF_INTERVAL", "15m")
LTF_INTERVAL = os.getenv("SMC_LTF_INTERVAL", "1m")

# One of: 1d, 3d, 7d, 1M, 3M, 6M, 1Y
DEFAULT_TIME_RANGE = os.getenv("SMC_TIME_RANGE", "1M")


# ==== Optimizer ====

OPTIMIZER_WORKERS = _get_int_env("SMC_OPTIMIZER_WORKERS", 4)

# Use persisted (optimized) settings instead of the built-in defaults
USE_OPTIMIZED_SETTINGS = _get_bool_env("USE_OPTIMIZED_SETTINGS", True)
