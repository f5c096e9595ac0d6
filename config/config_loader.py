"""
config_loader.py
-----------------
Cached config loader. Reads config.yaml once and keeps it for the process.
Parser, resolver, detector and predictor thresholds are all read through
the accessors below.
"""

import os
import yaml
from typing import Any, Dict


DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "config.yaml")

_CONFIG_CACHE: Dict[str, Any] = {}


def load_config(config_path: str | None = None) -> Dict[str, Any]:
    """
    Returns the parsed config, reading the file only on first use.

    Args:
        config_path: Alternate YAML file. Only honoured on the first call
            (or after reset_config()).

    Raises:
        FileNotFoundError: The file does not exist.
        ValueError: The file does not hold a mapping of named blocks.
    """
    global _CONFIG_CACHE

    if _CONFIG_CACHE:
        return _CONFIG_CACHE

    path = config_path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        raise FileNotFoundError(f"Configuration file not found: {path}")

    with open(path, "r", encoding="utf-8") as f:
        loaded = yaml.safe_load(f)

    if not isinstance(loaded, dict):
        raise ValueError(f"Expected named config blocks in {path}, got {type(loaded).__name__}")

    _CONFIG_CACHE = loaded
    return _CONFIG_CACHE


def _get_block(name: str) -> Dict[str, Any]:
    config = load_config()
    if name not in config:
        raise KeyError(
            f"No config block '{name}'. Available: {list(config.keys())}"
        )
    return config[name]


def get_similarity_config() -> Dict[str, Any]:
    """Returns the similarity block."""
    return _get_block("similarity")


def get_merchant_resolution_config() -> Dict[str, Any]:
    """Returns the merchant_resolution block."""
    return _get_block("merchant_resolution")


def get_parser_config() -> Dict[str, Any]:
    """Returns the parser block (confidence bonuses, subscription vocabulary)."""
    return _get_block("parser")


def get_pattern_detection_config() -> Dict[str, Any]:
    """Returns the pattern_detection block."""
    return _get_block("pattern_detection")


def get_prediction_config() -> Dict[str, Any]:
    """Returns the prediction block."""
    return _get_block("prediction")


def get_forecast_config() -> Dict[str, Any]:
    """Returns the forecast block."""
    return _get_block("forecast")


def get_scanner_config() -> Dict[str, Any]:
    """Returns the scanner block."""
    return _get_block("scanner")


def get_suggestion_config() -> Dict[str, Any]:
    """Returns the suggestions block (dismissal retention)."""
    return _get_block("suggestions")


def get_subscription_vocabulary() -> list[str]:
    """Returns the known subscription service names, lowercased."""
    return [name.lower() for name in get_parser_config()["subscription_merchants"]]


def reset_config() -> None:
    """Clears cached config. Useful for testing."""
    global _CONFIG_CACHE
    _CONFIG_CACHE = {}
