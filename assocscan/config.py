# File: assocscan/config.py
# Location: assocscan/assocscan/config.py

"""
Configuration management module.

This module handles loading configuration from a JSON file.
All default values reside in config.json, which is included in
the installed package directory.

If no config_file is provided, this module attempts to load the default
config.json from the package installation directory. A user config file
only needs the keys it overrides; missing keys fall back to the packaged
defaults.
"""

import json
import os
from typing import Any, Dict, Optional

DEFAULT_CONFIG_FILE = os.path.join(os.path.dirname(__file__), "config.json")


def _read_json(config_file: str) -> Dict[str, Any]:
    if not os.path.exists(config_file):
        raise FileNotFoundError(f"Configuration file '{config_file}' not found.")

    with open(config_file, "r", encoding="utf-8") as f:
        try:
            config = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Error parsing JSON configuration: {e}")

    if not isinstance(config, dict):
        raise ValueError(f"Configuration file '{config_file}' must contain a JSON object.")
    return config


def load_config(config_file: Optional[str] = None) -> Dict[str, Any]:
    """
    Load configuration from a JSON file.

    If no config_file is provided, the function loads the 'config.json'
    from the installed package directory. Otherwise the given file is
    layered on top of the packaged defaults.

    Parameters
    ----------
    config_file : str, optional
        Path to a configuration file in JSON format. If None, defaults to
        the package-installed 'config.json'.

    Returns
    -------
    dict
        Configuration dictionary loaded from the JSON file(s).

    Raises
    ------
    FileNotFoundError
        If the specified configuration file does not exist.
    ValueError
        If there is an error parsing the JSON configuration file.
    """
    config = _read_json(DEFAULT_CONFIG_FILE)
    if config_file:
        config.update(_read_json(config_file))
    return config
