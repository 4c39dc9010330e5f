#!/usr/bin/env python3
"""
Configuration access for the Herald web application.
"""

import os
from functools import lru_cache

from core.config_loader import AppConfig, load_config


@lru_cache()
def get_config() -> AppConfig:
    """
    Get application configuration with caching.

    Loads config.yaml (``HERALD_CONFIG`` overrides the path) and applies
    environment variable overrides. Result is cached for the process.
    """
    return load_config(os.environ.get("HERALD_CONFIG", "config.yaml"))
