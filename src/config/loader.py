"""
Configuration loader module
Loads and validates configuration from JSON file and environment variables
"""
import json
import os
from pathlib import Path
from typing import Dict, Any

from dotenv import load_dotenv

# environment variable -> (section, key)
ENV_OVERRIDES = {
    "CROWN_BASE_URL": ("crown", "base_url"),
    "CROWN_ACCOUNTS_FILE": ("crown", "accounts_file"),
    "CROWN_PROXY_URL": ("crown", "default_proxy_url"),
    "CROWN_FETCH_ACCOUNT_ID": ("fetch", "account_id"),
    "REDIS_URL": ("cache", "redis_url"),
}


def load_config(config_path: str = "config/config.json") -> Dict[str, Any]:
    """
    Load configuration from JSON file and environment variables

    Args:
        config_path: Path to configuration JSON file

    Returns:
        Dictionary containing merged configuration

    Raises:
        FileNotFoundError: If config file doesn't exist
        json.JSONDecodeError: If config file is invalid JSON
    """
    # Load environment variables from .env file if it exists
    env_path = Path(".env")
    if env_path.exists():
        load_dotenv(env_path)

    config_file = Path(config_path)
    if not config_file.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}\n"
            f"Copy config/config.example.json to {config_path} and fill in the site URL"
        )

    with open(config_file, 'r', encoding='utf-8') as f:
        config = json.load(f)

    for env_name, (section, key) in ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            config.setdefault(section, {})[key] = value

    return config


def validate_config(config: Dict[str, Any]) -> bool:
    """
    Validate configuration structure and required fields

    Args:
        config: Configuration dictionary

    Returns:
        True if valid, raises ValueError if invalid
    """
    required_sections = ["crown", "session", "logging"]
    for section in required_sections:
        if section not in config:
            raise ValueError(f"Missing required configuration section: {section}")

    crown = config["crown"]
    base_url = crown.get("base_url")
    if not base_url or not str(base_url).startswith(("http://", "https://")):
        raise ValueError(
            "Missing or invalid crown.base_url\n"
            "Set it in config/config.json or the CROWN_BASE_URL environment variable"
        )

    ttl = config["session"].get("ttl_seconds", 7200)
    if not isinstance(ttl, (int, float)) or ttl <= 0:
        raise ValueError(f"session.ttl_seconds must be a positive number, got {ttl!r}")

    fetch = config.get("fetch", {})
    if fetch.get("enabled", False) and not fetch.get("account_id"):
        raise ValueError("fetch.enabled is set but fetch.account_id is missing")

    return True
