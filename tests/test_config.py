"""
Configuration loading/validation, logging setup and service wiring
"""
import json
import logging

import pytest

from config.loader import load_config, validate_config
from core.logging_setup import mask_secret, setup_logging
from core.service_factory import ServiceFactory
from services.core_service import CoreService


def _config(tmp_path, **sections):
    config = {
        "crown": {"base_url": "https://crown.test", "accounts_file": str(tmp_path / "accounts.json")},
        "session": {"ttl_seconds": 7200, "snapshot_file": str(tmp_path / "sessions.json")},
        "logging": {"level": "INFO", "file_path": str(tmp_path / "logs" / "crown.log"), "console_output": False},
    }
    config.update(sections)
    return config


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("CROWN_BASE_URL", "CROWN_ACCOUNTS_FILE", "CROWN_PROXY_URL",
                 "CROWN_FETCH_ACCOUNT_ID", "REDIS_URL"):
        monkeypatch.delenv(name, raising=False)


class TestLoader:
    def test_environment_overrides(self, tmp_path, monkeypatch):
        path = tmp_path / "config.json"
        path.write_text(json.dumps(_config(tmp_path)), encoding="utf-8")
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CROWN_BASE_URL", "https://other.test")
        monkeypatch.setenv("REDIS_URL", "redis://cache:6379/1")
        config = load_config(str(path))
        assert config["crown"]["base_url"] == "https://other.test"
        assert config["cache"]["redis_url"] == "redis://cache:6379/1"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "missing.json"))

    def test_validation(self, tmp_path):
        assert validate_config(_config(tmp_path))
        with pytest.raises(ValueError):
            validate_config(_config(tmp_path, crown={"base_url": "crown.test"}))
        with pytest.raises(ValueError):
            validate_config(_config(tmp_path, session={"ttl_seconds": 0}))
        with pytest.raises(ValueError):
            validate_config(_config(tmp_path, fetch={"enabled": True}))
        broken = _config(tmp_path)
        del broken["logging"]
        with pytest.raises(ValueError):
            validate_config(broken)


def test_logging_writes_to_file(tmp_path):
    log_file = tmp_path / "logs" / "crown.log"
    logger = setup_logging({"level": "DEBUG", "file_path": str(log_file), "console_output": False})
    logger.debug("hello from the test")
    for handler in logger.handlers:
        handler.flush()
    assert logger is logging.getLogger("CrownBot")
    assert "hello from the test" in log_file.read_text(encoding="utf-8")


def test_secrets_are_masked_in_the_log(tmp_path):
    log_file = tmp_path / "crown.log"
    logger = setup_logging({"level": "INFO", "file_path": str(log_file), "console_output": False})
    logger.info("login form: username=olduser&password=oldpass1&uid=abcdef123456")
    logger.info("%s", {"passcode": "4826"})
    for handler in logger.handlers:
        handler.flush()
    text = log_file.read_text(encoding="utf-8")
    assert "username=olduser" in text
    assert "oldpass1" not in text and "password=ol***s1" in text
    assert "abcdef123456" not in text
    assert "4826" not in text


def test_masking_can_be_switched_off(tmp_path):
    assert mask_secret("4826") == "***"
    logger = setup_logging({"level": "INFO", "file_path": str(tmp_path / "crown.log"), "console_output": False,
                            "mask_secrets": False})
    assert logger.filters == []


def test_factory_builds_the_core(tmp_path, accounts_file):
    config = _config(tmp_path, betting={"ledger_file": str(tmp_path / "bets.xlsx")},
                     fetch={"enabled": True, "account_id": "1"})
    config["crown"]["accounts_file"] = str(accounts_file)
    core, heartbeat = ServiceFactory(config).create_core()
    assert isinstance(core, CoreService)
    assert core.fetch_loop.account_id == "1"
    assert core.fetch_loop.market_cache is None
    assert core.login_flow.driver_factory is None
    assert core.bet_ledger is not None
    assert heartbeat.interval == 300
    assert core.online_accounts() == []
