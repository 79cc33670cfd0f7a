"""
Crown Core - Main Entry Point
Rehydrates sessions, logs in enabled accounts and runs the fetch loop and heartbeat
"""
import sys
import time
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent))

from config.loader import load_config, validate_config
from core.logging_setup import setup_logging
from core.service_factory import ServiceFactory
import logging

logger = logging.getLogger("CrownBot")


def login_enabled_accounts(core) -> int:
    """Log in every enabled account that is not online yet; returns the online count"""
    online = 0
    for account in core.account_store.list_accounts(enabled_only=True):
        result = core.ensure_session(account.account_id)
        if result.success:
            online += 1
            print(f"  ✓ {account.account_id} ({account.username}) online")
        else:
            print(f"  ✗ {account.account_id} ({account.username}): {result.state.value} {result.reason or ''}")
    return online


def main():
    heartbeat = None
    fetch_loop = None
    try:
        config = load_config()
        validate_config(config)
        setup_logging(config["logging"])

        print("=" * 60)
        print("Crown Core")
        print("=" * 60)

        core, heartbeat = ServiceFactory(config).create_core()
        fetch_loop = core.fetch_loop

        print("\n[1/3] Logging in accounts...")
        online = login_enabled_accounts(core)
        print(f"  {online} account(s) online")

        print("\n[2/3] Starting heartbeat...")
        heartbeat.start()

        print("\n[3/3] Starting fetch loop...")
        if fetch_loop is not None:
            fetch_loop.start()
        else:
            print("  Fetch loop disabled in config")

        print("\n✓ Running. Press Ctrl+C to stop")
        while True:
            time.sleep(1)

    except KeyboardInterrupt:
        print("\n\n⚠ Stopped by user (Ctrl+C)")
        logger.info("Stopped by user (KeyboardInterrupt)")
        return 0
    except FileNotFoundError as e:
        print(f"\n✗ Configuration error: {e}")
        return 1
    except ValueError as e:
        print(f"\n✗ Configuration validation error: {e}")
        return 1
    finally:
        if fetch_loop is not None:
            fetch_loop.stop()
        if heartbeat is not None:
            heartbeat.stop()


if __name__ == "__main__":
    exit_code = main()
    sys.exit(exit_code)
