"""
Service Factory Module
Builds and wires the core services from configuration
"""
import logging
from typing import Optional

from auth.keep_alive import SessionHeartbeat
from auth.login_flow import LoginStateMachine
from cache.market_cache import MarketCache
from crown.client import DEFAULT_VERSION, AccountClient
from crown.models import Account
from services.bet_pipeline import BetPipeline
from services.core_service import CoreService
from services.fetch_loop import DEFAULT_INTERVALS, FetchLoop
from services.retry_policy import RetryPolicy
from session.registry import SESSION_TTL_SECONDS, SessionRegistry
from session.snapshot_store import SessionSnapshotStore
from storage.account_store import AccountStore
from tracking.bet_ledger import BetLedger

logger = logging.getLogger("CrownBot")


class ServiceFactory:
    """Factory to create services"""

    def __init__(self, config: dict):
        """
        Initialize service factory

        Args:
            config: Configuration dictionary
        """
        self.config = config
        self.crown_config = config.get("crown", {})
        self.session_config = config.get("session", {})
        self.betting_config = config.get("betting", {})
        self.cache_config = config.get("cache", {})
        self.fetch_config = config.get("fetch", {})
        self.browser_config = config.get("browser", {})

    def create_account_store(self) -> AccountStore:
        return AccountStore(self.crown_config.get("accounts_file", "config/accounts.json"))

    def create_client(self, account: Account) -> AccountClient:
        """One AccountClient per account; the registry calls this lazily"""
        if not account.proxy_url and self.crown_config.get("default_proxy_url"):
            account.proxy_url = self.crown_config["default_proxy_url"]
        return AccountClient(
            account,
            base_url=self.crown_config["base_url"],
            version=self.crown_config.get("version", DEFAULT_VERSION),
            timeout=self.crown_config.get("timeout_seconds", 30),
            langx=self.crown_config.get("langx", "zh-cn"),
        )

    def create_registry(self) -> SessionRegistry:
        snapshot_file = self.session_config.get("snapshot_file", "data/sessions.json")
        return SessionRegistry(
            client_factory=self.create_client,
            snapshot_store=SessionSnapshotStore(snapshot_file) if snapshot_file else None,
            ttl_seconds=self.session_config.get("ttl_seconds", SESSION_TTL_SECONDS),
        )

    def create_driver_factory(self):
        """Browser driver factory, or None when browser sub-flows are disabled"""
        if not self.browser_config.get("enabled", False):
            return None
        # playwright is an optional extra; only imported when the browser is enabled
        from auth.browser_driver import make_driver_factory
        return make_driver_factory(
            self.crown_config["base_url"],
            headless=self.browser_config.get("headless", True),
            timeout_ms=self.browser_config.get("timeout_ms", 15000),
        )

    def create_login_flow(self, registry: SessionRegistry, account_store: AccountStore) -> LoginStateMachine:
        return LoginStateMachine(
            registry,
            account_store,
            driver_factory=self.create_driver_factory(),
            outcome_timeout=self.session_config.get("login_timeout_seconds", 18),
            poll_interval=self.session_config.get("login_poll_interval", 1.0),
        )

    def create_market_cache(self) -> Optional[MarketCache]:
        redis_url = self.cache_config.get("redis_url")
        if not redis_url:
            logger.info("Market cache disabled (no redis_url)")
            return None
        return MarketCache(
            redis_url=redis_url,
            live_ttl=self.cache_config.get("live_ttl_seconds", 10),
            prematch_ttl=self.cache_config.get("prematch_ttl_seconds", 60),
        )

    def create_bet_pipeline(self, registry: SessionRegistry) -> BetPipeline:
        return BetPipeline(
            registry,
            retry_policy=RetryPolicy(self.betting_config.get("market_closed_retry_delay", 1.0)),
            min_stake=self.betting_config.get("min_stake", 50),
            line_tolerance=self.betting_config.get("line_tolerance", 0.01),
        )

    def create_fetch_loop(self, account_store, registry, login_flow) -> Optional[FetchLoop]:
        if not self.fetch_config.get("enabled", False):
            return None
        return FetchLoop(
            self.fetch_config["account_id"],
            account_store,
            registry,
            login_flow,
            market_cache=self.create_market_cache(),
            intervals=self.fetch_config.get("intervals", DEFAULT_INTERVALS),
            gtype=self.fetch_config.get("gtype", "ft"),
            max_enrich=self.fetch_config.get("max_enrich", 50),
            enrich_throttle=self.fetch_config.get("enrich_throttle_seconds", 5.0),
            max_login_failures=self.fetch_config.get("max_login_failures", 2),
            export_path=self.fetch_config.get("export_path"),
        )

    def create_heartbeat(self, registry, account_store) -> SessionHeartbeat:
        return SessionHeartbeat(registry, account_store,
                                interval=self.session_config.get("heartbeat_interval_seconds", 300))

    def create_bet_ledger(self) -> Optional[BetLedger]:
        path = self.betting_config.get("ledger_file")
        return BetLedger(path) if path else None

    def create_core(self):
        """
        Build the whole core

        Returns:
            Tuple of (CoreService, SessionHeartbeat)
        """
        account_store = self.create_account_store()
        registry = self.create_registry()
        restored = registry.rehydrate(account_store.as_dict())
        if restored:
            logger.info(f"✓ Rehydrated {restored} session(s)")
        login_flow = self.create_login_flow(registry, account_store)
        core = CoreService(
            account_store,
            registry,
            login_flow,
            self.create_bet_pipeline(registry),
            fetch_loop=self.create_fetch_loop(account_store, registry, login_flow),
            bet_ledger=self.create_bet_ledger(),
        )
        return core, self.create_heartbeat(registry, account_store)
