"""
Fetch Loop Service
Polls the market list for one account, enriches it and publishes the latest snapshot
"""
import logging
import threading
import time
from typing import Any, Callable, Dict, Iterable, List, Optional

from cache.market_cache import MarketCache
from crown.error_codes import CrownError, SessionInvalidError
from crown.market_parser import merge_more_markets
from crown.models import MarketSnapshot
from session.registry import SessionRegistry
from utils.file_utils import atomic_write_json

logger = logging.getLogger("CrownBot")

DEFAULT_INTERVALS = {"live": 2, "today": 10, "early": 3600}


class PublishedSnapshot:
    """Immutable view handed to readers; replaced wholesale on every publish"""

    def __init__(self, matches: List[MarketSnapshot], generated_at: float,
                 breakdown: Dict[str, int]):
        self.matches = tuple(matches)
        self.generated_at = generated_at
        self.breakdown = dict(breakdown)

    def filtered(self, filters: Optional[Dict[str, Any]] = None) -> List[MarketSnapshot]:
        """
        Matches passing the filters

        Supported keys: showtype, league (substring), match_ids, running
        """
        filters = filters or {}
        result = []
        match_ids = set(str(m) for m in filters.get("match_ids") or [])
        for match in self.matches:
            if filters.get("showtype") and match.showtype != filters["showtype"]:
                continue
            if filters.get("league") and filters["league"] not in (match.league or ""):
                continue
            if match_ids and match.match_id not in match_ids:
                continue
            if "running" in filters and filters["running"] is not None and match.running != filters["running"]:
                continue
            result.append(match)
        return result

    def to_dict(self, filters: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        matches = self.filtered(filters)
        return {
            "generatedAt": self.generated_at,
            "breakdown": self.breakdown,
            "matchCount": len(matches),
            "matches": [m.to_dict() for m in matches],
        }


def select_enrichment_candidates(matches: Iterable[MarketSnapshot], showtype: str,
                                 limit: int = 50) -> List[MarketSnapshot]:
    """
    Events worth a "more markets" call

    today/early: every event. live: events advertising more handicap or
    over/under lines than were parsed. Running events first, then by
    advertised line count, capped at limit.
    """
    if showtype == "live":
        chosen = [m for m in matches
                  if m.counts.get("handicap", 0) > len(m.full.handicap_lines)
                  or m.counts.get("overUnder", 0) > len(m.full.over_under_lines)]
    else:
        chosen = list(matches)
    chosen.sort(key=lambda m: (not m.running,
                               -(m.counts.get("handicap", 0) + m.counts.get("overUnder", 0))))
    return chosen[:limit]


class FetchLoop:
    """
    Market poller bound to one designated account.

    Each showtype ticks on its own interval. A tick builds fresh snapshot
    objects, merges supplemental markets into them and only then swaps them
    in, so readers never see a half-merged snapshot.
    """

    def __init__(self, account_id: str, account_store, registry: SessionRegistry, login_flow,
                 market_cache: Optional[MarketCache] = None,
                 intervals: Optional[Dict[str, int]] = None,
                 gtype: str = "ft",
                 max_enrich: int = 50,
                 enrich_throttle: float = 5.0,
                 max_login_failures: int = 2,
                 export_path: Optional[str] = None,
                 clock: Callable[[], float] = time.time):
        """
        Initialize fetch loop

        Args:
            account_id: Account whose session the loop polls with
            account_store: Account store (to look the account up for login)
            registry: Session registry
            login_flow: LoginStateMachine used when the account is offline
            market_cache: Cache for supplemental markets (None disables caching)
            intervals: showtype -> seconds between ticks
            gtype: Sport code
            max_enrich: Cap on supplemental fetches per tick
            enrich_throttle: Minimum seconds between network enrichment passes per showtype
            max_login_failures: Consecutive failed logins before the loop stops trying
            export_path: Optional JSON file the latest snapshot is written to
            clock: Time source (seconds)
        """
        self.account_id = str(account_id)
        self.account_store = account_store
        self.registry = registry
        self.login_flow = login_flow
        self.market_cache = market_cache
        self.intervals = dict(intervals or DEFAULT_INTERVALS)
        self.gtype = gtype
        self.max_enrich = max_enrich
        self.enrich_throttle = enrich_throttle
        self.max_login_failures = max_login_failures
        self.export_path = export_path
        self.clock = clock

        self.running = False
        self.thread: Optional[threading.Thread] = None
        self._wake = threading.Event()
        self._lock = threading.Lock()
        self._by_showtype: Dict[str, List[MarketSnapshot]] = {}
        self._published = PublishedSnapshot([], 0.0, {})
        self._next_run: Dict[str, float] = {}
        self._last_enriched: Dict[str, float] = {}
        self.login_failures = 0
        self.tick_count = 0
        self.last_error: Optional[str] = None

    # ------------------------------------------------------------------
    # Thread control
    # ------------------------------------------------------------------

    def start(self):
        """Start fetch thread"""
        if self.running:
            logger.warning("Fetch loop already running")
            return
        self.running = True
        self._wake.clear()
        self.thread = threading.Thread(target=self._loop, daemon=True, name="fetch-loop")
        self.thread.start()
        logger.info(f"Fetch loop started for account {self.account_id} ({', '.join(self.intervals)})")

    def stop(self):
        """Stop fetch thread"""
        self.running = False
        self._wake.set()
        if self.thread:
            self.thread.join(timeout=10)
        logger.info("Fetch loop stopped")

    def _loop(self):
        while self.running:
            now = self.clock()
            for showtype, interval in self.intervals.items():
                if now < self._next_run.get(showtype, 0):
                    continue
                self._next_run[showtype] = now + interval
                try:
                    self.tick(showtype)
                except Exception as e:
                    self.last_error = str(e)
                    logger.error(f"Error in fetch loop ({showtype}): {str(e)}")
            self._wake.wait(1.0)

    # ------------------------------------------------------------------
    # Session
    # ------------------------------------------------------------------

    def reset_login_failures(self):
        self.login_failures = 0

    def ensure_session(self):
        """Client of the fetch account, logging in when offline; None if unavailable"""
        if self.registry.is_online(self.account_id):
            return self.registry.acquire(self.account_id)
        if self.login_failures >= self.max_login_failures:
            logger.debug(f"Fetch account {self.account_id} login paused after "
                         f"{self.login_failures} failures")
            return None
        account = self.account_store.get(self.account_id)
        if account is None or not account.enabled:
            logger.error(f"Fetch account {self.account_id} missing or disabled")
            return None
        result = self.login_flow.ensure(account)
        if not result.success:
            self.login_failures += 1
            logger.error(f"✗ Fetch account login failed ({self.login_failures}/"
                         f"{self.max_login_failures}): {result.reason}")
            return None
        self.login_failures = 0
        return self.registry.acquire(self.account_id)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------

    def tick(self, showtype: str = "live") -> Optional[PublishedSnapshot]:
        """
        One fetch/enrich/publish pass for a showtype

        Returns:
            The newly published snapshot, or None when nothing was fetched
        """
        client = self.ensure_session()
        if client is None:
            return None
        try:
            matches = client.get_game_list(showtype, self.gtype)
            self._enrich(client, matches, showtype)
        except SessionInvalidError as e:
            # Re-login happens on the next tick through ensure_session
            self.registry.invalidate(self.account_id, f"fetch: {e.code}")
            self.last_error = str(e)
            return None
        except CrownError as e:
            self.last_error = str(e)
            logger.warning(f"Fetch {showtype} failed: {e}")
            return None

        self.tick_count += 1
        published = self._publish(showtype, matches)
        logger.debug(f"Fetched {len(matches)} {showtype} events")
        return published

    def _enrich(self, client, matches: List[MarketSnapshot], showtype: str):
        now = self.clock()
        # Cache hits are always served; network round trips are throttled per showtype
        allow_network = now - self._last_enriched.get(showtype, float("-inf")) >= self.enrich_throttle
        if allow_network:
            self._last_enriched[showtype] = now

        for match in select_enrichment_candidates(matches, showtype, self.max_enrich):
            more = None
            if self.market_cache is not None:
                more = self.market_cache.get(match.match_id, showtype, self.gtype)
            if more is None and allow_network:
                try:
                    more = client.get_game_more(match.match_id, match.ecid, match.league_id,
                                                showtype, self.gtype)
                except SessionInvalidError:
                    raise
                except CrownError as e:
                    logger.debug(f"More markets for {match.match_id} failed: {e}")
                    continue
                if more is not None and self.market_cache is not None:
                    self.market_cache.set(match.match_id, showtype, more, self.gtype, observed_at=now)
            merge_more_markets(match, more)

    def _publish(self, showtype: str, matches: List[MarketSnapshot]) -> PublishedSnapshot:
        # Build a fresh snapshot and swap the reference; readers never see a half-merged one
        with self._lock:
            self._by_showtype[showtype] = matches
            union = []
            breakdown = {}
            for name, items in self._by_showtype.items():
                union.extend(items)
                breakdown[name] = len(items)
            self._published = PublishedSnapshot(union, self.clock(), breakdown)
            published = self._published
        if self.export_path:
            try:
                atomic_write_json(self.export_path, published.to_dict())
            except OSError as e:
                logger.warning(f"Snapshot export failed: {e}")
        return published

    # ------------------------------------------------------------------
    # Readers
    # ------------------------------------------------------------------

    def latest(self) -> PublishedSnapshot:
        with self._lock:
            return self._published

    def stats(self) -> Dict[str, Any]:
        published = self.latest()
        return {
            "account_id": self.account_id,
            "running": self.running,
            "ticks": self.tick_count,
            "login_failures": self.login_failures,
            "last_error": self.last_error,
            "generated_at": published.generated_at,
            "breakdown": published.breakdown,
            "cache": self.market_cache.stats() if self.market_cache else None,
        }
