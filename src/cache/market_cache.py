"""
Market Cache
Redis-backed short-TTL cache of supplemental ("more markets") data per event
"""
import json
import logging
from typing import Optional
from urllib.parse import urlsplit, urlunsplit

import redis

from crown.market_parser import more_markets_from_cache
from crown.models import MoreMarkets

logger = logging.getLogger("CrownBot")


def _mask_url(url: str) -> str:
    parts = urlsplit(url)
    if "@" not in parts.netloc:
        return url
    creds, host = parts.netloc.split("@", 1)
    user = creds.split(":", 1)[0]
    return urlunsplit((parts.scheme, f"{user}:***@{host}", parts.path, parts.query, parts.fragment))


class MarketCache:
    """
    Cache keyed by (match id, showtype, sport).

    Live events expire sooner than pre-match ones. Any Redis failure is
    logged and treated as a miss; a cache problem never stops the fetch loop.
    """

    def __init__(self, redis_url: Optional[str] = None, client=None,
                 live_ttl: int = 10, prematch_ttl: int = 60, prefix: str = "crown:more"):
        """
        Initialize market cache

        Args:
            redis_url: redis:// URL (ignored when client is given)
            client: Ready Redis client (tests pass a fake)
            live_ttl: Seconds to keep live-event entries
            prematch_ttl: Seconds to keep today/early entries
            prefix: Key prefix
        """
        self.live_ttl = live_ttl
        self.prematch_ttl = prematch_ttl
        self.prefix = prefix
        self.hits = 0
        self.misses = 0
        self.client = client
        if self.client is None and redis_url:
            try:
                self.client = redis.from_url(redis_url, encoding="utf-8", decode_responses=True,
                                             socket_timeout=3, socket_connect_timeout=3)
                self.client.ping()
                logger.info(f"✓ Market cache connected ({_mask_url(redis_url)})")
            except redis.exceptions.RedisError as e:
                logger.warning(f"✗ Market cache unavailable ({_mask_url(redis_url)}): {e}")
                self.client = None

    @property
    def enabled(self) -> bool:
        return self.client is not None

    def key(self, match_id: str, showtype: str, gtype: str = "ft") -> str:
        return f"{self.prefix}:{gtype.lower()}:{showtype.lower()}:{match_id}"

    def ttl_for(self, showtype: str) -> int:
        return self.live_ttl if showtype.lower() == "live" else self.prematch_ttl

    def get(self, match_id: str, showtype: str, gtype: str = "ft") -> Optional[MoreMarkets]:
        if not self.client:
            return None
        key = self.key(match_id, showtype, gtype)
        try:
            raw = self.client.get(key)
        except redis.exceptions.RedisError as e:
            logger.warning(f"Market cache read failed for {key}: {e}")
            self.misses += 1
            return None
        if not raw:
            self.misses += 1
            return None
        try:
            payload = json.loads(raw)
            more = more_markets_from_cache(payload["markets"], float(payload.get("observedAt", 0.0)))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry {key}: {e}")
            self.misses += 1
            return None
        self.hits += 1
        return more

    def set(self, match_id: str, showtype: str, more: MoreMarkets, gtype: str = "ft",
            observed_at: float = 0.0) -> bool:
        if not self.client:
            return False
        key = self.key(match_id, showtype, gtype)
        try:
            payload = {"observedAt": observed_at, "markets": more.to_dict()}
            self.client.setex(key, self.ttl_for(showtype), json.dumps(payload, ensure_ascii=False))
            return True
        except redis.exceptions.RedisError as e:
            logger.warning(f"Market cache write failed for {key}: {e}")
            return False

    def stats(self) -> dict:
        return {"enabled": self.enabled, "hits": self.hits, "misses": self.misses}
