"""
Crown Account Client
One HTTP session (cookie jar + server-issued uid) bound to one platform account
"""
import logging
import re
import threading
import time
from collections import OrderedDict
from typing import Dict, Any, Optional, Tuple, List

import requests

from crown import codec
from crown.error_codes import CrownError, ErrorKind, NetworkError, SessionInvalidError, ProtocolError
from crown.market_parser import parse_game_list, parse_more_markets
from crown.models import Account, LoginResponse, OddsQuote, BetReceipt, Balance, WireVariant, MarketSnapshot, MoreMarkets

logger = logging.getLogger("CrownBot")

DEFAULT_VERSION = "2025-10-16-fix342_120"

_VERSION_PATTERN = re.compile(r"top\.ver\s*=\s*'([^']+)'")

_USER_AGENTS = {
    "iPhone 14": ("Mozilla/5.0 (iPhone; CPU iPhone OS 16_6 like Mac OS X) AppleWebKit/605.1.15 "
                  "(KHTML, like Gecko) Version/16.6 Mobile/15E148 Safari/604.1"),
    "iPhone 13": ("Mozilla/5.0 (iPhone; CPU iPhone OS 15_7 like Mac OS X) AppleWebKit/605.1.15 "
                  "(KHTML, like Gecko) Version/15.7 Mobile/15E148 Safari/604.1"),
    "Android": ("Mozilla/5.0 (Linux; Android 12; SM-G991B) AppleWebKit/537.36 "
                "(KHTML, like Gecko) Chrome/120.0.0.0 Mobile Safari/537.36"),
}
_DESKTOP_USER_AGENT = ("Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
                       "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36")


def user_agent_for(device_type: Optional[str]) -> str:
    return _USER_AGENTS.get(device_type or "", _DESKTOP_USER_AGENT)


def get_proxies(proxy_url: Optional[str]) -> Optional[Dict[str, str]]:
    """requests proxies mapping for an http(s)/socks proxy URL"""
    if not proxy_url:
        return None
    return {"http": proxy_url, "https": proxy_url}


class AccountClient:
    """HTTP/XML client for one account"""

    def __init__(self, account: Account, base_url: str,
                 version: str = DEFAULT_VERSION,
                 timeout: float = 30,
                 langx: str = codec.DEFAULT_LANGX,
                 http_session: Optional[requests.Session] = None):
        """
        Initialize account client

        Args:
            account: Account this client is bound to
            base_url: Platform site root (e.g. https://example-site.com)
            version: Protocol version used until the site reports a newer one
            timeout: Per-call timeout in seconds
            langx: Language code sent with every request
            http_session: Optional pre-built requests session (tests inject fakes)
        """
        self.account = account
        self.base_url = base_url.rstrip("/")
        self.version = version
        self.timeout = timeout
        self.langx = langx
        self.http = http_session or requests.Session()
        self.user_agent = user_agent_for(account.device_type)
        self.proxies = get_proxies(account.proxy_url)
        self.uid: Optional[str] = None
        self.cookies: "OrderedDict[str, str]" = OrderedDict()
        self._lock = threading.RLock()

    # ------------------------------------------------------------------
    # Cookies
    # ------------------------------------------------------------------

    def export_cookie_header(self) -> str:
        with self._lock:
            return "; ".join(f"{name}={value}" for name, value in self.cookies.items())

    def import_cookie_header(self, header: Optional[str]):
        with self._lock:
            self.cookies.clear()
            for part in (header or "").split(";"):
                name, sep, value = part.strip().partition("=")
                if sep and name:
                    self.cookies[name] = value

    def restore_session(self, uid: str, cookie_header: str):
        """Adopt a previously established session (rehydration)"""
        with self._lock:
            self.uid = uid
            self.import_cookie_header(cookie_header)

    def _merge_cookies(self, response):
        # Empty value deletes; "deleted" is a real value and is kept
        for name, value in response.cookies.items():
            if value == "":
                self.cookies.pop(name, None)
            else:
                self.cookies[name] = value

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {
            "User-Agent": self.user_agent,
            "Content-Type": "application/x-www-form-urlencoded",
            "Accept": "*/*",
            "Accept-Language": "zh-CN,zh;q=0.9",
            "Origin": self.base_url,
            "Referer": f"{self.base_url}/",
        }
        cookie_header = self.export_cookie_header()
        if cookie_header:
            headers["Cookie"] = cookie_header
        return headers

    def _send(self, method: str, url: str, **kwargs):
        try:
            response = self.http.request(method, url, headers=self._headers(), timeout=self.timeout,
                                         proxies=self.proxies, **kwargs)
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status in (401, 403):
                logger.error(f"[{self.account.account_id}] HTTP {status}: session rejected")
                raise SessionInvalidError(f"HTTP_{status}")
            if status >= 500:
                raise NetworkError(f"HTTP_{status}", f"Server error {status}")
            raise ProtocolError(f"HTTP_{status}", f"Unexpected HTTP status {status}")
        except requests.exceptions.Timeout as e:
            raise NetworkError("TIMEOUT", f"Request timed out: {e}")
        except requests.exceptions.ConnectionError as e:
            raise NetworkError("CONNECTION", f"Connection failed: {e}")
        except requests.exceptions.RequestException as e:
            raise NetworkError("REQUEST", f"Request failed: {e}")
        self._merge_cookies(response)
        return response

    def _post(self, params: Dict[str, str]) -> str:
        with self._lock:
            response = self._send("POST", f"{self.base_url}/transform.php",
                                  params={"ver": self.version}, data=params)
            return response.text or ""

    def _require_uid(self) -> str:
        if not self.uid:
            raise SessionInvalidError("NOT_LOGGED_IN", "No active session for this account")
        return self.uid

    # ------------------------------------------------------------------
    # Login and account maintenance
    # ------------------------------------------------------------------

    def refresh_version(self) -> str:
        """Read the protocol version from the site root; keep the old one on failure"""
        with self._lock:
            self.cookies["loadBB"] = "1"
            try:
                response = self._send("GET", f"{self.base_url}/")
                match = _VERSION_PATTERN.search(response.text or "")
                if match:
                    self.version = match.group(1)
                    logger.debug(f"Protocol version: {self.version}")
            except CrownError as e:
                logger.warning(f"Could not read protocol version, keeping {self.version}: {e}")
            if "loadBB" not in self.cookies:
                self.cookies["loadBB"] = "deleted"
                self.cookies.move_to_end("loadBB", last=False)
            return self.version

    def login(self, username: Optional[str] = None, password: Optional[str] = None) -> LoginResponse:
        """
        Submit credentials (chk_login)

        Returns the decoded response without judging it; the login state
        machine classifies the outcome. The uid is kept when the platform
        hands one out.
        """
        username = username or self.account.username
        password = password or self.account.password
        with self._lock:
            # A new login starts from an empty jar; the root page sets loadBB and the version
            self.uid = None
            self.cookies.clear()
            self.refresh_version()
            params = codec.encode_login(username, password, self.version, self.user_agent,
                                        codec.generate_blackbox(), self.langx)
            text = self._post(params)
            result = codec.decode_login(text)
            if result.uid:
                self.uid = result.uid
            logger.info(f"[{self.account.account_id}] Login response: status={result.status}, "
                        f"msg={result.msg}, uid={codec.mask_token(result.uid)}")
            return result

    def check_session(self) -> bool:
        """
        Probe whether the current uid is authenticated

        Returns:
            True when member data comes back, False when the body is empty

        Raises:
            SessionInvalidError: double login / expiry sentinel
        """
        uid = self._require_uid()
        text = self._post(codec.encode_member_data(uid, self.version, self.langx))
        codec.raise_for_sentinel(text)
        if not codec.looks_like_xml(text):
            return False
        fields = codec.response_fields(text)
        return bool(fields)

    def change_password(self, new_password: str, username: Optional[str] = None) -> Tuple[bool, Optional[str]]:
        uid = self._require_uid()
        text = self._post(codec.encode_change_password(uid, username or self.account.username, new_password,
                                                       self.version, self.langx))
        success, error = codec.decode_change_password(text)
        logger.info(f"[{self.account.account_id}] Password change: {'ok' if success else error}")
        return success, error

    def change_username(self, new_username: str) -> Tuple[bool, Optional[str]]:
        uid = self._require_uid()
        text = self._post(codec.encode_change_username(uid, self.account.username, new_username,
                                                       self.version, self.langx))
        success, error = codec.decode_change_username(text)
        logger.info(f"[{self.account.account_id}] Login id change: {'ok' if success else error}")
        return success, error

    def check_member_settings(self) -> Dict[str, str]:
        """Member settings document (memSet check), as a field map"""
        uid = self._require_uid()
        text = self._post(codec.encode_member_settings(uid, self.langx))
        codec.raise_for_sentinel(text)
        return codec.response_fields(text)

    def get_balance(self) -> Balance:
        uid = self._require_uid()
        text = self._post(codec.encode_member_data(uid, self.version, self.langx))
        return codec.decode_balance(text)

    def get_account_settings(self, gtype: str = "FT") -> Dict[str, str]:
        uid = self._require_uid()
        text = self._post(codec.encode_account_settings(uid, self.version, gtype, self.langx))
        codec.raise_for_sentinel(text)
        return codec.response_fields(text)

    def logout(self):
        """Forget the server-issued id and cookies"""
        with self._lock:
            self.uid = None
            self.cookies.clear()

    def close(self):
        self.http.close()

    # ------------------------------------------------------------------
    # Markets
    # ------------------------------------------------------------------

    def get_game_list(self, showtype: str = "live", gtype: str = "ft") -> List[MarketSnapshot]:
        """
        Fetch and parse the market list

        Raises:
            SessionInvalidError: double login / expiry sentinel
        """
        uid = self._require_uid()
        text = self._post(codec.encode_game_list(uid, self.version, showtype, gtype, self.langx))
        codec.raise_for_sentinel(text)
        if codec.detect_sentinel(text) == codec.SENTINEL_VARIABLE_STANDARD or not codec.looks_like_xml(text):
            logger.debug(f"[{self.account.account_id}] No {showtype} market data")
            return []
        return parse_game_list(text, showtype=showtype)

    def get_game_more(self, gid: str, ecid: Optional[str] = None, lid: Optional[str] = None,
                      showtype: str = "live", gtype: str = "ft") -> Optional[MoreMarkets]:
        """
        Fetch supplemental markets for one event

        Tries each parameter shape in order and parses the first XML answer.
        Returns None when no shape produced one.
        """
        uid = self._require_uid()
        attempts = codec.encode_game_more_attempts(uid, self.version, gid, ecid, lid,
                                                   showtype, gtype, self.langx)
        for index, params in enumerate(attempts, 1):
            text = self._post(params)
            codec.raise_for_sentinel(text)
            if "<serverresponse" in text:
                if index > 1:
                    logger.debug(f"More markets for {gid} answered on attempt {index}")
                return parse_more_markets(text)
        logger.debug(f"More markets for {gid}: no XML answer after {len(attempts)} attempts")
        return None

    # ------------------------------------------------------------------
    # Betting
    # ------------------------------------------------------------------

    def get_latest_odds(self, gid: str, gtype: str, variant: WireVariant, rtype: str,
                        chose_team: str, line: Optional[str] = None) -> OddsQuote:
        """
        Fresh quote for one wire variant (never cached)

        Raises:
            CrownError: classified platform error (market closed, session invalid, ...)
        """
        uid = self._require_uid()
        params = codec.encode_odds_quote(uid, self.version, gid, gtype, variant.wtype,
                                         chose_team, line, self.langx)
        text = self._post(params)
        try:
            quote = codec.decode_odds_quote(text, variant, rtype, chose_team)
        except SessionInvalidError:
            self.uid = None
            raise
        logger.debug(f"Quote {gid} {variant.wtype}/{rtype}: {quote.price} @ {quote.line_token}")
        return quote

    def place_bet(self, gid: str, gtype: str, quote: OddsQuote, stake: float,
                  min_stake: float = codec.MIN_STAKE) -> BetReceipt:
        """
        Submit a wager priced from the given quote

        Raises:
            CrownError: VALIDATION when the stake is below the platform minimum
            SessionInvalidError: session sentinels in the response
        """
        uid = self._require_uid()
        if stake < min_stake:
            raise CrownError(ErrorKind.VALIDATION, "STAKE_OUT_OF_RANGE",
                             f"Stake {stake} below the minimum {min_stake}")
        params = codec.encode_bet(uid, self.version, gid, gtype, quote, stake, self.langx,
                                  now_ms=int(time.time() * 1000))
        logger.info(f"[{self.account.account_id}] Submitting bet: gid={gid} {quote.variant.wtype}/"
                    f"{quote.rtype} @ {params['ioratio']} con={params['con']} stake={params['golds']}")
        text = self._post(params)
        return codec.decode_bet(text, quote, stake)

    def status(self) -> Dict[str, Any]:
        return {
            "account_id": self.account.account_id,
            "uid": codec.mask_token(self.uid),
            "version": self.version,
        }
