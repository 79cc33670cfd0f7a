"""
Crown Data Models
Plain records shared by the codec, account client, session and betting layers
"""
import time
from enum import Enum
from typing import Dict, Any, Optional, List


class Scope(Enum):
    """Market window"""
    FULL = "full"
    HALF = "half"


class BetCategory(Enum):
    """Market category a bet intent refers to"""
    HANDICAP = "handicap"
    MONEYLINE = "moneyline"
    OVER_UNDER = "overUnder"


class Account:
    """Remote platform account as seen by the core"""

    def __init__(self, account_id: str, username: str, password: str,
                 passcode: Optional[str] = None,
                 device_type: str = "iPhone 14",
                 proxy_url: Optional[str] = None,
                 enabled: bool = True,
                 balance: Optional[float] = None,
                 credit: Optional[float] = None,
                 new_username: Optional[str] = None,
                 new_password: Optional[str] = None):
        """
        Initialize account

        Args:
            account_id: Stable local identifier
            username: Current login id on the platform
            password: Current login password
            passcode: Saved 4-digit passcode (if one was ever set)
            device_type: Device profile used to pick a User-Agent
            proxy_url: Optional forward proxy (http://, https://, socks5://)
            enabled: Whether the account may be used at all
            balance: Last known cash balance
            credit: Last known credit ceiling
            new_username: Login id to use when the platform forces a change
            new_password: Password to use when the platform forces a change
        """
        self.account_id = str(account_id)
        self.username = username
        self.password = password
        self.passcode = passcode
        self.device_type = device_type
        self.proxy_url = proxy_url
        self.enabled = enabled
        self.balance = balance
        self.credit = credit
        self.new_username = new_username
        self.new_password = new_password

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "username": self.username,
            "password": self.password,
            "passcode": self.passcode,
            "device_type": self.device_type,
            "proxy_url": self.proxy_url,
            "enabled": self.enabled,
            "balance": self.balance,
            "credit": self.credit,
            "new_username": self.new_username,
            "new_password": self.new_password,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Account":
        return cls(
            account_id=data["account_id"],
            username=data["username"],
            password=data["password"],
            passcode=data.get("passcode"),
            device_type=data.get("device_type", "iPhone 14"),
            proxy_url=data.get("proxy_url"),
            enabled=data.get("enabled", True),
            balance=data.get("balance"),
            credit=data.get("credit"),
            new_username=data.get("new_username"),
            new_password=data.get("new_password"),
        )

    def __repr__(self):
        return f"Account({self.account_id}, {self.username})"


class Session:
    """An established login for one account"""

    def __init__(self, account_id: str, external_user_id: str, cookie_header: str,
                 established_at: Optional[float] = None, ttl_seconds: int = 7200):
        self.account_id = str(account_id)
        self.external_user_id = external_user_id
        self.cookie_header = cookie_header
        self.established_at = established_at if established_at is not None else time.time()
        self.expires_at = self.established_at + ttl_seconds
        self.last_heartbeat: Optional[float] = None

    def is_expired(self, now: Optional[float] = None) -> bool:
        now = time.time() if now is None else now
        return now >= self.expires_at

    def to_snapshot(self) -> Dict[str, Any]:
        """Durable shape written to the session snapshot store"""
        return {
            "accountId": self.account_id,
            "externalUserId": self.external_user_id,
            "loginTimestampMs": int(self.established_at * 1000),
            "cookieHeaderString": self.cookie_header,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_id": self.account_id,
            "established_at": self.established_at,
            "expires_at": self.expires_at,
            "last_heartbeat": self.last_heartbeat,
        }


class WireVariant:
    """
    Family + side tokens the platform needs to reference one line.

    Moneyline variants carry home/away/draw rtypes, handicap variants home/away,
    over/under variants over/under.
    """

    SIDES = ("home", "away", "draw", "over", "under")

    def __init__(self, wtype: str, home_rtype: Optional[str] = None,
                 away_rtype: Optional[str] = None, draw_rtype: Optional[str] = None,
                 over_rtype: Optional[str] = None, under_rtype: Optional[str] = None):
        self.wtype = wtype
        self.home_rtype = home_rtype
        self.away_rtype = away_rtype
        self.draw_rtype = draw_rtype
        self.over_rtype = over_rtype
        self.under_rtype = under_rtype

    def rtype_for(self, side: str) -> Optional[str]:
        if side not in self.SIDES:
            raise ValueError(f"Unknown side: {side}")
        return getattr(self, f"{side}_rtype")

    def to_dict(self) -> Dict[str, Any]:
        data = {"wtype": self.wtype}
        for side in self.SIDES:
            rtype = getattr(self, f"{side}_rtype")
            if rtype:
                data[f"{side}Rtype"] = rtype
        return data

    def __eq__(self, other):
        return isinstance(other, WireVariant) and self.to_dict() == other.to_dict()

    def __hash__(self):
        return hash(tuple(sorted(self.to_dict().items())))

    def __repr__(self):
        return f"WireVariant({self.to_dict()})"


class MoneylineQuote:
    """Three-way price"""

    def __init__(self, home: Optional[float], draw: Optional[float], away: Optional[float],
                 wire_variant: Optional[WireVariant] = None, observed_at: float = 0.0):
        self.home = home
        self.draw = draw
        self.away = away
        self.wire_variant = wire_variant
        self.observed_at = observed_at

    def to_dict(self) -> Dict[str, Any]:
        data = {"home": self.home, "draw": self.draw, "away": self.away}
        if self.wire_variant:
            data["wireVariant"] = self.wire_variant.to_dict()
        return data


class MarketLine:
    """
    Base for two-sided lines keyed by (wtype, line).

    Subclasses name their two odds fields in ODDS_FIELDS.
    """

    ODDS_FIELDS = ("first_odds", "second_odds")

    def __init__(self, line: str, wire_variant: WireVariant, observed_at: float = 0.0):
        self.line = line
        self.wire_variant = wire_variant
        self.observed_at = observed_at

    @property
    def key(self):
        return (self.wire_variant.wtype, self.line)

    def has_odds(self) -> bool:
        return any(getattr(self, name) for name in self.ODDS_FIELDS)

    def copy(self):
        clone = self.__class__.__new__(self.__class__)
        clone.__dict__.update(self.__dict__)
        return clone


class HandicapLine(MarketLine):
    """Asian handicap line"""

    ODDS_FIELDS = ("home_odds", "away_odds")

    def __init__(self, line: str, home_odds: Optional[float], away_odds: Optional[float],
                 wire_variant: WireVariant, observed_at: float = 0.0):
        super().__init__(line, wire_variant, observed_at)
        self.home_odds = home_odds
        self.away_odds = away_odds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line": self.line,
            "homeOdds": self.home_odds,
            "awayOdds": self.away_odds,
            "wireVariant": self.wire_variant.to_dict(),
        }


class OverUnderLine(MarketLine):
    """Goal total line"""

    ODDS_FIELDS = ("over_odds", "under_odds")

    def __init__(self, line: str, over_odds: Optional[float], under_odds: Optional[float],
                 wire_variant: WireVariant, observed_at: float = 0.0):
        super().__init__(line, wire_variant, observed_at)
        self.over_odds = over_odds
        self.under_odds = under_odds

    def to_dict(self) -> Dict[str, Any]:
        return {
            "line": self.line,
            "overOdds": self.over_odds,
            "underOdds": self.under_odds,
            "wireVariant": self.wire_variant.to_dict(),
        }


class ScopeMarkets:
    """Markets of one scope (full match, first half or corners)"""

    def __init__(self, moneyline: Optional[MoneylineQuote] = None,
                 handicap_lines: Optional[List[HandicapLine]] = None,
                 over_under_lines: Optional[List[OverUnderLine]] = None):
        self.moneyline = moneyline
        self.handicap_lines = handicap_lines or []
        self.over_under_lines = over_under_lines or []

    def is_empty(self) -> bool:
        return self.moneyline is None and not self.handicap_lines and not self.over_under_lines

    def to_dict(self) -> Dict[str, Any]:
        return {
            "moneyline": self.moneyline.to_dict() if self.moneyline else None,
            "handicapLines": [line.to_dict() for line in self.handicap_lines],
            "overUnderLines": [line.to_dict() for line in self.over_under_lines],
        }


class MarketSnapshot:
    """One remote event with its normalized markets"""

    def __init__(self, match_id: str, league: str, home: str, away: str,
                 kickoff: Optional[str] = None, score: Optional[str] = None,
                 period: Optional[str] = None, clock: Optional[str] = None,
                 ecid: Optional[str] = None, league_id: Optional[str] = None,
                 running: bool = False, showtype: Optional[str] = None,
                 counts: Optional[Dict[str, int]] = None):
        self.match_id = match_id
        self.ecid = ecid
        self.league_id = league_id
        self.league = league
        self.home = home
        self.away = away
        self.kickoff = kickoff
        self.score = score
        self.period = period
        self.clock = clock
        self.running = running
        self.showtype = showtype
        self.counts = counts or {}
        self.scopes: Dict[str, ScopeMarkets] = {
            Scope.FULL.value: ScopeMarkets(),
            Scope.HALF.value: ScopeMarkets(),
        }
        self.corners = ScopeMarkets()

    @property
    def full(self) -> ScopeMarkets:
        return self.scopes[Scope.FULL.value]

    @property
    def half(self) -> ScopeMarkets:
        return self.scopes[Scope.HALF.value]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "matchId": self.match_id,
            "ecid": self.ecid,
            "leagueId": self.league_id,
            "league": self.league,
            "home": self.home,
            "away": self.away,
            "kickoff": self.kickoff,
            "score": self.score,
            "period": self.period,
            "clock": self.clock,
            "running": self.running,
            "showtype": self.showtype,
            "counts": dict(self.counts),
            "scopes": {name: markets.to_dict() for name, markets in self.scopes.items()},
            "corners": self.corners.to_dict(),
        }


class MoreMarkets:
    """Result of the supplemental "more markets" call for one event"""

    def __init__(self):
        self.handicap_lines: List[HandicapLine] = []
        self.over_under_lines: List[OverUnderLine] = []
        self.half_handicap_lines: List[HandicapLine] = []
        self.half_over_under_lines: List[OverUnderLine] = []
        self.half_moneyline: Optional[MoneylineQuote] = None
        self.corner_handicap_lines: List[HandicapLine] = []
        self.corner_over_under_lines: List[OverUnderLine] = []

    def is_empty(self) -> bool:
        return not (self.handicap_lines or self.over_under_lines or self.half_handicap_lines
                    or self.half_over_under_lines or self.half_moneyline
                    or self.corner_handicap_lines or self.corner_over_under_lines)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handicapLines": [line.to_dict() for line in self.handicap_lines],
            "overUnderLines": [line.to_dict() for line in self.over_under_lines],
            "halfHandicapLines": [line.to_dict() for line in self.half_handicap_lines],
            "halfOverUnderLines": [line.to_dict() for line in self.half_over_under_lines],
            "halfMoneyline": self.half_moneyline.to_dict() if self.half_moneyline else None,
            "cornerHandicapLines": [line.to_dict() for line in self.corner_handicap_lines],
            "cornerOverUnderLines": [line.to_dict() for line in self.corner_over_under_lines],
        }


class LoginResponse:
    """Decoded chk_login response"""

    def __init__(self, status: Optional[str] = None, msg: Optional[str] = None,
                 code_message: Optional[str] = None, username: Optional[str] = None,
                 uid: Optional[str] = None, mid: Optional[str] = None,
                 passwd_safe: Optional[str] = None, passcode_state: Optional[str] = None,
                 double_login: bool = False, raw_text: str = ""):
        self.status = status
        self.msg = msg
        self.code_message = code_message
        self.username = username
        self.uid = uid
        self.mid = mid
        self.passwd_safe = passwd_safe
        self.passcode_state = passcode_state
        self.double_login = double_login
        self.raw_text = raw_text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "msg": self.msg,
            "code_message": self.code_message,
            "username": self.username,
            "mid": self.mid,
            "passcode_state": self.passcode_state,
            "double_login": self.double_login,
        }


class OddsQuote:
    """A fresh price for one wire variant, read immediately before betting"""

    def __init__(self, variant: WireVariant, rtype: str, chose_team: str,
                 price: float, line_token: Optional[str] = None,
                 ratio: Optional[str] = None, min_stake: Optional[float] = None,
                 max_stake: Optional[float] = None,
                 raw_fields: Optional[Dict[str, str]] = None):
        self.variant = variant
        self.rtype = rtype
        self.chose_team = chose_team
        self.price = price
        self.line_token = line_token
        self.ratio = ratio
        self.min_stake = min_stake
        self.max_stake = max_stake
        self.raw_fields = raw_fields or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "variant": self.variant.to_dict(),
            "rtype": self.rtype,
            "choseTeam": self.chose_team,
            "price": self.price,
            "impliedLineToken": self.line_token,
            "minStake": self.min_stake,
            "maxStake": self.max_stake,
        }


class BetIntent:
    """Caller-level description of the wager to place"""

    def __init__(self, match_id: str, category: BetCategory, scope: Scope, side: str,
                 stake: float, requested_line: Optional[str] = None,
                 expected_price: Optional[float] = None, gtype: str = "ft",
                 live: bool = True, wtype: Optional[str] = None,
                 rtype: Optional[str] = None, chose_team: Optional[str] = None,
                 min_price: Optional[float] = None, allow_line_change: bool = True,
                 spread_match_id: Optional[str] = None):
        """
        Initialize bet intent

        Args:
            match_id: Event id (gid) on the platform
            category: Handicap, moneyline or over/under
            scope: Full match or first half
            side: home/away/draw for handicap and moneyline, over/under for totals
            stake: Amount to wager
            requested_line: Line the caller wants (e.g. "-0.5", "2.5 / 3")
            expected_price: Price the caller saw; informational only
            gtype: Sport code
            live: Whether the event is in play (picks the first family to try)
            wtype, rtype, chose_team: Explicit wire overrides
            min_price: Refuse quotes below this price
            allow_line_change: Proceed when the platform's line differs
            spread_match_id: Alternate gid carrying the handicap/total lines
        """
        self.match_id = str(match_id)
        self.category = category
        self.scope = scope
        self.side = side
        self.stake = stake
        self.requested_line = requested_line
        self.expected_price = expected_price
        self.gtype = gtype
        self.live = live
        self.wtype = wtype
        self.rtype = rtype
        self.chose_team = chose_team
        self.min_price = min_price
        self.allow_line_change = allow_line_change
        self.spread_match_id = str(spread_match_id) if spread_match_id else None

    @property
    def target_match_id(self) -> str:
        if self.spread_match_id and self.category != BetCategory.MONEYLINE:
            return self.spread_match_id
        return self.match_id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "spread_match_id": self.spread_match_id,
            "category": self.category.value,
            "scope": self.scope.value,
            "side": self.side,
            "stake": self.stake,
            "requested_line": self.requested_line,
            "expected_price": self.expected_price,
        }


class BetReceipt:
    """Terminal outcome of one bet resolution attempt"""

    def __init__(self, success: bool, ticket_id: Optional[str] = None,
                 confirmed_price: Optional[float] = None,
                 confirmed_line: Optional[str] = None,
                 error_kind=None, error_code: Optional[str] = None,
                 error_detail: Optional[str] = None,
                 variant: Optional[WireVariant] = None,
                 line_mismatch: bool = False, stake: Optional[float] = None,
                 balance_after: Optional[float] = None):
        self.success = success
        self.ticket_id = ticket_id
        self.confirmed_price = confirmed_price
        self.confirmed_line = confirmed_line
        self.error_kind = error_kind
        self.error_code = error_code
        self.error_detail = error_detail
        self.variant = variant
        self.line_mismatch = line_mismatch
        self.stake = stake
        self.balance_after = balance_after

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "ticketId": self.ticket_id,
            "confirmedPrice": self.confirmed_price,
            "confirmedLine": self.confirmed_line,
            "errorKind": self.error_kind.value if self.error_kind else None,
            "errorCode": self.error_code,
            "errorDetail": self.error_detail,
            "variant": self.variant.to_dict() if self.variant else None,
            "lineMismatch": self.line_mismatch,
            "stake": self.stake,
            "balanceAfter": self.balance_after,
        }


class Balance:
    """Cash balance and credit ceiling"""

    def __init__(self, balance: Optional[float], credit: Optional[float]):
        self.balance = balance
        self.credit = credit

    def to_dict(self) -> Dict[str, Any]:
        return {"balance": self.balance, "credit": self.credit}
