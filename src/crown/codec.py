"""
Crown Protocol Codec
Encodes outbound form parameters and decodes XML/text responses into typed records
"""
import base64
import random
import re
import string
import time
import xml.etree.ElementTree as ET
from typing import Dict, Any, Optional, List, Tuple

from crown.error_codes import CrownError, SessionInvalidError, ProtocolError
from crown.models import LoginResponse, OddsQuote, BetReceipt, Balance, WireVariant

DEFAULT_LANGX = "zh-cn"
MIN_STAKE = 50

LOGIN_SUCCESS_CODES = ("100", "109")
LOGIN_BAD_CREDENTIALS_CODE = "105"
LOGIN_CHANGE_REQUIRED_CODE = "106"
QUOTE_SUCCESS_CODE = "501"
BET_SUCCESS_CODE = "560"

# Plain-text responses that must be recognised before any XML parsing
SENTINEL_DOUBLE_LOGIN = "DOUBLE_LOGIN"
SENTINEL_SESSION_EXPIRED = "SESSION_EXPIRED"
SENTINEL_VARIABLE_STANDARD = "VARIABLE_STANDARD"

_SENTINELS = (
    ("doubleLogin", SENTINEL_DOUBLE_LOGIN),
    ("CheckEMNU", SENTINEL_SESSION_EXPIRED),
    ("VariableStandard", SENTINEL_VARIABLE_STANDARD),
    ("Variable Standard", SENTINEL_VARIABLE_STANDARD),
)

# Values of the passcode status field that mean the platform wants a passcode
PASSCODE_FIELDS = ("four_pwd", "passcode")
PASSCODE_STATES = ("new", "second", "keypad", "input", "setup")

_BARE_AMPERSAND = re.compile(r"&(?!(?:[a-zA-Z]+|#\d+|#x[0-9a-fA-F]+);)")


# --------------------------------------------------------------------------
# Text and XML helpers
# --------------------------------------------------------------------------

def detect_sentinel(text: Optional[str]) -> Optional[str]:
    """
    Recognise the platform's plain-text sentinel responses

    Args:
        text: Raw response body

    Returns:
        One of the SENTINEL_* constants, or None
    """
    if not text:
        return None
    for token, sentinel in _SENTINELS:
        if token in text:
            return sentinel
    return None


def looks_like_xml(text: Optional[str]) -> bool:
    return bool(text) and "<" in text and ">" in text


def parse_xml(text: str) -> ET.Element:
    """
    Parse a platform XML document

    Raises:
        ProtocolError: If the body is not well-formed XML
    """
    if not looks_like_xml(text):
        raise ProtocolError(message=f"Not an XML response: {(text or '')[:80]!r}")
    body = text.strip().lstrip("\ufeff")
    body = _BARE_AMPERSAND.sub("&amp;", body)
    try:
        return ET.fromstring(body)
    except ET.ParseError as e:
        raise ProtocolError(message=f"Malformed XML: {e}")


def element_fields(element: ET.Element) -> Dict[str, str]:
    """
    Flatten one element into a field map.

    Attributes become "@name", leaf children become "TAG" -> text. When a
    tag repeats, the first occurrence wins.
    """
    fields: Dict[str, str] = {}
    for name, value in element.attrib.items():
        fields[f"@{name}"] = value
    for child in element:
        if len(child) == 0 and child.tag not in fields:
            fields[child.tag] = (child.text or "").strip()
    return fields


def response_fields(text: str) -> Dict[str, str]:
    """Field map of the root wrapper of a platform response"""
    return element_fields(parse_xml(text))


def to_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(str(value).strip())
    except ValueError:
        return None


def odds_value(value: Any) -> Optional[float]:
    """Odds as float; empty or zero odds mean "no price" and become None"""
    number = to_float(value)
    if number is None or number == 0:
        return None
    return number


def mask_token(token: Optional[str]) -> str:
    """Mask ids and cookies for logging"""
    if not token:
        return "None"
    if len(token) <= 12:
        return token[:2] + "..." if len(token) > 2 else "..."
    return f"{token[:8]}...{token[-4:]}"


# --------------------------------------------------------------------------
# Request encoders
# --------------------------------------------------------------------------

def encode_user_agent(user_agent: str) -> str:
    return base64.b64encode(user_agent.encode("utf-8")).decode("ascii")


def generate_blackbox(now_ms: Optional[int] = None, rng: Optional[random.Random] = None) -> str:
    """Opaque device fingerprint in the shape the login form sends"""
    rng = rng or random.Random()
    now_ms = now_ms if now_ms is not None else int(time.time() * 1000)
    alphabet = string.ascii_lowercase + string.digits

    def chunk():
        return "".join(rng.choice(alphabet) for _ in range(26))

    return f"0400{chunk()}{chunk()}@{chunk()}@{chunk()};{chunk()}{now_ms}"


def encode_login(username: str, password: str, version: str, user_agent: str,
                 blackbox: str, langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    return {
        "p": "chk_login",
        "langx": langx,
        "ver": version,
        "username": username,
        "password": password,
        "app": "N",
        "auto": "CFHFID",
        "blackbox": blackbox,
        "userAgent": encode_user_agent(user_agent),
    }


def encode_change_password(uid: str, username: str, new_password: str, version: str,
                           langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    return {
        "p": "chg_newpwd",
        "ver": version,
        "username": username,
        "new_password": new_password,
        "chg_password": new_password,
        "uid": uid,
        "langx": langx,
    }


def encode_change_username(uid: str, username: str, new_username: str, version: str,
                           langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    return {
        "p": "chg_passwd_safe",
        "ver": version,
        "username": username,
        "chk_name": new_username,
        "uid": uid,
        "langx": langx,
    }


def encode_member_settings(uid: str, langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    return {"p": "memSet", "langx": langx, "uid": uid, "action": "check"}


def encode_member_data(uid: str, version: str, langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    return {"p": "get_member_data", "ver": version, "change": "all", "langx": langx, "uid": uid}


def encode_account_settings(uid: str, version: str, gtype: str = "FT",
                            langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    return {"p": "get_account_set", "uid": uid, "ver": version, "langx": langx, "gtype": gtype}


def encode_game_list(uid: str, version: str, showtype: str = "live", gtype: str = "ft",
                     langx: str = DEFAULT_LANGX, ts: Optional[int] = None) -> Dict[str, str]:
    return {
        "uid": uid,
        "ver": version,
        "langx": langx,
        "p": "get_game_list",
        "p3type": "",
        "date": "",
        "gtype": gtype,
        "showtype": showtype,
        "rtype": "rb" if showtype == "live" else "r",
        "ltype": "3",
        "filter": "",
        "cupFantasy": "N",
        "sorttype": "L",
        "specialClick": "",
        "isFantasy": "N",
        "ts": str(ts if ts is not None else int(time.time() * 1000)),
    }


def encode_game_more_attempts(uid: str, version: str, gid: str, ecid: Optional[str] = None,
                              lid: Optional[str] = None, showtype: str = "live",
                              gtype: str = "ft", langx: str = DEFAULT_LANGX,
                              ts: Optional[int] = None) -> List[Dict[str, str]]:
    """
    Ordered parameter shapes for the "more markets" call.

    The platform answers some events only for a particular id combination, so
    callers try each shape in turn and keep the first XML answer.
    """
    stamp = str(ts if ts is not None else int(time.time() * 1000))
    base = {
        "uid": uid,
        "ver": version,
        "p": "get_game_more",
        "gtype": gtype,
        "showtype": showtype,
        "ltype": "3",
        "isRB": "Y" if showtype == "live" else "N",
        "specialClick": "",
        "mode": "NORMAL",
        "from": "game_more",
        "filter": "All",
        "ts": stamp,
    }
    shapes: List[Tuple[Dict[str, str], str]] = []
    if ecid:
        shapes.append(({"ecid": ecid, "gid": gid, "lid": lid or ""}, langx))
    if lid:
        shapes.append(({"gid": gid, "lid": lid}, langx))
    if ecid:
        shapes.append(({"ecid": ecid}, langx))
    shapes.append(({"gid": gid}, langx))
    shapes.append(({"gid": gid}, "zh-tw"))

    attempts = []
    for ids, language in shapes:
        params = dict(base)
        params.update(ids)
        params["langx"] = language
        attempts.append(params)
    return attempts


def encode_odds_quote(uid: str, version: str, gid: str, gtype: str, wtype: str,
                      chose_team: str, line: Optional[str] = None,
                      langx: str = DEFAULT_LANGX) -> Dict[str, str]:
    params = {
        "p": f"{gtype.upper()}_order_view",
        "uid": uid,
        "ver": version,
        "langx": langx,
        "odd_f_type": "H",
        "gid": gid,
        "gtype": gtype.upper(),
        "wtype": wtype,
        "chose_team": chose_team,
    }
    if line:
        params["con"] = line
    return params


def encode_bet(uid: str, version: str, gid: str, gtype: str, quote: OddsQuote, stake: float,
               langx: str = DEFAULT_LANGX, now_ms: Optional[int] = None) -> Dict[str, str]:
    """
    Bet submission parameters built strictly from a fresh quote.

    Price, line and ratio always come from the quote, never from the caller.
    """
    price = f"{quote.price:g}" if isinstance(quote.price, float) else str(quote.price)
    raw_price = quote.raw_fields.get("ioratio") or price
    return {
        "p": f"{gtype.upper()}_bet",
        "uid": uid,
        "ver": version,
        "langx": langx,
        "odd_f_type": "H",
        "golds": f"{stake:g}" if isinstance(stake, float) else str(stake),
        "gid": gid,
        "gtype": gtype.upper(),
        "wtype": quote.variant.wtype,
        "rtype": quote.rtype,
        "chose_team": quote.chose_team,
        "ioratio": raw_price,
        "con": quote.line_token or "0",
        "ratio": quote.ratio or str(round(float(raw_price) * 1000)),
        "autoOdd": "Y",
        "timestamp": str(now_ms if now_ms is not None else int(time.time() * 1000)),
        "timestamp2": "",
        "isRB": "N",
        "imp": "N",
        "ptype": "",
        "isYesterday": "N",
        "f": "1R",
    }


# --------------------------------------------------------------------------
# Response decoders
# --------------------------------------------------------------------------

def decode_login(text: str) -> LoginResponse:
    """
    Decode a chk_login response

    A double-login sentinel or an empty body is not an error here; the
    login state machine decides what those mean.
    """
    if detect_sentinel(text) == SENTINEL_DOUBLE_LOGIN:
        return LoginResponse(double_login=True, raw_text=text)
    if not looks_like_xml(text):
        return LoginResponse(raw_text=text or "")

    fields = response_fields(text)
    passcode_state = None
    for name in PASSCODE_FIELDS:
        value = fields.get(name, "").strip().lower()
        if value in PASSCODE_STATES:
            passcode_state = value
            break

    status = fields.get("status") or None
    msg = fields.get("msg") or None
    if msg == "100" and status != "success":
        status = "success"

    return LoginResponse(
        status=status,
        msg=msg,
        code_message=fields.get("code_message") or None,
        username=fields.get("username") or None,
        uid=fields.get("uid") or None,
        mid=fields.get("mid") or None,
        passwd_safe=fields.get("passwd_safe") or None,
        passcode_state=passcode_state,
        raw_text=text,
    )


def raise_for_sentinel(text: str):
    """Raise SessionInvalidError for session-killing sentinels"""
    sentinel = detect_sentinel(text)
    if sentinel == SENTINEL_DOUBLE_LOGIN:
        raise SessionInvalidError("DOUBLE_LOGIN", "Account logged in elsewhere")
    if sentinel == SENTINEL_SESSION_EXPIRED:
        raise SessionInvalidError("SESSION_EXPIRED", "Session expired (CheckEMNU)")


def decode_odds_quote(text: str, variant: WireVariant, rtype: str, chose_team: str) -> OddsQuote:
    """
    Decode an order_view response into an OddsQuote

    Raises:
        SessionInvalidError: double login, expiry sentinel, or errormsg 1X014
        CrownError: any non-success code, classified through the error table
        ProtocolError: unrecognised response
    """
    raise_for_sentinel(text)
    if detect_sentinel(text) == SENTINEL_VARIABLE_STANDARD:
        raise SessionInvalidError("SESSION_EXPIRED", "Session expired or bad request (VariableStandard)")
    if not looks_like_xml(text):
        raise ProtocolError(message=f"Unexpected quote response: {(text or '')[:80]!r}")

    fields = response_fields(text)
    code = fields.get("code", "")
    if code == QUOTE_SUCCESS_CODE:
        price = odds_value(fields.get("ioratio"))
        if price is None:
            raise ProtocolError(message="Quote without a price")
        return OddsQuote(
            variant=variant,
            rtype=rtype,
            chose_team=chose_team,
            price=price,
            line_token=fields.get("con") or fields.get("spread") or None,
            ratio=fields.get("ratio") or None,
            min_stake=to_float(fields.get("gold_gmin")),
            max_stake=to_float(fields.get("gold_gmax")),
            raw_fields=fields,
        )

    errormsg = fields.get("errormsg", "")
    if "1X014" in errormsg:
        raise SessionInvalidError("1X014")
    raise CrownError.from_code(errormsg or code or "INVALID_RESPONSE", fields.get("msg") or None)


def decode_bet(text: str, quote: OddsQuote, stake: float) -> BetReceipt:
    """
    Decode a bet submission response into a BetReceipt

    Raises:
        SessionInvalidError: on session sentinels (the pipeline maps it)
    """
    raise_for_sentinel(text)
    if not looks_like_xml(text):
        raise ProtocolError(message=f"Unexpected bet response: {(text or '')[:80]!r}")

    fields = response_fields(text)
    code = fields.get("code", "")
    ticket_id = fields.get("ticket_id") or None
    if code == BET_SUCCESS_CODE or ticket_id:
        return BetReceipt(
            success=True,
            ticket_id=ticket_id,
            confirmed_price=odds_value(fields.get("ioratio")) or quote.price,
            confirmed_line=quote.line_token,
            variant=quote.variant,
            stake=to_float(fields.get("gold")) or stake,
            balance_after=to_float(fields.get("nowcredit")),
        )

    token = fields.get("errormsg") or code or fields.get("msg") or "INVALID_RESPONSE"
    if "1X014" in token:
        raise SessionInvalidError("1X014")
    error = CrownError.from_code(token, fields.get("msg") or fields.get("message") or None)
    return BetReceipt(
        success=False,
        error_kind=error.kind,
        error_code=token,
        error_detail=error.message,
        variant=quote.variant,
        stake=stake,
    )


def decode_balance(text: str) -> Balance:
    raise_for_sentinel(text)
    fields = response_fields(text)

    def first_number(names):
        for name in names:
            value = to_float(fields.get(name))
            if value is not None:
                return value
        return None

    return Balance(
        balance=first_number(("cash", "balance")) or 0.0,
        credit=first_number(("maxcredit", "credit")) or 0.0,
    )


def decode_change_password(text: str) -> Tuple[bool, Optional[str]]:
    fields = response_fields(text)
    if fields.get("status") == "200" or "成功" in fields.get("msg", ""):
        return True, None
    return False, fields.get("err") or fields.get("msg") or "Password change failed"


# Rejections meaning the account was already initialised earlier
_ALREADY_INITIALISED_MARKERS = ("已", "不能", "无法")


def already_initialised(error: Optional[str]) -> bool:
    return bool(error) and any(marker in error for marker in _ALREADY_INITIALISED_MARKERS)


def decode_change_username(text: str) -> Tuple[bool, Optional[str]]:
    fields = response_fields(text)
    if "成功" in fields.get("chg_long_user", ""):
        return True, None
    return False, fields.get("str_user") or "Login id change failed"
