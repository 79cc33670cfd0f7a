"""
Crown Error Codes
Maps platform error tokens onto one error taxonomy and defines the exception types
"""
from enum import Enum
from typing import Dict, Optional, Tuple


class ErrorKind(Enum):
    """Error taxonomy shared by the client and the bet pipeline"""
    NETWORK = "Network"
    SESSION_INVALID = "SessionInvalid"
    MARKET_CLOSED = "MarketClosed"
    VALIDATION = "Validation"
    LIMIT = "Limit"
    ODDS_CHANGED = "OddsChanged"
    OTHER = "Other"


# Platform token -> (kind, operator message). Extend here when the platform
# starts returning new tokens; calling layers only ever see ErrorKind.
ERROR_CODES: Dict[str, Tuple[ErrorKind, str]] = {
    "0X001": (ErrorKind.NETWORK, "Network congestion, please retry"),
    "0X002": (ErrorKind.NETWORK, "Network congestion, please retry"),
    "0X003": (ErrorKind.NETWORK, "System busy, please retry later"),
    "0X004": (ErrorKind.NETWORK, "System busy, please retry later"),
    "0X005": (ErrorKind.NETWORK, "System busy, please retry later"),
    "0X006": (ErrorKind.NETWORK, "System paused, please wait"),
    "0X007": (ErrorKind.NETWORK, "System busy, please retry later"),
    "0X008": (ErrorKind.NETWORK, "System busy, please retry later"),
    "0X009": (ErrorKind.MARKET_CLOSED, "Market no longer open for betting"),
    "1X001": (ErrorKind.MARKET_CLOSED, "Market not open for betting yet"),
    "1X002": (ErrorKind.MARKET_CLOSED, "Past the stop-trading time"),
    "1X003": (ErrorKind.MARKET_CLOSED, "Event moved to in-play markets"),
    "1X009": (ErrorKind.MARKET_CLOSED, "Trading temporarily suspended"),
    "1X010": (ErrorKind.MARKET_CLOSED, "Trading temporarily suspended"),
    "1X011": (ErrorKind.MARKET_CLOSED, "Market no longer open for betting"),
    "555": (ErrorKind.MARKET_CLOSED, "Market temporarily closed"),
    "1X004": (ErrorKind.VALIDATION, "Stake below the minimum"),
    "1X022": (ErrorKind.VALIDATION, "Stake below the minimum"),
    "1X007": (ErrorKind.VALIDATION, "Stake not accepted for this market"),
    "1X021": (ErrorKind.VALIDATION, "Duplicate handicap selection"),
    "1X023": (ErrorKind.VALIDATION, "Event requires a main-market stake"),
    "1X008": (ErrorKind.LIMIT, "Stake exceeds the single-event credit limit"),
    "1X012": (ErrorKind.LIMIT, "Total stake exceeds the available credit"),
    "1X017": (ErrorKind.LIMIT, "Single-event parlay limit exceeded"),
    "1X018": (ErrorKind.LIMIT, "Maximum stake limit reached"),
    "1X019": (ErrorKind.LIMIT, "Combination payout limit exceeded"),
    "1X020": (ErrorKind.LIMIT, "Single-bet payout limit exceeded"),
    "1X005": (ErrorKind.ODDS_CHANGED, "Line, odds or score updated"),
    "1X006": (ErrorKind.ODDS_CHANGED, "Line, odds or score updated"),
    "1X013": (ErrorKind.ODDS_CHANGED, "Odds error, please re-submit"),
    "1X015": (ErrorKind.ODDS_CHANGED, "Line, odds or score updated"),
    "1X016": (ErrorKind.ODDS_CHANGED, "Line, odds or score updated"),
    "1X014": (ErrorKind.SESSION_INVALID, "Login expired, please log in again"),
    "1X024": (ErrorKind.OTHER, "Bet failed, please re-submit"),
    "1X025": (ErrorKind.OTHER, "Market switch error"),
    "DOUBLE_LOGIN": (ErrorKind.SESSION_INVALID, "Account logged in elsewhere"),
    "SESSION_EXPIRED": (ErrorKind.SESSION_INVALID, "Session expired"),
    "NOT_LOGGED_IN": (ErrorKind.SESSION_INVALID, "Account is offline"),
    "LINE_CHANGED": (ErrorKind.ODDS_CHANGED, "Platform line differs from the requested line"),
    "PRICE_BELOW_MIN": (ErrorKind.ODDS_CHANGED, "Quoted price below the requested minimum"),
    "STAKE_OUT_OF_RANGE": (ErrorKind.VALIDATION, "Stake outside the quoted range"),
    "INVALID_INTENT": (ErrorKind.VALIDATION, "Bet intent cannot be mapped to a market"),
    "INVALID_RESPONSE": (ErrorKind.OTHER, "Unrecognised platform response"),
}


def classify(code: Optional[str]) -> Tuple[ErrorKind, str]:
    """
    Map a raw platform token to (kind, message)

    Args:
        code: Raw token as returned by the platform (case-insensitive)

    Returns:
        Tuple of (ErrorKind, message); unknown tokens map to OTHER
    """
    if not code:
        return ErrorKind.OTHER, "Unknown error"
    token = str(code).strip().upper()
    if token in ERROR_CODES:
        return ERROR_CODES[token]
    return ErrorKind.OTHER, f"Unknown error code: {code}"


def format_error(code: Optional[str], original_message: Optional[str] = None) -> str:
    """Operator-facing message that always carries the raw token"""
    if not code:
        return original_message or "Bet failed"
    _, message = classify(code)
    if str(code).strip().upper() in ERROR_CODES:
        return f"[{code}] {message}"
    return original_message or message


class CrownError(Exception):
    """Base error raised by the codec and account client"""

    def __init__(self, kind: ErrorKind, code: Optional[str] = None, message: Optional[str] = None):
        self.kind = kind
        self.code = code
        self.message = message or (classify(code)[1] if code else kind.value)
        super().__init__(f"{kind.value}[{code}]: {self.message}" if code else f"{kind.value}: {self.message}")

    @classmethod
    def from_code(cls, code: str, message: Optional[str] = None) -> "CrownError":
        kind, default_message = classify(code)
        error_class = _KIND_TO_CLASS.get(kind, CrownError)
        if error_class is CrownError:
            return CrownError(kind, code, message or default_message)
        return error_class(code, message or default_message)


class NetworkError(CrownError):
    """Transport failure (timeout, refused connection, 5xx)"""

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        super().__init__(ErrorKind.NETWORK, code, message)


class SessionInvalidError(CrownError):
    """Double login, expired session or any other sign the session is gone"""

    def __init__(self, code: Optional[str] = None, message: Optional[str] = None):
        super().__init__(ErrorKind.SESSION_INVALID, code, message)


class ProtocolError(CrownError):
    """Response that cannot be decoded"""

    def __init__(self, code: Optional[str] = "INVALID_RESPONSE", message: Optional[str] = None):
        super().__init__(ErrorKind.OTHER, code, message)


_KIND_TO_CLASS = {
    ErrorKind.NETWORK: NetworkError,
    ErrorKind.SESSION_INVALID: SessionInvalidError,
}
