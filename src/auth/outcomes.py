"""
Login Outcomes
Login outcome classification and the tagged result returned by the sub-flows
"""
from enum import Enum
from typing import Optional, Tuple

from crown import codec
from crown.models import LoginResponse


class LoginOutcome(Enum):
    """What a submitted login turned into"""
    SUCCESS = "SUCCESS"
    DOUBLE_LOGOUT = "DOUBLE_LOGOUT"
    PASSCODE_CHALLENGE = "PASSCODE_CHALLENGE"
    CREDENTIAL_CHANGE_REQUIRED = "CREDENTIAL_CHANGE_REQUIRED"
    FAILED = "FAILED"


class PasscodeShape(Enum):
    """Passcode prompt layouts"""
    SETUP = "setup"      # two blank inputs: choose a new code
    INPUT = "input"      # one blank input: re-enter the chosen code
    KEYPAD = "keypad"    # tap-to-enter pad, no text inputs


# Passcode status values in the login response -> prompt shape
PASSCODE_STATE_SHAPES = {
    "new": PasscodeShape.SETUP,
    "setup": PasscodeShape.SETUP,
    "second": PasscodeShape.INPUT,
    "input": PasscodeShape.INPUT,
    "keypad": PasscodeShape.KEYPAD,
}

# Text markers in code_message / raw body -> failure reason
_FAILURE_MARKERS = (
    ("密码错误次数过多", "too_many_attempts"),
    ("账号已被锁定", "account_locked"),
    ("账号或密码错误", "bad_credentials"),
)


def classify_login(response: LoginResponse) -> Tuple[Optional[LoginOutcome], Optional[str]]:
    """
    Classify a decoded login response

    Returns:
        Tuple of (outcome, reason). outcome is None while the response is
        inconclusive (empty body, success without an id yet).
    """
    if response.double_login:
        return LoginOutcome.DOUBLE_LOGOUT, "double_login"
    if response.passcode_state:
        return LoginOutcome.PASSCODE_CHALLENGE, response.passcode_state
    if response.msg == codec.LOGIN_CHANGE_REQUIRED_CODE:
        return LoginOutcome.CREDENTIAL_CHANGE_REQUIRED, "credential_change_required"

    text = f"{response.code_message or ''} {response.raw_text or ''}"
    for marker, reason in _FAILURE_MARKERS:
        if marker in text:
            return LoginOutcome.FAILED, reason

    if response.msg in codec.LOGIN_SUCCESS_CODES or response.status == "success":
        if response.uid:
            return LoginOutcome.SUCCESS, None
        return None, None
    if response.msg == codec.LOGIN_BAD_CREDENTIALS_CODE:
        return LoginOutcome.FAILED, "bad_credentials"
    if response.status == "error" or response.msg:
        return LoginOutcome.FAILED, response.code_message or f"login_error_{response.msg or 'unknown'}"
    return None, None


def passcode_shape_hint(response: Optional[LoginResponse]) -> Optional[PasscodeShape]:
    if response is None or not response.passcode_state:
        return None
    return PASSCODE_STATE_SHAPES.get(response.passcode_state)


class FlowStatus(Enum):
    SUCCESS = "Success"
    NEEDS_RETRY = "NeedsRetry"
    FAILED = "Failed"


class FlowResult:
    """Tagged result of a passcode or credential-change sub-flow"""

    def __init__(self, status: FlowStatus, reason: Optional[str] = None,
                 uid: Optional[str] = None, cookie_header: Optional[str] = None,
                 follow_up: Optional[LoginOutcome] = None,
                 follow_up_response: Optional[LoginResponse] = None):
        self.status = status
        self.reason = reason
        self.uid = uid
        self.cookie_header = cookie_header
        self.follow_up = follow_up
        self.follow_up_response = follow_up_response

    @classmethod
    def success(cls, uid: Optional[str] = None, cookie_header: Optional[str] = None, **kwargs) -> "FlowResult":
        return cls(FlowStatus.SUCCESS, uid=uid, cookie_header=cookie_header, **kwargs)

    @classmethod
    def from_browser(cls, driver) -> "FlowResult":
        """Adopt the session a browser driver ended up with; it must carry a uid"""
        uid, cookie_header = driver.export_session()
        if not uid:
            return cls.needs_retry("browser_session_unreadable")
        return cls.success(uid=uid, cookie_header=cookie_header)

    @classmethod
    def needs_retry(cls, reason: str) -> "FlowResult":
        return cls(FlowStatus.NEEDS_RETRY, reason=reason)

    @classmethod
    def failed(cls, reason: str) -> "FlowResult":
        return cls(FlowStatus.FAILED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status == FlowStatus.SUCCESS

    def __repr__(self):
        return f"FlowResult({self.status.value}, reason={self.reason})"
