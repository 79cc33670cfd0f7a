"""
Login State Machine
Drives one account from submitted credentials to an established session
"""
import logging
import time
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from auth.credential_change import CredentialChangeHandler
from auth.outcomes import (FlowResult, FlowStatus, LoginOutcome, classify_login,
                           passcode_shape_hint)
from auth.passcode import PasscodeHandler
from crown.error_codes import CrownError, NetworkError, ProtocolError, SessionInvalidError
from crown.models import Account, LoginResponse, Session
from session.registry import SessionRegistry

logger = logging.getLogger("CrownBot")

DEFAULT_OUTCOME_TIMEOUT = 18.0


class LoginState(Enum):
    IDLE = "Idle"
    CREDENTIALS_SUBMITTED = "CredentialsSubmitted"
    AWAITING_OUTCOME = "AwaitingOutcome"
    SUCCESS = "Success"
    DOUBLE_LOGOUT = "DoubleLogout"
    PASSCODE_CHALLENGE = "PasscodeChallenge"
    CREDENTIAL_CHANGE_REQUIRED = "CredentialChangeRequired"
    FAILED = "Failed"
    TIMEOUT = "Timeout"


_OUTCOME_STATES = {
    LoginOutcome.SUCCESS: LoginState.SUCCESS,
    LoginOutcome.DOUBLE_LOGOUT: LoginState.DOUBLE_LOGOUT,
    LoginOutcome.PASSCODE_CHALLENGE: LoginState.PASSCODE_CHALLENGE,
    LoginOutcome.CREDENTIAL_CHANGE_REQUIRED: LoginState.CREDENTIAL_CHANGE_REQUIRED,
    LoginOutcome.FAILED: LoginState.FAILED,
}


class LoginResult:
    """Terminal result of one login attempt"""

    def __init__(self, state: LoginState, reason: Optional[str] = None,
                 session: Optional[Session] = None,
                 history: Optional[List[LoginState]] = None,
                 retryable: bool = False):
        self.state = state
        self.reason = reason
        self.session = session
        self.history = history or []
        self.retryable = retryable

    @property
    def success(self) -> bool:
        return self.state == LoginState.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "reason": self.reason,
            "retryable": self.retryable,
            "history": [s.value for s in self.history],
        }

    def __repr__(self):
        return f"LoginResult({self.state.value}, reason={self.reason})"


class _Attempt:
    """Mutable bookkeeping for one run of the state machine"""

    def __init__(self, account: Account):
        self.account = account
        self.history: List[LoginState] = [LoginState.IDLE]
        self.driver = None

    def move(self, state: LoginState):
        logger.debug(f"[{self.account.account_id}] {self.history[-1].value} -> {state.value}")
        self.history.append(state)


class LoginStateMachine:
    """
    Login for one account at a time per account id.

    Every run, including passcode and credential-change sub-flows, happens
    inside the registry's per-account login lock; concurrent callers for the
    same account share the in-flight result.
    """

    def __init__(self, registry: SessionRegistry, account_store,
                 passcode_handler: Optional[PasscodeHandler] = None,
                 credential_handler: Optional[CredentialChangeHandler] = None,
                 driver_factory: Optional[Callable[[Account], Any]] = None,
                 outcome_timeout: float = DEFAULT_OUTCOME_TIMEOUT,
                 poll_interval: float = 1.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize login state machine

        Args:
            registry: Session registry (owner of sessions and login locks)
            account_store: Account store for credential/passcode write-back
            passcode_handler: Passcode sub-flow (defaults to PasscodeHandler)
            credential_handler: Credential-change sub-flow
            driver_factory: Builds a browser login driver for an account;
                None means the sub-flows run over HTTP only
            outcome_timeout: Seconds to wait for a conclusive outcome
            poll_interval: Seconds between outcome probes
            clock: Monotonic time source for the outcome deadline
            sleep: Sleep function (tests pass a no-op)
        """
        self.registry = registry
        self.account_store = account_store
        self.passcode_handler = passcode_handler or PasscodeHandler(account_store)
        self.credential_handler = credential_handler or CredentialChangeHandler(account_store)
        self.driver_factory = driver_factory
        self.outcome_timeout = outcome_timeout
        self.poll_interval = poll_interval
        self.clock = clock
        self.sleep = sleep

    def login(self, account: Account) -> LoginResult:
        """Run the state machine for an account under its login lock"""
        return self.registry.with_login_lock(account.account_id, lambda: self._run(account))

    def ensure(self, account: Account) -> LoginResult:
        """
        Reuse the account's live session, or log in when there is none

        The session check runs inside the login lock, so a caller that races
        a finishing login picks up its session instead of replacing it.
        """
        return self.registry.with_login_lock(account.account_id, lambda: self._reuse_or_run(account))

    def _reuse_or_run(self, account: Account) -> LoginResult:
        session = self.registry.get(account.account_id)
        if session is not None:
            logger.debug(f"[{account.account_id}] Reusing live session")
            return LoginResult(LoginState.SUCCESS, session=session, history=[LoginState.SUCCESS])
        return self._run(account)

    # ------------------------------------------------------------------
    # Main path
    # ------------------------------------------------------------------

    def _run(self, account: Account) -> LoginResult:
        attempt = _Attempt(account)
        if not account.enabled:
            return self._finish(attempt, LoginState.FAILED, "account_disabled")

        if self.registry.get(account.account_id) is not None:
            self.registry.invalidate(account.account_id, "re-login requested")

        client = self.registry.client_for(account)
        logger.info(f"[{account.account_id}] Logging in as {account.username}")
        try:
            attempt.move(LoginState.CREDENTIALS_SUBMITTED)
            response = client.login(account.username, account.password)
            attempt.move(LoginState.AWAITING_OUTCOME)
            outcome, reason = self._await_outcome(attempt, client, response)
            if outcome is None:
                logger.error(f"✗ [{account.account_id}] No login outcome within {self.outcome_timeout}s")
                return self._finish(attempt, LoginState.TIMEOUT, "outcome_timeout", retryable=True)
            return self._resolve(attempt, client, outcome, reason, response)
        except NetworkError as e:
            logger.error(f"✗ [{account.account_id}] Login network failure: {e}")
            return self._finish(attempt, LoginState.FAILED, f"network:{e.code}", retryable=True)
        except CrownError as e:
            logger.error(f"✗ [{account.account_id}] Login failed: {e}")
            return self._finish(attempt, LoginState.FAILED, e.code)
        finally:
            if attempt.driver is not None:
                attempt.driver.close()

    def _await_outcome(self, attempt: _Attempt, client,
                       response: LoginResponse) -> Tuple[Optional[LoginOutcome], Optional[str]]:
        """Bounded poll until the submitted login turns into an outcome"""
        outcome, reason = classify_login(response)
        deadline = self.clock() + self.outcome_timeout
        while outcome is None and self.clock() < deadline:
            self.sleep(self.poll_interval)
            outcome, reason = self._probe(attempt, client)
        return outcome, reason

    def _probe(self, attempt: _Attempt, client) -> Tuple[Optional[LoginOutcome], Optional[str]]:
        if not client.uid:
            return None, None
        try:
            if client.check_session():
                return LoginOutcome.SUCCESS, None
        except SessionInvalidError as e:
            if e.code == "DOUBLE_LOGIN":
                return LoginOutcome.DOUBLE_LOGOUT, "double_login"
            return LoginOutcome.FAILED, e.code
        except (NetworkError, ProtocolError) as e:
            logger.debug(f"[{attempt.account.account_id}] Outcome probe failed, still waiting: {e}")
        return None, None

    def _resolve(self, attempt: _Attempt, client, outcome: LoginOutcome,
                 reason: Optional[str], response: Optional[LoginResponse]) -> LoginResult:
        account = attempt.account
        attempt.move(_OUTCOME_STATES[outcome])

        if outcome == LoginOutcome.SUCCESS:
            return self._establish(attempt, client)

        if outcome == LoginOutcome.DOUBLE_LOGOUT:
            return self._handle_double_logout(attempt, client)

        if outcome == LoginOutcome.PASSCODE_CHALLENGE:
            driver = self._driver(attempt)
            result = self.passcode_handler.run(account, driver, passcode_shape_hint(response))
            return self._from_flow(attempt, client, result)

        if outcome == LoginOutcome.CREDENTIAL_CHANGE_REQUIRED:
            result = self.credential_handler.run(account, client, self._driver(attempt))
            if result.ok and result.follow_up == LoginOutcome.PASSCODE_CHALLENGE:
                attempt.move(LoginState.PASSCODE_CHALLENGE)
                driver = self._driver(attempt)
                result = self.passcode_handler.run(account, driver,
                                                   passcode_shape_hint(result.follow_up_response))
            return self._from_flow(attempt, client, result)

        logger.error(f"✗ [{account.account_id}] Login rejected: {reason}")
        return LoginResult(LoginState.FAILED, reason, history=attempt.history)

    # ------------------------------------------------------------------
    # Outcome handlers
    # ------------------------------------------------------------------

    def _handle_double_logout(self, attempt: _Attempt, client) -> LoginResult:
        account = attempt.account
        logger.warning(f"[{account.account_id}] Account is logged in elsewhere")
        self.registry.invalidate(account.account_id, "double_login")
        driver = self._driver(attempt)
        if driver is None:
            return self._finish(attempt, LoginState.FAILED, "double_login")
        driver.acknowledge_prompt()
        if not driver.is_authenticated():
            return self._finish(attempt, LoginState.FAILED, "double_login")
        return self._from_flow(attempt, client, FlowResult.from_browser(driver))

    def _from_flow(self, attempt: _Attempt, client, result: FlowResult) -> LoginResult:
        if result.status == FlowStatus.SUCCESS:
            if result.uid:
                client.restore_session(result.uid, result.cookie_header or client.export_cookie_header())
            return self._establish(attempt, client)
        return self._finish(attempt, LoginState.FAILED, result.reason,
                            retryable=result.status == FlowStatus.NEEDS_RETRY)

    def _establish(self, attempt: _Attempt, client) -> LoginResult:
        if not client.uid:
            return self._finish(attempt, LoginState.FAILED, "no_session_id", retryable=True)
        session = self.registry.establish(attempt.account, client)
        if attempt.history[-1] != LoginState.SUCCESS:
            attempt.move(LoginState.SUCCESS)
        logger.info(f"✓ [{attempt.account.account_id}] Login successful")
        return LoginResult(LoginState.SUCCESS, session=session, history=attempt.history)

    def _driver(self, attempt: _Attempt):
        """Browser driver for this attempt, opened on first use"""
        if attempt.driver is None and self.driver_factory is not None:
            driver = self.driver_factory(attempt.account)
            try:
                driver.open(attempt.account)
            except Exception as e:
                logger.error(f"✗ [{attempt.account.account_id}] Browser login failed to open: {e}")
                driver.close()
                return None
            attempt.driver = driver
        return attempt.driver

    def _finish(self, attempt: _Attempt, state: LoginState, reason: Optional[str],
                retryable: bool = False) -> LoginResult:
        if attempt.history[-1] != state:
            attempt.move(state)
        return LoginResult(state, reason, history=attempt.history, retryable=retryable)
