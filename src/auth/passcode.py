"""
Passcode Handler
Resolves the platform's 4-digit passcode prompt through the login driver
"""
import hashlib
import logging
import time
from typing import Callable, List, Optional

from auth.outcomes import FlowResult, PasscodeShape
from crown.models import Account

logger = logging.getLogger("CrownBot")


def is_weak_passcode(code: str) -> bool:
    """All-same digits or a straight run (1234, 9876) are refused by the platform"""
    if len(set(code)) == 1:
        return True
    steps = {int(b) - int(a) for a, b in zip(code, code[1:])}
    return steps in ({1}, {-1})


def derive_passcode(account_id: str, now: float) -> str:
    """
    Deterministic 4-digit passcode for an account at a given time

    Same (account_id, now) always yields the same code; weak codes are
    stepped past.
    """
    digest = hashlib.sha256(f"{account_id}:{int(now)}".encode("utf-8")).hexdigest()
    value = int(digest, 16) % 10000
    code = f"{value:04d}"
    while is_weak_passcode(code):
        value = (value + 37) % 10000
        code = f"{value:04d}"
    return code


class PasscodeHandler:
    """
    Passcode sub-flow of the login state machine.

    Setup reuses the stored code or derives a new one (one alternate is tried
    if the platform refuses it). Input and Keypad need the stored code. A
    code is submitted at most once per run; a rejected stored code ends the
    flow as Failed so the same code is never retried.
    """

    def __init__(self, account_store, clock: Callable[[], float] = time.time):
        """
        Initialize passcode handler

        Args:
            account_store: AccountStore the accepted code is written back to
            clock: Time source used when deriving a code
        """
        self.account_store = account_store
        self.clock = clock

    def _candidates(self, account: Account, shape: PasscodeShape) -> List[str]:
        if shape != PasscodeShape.SETUP:
            return [account.passcode] if account.passcode else []
        now = self.clock()
        first = account.passcode or derive_passcode(account.account_id, now)
        alternate = derive_passcode(account.account_id, now + 1)
        if alternate == first:
            alternate = derive_passcode(account.account_id, now + 2)
        return [first, alternate]

    def run(self, account: Account, driver, hint: Optional[PasscodeShape] = None) -> FlowResult:
        """
        Answer the passcode prompt

        Args:
            account: Account being logged in
            driver: Login driver already showing the post-login page
            hint: Shape suggested by the login response, used when the
                page itself cannot be read

        Returns:
            FlowResult; on success it carries the driver's uid and cookie header,
            or asks for a retry when the browser session has no readable uid
        """
        if driver is None:
            return FlowResult.failed("passcode_driver_unavailable")

        shape = driver.detect_passcode_shape() or hint
        if shape is None:
            logger.warning(f"[{account.account_id}] Passcode prompt expected but not found")
            return FlowResult.needs_retry("passcode_prompt_not_found")

        candidates = self._candidates(account, shape)
        if not candidates:
            logger.error(f"[{account.account_id}] Platform asks for the passcode ({shape.value}) "
                         f"but none is stored")
            return FlowResult.failed("passcode_unknown")

        logger.info(f"[{account.account_id}] Passcode prompt: {shape.value}")
        tried = set()
        for code in candidates:
            if code in tried:
                continue
            tried.add(code)
            driver.enter_passcode(shape, code)
            verdict = driver.wait_for_passcode_result()
            if verdict is None:
                return FlowResult.needs_retry("passcode_no_verdict")
            if verdict:
                if account.passcode != code:
                    self.account_store.update_passcode(account.account_id, code)
                    account.passcode = code
                logger.info(f"✓ [{account.account_id}] Passcode accepted")
                return FlowResult.from_browser(driver)
            if code == account.passcode:
                # a stored code that is refused is never submitted again
                logger.error(f"✗ [{account.account_id}] Stored passcode rejected")
                return FlowResult.failed("passcode_rejected")
            logger.warning(f"[{account.account_id}] Derived passcode refused, trying alternate")
        return FlowResult.failed("passcode_rejected")
