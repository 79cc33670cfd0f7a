"""
Browser Login Driver
Playwright-driven login page used only for passcode and credential-change prompts
"""
import logging
import time
from typing import Optional, Tuple

from playwright.sync_api import Error as PlaywrightError
from playwright.sync_api import TimeoutError as PlaywrightTimeoutError
from playwright.sync_api import sync_playwright

from auth.credential_change import CredentialFormShape
from auth.outcomes import PasscodeShape
from crown.client import get_proxies, user_agent_for
from crown.models import Account

logger = logging.getLogger("CrownBot")

# Login page selectors
USERNAME_INPUT = "#usr"
PASSWORD_INPUT = "#pwd"
LOGIN_BUTTON = "#btn_login"

# Post-login prompts
PROMPT_CONFIRM = "#C_yes_btn, #alert_kick .btn_submit, .btn_confirm"
PASSCODE_INPUTS = "input[type='password'][maxlength='4'], input.passcode_input"
PASSCODE_KEYPAD = ".keypad_num, #keypad .num"
PASSCODE_SUBMIT = "#passcode_submit, .passcode .btn_submit"
PASSCODE_ERROR = ".passcode_error, #passcode_err"
NEW_LOGIN_ID_INPUT = "#chk_name, input[name='username_new']"
NEW_PASSWORD_INPUTS = "#password_new, #password_re, input[name='password_new']"
CREDENTIAL_SUBMIT = "#greenBtn, .chg_submit"
CREDENTIAL_ERROR = "#chg_err, .chg_error"
HOME_MARKER = "#home_show, #acc_credit, .member_box"


class PlaywrightLoginDriver:
    """
    One headless browser session for one account.

    Every wait is a bounded Playwright wait, so each method returns (or
    raises) within its timeout; the login state machine sees plain calls.
    """

    def __init__(self, base_url: str, headless: bool = True, timeout_ms: int = 15000,
                 result_timeout: float = 10.0):
        """
        Initialize browser driver

        Args:
            base_url: Platform site root
            headless: Run Chromium headless
            timeout_ms: Navigation/selector timeout
            result_timeout: Seconds to wait for a passcode/credential verdict
        """
        self.base_url = base_url.rstrip("/")
        self.headless = headless
        self.timeout_ms = timeout_ms
        self.result_timeout = result_timeout
        self._playwright = None
        self._browser = None
        self._context = None
        self.page = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def open(self, account: Account):
        """Launch the browser and submit the account's credentials"""
        self._playwright = sync_playwright().start()
        launch_args = {"headless": self.headless}
        proxies = get_proxies(account.proxy_url)
        if proxies:
            launch_args["proxy"] = {"server": proxies["https"]}
        self._browser = self._playwright.chromium.launch(**launch_args)
        self._context = self._browser.new_context(user_agent=user_agent_for(account.device_type),
                                                  locale="zh-CN")
        self.page = self._context.new_page()
        self.page.goto(f"{self.base_url}/", wait_until="domcontentloaded", timeout=self.timeout_ms)
        self.page.fill(USERNAME_INPUT, account.username)
        self.page.fill(PASSWORD_INPUT, account.password)
        self.page.click(LOGIN_BUTTON)
        self.page.wait_for_load_state("networkidle", timeout=self.timeout_ms)
        logger.info(f"[{account.account_id}] Browser login submitted")

    def close(self):
        for closer in (self._context, self._browser):
            if closer is not None:
                try:
                    closer.close()
                except PlaywrightError as e:
                    logger.debug(f"Browser close: {e}")
        if self._playwright is not None:
            self._playwright.stop()
        self._context = self._browser = self._playwright = self.page = None

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _visible(self, selector: str) -> int:
        return sum(1 for handle in self.page.query_selector_all(selector) if handle.is_visible())

    def _wait_verdict(self, error_selector: str, done_check) -> Optional[bool]:
        deadline = time.monotonic() + self.result_timeout
        while time.monotonic() < deadline:
            if self._visible(error_selector):
                return False
            if done_check():
                return True
            self.page.wait_for_timeout(250)
        return None

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    def acknowledge_prompt(self):
        """Dismiss a blocking alert (e.g. "logged in elsewhere")"""
        try:
            self.page.click(PROMPT_CONFIRM, timeout=self.timeout_ms)
            self.page.wait_for_load_state("networkidle", timeout=self.timeout_ms)
        except PlaywrightTimeoutError:
            logger.debug("No prompt to acknowledge")

    def is_authenticated(self) -> bool:
        return self._visible(HOME_MARKER) > 0

    def detect_passcode_shape(self) -> Optional[PasscodeShape]:
        blank = [h for h in self.page.query_selector_all(PASSCODE_INPUTS)
                 if h.is_visible() and not h.input_value()]
        if len(blank) >= 2:
            return PasscodeShape.SETUP
        if len(blank) == 1:
            return PasscodeShape.INPUT
        if self._visible(PASSCODE_KEYPAD):
            return PasscodeShape.KEYPAD
        return None

    def enter_passcode(self, shape: PasscodeShape, code: str):
        if shape == PasscodeShape.KEYPAD:
            for digit in code:
                self.page.click(f"{PASSCODE_KEYPAD.split(',')[0]}[data-val='{digit}']")
            return
        inputs = [h for h in self.page.query_selector_all(PASSCODE_INPUTS) if h.is_visible()]
        for handle in inputs[:2 if shape == PasscodeShape.SETUP else 1]:
            handle.fill(code)
        self.page.click(PASSCODE_SUBMIT)

    def wait_for_passcode_result(self) -> Optional[bool]:
        return self._wait_verdict(PASSCODE_ERROR, self.is_authenticated)

    def detect_credential_form(self) -> Optional[CredentialFormShape]:
        has_login_id = self._visible(NEW_LOGIN_ID_INPUT) > 0
        has_password = self._visible(NEW_PASSWORD_INPUTS) > 0
        if has_login_id and has_password:
            return CredentialFormShape.COMBINED
        if has_login_id:
            return CredentialFormShape.LOGIN_ID_ONLY
        if has_password:
            return CredentialFormShape.PASSWORD_ONLY
        return None

    def submit_credentials(self, shape: CredentialFormShape, username: str, password: str):
        if shape in (CredentialFormShape.LOGIN_ID_ONLY, CredentialFormShape.COMBINED):
            self.page.fill(NEW_LOGIN_ID_INPUT, username)
        if shape in (CredentialFormShape.PASSWORD_ONLY, CredentialFormShape.COMBINED):
            for handle in self.page.query_selector_all(NEW_PASSWORD_INPUTS):
                if handle.is_visible():
                    handle.fill(password)
        self.page.click(CREDENTIAL_SUBMIT)

    def wait_for_credential_result(self) -> Optional[bool]:
        return self._wait_verdict(CREDENTIAL_ERROR, lambda: self.detect_credential_form() is None)

    # ------------------------------------------------------------------
    # Session export
    # ------------------------------------------------------------------

    def export_session(self) -> Tuple[Optional[str], str]:
        """Server-issued uid and the cookie header of the browser session"""
        uid = None
        try:
            uid = self.page.evaluate("() => (window.top && window.top.uid) || null")
        except PlaywrightError as e:
            logger.debug(f"Could not read uid from page: {e}")
        cookies = self._context.cookies()
        cookie_header = "; ".join(f"{c['name']}={c['value']}" for c in cookies)
        return uid, cookie_header


def make_driver_factory(base_url: str, headless: bool = True, timeout_ms: int = 15000):
    """Factory the login state machine calls when a prompt needs a browser"""
    def factory(account: Account) -> PlaywrightLoginDriver:
        return PlaywrightLoginDriver(base_url, headless=headless, timeout_ms=timeout_ms)
    return factory
