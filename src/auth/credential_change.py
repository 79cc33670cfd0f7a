"""
Credential Change Handler
Handles the platform's forced login-id / password change and verifies the result
"""
import logging
import secrets
import string
from enum import Enum
from typing import Optional, Tuple

from auth.outcomes import FlowResult, LoginOutcome, classify_login
from crown import codec
from crown.error_codes import CrownError
from crown.models import Account

logger = logging.getLogger("CrownBot")


class CredentialFormShape(Enum):
    """Forced-change form layouts"""
    LOGIN_ID_ONLY = "login_id_only"
    PASSWORD_ONLY = "password_only"
    COMBINED = "combined"


def generate_password(length: int = 10) -> str:
    """Random letters+digits password, always holding at least one of each"""
    alphabet = string.ascii_letters + string.digits
    while True:
        password = "".join(secrets.choice(alphabet) for _ in range(length))
        if any(c.isalpha() for c in password) and any(c.isdigit() for c in password):
            return password


class CredentialChangeHandler:
    """
    Credential-change sub-flow of the login state machine.

    The change is submitted through the login driver when it shows the form,
    otherwise over plain HTTP. Either way the new credentials are verified by
    logging in with them, and only then written back to the account store.
    """

    def __init__(self, account_store):
        self.account_store = account_store

    def _targets(self, account: Account) -> Tuple[str, str]:
        username = account.new_username or account.username
        password = account.new_password or generate_password()
        return username, password

    def _change_via_driver(self, account: Account, driver, username: str,
                           password: str) -> Tuple[Optional[bool], str, str]:
        shape = driver.detect_credential_form()
        if shape is None:
            return None, username, password
        if shape == CredentialFormShape.PASSWORD_ONLY:
            username = account.username
        elif shape == CredentialFormShape.LOGIN_ID_ONLY:
            password = account.password
        logger.info(f"[{account.account_id}] Credential form: {shape.value}")
        driver.submit_credentials(shape, username, password)
        return driver.wait_for_credential_result(), username, password

    def _change_via_http(self, account: Account, client, username: str,
                         password: str) -> Tuple[Optional[bool], str, str]:
        if not client.uid:
            logger.error(f"[{account.account_id}] Credential change needs a session id, none issued")
            return False, username, password

        if username != account.username:
            ok, error = client.change_username(username)
            if not ok:
                if not codec.already_initialised(error):
                    logger.error(f"✗ [{account.account_id}] Login id change rejected: {error}")
                    return False, username, password
                logger.info(f"[{account.account_id}] Login id already set, keeping {account.username}")
                username = account.username

        ok, error = client.change_password(password, username=username)
        if not ok:
            if not codec.already_initialised(error):
                logger.error(f"✗ [{account.account_id}] Password change rejected: {error}")
                return False, username, password
            logger.info(f"[{account.account_id}] Password already set, keeping the stored one")
            password = account.password
        return True, username, password

    def run(self, account: Account, client, driver=None) -> FlowResult:
        """
        Change credentials, then verify by logging in with them

        Args:
            account: Account being logged in
            client: The account's AccountClient
            driver: Optional login driver showing the change form

        Returns:
            FlowResult; a verified login that immediately asks for a passcode
            succeeds with follow_up=PASSCODE_CHALLENGE
        """
        username, password = self._targets(account)
        try:
            changed = None
            if driver is not None:
                changed, username, password = self._change_via_driver(account, driver, username, password)
            if changed is None:
                changed, username, password = self._change_via_http(account, client, username, password)
            if changed is None:
                return FlowResult.needs_retry("credential_change_no_verdict")
            if not changed:
                return FlowResult.failed("credential_change_rejected")

            response = client.login(username, password)
        except CrownError as e:
            logger.error(f"✗ [{account.account_id}] Credential change interrupted: {e}")
            return FlowResult.needs_retry(f"credential_change_{e.kind.value}")

        outcome, reason = classify_login(response)
        if outcome not in (LoginOutcome.SUCCESS, LoginOutcome.PASSCODE_CHALLENGE):
            logger.error(f"✗ [{account.account_id}] New credentials did not verify: "
                         f"{outcome.value if outcome else 'no outcome'} {reason or ''}")
            if outcome is None:
                return FlowResult.needs_retry("credential_verify_inconclusive")
            return FlowResult.failed("credential_verify_failed")

        self.account_store.update_credentials(account.account_id, username, password)
        account.username = username
        account.password = password
        account.new_username = None
        account.new_password = None

        if outcome == LoginOutcome.PASSCODE_CHALLENGE:
            return FlowResult.success(follow_up=LoginOutcome.PASSCODE_CHALLENGE,
                                      follow_up_response=response)
        return FlowResult.success(uid=client.uid, cookie_header=client.export_cookie_header())
