"""
Retry Policy Service
Decides, per error kind and attempt number, whether the bet pipeline retries, moves on or stops
"""
from enum import Enum
from typing import Dict, Optional, Tuple

from crown.error_codes import ErrorKind


class RetryAction(Enum):
    RETRY = "retry"                # same variant again after delay
    NEXT_VARIANT = "next_variant"  # give up on this variant, try the next one
    ABORT = "abort"                # stop the whole pipeline


class RetryDecision:
    def __init__(self, action: RetryAction, delay: float = 0.0):
        self.action = action
        self.delay = delay

    def __eq__(self, other):
        return isinstance(other, RetryDecision) and (self.action, self.delay) == (other.action, other.delay)

    def __repr__(self):
        return f"RetryDecision({self.action.value}, delay={self.delay})"


# kind -> (attempts allowed on one variant, action once they are used up)
DEFAULT_RULES: Dict[ErrorKind, Tuple[int, RetryAction]] = {
    ErrorKind.MARKET_CLOSED: (3, RetryAction.NEXT_VARIANT),
    ErrorKind.NETWORK: (2, RetryAction.NEXT_VARIANT),
    ErrorKind.OTHER: (1, RetryAction.NEXT_VARIANT),
    ErrorKind.SESSION_INVALID: (1, RetryAction.ABORT),
    ErrorKind.VALIDATION: (1, RetryAction.ABORT),
    ErrorKind.LIMIT: (1, RetryAction.ABORT),
    ErrorKind.ODDS_CHANGED: (1, RetryAction.ABORT),
}


class RetryPolicy:
    """Table-driven retry decisions for quote fetches"""

    def __init__(self, retry_delay: float = 1.0,
                 rules: Optional[Dict[ErrorKind, Tuple[int, RetryAction]]] = None):
        """
        Initialize retry policy

        Args:
            retry_delay: Fixed delay in seconds between attempts on one variant
            rules: Override of DEFAULT_RULES
        """
        self.retry_delay = retry_delay
        self.rules = dict(DEFAULT_RULES)
        if rules:
            self.rules.update(rules)

    def decide(self, kind: ErrorKind, attempt: int) -> RetryDecision:
        """
        Decide what follows a failed quote

        Args:
            kind: Classified error of the failed attempt
            attempt: 1-based number of the attempt that just failed

        Returns:
            RetryDecision
        """
        max_attempts, exhausted_action = self.rules.get(kind, DEFAULT_RULES[ErrorKind.OTHER])
        if attempt < max_attempts:
            return RetryDecision(RetryAction.RETRY, self.retry_delay)
        return RetryDecision(exhausted_action)
