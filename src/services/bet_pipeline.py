"""
Bet Resolution Pipeline
Resolves a bet intent to a wire variant, quotes it fresh and submits exactly once
"""
import logging
import time
from typing import Callable, List, Optional, Tuple

from crown import codec
from crown.error_codes import CrownError, ErrorKind, SessionInvalidError, classify
from crown.market_parser import lines_match, parse_line_value
from crown.models import BetIntent, BetReceipt, OddsQuote, WireVariant
from services.retry_policy import RetryAction, RetryPolicy
from services.variants import ResolvedVariant, resolve_variants
from session.registry import SessionRegistry

logger = logging.getLogger("CrownBot")


def failure_receipt(kind: ErrorKind, code: str, detail: Optional[str] = None,
                    variant: Optional[WireVariant] = None,
                    stake: Optional[float] = None) -> BetReceipt:
    return BetReceipt(success=False, error_kind=kind, error_code=code,
                      error_detail=detail or classify(code)[1], variant=variant, stake=stake)


def receipt_from_error(error: CrownError, variant: Optional[WireVariant] = None,
                       stake: Optional[float] = None) -> BetReceipt:
    return failure_receipt(error.kind, error.code or error.kind.value, error.message, variant, stake)


class BetPipeline:
    """
    Quote-then-submit for one bet intent.

    Quotes go variant by variant with retries decided by RetryPolicy; a
    session-invalid signal stops everything. The bet is submitted once, with
    the winning quote's own price and line.
    """

    def __init__(self, registry: SessionRegistry, retry_policy: Optional[RetryPolicy] = None,
                 min_stake: float = codec.MIN_STAKE,
                 line_tolerance: float = 0.01,
                 sleep: Callable[[float], None] = time.sleep):
        """
        Initialize bet pipeline

        Args:
            registry: Session registry the account client is acquired from
            retry_policy: Retry decisions for failed quotes
            min_stake: Platform's absolute minimum stake
            line_tolerance: Allowed difference between requested and quoted line
            sleep: Sleep function used between quote retries
        """
        self.registry = registry
        self.retry_policy = retry_policy or RetryPolicy()
        self.min_stake = min_stake
        self.line_tolerance = line_tolerance
        self.sleep = sleep

    def run(self, account_id: str, intent: BetIntent) -> BetReceipt:
        """
        Resolve and place one bet

        Returns:
            BetReceipt; failures carry the mapped ErrorKind and the raw token
        """
        # Validate the intent before touching the network
        try:
            candidates = resolve_variants(intent)
        except ValueError as e:
            return failure_receipt(ErrorKind.VALIDATION, "INVALID_INTENT", str(e), stake=intent.stake)
        if not intent.stake or intent.stake < self.min_stake:
            return failure_receipt(ErrorKind.VALIDATION, "STAKE_OUT_OF_RANGE",
                                   f"Stake {intent.stake} below the minimum {self.min_stake}",
                                   stake=intent.stake)

        try:
            client = self.registry.acquire(account_id)
        except SessionInvalidError as e:
            return receipt_from_error(e, stake=intent.stake)

        # Fresh quote, never a cached one
        quote, error = self._quote(account_id, client, intent, candidates)
        if quote is None:
            logger.error(f"✗ [{account_id}] No usable quote for {intent.target_match_id}: {error}")
            return receipt_from_error(error, candidates[-1].variant if candidates else None, intent.stake)

        # Price floor and stake range are checked against the quote, not the intent
        refusal = self._check_quote(intent, quote)
        if refusal is not None:
            return refusal
        line_mismatch = self._line_mismatch(intent, quote)
        if line_mismatch and not intent.allow_line_change:
            return failure_receipt(ErrorKind.ODDS_CHANGED, "LINE_CHANGED",
                                   f"Line moved from {intent.requested_line} to {quote.line_token}",
                                   quote.variant, intent.stake)

        # Submit exactly once, with the quote's price and line
        try:
            receipt = client.place_bet(intent.target_match_id, intent.gtype, quote, intent.stake,
                                       min_stake=self.min_stake)
        except SessionInvalidError as e:
            self.registry.invalidate(account_id, f"bet: {e.code}")
            return receipt_from_error(e, quote.variant, intent.stake)
        except CrownError as e:
            # never resubmitted; a network failure here leaves the outcome unknown
            logger.error(f"✗ [{account_id}] Bet submission failed: {e}")
            return receipt_from_error(e, quote.variant, intent.stake)

        receipt.line_mismatch = line_mismatch
        if receipt.success:
            logger.info(f"✓ [{account_id}] Bet placed: ticket {receipt.ticket_id} @ {receipt.confirmed_price}")
        else:
            logger.warning(f"✗ [{account_id}] Bet rejected: {receipt.error_code} ({receipt.error_detail})")
        return receipt

    # ------------------------------------------------------------------

    def _quote(self, account_id: str, client, intent: BetIntent,
               candidates: List[ResolvedVariant]) -> Tuple[Optional[OddsQuote], Optional[CrownError]]:
        """First usable quote across the fallback list"""
        last_error: Optional[CrownError] = None
        for candidate in candidates:
            attempt = 0
            while True:
                attempt += 1
                try:
                    quote = client.get_latest_odds(intent.target_match_id, intent.gtype, candidate.variant,
                                                   candidate.rtype, candidate.chose_team, intent.requested_line)
                    logger.info(f"[{account_id}] Quote {candidate.variant.wtype}/{candidate.rtype}: "
                                f"{quote.price} @ {quote.line_token}")
                    return quote, None
                except SessionInvalidError as e:
                    self.registry.invalidate(account_id, f"quote: {e.code}")
                    return None, e
                except CrownError as e:
                    last_error = e
                    decision = self.retry_policy.decide(e.kind, attempt)
                    logger.warning(f"[{account_id}] Quote {candidate.variant.wtype} attempt {attempt} failed "
                                   f"({e.kind.value} {e.code}): {decision.action.value}")
                    if decision.action == RetryAction.ABORT:
                        return None, e
                    if decision.action == RetryAction.NEXT_VARIANT:
                        break
                    self.sleep(decision.delay)
        return None, last_error

    def _check_quote(self, intent: BetIntent, quote: OddsQuote) -> Optional[BetReceipt]:
        if intent.min_price is not None and quote.price < intent.min_price:
            return failure_receipt(ErrorKind.ODDS_CHANGED, "PRICE_BELOW_MIN",
                                   f"Price {quote.price} below the requested minimum {intent.min_price}",
                                   quote.variant, intent.stake)
        low = max(self.min_stake, quote.min_stake or 0)
        if intent.stake < low or (quote.max_stake and intent.stake > quote.max_stake):
            return failure_receipt(ErrorKind.VALIDATION, "STAKE_OUT_OF_RANGE",
                                   f"Stake {intent.stake} outside {low}-{quote.max_stake or 'unbounded'}",
                                   quote.variant, intent.stake)
        return None

    def _line_mismatch(self, intent: BetIntent, quote: OddsQuote) -> bool:
        if intent.requested_line is None or parse_line_value(intent.requested_line) is None:
            return False
        return not lines_match(intent.requested_line, quote.line_token, self.line_tolerance)
