"""
Error table, retry decisions and variant resolution
"""
import pytest

from crown.error_codes import (CrownError, ErrorKind, NetworkError, SessionInvalidError,
                               classify, format_error)
from crown.models import BetCategory, BetIntent, Scope
from services.retry_policy import RetryAction, RetryDecision, RetryPolicy
from services.variants import resolve_variants, side_token


class TestErrorTable:
    @pytest.mark.parametrize("code, kind", [
        ("0X001", ErrorKind.NETWORK),
        ("555", ErrorKind.MARKET_CLOSED),
        ("1X001", ErrorKind.MARKET_CLOSED),
        ("1x004", ErrorKind.VALIDATION),
        ("1X008", ErrorKind.LIMIT),
        ("1X005", ErrorKind.ODDS_CHANGED),
        ("1X014", ErrorKind.SESSION_INVALID),
        ("DOUBLE_LOGIN", ErrorKind.SESSION_INVALID),
        ("9Z999", ErrorKind.OTHER),
        (None, ErrorKind.OTHER),
    ])
    def test_classify(self, code, kind):
        assert classify(code)[0] == kind

    def test_from_code_picks_the_exception_type(self):
        assert isinstance(CrownError.from_code("0X002"), NetworkError)
        assert isinstance(CrownError.from_code("1X014"), SessionInvalidError)
        closed = CrownError.from_code("555")
        assert type(closed) is CrownError and closed.kind == ErrorKind.MARKET_CLOSED

    def test_format_error_keeps_the_token(self):
        assert format_error("1X008").startswith("[1X008]")
        assert format_error("weird", "platform said no") == "platform said no"


class TestRetryPolicy:
    def setup_method(self):
        self.policy = RetryPolicy(retry_delay=0.5)

    def test_market_closed_gets_three_attempts(self):
        assert self.policy.decide(ErrorKind.MARKET_CLOSED, 1) == RetryDecision(RetryAction.RETRY, 0.5)
        assert self.policy.decide(ErrorKind.MARKET_CLOSED, 2).action == RetryAction.RETRY
        assert self.policy.decide(ErrorKind.MARKET_CLOSED, 3).action == RetryAction.NEXT_VARIANT

    def test_network_gets_two_attempts(self):
        assert self.policy.decide(ErrorKind.NETWORK, 1).action == RetryAction.RETRY
        assert self.policy.decide(ErrorKind.NETWORK, 2).action == RetryAction.NEXT_VARIANT

    def test_other_moves_on_immediately(self):
        assert self.policy.decide(ErrorKind.OTHER, 1).action == RetryAction.NEXT_VARIANT

    @pytest.mark.parametrize("kind", [ErrorKind.SESSION_INVALID, ErrorKind.VALIDATION,
                                      ErrorKind.LIMIT, ErrorKind.ODDS_CHANGED])
    def test_terminal_kinds_abort(self, kind):
        assert self.policy.decide(kind, 1).action == RetryAction.ABORT

    def test_rules_can_be_overridden(self):
        policy = RetryPolicy(rules={ErrorKind.OTHER: (2, RetryAction.ABORT)})
        assert policy.decide(ErrorKind.OTHER, 1).action == RetryAction.RETRY
        assert policy.decide(ErrorKind.OTHER, 2).action == RetryAction.ABORT


class TestVariants:
    def test_live_handicap_tries_live_family_first(self):
        intent = BetIntent("9001", BetCategory.HANDICAP, Scope.FULL, "away", 100, live=True)
        variants = resolve_variants(intent)
        assert [(v.variant.wtype, v.rtype, v.chose_team) for v in variants] == [
            ("RE", "REC", "C"), ("R", "RC", "C")]

    def test_prematch_total_tries_prematch_family_first(self):
        intent = BetIntent("9001", BetCategory.OVER_UNDER, Scope.HALF, "over", 100, live=False)
        assert [v.rtype for v in resolve_variants(intent)] == ["HOUC", "HROUC"]

    def test_rtype_override_infers_wtype(self):
        intent = BetIntent("9001", BetCategory.MONEYLINE, Scope.FULL, "draw", 100, rtype="MN")
        assert [v.rtype for v in resolve_variants(intent)] == ["MN", "RMN"]

    def test_invalid_side(self):
        with pytest.raises(ValueError):
            side_token(BetCategory.HANDICAP, "draw")

    def test_side_is_case_insensitive(self):
        intent = BetIntent("9001", BetCategory.OVER_UNDER, Scope.FULL, "Under", 100, live=True)
        assert [v.rtype for v in resolve_variants(intent)] == ["ROUH", "OUH"]

    def test_rtype_for_side(self):
        variant = resolve_variants(BetIntent("9001", BetCategory.MONEYLINE, Scope.FULL, "home", 100))[0].variant
        assert variant.rtype_for("draw") == variant.wtype + "N"
        assert variant.rtype_for("over") is None
        with pytest.raises(ValueError):
            variant.rtype_for("left")
