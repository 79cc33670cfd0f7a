"""
Bet pipeline: variant fallback, retries, session abort, line and price checks
"""
import pytest

from crown.error_codes import CrownError, ErrorKind, NetworkError, ProtocolError, SessionInvalidError
from crown.models import BetCategory, BetIntent, BetReceipt, OddsQuote, Scope, WireVariant
from services.bet_pipeline import BetPipeline
from services.retry_policy import RetryPolicy

from conftest import FakeHttpSession, xml


def _quote(wtype, price=0.95, line="0.5", min_stake=None, max_stake=None):
    variant = WireVariant(wtype, home_rtype=f"{wtype}H", away_rtype=f"{wtype}C")
    return OddsQuote(variant, f"{wtype}H", "H", price, line_token=line,
                     min_stake=min_stake, max_stake=max_stake)


class FakeBetClient:
    """Quotes scripted per wtype; a list is consumed in order, its last entry repeats"""

    def __init__(self, quotes, bet_error=None):
        self.uid = "uid-1"
        self.quotes = {wtype: list(results) for wtype, results in quotes.items()}
        self.bet_error = bet_error
        self.quote_calls = []
        self.bets = []

    def export_cookie_header(self):
        return "sid=1"

    def logout(self):
        self.uid = None

    def get_latest_odds(self, gid, gtype, variant, rtype, chose_team, line=None):
        self.quote_calls.append(variant.wtype)
        results = self.quotes[variant.wtype]
        result = results.pop(0) if len(results) > 1 else results[0]
        if isinstance(result, Exception):
            raise result
        return result

    def place_bet(self, gid, gtype, quote, stake, min_stake=50):
        self.bets.append((gid, quote, stake))
        if self.bet_error is not None:
            raise self.bet_error
        return BetReceipt(True, ticket_id="T-1", confirmed_price=quote.price,
                          confirmed_line=quote.line_token, variant=quote.variant, stake=stake)


@pytest.fixture
def setup(make_registry, account):
    """client -> (pipeline, registry, sleeps) with the account online"""
    def factory(client):
        registry = make_registry(client_factory=lambda acc: client)
        registry.establish(account, registry.client_for(account))
        sleeps = []
        pipeline = BetPipeline(registry, RetryPolicy(retry_delay=0.2), sleep=sleeps.append)
        return pipeline, registry, sleeps
    return factory


def _intent(**overrides):
    values = dict(match_id="9001", category=BetCategory.HANDICAP, scope=Scope.FULL, side="home",
                  stake=100, requested_line="0.5", expected_price=2.0, live=True)
    values.update(overrides)
    return BetIntent(**values)


class TestFallback:
    def test_closed_live_market_falls_back_to_prematch_family(self, setup):
        client = FakeBetClient({"RE": [CrownError.from_code("555")], "R": [_quote("R", price=0.97)]})
        pipeline, _, sleeps = setup(client)
        receipt = pipeline.run("1", _intent())
        assert receipt.success
        assert client.quote_calls == ["RE", "RE", "RE", "R"]
        assert sleeps == [0.2, 0.2]
        assert receipt.confirmed_price == 0.97
        assert len(client.bets) == 1

    def test_unknown_error_moves_on_without_retry(self, setup):
        client = FakeBetClient({"RE": [ProtocolError()], "R": [_quote("R")]})
        pipeline, _, sleeps = setup(client)
        assert pipeline.run("1", _intent()).success
        assert client.quote_calls == ["RE", "R"]
        assert sleeps == []

    def test_network_error_recovers_on_retry(self, setup):
        client = FakeBetClient({"RE": [NetworkError("TIMEOUT"), _quote("RE")]})
        pipeline, _, _ = setup(client)
        assert pipeline.run("1", _intent()).success
        assert client.quote_calls == ["RE", "RE"]

    def test_session_invalid_aborts_everything(self, setup):
        client = FakeBetClient({"RE": [SessionInvalidError("1X014")], "R": [_quote("R")]})
        pipeline, registry, _ = setup(client)
        receipt = pipeline.run("1", _intent())
        assert not receipt.success
        assert receipt.error_kind == ErrorKind.SESSION_INVALID
        assert client.quote_calls == ["RE"]
        assert client.bets == []
        assert not registry.is_online("1")

    def test_limit_aborts_without_fallback(self, setup):
        client = FakeBetClient({"RE": [CrownError.from_code("1X008")], "R": [_quote("R")]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent())
        assert receipt.error_kind == ErrorKind.LIMIT
        assert client.quote_calls == ["RE"]

    def test_all_variants_closed(self, setup):
        client = FakeBetClient({"RE": [CrownError.from_code("555")], "R": [CrownError.from_code("1X001")]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent())
        assert receipt.error_kind == ErrorKind.MARKET_CLOSED
        assert receipt.error_code == "1X001"
        assert len(client.quote_calls) == 6


class TestChecks:
    def test_line_mismatch_is_flagged_but_placed(self, setup):
        client = FakeBetClient({"RE": [_quote("RE", line="0 / 0.5")]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent(requested_line="0"))
        assert receipt.success
        assert receipt.line_mismatch is True

    def test_line_change_refused_when_not_allowed(self, setup):
        client = FakeBetClient({"RE": [_quote("RE", line="0 / 0.5")]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent(requested_line="0", allow_line_change=False))
        assert receipt.error_code == "LINE_CHANGED"
        assert receipt.error_kind == ErrorKind.ODDS_CHANGED
        assert client.bets == []

    def test_price_below_minimum(self, setup):
        client = FakeBetClient({"RE": [_quote("RE", price=0.80)]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent(min_price=0.9))
        assert receipt.error_code == "PRICE_BELOW_MIN"
        assert client.bets == []

    def test_stake_above_quoted_maximum(self, setup):
        client = FakeBetClient({"RE": [_quote("RE", max_stake=500)]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent(stake=1000))
        assert receipt.error_code == "STAKE_OUT_OF_RANGE"
        assert client.bets == []

    def test_stake_below_platform_minimum_never_quotes(self, setup):
        client = FakeBetClient({"RE": [_quote("RE")]})
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent(stake=10))
        assert receipt.error_kind == ErrorKind.VALIDATION
        assert client.quote_calls == []

    def test_invalid_side(self, setup):
        pipeline, _, _ = setup(FakeBetClient({}))
        receipt = pipeline.run("1", _intent(side="over"))
        assert receipt.error_code == "INVALID_INTENT"

    def test_offline_account(self, make_registry):
        pipeline = BetPipeline(make_registry())
        receipt = pipeline.run("1", _intent())
        assert receipt.error_kind == ErrorKind.SESSION_INVALID
        assert receipt.error_code == "NOT_LOGGED_IN"


class TestSubmission:
    def test_network_failure_on_submit_is_not_resubmitted(self, setup):
        client = FakeBetClient({"RE": [_quote("RE")]}, bet_error=NetworkError("TIMEOUT"))
        pipeline, _, _ = setup(client)
        receipt = pipeline.run("1", _intent())
        assert receipt.error_kind == ErrorKind.NETWORK
        assert len(client.bets) == 1

    def test_submitted_price_is_the_quoted_one(self, make_registry, account):
        http = FakeHttpSession({
            "FT_order_view": xml(code="501", ioratio="0.960", con="0.5", gold_gmin="50", gold_gmax="5000"),
            "FT_bet": xml(code="560", ticket_id="T-9", ioratio="0.960", gold="100"),
        })
        registry = make_registry(http_session=http)
        client = registry.client_for(account)
        client.restore_session("uid-1", "sid=1")
        registry.establish(account, client)

        receipt = BetPipeline(registry).run("1", _intent(expected_price=2.0))
        assert receipt.success
        assert receipt.ticket_id == "T-9"
        bet = http.posted("FT_bet")
        assert len(bet) == 1
        assert bet[0]["ioratio"] == "0.960"
        assert (bet[0]["wtype"], bet[0]["rtype"], bet[0]["con"]) == ("RE", "REH", "0.5")
