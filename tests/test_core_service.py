"""
Core service facade and the Excel bet ledger
"""
import pytest

from auth.login_flow import LoginStateMachine
from crown.error_codes import SessionInvalidError
from crown.models import BetCategory, BetIntent, BetReceipt, Scope, WireVariant
from services.bet_pipeline import BetPipeline
from services.core_service import CoreService
from tracking.bet_ledger import LEDGER_COLUMNS, BetLedger, ledger_row

from conftest import FakeHttpSession, xml

GAME_LIST = ("<serverresponse><ec id=\"e1\"><game id=\"9001\"><GID>9001</GID><LEAGUE>Premier League</LEAGUE>"
             "<TEAM_H>Arsenal</TEAM_H><TEAM_C>Chelsea</TEAM_C></game>"
             "<game id=\"9002\"><GID>9002</GID><LEAGUE>Serie A</LEAGUE></game></ec></serverresponse>")


@pytest.fixture
def core(make_registry, account_store, clock, tmp_path):
    http = FakeHttpSession({
        "chk_login": xml(status="200", msg="100", uid="uid-1"),
        "get_game_list": GAME_LIST,
        "FT_order_view": xml(code="501", ioratio="0.95", con="0.5"),
        "FT_bet": xml(code="560", ticket_id="T-1"),
    })
    registry = make_registry(http_session=http)
    login_flow = LoginStateMachine(registry, account_store, clock=clock, sleep=clock.sleep)
    return CoreService(account_store, registry, login_flow, BetPipeline(registry),
                       bet_ledger=BetLedger(str(tmp_path / "ledger" / "bets.xlsx")))


def _intent(**overrides):
    values = dict(match_id="9001", category=BetCategory.HANDICAP, scope=Scope.FULL, side="home",
                  stake=100, requested_line="0.5")
    values.update(overrides)
    return BetIntent(**values)


class TestCoreService:
    def test_ensure_session_reuses_a_live_session(self, core):
        first = core.ensure_session("1")
        assert first.success
        again = core.ensure_session("1")
        assert again.session is first.session
        assert core.online_accounts() == ["1"]

    def test_logout_is_local(self, core):
        core.login("1")
        core.logout("1")
        assert not core.is_online("1")

    def test_unknown_account(self, core):
        with pytest.raises(KeyError):
            core.login("99")

    def test_direct_snapshot_with_filter(self, core):
        core.login("1")
        snapshot = core.fetch_snapshot("1", {"showtype": "today", "match_ids": ["9002"]})
        assert snapshot["matchCount"] == 1
        assert snapshot["matches"][0]["league"] == "Serie A"
        assert snapshot["breakdown"] == {"today": 1}

    def test_snapshot_needs_a_session(self, core):
        with pytest.raises(SessionInvalidError):
            core.fetch_snapshot("1")

    def test_bets_are_recorded(self, core):
        core.login("1")
        receipt = core.resolve_and_place_bet("1", _intent())
        assert receipt.success
        failed = core.resolve_and_place_bet("1", _intent(stake=5))
        assert not failed.success
        rows = core.bet_ledger.read_all()
        assert [row["Success"] for row in rows] == [True, False]
        assert rows[0]["Ticket_ID"] == "T-1"
        assert rows[1]["Error_Code"] == "STAKE_OUT_OF_RANGE"

    def test_bet_for_unknown_account(self, core):
        receipt = core.resolve_and_place_bet("99", _intent())
        assert receipt.error_code == "INVALID_INTENT"


class TestLedger:
    def test_row_shape(self):
        receipt = BetReceipt(True, ticket_id="T-7", confirmed_price=0.9, confirmed_line="0.5",
                             variant=WireVariant("RE", "REH", "REC"), stake=100)
        row = ledger_row("1", _intent(spread_match_id="7777"), receipt)
        assert list(row) == LEDGER_COLUMNS
        assert row["Match_ID"] == "7777"
        assert row["Wtype"] == "RE"
        assert row["Error_Kind"] is None

    def test_empty_ledger(self, tmp_path):
        assert BetLedger(str(tmp_path / "none.xlsx")).read_all() == []
