"""
Market parsing: normalisation, merge precedence, bounds and ordering
"""
import json

import pytest

from crown.market_parser import (FieldMap, lines_match, merge_lines, merge_more_markets,
                                 parse_game_list, parse_line_value, parse_more_markets,
                                 sort_handicap_lines, to_iso_kickoff)
from crown.models import HandicapLine, MoreMarkets, WireVariant

GAME_LIST = """<?xml version="1.0" encoding="UTF-8"?>
<serverresponse>
  <ec id="ec100">
    <game id="9001">
      <GID>9001</GID><ECID>ec100</ECID><LID>55</LID>
      <LEAGUE>Premier League</LEAGUE>
      <TEAM_H>Arsenal</TEAM_H><TEAM_C>Chelsea</TEAM_C>
      <DATETIME>03-14 08:30p</DATETIME>
      <SCORE_H>1</SCORE_H><SCORE_C>0</SCORE_C>
      <RETIMESET>2H^63:10</RETIMESET>
      <R_COUNT>4</R_COUNT><OU_COUNT>3</OU_COUNT>
      <RATIO_RE>0 / 0.5</RATIO_RE><IOR_REH>0.92</IOR_REH><IOR_REC>0.96</IOR_REC>
      <RATIO_R>0.5</RATIO_R><IOR_RH>1.02</IOR_RH><IOR_RC>0</IOR_RC>
      <RATIO_ROUO>2.5</RATIO_ROUO><IOR_ROUC>0.88</IOR_ROUC><IOR_ROUH>1.00</IOR_ROUH>
      <RATIO_OUO>10.5</RATIO_OUO><IOR_OUC>0.90</IOR_OUC><IOR_OUH>0.90</IOR_OUH>
      <IOR_RMH>2.10</IOR_RMH><IOR_RMN>3.20</IOR_RMN><IOR_RMC>3.60</IOR_RMC>
      <RATIO_HRE>0</RATIO_HRE><IOR_HREH>0.85</IOR_HREH><IOR_HREC>1.05</IOR_HREC>
    </game>
    <game id="9001"><GID>9001</GID><LEAGUE>duplicate</LEAGUE></game>
  </ec>
  <ec id="ec200">
    <game id="9002">
      <GID>9002</GID><LEAGUE>Serie A</LEAGUE>
      <TEAM_H>Roma</TEAM_H><TEAM_C>Lazio</TEAM_C>
      <RUNNING>N</RUNNING>
      <RATIO_R>1</RATIO_R><IOR_RH>0</IOR_RH><IOR_RC></IOR_RC>
    </game>
  </ec>
</serverresponse>"""

MORE_MARKETS = """<serverresponse>
  <game id="a"><RATIO_R>1.5</RATIO_R><IOR_RH>1.10</IOR_RH><IOR_RC>0.80</IOR_RC>
    <RATIO_OUO>3</RATIO_OUO><IOR_OUC>0.95</IOR_OUC><IOR_OUH>0.91</IOR_OUH></game>
  <game id="b"><IOR_HRMH>2.9</IOR_HRMH><IOR_HRMN>2.0</IOR_HRMN><IOR_HRMC>4.1</IOR_HRMC></game>
  <game id="c" master="Y"><IOR_HRMH>3.0</IOR_HRMH><IOR_HRMN>2.1</IOR_HRMN><IOR_HRMC>4.0</IOR_HRMC></game>
  <game id="d" mode="CN"><ratio_o>9.5</ratio_o><IOR_CNOUH>0.90</IOR_CNOUH><IOR_CNOUC>0.92</IOR_CNOUC></game>
  <game id="e" mode="RN"><RATIO_R>0.25</RATIO_R><IOR_RH>0.70</IOR_RH><IOR_RC>1.20</IOR_RC></game>
</serverresponse>"""


def _dump(snapshots):
    return json.dumps([s.to_dict() for s in snapshots], sort_keys=True, ensure_ascii=False)


def _hdp(line, home, away, wtype="R", observed_at=0.0):
    return HandicapLine(line, home, away, WireVariant(wtype, home_rtype=f"{wtype}H", away_rtype=f"{wtype}C"),
                        observed_at)


class TestLineValues:
    def test_split_line_is_averaged(self):
        assert parse_line_value("0 / 0.5") == pytest.approx(0.25)
        assert parse_line_value("2.5/3") == pytest.approx(2.75)

    def test_leading_minus_negates_whole_split(self):
        assert parse_line_value("-0/0.5") == pytest.approx(-0.25)

    def test_blank_is_none(self):
        assert parse_line_value("") is None
        assert parse_line_value(None) is None

    def test_zero_versus_split_line_mismatch(self):
        assert not lines_match("0", "0 / 0.5", tolerance=0.01)
        assert lines_match("0.25", "0 / 0.5", tolerance=0.01)

    def test_nothing_requested_always_matches(self):
        assert lines_match(None, "1.5")


class TestGameList:
    def test_parse_is_deterministic(self):
        first = parse_game_list(GAME_LIST, showtype="live", observed_at=10.0, year=2025)
        second = parse_game_list(GAME_LIST, showtype="live", observed_at=10.0, year=2025)
        assert _dump(first) == _dump(second)

    def test_duplicate_events_are_dropped(self):
        snapshots = parse_game_list(GAME_LIST, showtype="live", observed_at=1.0)
        assert [s.match_id for s in snapshots] == ["9001", "9002"]
        assert snapshots[0].league == "Premier League"

    def test_event_fields(self):
        snapshot = parse_game_list(GAME_LIST, showtype="live", observed_at=1.0, year=2025)[0]
        assert (snapshot.home, snapshot.away) == ("Arsenal", "Chelsea")
        assert snapshot.score == "1-0"
        assert (snapshot.period, snapshot.clock) == ("2H", "63:10")
        assert snapshot.running is True
        assert snapshot.counts["handicap"] == 4
        assert snapshot.kickoff.startswith("2025-03-14T20:30")

    def test_both_handicap_families_are_probed(self):
        snapshot = parse_game_list(GAME_LIST, observed_at=1.0)[0]
        lines = {(l.wire_variant.wtype, l.line): l for l in snapshot.full.handicap_lines}
        assert ("RE", "0 / 0.5") in lines
        assert ("R", "0.5") in lines
        # zero odds mean no price
        assert lines[("R", "0.5")].away_odds is None
        assert lines[("RE", "0 / 0.5")].wire_variant.home_rtype == "REH"

    def test_lines_without_any_price_are_rejected(self):
        snapshot = parse_game_list(GAME_LIST, observed_at=1.0)[1]
        assert snapshot.full.handicap_lines == []

    def test_implausible_total_is_filtered(self):
        snapshot = parse_game_list(GAME_LIST, observed_at=1.0)[0]
        totals = [l.line for l in snapshot.full.over_under_lines]
        assert totals == ["2.5"]
        line = snapshot.full.over_under_lines[0]
        assert (line.over_odds, line.under_odds) == (0.88, 1.0)
        assert line.wire_variant.over_rtype == "ROUC"
        assert line.wire_variant.under_rtype == "ROUH"

    def test_moneyline_and_half(self):
        snapshot = parse_game_list(GAME_LIST, observed_at=1.0)[0]
        assert snapshot.full.moneyline.home == 2.10
        assert snapshot.full.moneyline.draw == 3.20
        assert snapshot.full.moneyline.wire_variant.wtype == "RM"
        assert [l.line for l in snapshot.half.handicap_lines] == ["0"]

    def test_handicap_order_is_by_absolute_line(self):
        lines = [_hdp("-1.5", 0.9, 0.9), _hdp("0.5", 0.9, 0.9), _hdp("-0.25", 0.9, 0.9)]
        assert [l.line for l in sort_handicap_lines(lines)] == ["-0.25", "0.5", "-1.5"]
        assert [l.line for l in sort_handicap_lines(lines, limit=2)] == ["-0.25", "0.5"]


class TestMoreMarkets:
    def test_corners_and_cards_stay_out_of_primary_markets(self):
        more = parse_more_markets(MORE_MARKETS, observed_at=5.0)
        assert [l.line for l in more.handicap_lines] == ["1.5"]
        assert [l.line for l in more.over_under_lines] == ["3"]
        assert [l.line for l in more.corner_over_under_lines] == ["9.5"]
        assert all(l.line != "0.25" for l in more.handicap_lines)

    def test_half_moneyline_prefers_master_entry(self):
        more = parse_more_markets(MORE_MARKETS, observed_at=5.0)
        assert more.half_moneyline.home == 3.0

    def test_merge_into_snapshot_respects_counts_and_corners(self):
        snapshot = parse_game_list(GAME_LIST, observed_at=1.0)[0]
        more = parse_more_markets(MORE_MARKETS, observed_at=5.0)
        merge_more_markets(snapshot, more)
        assert [l.line for l in snapshot.full.handicap_lines] == ["0 / 0.5", "0.5", "1.5"]
        assert [l.line for l in snapshot.full.over_under_lines] == ["2.5", "3"]
        assert [l.line for l in snapshot.corners.over_under_lines] == ["9.5"]
        assert snapshot.half.moneyline.home == 3.0

    def test_merging_empty_result_is_a_no_op(self):
        snapshot = parse_game_list(GAME_LIST, observed_at=1.0)[0]
        before = _dump([snapshot])
        merge_more_markets(snapshot, MoreMarkets())
        merge_more_markets(snapshot, None)
        assert _dump([snapshot]) == before


class TestMergePrecedence:
    def test_newer_non_empty_odds_win(self):
        older = [_hdp("0.5", 0.90, 0.95, observed_at=1.0)]
        newer = [_hdp("0.5", 0.88, None, observed_at=2.0)]
        merged = merge_lines(older, newer)
        assert len(merged) == 1
        assert (merged[0].home_odds, merged[0].away_odds) == (0.88, 0.95)

    def test_a_then_b_then_a_equals_a_then_b(self):
        a = [_hdp("0.5", 0.90, 0.95, observed_at=1.0), _hdp("1", 0.70, None, observed_at=1.0)]
        b = [_hdp("0.5", 0.86, None, observed_at=2.0), _hdp("1.5", 1.1, 0.8, observed_at=2.0)]
        ab = merge_lines(a, b)
        aba = merge_lines(ab, a)
        assert [l.to_dict() for l in aba] == [l.to_dict() for l in ab]

    def test_different_families_are_separate_keys(self):
        merged = merge_lines([_hdp("0.5", 0.9, 0.9, "R")], [_hdp("0.5", 0.8, 0.8, "RE")])
        assert sorted(l.wire_variant.wtype for l in merged) == ["R", "RE"]

    def test_empty_incoming_returns_existing(self):
        existing = [_hdp("0.5", 0.9, 0.9)]
        assert merge_lines(existing, []) == existing


class TestHelpers:
    def test_has_odds(self):
        assert _hdp("0.5", 0.9, None).has_odds()
        assert not _hdp("0.5", None, None).has_odds()

    def test_field_map_is_case_insensitive_and_skips_blanks(self):
        fields = FieldMap({"@id": "7", "ratio": "", "RATIO": "0.5"})
        assert fields.pick(["id"]) == "7"
        assert fields.pick(["ratio", "Ratio"]) == "0.5"
        assert fields.pick(["missing"]) is None

    def test_kickoff_with_pm_suffix(self):
        assert to_iso_kickoff("03-14 08:30p", 2025).startswith("2025-03-14T20:30")
