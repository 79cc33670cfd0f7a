"""
Crown Market Parser
Normalizes the platform's market XML (game list and "more markets") into snapshots
"""
import logging
import re
import time
from datetime import datetime
from typing import Dict, Any, Optional, List, Iterable

from crown.codec import parse_xml, element_fields, odds_value
from crown.models import (MarketSnapshot, MoreMarkets, MoneylineQuote, HandicapLine,
                          OverUnderLine, WireVariant, Scope)

logger = logging.getLogger("CrownBot")

# Over/under lines above these averages are corner/booking totals leaking in
FULL_TOTAL_LIMIT = 6.0
HALF_TOTAL_LIMIT = 3.5

CORNER_MARKERS = ("角球",)
CARD_MARKERS = ("罰牌", "罚牌")


class FieldMap:
    """
    Case-insensitive view over one element's fields.

    Attribute fields ("@id") are also reachable by their bare name.
    """

    def __init__(self, fields: Dict[str, str]):
        self.fields = fields
        self._lower: Dict[str, str] = {}
        for key, value in fields.items():
            bare = key[1:] if key.startswith("@") else key
            lowered = bare.lower()
            if not str(self._lower.get(lowered) or "").strip():
                self._lower[lowered] = value

    def pick(self, aliases: Iterable[str]) -> Optional[str]:
        """Value of the first alias present with non-blank text"""
        for alias in aliases:
            value = self.fields.get(alias)
            if value is None:
                value = self._lower.get(alias.lstrip("@").lower())
            if value is not None and str(value).strip() != "":
                return str(value).strip()
        return None

    def has_any(self, aliases: Iterable[str]) -> bool:
        return self.pick(aliases) is not None


class LineFamily:
    """Alias table for one wire family of a two-sided line market"""

    def __init__(self, wtype: str, line_keys: List[str], first_keys: List[str],
                 second_keys: List[str], first_suffix: str, second_suffix: str):
        self.wtype = wtype
        self.line_keys = line_keys
        self.first_keys = first_keys
        self.second_keys = second_keys
        self.first_suffix = first_suffix
        self.second_suffix = second_suffix


class MoneylineFamily:
    def __init__(self, wtype: str, home_keys: List[str], draw_keys: List[str], away_keys: List[str]):
        self.wtype = wtype
        self.home_keys = home_keys
        self.draw_keys = draw_keys
        self.away_keys = away_keys

    def variant(self) -> WireVariant:
        return WireVariant(self.wtype, home_rtype=f"{self.wtype}H",
                           away_rtype=f"{self.wtype}C", draw_rtype=f"{self.wtype}N")


# Live family first, pre-match sibling second. Handicap: first=home, second=away.
HANDICAP_FAMILIES = {
    Scope.FULL.value: [
        LineFamily("RE", ["RATIO_RE"], ["IOR_REH"], ["IOR_REC"], "H", "C"),
        LineFamily("R", ["RATIO_R"], ["IOR_RH"], ["IOR_RC"], "H", "C"),
    ],
    Scope.HALF.value: [
        LineFamily("HRE", ["RATIO_HRE"], ["IOR_HREH"], ["IOR_HREC"], "H", "C"),
        LineFamily("HR", ["RATIO_HR"], ["IOR_HRH"], ["IOR_HRC"], "H", "C"),
    ],
}

# Over/under: first=over (…C), second=under (…H)
OVER_UNDER_FAMILIES = {
    Scope.FULL.value: [
        LineFamily("ROU", ["RATIO_ROUO", "RATIO_ROUU"], ["IOR_ROUC"], ["IOR_ROUH"], "C", "H"),
        LineFamily("OU", ["RATIO_OUO", "RATIO_OUU"], ["IOR_OUC"], ["IOR_OUH"], "C", "H"),
    ],
    Scope.HALF.value: [
        LineFamily("HROU", ["RATIO_HROUO", "RATIO_HROUU"], ["IOR_HROUC"], ["IOR_HROUH"], "C", "H"),
        LineFamily("HOU", ["RATIO_HOUO", "RATIO_HOUU"], ["IOR_HOUC"], ["IOR_HOUH"], "C", "H"),
    ],
}

# Unlabelled shorthand the "more markets" call uses; only trusted when no
# family token is present at all.
HANDICAP_SHORTHAND = {
    Scope.FULL.value: LineFamily("R", ["ratio"], ["IOR_RH"], ["IOR_RC"], "H", "C"),
    Scope.HALF.value: LineFamily("HR", ["hratio"], ["IOR_HRH"], ["IOR_HRC"], "H", "C"),
}
OVER_UNDER_SHORTHAND = {
    Scope.FULL.value: LineFamily("OU", ["ratio_o", "ratio_u"], ["IOR_OUC"], ["IOR_OUH"], "C", "H"),
    Scope.HALF.value: LineFamily("HOU", ["ratio_ho", "ratio_hu"], ["IOR_HOUC"], ["IOR_HOUH"], "C", "H"),
}

MONEYLINE_FAMILIES = {
    Scope.FULL.value: [
        MoneylineFamily("RM", ["IOR_RMH"], ["IOR_RMN", "IOR_RMD"], ["IOR_RMC"]),
        MoneylineFamily("M", ["IOR_MH"], ["IOR_MN"], ["IOR_MC"]),
    ],
    Scope.HALF.value: [
        MoneylineFamily("HRM", ["IOR_HRMH"], ["IOR_HRMN"], ["IOR_HRMC"]),
        MoneylineFamily("HM", ["IOR_HMH"], ["IOR_HMN"], ["IOR_HMC"]),
    ],
}

CORNER_HANDICAP = LineFamily("CNR", ["RATIO_CNRH", "RATIO_CNRC", "ratio"], ["IOR_CNRH"], ["IOR_CNRC"], "H", "C")
CORNER_OVER_UNDER = LineFamily("CNOU", ["RATIO_CNOUO", "RATIO_CNOUU", "ratio_o", "ratio_u"],
                               ["IOR_CNOUH"], ["IOR_CNOUC"], "H", "C")

HOME_KEYS = ["TEAM_H", "TEAM_H_CN", "TEAM_H_E", "TEAM_H_TW"]
AWAY_KEYS = ["TEAM_C", "TEAM_C_CN", "TEAM_C_E", "TEAM_C_TW"]


# --------------------------------------------------------------------------
# Line helpers
# --------------------------------------------------------------------------

_NUMBER = re.compile(r"\d+(?:\.\d+)?")


def parse_line_value(token: Optional[str]) -> Optional[float]:
    """
    Numeric value of a line token.

    Split lines ("0 / 0.5", "2.5/3") are averaged; a leading minus applies
    to the whole token ("-0/0.5" -> -0.25).
    """
    if token is None:
        return None
    text = str(token).strip()
    if not text:
        return None
    numbers = [float(n) for n in _NUMBER.findall(text)]
    if not numbers:
        return None
    value = sum(numbers) / len(numbers)
    return -value if text.startswith("-") else value


def lines_match(requested: Optional[str], returned: Optional[str], tolerance: float = 0.01) -> bool:
    """True when both tokens parse to values within tolerance (or nothing was requested)"""
    requested_value = parse_line_value(requested)
    if requested_value is None:
        return True
    returned_value = parse_line_value(returned)
    if returned_value is None:
        return False
    return abs(requested_value - returned_value) <= tolerance


def _variant_for(family: LineFamily, wtype: Optional[str] = None, over_under: bool = False) -> WireVariant:
    wtype = wtype or family.wtype
    if over_under:
        return WireVariant(wtype, over_rtype=f"{wtype}{family.first_suffix}",
                           under_rtype=f"{wtype}{family.second_suffix}")
    return WireVariant(wtype, home_rtype=f"{wtype}{family.first_suffix}",
                       away_rtype=f"{wtype}{family.second_suffix}")


def _build_line(family: LineFamily, line: str, first: Optional[float], second: Optional[float],
                over_under: bool, observed_at: float, wtype: Optional[str] = None):
    variant = _variant_for(family, wtype, over_under)
    if over_under:
        return OverUnderLine(line, first, second, variant, observed_at)
    return HandicapLine(line, first, second, variant, observed_at)


def extract_line(fields: FieldMap, family: LineFamily, over_under: bool, observed_at: float,
                 wtype: Optional[str] = None, total_limit: Optional[float] = None):
    """
    One line for one family, or None.

    Accepted only with a line token and at least one usable price; totals
    whose averaged value exceeds total_limit are dropped.
    """
    line = fields.pick(family.line_keys)
    if line is None:
        return None
    first = odds_value(fields.pick(family.first_keys))
    second = odds_value(fields.pick(family.second_keys))
    built = _build_line(family, line, first, second, over_under, observed_at, wtype)
    if not built.has_odds():
        return None
    if total_limit is not None:
        value = parse_line_value(line)
        if value is not None and abs(value) > total_limit:
            logger.debug(f"Dropping {family.wtype} total {line}: above {total_limit}")
            return None
    return built


def extract_family_lines(fields: FieldMap, families: List[LineFamily],
                         shorthand: Optional[LineFamily], over_under: bool,
                         observed_at: float, wire_wtype: Optional[str] = None,
                         total_limit: Optional[float] = None) -> list:
    """
    Probe every family for one concept; fall back to shorthand only when no
    family token is present at all.
    """
    lines = []
    family_wtypes = {family.wtype for family in families}
    token_seen = False
    for family in families:
        if not fields.has_any(family.line_keys):
            continue
        token_seen = True
        line = extract_line(fields, family, over_under, observed_at, total_limit=total_limit)
        if line is not None:
            lines.append(line)
    if not token_seen and shorthand is not None:
        wtype = wire_wtype if wire_wtype in family_wtypes else None
        line = extract_line(fields, _shorthand_with_family_odds(shorthand, families),
                            over_under, observed_at, wtype=wtype, total_limit=total_limit)
        if line is not None:
            lines.append(line)
    return merge_lines([], lines)


def _shorthand_with_family_odds(shorthand: LineFamily, families: List[LineFamily]) -> LineFamily:
    """Shorthand line token, odds read from any family's price fields"""
    first_keys, second_keys = [], []
    for family in families:
        first_keys.extend(family.first_keys)
        second_keys.extend(family.second_keys)
    for key in shorthand.first_keys:
        if key not in first_keys:
            first_keys.append(key)
    for key in shorthand.second_keys:
        if key not in second_keys:
            second_keys.append(key)
    return LineFamily(shorthand.wtype, shorthand.line_keys, first_keys, second_keys,
                      shorthand.first_suffix, shorthand.second_suffix)


def extract_moneyline(fields: FieldMap, families: List[MoneylineFamily],
                      observed_at: float) -> Optional[MoneylineQuote]:
    for family in families:
        home = odds_value(fields.pick(family.home_keys))
        draw = odds_value(fields.pick(family.draw_keys))
        away = odds_value(fields.pick(family.away_keys))
        if home is not None or draw is not None or away is not None:
            return MoneylineQuote(home, draw, away, family.variant(), observed_at)
    return None


# --------------------------------------------------------------------------
# Merge / ordering
# --------------------------------------------------------------------------

def _merge_pair(existing, incoming):
    """Per odds field, keep the most recently observed non-empty value"""
    newer, older = (incoming, existing) if incoming.observed_at >= existing.observed_at else (existing, incoming)
    merged = newer.copy()
    for name in merged.ODDS_FIELDS:
        if getattr(merged, name) is None:
            setattr(merged, name, getattr(older, name))
    merged.observed_at = max(existing.observed_at, incoming.observed_at)
    return merged


def merge_lines(existing: list, incoming: list) -> list:
    """
    Merge two line lists keyed by (wtype, line).

    Existing order is kept, unseen keys are appended. Merging an empty
    list returns the existing lines unchanged.
    """
    if not incoming:
        return list(existing)
    merged: Dict[Any, Any] = {}
    for line in existing:
        merged[line.key] = _merge_pair(merged[line.key], line) if line.key in merged else line
    for line in incoming:
        merged[line.key] = _merge_pair(merged[line.key], line) if line.key in merged else line
    return list(merged.values())


def merge_moneyline(existing: Optional[MoneylineQuote],
                    incoming: Optional[MoneylineQuote]) -> Optional[MoneylineQuote]:
    if incoming is None:
        return existing
    if existing is None:
        return incoming
    newer, older = (incoming, existing) if incoming.observed_at >= existing.observed_at else (existing, incoming)
    return MoneylineQuote(
        newer.home if newer.home is not None else older.home,
        newer.draw if newer.draw is not None else older.draw,
        newer.away if newer.away is not None else older.away,
        newer.wire_variant or older.wire_variant,
        max(existing.observed_at, incoming.observed_at),
    )


def sort_handicap_lines(lines: list, limit: Optional[int] = None) -> list:
    ordered = sorted(lines, key=lambda l: (abs(parse_line_value(l.line) or 0.0), l.line, l.wire_variant.wtype))
    return ordered[:limit] if limit else ordered


def sort_over_under_lines(lines: list, limit: Optional[int] = None) -> list:
    ordered = sorted(lines, key=lambda l: (parse_line_value(l.line) or 0.0, l.line, l.wire_variant.wtype))
    return ordered[:limit] if limit else ordered


def merge_more_markets(snapshot: MarketSnapshot, more: Optional[MoreMarkets]) -> MarketSnapshot:
    """
    Fold a "more markets" result into a snapshot in place.

    Lines are re-sorted and truncated to the advertised counts.
    """
    if more is None or more.is_empty():
        return snapshot
    full, half = snapshot.full, snapshot.half
    full.handicap_lines = sort_handicap_lines(
        merge_lines(full.handicap_lines, more.handicap_lines), _limit(snapshot, "handicap"))
    full.over_under_lines = sort_over_under_lines(
        merge_lines(full.over_under_lines, more.over_under_lines), _limit(snapshot, "overUnder"))
    half.handicap_lines = sort_handicap_lines(merge_lines(half.handicap_lines, more.half_handicap_lines))
    half.over_under_lines = sort_over_under_lines(merge_lines(half.over_under_lines, more.half_over_under_lines))
    half.moneyline = merge_moneyline(half.moneyline, more.half_moneyline)
    snapshot.corners.handicap_lines = sort_handicap_lines(
        merge_lines(snapshot.corners.handicap_lines, more.corner_handicap_lines))
    snapshot.corners.over_under_lines = sort_over_under_lines(
        merge_lines(snapshot.corners.over_under_lines, more.corner_over_under_lines))
    return snapshot


def _limit(snapshot: MarketSnapshot, name: str) -> Optional[int]:
    count = snapshot.counts.get(name) or 0
    return count if count > 0 else None


# --------------------------------------------------------------------------
# Game list
# --------------------------------------------------------------------------

def to_iso_kickoff(value: Optional[str], year: Optional[int] = None) -> Optional[str]:
    """'11-07 01:00' -> '2025-11-07T01:00:00' using the current year; a/p suffixes are 12-hour"""
    if not value or not value.strip():
        return None
    text = value.strip()
    meridiem = text[-1].lower() if text[-1].lower() in ("a", "p") else None
    if meridiem:
        text = text[:-1]
    parts = [p for p in re.split(r"[\s\-:]+", text) if p]
    if len(parts) < 3 or not all(p.isdigit() for p in parts[:3]):
        return value
    year = year or datetime.now().year
    hour_value = int(parts[2])
    if meridiem == "p" and hour_value < 12:
        hour_value += 12
    elif meridiem == "a" and hour_value == 12:
        hour_value = 0
    month, day, hour = parts[0].zfill(2), parts[1].zfill(2), str(hour_value).zfill(2)
    minute = parts[3].zfill(2) if len(parts) > 3 else "00"
    second = parts[4].zfill(2) if len(parts) > 4 else "00"
    return f"{year}-{month}-{day}T{hour}:{minute}:{second}"


def _to_int(value: Optional[str]) -> int:
    try:
        return int(float(value)) if value else 0
    except ValueError:
        return 0


def parse_game(fields: FieldMap, showtype: Optional[str] = None,
               observed_at: Optional[float] = None, year: Optional[int] = None) -> Optional[MarketSnapshot]:
    """Normalize one <game> of the game list"""
    observed_at = time.time() if observed_at is None else observed_at
    match_id = fields.pick(["GID", "@id"])
    if not match_id:
        return None

    score_h = fields.pick(["SCORE_H"])
    score_c = fields.pick(["SCORE_C"])
    running_flag = fields.pick(["RUNNING", "STATUS"]) or ""
    retimeset = fields.pick(["RETIMESET", "TIMESET"])
    running = running_flag in ("1", "Y") or bool(retimeset)

    period, clock = None, None
    if retimeset:
        period, _, clock = retimeset.partition("^")
        clock = clock or None
    elif running_flag in ("1", "Y"):
        period = "live"
    elif running_flag in ("0", "N"):
        period = "prematch"

    snapshot = MarketSnapshot(
        match_id=match_id,
        ecid=fields.pick(["ECID"]),
        league_id=fields.pick(["LID"]),
        league=fields.pick(["LEAGUE"]) or "",
        home=fields.pick(HOME_KEYS) or "",
        away=fields.pick(AWAY_KEYS) or "",
        kickoff=to_iso_kickoff(fields.pick(["DATETIME", "TIME"]), year),
        score=f"{score_h or '0'}-{score_c or '0'}" if (score_h or score_c) else None,
        period=period,
        clock=clock,
        running=running,
        showtype=showtype,
        counts={
            "handicap": _to_int(fields.pick(["R_COUNT"])),
            "overUnder": _to_int(fields.pick(["OU_COUNT"])),
            "correctScore": _to_int(fields.pick(["PD_COUNT"])),
            "corners": _to_int(fields.pick(["CN_COUNT"])),
        },
    )

    for scope in (Scope.FULL.value, Scope.HALF.value):
        limit = FULL_TOTAL_LIMIT if scope == Scope.FULL.value else HALF_TOTAL_LIMIT
        markets = snapshot.scopes[scope]
        markets.moneyline = extract_moneyline(fields, MONEYLINE_FAMILIES[scope], observed_at)
        markets.handicap_lines = sort_handicap_lines(extract_family_lines(
            fields, HANDICAP_FAMILIES[scope], None, False, observed_at))
        markets.over_under_lines = sort_over_under_lines(extract_family_lines(
            fields, OVER_UNDER_FAMILIES[scope], None, True, observed_at, total_limit=limit))
    return snapshot


def parse_game_list(xml: str, showtype: Optional[str] = None,
                    observed_at: Optional[float] = None,
                    year: Optional[int] = None) -> List[MarketSnapshot]:
    """
    Parse a get_game_list response (serverresponse/ec/game)

    Args:
        xml: Raw response body
        showtype: live / today / early, stamped on every snapshot
        observed_at: Observation time used for merge precedence (defaults to now)
        year: Year used for kickoff normalisation (defaults to the current year)

    Returns:
        Snapshots in response order; events without an id are skipped
    """
    root = parse_xml(xml)
    observed_at = time.time() if observed_at is None else observed_at
    snapshots = []
    seen = set()
    for ec in root.iter("ec"):
        for game in ec.iter("game"):
            snapshot = parse_game(FieldMap(element_fields(game)), showtype, observed_at, year)
            if snapshot is None or snapshot.match_id in seen:
                continue
            seen.add(snapshot.match_id)
            snapshots.append(snapshot)
    return snapshots


# --------------------------------------------------------------------------
# More markets
# --------------------------------------------------------------------------

def _is_marked(fields: FieldMap, mode_value: str, markers) -> bool:
    if fields.pick(["@mode", "mode"]) == mode_value:
        return True
    for key in (["@ptype", "ptype"], ["TEAM_H"], ["TEAM_C"]):
        text = fields.pick(key) or ""
        if any(marker in text for marker in markers):
            return True
    return False


def parse_more_markets(xml: str, observed_at: Optional[float] = None) -> MoreMarkets:
    """
    Parse a get_game_more response (serverresponse/game, one entry per sub-market)

    Card markets are dropped; corner markets land in the corner lists only.
    """
    root = parse_xml(xml)
    observed_at = time.time() if observed_at is None else observed_at
    more = MoreMarkets()
    half_moneyline_from_master = False

    for element in root.findall("game"):
        fields = FieldMap(element_fields(element))
        if _is_marked(fields, "RN", CARD_MARKERS):
            continue
        if _is_marked(fields, "CN", CORNER_MARKERS):
            corner_hdp = extract_line(fields, CORNER_HANDICAP, False, observed_at)
            if corner_hdp is not None and corner_hdp.home_odds and corner_hdp.away_odds:
                more.corner_handicap_lines.append(corner_hdp)
            corner_ou = extract_line(fields, CORNER_OVER_UNDER, True, observed_at)
            if corner_ou is not None and corner_ou.over_odds and corner_ou.under_odds:
                more.corner_over_under_lines.append(corner_ou)
            continue

        wire_wtype = (fields.pick(["WTYPE", "type"]) or fields.pick(["RTYPE"]) or "").upper() or None
        full = Scope.FULL.value
        half = Scope.HALF.value
        more.handicap_lines = merge_lines(more.handicap_lines, extract_family_lines(
            fields, HANDICAP_FAMILIES[full], HANDICAP_SHORTHAND[full], False, observed_at, wire_wtype))
        more.over_under_lines = merge_lines(more.over_under_lines, extract_family_lines(
            fields, OVER_UNDER_FAMILIES[full], OVER_UNDER_SHORTHAND[full], True, observed_at,
            wire_wtype, FULL_TOTAL_LIMIT))
        more.half_handicap_lines = merge_lines(more.half_handicap_lines, extract_family_lines(
            fields, HANDICAP_FAMILIES[half], HANDICAP_SHORTHAND[half], False, observed_at, wire_wtype))
        more.half_over_under_lines = merge_lines(more.half_over_under_lines, extract_family_lines(
            fields, OVER_UNDER_FAMILIES[half], OVER_UNDER_SHORTHAND[half], True, observed_at,
            wire_wtype, HALF_TOTAL_LIMIT))

        half_ml = extract_moneyline(fields, MONEYLINE_FAMILIES[half], observed_at)
        if half_ml is not None:
            is_master = fields.pick(["@master", "master"]) == "Y"
            if more.half_moneyline is None or (is_master and not half_moneyline_from_master):
                more.half_moneyline = half_ml
                half_moneyline_from_master = is_master

    more.handicap_lines = sort_handicap_lines(more.handicap_lines)
    more.over_under_lines = sort_over_under_lines(more.over_under_lines)
    more.half_handicap_lines = sort_handicap_lines(more.half_handicap_lines)
    more.half_over_under_lines = sort_over_under_lines(more.half_over_under_lines)
    return more


def more_markets_from_cache(data: Dict[str, Any], observed_at: float = 0.0) -> MoreMarkets:
    """Rebuild a MoreMarkets from its to_dict() form"""
    more = MoreMarkets()

    def variant(raw):
        return WireVariant(
            raw["wtype"], raw.get("homeRtype"), raw.get("awayRtype"), raw.get("drawRtype"),
            raw.get("overRtype"), raw.get("underRtype"))

    def handicap(items):
        return [HandicapLine(i["line"], i.get("homeOdds"), i.get("awayOdds"),
                             variant(i["wireVariant"]), observed_at) for i in items or []]

    def totals(items):
        return [OverUnderLine(i["line"], i.get("overOdds"), i.get("underOdds"),
                              variant(i["wireVariant"]), observed_at) for i in items or []]

    more.handicap_lines = handicap(data.get("handicapLines"))
    more.over_under_lines = totals(data.get("overUnderLines"))
    more.half_handicap_lines = handicap(data.get("halfHandicapLines"))
    more.half_over_under_lines = totals(data.get("halfOverUnderLines"))
    more.corner_handicap_lines = handicap(data.get("cornerHandicapLines"))
    more.corner_over_under_lines = totals(data.get("cornerOverUnderLines"))
    half_ml = data.get("halfMoneyline")
    if half_ml:
        raw_variant = half_ml.get("wireVariant")
        more.half_moneyline = MoneylineQuote(
            half_ml.get("home"), half_ml.get("draw"), half_ml.get("away"),
            variant(raw_variant) if raw_variant else None, observed_at)
    return more