"""
Variant Resolution
Maps a bet intent to the ordered list of wire variants the pipeline tries
"""
from typing import Dict, List, Tuple

from crown.models import BetCategory, BetIntent, Scope, WireVariant

# (category, scope) -> (live family, pre-match sibling)
VARIANT_FAMILIES: Dict[Tuple[BetCategory, Scope], Tuple[str, str]] = {
    (BetCategory.HANDICAP, Scope.FULL): ("RE", "R"),
    (BetCategory.HANDICAP, Scope.HALF): ("HRE", "HR"),
    (BetCategory.OVER_UNDER, Scope.FULL): ("ROU", "OU"),
    (BetCategory.OVER_UNDER, Scope.HALF): ("HROU", "HOU"),
    (BetCategory.MONEYLINE, Scope.FULL): ("RM", "M"),
    (BetCategory.MONEYLINE, Scope.HALF): ("HRM", "HM"),
}

# side -> rtype suffix / chose_team token, per category
SIDE_TOKENS: Dict[BetCategory, Dict[str, str]] = {
    BetCategory.HANDICAP: {"home": "H", "away": "C"},
    BetCategory.MONEYLINE: {"home": "H", "away": "C", "draw": "N"},
    BetCategory.OVER_UNDER: {"over": "C", "under": "H"},
}


class ResolvedVariant:
    """One candidate: wire variant plus the rtype/chose_team for the chosen side"""

    def __init__(self, variant: WireVariant, rtype: str, chose_team: str):
        self.variant = variant
        self.rtype = rtype
        self.chose_team = chose_team

    def to_dict(self):
        return {"variant": self.variant.to_dict(), "rtype": self.rtype, "choseTeam": self.chose_team}

    def __repr__(self):
        return f"ResolvedVariant({self.variant.wtype}, {self.rtype}, {self.chose_team})"


def build_variant(category: BetCategory, wtype: str) -> WireVariant:
    if category == BetCategory.OVER_UNDER:
        return WireVariant(wtype, over_rtype=f"{wtype}C", under_rtype=f"{wtype}H")
    if category == BetCategory.MONEYLINE:
        return WireVariant(wtype, home_rtype=f"{wtype}H", away_rtype=f"{wtype}C", draw_rtype=f"{wtype}N")
    return WireVariant(wtype, home_rtype=f"{wtype}H", away_rtype=f"{wtype}C")


def side_token(category: BetCategory, side: str) -> str:
    """
    Raises:
        ValueError: side not valid for the category
    """
    tokens = SIDE_TOKENS[category]
    side = (side or "").lower()
    if side not in tokens:
        raise ValueError(f"Side '{side}' is not valid for {category.value} (expected one of {sorted(tokens)})")
    return tokens[side]


def resolve_variants(intent: BetIntent) -> List[ResolvedVariant]:
    """
    Ordered fallback list for an intent

    Explicit wtype/rtype/chose_team overrides form the first candidate; the
    derived families follow, live first for in-play intents and pre-match
    first otherwise.
    """
    token = side_token(intent.category, intent.side)
    side = intent.side.lower()
    live_family, prematch_family = VARIANT_FAMILIES[(intent.category, intent.scope)]
    order = [live_family, prematch_family] if intent.live else [prematch_family, live_family]

    candidates: List[ResolvedVariant] = []
    override_wtype = intent.wtype or (intent.rtype[:-1] if intent.rtype else None)
    if override_wtype:
        wtype = override_wtype.upper()
        variant = build_variant(intent.category, wtype)
        candidates.append(ResolvedVariant(variant, intent.rtype or variant.rtype_for(side),
                                          intent.chose_team or token))
    for wtype in order:
        if any(c.variant.wtype == wtype for c in candidates):
            continue
        variant = build_variant(intent.category, wtype)
        candidates.append(ResolvedVariant(variant, variant.rtype_for(side), intent.chose_team or token))
    return candidates
