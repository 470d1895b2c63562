# gst_engine/domain/services/notified_rules.py
"""
Notified reverse-charge supplies (Section 9(3) / 9(4) CGST Act).

Rules are looked up through a RuleSetRepository that the caller passes in.
StaticRuleSet carries the notifications in force out of the box; a caller
with its own rule store (or a test with fixture rules) supplies another
implementation instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Protocol, Sequence

from gst_engine.domain.services.code_classifier import (
    CodeType,
    get_code_type,
    match_code_pattern,
    normalize_code,
)

logger = logging.getLogger("notified_rules")

SERVICE = "SERVICE"
GOODS = "GOODS"

GST_START = date(2017, 7, 1)


@dataclass(frozen=True)
class NotifiedRule:
    id: str
    rule_type: str  # SERVICE / GOODS
    codes: tuple[str, ...]
    description: str
    gst_rate: Decimal
    effective_from: date
    effective_to: date | None = None
    notification_no: str | None = None
    is_active: bool = True
    priority: int = 10

    def is_well_formed(self) -> bool:
        if not self.id or self.rule_type not in (SERVICE, GOODS):
            return False
        if not self.codes or not self.description.strip():
            return False
        if self.effective_to is not None and self.effective_to <= self.effective_from:
            return False
        return True


@dataclass
class RuleMatch:
    rule: NotifiedRule
    matched_code: str
    reason: str

    def to_dict(self) -> dict:
        return {
            "rule_id": self.rule.id,
            "rule_type": self.rule.rule_type,
            "description": self.rule.description,
            "gst_rate": str(self.rule.gst_rate),
            "notification_no": self.rule.notification_no,
            "effective_from": self.rule.effective_from.isoformat(),
            "matched_code": self.matched_code,
            "reason": self.reason,
        }


class RuleSetRepository(Protocol):
    """Anything that can hand out the notified rules to evaluate."""

    def get_rules(self) -> Sequence[NotifiedRule]:
        ...


# ---------------------------------------------------------------------------
# Rules in force
# ---------------------------------------------------------------------------

_SERVICES_NOTIFICATION = "13/2017-Central Tax (Rate)"
_GOODS_NOTIFICATION = "4/2017-Central Tax (Rate)"


def _service(id_, codes, description, rate, priority=10) -> NotifiedRule:
    return NotifiedRule(
        id=id_, rule_type=SERVICE, codes=tuple(codes), description=description,
        gst_rate=Decimal(rate), effective_from=GST_START,
        notification_no=_SERVICES_NOTIFICATION, priority=priority,
    )


def _goods(id_, codes, description, rate, priority=10) -> NotifiedRule:
    return NotifiedRule(
        id=id_, rule_type=GOODS, codes=tuple(codes), description=description,
        gst_rate=Decimal(rate), effective_from=GST_START,
        notification_no=_GOODS_NOTIFICATION, priority=priority,
    )


NOTIFIED_SERVICES: tuple[NotifiedRule, ...] = (
    _service("notified-legal-services", ["9982", "998211", "998212", "998213"],
             "Legal services provided by advocates, attorneys, solicitors, barristers", "18"),
    _service("notified-gta-services-5", ["9967", "996711", "996713", "996714"],
             "Goods Transport Agency services (road transport)", "5"),
    # air / water GTA takes precedence over the generic 9967 entry
    _service("notified-gta-services-12", ["996712", "996715"],
             "Goods Transport Agency services (air/water transport)", "12", priority=15),
    _service("notified-director-services", ["9954", "995411", "995412"],
             "Director services provided to a company", "18"),
    _service("notified-insurance-agent-services", ["9971", "997111", "997112"],
             "Insurance agent services", "18"),
    _service("notified-recovery-agent-services", ["998311", "998312"],
             "Recovery agent services", "18"),
    _service("notified-sponsorship-services", ["998321", "998322"],
             "Sponsorship services", "18", priority=20),
    _service("notified-rent-a-cab-services", ["9964", "996411", "996412"],
             "Rent-a-Cab services", "5"),
    _service("notified-works-contract-12", ["995421", "995422"],
             "Works Contract services - construction (12% rate)", "12", priority=15),
    _service("notified-works-contract-18", ["995423", "995424"],
             "Works Contract services - specialized construction (18% rate)", "18", priority=15),
)

NOTIFIED_GOODS: tuple[NotifiedRule, ...] = (
    _goods("notified-cashew-nuts", ["0801", "080110", "08011000", "08011100"],
           "Cashew nuts, not shelled or peeled", "5"),
    _goods("notified-tobacco-leaves", ["2401", "240110", "24011000", "24012000"],
           "Tobacco leaves (unmanufactured)", "5"),
    _goods("notified-silk-yarn-5004", ["5004", "500400", "50040000"],
           "Silk yarn (not put up for retail sale)", "5"),
    _goods("notified-silk-yarn-5005", ["5005", "500500", "50050000"],
           "Silk yarn spun from silk waste (not put up for retail sale)", "5"),
    _goods("notified-silk-yarn-5006", ["5006", "500600", "50060000"],
           "Silk yarn and yarn spun from silk waste, put up for retail sale", "5"),
    _goods("notified-lottery-12", ["9990", "999011", "99901100"],
           "Lottery supply (authorized by State Government)", "12"),
    _goods("notified-lottery-28", ["999012", "99901200", "99901210"],
           "Lottery supply (State lottery with higher rate)", "28", priority=15),
    _goods("notified-bidi-wrapper-leaves", ["1404", "140420", "14042000"],
           "Bidi wrapper leaves (tendu), whether or not in bundles", "18"),
    _goods("notified-raw-cotton", ["5201", "520100", "52010000"],
           "Raw cotton (not carded or combed)", "5"),
)


class StaticRuleSet:
    """In-memory rule set; defaults to the notifications above."""

    def __init__(self, rules: Iterable[NotifiedRule] | None = None) -> None:
        self._rules = tuple(rules) if rules is not None else NOTIFIED_SERVICES + NOTIFIED_GOODS

    def get_rules(self) -> Sequence[NotifiedRule]:
        return self._rules


DEFAULT_RULE_SET = StaticRuleSet()


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def is_rule_effective(rule: NotifiedRule, on: date | None = None) -> bool:
    on = on or date.today()
    if not rule.is_active:
        return False
    if rule.effective_from > on:
        return False
    if rule.effective_to is not None and rule.effective_to < on:
        return False
    return True


def sort_rules_by_priority(rules: Iterable[NotifiedRule]) -> list[NotifiedRule]:
    """Highest priority first, then the most recently notified."""
    return sorted(rules, key=lambda r: (-r.priority, -r.effective_from.toordinal()))


def match_notified_rule(
    code: str | None,
    rule_set: RuleSetRepository = DEFAULT_RULE_SET,
    on: date | None = None,
) -> RuleMatch | None:
    """
    Find the notified rule an HSN/SAC code falls under, if any.

    SAC codes are tried against service rules first and HSN codes against
    goods rules first; the other kind is tried if nothing matches.
    """
    normalized = normalize_code(code)
    code_type = get_code_type(normalized)
    if code_type == CodeType.INVALID:
        return None

    order = (SERVICE, GOODS) if code_type == CodeType.SAC else (GOODS, SERVICE)
    effective = [
        r for r in rule_set.get_rules()
        if r.is_well_formed() and is_rule_effective(r, on)
    ]

    for rule_type in order:
        for rule in sort_rules_by_priority(r for r in effective if r.rule_type == rule_type):
            if match_code_pattern(normalized, rule.codes):
                kind = "service" if rule_type == SERVICE else "goods"
                logger.debug("Notified rule %s matched code %s", rule.id, normalized)
                return RuleMatch(
                    rule=rule,
                    matched_code=normalized,
                    reason=f"RCM applicable for notified {kind}: {rule.description}",
                )
    return None


def rules_effective_on(
    on: date,
    rule_set: RuleSetRepository = DEFAULT_RULE_SET,
) -> list[NotifiedRule]:
    return [r for r in rule_set.get_rules() if is_rule_effective(r, on)]
