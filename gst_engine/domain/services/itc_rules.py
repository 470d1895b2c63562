# gst_engine/domain/services/itc_rules.py
"""
Section 17(5) blocked credits, Rule 42/43 apportionment and ITC reversals.

Blocked-credit checks are a table keyed by request category; each entry
knows the exceptions that lift the block for that category. A request that
no entry blocks is eligible by default.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from enum import Enum
from typing import Callable

from gst_engine.config.settings import settings
from gst_engine.domain.models.itc import (
    ClaimType,
    ConstructionRequest,
    CSRExpenseRequest,
    FoodBeverageRequest,
    GeneralGoodsRequest,
    InsuranceRequest,
    ITCRequestBase,
    MembershipRequest,
    MotorVehicleRequest,
)
from gst_engine.domain.services.gst_calendar import months_between
from gst_engine.domain.services.place_of_supply import round_money, to_decimal

logger = logging.getLogger("itc_rules")

MAX_BLOCKED_SEATING = 13
MOTOR_VEHICLE_EXCEPTIONS = ("TAXI_SERVICE", "PASSENGER_TRANSPORT", "GOODS_TRANSPORT", "TRAINING_SCHOOL", "FURTHER_SUPPLY")
BLOCKED_MEMBERSHIPS = ("HEALTH_CLUB", "FITNESS_CENTER", "CLUB")
BLOCKED_INSURANCE = ("HEALTH", "LIFE")
CONSTRUCTION_EXCEPTIONS = ("RENTAL_BUSINESS", "SALE_DEVELOPMENT")
WRITTEN_OFF_STATUSES = ("LOST", "STOLEN", "DESTROYED", "WRITTEN_OFF")
NON_BUSINESS_USAGES = ("PERSONAL", "CSR_ACTIVITY")

CAPITAL_GOODS_LIFE_MONTHS = 60
CAPITAL_GOODS_LIFE_YEARS = 5


class ReversalReason(str, Enum):
    NON_PAYMENT_180_DAYS = "NON_PAYMENT_180_DAYS"
    SUPPLIER_REGISTRATION_CANCELLED = "SUPPLIER_REGISTRATION_CANCELLED"
    GOODS_LOST = "GOODS_LOST"
    USAGE_CHANGE = "USAGE_CHANGE"
    CREDIT_NOTE = "CREDIT_NOTE"
    EXEMPT_SUPPLY_INCREASE = "EXEMPT_SUPPLY_INCREASE"
    CAPITAL_GOODS_DISPOSAL = "CAPITAL_GOODS_DISPOSAL"


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class BlockedCheck:
    is_blocked: bool
    category: str
    section: str | None = None
    reason: str | None = None
    exception_applied: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_blocked": self.is_blocked,
            "category": self.category,
            "section": self.section,
            "reason": self.reason,
            "exception_applied": self.exception_applied,
        }


@dataclass
class ProportionateResult:
    method: str  # FULL / BUSINESS_USE / RULE_42 / RULE_43
    ratio: Decimal
    eligible_amount: Decimal
    ineligible_amount: Decimal
    monthly_credit: Decimal | None = None
    useful_life_months: int | None = None

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "ratio": str(self.ratio),
            "eligible_amount": str(self.eligible_amount),
            "ineligible_amount": str(self.ineligible_amount),
            "monthly_credit": str(self.monthly_credit) if self.monthly_credit is not None else None,
            "useful_life_months": self.useful_life_months,
        }


@dataclass
class ReversalResult:
    reason: ReversalReason
    reversal_amount: Decimal
    interest: Decimal
    reference: str
    description: str

    @property
    def total(self) -> Decimal:
        return self.reversal_amount + self.interest

    def to_dict(self) -> dict:
        return {
            "reason": self.reason.value,
            "reversal_amount": str(self.reversal_amount),
            "interest": str(self.interest),
            "total": str(self.total),
            "reference": self.reference,
            "description": self.description,
        }


# ---------------------------------------------------------------------------
# Blocked-credit table
# ---------------------------------------------------------------------------

def _allowed(req: ITCRequestBase, exception: str | None = None) -> BlockedCheck:
    return BlockedCheck(is_blocked=False, category=req.category, exception_applied=exception)


def _blocked(req: ITCRequestBase, section: str, reason: str) -> BlockedCheck:
    return BlockedCheck(is_blocked=True, category=req.category, section=section, reason=reason)


def _check_motor_vehicle(req: MotorVehicleRequest) -> BlockedCheck:
    if req.seating_capacity > MAX_BLOCKED_SEATING:
        return _allowed(req, f"Seating capacity {req.seating_capacity} exceeds {MAX_BLOCKED_SEATING}")
    if req.usage in MOTOR_VEHICLE_EXCEPTIONS:
        return _allowed(req, f"Vehicle used for {_words(req.usage)}")
    return _blocked(
        req, "Section 17(5)(a)",
        f"Motor vehicle with seating capacity {req.seating_capacity} (13 or less) "
        f"used for {_words(req.usage)}",
    )


def _check_food_beverages(req: FoodBeverageRequest) -> BlockedCheck:
    if req.usage == "OUTWARD_SUPPLY":
        return _allowed(req, "Used in an outward supply of the same category")
    if req.usage == "LEGAL_REQUIREMENT":
        if req.legal_requirement_reference:
            return _allowed(req, f"Mandated by law: {req.legal_requirement_reference}")
        return _blocked(
            req, "Section 17(5)(b)(i)",
            "Food and beverages claimed as a legal requirement without citing the statute",
        )
    return _blocked(req, "Section 17(5)(b)(i)", f"Food and beverages for {_words(req.usage)}")


def _check_membership(req: MembershipRequest) -> BlockedCheck:
    if req.membership_type in BLOCKED_MEMBERSHIPS:
        return _blocked(req, "Section 17(5)(c)", f"Membership of {_words(req.membership_type)}")
    return _allowed(req)


def _check_insurance(req: InsuranceRequest) -> BlockedCheck:
    if req.insurance_type not in BLOCKED_INSURANCE:
        return _allowed(req)
    if req.is_statutory:
        return _allowed(req, "Insurance mandated for employees by law")
    return _blocked(req, "Section 17(5)(b)(iii)", f"{req.insurance_type.title()} insurance")


def _check_construction(req: ConstructionRequest) -> BlockedCheck:
    if req.asset_type == "PLANT_MACHINERY":
        return _allowed(req, "Construction results in plant and machinery")
    if req.usage in CONSTRUCTION_EXCEPTIONS:
        return _allowed(req, f"Immovable property used for {_words(req.usage)}")
    if req.is_works_contract:
        return _blocked(req, "Section 17(5)(c)", "Works contract for construction of immovable property")
    return _blocked(req, "Section 17(5)(d)", "Construction of immovable property on own account")


def _check_general_goods(req: GeneralGoodsRequest) -> BlockedCheck:
    if req.goods_status in WRITTEN_OFF_STATUSES:
        return _blocked(req, "Section 17(5)(f)", f"Goods {req.goods_status.lower().replace('_', ' ')}")
    if req.usage == "PERSONAL" or req.business_use_percentage == 0:
        return _blocked(req, "Section 17(5)(e)", "Goods or services for personal consumption")
    return _allowed(req)


def _check_csr(req: CSRExpenseRequest) -> BlockedCheck:
    return _blocked(req, "Section 17(5)(fa)", "CSR expenditure is not eligible for ITC")


BLOCKED_CATEGORY_CHECKS: dict[str, Callable[..., BlockedCheck]] = {
    "MOTOR_VEHICLE": _check_motor_vehicle,
    "FOOD_BEVERAGES": _check_food_beverages,
    "MEMBERSHIP": _check_membership,
    "INSURANCE": _check_insurance,
    "CONSTRUCTION": _check_construction,
    "GENERAL_GOODS": _check_general_goods,
    "CSR_EXPENSE": _check_csr,
}


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def check_blocked_category(request: ITCRequestBase) -> BlockedCheck:
    """Apply the Section 17(5) table to one request."""
    check = BLOCKED_CATEGORY_CHECKS.get(request.category)
    if check is None:
        return _allowed(request)
    result = check(request)
    if result.is_blocked:
        logger.info("ITC blocked: %s (%s)", result.reason, result.section)
    return result


def validate_business_purpose(request: ITCRequestBase) -> bool:
    if request.usage_label in NON_BUSINESS_USAGES:
        return False
    return request.business_use_percentage > 0


def apply_proportionate_rule(itc_amount, request: ITCRequestBase) -> ProportionateResult:
    """
    Work out the creditable share of *itc_amount*.

    With a taxable / total supplies split, Rule 42 (inputs, input services)
    or Rule 43 (capital goods) applies the taxable share. Otherwise a
    business-use percentage below 100 is applied as a flat share.
    """
    itc_amount = to_decimal(itc_amount)

    if request.total_supplies:
        ratio = request.taxable_supplies / request.total_supplies
        eligible = round_money(itc_amount * ratio)
        if request.claim_type == ClaimType.CAPITAL_GOODS:
            return ProportionateResult(
                method="RULE_43",
                ratio=ratio,
                eligible_amount=eligible,
                ineligible_amount=itc_amount - eligible,
                monthly_credit=round_money(itc_amount / CAPITAL_GOODS_LIFE_MONTHS),
                useful_life_months=CAPITAL_GOODS_LIFE_MONTHS,
            )
        return ProportionateResult(
            method="RULE_42",
            ratio=ratio,
            eligible_amount=eligible,
            ineligible_amount=itc_amount - eligible,
        )

    if request.business_use_percentage < 100:
        ratio = request.business_use_percentage / Decimal("100")
        eligible = round_money(itc_amount * ratio)
        return ProportionateResult(
            method="BUSINESS_USE",
            ratio=ratio,
            eligible_amount=eligible,
            ineligible_amount=itc_amount - eligible,
        )

    return ProportionateResult(
        method="FULL",
        ratio=Decimal("1"),
        eligible_amount=itc_amount,
        ineligible_amount=Decimal("0"),
    )


def calculate_itc_reversal(
    reason: ReversalReason | str,
    itc_amount,
    *,
    invoice_date: date | None = None,
    as_of: date | None = None,
    share=None,
    credit_note_tax=None,
    remaining_life_years: int | None = None,
    annual_rate=None,
    reversal_days: int | None = None,
) -> ReversalResult:
    """
    Amount of ITC to reverse (and interest, where payable) for *reason*.

    ``share`` is the non-business (USAGE_CHANGE) or exempt (EXEMPT_SUPPLY_INCREASE)
    fraction, as a percentage.
    ``reversal_days`` is the non-payment window; it defaults to the configured
    ITC_PAYMENT_REVERSAL_DAYS.
    """
    reason = ReversalReason(reason)
    itc_amount = to_decimal(itc_amount)
    zero = Decimal("0.00")

    if reason == ReversalReason.NON_PAYMENT_180_DAYS:
        if invoice_date is None:
            raise ValueError("invoice_date is required for a non-payment reversal")
        as_of = as_of or date.today()
        rate = settings.INTEREST_RATE_PERCENT if annual_rate is None else to_decimal(annual_rate)
        window = settings.ITC_PAYMENT_REVERSAL_DAYS if reversal_days is None else reversal_days
        window_end = invoice_date + timedelta(days=window)
        months = months_between(window_end, as_of)
        interest = round_money(itc_amount * rate / Decimal("100") * months / Decimal("12"))
        return ReversalResult(
            reason, round_money(itc_amount), interest, "Rule 37",
            f"Supplier unpaid {window} days after invoice; "
            f"interest for {months} month(s)",
        )

    if reason == ReversalReason.SUPPLIER_REGISTRATION_CANCELLED:
        return ReversalResult(
            reason, round_money(itc_amount), zero, "Section 16(2)(c)",
            "Supplier registration cancelled; tax not deposited with the government",
        )

    if reason == ReversalReason.GOODS_LOST:
        return ReversalResult(
            reason, round_money(itc_amount), zero, "Section 17(5)(f)",
            "Goods lost, stolen, destroyed or written off",
        )

    if reason in (ReversalReason.USAGE_CHANGE, ReversalReason.EXEMPT_SUPPLY_INCREASE):
        if share is None:
            raise ValueError(f"share is required for {reason.value}")
        share = to_decimal(share)
        if not 0 <= share <= 100:
            raise ValueError("share must be between 0 and 100")
        what = "non-business use" if reason == ReversalReason.USAGE_CHANGE else "exempt supplies"
        return ReversalResult(
            reason, round_money(itc_amount * share / Decimal("100")), zero, "Rule 42",
            f"{share}% attributable to {what}",
        )

    if reason == ReversalReason.CREDIT_NOTE:
        if credit_note_tax is None:
            raise ValueError("credit_note_tax is required for a credit note reversal")
        amount = min(to_decimal(credit_note_tax), itc_amount)
        return ReversalResult(
            reason, round_money(amount), zero, "Section 34",
            "Tax reduced by supplier credit note",
        )

    # CAPITAL_GOODS_DISPOSAL
    if remaining_life_years is None:
        raise ValueError("remaining_life_years is required for a capital goods disposal")
    remaining = max(0, min(remaining_life_years, CAPITAL_GOODS_LIFE_YEARS))
    return ReversalResult(
        reason,
        round_money(itc_amount * remaining / CAPITAL_GOODS_LIFE_YEARS),
        zero,
        "Section 18(6)",
        f"Capital goods disposed with {remaining} of {CAPITAL_GOODS_LIFE_YEARS} years of life remaining",
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _words(code: str) -> str:
    return code.lower().replace("_", " ")
