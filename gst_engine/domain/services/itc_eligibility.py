# gst_engine/domain/services/itc_eligibility.py
"""
ITC eligibility decisions, the Section 16(4) time limit and the claim lifecycle.

determine_itc_eligibility() runs one request through, in order:
  blocked category -> business purpose -> time limit -> RCM gating ->
  reversal checks -> reclaim -> proportionate split -> per-head breakup

Business-rule failures come back on the result object; only malformed
input raises.

Claim lifecycle:
  PAYMENT_PENDING -> ELIGIBLE | BLOCKED | EXPIRED | REVERSED
  ELIGIBLE -> REVERSED | EXPIRED
  REVERSED -> RECLAIMED (once the supplier is paid)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Iterable

from gst_engine.config.settings import Settings, settings
from gst_engine.domain.models.itc import (
    ClaimType,
    EligibilityStatus,
    ITCClaim,
    ITCRequestBase,
    PaymentStatus,
)
from gst_engine.domain.services.gst_calendar import financial_year_label, financial_year_start
from gst_engine.domain.services.itc_rules import (
    ProportionateResult,
    ReversalReason,
    ReversalResult,
    apply_proportionate_rule,
    calculate_itc_reversal,
    check_blocked_category,
    validate_business_purpose,
)
from gst_engine.domain.services.place_of_supply import round_money, to_decimal
from gst_engine.domain.services.rcm_calculator import TABLE_INWARD_RCM, TABLE_ITC_RCM

logger = logging.getLogger("itc_eligibility")

TABLE_ITC_OTHER = "4(A)(5)"
TABLE_ITC_BLOCKED = "4(D)(1)"

DEADLINE_MONTH = 11
DEADLINE_DAY = 30
EXPIRY_WARNING_DAYS = 90

# (max days remaining, urgency), checked in order
URGENCY_LEVELS: list[tuple[int, str]] = [
    (30, "CRITICAL"),
    (60, "HIGH"),
    (90, "MEDIUM"),
    (180, "LOW"),
]

# (min utilisation %, label), checked in order
UTILIZATION_LEVELS: list[tuple[int, str]] = [
    (80, "EXCELLENT"),
    (60, "GOOD"),
    (40, "MODERATE"),
]

RCM_COMPLIANCE = ["Self-invoice required", "Payment in cash only"]

_S = EligibilityStatus

VALID_CLAIM_TRANSITIONS: dict[EligibilityStatus, list[EligibilityStatus]] = {
    _S.PAYMENT_PENDING: [_S.ELIGIBLE, _S.BLOCKED, _S.EXPIRED, _S.REVERSED],
    _S.ELIGIBLE: [_S.REVERSED, _S.EXPIRED],
    _S.REVERSED: [_S.RECLAIMED],
    _S.RECLAIMED: [_S.EXPIRED],
    _S.BLOCKED: [],  # terminal
    _S.EXPIRED: [],  # terminal
}

# Claims whose credit can still be used (or is about to be)
OPEN_STATUSES = (_S.PAYMENT_PENDING, _S.ELIGIBLE, _S.RECLAIMED)
USABLE_STATUSES = (_S.ELIGIBLE, _S.RECLAIMED)


class ITCClaimError(ValueError):
    """Raised when a claim operation is not allowed in the claim's current state."""
    pass


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ITCPolicy:
    reclaim_requires_deadline: bool = False
    payment_reversal_days: int = 180

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "ITCPolicy":
        config = config or settings
        return cls(
            reclaim_requires_deadline=config.ITC_RECLAIM_REQUIRES_DEADLINE,
            payment_reversal_days=config.ITC_PAYMENT_REVERSAL_DAYS,
        )


@dataclass
class ITCDeadline:
    financial_year: str
    self_invoice_date: date
    deadline: date
    days_remaining: int
    is_expired: bool
    expiry_status: str  # ACTIVE / WARNING / EXPIRED
    urgency: str | None = None

    def to_dict(self) -> dict:
        return {
            "financial_year": self.financial_year,
            "self_invoice_date": self.self_invoice_date.isoformat(),
            "deadline": self.deadline.isoformat(),
            "days_remaining": self.days_remaining,
            "is_expired": self.is_expired,
            "expiry_status": self.expiry_status,
            "urgency": self.urgency,
        }


@dataclass
class ITCEligibilityResult:
    is_eligible: bool
    status: EligibilityStatus
    deadline: ITCDeadline
    gstr3b_table: str
    eligible_amount: Decimal = Decimal("0.00")
    eligible_igst: Decimal = Decimal("0.00")
    eligible_cgst: Decimal = Decimal("0.00")
    eligible_sgst: Decimal = Decimal("0.00")
    eligible_cess: Decimal = Decimal("0.00")
    blocked_categories: list[str] = field(default_factory=list)
    section: str | None = None
    ineligible_reason: str | None = None
    reversal_required: bool = False
    reversal_reason: str | None = None
    reversal: ReversalResult | None = None
    reclaim_amount: Decimal = Decimal("0.00")
    proportionate: ProportionateResult | None = None
    compliance_requirements: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_eligible": self.is_eligible,
            "status": self.status.value,
            "eligible_amount": str(self.eligible_amount),
            "breakup": {
                "igst": str(self.eligible_igst),
                "cgst": str(self.eligible_cgst),
                "sgst": str(self.eligible_sgst),
                "cess": str(self.eligible_cess),
            },
            "blocked_categories": list(self.blocked_categories),
            "section": self.section,
            "ineligible_reason": self.ineligible_reason,
            "reversal_required": self.reversal_required,
            "reversal_reason": self.reversal_reason,
            "reversal": self.reversal.to_dict() if self.reversal else None,
            "reclaim_amount": str(self.reclaim_amount),
            "proportionate": self.proportionate.to_dict() if self.proportionate else None,
            "compliance_requirements": list(self.compliance_requirements),
            "gstr3b_table": self.gstr3b_table,
            "deadline": self.deadline.to_dict(),
        }


@dataclass
class ITCUtilization:
    total_itc: Decimal
    utilized: Decimal
    available: Decimal
    utilization_percentage: Decimal
    status: str

    def to_dict(self) -> dict:
        return {
            "total_itc": str(self.total_itc),
            "utilized": str(self.utilized),
            "available": str(self.available),
            "utilization_percentage": str(self.utilization_percentage),
            "status": self.status,
        }


# ---------------------------------------------------------------------------
# Deadline
# ---------------------------------------------------------------------------

def calculate_itc_deadline(self_invoice_date: date, as_of: date | None = None) -> ITCDeadline:
    """Section 16(4): 30 November following the end of the invoice's FY."""
    as_of = as_of or date.today()
    deadline = date(financial_year_start(self_invoice_date) + 1, DEADLINE_MONTH, DEADLINE_DAY)
    days_remaining = max(0, (deadline - as_of).days)
    is_expired = as_of > deadline

    if is_expired:
        expiry_status = "EXPIRED"
    elif days_remaining <= EXPIRY_WARNING_DAYS:
        expiry_status = "WARNING"
    else:
        expiry_status = "ACTIVE"

    urgency = None
    if not is_expired:
        for limit, level in URGENCY_LEVELS:
            if days_remaining <= limit:
                urgency = level
                break

    return ITCDeadline(
        financial_year=financial_year_label(self_invoice_date),
        self_invoice_date=self_invoice_date,
        deadline=deadline,
        days_remaining=days_remaining,
        is_expired=is_expired,
        expiry_status=expiry_status,
        urgency=urgency,
    )


# ---------------------------------------------------------------------------
# Eligibility
# ---------------------------------------------------------------------------

def determine_itc_eligibility(
    request: ITCRequestBase,
    as_of: date | None = None,
    policy: ITCPolicy | None = None,
) -> ITCEligibilityResult:
    as_of = as_of or date.today()
    policy = policy or ITCPolicy.from_settings()
    deadline = calculate_itc_deadline(request.reference_date, as_of)

    result = ITCEligibilityResult(
        is_eligible=False,
        status=_S.ELIGIBLE,
        deadline=deadline,
        gstr3b_table=TABLE_ITC_RCM if request.is_rcm else TABLE_ITC_OTHER,
    )

    # 1. Section 17(5)
    blocked = check_blocked_category(request)
    if blocked.is_blocked:
        result.status = _S.BLOCKED
        result.blocked_categories.append(request.category)
        result.section = blocked.section
        result.ineligible_reason = f"{blocked.reason} ({blocked.section})"
        if request.is_rcm:
            # tax is still payable under reverse charge, only the credit goes
            result.gstr3b_table = TABLE_INWARD_RCM
            result.compliance_requirements.append(
                f"Pay RCM liability in Table {TABLE_INWARD_RCM}; ITC not available"
            )
        else:
            result.gstr3b_table = TABLE_ITC_BLOCKED
        return result

    # 2. Business purpose
    if not validate_business_purpose(request):
        result.status = _S.BLOCKED
        if request.usage_label == "CSR_ACTIVITY":
            result.blocked_categories.append("CSR_EXPENSE")
            result.section = "Section 17(5)(fa)"
            result.ineligible_reason = "CSR expenditure is not eligible for ITC (Section 17(5)(fa))"
        else:
            result.blocked_categories.append("PERSONAL_USE")
            result.section = "Section 17(5)(e)"
            result.ineligible_reason = "Not used in the course or furtherance of business (Section 17(5)(e))"
        result.gstr3b_table = TABLE_INWARD_RCM if request.is_rcm else TABLE_ITC_BLOCKED
        return result

    # 3. Time limit; a reclaim may skip it depending on policy
    reclaiming = request.previous_reversal is not None and request.payment_status == PaymentStatus.PAID
    skip_deadline = reclaiming and not policy.reclaim_requires_deadline
    if deadline.is_expired and not skip_deadline:
        result.status = _S.EXPIRED
        result.ineligible_reason = (
            f"ITC time limit expired on {deadline.deadline.isoformat()} "
            f"for FY {deadline.financial_year} (Section 16(4))"
        )
        return result

    # 4. Reverse charge
    payment_pending = False
    if request.is_rcm:
        if request.is_gta and not request.gta_itc_scheme_opted:
            result.status = _S.BLOCKED
            result.blocked_categories.append("GTA_5_PERCENT_SCHEME")
            result.ineligible_reason = "GTA opted for the 5% scheme without ITC"
            result.gstr3b_table = TABLE_INWARD_RCM
            return result
        result.compliance_requirements.extend(RCM_COMPLIANCE)
        payment_pending = request.payment_status != PaymentStatus.PAID

    # 5. Reversal
    if request.payment_status != PaymentStatus.PAID:
        days_unpaid = (as_of - request.invoice_date).days
        if days_unpaid > policy.payment_reversal_days:
            reversal = calculate_itc_reversal(
                ReversalReason.NON_PAYMENT_180_DAYS,
                request.total_tax,
                invoice_date=request.invoice_date,
                as_of=as_of,
                reversal_days=policy.payment_reversal_days,
            )
            return _reversed(
                result, reversal,
                f"Supplier not paid within {policy.payment_reversal_days} days "
                f"({days_unpaid} days outstanding)",
            )

    if request.supplier_registration_status == "CANCELLED":
        reversal = calculate_itc_reversal(ReversalReason.SUPPLIER_REGISTRATION_CANCELLED, request.total_tax)
        return _reversed(result, reversal, "Supplier registration cancelled")

    if payment_pending:
        result.status = _S.PAYMENT_PENDING
        result.ineligible_reason = "Payment to supplier pending; ITC available once paid"
        return result

    # 6. Reclaim
    if reclaiming:
        result.status = _S.RECLAIMED
        result.reclaim_amount = round_money(request.previous_reversal.amount)
        result.compliance_requirements.append(
            "Report reclaimed ITC in the return period in which payment was made"
        )
        logger.info("ITC reclaim of %s after payment on %s", result.reclaim_amount, request.payment_date)

    # 7. Apportionment
    proportionate = apply_proportionate_rule(request.total_tax, request)
    result.proportionate = proportionate

    # 8. Per-head breakup
    ratio = proportionate.ratio
    result.eligible_igst = round_money(request.igst * ratio)
    result.eligible_cgst = round_money(request.cgst * ratio)
    result.eligible_sgst = round_money(request.sgst * ratio)
    result.eligible_cess = round_money(request.cess * ratio)
    result.eligible_amount = (
        result.eligible_igst + result.eligible_cgst + result.eligible_sgst + result.eligible_cess
    )

    if ratio == 0:
        result.ineligible_reason = "Entire credit attributable to exempt or non-business supplies"
        return result

    if proportionate.method == "RULE_43":
        result.compliance_requirements.append(
            f"Capital goods credit spread over {proportionate.useful_life_months} months (Rule 43)"
        )

    result.is_eligible = True
    return result


def _reversed(result: ITCEligibilityResult, reversal: ReversalResult, reason: str) -> ITCEligibilityResult:
    result.status = _S.REVERSED
    result.reversal_required = True
    result.reversal_reason = reversal.reason.value
    result.reversal = reversal
    result.ineligible_reason = f"{reason} ({reversal.reference})"
    return result


# ---------------------------------------------------------------------------
# Claim lifecycle
# ---------------------------------------------------------------------------

def create_itc_claim(
    request: ITCRequestBase,
    result: ITCEligibilityResult,
    claim_id: str,
    source_transaction_ref: str,
) -> ITCClaim:
    """Open a claim from an evaluated request; heads are the eligible breakup."""
    eligible = result.status in (_S.ELIGIBLE, _S.RECLAIMED)
    claim = ITCClaim(
        claim_id=claim_id,
        source_transaction_ref=source_transaction_ref,
        category=request.claim_type,
        self_invoice_date=request.reference_date,
        deadline=result.deadline.deadline,
        igst=result.eligible_igst if eligible else request.igst,
        cgst=result.eligible_cgst if eligible else request.cgst,
        sgst=result.eligible_sgst if eligible else request.sgst,
        cess=result.eligible_cess if eligible else request.cess,
    )
    if result.status == _S.RECLAIMED:
        # the earlier reversal is what is being undone
        transition_claim(claim, _S.REVERSED)
        claim.reversed_amount = result.reclaim_amount
        transition_claim(claim, _S.RECLAIMED)
        claim.reclaimed_amount = result.reclaim_amount
    elif result.status != _S.PAYMENT_PENDING:
        transition_claim(claim, result.status)
        if result.status == _S.REVERSED:
            claim.reversed_amount = result.reversal.reversal_amount if result.reversal else claim.total_itc_amount
            claim.reversal_reason = result.reversal_reason
    return claim


def transition_claim(claim: ITCClaim, new_status: EligibilityStatus | str) -> ITCClaim:
    new_status = EligibilityStatus(new_status)
    allowed = VALID_CLAIM_TRANSITIONS.get(claim.status, [])
    if new_status not in allowed:
        raise ITCClaimError(
            f"Cannot transition claim {claim.claim_id} from '{claim.status.value}' "
            f"to '{new_status.value}'. Allowed: {[s.value for s in allowed]}"
        )
    claim.status_history.append(f"{claim.status.value}->{new_status.value}")
    claim.status = new_status
    logger.debug("Claim %s now %s", claim.claim_id, new_status.value)
    return claim


def process_itc_claim(claim: ITCClaim, amount) -> ITCClaim:
    """Set off *amount* of the claim's credit against output tax."""
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValueError("Utilisation amount must be greater than 0")
    if claim.status not in USABLE_STATUSES:
        raise ITCClaimError(f"Claim {claim.claim_id} is {claim.status.value}; credit cannot be utilised")
    if amount > claim.available_amount:
        raise ITCClaimError(
            f"Utilisation of {amount} exceeds available credit {claim.available_amount} "
            f"on claim {claim.claim_id}"
        )
    claim.utilized_amount = claim.utilized_amount + amount
    return claim


def reverse_itc_claim(claim: ITCClaim, reason: ReversalReason | str) -> ITCClaim:
    reason = ReversalReason(reason)
    transition_claim(claim, _S.REVERSED)
    claim.reversed_amount = claim.total_itc_amount
    claim.reversal_reason = reason.value
    logger.info("Claim %s reversed (%s): %s", claim.claim_id, reason.value, claim.reversed_amount)
    return claim


def reclaim_itc(claim: ITCClaim, payment_date: date, policy: ITCPolicy | None = None) -> ITCClaim:
    """Restore a reversed claim once the supplier has been paid."""
    policy = policy or ITCPolicy.from_settings()
    if claim.status != _S.REVERSED:
        raise ITCClaimError(f"Claim {claim.claim_id} is {claim.status.value}; only reversed claims can be reclaimed")
    if policy.reclaim_requires_deadline and payment_date > claim.deadline:
        raise ITCClaimError(
            f"Claim {claim.claim_id} cannot be reclaimed: payment on {payment_date.isoformat()} "
            f"is after the ITC deadline {claim.deadline.isoformat()}"
        )
    transition_claim(claim, _S.RECLAIMED)
    claim.reclaimed_amount = claim.reversed_amount
    logger.info("Claim %s reclaimed: %s", claim.claim_id, claim.reclaimed_amount)
    return claim


def reverse_expired_claims(claims: Iterable[ITCClaim], as_of: date | None = None) -> list[ITCClaim]:
    """Move every open claim past its deadline to EXPIRED; returns the ones moved."""
    as_of = as_of or date.today()
    expired = []
    for claim in claims:
        if claim.status in OPEN_STATUSES and as_of > claim.deadline:
            transition_claim(claim, _S.EXPIRED)
            expired.append(claim)
    if expired:
        logger.info("Expired %d ITC claim(s) as of %s", len(expired), as_of.isoformat())
    return expired


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------

_GSTR3B_BUCKETS = {
    ClaimType.INPUTS: "inputs",
    ClaimType.INPUT_SERVICES: "input_services",
    ClaimType.CAPITAL_GOODS: "capital_goods",
}


def prepare_itc_for_gstr3b(claims: Iterable[ITCClaim]) -> dict:
    """Table 4(A)(3) breakup of usable claims by inputs / input services / capital goods."""

    def _empty() -> dict:
        return {"igst": Decimal("0"), "cgst": Decimal("0"), "sgst": Decimal("0"), "cess": Decimal("0")}

    buckets = {name: _empty() for name in _GSTR3B_BUCKETS.values()}
    total = _empty()
    count = 0
    for claim in claims:
        if claim.status not in USABLE_STATUSES:
            continue
        count += 1
        bucket = buckets[_GSTR3B_BUCKETS[claim.category]]
        for head in ("igst", "cgst", "sgst", "cess"):
            value = getattr(claim, head)
            bucket[head] += value
            total[head] += value

    return {
        "table": TABLE_ITC_RCM,
        "claim_count": count,
        **buckets,
        "total": total,
        "total_itc": sum(total.values(), Decimal("0")),
    }


def get_expiring_claims(
    claims: Iterable[ITCClaim],
    as_of: date | None = None,
    within_days: int = EXPIRY_WARNING_DAYS,
) -> list[dict]:
    """Open claims whose deadline falls within *within_days*, soonest first."""
    as_of = as_of or date.today()
    expiring = []
    for claim in claims:
        if claim.status not in OPEN_STATUSES:
            continue
        info = calculate_itc_deadline(claim.self_invoice_date, as_of)
        if info.is_expired or info.days_remaining > within_days:
            continue
        expiring.append({
            "claim_id": claim.claim_id,
            "deadline": info.deadline,
            "days_remaining": info.days_remaining,
            "urgency": info.urgency,
            "available_amount": claim.available_amount,
        })
    expiring.sort(key=lambda e: e["days_remaining"])
    return expiring


def calculate_itc_utilization(claims: Iterable[ITCClaim]) -> ITCUtilization:
    total = Decimal("0")
    utilized = Decimal("0")
    for claim in claims:
        if claim.status not in USABLE_STATUSES:
            continue
        total += claim.total_itc_amount
        utilized += claim.utilized_amount

    pct = round_money(utilized / total * 100) if total > 0 else Decimal("0.00")
    status = "LOW"
    for floor, label in UTILIZATION_LEVELS:
        if pct >= floor:
            status = label
            break

    return ITCUtilization(
        total_itc=total,
        utilized=utilized,
        available=total - utilized,
        utilization_percentage=pct,
        status=status,
    )
