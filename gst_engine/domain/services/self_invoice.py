# gst_engine/domain/services/self_invoice.py
"""
RCM self-invoice lifecycle.

A recipient paying tax under reverse charge must raise a self-invoice
within 30 days of receiving the supply (Rule 47A). This module numbers
self-invoices, checks the 30-day window, validates drafts, builds the
final invoice with its tax split, and prepares GSTR-1 / document payloads.

Validation follows the usual split:
  - missing identity (supplier name, recipient GSTIN) raises SelfInvoiceError
  - business-rule problems come back as errors / warnings on the result
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Iterable

from gst_engine.config.settings import settings
from gst_engine.domain.models.gst import RCMType, SelfInvoice
from gst_engine.domain.services.code_classifier import CodeType, get_code_type
from gst_engine.domain.services.gst_calendar import financial_year_label, parse_financial_year
from gst_engine.domain.services.place_of_supply import (
    is_valid_gstin,
    round_money,
    state_code_from_gstin,
    to_decimal,
    validate_gstin,
)
from gst_engine.domain.services.rcm_calculator import (
    RCMLiability,
    calculate_import_of_services_rcm,
    calculate_unregistered_rcm,
)

logger = logging.getLogger("self_invoice")

# (days elapsed since receipt, level), checked top-down
DUE_DATE_WARNING_LEVELS = [
    (28, "CRITICAL"),
    (25, "HIGH"),
    (20, "MEDIUM"),
    (15, "LOW"),
]

MIN_LATE_PENALTY = Decimal("10000")
LATE_PENALTY_RATE = Decimal("0.10")


class SelfInvoiceError(ValueError):
    """Raised when a self-invoice lacks the identity needed to issue it."""
    pass


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class SelfInvoiceDueStatus:
    receipt_date: date
    as_of: date
    days_elapsed: int
    days_remaining: int
    is_overdue: bool
    days_delayed: int = 0
    warning_level: str | None = None

    def to_dict(self) -> dict:
        return {
            "receipt_date": self.receipt_date.isoformat(),
            "as_of": self.as_of.isoformat(),
            "days_elapsed": self.days_elapsed,
            "days_remaining": self.days_remaining,
            "is_overdue": self.is_overdue,
            "days_delayed": self.days_delayed,
            "warning_level": self.warning_level,
        }


@dataclass
class SelfInvoiceValidation:
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    days_to_invoice: int = 0

    def to_dict(self) -> dict:
        return {
            "is_valid": self.is_valid,
            "errors": self.errors,
            "warnings": self.warnings,
            "days_to_invoice": self.days_to_invoice,
        }


@dataclass
class BulkGenerationResult:
    generated: list[SelfInvoice] = field(default_factory=list)
    failed: list[dict] = field(default_factory=list)
    next_sequence: int = 1

    def to_dict(self) -> dict:
        return {
            "generated": [inv.invoice_number for inv in self.generated],
            "failed": self.failed,
            "next_sequence": self.next_sequence,
        }


@dataclass
class SelfInvoiceCompliance:
    total: int
    on_time: int
    pending: int
    compliance_percentage: Decimal
    rating: str
    requires_action: bool

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "on_time": self.on_time,
            "pending": self.pending,
            "compliance_percentage": str(self.compliance_percentage),
            "rating": self.rating,
            "requires_action": self.requires_action,
        }


@dataclass
class LatePenalty:
    days_delayed: int
    interest_rate: Decimal
    interest_amount: Decimal
    penalty_amount: Decimal

    @property
    def total_penalty(self) -> Decimal:
        return round_money(self.interest_amount + self.penalty_amount)

    def to_dict(self) -> dict:
        return {
            "days_delayed": self.days_delayed,
            "interest_rate": str(self.interest_rate),
            "interest_amount": str(self.interest_amount),
            "penalty_amount": str(self.penalty_amount),
            "total_penalty": str(self.total_penalty),
        }


# ---------------------------------------------------------------------------
# Numbering and the 30-day window
# ---------------------------------------------------------------------------

def generate_self_invoice_number(financial_year: str, sequence: int) -> str:
    """SI-FY24-25/001 style number; accepts "2024-25" or "FY24-25"."""
    if sequence < 1:
        raise SelfInvoiceError("Self-invoice sequence must start at 1")
    try:
        start = parse_financial_year(financial_year)
    except ValueError as exc:
        raise SelfInvoiceError(str(exc)) from exc
    return f"SI-FY{start % 100:02d}-{(start + 1) % 100:02d}/{sequence:03d}"


def check_self_invoice_due_date(
    receipt_date: date,
    as_of: date | None = None,
    time_limit_days: int | None = None,
) -> SelfInvoiceDueStatus:
    """Where a pending self-invoice stands against the 30-day window."""
    as_of = as_of or date.today()
    limit = settings.SELF_INVOICE_TIME_LIMIT_DAYS if time_limit_days is None else time_limit_days

    elapsed = (as_of - receipt_date).days
    overdue = elapsed > limit
    level = None
    if not overdue:
        for threshold, name in DUE_DATE_WARNING_LEVELS:
            if elapsed >= threshold:
                level = name
                break

    return SelfInvoiceDueStatus(
        receipt_date=receipt_date,
        as_of=as_of,
        days_elapsed=elapsed,
        days_remaining=max(limit - elapsed, 0),
        is_overdue=overdue,
        days_delayed=elapsed - limit if overdue else 0,
        warning_level=level,
    )


def validate_self_invoice(
    invoice: SelfInvoice,
    time_limit_days: int | None = None,
    warning_days: int | None = None,
) -> SelfInvoiceValidation:
    """
    Check a self-invoice draft before it is issued.

    Raises SelfInvoiceError when the supplier or the recipient GSTIN is
    missing; everything else is reported on the returned result.
    """
    _require_identity(invoice)

    limit = settings.SELF_INVOICE_TIME_LIMIT_DAYS if time_limit_days is None else time_limit_days
    warn_after = settings.SELF_INVOICE_WARNING_DAYS if warning_days is None else warning_days

    errors: list[str] = []
    warnings: list[str] = []
    gap = invoice.days_to_invoice

    if gap < 0:
        errors.append(
            f"Self-invoice date {invoice.invoice_date.isoformat()} cannot be before "
            f"the date of receipt of supply {invoice.date_of_receipt_of_supply.isoformat()}"
        )
    elif gap > limit:
        errors.append(
            f"{limit}-day time limit exceeded (Rule 47A): self-invoice raised {gap} days "
            f"after receipt of supply. Delayed by {gap - limit} days; interest and penalty may apply"
        )
    elif gap > warn_after:
        warnings.append(
            f"Self-invoice raised {gap} days after receipt of supply. "
            f"Only {limit - gap} days remained under the {limit}-day rule (Rule 47A)"
        )

    if not invoice.line_items:
        errors.append("At least one line item is required")
    for n, item in enumerate(invoice.line_items, start=1):
        if get_code_type(item.hsn_sac_code) == CodeType.INVALID:
            errors.append(
                f"Line item {n}: valid HSN/SAC code required (4 to 8 digits), got '{item.hsn_sac_code}'"
            )

    if invoice.rcm_type == RCMType.INDIAN_UNREGISTERED:
        if not invoice.supplier_state:
            errors.append("Supplier state is required for an unregistered Indian supplier")
        if invoice.supplier_gstin and is_valid_gstin(invoice.supplier_gstin):
            warnings.append(
                "Supplier has a valid GSTIN; reverse charge applies only to notified supplies"
            )

    return SelfInvoiceValidation(
        is_valid=not errors,
        errors=errors,
        warnings=warnings,
        days_to_invoice=gap,
    )


# ---------------------------------------------------------------------------
# Building invoices
# ---------------------------------------------------------------------------

def calculate_self_invoice_liability(invoice: SelfInvoice) -> RCMLiability:
    """Run the RCM calculator variant matching the invoice's rcm_type."""
    if invoice.rcm_type == RCMType.IMPORT_OF_SERVICES:
        fx = invoice.foreign_currency_details
        rates = {item.gst_rate for item in invoice.line_items} or {Decimal("18")}
        if len(rates) > 1:
            raise SelfInvoiceError("Import of services line items must share one GST rate")
        cess_rate = invoice.line_items[0].cess_rate if invoice.line_items else Decimal("0")
        return calculate_import_of_services_rcm(
            fx.currency,
            fx.foreign_amount,
            fx.exchange_rate,
            rate=rates.pop(),
            cess_rate=cess_rate,
            recipient_state=_recipient_state(invoice),
        )

    if not invoice.supplier_state:
        raise SelfInvoiceError("Supplier state is required for an unregistered Indian supplier")
    return calculate_unregistered_rcm(
        invoice.line_items, invoice.supplier_state, _recipient_state(invoice),
    )


def build_self_invoice(
    invoice: SelfInvoice,
    sequence: int,
    financial_year: str | None = None,
) -> SelfInvoice:
    """Return a numbered copy of *invoice* with tax and place of supply filled in."""
    _require_identity(invoice)
    fy = financial_year or financial_year_label(invoice.invoice_date)
    liability = calculate_self_invoice_liability(invoice)

    built = invoice.model_copy(update={
        "invoice_number": generate_self_invoice_number(fy, sequence),
        "tax_components": liability.tax,
        "taxable_value": liability.taxable_value,
        "place_of_supply": liability.place_of_supply,
    })
    logger.info(
        "Self-invoice %s built: %s taxable=%s tax=%s",
        built.invoice_number, invoice.rcm_type.value, liability.taxable_value, liability.tax.total_tax,
    )
    return built


def generate_bulk_self_invoices(
    drafts: Iterable[SelfInvoice],
    financial_year: str,
    start_sequence: int = 1,
) -> BulkGenerationResult:
    """Validate and build many drafts; failures are collected, not raised."""
    result = BulkGenerationResult(next_sequence=start_sequence)

    for index, draft in enumerate(drafts):
        try:
            check = validate_self_invoice(draft)
            if not check.is_valid:
                result.failed.append({
                    "index": index,
                    "supplier_name": draft.supplier_name,
                    "errors": check.errors,
                })
                continue
            built = build_self_invoice(draft, result.next_sequence, financial_year)
        except ValueError as exc:
            result.failed.append({
                "index": index,
                "supplier_name": draft.supplier_name,
                "errors": [str(exc)],
            })
            continue
        result.generated.append(built)
        result.next_sequence += 1

    logger.info(
        "Bulk self-invoice run: generated=%d failed=%d",
        len(result.generated), len(result.failed),
    )
    return result


# ---------------------------------------------------------------------------
# Compliance and reporting
# ---------------------------------------------------------------------------

def self_invoice_compliance_status(total: int, on_time: int, pending: int = 0) -> SelfInvoiceCompliance:
    if total < 0 or on_time < 0 or pending < 0 or on_time > total:
        raise ValueError("Invalid self-invoice counts")

    pct = Decimal("100") if total == 0 else round_money(Decimal(on_time) * 100 / Decimal(total))
    if pct >= 95:
        rating = "EXCELLENT"
    elif pct >= 75:
        rating = "GOOD"
    elif pct >= 50:
        rating = "FAIR"
    else:
        rating = "POOR"

    return SelfInvoiceCompliance(
        total=total,
        on_time=on_time,
        pending=pending,
        compliance_percentage=pct,
        rating=rating,
        requires_action=rating == "POOR" or pending > 5,
    )


def calculate_late_self_invoice_penalty(
    tax_amount,
    days_elapsed: int,
    time_limit_days: int | None = None,
    annual_rate: Decimal | None = None,
) -> LatePenalty:
    """Interest for the days beyond the limit plus max(10,000, 10% of tax)."""
    limit = settings.SELF_INVOICE_TIME_LIMIT_DAYS if time_limit_days is None else time_limit_days
    rate = settings.INTEREST_RATE_PERCENT if annual_rate is None else to_decimal(annual_rate)
    tax_amount = to_decimal(tax_amount)

    delayed = max(days_elapsed - limit, 0)
    if delayed == 0:
        zero = Decimal("0.00")
        return LatePenalty(days_delayed=0, interest_rate=Decimal("0"), interest_amount=zero, penalty_amount=zero)

    interest = round_money(tax_amount * rate * delayed / Decimal("36500"))
    penalty = round_money(max(MIN_LATE_PENALTY, tax_amount * LATE_PENALTY_RATE))
    return LatePenalty(
        days_delayed=delayed,
        interest_rate=rate,
        interest_amount=interest,
        penalty_amount=penalty,
    )


def prepare_self_invoice_for_gstr1(invoice: SelfInvoice) -> dict[str, Any]:
    """GSTR-1 table 4B row (supplies attracting reverse charge)."""
    if invoice.tax_components is None or not invoice.invoice_number:
        raise SelfInvoiceError("Self-invoice must be built before it is reported")

    tax = invoice.tax_components
    pos = "96" if invoice.rcm_type == RCMType.IMPORT_OF_SERVICES else _recipient_state(invoice)
    rate = invoice.line_items[0].gst_rate if invoice.line_items else Decimal("0")
    return {
        "table": "4B",
        "supply_type": "RCHRG",
        "inum": invoice.invoice_number,
        "idt": invoice.invoice_date.strftime("%d-%m-%Y"),
        "val": str(invoice.taxable_value + tax.total_tax),
        "pos": pos,
        "rchrg": "Y",
        "itms": [{
            "rt": str(rate),
            "txval": str(invoice.taxable_value),
            "iamt": str(tax.igst),
            "camt": str(tax.cgst),
            "samt": str(tax.sgst),
            "csamt": str(tax.cess),
        }],
    }


def self_invoice_payload(invoice: SelfInvoice) -> dict[str, Any]:
    """JSON-safe representation handed to the document service."""
    return invoice.model_dump(mode="json")


async def render_self_invoice_document(invoice: SelfInvoice, client) -> bytes:
    """Render a built self-invoice through an injected DocumentClient."""
    if not invoice.invoice_number:
        raise SelfInvoiceError("Self-invoice must be built before it is rendered")
    return await client.render_self_invoice(self_invoice_payload(invoice))


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _require_identity(invoice: SelfInvoice) -> None:
    if not invoice.supplier_name or not invoice.supplier_name.strip():
        raise SelfInvoiceError("Supplier name is required")
    if not invoice.recipient_gstin:
        raise SelfInvoiceError("Recipient GSTIN is required")
    check = validate_gstin(invoice.recipient_gstin)
    if not check.is_valid:
        raise SelfInvoiceError(f"Invalid recipient GSTIN: {'; '.join(check.errors)}")


def _recipient_state(invoice: SelfInvoice) -> str:
    return invoice.recipient_state or state_code_from_gstin(invoice.recipient_gstin)
