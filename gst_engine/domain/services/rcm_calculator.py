# gst_engine/domain/services/rcm_calculator.py
"""
RCM (reverse charge) liability calculator.

Two variants share the place-of-supply resolver:

  * Indian unregistered supplier: tax on the sum of line items, split
    CGST + SGST or IGST depending on the two states.
  * Import of services: foreign amount converted at the given exchange
    rate, always 100% IGST.

Liability is also ITC in the same month once the tax is paid, so both
figures are returned together with the GSTR-3B tables they belong in.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable

from gst_engine.config.settings import settings
from gst_engine.domain.models.gst import (
    OUTSIDE_INDIA,
    ForeignCurrencyDetails,
    LineItem,
    RCMType,
    TaxComponents,
)
from gst_engine.domain.services.gst_calendar import next_month_day
from gst_engine.domain.services.place_of_supply import (
    SupplyType,
    combine_components,
    place_of_supply_label,
    resolve_supply_type,
    resolve_tax_components,
    round_money,
    to_decimal,
)

logger = logging.getLogger("rcm_calculator")

# GSTR-3B routing
TABLE_IMPORT_OF_SERVICES = "3.1(a)"
TABLE_INWARD_RCM = "3.1(d)"
TABLE_ITC_RCM = "4(A)(3)"

DEFAULT_SERVICE_RATE = Decimal("18")

# Common imported services; all taxed at the standard 18% slab
SERVICE_GST_RATES: dict[str, Decimal] = {
    "SOFTWARE": Decimal("18"),
    "CLOUD": Decimal("18"),
    "CONSULTING": Decimal("18"),
    "PROFESSIONAL": Decimal("18"),
    "ADVERTISING": Decimal("18"),
    "SUBSCRIPTION": Decimal("18"),
    "998314": Decimal("18"),  # IT design and development
    "998313": Decimal("18"),  # IT infrastructure / hosting
    "998311": Decimal("18"),  # management consulting
    "998319": Decimal("18"),  # other professional / technical
}


class RCMCalculationError(ValueError):
    """Raised for incomplete or inconsistent RCM calculation input."""
    pass


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class RCMLiability:
    """Tax payable under reverse charge for one transaction."""
    rcm_type: RCMType
    supply_type: SupplyType
    taxable_value: Decimal
    tax: TaxComponents
    place_of_supply: str
    gstr3b_liability_table: str
    gstr3b_itc_table: str = TABLE_ITC_RCM
    foreign_currency: ForeignCurrencyDetails | None = None

    @property
    def rcm_liability(self) -> Decimal:
        return self.tax.total_tax

    @property
    def itc_claimable(self) -> Decimal:
        # Full credit, subject to the ITC eligibility checks
        return self.tax.total_tax

    def to_dict(self) -> dict:
        d = {
            "rcm_type": self.rcm_type.value,
            "supply_type": self.supply_type.value,
            "taxable_value": str(self.taxable_value),
            "igst": str(self.tax.igst),
            "cgst": str(self.tax.cgst),
            "sgst": str(self.tax.sgst),
            "cess": str(self.tax.cess),
            "total_tax": str(self.tax.total_tax),
            "rcm_liability": str(self.rcm_liability),
            "itc_claimable": str(self.itc_claimable),
            "place_of_supply": self.place_of_supply,
            "gstr3b_liability_table": self.gstr3b_liability_table,
            "gstr3b_itc_table": self.gstr3b_itc_table,
        }
        if self.foreign_currency is not None:
            d["foreign_currency"] = self.foreign_currency.currency
            d["foreign_amount"] = str(self.foreign_currency.foreign_amount)
            d["exchange_rate"] = str(self.foreign_currency.exchange_rate)
            d["amount_in_inr"] = str(self.foreign_currency.amount_in_inr)
        return d


@dataclass
class RCMInterest:
    """Interest on late payment of RCM tax (Section 50)."""
    tax_amount: Decimal
    due_date: date
    payment_date: date
    days_overdue: int
    interest: Decimal
    overdue_category: str  # NONE / MINOR / MAJOR / CRITICAL

    def to_dict(self) -> dict:
        return {
            "tax_amount": str(self.tax_amount),
            "due_date": self.due_date.isoformat(),
            "payment_date": self.payment_date.isoformat(),
            "days_overdue": self.days_overdue,
            "interest": str(self.interest),
            "overdue_category": self.overdue_category,
        }


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def calculate_unregistered_rcm(
    line_items: Iterable[LineItem],
    supplier_state: str,
    recipient_state: str,
) -> RCMLiability:
    """RCM on purchases from an Indian supplier without GST registration."""
    items = [i for i in line_items if i.amount > 0]
    if not items:
        raise RCMCalculationError("At least one line item with a positive amount is required")

    parts = [
        resolve_tax_components(i.amount, i.gst_rate, supplier_state, recipient_state, i.cess_rate)
        for i in items
    ]
    tax = combine_components(parts)
    taxable_value = round_money(sum((i.amount for i in items), Decimal("0")))

    liability = RCMLiability(
        rcm_type=RCMType.INDIAN_UNREGISTERED,
        supply_type=resolve_supply_type(supplier_state, recipient_state),
        taxable_value=taxable_value,
        tax=tax,
        place_of_supply=place_of_supply_label(supplier_state, recipient_state),
        gstr3b_liability_table=gstr3b_liability_table(RCMType.INDIAN_UNREGISTERED),
    )
    logger.info(
        "Unregistered RCM: taxable=%s tax=%s (%s)",
        taxable_value, tax.total_tax, liability.supply_type.value,
    )
    return liability


def calculate_import_of_services_rcm(
    foreign_currency: str | None,
    foreign_amount,
    exchange_rate,
    rate=DEFAULT_SERVICE_RATE,
    cess_rate=Decimal("0"),
    recipient_state: str | None = None,
) -> RCMLiability:
    """
    RCM on services imported from a supplier outside India.

    The supplier is outside India by definition, so the whole tax is IGST
    on the INR value (foreign amount x exchange rate).
    """
    if foreign_amount is None:
        raise RCMCalculationError("foreign_amount is required for import of services")
    if exchange_rate is None:
        raise RCMCalculationError("exchange_rate is required when foreign_amount is given")
    if not foreign_currency:
        raise RCMCalculationError("foreign_currency is required when foreign_amount is given")

    foreign_amount = to_decimal(foreign_amount)
    exchange_rate = to_decimal(exchange_rate)
    if foreign_amount <= 0:
        raise RCMCalculationError("foreign_amount must be positive")
    if exchange_rate <= 0:
        raise RCMCalculationError("exchange_rate must be greater than zero")

    details = ForeignCurrencyDetails(
        currency=foreign_currency.strip().upper(),
        foreign_amount=foreign_amount,
        exchange_rate=exchange_rate,
    )
    amount_in_inr = details.amount_in_inr
    tax = resolve_tax_components(
        amount_in_inr, rate, OUTSIDE_INDIA, recipient_state or OUTSIDE_INDIA, cess_rate,
    )

    logger.info(
        "Import RCM: %s %s @ %s = INR %s, IGST=%s",
        details.currency, foreign_amount, exchange_rate, amount_in_inr, tax.igst,
    )
    return RCMLiability(
        rcm_type=RCMType.IMPORT_OF_SERVICES,
        supply_type=SupplyType.IMPORT,
        taxable_value=amount_in_inr,
        tax=tax,
        place_of_supply=place_of_supply_label(OUTSIDE_INDIA, recipient_state or OUTSIDE_INDIA),
        gstr3b_liability_table=gstr3b_liability_table(RCMType.IMPORT_OF_SERVICES),
        foreign_currency=details,
    )


def gstr3b_liability_table(rcm_type: RCMType) -> str:
    if rcm_type == RCMType.IMPORT_OF_SERVICES:
        return TABLE_IMPORT_OF_SERVICES
    return TABLE_INWARD_RCM


def prepare_rcm_liability_for_gstr3b(liabilities: Iterable[RCMLiability]) -> dict:
    """Head-wise GSTR-3B liability totals: imports in 3.1(a), other inward RCM in 3.1(d)."""

    def _empty() -> dict:
        return {
            "taxable_value": Decimal("0"),
            "igst": Decimal("0"),
            "cgst": Decimal("0"),
            "sgst": Decimal("0"),
            "cess": Decimal("0"),
        }

    tables = {TABLE_IMPORT_OF_SERVICES: _empty(), TABLE_INWARD_RCM: _empty()}
    count = 0
    for liability in liabilities:
        count += 1
        row = tables[liability.gstr3b_liability_table]
        row["taxable_value"] += liability.taxable_value
        for head in ("igst", "cgst", "sgst", "cess"):
            row[head] += getattr(liability.tax, head)

    total = sum(
        (row[head] for row in tables.values() for head in ("igst", "cgst", "sgst", "cess")),
        Decimal("0"),
    )
    logger.debug("GSTR-3B RCM liability: %d transaction(s), total %s", count, total)
    return {
        **tables,
        "liability_count": count,
        "total_liability": total,
        # paid RCM tax comes back as credit in the same return
        "itc_table": TABLE_ITC_RCM,
    }


def get_service_gst_rate(service_type: str | None) -> Decimal:
    """Default GST rate for a service type (SOFTWARE, CLOUD, ...) or SAC code."""
    if not service_type:
        return DEFAULT_SERVICE_RATE
    return SERVICE_GST_RATES.get(service_type.strip().upper(), DEFAULT_SERVICE_RATE)


def calculate_rcm_due_date(transaction_date: date) -> date:
    """RCM tax is paid in cash by the 20th of the following month."""
    return next_month_day(transaction_date)


def calculate_rcm_interest(
    tax_amount,
    due_date: date,
    payment_date: date,
    annual_rate: Decimal | None = None,
) -> RCMInterest:
    """Simple interest at 18% p.a. for each day the payment is late."""
    tax_amount = to_decimal(tax_amount)
    if tax_amount < 0:
        raise RCMCalculationError("Tax amount cannot be negative")
    annual_rate = settings.INTEREST_RATE_PERCENT if annual_rate is None else to_decimal(annual_rate)

    days = max((payment_date - due_date).days, 0)
    interest = round_money(tax_amount * annual_rate * days / Decimal("36500"))

    return RCMInterest(
        tax_amount=tax_amount,
        due_date=due_date,
        payment_date=payment_date,
        days_overdue=days,
        interest=interest,
        overdue_category=_overdue_category(days),
    )


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _overdue_category(days: int) -> str:
    if days <= 0:
        return "NONE"
    if days <= 30:
        return "MINOR"
    if days <= 90:
        return "MAJOR"
    return "CRITICAL"
