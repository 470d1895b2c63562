# gst_engine/domain/services/place_of_supply.py
"""
Place-of-supply and tax-structure resolver.

Decides whether a supply is intrastate (CGST + SGST) or interstate / import
(IGST) and splits the tax on a taxable amount accordingly. Every component
is rounded to paise on its own with banker's rounding, so CGST + SGST may
differ from the equivalent IGST figure by at most one paisa.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation
from enum import Enum
from typing import Iterable, Union

from pydantic import ValidationError

from gst_engine.domain.models.gst import (
    INDIAN_STATES,
    OUTSIDE_INDIA,
    TaxComponents,
    TaxJurisdiction,
)

VALID_GST_RATES = (Decimal("0"), Decimal("5"), Decimal("12"), Decimal("18"), Decimal("28"))
PAISE = Decimal("0.01")
HUNDRED = Decimal("100")

PAN_REGEX = re.compile(r"^[A-Z]{5}[0-9]{4}[A-Z]$")
GSTIN_REGEX = re.compile(r"^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z][1-9A-Z]Z[0-9A-Z]$")

JurisdictionLike = Union[TaxJurisdiction, str, None]


class TaxComputationError(ValueError):
    """Raised for malformed resolver input (amount, rate or state code)."""
    pass


class SupplyType(str, Enum):
    INTRASTATE = "INTRASTATE"
    INTERSTATE = "INTERSTATE"
    IMPORT = "IMPORT"


@dataclass
class GSTINValidation:
    gstin: str
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    state_code: str | None = None
    state_name: str | None = None
    pan: str | None = None

    def to_dict(self) -> dict:
        return {
            "gstin": self.gstin,
            "is_valid": self.is_valid,
            "errors": self.errors,
            "state_code": self.state_code,
            "state_name": self.state_name,
            "pan": self.pan,
        }


# ---------------------------------------------------------------------------
# Money helpers
# ---------------------------------------------------------------------------

def to_decimal(value) -> Decimal:
    """Coerce int / float / str / None to Decimal (None and "" become 0)."""
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise TaxComputationError(f"Not a number: {value!r}") from exc


def round_money(value: Decimal) -> Decimal:
    return value.quantize(PAISE, rounding=ROUND_HALF_EVEN)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def to_jurisdiction(value: JurisdictionLike) -> TaxJurisdiction:
    """Accept a TaxJurisdiction, a two-digit state code or OUTSIDE_INDIA."""
    if isinstance(value, TaxJurisdiction):
        return value
    if value is None or not str(value).strip():
        raise TaxComputationError("Jurisdiction is required")
    raw = str(value).strip().upper()
    if raw in (OUTSIDE_INDIA, "OUTSIDE INDIA", "FOREIGN", "96"):
        return TaxJurisdiction.outside_india()
    if not re.match(r"^\d{2}$", raw):
        raise TaxComputationError(f"Invalid state code: {value!r}")
    try:
        return TaxJurisdiction.for_state(raw)
    except ValidationError as exc:
        raise TaxComputationError(f"Invalid state code: {value!r}") from exc


def resolve_supply_type(supplier: JurisdictionLike, recipient: JurisdictionLike) -> SupplyType:
    supplier_j = to_jurisdiction(supplier)
    recipient_j = to_jurisdiction(recipient)
    if supplier_j.is_foreign or recipient_j.is_foreign:
        return SupplyType.IMPORT
    if supplier_j.state_code == recipient_j.state_code:
        return SupplyType.INTRASTATE
    return SupplyType.INTERSTATE


def validate_rate(rate) -> Decimal:
    rate = to_decimal(rate)
    if rate not in VALID_GST_RATES:
        raise TaxComputationError(
            f"Invalid GST rate {rate}%. Allowed: {', '.join(str(r) for r in VALID_GST_RATES)}"
        )
    return rate


def resolve_tax_components(
    amount,
    rate,
    supplier: JurisdictionLike,
    recipient: JurisdictionLike,
    cess_rate=Decimal("0"),
) -> TaxComponents:
    """
    Compute IGST or CGST + SGST (plus cess) for a taxable amount.

    Intrastate supplies split the rate in half and round each half on its
    own; interstate and import supplies carry the full rate as IGST.
    """
    amount = to_decimal(amount)
    if amount <= 0:
        raise TaxComputationError(f"Taxable amount must be positive, got {amount}")
    rate = validate_rate(rate)
    cess_rate = to_decimal(cess_rate)
    if cess_rate < 0:
        raise TaxComputationError("Cess rate cannot be negative")

    supply_type = resolve_supply_type(supplier, recipient)
    cess = round_money(amount * cess_rate / HUNDRED)

    if rate == 0:
        return TaxComponents(cess=cess)

    if supply_type == SupplyType.INTRASTATE:
        half = round_money(amount * (rate / 2) / HUNDRED)
        return TaxComponents(cgst=half, sgst=half, cess=cess)

    return TaxComponents(igst=round_money(amount * rate / HUNDRED), cess=cess)


def combine_components(parts: Iterable[TaxComponents]) -> TaxComponents:
    """Sum several component sets that share one supply type."""
    igst = cgst = sgst = cess = Decimal("0")
    for p in parts:
        igst += p.igst
        cgst += p.cgst
        sgst += p.sgst
        cess += p.cess
    return TaxComponents(igst=igst, cgst=cgst, sgst=sgst, cess=cess)


def place_of_supply_label(supplier: JurisdictionLike, recipient: JurisdictionLike) -> str:
    """Human-readable place of supply, e.g. "29-Karnataka (Intrastate)"."""
    supply_type = resolve_supply_type(supplier, recipient)
    if supply_type == SupplyType.IMPORT:
        return "Outside India (Import of Services)"
    recipient_j = to_jurisdiction(recipient)
    suffix = "Intrastate" if supply_type == SupplyType.INTRASTATE else "Interstate"
    return f"{recipient_j.state_code}-{recipient_j.name} ({suffix})"


def get_state_name(state_code: str) -> str | None:
    return INDIAN_STATES.get((state_code or "").strip())


# ---------------------------------------------------------------------------
# GSTIN helpers
# ---------------------------------------------------------------------------

def is_valid_pan(pan: str | None) -> bool:
    if not pan:
        return False
    return bool(PAN_REGEX.match(pan.strip().upper()))


def validate_gstin(gstin: str | None) -> GSTINValidation:
    """Validate a GSTIN and explain every problem found."""
    raw = (gstin or "").strip().upper()
    result = GSTINValidation(gstin=raw, is_valid=False)

    if not raw:
        result.errors.append("GSTIN is required")
        return result
    if len(raw) != 15:
        result.errors.append("GSTIN must be 15 characters long")
        return result

    state_code = raw[:2]
    if state_code not in INDIAN_STATES:
        result.errors.append(f"Invalid state code in GSTIN: {state_code}")
    else:
        result.state_code = state_code
        result.state_name = INDIAN_STATES[state_code]

    pan = raw[2:12]
    if not is_valid_pan(pan):
        result.errors.append(f"Invalid PAN in GSTIN: {pan}")
    else:
        result.pan = pan

    if raw[13] != "Z":
        result.errors.append("14th character of GSTIN should be Z")

    if not result.errors and not GSTIN_REGEX.match(raw):
        result.errors.append("GSTIN format is invalid")

    result.is_valid = not result.errors
    return result


def is_valid_gstin(gstin: str | None) -> bool:
    return validate_gstin(gstin).is_valid


def state_code_from_gstin(gstin: str | None) -> str | None:
    v = validate_gstin(gstin)
    return v.state_code if v.is_valid else None
