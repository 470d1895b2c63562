from datetime import date
from decimal import Decimal
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

# State / UT codes as used in GSTIN prefixes and place of supply
INDIAN_STATES: dict[str, str] = {
    "01": "Jammu and Kashmir",
    "02": "Himachal Pradesh",
    "03": "Punjab",
    "04": "Chandigarh",
    "05": "Uttarakhand",
    "06": "Haryana",
    "07": "Delhi",
    "08": "Rajasthan",
    "09": "Uttar Pradesh",
    "10": "Bihar",
    "11": "Sikkim",
    "12": "Arunachal Pradesh",
    "13": "Nagaland",
    "14": "Manipur",
    "15": "Mizoram",
    "16": "Tripura",
    "17": "Meghalaya",
    "18": "Assam",
    "19": "West Bengal",
    "20": "Jharkhand",
    "21": "Odisha",
    "22": "Chhattisgarh",
    "23": "Madhya Pradesh",
    "24": "Gujarat",
    "25": "Daman and Diu",
    "26": "Dadra and Nagar Haveli and Daman and Diu",
    "27": "Maharashtra",
    "28": "Andhra Pradesh (Old)",
    "29": "Karnataka",
    "30": "Goa",
    "31": "Lakshadweep",
    "32": "Kerala",
    "33": "Tamil Nadu",
    "34": "Puducherry",
    "35": "Andaman and Nicobar Islands",
    "36": "Telangana",
    "37": "Andhra Pradesh",
    "38": "Ladakh",
    "97": "Other Territory",
    "99": "Centre Jurisdiction",
}

OUTSIDE_INDIA = "OUTSIDE_INDIA"

ZERO = Decimal("0")


class RCMType(str, Enum):
    IMPORT_OF_SERVICES = "IMPORT_OF_SERVICES"
    INDIAN_UNREGISTERED = "INDIAN_UNREGISTERED"


class MatchStatus(str, Enum):
    MATCHED = "MATCHED"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    NO_MATCH = "NO_MATCH"
    NOT_IN_2B = "NOT_IN_2B"
    IN_2B_ONLY = "IN_2B_ONLY"


# ---------------------------------------------------------------------------
# Jurisdiction and tax split
# ---------------------------------------------------------------------------

class TaxJurisdiction(BaseModel):
    model_config = ConfigDict(frozen=True)

    state_code: Optional[str] = None
    is_foreign: bool = False

    @model_validator(mode="after")
    def _one_of_state_or_foreign(self):
        if self.is_foreign and self.state_code is not None:
            raise ValueError("A foreign jurisdiction cannot carry a state code")
        if not self.is_foreign:
            if self.state_code is None:
                raise ValueError("Either a state code or is_foreign is required")
            if self.state_code not in INDIAN_STATES:
                raise ValueError(f"Invalid state code: {self.state_code!r}")
        return self

    @classmethod
    def for_state(cls, state_code: str) -> "TaxJurisdiction":
        return cls(state_code=state_code.strip())

    @classmethod
    def outside_india(cls) -> "TaxJurisdiction":
        return cls(is_foreign=True)

    @property
    def name(self) -> str:
        if self.is_foreign:
            return "Outside India"
        return INDIAN_STATES[self.state_code]


class TaxComponents(BaseModel):
    """IGST or CGST+SGST (never both), plus cess. Immutable once computed."""
    model_config = ConfigDict(frozen=True)

    igst: Decimal = Field(default=ZERO, ge=0)
    cgst: Decimal = Field(default=ZERO, ge=0)
    sgst: Decimal = Field(default=ZERO, ge=0)
    cess: Decimal = Field(default=ZERO, ge=0)

    @model_validator(mode="after")
    def _exclusive_heads(self):
        if self.igst > 0 and (self.cgst > 0 or self.sgst > 0):
            raise ValueError("IGST and CGST/SGST cannot both be charged")
        if self.cgst != self.sgst:
            raise ValueError("CGST and SGST must be equal")
        return self

    @computed_field
    @property
    def total_tax(self) -> Decimal:
        return self.igst + self.cgst + self.sgst + self.cess


# ---------------------------------------------------------------------------
# RCM self-invoice
# ---------------------------------------------------------------------------

class LineItem(BaseModel):
    description: str = ""
    hsn_sac_code: str = ""
    amount: Decimal = Field(ge=0)
    gst_rate: Decimal = Decimal("18")
    cess_rate: Decimal = ZERO


class ForeignCurrencyDetails(BaseModel):
    currency: str = Field(min_length=3, max_length=3)
    foreign_amount: Decimal = Field(gt=0)
    exchange_rate: Decimal = Field(gt=0)

    @computed_field
    @property
    def amount_in_inr(self) -> Decimal:
        return (self.foreign_amount * self.exchange_rate).quantize(Decimal("0.01"))


class SelfInvoice(BaseModel):
    invoice_number: Optional[str] = None
    supplier_name: str = ""
    supplier_gstin: Optional[str] = None
    supplier_state: Optional[str] = None
    supplier_country: str = "INDIA"
    supplier_address: Optional[str] = None
    recipient_gstin: str = ""
    recipient_state: Optional[str] = None
    invoice_date: date
    date_of_receipt_of_supply: date
    rcm_type: RCMType
    line_items: List[LineItem] = Field(default_factory=list)
    tax_components: Optional[TaxComponents] = None
    taxable_value: Decimal = ZERO
    foreign_currency_details: Optional[ForeignCurrencyDetails] = None
    place_of_supply: Optional[str] = None

    @model_validator(mode="after")
    def _foreign_details_iff_import(self):
        is_import = self.rcm_type == RCMType.IMPORT_OF_SERVICES
        if is_import and self.foreign_currency_details is None:
            raise ValueError("Import of services requires foreign currency details")
        if not is_import and self.foreign_currency_details is not None:
            raise ValueError("Foreign currency details are only valid for import of services")
        return self

    @property
    def days_to_invoice(self) -> int:
        return (self.invoice_date - self.date_of_receipt_of_supply).days


# ---------------------------------------------------------------------------
# Reconciliation inputs
# ---------------------------------------------------------------------------

class PurchaseInvoice(BaseModel):
    id: Optional[str] = None
    vendor_gstin: str
    vendor_name: Optional[str] = None
    invoice_number: str
    invoice_date: date
    taxable_value: Decimal = ZERO
    igst: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    cess: Decimal = ZERO

    @property
    def total_itc(self) -> Decimal:
        return self.igst + self.cgst + self.sgst


class GSTR2BEntry(BaseModel):
    vendor_gstin: str
    vendor_name: Optional[str] = None
    invoice_number: str
    invoice_date: date
    invoice_value: Optional[Decimal] = None
    taxable_value: Decimal = ZERO
    igst: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    cess: Decimal = ZERO
    itc_availability: Optional[str] = None
    reason: Optional[str] = None
    supply_type: str = "B2B"
    original_invoice_number: Optional[str] = None
    original_invoice_date: Optional[date] = None
    source_type: Optional[str] = None
    port_code: Optional[str] = None
    match_status: Optional[MatchStatus] = None

    @property
    def total_itc(self) -> Decimal:
        return self.igst + self.cgst + self.sgst


# ---------------------------------------------------------------------------
# Foreign suppliers
# ---------------------------------------------------------------------------

class ForeignSupplierProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    supplier_code: str
    name: str
    name_patterns: Tuple[str, ...]
    domains: Tuple[str, ...] = ()
    default_hsn: str
    default_gst_rate: Decimal = Decimal("18")
    service_category: str
    default_currency: str = "USD"
    supported_currencies: Tuple[str, ...] = ("USD",)
    billing_country: str = "USA"
    description: str = ""
    supported_services: Tuple[str, ...] = ()
