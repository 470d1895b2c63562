from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, model_validator

ZERO = Decimal("0")


class ClaimType(str, Enum):
    INPUTS = "INPUTS"
    CAPITAL_GOODS = "CAPITAL_GOODS"
    INPUT_SERVICES = "INPUT_SERVICES"


class EligibilityStatus(str, Enum):
    ELIGIBLE = "ELIGIBLE"
    BLOCKED = "BLOCKED"
    PAYMENT_PENDING = "PAYMENT_PENDING"
    EXPIRED = "EXPIRED"
    REVERSED = "REVERSED"
    RECLAIMED = "RECLAIMED"


class PaymentStatus(str, Enum):
    PAID = "PAID"
    UNPAID = "UNPAID"
    PARTIAL = "PARTIAL"


class PreviousReversal(BaseModel):
    amount: Decimal = Field(gt=0)
    reversal_date: date
    reason: str = ""


# ---------------------------------------------------------------------------
# Eligibility requests: one model per blocked-credit category
# ---------------------------------------------------------------------------

class ITCRequestBase(BaseModel):
    """Fields shared by every eligibility request."""
    model_config = ConfigDict(extra="forbid")

    description: str = ""
    invoice_date: date
    self_invoice_date: Optional[date] = None
    claim_type: ClaimType = ClaimType.INPUTS

    igst: Decimal = Field(default=ZERO, ge=0)
    cgst: Decimal = Field(default=ZERO, ge=0)
    sgst: Decimal = Field(default=ZERO, ge=0)
    cess: Decimal = Field(default=ZERO, ge=0)

    business_use_percentage: Decimal = Field(default=Decimal("100"), ge=0, le=100)
    # Rule 42 / 43 split; both or neither
    taxable_supplies: Optional[Decimal] = Field(default=None, ge=0)
    total_supplies: Optional[Decimal] = Field(default=None, ge=0)

    # Reverse charge
    is_rcm: bool = False
    is_gta: bool = False
    # False when the transporter charges 5% without ITC
    gta_itc_scheme_opted: bool = True

    payment_status: PaymentStatus = PaymentStatus.PAID
    payment_date: Optional[date] = None
    supplier_registration_status: Literal["ACTIVE", "CANCELLED"] = "ACTIVE"
    previous_reversal: Optional[PreviousReversal] = None

    @model_validator(mode="after")
    def _supply_split_pair(self):
        if (self.taxable_supplies is None) != (self.total_supplies is None):
            raise ValueError("taxable_supplies and total_supplies must be given together")
        if self.total_supplies is not None and self.taxable_supplies > self.total_supplies:
            raise ValueError("taxable_supplies cannot exceed total_supplies")
        return self

    @property
    def total_tax(self) -> Decimal:
        return self.igst + self.cgst + self.sgst + self.cess

    @property
    def reference_date(self) -> date:
        """Date the claim window runs from: the self-invoice for RCM, else the invoice."""
        return self.self_invoice_date or self.invoice_date

    @property
    def usage_label(self) -> str:
        return getattr(self, "usage", "")


class MotorVehicleRequest(ITCRequestBase):
    category: Literal["MOTOR_VEHICLE"] = "MOTOR_VEHICLE"
    seating_capacity: int = Field(ge=1)
    usage: Literal[
        "TAXI_SERVICE",
        "PASSENGER_TRANSPORT",
        "GOODS_TRANSPORT",
        "TRAINING_SCHOOL",
        "FURTHER_SUPPLY",
        "EMPLOYEE_TRANSPORT",
        "BUSINESS",
        "PERSONAL",
    ]


class FoodBeverageRequest(ITCRequestBase):
    category: Literal["FOOD_BEVERAGES"] = "FOOD_BEVERAGES"
    usage: Literal["EMPLOYEE_WELFARE", "BUSINESS_MEETING", "LEGAL_REQUIREMENT", "OUTWARD_SUPPLY", "PERSONAL"]
    legal_requirement_reference: Optional[str] = None


class MembershipRequest(ITCRequestBase):
    category: Literal["MEMBERSHIP"] = "MEMBERSHIP"
    membership_type: Literal["HEALTH_CLUB", "FITNESS_CENTER", "CLUB", "PROFESSIONAL_BODY"]
    usage: Literal["BUSINESS", "EMPLOYEE_WELFARE", "PERSONAL"] = "BUSINESS"


class InsuranceRequest(ITCRequestBase):
    category: Literal["INSURANCE"] = "INSURANCE"
    insurance_type: Literal["HEALTH", "LIFE", "VEHICLE", "PROPERTY", "GENERAL"]
    is_statutory: bool = False
    usage: Literal["BUSINESS", "EMPLOYEE_WELFARE", "PERSONAL"] = "BUSINESS"


class ConstructionRequest(ITCRequestBase):
    category: Literal["CONSTRUCTION"] = "CONSTRUCTION"
    asset_type: Literal["IMMOVABLE_PROPERTY", "PLANT_MACHINERY"]
    usage: Literal["OWN_USE", "RENTAL_BUSINESS", "SALE_DEVELOPMENT"] = "OWN_USE"
    is_works_contract: bool = False


class GeneralGoodsRequest(ITCRequestBase):
    category: Literal["GENERAL_GOODS"] = "GENERAL_GOODS"
    usage: Literal["BUSINESS", "MIXED", "PERSONAL", "CSR_ACTIVITY"] = "BUSINESS"
    goods_status: Literal["ACTIVE", "LOST", "STOLEN", "DESTROYED", "WRITTEN_OFF"] = "ACTIVE"


class CSRExpenseRequest(ITCRequestBase):
    category: Literal["CSR_EXPENSE"] = "CSR_EXPENSE"
    usage: Literal["CSR_ACTIVITY"] = "CSR_ACTIVITY"


ITCRequest = Annotated[
    Union[
        MotorVehicleRequest,
        FoodBeverageRequest,
        MembershipRequest,
        InsuranceRequest,
        ConstructionRequest,
        GeneralGoodsRequest,
        CSRExpenseRequest,
    ],
    Field(discriminator="category"),
]

_itc_request_adapter = TypeAdapter(ITCRequest)


def parse_itc_request(data: dict) -> ITCRequestBase:
    """Validate a raw dict into the request model named by its ``category``."""
    return _itc_request_adapter.validate_python(data)


# ---------------------------------------------------------------------------
# Claims
# ---------------------------------------------------------------------------

class ITCClaim(BaseModel):
    model_config = ConfigDict(validate_assignment=True)

    claim_id: str
    source_transaction_ref: str
    category: ClaimType = ClaimType.INPUTS
    self_invoice_date: date
    deadline: date
    igst: Decimal = ZERO
    cgst: Decimal = ZERO
    sgst: Decimal = ZERO
    cess: Decimal = ZERO
    utilized_amount: Decimal = Field(default=ZERO, ge=0)
    status: EligibilityStatus = EligibilityStatus.PAYMENT_PENDING
    reversed_amount: Decimal = ZERO
    reversal_reason: Optional[str] = None
    reclaimed_amount: Decimal = ZERO
    status_history: List[str] = Field(default_factory=list)

    @model_validator(mode="after")
    def _utilized_within_total(self):
        if self.utilized_amount > self.total_itc_amount:
            raise ValueError("utilized_amount cannot exceed total_itc_amount")
        return self

    @property
    def total_itc_amount(self) -> Decimal:
        return self.igst + self.cgst + self.sgst + self.cess

    @property
    def available_amount(self) -> Decimal:
        return self.total_itc_amount - self.utilized_amount
