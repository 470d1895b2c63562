"""Shared test fixtures for the GST engine test suite."""

import asyncio
from datetime import date
from decimal import Decimal

import pytest

from gst_engine.domain.models.gst import (
    ForeignCurrencyDetails,
    GSTR2BEntry,
    LineItem,
    PurchaseInvoice,
    RCMType,
    SelfInvoice,
)

# Syntactically valid GSTINs (state code + PAN + entity + Z + check char)
KA_GSTIN = "29AABCU9603R1ZM"
MH_GSTIN = "27AADCB2230M1ZP"
TS_GSTIN = "36AABCU9603R1ZM"


@pytest.fixture(scope="session")
def event_loop():
    """Use a single event loop for the entire test session."""
    loop = asyncio.new_event_loop()
    yield loop
    loop.close()


@pytest.fixture
def unregistered_self_invoice() -> SelfInvoice:
    """Self-invoice for legal fees paid to an unregistered Karnataka supplier."""
    return SelfInvoice(
        supplier_name="Ramesh Kumar",
        supplier_state="29",
        recipient_gstin=KA_GSTIN,
        recipient_state="29",
        invoice_date=date(2024, 10, 10),
        date_of_receipt_of_supply=date(2024, 10, 1),
        rcm_type=RCMType.INDIAN_UNREGISTERED,
        line_items=[
            LineItem(description="Legal consultation", hsn_sac_code="998211", amount=Decimal("10000")),
        ],
    )


@pytest.fixture
def import_self_invoice() -> SelfInvoice:
    """Self-invoice for a USD software subscription."""
    return SelfInvoice(
        supplier_name="Adobe Inc.",
        supplier_country="USA",
        recipient_gstin=KA_GSTIN,
        recipient_state="29",
        invoice_date=date(2024, 10, 5),
        date_of_receipt_of_supply=date(2024, 10, 1),
        rcm_type=RCMType.IMPORT_OF_SERVICES,
        line_items=[
            LineItem(description="Creative Cloud", hsn_sac_code="998314", amount=Decimal("8350")),
        ],
        foreign_currency_details=ForeignCurrencyDetails(
            currency="USD", foreign_amount=Decimal("100"), exchange_rate=Decimal("83.50"),
        ),
    )


@pytest.fixture
def purchase_invoice() -> PurchaseInvoice:
    return PurchaseInvoice(
        id="pi-1",
        vendor_gstin=MH_GSTIN,
        vendor_name="XYZ Enterprises",
        invoice_number="INV-001",
        invoice_date=date(2024, 6, 15),
        taxable_value=Decimal("100000"),
        igst=Decimal("18000"),
    )


@pytest.fixture
def gstr2b_entry() -> GSTR2BEntry:
    return GSTR2BEntry(
        vendor_gstin=MH_GSTIN,
        vendor_name="XYZ Enterprises",
        invoice_number="INV-001",
        invoice_date=date(2024, 6, 15),
        taxable_value=Decimal("100000"),
        igst=Decimal("18000"),
    )
