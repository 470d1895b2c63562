# gst_engine/domain/services/rcm_detector.py
"""
Reverse-charge applicability detection.

Priority order:
  1. Import of services from a supplier outside India (IGST, whatever the SAC)
  2. Notified services / goods (Section 9(3)), via the injected rule set
  3. Unregistered (or composition) domestic supplier
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel

from gst_engine.domain.models.gst import OUTSIDE_INDIA
from gst_engine.domain.services.foreign_supplier_registry import (
    ForeignSupplierRegistry,
    SupplierLookupError,
)
from gst_engine.domain.services.notified_rules import (
    DEFAULT_RULE_SET,
    SERVICE,
    RuleSetRepository,
    match_notified_rule,
)
from gst_engine.domain.services.place_of_supply import is_valid_gstin
from gst_engine.domain.services.rcm_calculator import get_service_gst_rate

logger = logging.getLogger("rcm_detector")


class RCMDetectionError(ValueError):
    """Raised when a transaction lacks the fields needed to detect RCM."""
    pass


class RCMTransaction(BaseModel):
    vendor_gstin: Optional[str] = None
    vendor_name: Optional[str] = None
    vendor_country: str = "INDIA"
    place_of_supply: Optional[str] = None  # state code or OUTSIDE_INDIA
    recipient_gstin: Optional[str] = None
    recipient_state: str = ""
    service_type: str = ""
    hsn_sac_code: Optional[str] = None
    taxable_amount: Decimal = Decimal("0")
    is_composition_vendor: bool = False
    transaction_date: Optional[date] = None


@dataclass
class RCMDetectionResult:
    is_rcm_applicable: bool = False
    rcm_type: str | None = None  # NOTIFIED_SERVICE / NOTIFIED_GOODS / IMPORT_SERVICE / UNREGISTERED
    tax_type: str | None = None  # CGST_SGST / IGST
    gst_rate: Decimal = Decimal("18")
    reason: str = ""
    matched_rule_id: str | None = None
    notification_no: str | None = None
    known_supplier: bool = False
    supplier_code: str | None = None
    default_hsn: str | None = None

    def to_dict(self) -> dict:
        return {
            "is_rcm_applicable": self.is_rcm_applicable,
            "rcm_type": self.rcm_type,
            "tax_type": self.tax_type,
            "gst_rate": str(self.gst_rate),
            "reason": self.reason,
            "matched_rule_id": self.matched_rule_id,
            "notification_no": self.notification_no,
            "known_supplier": self.known_supplier,
            "supplier_code": self.supplier_code,
            "default_hsn": self.default_hsn,
        }


def detect_rcm(
    txn: RCMTransaction,
    rule_set: RuleSetRepository = DEFAULT_RULE_SET,
    registry: ForeignSupplierRegistry | None = None,
) -> RCMDetectionResult:
    """Decide whether reverse charge applies and under which head."""
    if not txn.recipient_gstin:
        raise RCMDetectionError("Recipient GSTIN is required")
    if not txn.place_of_supply:
        raise RCMDetectionError("Place of supply is required")
    if txn.taxable_amount <= 0:
        raise RCMDetectionError("Taxable amount must be greater than 0")

    result = RCMDetectionResult(gst_rate=get_service_gst_rate(txn.service_type))

    # 1. Import of services
    if txn.vendor_country.strip().upper() != "INDIA" or txn.place_of_supply.upper() == OUTSIDE_INDIA:
        result.is_rcm_applicable = True
        result.rcm_type = "IMPORT_SERVICE"
        result.tax_type = "IGST"
        result.reason = "RCM applicable for import of services from foreign vendor"
        if txn.vendor_name:
            _attach_known_supplier(result, txn, registry or ForeignSupplierRegistry())
        return result

    # 2. Notified domestic supplies
    if txn.hsn_sac_code:
        match = match_notified_rule(txn.hsn_sac_code, rule_set, on=txn.transaction_date)
        if match:
            result.is_rcm_applicable = True
            result.rcm_type = "NOTIFIED_SERVICE" if match.rule.rule_type == SERVICE else "NOTIFIED_GOODS"
            result.gst_rate = match.rule.gst_rate
            result.reason = match.reason
            result.matched_rule_id = match.rule.id
            result.notification_no = match.rule.notification_no
            result.tax_type = _tax_type(txn.place_of_supply, txn.recipient_state)
            return result

    # 3. Unregistered / composition vendor
    has_gstin = is_valid_gstin(txn.vendor_gstin)
    if not has_gstin or txn.is_composition_vendor:
        result.is_rcm_applicable = True
        result.rcm_type = "UNREGISTERED"
        result.tax_type = _tax_type(txn.place_of_supply, txn.recipient_state)
        if not has_gstin and txn.vendor_gstin:
            result.reason = "RCM applicable for unregistered vendor (invalid GSTIN format)"
        elif txn.is_composition_vendor:
            result.reason = "RCM applicable for composition scheme vendor"
        else:
            result.reason = "RCM applicable for unregistered vendor (no GSTIN)"
        return result

    result.reason = "No RCM applicable for registered vendor with valid GSTIN"
    return result


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _tax_type(place_of_supply: str, recipient_state: str) -> str:
    pos = place_of_supply.strip().upper()
    if pos == OUTSIDE_INDIA:
        return "IGST"
    return "CGST_SGST" if pos == recipient_state.strip().upper() else "IGST"


def _attach_known_supplier(
    result: RCMDetectionResult,
    txn: RCMTransaction,
    registry: ForeignSupplierRegistry,
) -> None:
    try:
        match = registry.detect(txn.vendor_name, txn.vendor_country, service_type=txn.service_type or None)
    except SupplierLookupError as exc:
        # Supplier pre-fill is optional; RCM still applies
        logger.warning("Known-supplier lookup skipped for %r: %s", txn.vendor_name, exc)
        return
    if match.is_known_supplier:
        result.known_supplier = True
        result.supplier_code = match.supplier_code
        result.default_hsn = match.default_hsn
