# gst_engine/domain/services/gstr2b_parser.py
"""
GSTR-2B JSON parser.

Turns the ITC statement downloaded from the GST portal (or returned by a
GSP API under ``data.docdata``) into GSTR2BEntry rows for reconciliation.

Sections handled: b2b, b2ba, cdnr, cdnra, impg, impgsez.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from gst_engine.domain.models.gst import GSTR2BEntry

logger = logging.getLogger("gstr2b_parser")

INVOICE_SECTIONS = ("b2b", "b2ba")
NOTE_SECTIONS = ("cdnr", "cdnra")
IMPORT_SECTIONS = ("impg", "impgsez")


class GSTR2BParseError(ValueError):
    """Raised for a GSTR-2B value that cannot be read (bad date, bad shape)."""
    pass


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class GSTR2BSummary:
    total_invoices: int = 0
    total_taxable_value: Decimal = Decimal("0")
    total_igst: Decimal = Decimal("0")
    total_cgst: Decimal = Decimal("0")
    total_sgst: Decimal = Decimal("0")
    total_cess: Decimal = Decimal("0")
    total_itc_available: Decimal = Decimal("0")
    supplier_count: int = 0

    def to_dict(self) -> dict:
        return {
            "total_invoices": self.total_invoices,
            "total_taxable_value": str(self.total_taxable_value),
            "total_igst": str(self.total_igst),
            "total_cgst": str(self.total_cgst),
            "total_sgst": str(self.total_sgst),
            "total_cess": str(self.total_cess),
            "total_itc_available": str(self.total_itc_available),
            "supplier_count": self.supplier_count,
        }


@dataclass
class GSTR2BParseResult:
    success: bool
    gstin: str | None = None
    return_period: str | None = None
    entries: list[GSTR2BEntry] = field(default_factory=list)
    summary: GSTR2BSummary | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def parse_gstr2b(payload: dict) -> GSTR2BParseResult:
    """Parse a GSTR-2B document; failures come back with ``success=False``."""
    if not isinstance(payload, dict):
        return GSTR2BParseResult(success=False, error="Invalid GSTR-2B JSON: expected an object")

    gstin = payload.get("gstin")
    fp = payload.get("fp")
    data = payload.get("data", payload)
    if not isinstance(data, dict):
        return GSTR2BParseResult(success=False, error="Invalid GSTR-2B JSON: unexpected data section")
    # GSP responses nest everything one or two levels down
    gstin = gstin or data.get("gstin")
    fp = fp or data.get("fp") or data.get("rtnprd")
    data = data.get("docdata", data)

    if not gstin or not fp:
        return GSTR2BParseResult(
            success=False,
            error="Invalid GSTR-2B JSON: missing gstin or fp (filing period)",
        )

    try:
        entries = _parse_sections(data)
    except GSTR2BParseError as e:
        logger.warning("GSTR-2B parse failed for %s/%s: %s", gstin, fp, e)
        return GSTR2BParseResult(success=False, gstin=gstin, return_period=fp, error=str(e))

    summary = calculate_summary(entries)
    logger.info(
        "GSTR-2B parsed: gstin=%s, period=%s, entries=%d, suppliers=%d",
        gstin, fp, summary.total_invoices, summary.supplier_count,
    )
    return GSTR2BParseResult(
        success=True,
        gstin=gstin,
        return_period=fp,
        entries=entries,
        summary=summary,
    )


def parse_gstr2b_date(raw: str) -> date:
    """Parse DD-MM-YYYY or DD/MM/YYYY."""
    if not raw or not isinstance(raw, str):
        raise GSTR2BParseError("Invalid date: empty string")
    for fmt in ("%d-%m-%Y", "%d/%m/%Y"):
        try:
            return datetime.strptime(raw.strip(), fmt).date()
        except ValueError:
            continue
    raise GSTR2BParseError(f"Invalid date: {raw}")


def validate_gstr2b_json(payload: Any) -> list[str]:
    """Structural problems with a GSTR-2B document; empty when it looks valid."""
    if not isinstance(payload, dict):
        return ["GSTR-2B JSON must be an object"]

    errors: list[str] = []
    gstin = payload.get("gstin")
    fp = payload.get("fp")
    if not isinstance(gstin, str):
        errors.append("gstin is required")
    elif len(gstin) != 15:
        errors.append(f"gstin must be 15 characters, got {len(gstin)}")
    if not isinstance(fp, str):
        errors.append("fp (filing period) is required")
    elif len(fp) != 6 or not fp.isdigit():
        errors.append("fp must be in MMYYYY format")
    return errors


def calculate_summary(entries: list[GSTR2BEntry]) -> GSTR2BSummary:
    summary = GSTR2BSummary(total_invoices=len(entries))
    suppliers: set[str] = set()
    for e in entries:
        summary.total_taxable_value += e.taxable_value
        summary.total_igst += e.igst
        summary.total_cgst += e.cgst
        summary.total_sgst += e.sgst
        summary.total_cess += e.cess
        # ITC counts unless explicitly marked unavailable
        if e.itc_availability != "N":
            summary.total_itc_available += e.total_itc
        if e.vendor_gstin:
            suppliers.add(e.vendor_gstin)
    summary.supplier_count = len(suppliers)
    return summary


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _parse_sections(data: dict) -> list[GSTR2BEntry]:
    entries: list[GSTR2BEntry] = []

    for section in INVOICE_SECTIONS:
        for supplier in _section(data, section):
            ctin = (supplier.get("ctin") or "").strip().upper()
            for inv in supplier.get("inv", []):
                entry = _invoice_entry(inv, ctin, supplier.get("trdnm"), section.upper())
                if section == "b2ba":
                    entry.original_invoice_number = inv.get("oinum")
                    if inv.get("oidt"):
                        entry.original_invoice_date = parse_gstr2b_date(inv["oidt"])
                entries.append(entry)

    for section in NOTE_SECTIONS:
        for supplier in _section(data, section):
            ctin = (supplier.get("ctin") or "").strip().upper()
            for note in supplier.get("nt", []):
                entry = _note_entry(note, ctin, supplier.get("trdnm"), section.upper())
                if section == "cdnra":
                    entry.original_invoice_number = note.get("ontnum")
                    if note.get("ontdt"):
                        entry.original_invoice_date = parse_gstr2b_date(note["ontdt"])
                entries.append(entry)

    for section in IMPORT_SECTIONS:
        for imp in _section(data, section):
            entries.append(_import_entry(imp, section.upper()))

    return entries


def _section(data: dict, name: str) -> list[dict]:
    rows = data.get(name) or []
    if not isinstance(rows, list):
        raise GSTR2BParseError(f"Section {name} must be a list")
    return [r for r in rows if isinstance(r, dict)]


def _amounts(row: dict) -> dict:
    """Taxable value and tax heads, summed over ``itms`` when present."""
    items = row.get("itms")
    if not items:
        return {
            "taxable_value": _safe_decimal(row.get("txval")),
            "igst": _safe_decimal(row.get("igst")),
            "cgst": _safe_decimal(row.get("cgst")),
            "sgst": _safe_decimal(row.get("sgst")),
            "cess": _safe_decimal(row.get("cess")),
        }

    totals = {k: Decimal("0") for k in ("taxable_value", "igst", "cgst", "sgst", "cess")}
    for itm in items:
        # flat items or the nested itm_det shape
        det = itm if "txval" in itm else itm.get("itm_det", {})
        totals["taxable_value"] += _safe_decimal(det.get("txval"))
        totals["igst"] += _safe_decimal(det.get("igst") or det.get("iamt"))
        totals["cgst"] += _safe_decimal(det.get("cgst") or det.get("camt"))
        totals["sgst"] += _safe_decimal(det.get("sgst") or det.get("samt"))
        totals["cess"] += _safe_decimal(det.get("cess") or det.get("csamt"))
    return totals


def _invoice_entry(inv: dict, ctin: str, trade_name: str | None, supply_type: str) -> GSTR2BEntry:
    return GSTR2BEntry(
        vendor_gstin=ctin,
        vendor_name=trade_name,
        invoice_number=str(inv.get("inum") or "").strip(),
        invoice_date=parse_gstr2b_date(inv.get("idt")),
        invoice_value=_safe_decimal(inv.get("val")),
        itc_availability=inv.get("itcavl"),
        reason=inv.get("rsn") or None,
        supply_type=supply_type,
        source_type=inv.get("srctyp"),
        **_amounts(inv),
    )


def _note_entry(note: dict, ctin: str, trade_name: str | None, supply_type: str) -> GSTR2BEntry:
    return GSTR2BEntry(
        vendor_gstin=ctin,
        vendor_name=trade_name,
        invoice_number=str(note.get("ntnum") or "").strip(),
        invoice_date=parse_gstr2b_date(note.get("ntdt")),
        invoice_value=_safe_decimal(note.get("val")),
        itc_availability=note.get("itcavl"),
        reason=note.get("rsn") or None,
        supply_type=supply_type,
        source_type=note.get("typ"),
        **_amounts(note),
    )


def _import_entry(imp: dict, supply_type: str) -> GSTR2BEntry:
    txval = _safe_decimal(imp.get("txval"))
    igst = _safe_decimal(imp.get("igst"))
    cess = _safe_decimal(imp.get("cess"))
    return GSTR2BEntry(
        vendor_gstin="",  # imports carry no supplier GSTIN
        invoice_number=str(imp.get("benum") or "").strip(),
        invoice_date=parse_gstr2b_date(imp.get("bedt")),
        invoice_value=txval + igst + cess,
        taxable_value=txval,
        igst=igst,
        cess=cess,
        supply_type=supply_type,
        port_code=imp.get("portcd"),
    )


def _safe_decimal(value: Any) -> Decimal:
    """Convert any value to Decimal, defaulting to 0."""
    if value is None:
        return Decimal("0")
    try:
        return Decimal(str(value))
    except (InvalidOperation, TypeError, ValueError):
        return Decimal("0")
