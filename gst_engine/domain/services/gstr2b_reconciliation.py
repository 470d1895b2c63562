# gst_engine/domain/services/gstr2b_reconciliation.py
"""
ITC reconciliation: purchase invoices in the books vs GSTR-2B entries.

Pairwise decision (match_invoice_to_gstr2b):
  1. Supplier GSTIN must be equal after normalisation, else NO_MATCH
  2. Invoice number must be equal after stripping separators, else NO_MATCH
  3. Date drift costs 2 confidence points a day; drift beyond the tolerance
     costs a further penalty, and NO_MATCH only if confidence drops below
     the floor
  4. Taxable value, IGST, CGST and SGST must each be within 1% (or Rs 1),
     else AMOUNT_MISMATCH with signed differences (2B minus books)

run_reconciliation() applies this to whole lists and partitions the
outcome into matched / amount mismatches / not in 2B / in 2B only.
Inputs are never modified; 2B rows come back as copies with match_status set.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from gst_engine.config.settings import Settings, settings
from gst_engine.domain.models.gst import GSTR2BEntry, MatchStatus, PurchaseInvoice

logger = logging.getLogger("gstr2b_reconciliation")

_INVOICE_SEPARATORS = re.compile(r"[\s\-/\\.#@_:;,|~]+")

CONFIDENCE_PER_DAY = 2
MINOR_DIFFERENCE_PENALTY = 2
AMOUNT_MISMATCH_PENALTY = 20
HUNDRED = Decimal("100")


# ---------------------------------------------------------------------------
# Configuration and result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class ReconciliationConfig:
    date_tolerance_days: int = 3
    amount_tolerance_percent: Decimal = Decimal("1")
    amount_tolerance_absolute: Decimal = Decimal("1")
    # extra confidence lost once the date drift passes the tolerance
    date_out_of_tolerance_penalty: int = 25
    min_confidence: int = 50

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "ReconciliationConfig":
        config = config or settings
        return cls(
            date_tolerance_days=config.RECON_DATE_TOLERANCE_DAYS,
            amount_tolerance_percent=Decimal(str(config.RECON_AMOUNT_TOLERANCE_PERCENT)),
            amount_tolerance_absolute=Decimal(str(config.RECON_AMOUNT_TOLERANCE_ABSOLUTE)),
            min_confidence=config.RECON_MIN_CONFIDENCE,
        )


@dataclass
class MismatchDetails:
    taxable_value_diff: Decimal | None = None
    igst_diff: Decimal | None = None
    cgst_diff: Decimal | None = None
    sgst_diff: Decimal | None = None

    def to_dict(self) -> dict:
        return {
            name: str(value)
            for name, value in (
                ("taxable_value_diff", self.taxable_value_diff),
                ("igst_diff", self.igst_diff),
                ("cgst_diff", self.cgst_diff),
                ("sgst_diff", self.sgst_diff),
            )
            if value is not None
        }


@dataclass
class MatchResult:
    status: MatchStatus
    confidence: int
    mismatch_details: MismatchDetails | None = None
    date_difference_days: int | None = None
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "confidence": self.confidence,
            "mismatch_details": self.mismatch_details.to_dict() if self.mismatch_details else None,
            "date_difference_days": self.date_difference_days,
            "reason": self.reason,
        }


@dataclass
class MatchedInvoice:
    invoice: PurchaseInvoice
    gstr2b_entry: GSTR2BEntry
    match_result: MatchResult

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.model_dump(mode="json"),
            "gstr2b_entry": self.gstr2b_entry.model_dump(mode="json"),
            "match_result": self.match_result.to_dict(),
        }


@dataclass
class ReconciliationSummary:
    total_invoices: int = 0
    total_entries: int = 0
    total_matched: int = 0
    total_matched_itc: Decimal = Decimal("0")
    total_amount_mismatches: int = 0
    total_mismatch_itc: Decimal = Decimal("0")
    total_not_in_2b: int = 0
    total_not_in_2b_itc: Decimal = Decimal("0")
    total_in_2b_only: int = 0
    total_in_2b_only_itc: Decimal = Decimal("0")

    @property
    def match_rate(self) -> Decimal:
        if not self.total_invoices:
            return Decimal("0.00")
        return (Decimal(self.total_matched) / self.total_invoices * HUNDRED).quantize(Decimal("0.01"))

    def to_dict(self) -> dict:
        return {
            "total_invoices": self.total_invoices,
            "total_entries": self.total_entries,
            "total_matched": self.total_matched,
            "total_matched_itc": str(self.total_matched_itc),
            "total_amount_mismatches": self.total_amount_mismatches,
            "total_mismatch_itc": str(self.total_mismatch_itc),
            "total_not_in_2b": self.total_not_in_2b,
            "total_not_in_2b_itc": str(self.total_not_in_2b_itc),
            "total_in_2b_only": self.total_in_2b_only,
            "total_in_2b_only_itc": str(self.total_in_2b_only_itc),
            "match_rate": str(self.match_rate),
        }


@dataclass
class ReconciliationResult:
    matched: list[MatchedInvoice] = field(default_factory=list)
    amount_mismatches: list[MatchedInvoice] = field(default_factory=list)
    not_in_2b: list[PurchaseInvoice] = field(default_factory=list)
    in_2b_only: list[GSTR2BEntry] = field(default_factory=list)
    summary: ReconciliationSummary = field(default_factory=ReconciliationSummary)

    def to_dict(self) -> dict:
        return {
            "matched": [m.to_dict() for m in self.matched],
            "amount_mismatches": [m.to_dict() for m in self.amount_mismatches],
            "not_in_2b": [i.model_dump(mode="json") for i in self.not_in_2b],
            "in_2b_only": [e.model_dump(mode="json") for e in self.in_2b_only],
            "summary": self.summary.to_dict(),
        }


@dataclass
class PotentialMatch:
    entry: GSTR2BEntry
    score: int


# ---------------------------------------------------------------------------
# Normalisation and tolerance
# ---------------------------------------------------------------------------

def normalize_gstin(gstin: str | None) -> str:
    if not gstin:
        return ""
    return re.sub(r"\s+", "", gstin).upper()


def normalize_invoice_number(invoice_number: str | None) -> str:
    """Uppercase with spaces and separators (- / \\ . # @ _ : ; , | ~) removed."""
    if not invoice_number:
        return ""
    return _INVOICE_SEPARATORS.sub("", str(invoice_number).upper()).strip()


def is_amount_within_tolerance(
    base_amount: Decimal,
    compare_amount: Decimal,
    percent_tolerance: Decimal = Decimal("1"),
    absolute_tolerance: Decimal = Decimal("1"),
) -> bool:
    diff = abs(base_amount - compare_amount)
    if diff <= absolute_tolerance:
        return True
    if base_amount == 0:
        return False
    return diff / abs(base_amount) * HUNDRED <= percent_tolerance


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def match_invoice_to_gstr2b(
    invoice: PurchaseInvoice,
    entry: GSTR2BEntry,
    config: ReconciliationConfig | None = None,
) -> MatchResult:
    config = config or ReconciliationConfig.from_settings()

    if normalize_gstin(invoice.vendor_gstin) != normalize_gstin(entry.vendor_gstin):
        return MatchResult(MatchStatus.NO_MATCH, 0, reason="Supplier GSTIN differs")

    if normalize_invoice_number(invoice.invoice_number) != normalize_invoice_number(entry.invoice_number):
        return MatchResult(MatchStatus.NO_MATCH, 0, reason="Invoice number differs")

    confidence = 100
    date_diff = abs((entry.invoice_date - invoice.invoice_date).days)
    confidence -= date_diff * CONFIDENCE_PER_DAY
    if date_diff > config.date_tolerance_days:
        confidence -= config.date_out_of_tolerance_penalty
    if confidence < config.min_confidence:
        return MatchResult(
            MatchStatus.NO_MATCH, 0,
            date_difference_days=date_diff,
            reason=f"Invoice dates {date_diff} days apart",
        )

    details = MismatchDetails()
    mismatched = False

    taxable_diff = entry.taxable_value - invoice.taxable_value
    if not _within(invoice.taxable_value, entry.taxable_value, config):
        details.taxable_value_diff = taxable_diff
        mismatched = True
    elif taxable_diff != 0:
        confidence -= MINOR_DIFFERENCE_PENALTY

    for head in ("igst", "cgst", "sgst"):
        books = getattr(invoice, head)
        portal = getattr(entry, head)
        if not _within(books, portal, config):
            setattr(details, f"{head}_diff", portal - books)
            mismatched = True

    if mismatched:
        return MatchResult(
            MatchStatus.AMOUNT_MISMATCH,
            max(confidence - AMOUNT_MISMATCH_PENALTY, config.min_confidence),
            mismatch_details=details,
            date_difference_days=date_diff,
            reason="Amounts differ beyond tolerance",
        )

    return MatchResult(
        MatchStatus.MATCHED,
        max(confidence, config.min_confidence),
        date_difference_days=date_diff,
    )


def run_reconciliation(
    invoices: Iterable[PurchaseInvoice],
    entries: Iterable[GSTR2BEntry],
    config: ReconciliationConfig | None = None,
) -> ReconciliationResult:
    """
    Reconcile every invoice against the 2B entries of the same supplier.

    Each 2B entry pairs with at most one invoice; an invoice takes the
    highest-confidence entry still free (first one on a tie).
    """
    config = config or ReconciliationConfig.from_settings()
    invoices = list(invoices)
    entries = list(entries)

    by_gstin: dict[str, list[int]] = {}
    for idx, entry in enumerate(entries):
        by_gstin.setdefault(normalize_gstin(entry.vendor_gstin), []).append(idx)

    result = ReconciliationResult()
    used: set[int] = set()

    for invoice in invoices:
        best_idx: int | None = None
        best: MatchResult | None = None
        for idx in by_gstin.get(normalize_gstin(invoice.vendor_gstin), []):
            if idx in used:
                continue
            outcome = match_invoice_to_gstr2b(invoice, entries[idx], config)
            if outcome.status == MatchStatus.NO_MATCH:
                continue
            if best is None or outcome.confidence > best.confidence:
                best_idx, best = idx, outcome

        if best is None:
            result.not_in_2b.append(invoice)
            continue

        used.add(best_idx)
        pair = MatchedInvoice(
            invoice=invoice,
            gstr2b_entry=entries[best_idx].model_copy(update={"match_status": best.status}),
            match_result=best,
        )
        if best.status == MatchStatus.MATCHED:
            result.matched.append(pair)
        else:
            result.amount_mismatches.append(pair)

    for idx, entry in enumerate(entries):
        if idx not in used:
            result.in_2b_only.append(entry.model_copy(update={"match_status": MatchStatus.IN_2B_ONLY}))

    result.summary = _summarise(result, len(invoices), len(entries))
    logger.info(
        "Reconciliation done: matched=%d, mismatch=%d, not_in_2b=%d, in_2b_only=%d",
        result.summary.total_matched, result.summary.total_amount_mismatches,
        result.summary.total_not_in_2b, result.summary.total_in_2b_only,
    )
    return result


def find_potential_matches(
    invoice: PurchaseInvoice,
    entries: Iterable[GSTR2BEntry],
    limit: int = 5,
) -> list[PotentialMatch]:
    """Rank 2B entries that might be the counterpart of an unmatched invoice."""
    gstin = normalize_gstin(invoice.vendor_gstin)
    number = normalize_invoice_number(invoice.invoice_number)

    scored: list[PotentialMatch] = []
    for entry in entries:
        score = 0

        entry_gstin = normalize_gstin(entry.vendor_gstin)
        if entry_gstin == gstin:
            score += 50
        elif entry_gstin[:2] and entry_gstin[:2] == gstin[:2]:
            score += 10

        entry_number = normalize_invoice_number(entry.invoice_number)
        if entry_number == number:
            score += 30
        elif entry_number and number and (entry_number in number or number in entry_number):
            score += 15

        days = abs((entry.invoice_date - invoice.invoice_date).days)
        if days <= 3:
            score += 10
        elif days <= 30:
            score += 5

        largest = max(invoice.taxable_value, entry.taxable_value, Decimal("1"))
        amount_pct = abs(invoice.taxable_value - entry.taxable_value) / largest * HUNDRED
        if amount_pct <= 1:
            score += 10
        elif amount_pct <= 5:
            score += 5

        if score > 0:
            scored.append(PotentialMatch(entry=entry, score=score))

    scored.sort(key=lambda m: m.score, reverse=True)
    return scored[:limit]


def format_reconciliation_report(result: ReconciliationResult) -> str:
    """Plain-text summary for a CA review message or log."""
    s = result.summary
    lines = [
        "GSTR-2B Reconciliation",
        f"Invoices: {s.total_invoices} | 2B entries: {s.total_entries} | Match rate: {s.match_rate}%",
        f"Matched: {s.total_matched} (ITC Rs {s.total_matched_itc:,.2f})",
        f"Amount mismatches: {s.total_amount_mismatches} (ITC Rs {s.total_mismatch_itc:,.2f})",
        f"Not in 2B: {s.total_not_in_2b} (ITC at risk Rs {s.total_not_in_2b_itc:,.2f})",
        f"In 2B only: {s.total_in_2b_only} (ITC Rs {s.total_in_2b_only_itc:,.2f})",
    ]

    if result.amount_mismatches:
        lines.append("")
        lines.append("Mismatches:")
        for pair in result.amount_mismatches:
            diffs = ", ".join(f"{k}={v}" for k, v in pair.match_result.mismatch_details.to_dict().items())
            lines.append(f"  {pair.invoice.vendor_gstin} {pair.invoice.invoice_number}: {diffs}")

    if result.not_in_2b:
        lines.append("")
        lines.append("Not in 2B (follow up with supplier):")
        for inv in result.not_in_2b:
            lines.append(f"  {inv.vendor_gstin} {inv.invoice_number} ITC Rs {inv.total_itc:,.2f}")

    if result.in_2b_only:
        lines.append("")
        lines.append("In 2B only (not recorded in books):")
        for entry in result.in_2b_only:
            lines.append(f"  {entry.vendor_gstin} {entry.invoice_number} ITC Rs {entry.total_itc:,.2f}")

    return "\n".join(lines)


async def render_reconciliation_document(result: ReconciliationResult, client) -> bytes:
    """Render a reconciliation report through an injected DocumentClient."""
    return await client.render_reconciliation_report(result.to_dict())


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _within(books: Decimal, portal: Decimal, config: ReconciliationConfig) -> bool:
    return is_amount_within_tolerance(
        books, portal, config.amount_tolerance_percent, config.amount_tolerance_absolute,
    )


def _summarise(result: ReconciliationResult, n_invoices: int, n_entries: int) -> ReconciliationSummary:
    return ReconciliationSummary(
        total_invoices=n_invoices,
        total_entries=n_entries,
        total_matched=len(result.matched),
        total_matched_itc=sum((m.gstr2b_entry.total_itc for m in result.matched), Decimal("0")),
        total_amount_mismatches=len(result.amount_mismatches),
        total_mismatch_itc=sum((m.gstr2b_entry.total_itc for m in result.amount_mismatches), Decimal("0")),
        total_not_in_2b=len(result.not_in_2b),
        total_not_in_2b_itc=sum((i.total_itc for i in result.not_in_2b), Decimal("0")),
        total_in_2b_only=len(result.in_2b_only),
        total_in_2b_only_itc=sum((e.total_itc for e in result.in_2b_only), Decimal("0")),
    )
