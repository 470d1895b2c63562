"""
Tests for purchase-register vs GSTR-2B reconciliation.

Covers the pairwise matcher (GSTIN gate, invoice-number normalisation,
date drift, amount tolerance) and the list-level partitioning.
"""

from datetime import date, timedelta
from decimal import Decimal

from gst_engine.config.settings import Settings
from gst_engine.domain.models.gst import GSTR2BEntry, MatchStatus, PurchaseInvoice
from gst_engine.domain.services.gstr2b_reconciliation import (
    ReconciliationConfig,
    find_potential_matches,
    format_reconciliation_report,
    is_amount_within_tolerance,
    match_invoice_to_gstr2b,
    normalize_gstin,
    normalize_invoice_number,
    render_reconciliation_document,
    run_reconciliation,
)

MH_GSTIN = "27AADCB2230M1ZP"
KA_GSTIN = "29AABCU9603R1ZM"
CONFIG = ReconciliationConfig()


def _invoice(**overrides):
    values = dict(
        vendor_gstin=MH_GSTIN,
        invoice_number="INV-001",
        invoice_date=date(2024, 6, 15),
        taxable_value=Decimal("100000"),
        igst=Decimal("18000"),
    )
    values.update(overrides)
    return PurchaseInvoice(**values)


def _entry(**overrides):
    values = dict(
        vendor_gstin=MH_GSTIN,
        invoice_number="INV-001",
        invoice_date=date(2024, 6, 15),
        taxable_value=Decimal("100000"),
        igst=Decimal("18000"),
    )
    values.update(overrides)
    return GSTR2BEntry(**values)


class FakeDocumentClient:
    def __init__(self):
        self.payloads = []

    async def render_reconciliation_report(self, payload):
        self.payloads.append(payload)
        return b"%PDF-1.4 reconciliation"


# ---------------------------------------------------------------------------
# Normalisation and tolerance
# ---------------------------------------------------------------------------

class TestNormalisation:

    def test_invoice_number_separators(self):
        assert normalize_invoice_number("INV#001@2024") == normalize_invoice_number("INV.001.2024")
        assert normalize_invoice_number(" inv-001/a ") == "INV001A"

    def test_empty_invoice_number(self):
        assert normalize_invoice_number(None) == ""

    def test_gstin(self):
        assert normalize_gstin(" 27aadcb2230m1zp ") == MH_GSTIN
        assert normalize_gstin(None) == ""


class TestTolerance:

    def test_absolute(self):
        assert is_amount_within_tolerance(Decimal("100"), Decimal("101"))
        assert not is_amount_within_tolerance(Decimal("100"), Decimal("101.01"))

    def test_percent_boundary_inclusive(self):
        assert is_amount_within_tolerance(Decimal("100000"), Decimal("101000"))
        assert not is_amount_within_tolerance(Decimal("100000"), Decimal("101000.01"))

    def test_zero_base(self):
        assert is_amount_within_tolerance(Decimal("0"), Decimal("0.50"))
        assert not is_amount_within_tolerance(Decimal("0"), Decimal("5"))

    def test_config_from_settings(self):
        config = ReconciliationConfig.from_settings(Settings(RECON_DATE_TOLERANCE_DAYS=5))
        assert config.date_tolerance_days == 5
        assert config.amount_tolerance_percent == Decimal("1")
        assert config.min_confidence == 50


# ---------------------------------------------------------------------------
# Pairwise matching
# ---------------------------------------------------------------------------

class TestMatchInvoice:

    def test_exact_match(self, purchase_invoice, gstr2b_entry):
        result = match_invoice_to_gstr2b(purchase_invoice, gstr2b_entry, CONFIG)
        assert result.status == MatchStatus.MATCHED
        assert result.confidence >= 95
        assert result.date_difference_days == 0

    def test_gstin_gate(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(vendor_gstin=KA_GSTIN), CONFIG)
        assert result.status == MatchStatus.NO_MATCH
        assert result.reason == "Supplier GSTIN differs"

    def test_gstin_case_and_spaces(self):
        result = match_invoice_to_gstr2b(_invoice(vendor_gstin=" 27aadcb2230m1zp"), _entry(), CONFIG)
        assert result.status == MatchStatus.MATCHED

    def test_invoice_number_differs(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(invoice_number="INV-002"), CONFIG)
        assert result.status == MatchStatus.NO_MATCH

    def test_invoice_number_formatting_ignored(self):
        result = match_invoice_to_gstr2b(
            _invoice(invoice_number="INV#001@2024"), _entry(invoice_number="INV.001.2024"), CONFIG,
        )
        assert result.status == MatchStatus.MATCHED

    def test_small_date_drift(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(invoice_date=date(2024, 6, 17)), CONFIG)
        assert result.status == MatchStatus.MATCHED
        assert result.confidence == 96
        assert result.date_difference_days == 2

    def test_drift_beyond_tolerance_still_matches(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(invoice_date=date(2024, 6, 20)), CONFIG)
        assert result.status == MatchStatus.MATCHED
        assert result.confidence == 65

    def test_large_drift_no_match(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(invoice_date=date(2024, 7, 5)), CONFIG)
        assert result.status == MatchStatus.NO_MATCH
        assert result.date_difference_days == 20

    def test_taxable_value_mismatch(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(taxable_value=Decimal("105000")), CONFIG)
        assert result.status == MatchStatus.AMOUNT_MISMATCH
        assert result.mismatch_details.taxable_value_diff == Decimal("5000")
        assert result.mismatch_details.igst_diff is None
        assert result.confidence == 80

    def test_igst_mismatch_is_signed(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(igst=Decimal("12000")), CONFIG)
        assert result.status == MatchStatus.AMOUNT_MISMATCH
        assert result.mismatch_details.igst_diff == Decimal("-6000")
        assert result.mismatch_details.to_dict() == {"igst_diff": "-6000"}

    def test_small_percentage_difference(self):
        result = match_invoice_to_gstr2b(_invoice(), _entry(taxable_value=Decimal("100800")), CONFIG)
        assert result.status == MatchStatus.MATCHED
        assert result.confidence < 100

    def test_rupee_rounding(self):
        invoice = _invoice(taxable_value=Decimal("100"), igst=Decimal("18"))
        entry = _entry(taxable_value=Decimal("101"), igst=Decimal("18"))
        assert match_invoice_to_gstr2b(invoice, entry, CONFIG).status == MatchStatus.MATCHED

    def test_one_percent_boundary(self):
        assert match_invoice_to_gstr2b(
            _invoice(), _entry(taxable_value=Decimal("101000")), CONFIG,
        ).status == MatchStatus.MATCHED
        assert match_invoice_to_gstr2b(
            _invoice(), _entry(taxable_value=Decimal("101000.01")), CONFIG,
        ).status == MatchStatus.AMOUNT_MISMATCH

    def test_mismatch_confidence_floor(self):
        entry = _entry(invoice_date=date(2024, 6, 20), igst=Decimal("1"))
        result = match_invoice_to_gstr2b(_invoice(), entry, CONFIG)
        assert result.status == MatchStatus.AMOUNT_MISMATCH
        assert result.confidence == 50


# ---------------------------------------------------------------------------
# List reconciliation
# ---------------------------------------------------------------------------

class TestRunReconciliation:

    def test_partitions(self):
        invoices = [
            _invoice(invoice_number="A-1"),
            _invoice(invoice_number="B-1"),
            _invoice(invoice_number="C-1"),
        ]
        entries = [
            _entry(invoice_number="A-1"),
            _entry(invoice_number="B-1", igst=Decimal("9000")),
            _entry(invoice_number="D-1", igst=Decimal("500")),
        ]
        result = run_reconciliation(invoices, entries, CONFIG)

        assert [m.invoice.invoice_number for m in result.matched] == ["A-1"]
        assert [m.invoice.invoice_number for m in result.amount_mismatches] == ["B-1"]
        assert [i.invoice_number for i in result.not_in_2b] == ["C-1"]
        assert [e.invoice_number for e in result.in_2b_only] == ["D-1"]

        s = result.summary
        assert (s.total_matched, s.total_amount_mismatches, s.total_not_in_2b, s.total_in_2b_only) == (1, 1, 1, 1)
        assert s.total_matched_itc == Decimal("18000")
        assert s.total_mismatch_itc == Decimal("9000")
        assert s.total_not_in_2b_itc == Decimal("18000")
        assert s.total_in_2b_only_itc == Decimal("500")
        assert s.match_rate == Decimal("33.33")

    def test_status_set_on_copies_only(self):
        entries = [_entry(), _entry(invoice_number="EXTRA")]
        result = run_reconciliation([_invoice()], entries, CONFIG)
        assert result.matched[0].gstr2b_entry.match_status == MatchStatus.MATCHED
        assert result.in_2b_only[0].match_status == MatchStatus.IN_2B_ONLY
        assert entries[0].match_status is None
        assert entries[1].match_status is None

    def test_same_vendor_many_invoices(self):
        numbers = ["INV-1", "INV-2", "INV-3"]
        invoices = [_invoice(invoice_number=n, taxable_value=Decimal("50000"), igst=Decimal("9000")) for n in numbers]
        entries = [_entry(invoice_number=n, taxable_value=Decimal("50000"), igst=Decimal("9000")) for n in reversed(numbers)]
        result = run_reconciliation(invoices, entries, CONFIG)
        assert result.summary.total_matched == 3
        assert result.summary.total_matched_itc == Decimal("27000")
        for pair in result.matched:
            assert pair.invoice.invoice_number == pair.gstr2b_entry.invoice_number

    def test_entry_used_once(self):
        result = run_reconciliation([_invoice(), _invoice()], [_entry()], CONFIG)
        assert len(result.matched) == 1
        assert len(result.not_in_2b) == 1
        assert result.in_2b_only == []

    def test_highest_confidence_wins(self):
        drifted = _entry(invoice_date=date(2024, 6, 17))
        exact = _entry()
        result = run_reconciliation([_invoice()], [drifted, exact], CONFIG)
        assert result.matched[0].match_result.confidence == 100
        assert result.in_2b_only[0].invoice_date == date(2024, 6, 17)

    def test_other_supplier_not_considered(self):
        result = run_reconciliation([_invoice()], [_entry(vendor_gstin=KA_GSTIN)], CONFIG)
        assert len(result.not_in_2b) == 1
        assert len(result.in_2b_only) == 1

    def test_repeatable(self):
        invoices = [_invoice(), _invoice(invoice_number="X-9")]
        entries = [_entry(igst=Decimal("17000")), _entry(invoice_number="Y-1")]
        first = run_reconciliation(invoices, entries, CONFIG)
        second = run_reconciliation(invoices, entries, CONFIG)
        assert first.to_dict() == second.to_dict()

    def test_empty(self):
        result = run_reconciliation([], [], CONFIG)
        assert result.summary.total_invoices == 0
        assert result.summary.match_rate == Decimal("0.00")


class TestPotentialMatches:

    def test_ranking(self):
        near = _entry(invoice_number="INV-001-A")
        same_state = _entry(vendor_gstin="27AAACR5055K1ZX", invoice_number="Q-77")
        unrelated = _entry(
            vendor_gstin=KA_GSTIN, invoice_number="ZZZ",
            invoice_date=date(2024, 6, 15) + timedelta(days=60), taxable_value=Decimal("50000"),
        )
        matches = find_potential_matches(_invoice(), [unrelated, same_state, near])
        assert [m.entry.invoice_number for m in matches] == ["INV-001-A", "Q-77"]
        assert matches[0].score == 85
        assert matches[1].score == 30

    def test_limit(self):
        entries = [_entry(invoice_number=f"INV-00{n}") for n in range(1, 9)]
        assert len(find_potential_matches(_invoice(), entries, limit=3)) == 3


class TestReport:

    def test_text_report(self):
        result = run_reconciliation(
            [_invoice(invoice_number="B-1"), _invoice(invoice_number="C-1")],
            [_entry(invoice_number="B-1", igst=Decimal("9000")), _entry(invoice_number="D-1")],
            CONFIG,
        )
        text = format_reconciliation_report(result)
        assert text.startswith("GSTR-2B Reconciliation")
        assert "Mismatches:" in text
        assert "igst_diff=-9000" in text
        assert "Not in 2B (follow up with supplier):" in text
        assert f"{MH_GSTIN} C-1 ITC Rs 18,000.00" in text
        assert "In 2B only (not recorded in books):" in text

    def test_clean_report_has_no_sections(self):
        text = format_reconciliation_report(run_reconciliation([_invoice()], [_entry()], CONFIG))
        assert "Mismatches:" not in text
        assert "Match rate: 100.00%" in text

    def test_render_document(self, event_loop):
        client = FakeDocumentClient()
        result = run_reconciliation([_invoice()], [_entry()], CONFIG)
        pdf = event_loop.run_until_complete(render_reconciliation_document(result, client))
        assert pdf.startswith(b"%PDF")
        assert client.payloads[0]["summary"]["total_matched"] == 1
        assert client.payloads[0]["matched"][0]["gstr2b_entry"]["match_status"] == "MATCHED"
