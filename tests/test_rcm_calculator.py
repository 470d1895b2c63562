"""Tests for RCM liability, due date and interest calculations."""

from datetime import date
from decimal import Decimal

import pytest

from gst_engine.domain.models.gst import LineItem, RCMType
from gst_engine.domain.services.gst_calendar import (
    financial_year_label,
    months_between,
    parse_financial_year,
    return_period,
)
from gst_engine.domain.services.place_of_supply import SupplyType
from gst_engine.domain.services.rcm_calculator import (
    RCMCalculationError,
    calculate_import_of_services_rcm,
    calculate_rcm_due_date,
    calculate_rcm_interest,
    calculate_unregistered_rcm,
    get_service_gst_rate,
    prepare_rcm_liability_for_gstr3b,
)


def _item(amount, rate="18", code="998211"):
    return LineItem(description="Service", hsn_sac_code=code, amount=Decimal(amount), gst_rate=Decimal(rate))


class TestUnregisteredRCM:

    def test_intrastate_split(self):
        liability = calculate_unregistered_rcm([_item("10000")], "29", "29")
        assert liability.supply_type == SupplyType.INTRASTATE
        assert liability.tax.cgst == Decimal("900.00")
        assert liability.tax.sgst == Decimal("900.00")
        assert liability.rcm_liability == Decimal("1800.00")
        assert liability.itc_claimable == liability.rcm_liability
        assert liability.gstr3b_liability_table == "3.1(d)"
        assert liability.gstr3b_itc_table == "4(A)(3)"

    def test_interstate_igst(self):
        liability = calculate_unregistered_rcm([_item("10000")], "27", "29")
        assert liability.supply_type == SupplyType.INTERSTATE
        assert liability.tax.igst == Decimal("1800.00")
        assert liability.place_of_supply == "29-Karnataka (Interstate)"

    def test_sums_mixed_rate_items(self):
        liability = calculate_unregistered_rcm([_item("1000", "18"), _item("2000", "5")], "27", "29")
        assert liability.taxable_value == Decimal("3000.00")
        assert liability.tax.igst == Decimal("280.00")

    def test_zero_amount_items_ignored(self):
        liability = calculate_unregistered_rcm([_item("0"), _item("500")], "29", "29")
        assert liability.taxable_value == Decimal("500.00")

    def test_no_positive_item(self):
        with pytest.raises(RCMCalculationError):
            calculate_unregistered_rcm([_item("0")], "29", "29")

    def test_to_dict_serialises_decimals(self):
        d = calculate_unregistered_rcm([_item("10000")], "29", "29").to_dict()
        assert d["rcm_type"] == RCMType.INDIAN_UNREGISTERED.value
        assert d["total_tax"] == "1800.00"
        assert "foreign_currency" not in d


class TestImportOfServicesRCM:

    def test_usd_subscription(self):
        liability = calculate_import_of_services_rcm("usd", Decimal("100"), Decimal("83.50"))
        assert liability.taxable_value == Decimal("8350.00")
        assert liability.tax.igst == Decimal("1503.00")
        assert liability.tax.cgst == 0
        assert liability.supply_type == SupplyType.IMPORT
        assert liability.gstr3b_liability_table == "3.1(a)"
        assert liability.foreign_currency.currency == "USD"

    def test_always_igst_even_with_recipient_state(self):
        liability = calculate_import_of_services_rcm("USD", 100, "83.50", recipient_state="29")
        assert liability.tax.igst == Decimal("1503.00")
        assert liability.place_of_supply == "Outside India (Import of Services)"

    def test_amount_in_inr_rounded_to_paise(self):
        liability = calculate_import_of_services_rcm("EUR", Decimal("10.555"), Decimal("90.1234"))
        assert liability.taxable_value == Decimal("951.25")

    def test_missing_amount(self):
        with pytest.raises(RCMCalculationError, match="foreign_amount is required"):
            calculate_import_of_services_rcm("USD", None, Decimal("83"))

    def test_missing_exchange_rate(self):
        with pytest.raises(RCMCalculationError, match="exchange_rate is required"):
            calculate_import_of_services_rcm("USD", Decimal("100"), None)

    def test_missing_currency(self):
        with pytest.raises(RCMCalculationError, match="foreign_currency is required"):
            calculate_import_of_services_rcm("", Decimal("100"), Decimal("83"))

    def test_zero_exchange_rate(self):
        with pytest.raises(RCMCalculationError, match="greater than zero"):
            calculate_import_of_services_rcm("USD", Decimal("100"), Decimal("0"))

    def test_to_dict_has_currency(self):
        d = calculate_import_of_services_rcm("USD", 100, "83.50").to_dict()
        assert d["foreign_currency"] == "USD"
        assert d["amount_in_inr"] == "8350.00"


class TestDueDateAndInterest:

    def test_due_next_month_20th(self):
        assert calculate_rcm_due_date(date(2024, 10, 5)) == date(2024, 11, 20)

    def test_december_rolls_year(self):
        assert calculate_rcm_due_date(date(2024, 12, 31)) == date(2025, 1, 20)

    def test_paid_on_time(self):
        result = calculate_rcm_interest(Decimal("1800"), date(2024, 11, 20), date(2024, 11, 18))
        assert result.days_overdue == 0
        assert result.interest == Decimal("0.00")
        assert result.overdue_category == "NONE"

    def test_interest_18_percent(self):
        # 10000 * 18 * 73 / 36500 = 360
        result = calculate_rcm_interest(Decimal("10000"), date(2024, 1, 1), date(2024, 3, 14))
        assert result.days_overdue == 73
        assert result.interest == Decimal("360.00")
        assert result.overdue_category == "MAJOR"

    @pytest.mark.parametrize("days,category", [(1, "MINOR"), (30, "MINOR"), (31, "MAJOR"), (90, "MAJOR"), (91, "CRITICAL")])
    def test_categories(self, days, category):
        due = date(2024, 1, 1)
        result = calculate_rcm_interest(100, due, date.fromordinal(due.toordinal() + days))
        assert result.overdue_category == category

    def test_custom_rate(self):
        result = calculate_rcm_interest(Decimal("36500"), date(2024, 1, 1), date(2024, 1, 2), annual_rate=24)
        assert result.interest == Decimal("24.00")

    def test_negative_tax(self):
        with pytest.raises(RCMCalculationError):
            calculate_rcm_interest(-1, date(2024, 1, 1), date(2024, 1, 2))


class TestGSTR3BLiability:

    def test_each_type_in_its_table(self):
        domestic = calculate_unregistered_rcm([_item("10000")], "29", "29")
        imported = calculate_import_of_services_rcm("USD", Decimal("100"), Decimal("83.50"))
        report = prepare_rcm_liability_for_gstr3b([domestic, imported])

        assert report["3.1(d)"] == {
            "taxable_value": Decimal("10000"),
            "igst": Decimal("0"),
            "cgst": Decimal("900.00"),
            "sgst": Decimal("900.00"),
            "cess": Decimal("0"),
        }
        assert report["3.1(a)"]["taxable_value"] == Decimal("8350.00")
        assert report["3.1(a)"]["igst"] == Decimal("1503.00")
        assert report["3.1(a)"]["cgst"] == Decimal("0")
        assert report["liability_count"] == 2
        assert report["total_liability"] == Decimal("3303.00")
        assert report["itc_table"] == "4(A)(3)"

    def test_interstate_unregistered_in_31d(self):
        report = prepare_rcm_liability_for_gstr3b([calculate_unregistered_rcm([_item("10000")], "27", "29")])
        assert report["3.1(d)"]["igst"] == Decimal("1800.00")
        assert report["3.1(a)"]["igst"] == Decimal("0")

    def test_empty(self):
        report = prepare_rcm_liability_for_gstr3b([])
        assert report["liability_count"] == 0
        assert report["total_liability"] == Decimal("0")


class TestServiceRates:

    def test_known_type(self):
        assert get_service_gst_rate("cloud") == Decimal("18")

    def test_unknown_defaults_to_18(self):
        assert get_service_gst_rate("WIDGETS") == Decimal("18")
        assert get_service_gst_rate(None) == Decimal("18")


class TestCalendar:

    def test_financial_year_label(self):
        assert financial_year_label(date(2024, 10, 1)) == "2024-25"
        assert financial_year_label(date(2025, 3, 31)) == "2024-25"
        assert financial_year_label(date(2025, 4, 1)) == "2025-26"

    @pytest.mark.parametrize("label", ["2024-25", "FY2024-25", "FY24-25", "fy 24-25"])
    def test_parse_financial_year(self, label):
        assert parse_financial_year(label) == 2024

    def test_parse_rejects_garbage(self):
        with pytest.raises(ValueError):
            parse_financial_year("last year")

    def test_return_period(self):
        assert return_period(date(2024, 6, 15)) == "062024"

    def test_months_between(self):
        assert months_between(date(2024, 1, 15), date(2024, 1, 15)) == 0
        assert months_between(date(2024, 1, 15), date(2024, 1, 16)) == 1
        assert months_between(date(2024, 1, 15), date(2024, 3, 15)) == 2
        assert months_between(date(2024, 1, 15), date(2024, 3, 16)) == 3
