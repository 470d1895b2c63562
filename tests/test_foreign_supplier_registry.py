"""Tests for known foreign supplier detection and pre-fill defaults."""

from decimal import Decimal

import pytest

from gst_engine.domain.models.gst import ForeignSupplierProfile
from gst_engine.domain.services.foreign_supplier_registry import (
    ForeignSupplierRegistry,
    SupplierLookupError,
    detect_known_supplier,
    get_foreign_supplier_defaults,
    levenshtein_distance,
    name_similarity,
    normalize_supplier_name,
)


@pytest.fixture
def registry():
    return ForeignSupplierRegistry(match_threshold=0.7, review_threshold=0.8)


def _atlassian():
    return ForeignSupplierProfile(
        supplier_code="ATLASSIAN",
        name="Atlassian Pty Ltd",
        name_patterns=("atlassian pty ltd", "atlassian"),
        domains=("atlassian.com",),
        default_hsn="998314",
        service_category="SOFTWARE",
        billing_country="AUSTRALIA",
        supported_services=("Jira", "Confluence"),
    )


class TestNameSimilarity:

    def test_levenshtein(self):
        assert levenshtein_distance("kitten", "sitting") == 3
        assert levenshtein_distance("", "abc") == 3
        assert levenshtein_distance("same", "same") == 0

    def test_similarity(self):
        assert name_similarity("", "") == 1.0
        assert name_similarity("abc", "") == 0.0
        assert name_similarity("abcd", "abce") == pytest.approx(0.75)

    def test_similarity_on_supplier_names(self):
        assert name_similarity("microsoft corporation", "microsoft corp") == pytest.approx(14 / 21)
        assert name_similarity("adobe inc", "adobe inc") == 1.0
        assert name_similarity("", "x") == 0.0

    def test_normalize(self):
        assert normalize_supplier_name("  Amazon Web Services, Inc. ") == "amazon web services inc"


class TestDetect:

    def test_exact_pattern(self, registry):
        match = registry.detect("Adobe Inc.", "USA")
        assert match.is_known_supplier
        assert match.supplier_code == "ADOBE"
        assert match.match_confidence == 1.0
        assert not match.requires_manual_review
        assert match.entity_type == "PARENT"
        assert match.default_hsn == "998314"

    def test_regional_entity_is_subsidiary(self, registry):
        match = registry.detect("Microsoft Ireland Operations Ltd", "IRELAND")
        assert match.supplier_code == "MICROSOFT"
        assert match.entity_type == "SUBSIDIARY"
        assert not match.requires_manual_review

    def test_domain_hit_is_certain(self, registry):
        match = registry.detect("Some Vendor", "USA", domain="billing.zoom.us")
        assert match.supplier_code == "ZOOM"
        assert match.match_confidence == 1.0
        assert "domain" in match.matched_fields

    def test_weak_match_needs_review(self, registry):
        match = registry.detect("Salesforc Inc", "USA")
        assert match.supplier_code == "SALESFORCE"
        assert 0.7 < match.match_confidence < 0.8
        assert match.requires_manual_review

    def test_unknown_supplier(self, registry):
        match = registry.detect("Local Widgets Co", "USA")
        assert not match.is_known_supplier
        assert match.supplier_code is None

    def test_unoffered_service_needs_review(self, registry):
        assert registry.detect("Adobe Inc.", "USA", service_type="EC2").requires_manual_review
        assert not registry.detect("Adobe Inc.", "USA", service_type="SOFTWARE").requires_manual_review

    def test_empty_name(self, registry):
        with pytest.raises(SupplierLookupError):
            registry.detect("  ", "USA")

    def test_invalid_country(self, registry):
        with pytest.raises(SupplierLookupError, match="Invalid country"):
            registry.detect("Adobe Inc.", "MARS")

    def test_country_is_case_insensitive(self, registry):
        assert registry.detect("Adobe Inc.", "usa").is_known_supplier

    def test_module_helper(self):
        assert detect_known_supplier("Amazon Web Services, Inc.", "USA").supplier_code == "AWS"


class TestDefaults:

    def test_known_supplier(self, registry):
        defaults = registry.defaults_for("ADOBE")
        assert defaults.default_hsn == "998314"
        assert defaults.default_currency == "USD"
        assert defaults.billing_country == "USA"
        assert defaults.default_gst_rate == Decimal("18")
        assert not defaults.requires_manual_review

    def test_irish_entity_bills_in_euro(self, registry):
        defaults = registry.defaults_for("MICROSOFT", entity_country="IRELAND")
        assert defaults.default_currency == "EUR"
        assert defaults.billing_country == "IRELAND"

    def test_singapore_entity_keeps_usd(self, registry):
        defaults = registry.defaults_for("google", entity_country="SINGAPORE")
        assert defaults.default_currency == "USD"
        assert defaults.billing_country == "SINGAPORE"

    @pytest.mark.parametrize("hint,hsn", [("SOFTWARE", "998314"), ("cloud", "998313"), ("CONSULTING", "998311")])
    def test_unknown_with_hint(self, registry, hint, hsn):
        defaults = registry.defaults_for("NOPE", service_type_hint=hint)
        assert defaults.default_hsn == hsn
        assert defaults.requires_manual_review

    def test_unknown_without_hint(self):
        defaults = get_foreign_supplier_defaults(None)
        assert defaults.default_hsn == "998319"
        assert defaults.service_category == "OTHER"
        assert defaults.to_dict()["default_gst_rate"] == "18"


class TestRegister:

    def test_register_new_supplier(self, registry):
        result = registry.register(_atlassian(), "AUSTRALIA")
        assert result.success
        assert registry.detect("Atlassian", "AUSTRALIA").supplier_code == "ATLASSIAN"

    def test_registration_is_per_instance(self, registry):
        registry.register(_atlassian(), "AUSTRALIA")
        assert "ATLASSIAN" not in ForeignSupplierRegistry().profiles

    def test_duplicate_code(self, registry):
        registry.register(_atlassian())
        result = registry.register(_atlassian())
        assert not result.success
        assert "already exists" in result.error

    def test_duplicate_name(self, registry):
        clone = _atlassian().model_copy(update={"supplier_code": "ADOBE2", "name": "Adobe Inc."})
        result = registry.register(clone)
        assert not result.success
        assert result.supplier_code == "ADOBE"


class TestSearch:

    def test_by_name(self, registry):
        hits = registry.search("adobe")
        assert hits[0].supplier_code == "ADOBE"
        assert hits[0].match_score == pytest.approx(0.8)

    def test_exact_mode(self, registry):
        hits = registry.search("adobe", fuzzy=False)
        assert [h.supplier_code for h in hits] == ["ADOBE"]
        assert hits[0].match_score == 1.0

    def test_by_service_type(self, registry):
        codes = [h.supplier_code for h in registry.search(service_type="CLOUD")]
        assert "AWS" in codes
        assert "ZOOM" not in codes

    def test_limit(self, registry):
        assert len(registry.search(limit=2)) == 2
