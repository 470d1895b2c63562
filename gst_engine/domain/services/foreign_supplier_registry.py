# gst_engine/domain/services/foreign_supplier_registry.py
"""
Known foreign supplier registry.

Recognises multinational vendors (Adobe, Microsoft, AWS, ...) from the
free-text name or domain on an import-of-services bill and suggests the
HSN/SAC, GST rate, currency and billing country to pre-fill. Name matching
uses normalized Levenshtein similarity against each supplier's name
patterns; a domain hit or an exact pattern hit is treated as certain.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable

from rapidfuzz.distance import Levenshtein

from gst_engine.config.settings import settings
from gst_engine.domain.models.gst import ForeignSupplierProfile

logger = logging.getLogger("foreign_supplier_registry")

VALID_COUNTRIES = frozenset({
    "USA", "UK", "CANADA", "IRELAND", "SINGAPORE", "AUSTRALIA",
    "GERMANY", "FRANCE", "NETHERLANDS", "SWEDEN", "NORWAY",
    "JAPAN", "SOUTH_KOREA", "CHINA", "INDIA", "BRAZIL", "LUXEMBOURG",
})

# Regional entity markers in a supplier name
SUBSIDIARY_MARKERS = ("ireland", "singapore", "emea", "asia pacific")

# entity country -> (currency override, billing country override)
ENTITY_COUNTRY_OVERRIDES: dict[str, tuple[str | None, str | None]] = {
    "IRELAND": ("EUR", "IRELAND"),
    "SINGAPORE": (None, "SINGAPORE"),  # Singapore entities still bill in USD
    "LUXEMBOURG": ("EUR", "LUXEMBOURG"),
}

# service type hint -> (category, SAC, description) for unknown suppliers
SERVICE_HINT_DEFAULTS: dict[str, tuple[str, str, str]] = {
    "SOFTWARE": ("SOFTWARE", "998314", "Software services"),
    "CLOUD": ("CLOUD", "998313", "Cloud computing services"),
    "CONSULTING": ("CONSULTING", "998311", "Professional consulting services"),
    "PROFESSIONAL": ("CONSULTING", "998311", "Professional consulting services"),
}
UNKNOWN_SUPPLIER_DEFAULT = ("OTHER", "998319", "Other professional/technical services")

_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


class SupplierLookupError(ValueError):
    """Raised for an empty supplier name or an unsupported country."""
    pass


def _profile(code, name, patterns, domains, hsn, category, description, services, currencies):
    return ForeignSupplierProfile(
        supplier_code=code,
        name=name,
        name_patterns=tuple(patterns),
        domains=tuple(domains),
        default_hsn=hsn,
        default_gst_rate=Decimal("18"),
        service_category=category,
        default_currency="USD",
        supported_currencies=tuple(currencies),
        billing_country="USA",
        description=description,
        supported_services=tuple(services),
    )


KNOWN_SUPPLIERS: dict[str, ForeignSupplierProfile] = {
    p.supplier_code: p
    for p in (
        _profile(
            "ADOBE", "Adobe Inc.",
            ["adobe inc", "adobe systems", "adobe corporation", "adobe systems incorporated"],
            ["adobe.com"], "998314", "SOFTWARE",
            "Creative and document software services",
            ["Creative Cloud", "Document Cloud", "Experience Cloud"],
            ["USD", "EUR"],
        ),
        _profile(
            "MICROSOFT", "Microsoft Corporation",
            ["microsoft corporation", "microsoft ireland operations", "microsoft"],
            ["microsoft.com", "office.com", "outlook.com"], "998314", "SOFTWARE",
            "Enterprise software and cloud services",
            ["Office 365", "Azure", "Teams", "Windows"],
            ["USD", "EUR", "GBP"],
        ),
        _profile(
            "AWS", "Amazon Web Services, Inc.",
            [
                "amazon web services, inc",
                "amazon web services singapore private limited",
                "aws emea sarl",
                "amazon web services ireland limited",
                "amazon web services",
            ],
            ["aws.amazon.com"], "998313", "CLOUD",
            "Cloud computing and web services",
            ["EC2", "S3", "Lambda", "RDS"],
            ["USD", "EUR", "GBP"],
        ),
        _profile(
            "GOOGLE", "Google LLC",
            ["google llc", "google ireland limited", "google cloud india private limited", "google asia pacific"],
            ["google.com", "gmail.com", "googlecloud.com"], "998314", "SOFTWARE",
            "Search, advertising, and cloud services",
            ["Google Workspace", "Google Cloud", "Google Ads"],
            ["USD", "EUR", "GBP", "SGD"],
        ),
        _profile(
            "ZOOM", "Zoom Video Communications, Inc.",
            ["zoom video communications"],
            ["zoom.us"], "998314", "SOFTWARE",
            "Video conferencing and communication services",
            ["Zoom Pro", "Zoom Business", "Zoom Enterprise"],
            ["USD"],
        ),
        _profile(
            "SALESFORCE", "Salesforce, Inc.",
            ["salesforce.com, inc", "salesforce"],
            ["salesforce.com"], "998314", "SOFTWARE",
            "CRM and customer engagement platform",
            ["Sales Cloud", "Service Cloud", "Marketing Cloud"],
            ["USD", "EUR", "GBP"],
        ),
        _profile(
            "SLACK", "Slack Technologies, LLC",
            ["slack technologies"],
            ["slack.com"], "998314", "SOFTWARE",
            "Business communication and collaboration platform",
            ["Slack Pro", "Slack Business+"],
            ["USD", "EUR"],
        ),
    )
}


# ---------------------------------------------------------------------------
# Result dataclasses
# ---------------------------------------------------------------------------

@dataclass
class SupplierMatch:
    is_known_supplier: bool
    supplier_code: str | None = None
    match_confidence: float = 0.0
    matched_fields: list[str] = field(default_factory=list)
    requires_manual_review: bool = False
    entity_type: str | None = None  # PARENT / SUBSIDIARY
    default_hsn: str | None = None
    service_category: str | None = None
    supported_services: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "is_known_supplier": self.is_known_supplier,
            "supplier_code": self.supplier_code,
            "match_confidence": round(self.match_confidence, 4),
            "matched_fields": self.matched_fields,
            "requires_manual_review": self.requires_manual_review,
            "entity_type": self.entity_type,
            "default_hsn": self.default_hsn,
            "service_category": self.service_category,
            "supported_services": self.supported_services,
        }


@dataclass
class SupplierDefaults:
    default_hsn: str
    default_gst_rate: Decimal
    service_category: str
    description: str
    default_currency: str
    supported_currencies: list[str]
    billing_country: str
    supported_services: list[str] = field(default_factory=list)
    requires_manual_review: bool = False

    def to_dict(self) -> dict:
        return {
            "default_hsn": self.default_hsn,
            "default_gst_rate": str(self.default_gst_rate),
            "service_category": self.service_category,
            "description": self.description,
            "default_currency": self.default_currency,
            "supported_currencies": self.supported_currencies,
            "billing_country": self.billing_country,
            "supported_services": self.supported_services,
            "requires_manual_review": self.requires_manual_review,
        }


@dataclass
class RegistrationResult:
    success: bool
    supplier_code: str
    error: str | None = None


@dataclass
class SearchHit:
    supplier_code: str
    name: str
    service_category: str
    default_hsn: str
    match_score: float


# ---------------------------------------------------------------------------
# Name similarity
# ---------------------------------------------------------------------------

def normalize_supplier_name(name: str) -> str:
    text = _NON_WORD.sub("", (name or "").lower().strip())
    return _WHITESPACE.sub(" ", text).strip()


def levenshtein_distance(a: str, b: str) -> int:
    return Levenshtein.distance(a or "", b or "")


def name_similarity(a: str, b: str) -> float:
    """1 - distance / longer length; two empty strings are identical."""
    if a == b:
        return 1.0
    return Levenshtein.normalized_similarity(a or "", b or "")


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

class ForeignSupplierRegistry:
    """Lookup over a set of known supplier profiles."""

    def __init__(
        self,
        profiles: Iterable[ForeignSupplierProfile] | None = None,
        match_threshold: float | None = None,
        review_threshold: float | None = None,
    ) -> None:
        source = KNOWN_SUPPLIERS.values() if profiles is None else profiles
        self._profiles: dict[str, ForeignSupplierProfile] = {p.supplier_code: p for p in source}
        self.match_threshold = settings.SUPPLIER_MATCH_THRESHOLD if match_threshold is None else match_threshold
        self.review_threshold = settings.SUPPLIER_REVIEW_THRESHOLD if review_threshold is None else review_threshold

    @property
    def profiles(self) -> dict[str, ForeignSupplierProfile]:
        return dict(self._profiles)

    def detect(
        self,
        name: str,
        country: str,
        domain: str | None = None,
        service_type: str | None = None,
    ) -> SupplierMatch:
        """Best known-supplier match for a bill's supplier name / domain."""
        if not name or not name.strip():
            raise SupplierLookupError("Supplier name is required")
        if not country or country.strip().upper() not in VALID_COUNTRIES:
            raise SupplierLookupError(f"Invalid country code: {country!r}")

        normalized = normalize_supplier_name(name)
        domain_l = (domain or "").lower().strip()
        entity_type = "SUBSIDIARY" if any(m in normalized for m in SUBSIDIARY_MARKERS) else "PARENT"

        best: SupplierMatch | None = None
        for code, profile in self._profiles.items():
            confidence = 0.0
            fields: list[str] = []
            patterns = [normalize_supplier_name(p) for p in profile.name_patterns]

            for pattern in patterns:
                similarity = name_similarity(normalized, pattern)
                if similarity > confidence:
                    confidence = similarity
                    if "name" not in fields:
                        fields.append("name")

            if domain_l and any(d in domain_l for d in profile.domains):
                confidence = 1.0
                fields.append("domain")

            if normalized in patterns:
                confidence = 1.0

            if confidence > self.match_threshold and (best is None or confidence > best.match_confidence):
                best = SupplierMatch(
                    is_known_supplier=True,
                    supplier_code=code,
                    match_confidence=confidence,
                    matched_fields=fields,
                    requires_manual_review=confidence < self.review_threshold,
                    entity_type=entity_type,
                    default_hsn=profile.default_hsn,
                    service_category=profile.service_category,
                    supported_services=list(profile.supported_services),
                )

        if best is None:
            logger.info("No known supplier for %r (%s)", name, country)
            return SupplierMatch(is_known_supplier=False)

        # a service the supplier is not known to sell needs a human look
        if service_type and not _offers_service(self._profiles[best.supplier_code], service_type):
            best.requires_manual_review = True

        logger.info(
            "Supplier %r matched %s (confidence=%.2f, review=%s)",
            name, best.supplier_code, best.match_confidence, best.requires_manual_review,
        )
        return best

    def defaults_for(
        self,
        supplier_code: str | None,
        entity_country: str | None = None,
        service_type_hint: str | None = None,
    ) -> SupplierDefaults:
        """Pre-fill values for a known supplier, or generic ones for an unknown one."""
        profile = self._profiles.get((supplier_code or "").upper())
        if profile is not None:
            currency, billing = profile.default_currency, profile.billing_country
            override = ENTITY_COUNTRY_OVERRIDES.get((entity_country or "").upper())
            if override:
                currency = override[0] or currency
                billing = override[1] or billing
            return SupplierDefaults(
                default_hsn=profile.default_hsn,
                default_gst_rate=profile.default_gst_rate,
                service_category=profile.service_category,
                description=profile.description,
                default_currency=currency,
                supported_currencies=list(profile.supported_currencies),
                billing_country=billing,
                supported_services=list(profile.supported_services),
            )

        category, hsn, description = SERVICE_HINT_DEFAULTS.get(
            (service_type_hint or "").upper(), UNKNOWN_SUPPLIER_DEFAULT,
        )
        return SupplierDefaults(
            default_hsn=hsn,
            default_gst_rate=Decimal("18"),
            service_category=category,
            description=description,
            default_currency="USD",
            supported_currencies=["USD"],
            billing_country="UNKNOWN",
            requires_manual_review=True,
        )

    def register(self, profile: ForeignSupplierProfile, country: str = "USA") -> RegistrationResult:
        """Add a supplier to this registry unless it is already known."""
        code = profile.supplier_code.upper()
        if code in self._profiles:
            return RegistrationResult(False, code, f"Supplier code {code} already exists in registry")

        existing = self.detect(profile.name, country)
        if existing.is_known_supplier:
            return RegistrationResult(
                False, existing.supplier_code,
                f"Supplier {profile.name} already exists in registry as {existing.supplier_code}",
            )

        self._profiles[code] = profile
        logger.info("Registered foreign supplier %s", code)
        return RegistrationResult(True, code)

    def search(
        self,
        query: str | None = None,
        country: str | None = None,
        service_type: str | None = None,
        fuzzy: bool = True,
        limit: int = 10,
    ) -> list[SearchHit]:
        hits: list[SearchHit] = []
        for code, profile in self._profiles.items():
            score = 1.0
            if query:
                score = self._query_score(normalize_supplier_name(query), profile, fuzzy)
                if score <= 0:
                    continue
            if service_type and not _offers_service(profile, service_type):
                continue
            if country and profile.billing_country.upper() != country.upper():
                continue
            hits.append(SearchHit(
                supplier_code=code,
                name=profile.name,
                service_category=profile.service_category,
                default_hsn=profile.default_hsn,
                match_score=score,
            ))

        hits.sort(key=lambda h: h.match_score, reverse=True)
        return hits[:limit]

    @staticmethod
    def _query_score(query: str, profile: ForeignSupplierProfile, fuzzy: bool) -> float:
        best = 0.0
        for raw in profile.name_patterns:
            pattern = normalize_supplier_name(raw)
            if not fuzzy:
                if query in pattern:
                    return 1.0
                continue
            if query in pattern or pattern in query:
                best = max(best, 0.8)
                continue
            similarity = name_similarity(query, pattern)
            if similarity > 0.6:
                best = max(best, similarity)
                continue
            q_words, p_words = query.split(" "), pattern.split(" ")
            if name_similarity(q_words[0], p_words[0]) > 0.7:
                best = max(best, 0.7)
        return best


def _offers_service(profile: ForeignSupplierProfile, service_type: str) -> bool:
    wanted = service_type.strip().upper()
    if profile.service_category == wanted:
        return True
    return any(wanted.lower() in s.lower() for s in profile.supported_services)


# ---------------------------------------------------------------------------
# Module-level helpers over the built-in registry
# ---------------------------------------------------------------------------

def detect_known_supplier(
    name: str,
    country: str,
    domain: str | None = None,
    service_type: str | None = None,
) -> SupplierMatch:
    return ForeignSupplierRegistry().detect(name, country, domain, service_type)


def get_foreign_supplier_defaults(
    supplier_code: str | None,
    entity_country: str | None = None,
    service_type_hint: str | None = None,
) -> SupplierDefaults:
    return ForeignSupplierRegistry().defaults_for(supplier_code, entity_country, service_type_hint)
