from decimal import Decimal

from pydantic import Field, AliasChoices
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Read env from the process + optionally from a local .env file
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    # App
    APP_NAME: str = Field(default="gst_engine", validation_alias=AliasChoices("APP_NAME", "app_name"))
    LOG_LEVEL: str = Field(default="INFO", validation_alias=AliasChoices("LOG_LEVEL", "log_level"))

    # Self-invoice (Rule 47A)
    SELF_INVOICE_TIME_LIMIT_DAYS: int = Field(
        default=30,
        validation_alias=AliasChoices("SELF_INVOICE_TIME_LIMIT_DAYS", "self_invoice_time_limit_days"),
    )
    SELF_INVOICE_WARNING_DAYS: int = Field(
        default=25,
        validation_alias=AliasChoices("SELF_INVOICE_WARNING_DAYS", "self_invoice_warning_days"),
    )

    # ITC lifecycle
    ITC_PAYMENT_REVERSAL_DAYS: int = Field(
        default=180,
        validation_alias=AliasChoices("ITC_PAYMENT_REVERSAL_DAYS", "itc_payment_reversal_days"),
    )
    ITC_RECLAIM_REQUIRES_DEADLINE: bool = Field(
        default=False,
        validation_alias=AliasChoices("ITC_RECLAIM_REQUIRES_DEADLINE", "itc_reclaim_requires_deadline"),
    )
    INTEREST_RATE_PERCENT: Decimal = Field(
        default=Decimal("18"),
        validation_alias=AliasChoices("INTEREST_RATE_PERCENT", "interest_rate_percent"),
    )

    # GSTR-2B reconciliation
    RECON_DATE_TOLERANCE_DAYS: int = Field(
        default=3,
        validation_alias=AliasChoices("RECON_DATE_TOLERANCE_DAYS", "recon_date_tolerance_days"),
    )
    RECON_AMOUNT_TOLERANCE_PERCENT: Decimal = Field(
        default=Decimal("1"),
        validation_alias=AliasChoices("RECON_AMOUNT_TOLERANCE_PERCENT", "recon_amount_tolerance_percent"),
    )
    RECON_AMOUNT_TOLERANCE_ABSOLUTE: Decimal = Field(
        default=Decimal("1"),
        validation_alias=AliasChoices("RECON_AMOUNT_TOLERANCE_ABSOLUTE", "recon_amount_tolerance_absolute"),
    )
    RECON_MIN_CONFIDENCE: int = Field(
        default=50,
        validation_alias=AliasChoices("RECON_MIN_CONFIDENCE", "recon_min_confidence"),
    )

    # Foreign supplier matching
    SUPPLIER_MATCH_THRESHOLD: float = Field(
        default=0.7,
        validation_alias=AliasChoices("SUPPLIER_MATCH_THRESHOLD", "supplier_match_threshold"),
    )
    SUPPLIER_REVIEW_THRESHOLD: float = Field(
        default=0.8,
        validation_alias=AliasChoices("SUPPLIER_REVIEW_THRESHOLD", "supplier_review_threshold"),
    )

    # Document rendering service
    DOCUMENT_SERVICE_BASE_URL: str = Field(
        default="http://localhost:8080",
        validation_alias=AliasChoices("DOCUMENT_SERVICE_BASE_URL", "document_service_base_url"),
    )
    DOCUMENT_SERVICE_TIMEOUT: float = Field(
        default=30.0,
        validation_alias=AliasChoices("DOCUMENT_SERVICE_TIMEOUT", "document_service_timeout"),
    )
    DOCUMENT_SERVICE_API_KEY: str = Field(
        default="",
        validation_alias=AliasChoices("DOCUMENT_SERVICE_API_KEY", "document_service_api_key"),
    )


settings = Settings()
