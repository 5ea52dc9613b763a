from functools import lru_cache
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Global settings for the MSP billing service.
    Values are read from the environment and the .env file.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Project
    project_name: str = "MSP Billing API"
    api_v1_str: str = "/api/v1"
    debug: bool = False

    # Database
    database_url: str = "sqlite:///./dev.db"

    # S3 / MinIO storage
    s3_endpoint_url: Optional[str] = None
    s3_access_key: Optional[str] = None
    s3_secret_key: Optional[str] = None
    s3_bucket_invoices: str = "msp-billing-invoices"

    # Local storage
    msp_billing_storage: str = "_storage"

    # CORS
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ]

    # Email
    email_backend: str = "smtp"
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_sender: Optional[str] = None
    smtp_starttls: bool = True
    sendgrid_api_key: Optional[str] = None

    # Invoice rendering / delivery
    pdf_cache_dir: Optional[str] = None
    invoice_temp_dir: Optional[str] = None

    # Invoicing
    invoice_number_prefix: str = "INV-"
    invoice_due_days: int = 30
    tax_reverse_charge_policy: str = "ignore"  # "ignore" | "zero"
    invoice_prevent_duplicate_drafts: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = "log/server.log"


@lru_cache
def get_settings() -> Settings:
    """Return the cached global settings instance."""
    return Settings()


settings = get_settings()
