"""Maintenance coordinator configuration."""

import re

from pydantic import BaseModel, Field, field_validator

from utils.timezone import get_zone


class MaintenanceConfig(BaseModel):
    """
    Maintenance coordinator configuration.

    Deployments load overrides from Vault (maintenance/app) through
    clients.vault_client.get_app_config(); see api.main.build_coordinator().
    """

    # Notifications
    app_base_url: str = Field(
        default="http://localhost:8000",
        description="Base URL for notification action links",
    )

    # Scheduling
    availability_timezone: str = Field(
        default="UTC",
        description="IANA zone defining calendar days for vendor availability",
    )

    # Invoicing
    invoice_number_prefix: str = Field(
        default="INV",
        description="Prefix of generated invoice numbers (INV-YYYYMMDD-XXXX)",
        min_length=1,
        max_length=10,
    )

    # Listing
    default_page_size: int = Field(
        default=50,
        description="Default limit for list queries",
        ge=1,
        le=500,
    )

    @field_validator("app_base_url")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @field_validator("availability_timezone")
    @classmethod
    def known_timezone(cls, value: str) -> str:
        get_zone(value)
        return value

    @field_validator("invoice_number_prefix")
    @classmethod
    def alphanumeric_prefix(cls, value: str) -> str:
        if not re.fullmatch(r"[A-Z0-9]+", value):
            raise ValueError("Invoice number prefix must be uppercase letters and digits")
        return value
