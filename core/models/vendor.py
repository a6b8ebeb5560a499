"""Vendor (third-party service provider) domain models."""

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field


class VendorCreate(BaseModel):
    """Data required to register a vendor."""

    user_id: UUID
    business_name: str = Field(..., min_length=1, max_length=200)
    category: str = Field(..., min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=50)
    email: str | None = Field(None, max_length=254)


class VendorUpdate(BaseModel):
    """Data that can be updated on a vendor. All fields optional."""

    business_name: str | None = Field(None, min_length=1, max_length=200)
    category: str | None = Field(None, min_length=1, max_length=100)
    phone: str | None = Field(None, max_length=50)
    email: str | None = Field(None, max_length=254)


class Vendor(BaseModel):
    """Full vendor entity as stored."""

    id: UUID
    user_id: UUID
    business_name: str
    category: str
    is_active: bool = True
    phone: str | None = None
    email: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
