"""Registry record models for entity resolution.

- Vendor: a supplier, carrier or shipper we do business with
- Material: a catalog item, optionally with a preferred vendor
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class Vendor(BaseModel):
    """A vendor registry record.

    Attributes:
        id: Registry row ID
        name: Display name
        email: Contact email used for exact matching of inbound documents
        is_active: Inactive vendors are never proposed
    """
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    email: Optional[str] = None
    is_active: bool = True


class Material(BaseModel):
    """A material (catalog item) registry record."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    sku: Optional[str] = None
    unit: Optional[str] = None
    preferred_vendor_id: Optional[int] = Field(
        default=None,
        description="Vendor tried before any fuzzy scan when a line matches this material",
    )
