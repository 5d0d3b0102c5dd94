"""
Base model for InvoiceGen request and response schemas.
"""

from pydantic import BaseModel, ConfigDict


class InvoiceGenModel(BaseModel):
    """Base model with the settings shared by every schema."""

    model_config = ConfigDict(
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )
