"""Base models for booking, payment and audit DTOs. Unknown fields are errors."""

from pydantic import BaseModel, ConfigDict


class StrictModel(BaseModel):
    """Response base; amounts stay ``Decimal`` and serialize as strings."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)


class StrictRequestModel(StrictModel):
    """Request base: clients may not smuggle status or ownership fields in."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True, str_strip_whitespace=True)
