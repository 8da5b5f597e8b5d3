"""Affiliation request schemas."""

from pydantic import Field

from app.schemas.common import CamelModel


class AffiliationCreate(CamelModel):
    business_name: str = Field(..., min_length=1, max_length=256)
    ruc: str = Field(..., min_length=1, max_length=32)
    product_id: int = Field(..., ge=1)
    channel_id: int = Field(..., ge=1)
    created_by: str | None = None
    open_request: bool = False


class AffiliationFinalize(CamelModel):
    actor: str | None = None


class StepValidation(CamelModel):
    validation_code: str = Field(..., min_length=1)
    status: str = Field(..., description="approved | rejected | observed")
    comment: str = ""
    next_step: int = Field(..., ge=0)
