"""Catalog administration schemas."""

from pydantic import Field

from app.schemas.common import CamelModel
from db.enums import ObservationKind


class ObservationTypeCreate(CamelModel):
    code: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=256)
    kind: ObservationKind = ObservationKind.MANUAL
    label: str | None = None
    causes: list[str] = Field(default_factory=list)
    product_ids: list[int] = Field(default_factory=list)


class RequestConfigUpdate(CamelModel):
    auto_approve: bool
