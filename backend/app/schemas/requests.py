"""Affiliation request schemas."""

from pydantic import Field

from app.schemas.common import CamelModel
from db.enums import AffiliationRequestStatus, RequestResolution


class ValidationRun(CamelModel):
    codes: list[str] = Field(..., min_length=1)
    document_number: str | None = None
    account_number: str | None = None


class ManualObservationCreate(CamelModel):
    observation_type_id: int
    cause_ids: list[int] = Field(default_factory=list)
    comment: str | None = None
    actor: str | None = None


class RequestResolve(CamelModel):
    status: RequestResolution
    actor: str | None = None


class RequestStatusUpdate(CamelModel):
    status: AffiliationRequestStatus
    actor: str | None = None
    comment: str | None = None
