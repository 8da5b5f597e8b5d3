"""Observation request schemas."""

from app.schemas.common import CamelModel
from db.enums import ResolveObservationStatus


class ObservationResolve(CamelModel):
    status: ResolveObservationStatus
    actor: str | None = None


class ObservationRetry(CamelModel):
    actor: str | None = None
