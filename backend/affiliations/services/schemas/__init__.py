"""Shared dataclasses for lifecycle services."""

from affiliations.services.schemas.outcomes import ProviderOutcome, ValidationCheck
from affiliations.services.schemas.results import (
    AffiliationCreated,
    IngestionResult,
    ObservationResult,
    RetryResult,
    SimulationReport,
    StatusChangeResult,
)

__all__ = [
    # Provider schemas
    "ProviderOutcome",
    "ValidationCheck",
    # Result schemas
    "AffiliationCreated",
    "IngestionResult",
    "ObservationResult",
    "RetryResult",
    "SimulationReport",
    "StatusChangeResult",
]
