"""Result dataclasses returned by lifecycle operations."""

from dataclasses import dataclass, field

from db.enums import AffiliationRequestStatus, ObservationStatus


@dataclass
class IngestionResult:
    request_id: int
    previous_status: AffiliationRequestStatus
    new_status: AffiliationRequestStatus
    decision: str
    observation_ids: list[int] = field(default_factory=list)
    provider_response_ids: list[int] = field(default_factory=list)
    failing_codes: list[str] = field(default_factory=list)


@dataclass
class ObservationResult:
    observation_id: int
    request_id: int
    observation_status: ObservationStatus
    request_status: AffiliationRequestStatus
    pending_observations: int
    cascaded: bool = False


@dataclass
class RetryResult:
    observation_id: int
    request_id: int
    provider_response_id: int
    attempt_number: int
    request_status: AffiliationRequestStatus
    cascaded: bool = False


@dataclass
class StatusChangeResult:
    request_id: int
    previous_status: AffiliationRequestStatus
    new_status: AffiliationRequestStatus


@dataclass
class AffiliationCreated:
    affiliation_id: str
    request_id: int | None = None


@dataclass
class SimulationReport:
    log: list[tuple[str, str]] = field(default_factory=list)
    affiliation_ids: list[str] = field(default_factory=list)
    request_ids: list[int] = field(default_factory=list)

    def add(self, level: str, message: str) -> None:
        self.log.append((level, message))
