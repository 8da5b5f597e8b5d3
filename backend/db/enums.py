"""Enumeration types for the Affiliation Review Engine."""

from enum import Enum


class AffiliationRequestStatus(str, Enum):
    """Review status of an affiliation request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    OBSERVED = "observed"

    @property
    def is_terminal(self) -> bool:
        return self in (AffiliationRequestStatus.APPROVED, AffiliationRequestStatus.REJECTED)


# The affiliation mirrors its active request, so it shares the same values.
AffiliationStatus = AffiliationRequestStatus


class ObservationStatus(str, Enum):
    """Status of an observation raised on a request."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IGNORED = "ignored"


class ResolveObservationStatus(str, Enum):
    """Statuses a reviewer may resolve an observation to."""

    APPROVED = "approved"
    IGNORED = "ignored"
    REJECTED = "rejected"


class RequestResolution(str, Enum):
    """Final outcomes of an explicit request resolution."""

    APPROVED = "approved"
    REJECTED = "rejected"


class ValidationResultStatus(str, Enum):
    """Latest outcome of one check against one affiliation."""

    PASSED = "passed"
    FAILED = "failed"
    OBSERVED = "observed"


class ValidationHistoryStatus(str, Enum):
    """Outcome of a single validation attempt."""

    PASSED = "passed"
    FAILED = "failed"
    OBSERVED = "observed"


class ObservationKind(str, Enum):
    """Who raises observations of a given type."""

    MANUAL = "manual"
    SYSTEM = "system"


class ProviderResponseStatus(str, Enum):
    """Status reported by the external validation provider."""

    SUCCESS = "success"
    ERROR = "error"


class HistoryEventType(str, Enum):
    """Event types recorded in the request audit trail."""

    STATUS_CHANGE = "status_change"
    OBSERVATION_UPDATE = "observation_update"
    INFO_UPDATE = "info_update"
    SIMULATION = "simulation"
    AUTOMATIC_OBSERVATION_RETRY = "automatic_observation_retry"
    REQUEST_CREATED = "request_created"
    REQUEST_APPROVED = "request_approved"
    OBSERVATION_RESOLVED = "observation_resolved"
