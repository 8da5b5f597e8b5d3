"""Request status transitions and the ingestion precedence rule."""

from collections.abc import Iterable, Sequence
from enum import Enum

from db.enums import AffiliationRequestStatus
from affiliations.services.errors import AlreadyFinalizedError, InvalidOperationError
from affiliations.services.provider import is_risk_flagged
from affiliations.services.schemas.outcomes import ProviderOutcome

REQUEST_TRANSITIONS: dict[AffiliationRequestStatus, frozenset[AffiliationRequestStatus]] = {
    AffiliationRequestStatus.PENDING: frozenset(
        {
            AffiliationRequestStatus.APPROVED,
            AffiliationRequestStatus.REJECTED,
            AffiliationRequestStatus.OBSERVED,
        }
    ),
    AffiliationRequestStatus.OBSERVED: frozenset(
        {
            AffiliationRequestStatus.PENDING,
            AffiliationRequestStatus.APPROVED,
            AffiliationRequestStatus.REJECTED,
            # Another observation on an already observed request.
            AffiliationRequestStatus.OBSERVED,
        }
    ),
    AffiliationRequestStatus.APPROVED: frozenset(),
    AffiliationRequestStatus.REJECTED: frozenset(),
}


class IngestionDecision(str, Enum):
    REJECT = "reject"
    OBSERVE = "observe"
    APPROVE = "approve"
    PENDING = "pending"


def parse_status(raw: str | None) -> AffiliationRequestStatus:
    """Stored request status; rows without one are treated as pending."""
    return AffiliationRequestStatus(raw or AffiliationRequestStatus.PENDING.value)


def ensure_open(request_id: int, status: AffiliationRequestStatus) -> None:
    if status.is_terminal:
        raise AlreadyFinalizedError(
            f"Request {request_id} is already finalized with status '{status.value}'"
        )


def ensure_transition(
    request_id: int,
    current: AffiliationRequestStatus,
    target: AffiliationRequestStatus,
) -> None:
    ensure_open(request_id, current)
    if target == current:
        return
    if target not in REQUEST_TRANSITIONS[current]:
        raise InvalidOperationError(
            f"Request {request_id} cannot move from '{current.value}' to '{target.value}'"
        )


def status_after_observations(auto_approve: bool) -> AffiliationRequestStatus:
    """Next request status once no pending observation remains."""
    return AffiliationRequestStatus.APPROVED if auto_approve else AffiliationRequestStatus.PENDING


def decide_ingestion(
    outcomes: Sequence[ProviderOutcome],
    risk_levels: Iterable[str],
    auto_approve: bool,
) -> tuple[IngestionDecision, list[ProviderOutcome]]:
    """Apply error > risk flag > auto-approve > manual pending.

    Returns the decision and the outcomes that drove it (failing outcomes for
    a rejection, risk-flagged outcomes for an observation).
    """
    errors: list[ProviderOutcome] = [o for o in outcomes if o.is_error]
    if errors:
        return IngestionDecision.REJECT, errors

    levels: list[str] = list(risk_levels)
    flagged: list[ProviderOutcome] = [o for o in outcomes if is_risk_flagged(o, levels)]
    if flagged:
        return IngestionDecision.OBSERVE, flagged

    if auto_approve:
        return IngestionDecision.APPROVE, []
    return IngestionDecision.PENDING, []
