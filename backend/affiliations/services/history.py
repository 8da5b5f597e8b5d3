"""Append-only audit bookkeeping: request history, provider responses, validation attempts."""

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from db.enums import HistoryEventType, ValidationHistoryStatus
from db.models import ProviderResponses, RequestHistory, ValidationHistory, ValidationResults
from affiliations.services._helpers import now_iso
from affiliations.services.schemas.outcomes import ProviderOutcome


def record_request_event(
    session: Session,
    request_id: int,
    event_type: HistoryEventType,
    details: str,
    changed_by: str,
    previous_status: str | None = None,
    new_status: str | None = None,
) -> RequestHistory:
    entry: RequestHistory = RequestHistory(
        affiliation_request_id=request_id,
        event_type=event_type.value,
        details=details,
        previous_status=previous_status,
        new_status=new_status,
        changed_by=changed_by,
        changed_at=now_iso(),
    )
    session.add(entry)
    session.flush()
    return entry


def record_provider_response(session: Session, outcome: ProviderOutcome) -> ProviderResponses:
    response: ProviderResponses = ProviderResponses(
        provider_code=outcome.provider_code,
        validation_code=outcome.validation_code,
        document_number=outcome.document_number,
        document_type=outcome.document_type,
        account_number=outcome.account_number,
        product_id=outcome.product_id,
        channel_id=outcome.channel_id,
        status=outcome.status.value,
        error_message=outcome.error_message,
        error_code=outcome.error_code,
        response_json=outcome.response_json,
        created_at=now_iso(),
    )
    session.add(response)
    session.flush()
    return response


def next_attempt_number(session: Session, validation_result_id: int) -> int:
    current: int | None = session.scalar(
        select(func.max(ValidationHistory.attempt_number)).where(
            ValidationHistory.validation_result_id == validation_result_id
        )
    )
    return (current or 0) + 1


def append_validation_attempt(
    session: Session,
    result: ValidationResults,
    status: ValidationHistoryStatus,
    comment: str | None,
    triggered_by: str,
    provider_response_id: int | None = None,
) -> ValidationHistory:
    """Append the next attempt and keep the result's status in step with it."""
    attempt: ValidationHistory = ValidationHistory(
        validation_result_id=result.id,
        provider_response_id=provider_response_id,
        attempt_number=next_attempt_number(session, result.id),
        status=status.value,
        comment=comment,
        triggered_by=triggered_by,
        created_at=now_iso(),
    )
    session.add(attempt)
    result.status = status.value
    result.updated_at = now_iso()
    session.flush()
    return attempt
