"""Affiliation request lifecycle and observation-resolution engine.

Every public operation runs in its own unit of work (``session_scope``): the
whole operation commits together or rolls back together. Provider calls made
by ``retry_observation`` happen outside the write transaction; the response is
persisted in the same transaction as the status promotion it justifies.
"""

from collections.abc import Sequence
from enum import Enum
from typing import TypeVar

import structlog
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from db.connection import get_session_factory, session_scope
from db.enums import (
    AffiliationRequestStatus,
    HistoryEventType,
    ObservationStatus,
    ResolveObservationStatus,
    RequestResolution,
    ValidationHistoryStatus,
)
from db.models import (
    AffiliationRequests,
    Affiliations,
    ObservationSelectedCauses,
    Observations,
    ValidationHistory,
    ValidationResults,
)
from affiliations.services._helpers import now_iso
from affiliations.services.catalog import CatalogSnapshot, ObservationTypeEntry
from affiliations.services.errors import (
    DataIntegrityError,
    InvalidOperationError,
    NotFoundError,
    ProviderFailureError,
)
from affiliations.services.history import (
    append_validation_attempt,
    record_provider_response,
    record_request_event,
)
from affiliations.services.provider import ValidationProvider, build_provider, is_risk_flagged
from affiliations.services.schemas import (
    IngestionResult,
    ObservationResult,
    ProviderOutcome,
    RetryResult,
    StatusChangeResult,
    ValidationCheck,
)
from affiliations.services.state_machine import (
    IngestionDecision,
    decide_ingestion,
    ensure_open,
    ensure_transition,
    parse_status,
    status_after_observations,
)

logger = structlog.get_logger(__name__)

DEFAULT_DOCUMENT_TYPE = "RUC"

E = TypeVar("E", bound=Enum)


def _coerce(enum_cls: type[E], value: E | str, what: str) -> E:
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed: str = ", ".join(m.value for m in enum_cls)
        raise InvalidOperationError(f"Invalid {what} {value!r}; expected one of: {allowed}") from e


class LifecycleEngine:
    """State machine for affiliation requests and their observations."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        provider: ValidationProvider | None = None,
        catalog: CatalogSnapshot | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings: Settings = settings or get_settings()
        self.session_factory: sessionmaker[Session] = session_factory or get_session_factory()
        self.provider: ValidationProvider = provider or build_provider(self.settings.provider)
        self.catalog: CatalogSnapshot | None = catalog

    @property
    def system_actor(self) -> str:
        return self.settings.lifecycle.system_actor

    # ------------------------------------------------------------------
    # Loading helpers
    # ------------------------------------------------------------------

    def _catalog(self, session: Session) -> CatalogSnapshot:
        return self.catalog if self.catalog is not None else CatalogSnapshot.load(session)

    @staticmethod
    def _lock_request(session: Session, request_id: int) -> AffiliationRequests:
        stmt: Select[tuple[AffiliationRequests]] = (
            select(AffiliationRequests)
            .where(AffiliationRequests.id == request_id)
            .with_for_update()
        )
        request: AffiliationRequests | None = session.scalars(stmt).first()
        if request is None:
            raise NotFoundError(f"Request {request_id} not found")
        return request

    @staticmethod
    def _affiliation(session: Session, request: AffiliationRequests) -> Affiliations:
        affiliation: Affiliations | None = session.get(Affiliations, request.affiliation_id)
        if affiliation is None:
            raise DataIntegrityError(
                f"Affiliation {request.affiliation_id} of request {request.id} not found"
            )
        return affiliation

    @staticmethod
    def _observation(session: Session, observation_id: int) -> Observations:
        observation: Observations | None = session.get(Observations, observation_id)
        if observation is None:
            raise NotFoundError(f"Observation {observation_id} not found")
        return observation

    @staticmethod
    def _observation_type(catalog: CatalogSnapshot, type_id: int) -> ObservationTypeEntry:
        entry: ObservationTypeEntry | None = catalog.type_by_id(type_id)
        if entry is None:
            raise DataIntegrityError(f"Observation type {type_id} is missing from the catalog")
        return entry

    @staticmethod
    def _validation_result(
        session: Session, affiliation_id: str, observation_type_id: int
    ) -> ValidationResults | None:
        stmt: Select[tuple[ValidationResults]] = select(ValidationResults).where(
            ValidationResults.affiliation_id == affiliation_id,
            ValidationResults.observation_type_id == observation_type_id,
        )
        return session.scalars(stmt).first()

    @staticmethod
    def _pending_count(session: Session, request_id: int) -> int:
        return (
            session.scalar(
                select(func.count(Observations.id)).where(
                    Observations.affiliation_request_id == request_id,
                    Observations.status == ObservationStatus.PENDING.value,
                )
            )
            or 0
        )

    @staticmethod
    def _set_status(
        request: AffiliationRequests,
        status: AffiliationRequestStatus,
        actor: str,
    ) -> None:
        ts: str = now_iso()
        request.status = status.value
        request.reviewed_by = actor
        request.reviewed_at = ts
        request.updated_at = ts

    @staticmethod
    def _mirror(affiliation: Affiliations, status: AffiliationRequestStatus) -> None:
        affiliation.status = status.value
        affiliation.updated_at = now_iso()

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def ingest_validation_outcome(
        self,
        request_id: int,
        outcomes: Sequence[ProviderOutcome],
    ) -> IngestionResult:
        """Record provider outcomes and move the request per error > risk > auto-approve > pending."""
        if not outcomes:
            raise InvalidOperationError("At least one validation outcome is required")

        with session_scope(self.session_factory) as session:
            catalog: CatalogSnapshot = self._catalog(session)
            request: AffiliationRequests = self._lock_request(session, request_id)
            current: AffiliationRequestStatus = parse_status(request.status)
            ensure_open(request_id, current)
            affiliation: Affiliations = self._affiliation(session, request)

            types: list[ObservationTypeEntry | None] = []
            for outcome in outcomes:
                entry: ObservationTypeEntry | None = catalog.type_for_code(outcome.validation_code)
                # An uncatalogued error still rejects; only its raw response is kept.
                if entry is None and not outcome.is_error:
                    raise DataIntegrityError(
                        f"No observation type for validation code '{outcome.validation_code}'"
                    )
                types.append(entry)

            risk_levels: list[str] = self.settings.provider.risk_levels
            decision, drivers = decide_ingestion(
                outcomes, risk_levels, catalog.auto_approve(request.request_config_id)
            )

            response_ids: list[int] = []
            for outcome, entry in zip(outcomes, types):
                response_ids.append(
                    self._record_outcome(session, affiliation.id, entry, outcome, risk_levels)
                )

            codes: str = ", ".join(o.validation_code for o in drivers)
            observation_ids: list[int] = []
            new_status: AffiliationRequestStatus = current

            match decision:
                case IngestionDecision.REJECT:
                    new_status = AffiliationRequestStatus.REJECTED
                    details = f"Request automatically rejected due to validation errors: {codes}"
                case IngestionDecision.OBSERVE:
                    new_status = AffiliationRequestStatus.OBSERVED
                    details = f"Request automatically observed due to validation results: {codes}"
                    for outcome in drivers:
                        observation: Observations = Observations(
                            affiliation_request_id=request.id,
                            observation_type_id=catalog.types_by_code[outcome.validation_code].id,
                            comment=outcome.error_message,
                            status=ObservationStatus.PENDING.value,
                            created_by=self.system_actor,
                        )
                        session.add(observation)
                        session.flush()
                        observation_ids.append(observation.id)
                case IngestionDecision.APPROVE:
                    new_status = AffiliationRequestStatus.APPROVED
                    details = "Request automatically approved based on product configuration."
                case IngestionDecision.PENDING:
                    details = "All validations passed. Request is pending manual review."

            if decision != IngestionDecision.PENDING:
                ensure_transition(request_id, current, new_status)
                self._set_status(request, new_status, self.system_actor)
                self._mirror(affiliation, new_status)
                record_request_event(
                    session,
                    request.id,
                    HistoryEventType.STATUS_CHANGE,
                    details,
                    self.system_actor,
                    previous_status=current.value,
                    new_status=new_status.value,
                )
            else:
                record_request_event(
                    session, request.id, HistoryEventType.INFO_UPDATE, details, self.system_actor
                )

            logger.info(
                "Ingested validation outcomes",
                request_id=request_id,
                decision=decision.value,
                previous_status=current.value,
                new_status=new_status.value,
                outcomes=len(outcomes),
            )
            return IngestionResult(
                request_id=request.id,
                previous_status=current,
                new_status=new_status,
                decision=decision.value,
                observation_ids=observation_ids,
                provider_response_ids=response_ids,
                failing_codes=[o.validation_code for o in drivers]
                if decision == IngestionDecision.REJECT
                else [],
            )

    def _record_outcome(
        self,
        session: Session,
        affiliation_id: str,
        entry: ObservationTypeEntry | None,
        outcome: ProviderOutcome,
        risk_levels: list[str],
    ) -> int:
        """Persist the raw response and append it as the next attempt of its validation result."""
        response = record_provider_response(session, outcome)
        if entry is None:
            return response.id

        if outcome.is_error:
            status = ValidationHistoryStatus.FAILED
        elif is_risk_flagged(outcome, risk_levels):
            status = ValidationHistoryStatus.OBSERVED
        else:
            status = ValidationHistoryStatus.PASSED

        result: ValidationResults | None = self._validation_result(
            session, affiliation_id, entry.id
        )
        if result is None:
            result = ValidationResults(
                code=entry.code,
                affiliation_id=affiliation_id,
                observation_type_id=entry.id,
                status=status.value,
            )
            session.add(result)
            session.flush()

        result.comment = outcome.error_message
        append_validation_attempt(
            session,
            result,
            status,
            outcome.error_message,
            self.system_actor,
            provider_response_id=response.id,
        )
        return response.id

    # ------------------------------------------------------------------
    # Manual observations
    # ------------------------------------------------------------------

    def add_manual_observation(
        self,
        request_id: int,
        observation_type_id: int,
        cause_ids: Sequence[int] = (),
        comment: str | None = None,
        actor: str | None = None,
    ) -> ObservationResult:
        actor = actor or self.settings.lifecycle.supervisor_actor
        with session_scope(self.session_factory) as session:
            catalog: CatalogSnapshot = self._catalog(session)
            request: AffiliationRequests = self._lock_request(session, request_id)
            current: AffiliationRequestStatus = parse_status(request.status)
            ensure_open(request_id, current)

            entry: ObservationTypeEntry | None = catalog.type_by_id(observation_type_id)
            if entry is None:
                raise NotFoundError(f"Observation type {observation_type_id} not found")
            if not entry.is_active:
                raise InvalidOperationError(f"Observation type '{entry.code}' is inactive")

            allowed: frozenset[int] = catalog.active_cause_ids(entry.id)
            unknown: list[int] = [c for c in cause_ids if c not in allowed]
            if unknown:
                raise DataIntegrityError(
                    f"Causes {unknown} are not active causes of observation type '{entry.code}'"
                )

            observation: Observations = Observations(
                affiliation_request_id=request.id,
                observation_type_id=entry.id,
                comment=comment or None,
                status=ObservationStatus.PENDING.value,
                created_by=actor,
            )
            session.add(observation)
            session.flush()
            for cause_id in cause_ids:
                session.add(
                    ObservationSelectedCauses(
                        affiliation_observation_id=observation.id,
                        observation_cause_id=cause_id,
                    )
                )

            target: AffiliationRequestStatus = AffiliationRequestStatus.OBSERVED
            ensure_transition(request_id, current, target)
            self._set_status(request, target, actor)
            self._mirror(self._affiliation(session, request), target)
            record_request_event(
                session,
                request.id,
                HistoryEventType.OBSERVATION_UPDATE,
                f"Manual observation added: {comment or 'No comment'}",
                actor,
                previous_status=current.value,
                new_status=target.value,
            )

            pending: int = self._pending_count(session, request.id)
            logger.info(
                "Added manual observation",
                request_id=request_id,
                observation_id=observation.id,
                code=entry.code,
                causes=len(cause_ids),
            )
            return ObservationResult(
                observation_id=observation.id,
                request_id=request.id,
                observation_status=ObservationStatus.PENDING,
                request_status=target,
                pending_observations=pending,
            )

    # ------------------------------------------------------------------
    # Observation resolution
    # ------------------------------------------------------------------

    def resolve_observation(
        self,
        observation_id: int,
        new_status: ResolveObservationStatus | str,
        actor: str | None = None,
    ) -> ObservationResult:
        target: ResolveObservationStatus = _coerce(
            ResolveObservationStatus, new_status, "observation status"
        )
        actor = actor or self.settings.lifecycle.supervisor_actor

        with session_scope(self.session_factory) as session:
            catalog: CatalogSnapshot = self._catalog(session)
            observation: Observations = self._observation(session, observation_id)
            request: AffiliationRequests = self._lock_request(
                session, observation.affiliation_request_id
            )
            ensure_open(request.id, parse_status(request.status))
            if observation.status != ObservationStatus.PENDING.value:
                raise InvalidOperationError(
                    f"Observation {observation_id} is already '{observation.status}'"
                )

            previous: str = observation.status
            ts: str = now_iso()
            observation.status = target.value
            observation.reviewed_by = actor
            observation.reviewed_at = ts
            observation.updated_at = ts

            entry: ObservationTypeEntry = self._observation_type(
                catalog, observation.observation_type_id
            )
            # A system observation raised by hand has no provider check to sync.
            result: ValidationResults | None = (
                self._validation_result(session, request.affiliation_id, entry.id)
                if entry.is_system
                else None
            )
            if result is not None:
                append_validation_attempt(
                    session,
                    result,
                    ValidationHistoryStatus.PASSED
                    if target == ResolveObservationStatus.APPROVED
                    else ValidationHistoryStatus.OBSERVED,
                    f"Observation resolved as '{target.value}' by supervisor.",
                    actor,
                )

            record_request_event(
                session,
                request.id,
                HistoryEventType.OBSERVATION_RESOLVED,
                f"Observation ID {observation_id} status changed to {target.value}",
                actor,
                previous_status=previous,
                new_status=target.value,
            )

            cascaded, pending = self._cascade(session, catalog, request)
            logger.info(
                "Resolved observation",
                observation_id=observation_id,
                request_id=request.id,
                status=target.value,
                pending=pending,
                cascaded=cascaded,
            )
            return ObservationResult(
                observation_id=observation.id,
                request_id=request.id,
                observation_status=ObservationStatus(target.value),
                request_status=parse_status(request.status),
                pending_observations=pending,
                cascaded=cascaded,
            )

    def reject_observation(self, observation_id: int, actor: str | None = None) -> ObservationResult:
        return self.resolve_observation(observation_id, ResolveObservationStatus.REJECTED, actor)

    def _cascade(
        self,
        session: Session,
        catalog: CatalogSnapshot,
        request: AffiliationRequests,
    ) -> tuple[bool, int]:
        """Re-derive the request status from policy once no observation is pending."""
        session.flush()
        pending: int = self._pending_count(session, request.id)
        if pending:
            return False, pending

        current: AffiliationRequestStatus = parse_status(request.status)
        target: AffiliationRequestStatus = status_after_observations(
            catalog.auto_approve(request.request_config_id)
        )
        if target == current:
            return False, 0

        ensure_transition(request.id, current, target)
        self._set_status(request, target, self.system_actor)
        if target == AffiliationRequestStatus.APPROVED:
            self._mirror(self._affiliation(session, request), target)
        record_request_event(
            session,
            request.id,
            HistoryEventType.STATUS_CHANGE,
            "All observations resolved. Status updated automatically.",
            self.system_actor,
            previous_status=current.value,
            new_status=target.value,
        )
        logger.info(
            "Request status cascaded",
            request_id=request.id,
            previous_status=current.value,
            new_status=target.value,
        )
        return True, 0

    # ------------------------------------------------------------------
    # Retry
    # ------------------------------------------------------------------

    def retry_observation(self, observation_id: int, actor: str | None = None) -> RetryResult:
        """Re-run the check behind a system observation and promote it on success."""
        actor = actor or self.settings.lifecycle.supervisor_actor

        with session_scope(self.session_factory) as session:
            check, result_id = self._retry_linkage(session, self._catalog(session), observation_id)

        logger.info(
            "Retrying observation",
            observation_id=observation_id,
            code=check.validation_code,
            actor=actor,
        )
        outcome: ProviderOutcome = self.provider.check(check)

        if outcome.is_error:
            message: str = outcome.error_message or "Validation retry resulted in a failure."
            if self.settings.lifecycle.audit_failed_retries:
                self._record_failed_retry(observation_id, result_id, outcome, actor)
            logger.warning(
                "Observation retry failed",
                observation_id=observation_id,
                code=check.validation_code,
                error=message,
            )
            raise ProviderFailureError(message, outcome.error_code)

        with session_scope(self.session_factory) as session:
            catalog: CatalogSnapshot = self._catalog(session)
            observation: Observations = self._observation(session, observation_id)
            request: AffiliationRequests = self._lock_request(
                session, observation.affiliation_request_id
            )
            ensure_open(request.id, parse_status(request.status))
            if observation.status != ObservationStatus.PENDING.value:
                raise InvalidOperationError(
                    f"Observation {observation_id} was resolved while its retry was running"
                )
            result: ValidationResults | None = session.get(ValidationResults, result_id)
            if result is None:
                raise DataIntegrityError(f"Validation result {result_id} disappeared")

            response = record_provider_response(session, outcome)
            attempt: ValidationHistory = append_validation_attempt(
                session,
                result,
                ValidationHistoryStatus.PASSED,
                f"Retry attempt via observation {observation_id}",
                actor,
                provider_response_id=response.id,
            )
            result.comment = None

            ts: str = now_iso()
            observation.status = ObservationStatus.APPROVED.value
            observation.reviewed_by = actor
            observation.reviewed_at = ts
            observation.updated_at = ts
            record_request_event(
                session,
                request.id,
                HistoryEventType.AUTOMATIC_OBSERVATION_RETRY,
                f"Observation ID {observation_id} approved after a successful "
                f"{check.validation_code} retry",
                actor,
                previous_status=ObservationStatus.PENDING.value,
                new_status=ObservationStatus.APPROVED.value,
            )

            cascaded, _ = self._cascade(session, catalog, request)
            logger.info(
                "Observation retry succeeded",
                observation_id=observation_id,
                attempt=attempt.attempt_number,
                cascaded=cascaded,
            )
            return RetryResult(
                observation_id=observation.id,
                request_id=request.id,
                provider_response_id=response.id,
                attempt_number=attempt.attempt_number or 0,
                request_status=parse_status(request.status),
                cascaded=cascaded,
            )

    def _retry_linkage(
        self,
        session: Session,
        catalog: CatalogSnapshot,
        observation_id: int,
    ) -> tuple[ValidationCheck, int]:
        """Resolve the check inputs and validation result behind a retryable observation."""
        observation: Observations = self._observation(session, observation_id)
        request: AffiliationRequests | None = session.get(
            AffiliationRequests, observation.affiliation_request_id
        )
        if request is None:
            raise DataIntegrityError(
                f"Request {observation.affiliation_request_id} of observation "
                f"{observation_id} not found"
            )
        ensure_open(request.id, parse_status(request.status))

        entry: ObservationTypeEntry = self._observation_type(
            catalog, observation.observation_type_id
        )
        if not entry.is_system:
            raise InvalidOperationError(
                f"Observation {observation_id} is '{entry.kind.value}'; only system observations can be retried"
            )
        if observation.status != ObservationStatus.PENDING.value:
            raise InvalidOperationError(
                f"Observation {observation_id} is already '{observation.status}'"
            )

        affiliation: Affiliations = self._affiliation(session, request)
        result: ValidationResults | None = self._validation_result(
            session, affiliation.id, entry.id
        )
        if result is None:
            raise DataIntegrityError(
                f"No validation result for '{entry.code}' on affiliation {affiliation.id}"
            )

        # Re-run with the inputs of the latest recorded provider call when there is one.
        for attempt in reversed(result.history):
            previous = attempt.provider_response
            if previous is not None:
                return (
                    ValidationCheck(
                        validation_code=entry.code,
                        document_number=previous.document_number,
                        document_type=previous.document_type,
                        account_number=previous.account_number,
                        product_id=previous.product_id,
                        channel_id=previous.channel_id,
                    ),
                    result.id,
                )

        return (
            ValidationCheck(
                validation_code=entry.code,
                document_number=affiliation.ruc,
                document_type=DEFAULT_DOCUMENT_TYPE,
                product_id=str(affiliation.product_id),
                channel_id=str(affiliation.channel_id),
            ),
            result.id,
        )

    def _record_failed_retry(
        self,
        observation_id: int,
        result_id: int,
        outcome: ProviderOutcome,
        actor: str,
    ) -> None:
        with session_scope(self.session_factory) as session:
            result: ValidationResults | None = session.get(ValidationResults, result_id)
            if result is None:
                raise DataIntegrityError(f"Validation result {result_id} disappeared")
            response = record_provider_response(session, outcome)
            append_validation_attempt(
                session,
                result,
                ValidationHistoryStatus.FAILED,
                f"Retry attempt via observation {observation_id} failed: {outcome.error_message}",
                actor,
                provider_response_id=response.id,
            )
            result.comment = outcome.error_message

    # ------------------------------------------------------------------
    # Request resolution
    # ------------------------------------------------------------------

    def resolve_request(
        self,
        request_id: int,
        new_status: RequestResolution | str,
        actor: str | None = None,
    ) -> StatusChangeResult:
        """Explicit manual approval or rejection; outstanding observations are not checked."""
        resolution: RequestResolution = _coerce(RequestResolution, new_status, "request resolution")
        target: AffiliationRequestStatus = AffiliationRequestStatus(resolution.value)
        actor = actor or self.settings.lifecycle.supervisor_actor

        with session_scope(self.session_factory) as session:
            request: AffiliationRequests = self._lock_request(session, request_id)
            current: AffiliationRequestStatus = parse_status(request.status)
            ensure_transition(request_id, current, target)

            self._set_status(request, target, actor)
            self._mirror(self._affiliation(session, request), target)
            record_request_event(
                session,
                request.id,
                HistoryEventType.STATUS_CHANGE,
                f"Request manually reviewed and set to {target.value}",
                actor,
                previous_status=current.value,
                new_status=target.value,
            )
            logger.info(
                "Resolved request",
                request_id=request_id,
                previous_status=current.value,
                new_status=target.value,
                actor=actor,
            )
            return StatusChangeResult(request_id=request.id, previous_status=current, new_status=target)

    def update_request_status(
        self,
        request_id: int,
        new_status: AffiliationRequestStatus | str,
        actor: str | None = None,
        comment: str | None = None,
    ) -> StatusChangeResult:
        """Guarded status change of an open request, mirrored onto its affiliation."""
        target: AffiliationRequestStatus = _coerce(
            AffiliationRequestStatus, new_status, "request status"
        )
        actor = actor or self.settings.lifecycle.supervisor_actor

        with session_scope(self.session_factory) as session:
            request: AffiliationRequests = self._lock_request(session, request_id)
            current: AffiliationRequestStatus = parse_status(request.status)
            ensure_transition(request_id, current, target)
            if target == current:
                raise InvalidOperationError(
                    f"Request {request_id} is already '{current.value}'"
                )

            self._set_status(request, target, actor)
            self._mirror(self._affiliation(session, request), target)
            record_request_event(
                session,
                request.id,
                HistoryEventType.STATUS_CHANGE,
                comment or f"Status changed from {current.value} to {target.value}",
                actor,
                previous_status=current.value,
                new_status=target.value,
            )
            logger.info(
                "Updated request status",
                request_id=request_id,
                previous_status=current.value,
                new_status=target.value,
            )
            return StatusChangeResult(request_id=request.id, previous_status=current, new_status=target)
