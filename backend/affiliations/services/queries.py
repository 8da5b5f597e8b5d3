"""Read-only projections of affiliations, requests, observations and validations."""

from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from db.enums import ObservationKind, ObservationStatus
from db.models import (
    AffiliationRequests,
    Affiliations,
    ObservationSelectedCauses,
    ObservationTypes,
    Observations,
    ProductObservationTypes,
    Products,
    ProviderResponses,
    RequestHistory,
    ValidationHistory,
    ValidationResults,
)
from affiliations.services._helpers import load_json
from affiliations.services._types import (
    AffiliationDetailUI,
    AffiliationUI,
    HistoryEntryUI,
    ObservationUI,
    ProviderResponseUI,
    RequestDetailUI,
    RequestUI,
    SelectedCauseUI,
    ValidationAttemptUI,
    ValidationResultUI,
)


class ReviewQueries:
    """Queries backing the review screens. Never writes."""

    def __init__(self, session: Session) -> None:
        self.session: Session = session

    # ------------------------------------------------------------------
    # Affiliations
    # ------------------------------------------------------------------

    def list_affiliations(self) -> list[AffiliationUI]:
        stmt = (
            select(Affiliations, Products.name)
            .join(Products, Products.id == Affiliations.product_id)
            .order_by(Affiliations.created_at.desc(), Affiliations.id.desc())
        )
        return [self._affiliation_to_ui(a, name) for a, name in self.session.execute(stmt).all()]

    def get_affiliation_detail(self, affiliation_id: str) -> AffiliationDetailUI | None:
        affiliation: Affiliations | None = self.session.get(Affiliations, affiliation_id)
        if affiliation is None:
            return None
        product: Products | None = self.session.get(Products, affiliation.product_id)
        latest_request_id: int | None = self.session.scalar(
            select(AffiliationRequests.id)
            .where(AffiliationRequests.affiliation_id == affiliation_id)
            .order_by(AffiliationRequests.id.desc())
            .limit(1)
        )
        return AffiliationDetailUI(
            **self._affiliation_to_ui(affiliation, product.name if product else ""),
            affiliationRequestId=latest_request_id,
            validations=self._validations(affiliation_id),
        )

    def _validations(self, affiliation_id: str) -> list[ValidationResultUI]:
        stmt = (
            select(ValidationResults, ObservationTypes.label)
            .outerjoin(ObservationTypes, ObservationTypes.id == ValidationResults.observation_type_id)
            .where(ValidationResults.affiliation_id == affiliation_id)
            .order_by(ValidationResults.id)
        )
        return [
            ValidationResultUI(
                id=vr.id,
                code=vr.code,
                affiliationId=vr.affiliation_id,
                observationTypeId=vr.observation_type_id,
                observationTypeLabel=label,
                status=vr.status,
                comment=vr.comment,
                createdAt=vr.created_at,
                updatedAt=vr.updated_at,
            )
            for vr, label in self.session.execute(stmt).all()
        ]

    @staticmethod
    def _affiliation_to_ui(a: Affiliations, product_name: str) -> AffiliationUI:
        return AffiliationUI(
            id=a.id,
            customerId=a.customer_id,
            productId=a.product_id,
            productName=product_name,
            channelId=a.channel_id,
            ruc=a.ruc,
            businessName=a.business_name,
            status=a.status,
            currentStep=a.current_step,
            createdBy=a.created_by,
            createdAt=a.created_at,
            updatedAt=a.updated_at,
        )

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    def _requests(self) -> Select:
        return (
            select(AffiliationRequests, Affiliations, Products.name)
            .join(Affiliations, Affiliations.id == AffiliationRequests.affiliation_id)
            .join(Products, Products.id == Affiliations.product_id)
        )

    def list_requests(self, status: str | None = None) -> list[RequestUI]:
        stmt: Select = self._requests().order_by(
            AffiliationRequests.created_at.desc(), AffiliationRequests.id.desc()
        )
        if status:
            stmt = stmt.where(AffiliationRequests.status == status)
        return [self._request_to_ui(r, a, name) for r, a, name in self.session.execute(stmt).all()]

    def get_request_detail(self, request_id: int) -> RequestDetailUI | None:
        row = self.session.execute(
            self._requests().where(AffiliationRequests.id == request_id)
        ).first()
        if row is None:
            return None
        request, affiliation, product_name = row
        manual_type_id: int | None = self.session.scalar(
            select(ObservationTypes.id)
            .join(
                ProductObservationTypes,
                ProductObservationTypes.observation_type_id == ObservationTypes.id,
            )
            .where(
                ProductObservationTypes.product_id == affiliation.product_id,
                ObservationTypes.kind == ObservationKind.MANUAL.value,
            )
            .limit(1)
        )
        return RequestDetailUI(
            **self._request_to_ui(request, affiliation, product_name),
            canBeObserved=manual_type_id is not None,
            validations=self._validations(affiliation.id),
        )

    @staticmethod
    def _request_to_ui(r: AffiliationRequests, a: Affiliations, product_name: str) -> RequestUI:
        return RequestUI(
            id=r.id,
            affiliationId=r.affiliation_id,
            requestConfigId=r.request_config_id,
            status=r.status,
            createdBy=r.created_by,
            reviewedBy=r.reviewed_by,
            reviewedAt=r.reviewed_at,
            createdAt=r.created_at,
            updatedAt=r.updated_at,
            ruc=a.ruc,
            productId=a.product_id,
            businessName=a.business_name,
            productName=product_name,
        )

    def get_observations_for_request(self, request_id: int) -> list[ObservationUI]:
        stmt: Select[tuple[Observations]] = (
            select(Observations)
            .where(Observations.affiliation_request_id == request_id)
            .options(
                selectinload(Observations.observation_type),
                selectinload(Observations.selected_causes).selectinload(
                    ObservationSelectedCauses.cause
                ),
            )
            .order_by(Observations.created_at, Observations.id)
        )
        observations: list[Observations] = list(self.session.scalars(stmt).all())
        return [self._observation_to_ui(o) for o in observations]

    @staticmethod
    def _observation_to_ui(o: Observations) -> ObservationUI:
        obs_type: ObservationTypes = o.observation_type
        return ObservationUI(
            id=o.id,
            affiliationRequestId=o.affiliation_request_id,
            observationTypeId=o.observation_type_id,
            observationCode=obs_type.code,
            observationTypeTitle=obs_type.title,
            observationTypeLabel=obs_type.label,
            kind=obs_type.kind,
            isRetriable=obs_type.kind == ObservationKind.SYSTEM.value
            and o.status == ObservationStatus.PENDING.value,
            comment=o.comment,
            status=o.status,
            reviewedBy=o.reviewed_by,
            reviewedAt=o.reviewed_at,
            createdBy=o.created_by,
            createdAt=o.created_at,
            updatedAt=o.updated_at,
            causes=[
                SelectedCauseUI(
                    id=sc.id,
                    causeId=sc.observation_cause_id,
                    label=sc.cause.label if sc.cause else None,
                )
                for sc in o.selected_causes
            ],
        )

    def get_request_history(self, request_id: int) -> list[HistoryEntryUI]:
        stmt: Select[tuple[RequestHistory]] = (
            select(RequestHistory)
            .where(RequestHistory.affiliation_request_id == request_id)
            .order_by(RequestHistory.changed_at.desc(), RequestHistory.id.desc())
        )
        return [
            HistoryEntryUI(
                id=h.id,
                affiliationRequestId=h.affiliation_request_id,
                eventType=h.event_type,
                details=h.details,
                previousStatus=h.previous_status,
                newStatus=h.new_status,
                changedBy=h.changed_by,
                changedAt=h.changed_at,
            )
            for h in self.session.scalars(stmt).all()
        ]

    # ------------------------------------------------------------------
    # Validations
    # ------------------------------------------------------------------

    def get_validation_history(self, validation_result_id: int) -> list[ValidationAttemptUI]:
        stmt = (
            select(ValidationHistory, ProviderResponses.response_json)
            .outerjoin(
                ProviderResponses, ProviderResponses.id == ValidationHistory.provider_response_id
            )
            .where(ValidationHistory.validation_result_id == validation_result_id)
            .order_by(ValidationHistory.attempt_number.desc(), ValidationHistory.id.desc())
        )
        return [
            ValidationAttemptUI(
                id=h.id,
                validationResultId=h.validation_result_id,
                providerResponseId=h.provider_response_id,
                attemptNumber=h.attempt_number,
                status=h.status,
                comment=h.comment,
                triggeredBy=h.triggered_by,
                createdAt=h.created_at,
                responseJson=load_json(raw),
            )
            for h, raw in self.session.execute(stmt).all()
        ]

    def get_provider_response(self, response_id: int) -> ProviderResponseUI | None:
        r: ProviderResponses | None = self.session.get(ProviderResponses, response_id)
        if r is None:
            return None
        return ProviderResponseUI(
            id=r.id,
            providerCode=r.provider_code,
            validationCode=r.validation_code,
            documentNumber=r.document_number,
            documentType=r.document_type,
            accountNumber=r.account_number,
            productId=r.product_id,
            channelId=r.channel_id,
            status=r.status,
            errorMessage=r.error_message,
            errorCode=r.error_code,
            responseJson=load_json(r.response_json),
            createdAt=r.created_at,
        )
