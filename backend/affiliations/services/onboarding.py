"""Onboarding flow: affiliation creation, step validations and lazy request creation.

The flow sits in front of the lifecycle engine. It creates affiliations, runs
the onboarding checks and opens the review request once an observation exists.
Submitted provider checks are handed to ``LifecycleEngine.ingest_validation_outcome``.
"""

from collections.abc import Sequence

import structlog
from sqlalchemy import Select, select
from sqlalchemy.orm import Session, sessionmaker

from config import Settings, get_settings
from db.connection import get_session_factory, session_scope
from db.enums import (
    AffiliationRequestStatus,
    AffiliationStatus,
    HistoryEventType,
    ObservationStatus,
    ProviderResponseStatus,
    ValidationHistoryStatus,
)
from db.models import (
    AffiliationRequests,
    Affiliations,
    Observations,
    Products,
    ValidationResults,
)
from affiliations.services._helpers import dump_json, new_customer_id, now_iso
from affiliations.services.catalog import CatalogSnapshot, ObservationTypeEntry
from affiliations.services.errors import (
    DataIntegrityError,
    InvalidOperationError,
    NotFoundError,
)
from affiliations.services.history import (
    append_validation_attempt,
    record_provider_response,
    record_request_event,
)
from affiliations.services.lifecycle import DEFAULT_DOCUMENT_TYPE, LifecycleEngine
from affiliations.services.provider import ValidationProvider, build_provider
from affiliations.services.schemas import (
    AffiliationCreated,
    IngestionResult,
    ProviderOutcome,
    SimulationReport,
    ValidationCheck,
)

logger = structlog.get_logger(__name__)

SIMULATION_ACTOR = "simulation"
SIMULATOR_PROVIDER_CODE = "SIMULATOR_PROVIDER"

# Step outcomes reported by the onboarding screens.
STEP_STATUS_MAP: dict[str, ValidationHistoryStatus] = {
    "approved": ValidationHistoryStatus.PASSED,
    "rejected": ValidationHistoryStatus.FAILED,
    "observed": ValidationHistoryStatus.OBSERVED,
}


class OnboardingService:
    """Drives an affiliation from creation to its review request."""

    def __init__(
        self,
        session_factory: sessionmaker[Session] | None = None,
        engine: LifecycleEngine | None = None,
        provider: ValidationProvider | None = None,
        settings: Settings | None = None,
    ) -> None:
        self.settings: Settings = settings or get_settings()
        self.session_factory: sessionmaker[Session] = session_factory or get_session_factory()
        self.provider: ValidationProvider = provider or build_provider(self.settings.provider)
        self.engine: LifecycleEngine = engine or LifecycleEngine(
            self.session_factory, provider=self.provider, settings=self.settings
        )

    # ------------------------------------------------------------------
    # Affiliations
    # ------------------------------------------------------------------

    def create_affiliation(
        self,
        business_name: str,
        ruc: str,
        product_id: int,
        channel_id: int,
        created_by: str | None = None,
        open_request: bool = False,
    ) -> AffiliationCreated:
        """Create a pending affiliation, optionally opening its review request right away."""
        with session_scope(self.session_factory) as session:
            return self._create_affiliation(
                session,
                business_name,
                ruc,
                product_id,
                channel_id,
                created_by or self.settings.lifecycle.system_actor,
                open_request,
            )

    def _create_affiliation(
        self,
        session: Session,
        business_name: str,
        ruc: str,
        product_id: int,
        channel_id: int,
        created_by: str,
        open_request: bool,
    ) -> AffiliationCreated:
        if session.get(Products, product_id) is None:
            raise NotFoundError(f"Product {product_id} not found")

        ts: str = now_iso()
        affiliation: Affiliations = Affiliations(
            customer_id=new_customer_id(),
            product_id=product_id,
            channel_id=channel_id,
            ruc=ruc,
            business_name=business_name,
            status=AffiliationStatus.PENDING.value,
            current_step=0,
            created_by=created_by,
            created_at=ts,
            updated_at=ts,
        )
        session.add(affiliation)
        session.flush()

        request_id: int | None = None
        if open_request:
            request: AffiliationRequests = self._open_request(
                session,
                CatalogSnapshot.load(session),
                affiliation,
                AffiliationRequestStatus.PENDING,
                created_by,
                "Request created for affiliation review.",
            )
            request_id = request.id

        logger.info(
            "Created affiliation",
            affiliation_id=affiliation.id,
            product_id=product_id,
            request_id=request_id,
        )
        return AffiliationCreated(affiliation_id=affiliation.id, request_id=request_id)

    @staticmethod
    def _open_request(
        session: Session,
        catalog: CatalogSnapshot,
        affiliation: Affiliations,
        status: AffiliationRequestStatus,
        actor: str,
        details: str,
    ) -> AffiliationRequests:
        config_id: int | None = catalog.config_for_product(affiliation.product_id)
        if config_id is None:
            raise DataIntegrityError(
                f"No request config for product {affiliation.product_id}"
            )
        ts: str = now_iso()
        request: AffiliationRequests = AffiliationRequests(
            affiliation_id=affiliation.id,
            request_config_id=config_id,
            status=status.value,
            created_by=actor,
            created_at=ts,
            updated_at=ts,
        )
        session.add(request)
        session.flush()
        record_request_event(
            session,
            request.id,
            HistoryEventType.REQUEST_CREATED,
            details,
            actor,
            new_status=status.value,
        )
        return request

    # ------------------------------------------------------------------
    # Provider checks
    # ------------------------------------------------------------------

    def submit_validations(
        self,
        request_id: int,
        codes: Sequence[str],
        document_number: str | None = None,
        account_number: str | None = None,
    ) -> IngestionResult:
        """Run provider checks for a request and ingest their outcomes."""
        if not codes:
            raise InvalidOperationError("At least one validation code is required")

        with session_scope(self.session_factory) as session:
            request: AffiliationRequests | None = session.get(AffiliationRequests, request_id)
            if request is None:
                raise NotFoundError(f"Request {request_id} not found")
            affiliation: Affiliations | None = session.get(Affiliations, request.affiliation_id)
            if affiliation is None:
                raise DataIntegrityError(f"Affiliation {request.affiliation_id} not found")
            checks: list[ValidationCheck] = [
                ValidationCheck(
                    validation_code=code,
                    document_number=document_number or affiliation.ruc,
                    document_type=DEFAULT_DOCUMENT_TYPE,
                    account_number=account_number,
                    product_id=str(affiliation.product_id),
                    channel_id=str(affiliation.channel_id),
                )
                for code in codes
            ]

        outcomes: list[ProviderOutcome] = [self.provider.check(c) for c in checks]
        logger.info(
            "Provider checks completed",
            request_id=request_id,
            codes=list(codes),
            errors=sum(1 for o in outcomes if o.is_error),
        )
        return self.engine.ingest_validation_outcome(request_id, outcomes)

    # ------------------------------------------------------------------
    # Step validations and finalization
    # ------------------------------------------------------------------

    def run_step_validation(
        self,
        affiliation_id: str,
        validation_code: str,
        status: str,
        comment: str,
        next_step: int,
    ) -> int:
        """Record the outcome of one onboarding step and advance the affiliation."""
        with session_scope(self.session_factory) as session:
            return self._run_step_validation(
                session,
                CatalogSnapshot.load(session),
                affiliation_id,
                validation_code,
                status,
                comment,
                next_step,
            )

    def _run_step_validation(
        self,
        session: Session,
        catalog: CatalogSnapshot,
        affiliation_id: str,
        validation_code: str,
        status: str,
        comment: str,
        next_step: int,
    ) -> int:
        affiliation: Affiliations | None = session.get(Affiliations, affiliation_id)
        if affiliation is None:
            raise NotFoundError(f"Affiliation {affiliation_id} not found")
        entry: ObservationTypeEntry | None = catalog.type_for_code(validation_code)
        if entry is None:
            raise DataIntegrityError(f"Observation type not found for code: {validation_code}")
        step_status: ValidationHistoryStatus | None = STEP_STATUS_MAP.get(status)
        if step_status is None:
            raise InvalidOperationError(f"Unknown step status {status!r}")

        ts: str = now_iso()
        outcome: ProviderOutcome = ProviderOutcome(
            validation_code=validation_code,
            status=ProviderResponseStatus.ERROR
            if step_status == ValidationHistoryStatus.FAILED
            else ProviderResponseStatus.SUCCESS,
            response_json=dump_json(
                {
                    "validationCode": validation_code,
                    "timestamp": ts,
                    "result": {"status": status, "details": comment, "simulated": True},
                    "provider": SIMULATOR_PROVIDER_CODE,
                }
            ),
            provider_code=SIMULATOR_PROVIDER_CODE,
            document_number=affiliation.ruc,
            document_type=DEFAULT_DOCUMENT_TYPE,
            product_id=str(affiliation.product_id),
            channel_id=str(affiliation.channel_id),
        )
        response = record_provider_response(session, outcome)

        stmt: Select[tuple[ValidationResults]] = select(ValidationResults).where(
            ValidationResults.affiliation_id == affiliation.id,
            ValidationResults.observation_type_id == entry.id,
        )
        result: ValidationResults | None = session.scalars(stmt).first()
        if result is None:
            result = ValidationResults(
                code=entry.code,
                affiliation_id=affiliation.id,
                observation_type_id=entry.id,
                status=step_status.value,
                created_at=ts,
            )
            session.add(result)
            session.flush()
        result.comment = comment
        append_validation_attempt(
            session,
            result,
            step_status,
            comment,
            affiliation.created_by or self.settings.lifecycle.system_actor,
            provider_response_id=response.id,
        )

        affiliation.current_step = next_step
        affiliation.updated_at = ts
        session.flush()
        logger.info(
            "Recorded step validation",
            affiliation_id=affiliation_id,
            code=validation_code,
            status=step_status.value,
            step=next_step,
        )
        return result.id

    def finalize_affiliation(self, affiliation_id: str, actor: str | None = None) -> int | None:
        """Open an observed review request when any step validation was observed.

        Returns the new request id, or None when nothing was observed. In that
        case an auto-approve product approves the affiliation directly.
        """
        with session_scope(self.session_factory) as session:
            return self._finalize_affiliation(
                session,
                CatalogSnapshot.load(session),
                affiliation_id,
                actor or self.settings.lifecycle.system_actor,
            )

    def _finalize_affiliation(
        self,
        session: Session,
        catalog: CatalogSnapshot,
        affiliation_id: str,
        actor: str,
    ) -> int | None:
        affiliation: Affiliations | None = session.get(Affiliations, affiliation_id)
        if affiliation is None:
            raise NotFoundError(f"Affiliation {affiliation_id} not found")
        if affiliation.requests:
            raise InvalidOperationError(
                f"Affiliation {affiliation_id} already has review request {affiliation.requests[-1].id}"
            )

        stmt: Select[tuple[ValidationResults]] = (
            select(ValidationResults)
            .where(
                ValidationResults.affiliation_id == affiliation_id,
                ValidationResults.status == ValidationHistoryStatus.OBSERVED.value,
            )
            .order_by(ValidationResults.id)
        )
        observed: list[ValidationResults] = list(session.scalars(stmt).all())

        if not observed:
            config_id: int | None = catalog.config_for_product(affiliation.product_id)
            if config_id is not None and catalog.auto_approve(config_id):
                affiliation.status = AffiliationStatus.APPROVED.value
                affiliation.updated_at = now_iso()
            logger.info(
                "Affiliation finalized without observations",
                affiliation_id=affiliation_id,
                status=affiliation.status,
            )
            return None

        for vr in observed:
            if catalog.type_by_id(vr.observation_type_id) is None:
                raise DataIntegrityError(f"Observation type not found for code: {vr.code}")

        comments: str = "; ".join(vr.comment or vr.code or "" for vr in observed)
        request: AffiliationRequests = self._open_request(
            session,
            catalog,
            affiliation,
            AffiliationRequestStatus.OBSERVED,
            actor,
            f"Request created from observations: {comments}",
        )
        for vr in observed:
            session.add(
                Observations(
                    affiliation_request_id=request.id,
                    observation_type_id=vr.observation_type_id,
                    comment=vr.comment,
                    status=ObservationStatus.PENDING.value,
                    created_by=actor,
                )
            )
        affiliation.status = AffiliationStatus.OBSERVED.value
        affiliation.updated_at = now_iso()
        session.flush()

        logger.info(
            "Opened observed request",
            affiliation_id=affiliation_id,
            request_id=request.id,
            observations=len(observed),
        )
        return request.id

    # ------------------------------------------------------------------
    # Simulation
    # ------------------------------------------------------------------

    def run_standard_simulation(self) -> SimulationReport:
        """Two demo onboardings in one unit of work: an observed online store and an auto-approved one."""
        report: SimulationReport = SimulationReport()
        with session_scope(self.session_factory) as session:
            catalog: CatalogSnapshot = CatalogSnapshot.load(session)

            report.add("info", "Simulation 1: CulqiOnline with observations")
            online: AffiliationCreated = self._create_affiliation(
                session,
                "Online Clothing Store (Observed)",
                "20123456789",
                product_id=2,
                channel_id=1,
                created_by=SIMULATION_ACTOR,
                open_request=False,
            )
            report.affiliation_ids.append(online.affiliation_id)
            for code, status, comment, step in (
                ("EQUIFAX_DOCUMENT_CHECK", "approved", "Document validated.", 1),
                ("TERMS_ACCEPTANCE_VALIDATION", "approved", "Terms accepted.", 2),
                ("PLAFT_RISK", "observed", "Medium PLAFT risk detected. Requires manual review.", 3),
                ("MATCH_VALIDATION", "observed", "Validation could not complete (provider timeout).", 3),
                ("BANK_ACCOUNT_CHECK", "approved", "Bank account validated.", 3),
            ):
                self._run_step_validation(
                    session, catalog, online.affiliation_id, code, status, comment, step
                )
                report.add("warning" if status == "observed" else "success", f"{code}: {status}")

            online_request: int | None = self._finalize_affiliation(
                session, catalog, online.affiliation_id, SIMULATION_ACTOR
            )
            if online_request is None:
                raise DataIntegrityError("Expected a review request for the observed affiliation")
            record_request_event(
                session,
                online_request,
                HistoryEventType.SIMULATION,
                "Request generated by the standard simulation.",
                SIMULATION_ACTOR,
            )
            report.request_ids.append(online_request)
            report.add("success", f"Review request #{online_request} created.")

            report.add("info", "Simulation 2: CulqiFull auto-approved")
            full: AffiliationCreated = self._create_affiliation(
                session,
                "Gourmet Restaurant (Approved)",
                "20987654321",
                product_id=1,
                channel_id=2,
                created_by=SIMULATION_ACTOR,
                open_request=False,
            )
            report.affiliation_ids.append(full.affiliation_id)
            for code, comment, step in (
                ("EQUIFAX_DOCUMENT_CHECK", "Document validated.", 1),
                ("TERMS_ACCEPTANCE_VALIDATION", "Terms accepted.", 2),
                ("PLAFT_RISK", "No PLAFT risk detected.", 3),
                ("MATCH_VALIDATION", "No matches in MATCH list.", 3),
                ("BANK_ACCOUNT_CHECK", "Bank account validated.", 3),
            ):
                self._run_step_validation(
                    session, catalog, full.affiliation_id, code, "approved", comment, step
                )
            full_request: int | None = self._finalize_affiliation(
                session, catalog, full.affiliation_id, SIMULATION_ACTOR
            )
            if full_request is not None:
                raise DataIntegrityError("No review request was expected for the clean affiliation")
            report.add("success", f"Affiliation {full.affiliation_id} finalized without review.")

        logger.info(
            "Standard simulation completed",
            affiliations=report.affiliation_ids,
            requests=report.request_ids,
        )
        return report
