"""Tests for affiliations.services.onboarding."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from affiliations.services.errors import (
    DataIntegrityError,
    InvalidOperationError,
    NotFoundError,
)
from affiliations.services.lifecycle import LifecycleEngine
from affiliations.services.onboarding import OnboardingService
from affiliations.services.queries import ReviewQueries
from affiliations.services.schemas import (
    AffiliationCreated,
    IngestionResult,
    RetryResult,
    SimulationReport,
)
from db.enums import AffiliationRequestStatus
from db.models import (
    AffiliationRequests,
    Affiliations,
    Observations,
    RequestHistory,
    ValidationResults,
)
from factories import ScriptedProvider


def _create(onboarding: OnboardingService, product_id: int = 2, **kwargs: object) -> AffiliationCreated:
    return onboarding.create_affiliation(
        business_name="Bodega Lima",
        ruc="20111111111",
        product_id=product_id,
        channel_id=1,
        **kwargs,  # type: ignore[arg-type]
    )


class TestCreateAffiliation:
    def test_without_request(self, onboarding: OnboardingService, session: Session) -> None:
        created: AffiliationCreated = _create(onboarding)

        assert created.request_id is None
        affiliation = session.get(Affiliations, created.affiliation_id)
        assert affiliation is not None
        assert affiliation.status == "pending"
        assert affiliation.current_step == 0
        assert affiliation.created_by == "system"
        assert affiliation.customer_id.startswith("cus_")

    def test_with_request(self, onboarding: OnboardingService, session: Session) -> None:
        created: AffiliationCreated = _create(onboarding, open_request=True, created_by="sales")

        assert created.request_id is not None
        request = session.get(AffiliationRequests, created.request_id)
        assert request is not None
        assert request.request_config_id == 1
        assert request.status == "pending"
        row = session.scalars(select(RequestHistory)).one()
        assert row.event_type == "request_created"
        assert row.details == "Request created for affiliation review."
        assert row.changed_by == "sales"

    def test_unknown_product(self, onboarding: OnboardingService, session: Session) -> None:
        with pytest.raises(NotFoundError):
            _create(onboarding, product_id=42)
        assert session.scalar(select(func.count()).select_from(Affiliations)) == 0


class TestSubmitValidations:
    def test_medium_risk_observes(
        self, onboarding: OnboardingService, provider: ScriptedProvider
    ) -> None:
        created: AffiliationCreated = _create(onboarding, open_request=True)
        assert created.request_id is not None

        result: IngestionResult = onboarding.submit_validations(
            created.request_id, ["PLAFT_RISK", "BLACKLIST_MATCH"], document_number="87654321"
        )

        assert result.new_status == AffiliationRequestStatus.OBSERVED
        assert len(result.observation_ids) == 1
        assert [c.product_id for c in provider.calls] == ["2", "2"]
        assert {c.document_type for c in provider.calls} == {"RUC"}

    def test_blacklisted_document_rejects(self, onboarding: OnboardingService) -> None:
        created: AffiliationCreated = _create(onboarding, open_request=True)
        assert created.request_id is not None
        result: IngestionResult = onboarding.submit_validations(
            created.request_id, ["BLACKLIST_MATCH"], document_number="12345678"
        )
        assert result.new_status == AffiliationRequestStatus.REJECTED
        assert result.failing_codes == ["BLACKLIST_MATCH"]

    def test_inactive_account_rejects(self, onboarding: OnboardingService) -> None:
        created: AffiliationCreated = _create(onboarding, open_request=True)
        assert created.request_id is not None
        result: IngestionResult = onboarding.submit_validations(
            created.request_id, ["BANK_ACCOUNT_CHECK"], account_number="1910000000"
        )
        assert result.new_status == AffiliationRequestStatus.REJECTED

    def test_clean_run_on_auto_approve_product(self, onboarding: OnboardingService) -> None:
        created: AffiliationCreated = _create(onboarding, product_id=1, open_request=True)
        assert created.request_id is not None
        result: IngestionResult = onboarding.submit_validations(
            created.request_id, ["PLAFT_RISK", "BLACKLIST_MATCH"]
        )
        assert result.new_status == AffiliationRequestStatus.APPROVED

    def test_requires_codes(self, onboarding: OnboardingService) -> None:
        with pytest.raises(InvalidOperationError):
            onboarding.submit_validations(1, [])

    def test_unknown_request(
        self, onboarding: OnboardingService, provider: ScriptedProvider
    ) -> None:
        with pytest.raises(NotFoundError):
            onboarding.submit_validations(404, ["PLAFT_RISK"])
        assert provider.calls == []


class TestStepValidation:
    def test_records_attempts_and_advances_step(
        self, onboarding: OnboardingService, session: Session
    ) -> None:
        created: AffiliationCreated = _create(onboarding)
        first_id: int = onboarding.run_step_validation(
            created.affiliation_id, "PLAFT_RISK", "observed", "Medium risk", 3
        )
        second_id: int = onboarding.run_step_validation(
            created.affiliation_id, "PLAFT_RISK", "approved", "Cleared", 4
        )

        assert first_id == second_id
        result = session.get(ValidationResults, first_id)
        assert result is not None
        assert result.status == "passed"
        assert result.comment == "Cleared"
        assert [a.attempt_number for a in result.history] == [1, 2]
        assert all(a.provider_response_id is not None for a in result.history)
        affiliation = session.get(Affiliations, created.affiliation_id)
        assert affiliation is not None
        assert affiliation.current_step == 4

    def test_unknown_status(self, onboarding: OnboardingService) -> None:
        created: AffiliationCreated = _create(onboarding)
        with pytest.raises(InvalidOperationError):
            onboarding.run_step_validation(created.affiliation_id, "PLAFT_RISK", "maybe", "", 1)

    def test_unknown_code(self, onboarding: OnboardingService) -> None:
        created: AffiliationCreated = _create(onboarding)
        with pytest.raises(DataIntegrityError):
            onboarding.run_step_validation(created.affiliation_id, "NOPE", "approved", "", 1)

    def test_unknown_affiliation(self, onboarding: OnboardingService) -> None:
        with pytest.raises(NotFoundError):
            onboarding.run_step_validation("aff_missing", "PLAFT_RISK", "approved", "", 1)


class TestFinalizeAffiliation:
    def test_observed_steps_open_observed_request(
        self, onboarding: OnboardingService, session: Session
    ) -> None:
        created: AffiliationCreated = _create(onboarding)
        onboarding.run_step_validation(created.affiliation_id, "PLAFT_RISK", "observed", "PEP", 3)
        onboarding.run_step_validation(
            created.affiliation_id, "MATCH_VALIDATION", "observed", "Timeout", 3
        )
        onboarding.run_step_validation(
            created.affiliation_id, "BANK_ACCOUNT_CHECK", "approved", "OK", 3
        )

        request_id: int | None = onboarding.finalize_affiliation(created.affiliation_id)

        assert request_id is not None
        request = session.get(AffiliationRequests, request_id)
        assert request is not None
        assert request.status == "observed"
        observations: list[Observations] = list(
            session.scalars(select(Observations).order_by(Observations.id)).all()
        )
        assert [(o.observation_type_id, o.status) for o in observations] == [
            (1, "pending"),
            (10, "pending"),
        ]
        row = session.scalars(select(RequestHistory)).one()
        assert row.details == "Request created from observations: PEP; Timeout"
        affiliation = session.get(Affiliations, created.affiliation_id)
        assert affiliation is not None
        assert affiliation.status == "observed"

    def test_clean_auto_approve_product(
        self, onboarding: OnboardingService, session: Session
    ) -> None:
        created: AffiliationCreated = _create(onboarding, product_id=1)
        onboarding.run_step_validation(created.affiliation_id, "PLAFT_RISK", "approved", "OK", 3)

        assert onboarding.finalize_affiliation(created.affiliation_id) is None
        affiliation = session.get(Affiliations, created.affiliation_id)
        assert affiliation is not None
        assert affiliation.status == "approved"
        assert session.scalar(select(func.count()).select_from(AffiliationRequests)) == 0

    def test_clean_manual_product_stays_pending(
        self, onboarding: OnboardingService, session: Session
    ) -> None:
        created: AffiliationCreated = _create(onboarding, product_id=2)
        assert onboarding.finalize_affiliation(created.affiliation_id) is None
        affiliation = session.get(Affiliations, created.affiliation_id)
        assert affiliation is not None
        assert affiliation.status == "pending"

    def test_only_once(self, onboarding: OnboardingService) -> None:
        created: AffiliationCreated = _create(onboarding)
        onboarding.run_step_validation(created.affiliation_id, "PLAFT_RISK", "observed", "PEP", 3)
        onboarding.finalize_affiliation(created.affiliation_id)
        with pytest.raises(InvalidOperationError):
            onboarding.finalize_affiliation(created.affiliation_id)

    def test_unknown_affiliation(self, onboarding: OnboardingService) -> None:
        with pytest.raises(NotFoundError):
            onboarding.finalize_affiliation("aff_missing")


class TestStandardSimulation:
    def test_creates_observed_and_approved_affiliations(
        self, onboarding: OnboardingService, session: Session
    ) -> None:
        report: SimulationReport = onboarding.run_standard_simulation()

        assert len(report.affiliation_ids) == 2
        assert len(report.request_ids) == 1
        assert report.log[0] == ("info", "Simulation 1: CulqiOnline with observations")

        queries: ReviewQueries = ReviewQueries(session)
        online = queries.get_affiliation_detail(report.affiliation_ids[0])
        full = queries.get_affiliation_detail(report.affiliation_ids[1])
        assert online is not None and full is not None
        assert online["status"] == "observed"
        assert online["currentStep"] == 3
        assert full["status"] == "approved"
        assert full["affiliationRequestId"] is None

        observations = queries.get_observations_for_request(report.request_ids[0])
        assert [o["observationCode"] for o in observations] == ["PLAFT_RISK", "MATCH_VALIDATION"]
        events: set[str | None] = {
            h["eventType"] for h in queries.get_request_history(report.request_ids[0])
        }
        assert events == {"request_created", "simulation"}

    def test_simulated_observation_can_be_retried(
        self, onboarding: OnboardingService, lifecycle: LifecycleEngine, session: Session
    ) -> None:
        report: SimulationReport = onboarding.run_standard_simulation()
        observations = ReviewQueries(session).get_observations_for_request(report.request_ids[0])
        match = next(o for o in observations if o["observationCode"] == "MATCH_VALIDATION")
        session.rollback()

        result: RetryResult = lifecycle.retry_observation(match["id"])

        assert result.attempt_number == 2
        assert result.request_status == AffiliationRequestStatus.OBSERVED
