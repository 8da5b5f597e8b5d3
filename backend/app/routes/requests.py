"""Affiliation request review endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from affiliations.services.lifecycle import LifecycleEngine
from affiliations.services.onboarding import OnboardingService
from affiliations.services.queries import ReviewQueries
from app.dependencies import get_api_key, get_db, get_lifecycle_engine, get_onboarding_service
from app.schemas.common import success
from app.schemas.requests import (
    ManualObservationCreate,
    RequestResolve,
    RequestStatusUpdate,
    ValidationRun,
)

router = APIRouter(prefix="/api", tags=["requests"])


@router.get("/requests")
def list_requests(status: str | None = None, db: Session = Depends(get_db)):
    return ReviewQueries(db).list_requests(status=status)


@router.get("/requests/{request_id}")
def get_request(request_id: int, db: Session = Depends(get_db)):
    detail = ReviewQueries(db).get_request_detail(request_id)
    if not detail:
        raise HTTPException(status_code=404, detail="Request not found")
    return detail


@router.get("/requests/{request_id}/history")
def get_request_history(request_id: int, db: Session = Depends(get_db)):
    return ReviewQueries(db).get_request_history(request_id)


@router.get("/requests/{request_id}/observations")
def get_request_observations(request_id: int, db: Session = Depends(get_db)):
    return ReviewQueries(db).get_observations_for_request(request_id)


@router.post("/requests/{request_id}/validations")
def run_validations(
    request_id: int,
    body: ValidationRun,
    svc: OnboardingService = Depends(get_onboarding_service),
    _key: str = Depends(get_api_key),
):
    result = svc.submit_validations(
        request_id,
        body.codes,
        document_number=body.document_number,
        account_number=body.account_number,
    )
    return success(result)


@router.post("/requests/{request_id}/observations")
def add_manual_observation(
    request_id: int,
    body: ManualObservationCreate,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    _key: str = Depends(get_api_key),
):
    result = engine.add_manual_observation(
        request_id,
        body.observation_type_id,
        cause_ids=body.cause_ids,
        comment=body.comment,
        actor=body.actor,
    )
    return success(result)


@router.post("/requests/{request_id}/resolve")
def resolve_request(
    request_id: int,
    body: RequestResolve,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    _key: str = Depends(get_api_key),
):
    return success(engine.resolve_request(request_id, body.status, actor=body.actor))


@router.put("/requests/{request_id}/status")
def update_request_status(
    request_id: int,
    body: RequestStatusUpdate,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    _key: str = Depends(get_api_key),
):
    result = engine.update_request_status(
        request_id, body.status, actor=body.actor, comment=body.comment
    )
    return success(result)
