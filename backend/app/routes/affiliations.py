"""Affiliation onboarding endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from affiliations.services.onboarding import OnboardingService
from affiliations.services.queries import ReviewQueries
from app.dependencies import get_api_key, get_db, get_onboarding_service
from app.schemas.affiliations import AffiliationCreate, AffiliationFinalize, StepValidation
from app.schemas.common import success

router = APIRouter(prefix="/api", tags=["affiliations"])


@router.get("/affiliations")
def list_affiliations(db: Session = Depends(get_db)):
    return ReviewQueries(db).list_affiliations()


@router.get("/affiliations/{affiliation_id}")
def get_affiliation(affiliation_id: str, db: Session = Depends(get_db)):
    detail = ReviewQueries(db).get_affiliation_detail(affiliation_id)
    if not detail:
        raise HTTPException(status_code=404, detail="Affiliation not found")
    return detail


@router.post("/affiliations")
def create_affiliation(
    body: AffiliationCreate,
    svc: OnboardingService = Depends(get_onboarding_service),
    _key: str = Depends(get_api_key),
):
    created = svc.create_affiliation(
        business_name=body.business_name,
        ruc=body.ruc,
        product_id=body.product_id,
        channel_id=body.channel_id,
        created_by=body.created_by,
        open_request=body.open_request,
    )
    return success(created)


@router.post("/affiliations/{affiliation_id}/steps")
def run_step_validation(
    affiliation_id: str,
    body: StepValidation,
    svc: OnboardingService = Depends(get_onboarding_service),
    _key: str = Depends(get_api_key),
):
    result_id = svc.run_step_validation(
        affiliation_id, body.validation_code, body.status, body.comment, body.next_step
    )
    return success(validation_result_id=result_id)


@router.post("/affiliations/{affiliation_id}/finalize")
def finalize_affiliation(
    affiliation_id: str,
    body: AffiliationFinalize | None = None,
    svc: OnboardingService = Depends(get_onboarding_service),
    _key: str = Depends(get_api_key),
):
    request_id = svc.finalize_affiliation(affiliation_id, actor=body.actor if body else None)
    return success(request_created=request_id is not None, request_id=request_id)
