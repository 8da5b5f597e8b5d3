"""Observation and validation audit endpoints."""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from affiliations.services.lifecycle import LifecycleEngine
from affiliations.services.queries import ReviewQueries
from app.dependencies import get_api_key, get_db, get_lifecycle_engine
from app.schemas.common import success
from app.schemas.observations import ObservationResolve, ObservationRetry

router = APIRouter(prefix="/api", tags=["observations"])


@router.post("/observations/{observation_id}/resolve")
def resolve_observation(
    observation_id: int,
    body: ObservationResolve,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    _key: str = Depends(get_api_key),
):
    return success(engine.resolve_observation(observation_id, body.status, actor=body.actor))


@router.post("/observations/{observation_id}/retry")
def retry_observation(
    observation_id: int,
    body: ObservationRetry | None = None,
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
    _key: str = Depends(get_api_key),
):
    return success(engine.retry_observation(observation_id, actor=body.actor if body else None))


@router.get("/validation-results/{validation_result_id}/history")
def get_validation_history(validation_result_id: int, db: Session = Depends(get_db)):
    return ReviewQueries(db).get_validation_history(validation_result_id)


@router.get("/provider-responses/{response_id}")
def get_provider_response(response_id: int, db: Session = Depends(get_db)):
    response = ReviewQueries(db).get_provider_response(response_id)
    if not response:
        raise HTTPException(status_code=404, detail="Provider response not found")
    return response
