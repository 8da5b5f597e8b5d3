"""Observation catalog and review policy endpoints."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session, sessionmaker

from affiliations.services.catalog import CatalogService
from app.dependencies import get_api_key, get_db, get_db_session_factory
from app.schemas.catalog import ObservationTypeCreate, RequestConfigUpdate
from app.schemas.common import success
from db.connection import session_scope

router = APIRouter(prefix="/api", tags=["catalog"])


@router.get("/observation-types")
def list_observation_types(db: Session = Depends(get_db)):
    return CatalogService(db).list_observation_types_with_causes()


@router.post("/observation-types")
def add_observation_type(
    body: ObservationTypeCreate,
    factory: sessionmaker[Session] = Depends(get_db_session_factory),
    _key: str = Depends(get_api_key),
):
    with session_scope(factory) as session:
        created = CatalogService(session).add_observation_type_with_causes(
            code=body.code,
            title=body.title,
            kind=body.kind,
            label=body.label,
            causes=body.causes,
            product_ids=body.product_ids,
        )
    return success(observation_type=created)


@router.get("/products/{product_id}/manual-observation-types")
def list_manual_observation_types(product_id: int, db: Session = Depends(get_db)):
    return CatalogService(db).get_manual_observation_types_for_product(product_id)


@router.get("/request-configs")
def list_request_configs(db: Session = Depends(get_db)):
    return CatalogService(db).list_request_configs()


@router.put("/request-configs/{config_id}")
def update_request_config(
    config_id: int,
    body: RequestConfigUpdate,
    factory: sessionmaker[Session] = Depends(get_db_session_factory),
    _key: str = Depends(get_api_key),
):
    with session_scope(factory) as session:
        config = CatalogService(session).update_request_config(config_id, body.auto_approve)
    return success(config=config)
