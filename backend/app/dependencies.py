"""FastAPI dependencies: DB sessions, lifecycle services and auth."""

from fastapi import Depends, Header, HTTPException
from sqlalchemy.orm import Session, sessionmaker

from affiliations.services.lifecycle import LifecycleEngine
from affiliations.services.onboarding import OnboardingService
from affiliations.services.provider import ValidationProvider, build_provider
from config import get_settings
from db.connection import get_db as get_db  # noqa: F401 (re-exported for routes)
from db.connection import get_session_factory


def get_api_key(x_api_key: str = Header(default="")) -> str:
    """Validate API key on mutation endpoints."""
    expected: str | None = get_settings().api_key
    if not expected:
        return ""  # auth disabled when no key configured
    if x_api_key != expected:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")
    return x_api_key


def get_db_session_factory() -> sessionmaker[Session]:
    """Session factory for operations that own their unit of work."""
    return get_session_factory()


def get_validation_provider() -> ValidationProvider:
    return build_provider(get_settings().provider)


def get_lifecycle_engine(
    factory: sessionmaker[Session] = Depends(get_db_session_factory),
    provider: ValidationProvider = Depends(get_validation_provider),
) -> LifecycleEngine:
    return LifecycleEngine(factory, provider=provider)


def get_onboarding_service(
    factory: sessionmaker[Session] = Depends(get_db_session_factory),
    engine: LifecycleEngine = Depends(get_lifecycle_engine),
) -> OnboardingService:
    return OnboardingService(factory, engine=engine, provider=engine.provider)
