"""Shared fixtures: in-memory SQLite DB with all tables and the reference catalog."""

from collections.abc import Callable, Generator
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from affiliations.services.lifecycle import LifecycleEngine
from affiliations.services.onboarding import OnboardingService
from config import LifecycleSettings, Settings
from db.connection import build_session_factory, enable_sqlite_pragmas, session_scope
from db.enums import AffiliationRequestStatus
from db.models import AffiliationRequests, Affiliations, Base
from factories import ScriptedProvider

SEED_SQL: Path = Path(__file__).resolve().parent.parent / "migrations" / "002_reference_catalog.sql"


def seed_reference_catalog(eng: Engine) -> None:
    raw = eng.raw_connection()
    try:
        raw.driver_connection.executescript(SEED_SQL.read_text(encoding="utf-8"))
        raw.commit()
    finally:
        raw.close()


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    eng: Engine = create_engine(
        "sqlite:///:memory:",
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_pragmas(eng)
    Base.metadata.create_all(eng)
    seed_reference_catalog(eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def factory(engine: Engine) -> sessionmaker[Session]:
    return build_session_factory(engine)


@pytest.fixture()
def session(factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    sess: Session = factory()
    yield sess
    sess.rollback()
    sess.close()


@pytest.fixture()
def settings(tmp_path: Path) -> Settings:
    return Settings(data_dir=tmp_path, lifecycle=LifecycleSettings(audit_failed_retries=False))


@pytest.fixture()
def provider() -> ScriptedProvider:
    return ScriptedProvider()


@pytest.fixture()
def lifecycle(
    factory: sessionmaker[Session], provider: ScriptedProvider, settings: Settings
) -> LifecycleEngine:
    return LifecycleEngine(factory, provider=provider, settings=settings)


@pytest.fixture()
def onboarding(
    factory: sessionmaker[Session], lifecycle: LifecycleEngine, settings: Settings
) -> OnboardingService:
    return OnboardingService(factory, engine=lifecycle, provider=lifecycle.provider, settings=settings)


@pytest.fixture()
def make_request(factory: sessionmaker[Session]) -> Callable[..., tuple[str, int]]:
    """Insert an affiliation plus one request; returns (affiliation_id, request_id).

    Product 2 reviews manually (config 1), product 1 auto-approves (config 2).
    """

    def _make(
        product_id: int = 2,
        status: AffiliationRequestStatus = AffiliationRequestStatus.PENDING,
        ruc: str = "20123456789",
    ) -> tuple[str, int]:
        config_id: int = {1: 2, 2: 1, 3: 3}[product_id]
        with session_scope(factory) as sess:
            affiliation: Affiliations = Affiliations(
                customer_id="cus_test",
                product_id=product_id,
                channel_id=1,
                ruc=ruc,
                business_name="Test Store",
                status=status.value,
                created_by="tester",
            )
            sess.add(affiliation)
            sess.flush()
            request: AffiliationRequests = AffiliationRequests(
                affiliation_id=affiliation.id,
                request_config_id=config_id,
                status=status.value,
                created_by="tester",
            )
            sess.add(request)
            sess.flush()
            return affiliation.id, request.id

    return _make
