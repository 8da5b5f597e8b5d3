"""Observation catalog: a frozen snapshot for the engine and an admin service.

The lifecycle engine only reads the catalog through ``CatalogSnapshot``. The
snapshot is built once from the store and can be injected into the engine so
that product policy and observation types are explicit inputs of each
operation rather than ambient globals.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

import structlog
from sqlalchemy import Select, select
from sqlalchemy.orm import Session, selectinload

from db.enums import ObservationKind
from db.models import (
    ObservationCauses,
    ObservationTypes,
    ProductObservationTypes,
    Products,
    RequestConfigs,
)
from affiliations.services._helpers import now_iso
from affiliations.services._types import (
    ObservationCauseUI,
    ObservationTypeUI,
    RequestConfigUI,
)
from affiliations.services.errors import DuplicateCodeError, NotFoundError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class CauseEntry:
    id: int
    observation_type_id: int
    label: str | None
    is_active: bool


@dataclass(frozen=True)
class ObservationTypeEntry:
    id: int
    code: str
    title: str
    label: str | None
    kind: ObservationKind
    is_active: bool

    @property
    def is_system(self) -> bool:
        return self.kind == ObservationKind.SYSTEM


def _frozen(mapping: dict) -> Mapping:
    return MappingProxyType(mapping)


@dataclass(frozen=True)
class CatalogSnapshot:
    """Read-only view of observation types, causes and product policy."""

    types_by_code: Mapping[str, ObservationTypeEntry] = field(default_factory=dict)
    types_by_id: Mapping[int, ObservationTypeEntry] = field(default_factory=dict)
    causes_by_type: Mapping[int, tuple[CauseEntry, ...]] = field(default_factory=dict)
    products_by_type: Mapping[int, frozenset[int]] = field(default_factory=dict)
    auto_approve_by_config: Mapping[int, bool] = field(default_factory=dict)
    config_by_product: Mapping[int, int] = field(default_factory=dict)

    @classmethod
    def load(cls, session: Session) -> "CatalogSnapshot":
        types: list[ObservationTypes] = list(
            session.scalars(select(ObservationTypes).order_by(ObservationTypes.id)).all()
        )
        causes: list[ObservationCauses] = list(
            session.scalars(select(ObservationCauses).order_by(ObservationCauses.id)).all()
        )
        links: list[ProductObservationTypes] = list(
            session.scalars(select(ProductObservationTypes)).all()
        )
        configs: list[RequestConfigs] = list(
            session.scalars(select(RequestConfigs).order_by(RequestConfigs.id)).all()
        )

        entries: list[ObservationTypeEntry] = [
            ObservationTypeEntry(
                id=t.id,
                code=t.code,
                title=t.title,
                label=t.label,
                kind=ObservationKind(t.kind),
                is_active=bool(t.is_active),
            )
            for t in types
        ]

        causes_by_type: dict[int, list[CauseEntry]] = {}
        for c in causes:
            causes_by_type.setdefault(c.observation_type_id, []).append(
                CauseEntry(
                    id=c.id,
                    observation_type_id=c.observation_type_id,
                    label=c.label,
                    is_active=bool(c.is_active),
                )
            )

        products_by_type: dict[int, set[int]] = {}
        for link in links:
            products_by_type.setdefault(link.observation_type_id, set()).add(link.product_id)

        by_product: dict[int, int] = {}
        for cfg in configs:
            # Lowest config id per product is the one new requests are opened under.
            by_product.setdefault(cfg.product_id, cfg.id)

        return cls(
            types_by_code=_frozen({e.code: e for e in entries}),
            types_by_id=_frozen({e.id: e for e in entries}),
            causes_by_type=_frozen({k: tuple(v) for k, v in causes_by_type.items()}),
            products_by_type=_frozen({k: frozenset(v) for k, v in products_by_type.items()}),
            auto_approve_by_config=_frozen({cfg.id: bool(cfg.auto_approve) for cfg in configs}),
            config_by_product=_frozen(by_product),
        )

    def type_for_code(self, code: str) -> ObservationTypeEntry | None:
        return self.types_by_code.get(code)

    def type_by_id(self, type_id: int) -> ObservationTypeEntry | None:
        return self.types_by_id.get(type_id)

    def active_cause_ids(self, type_id: int) -> frozenset[int]:
        return frozenset(c.id for c in self.causes_by_type.get(type_id, ()) if c.is_active)

    def auto_approve(self, config_id: int) -> bool:
        return self.auto_approve_by_config.get(config_id, False)

    def config_for_product(self, product_id: int) -> int | None:
        return self.config_by_product.get(product_id)

    def manual_types_for_product(self, product_id: int) -> list[ObservationTypeEntry]:
        return [
            t
            for t in self.types_by_id.values()
            if t.kind == ObservationKind.MANUAL
            and t.is_active
            and product_id in self.products_by_type.get(t.id, frozenset())
        ]

    def can_be_observed(self, product_id: int) -> bool:
        return bool(self.manual_types_for_product(product_id))


class CatalogService:
    """Admin operations over observation types, causes and request configs."""

    def __init__(self, session: Session) -> None:
        self.session: Session = session

    def _active_types(self) -> Select[tuple[ObservationTypes]]:
        return (
            select(ObservationTypes)
            .where(ObservationTypes.is_active.is_(True))
            .options(selectinload(ObservationTypes.causes))
            .order_by(ObservationTypes.id)
        )

    def list_observation_types_with_causes(self) -> list[ObservationTypeUI]:
        types: list[ObservationTypes] = list(self.session.scalars(self._active_types()).all())
        return [self._type_to_ui(t) for t in types]

    def get_manual_observation_types_for_product(self, product_id: int) -> list[ObservationTypeUI]:
        stmt: Select[tuple[ObservationTypes]] = (
            self._active_types()
            .join(
                ProductObservationTypes,
                ProductObservationTypes.observation_type_id == ObservationTypes.id,
            )
            .where(
                ProductObservationTypes.product_id == product_id,
                ObservationTypes.kind == ObservationKind.MANUAL.value,
            )
        )
        types: list[ObservationTypes] = list(self.session.scalars(stmt).all())
        return [self._type_to_ui(t) for t in types]

    def add_observation_type_with_causes(
        self,
        code: str,
        title: str,
        kind: ObservationKind,
        label: str | None = None,
        causes: Iterable[str] = (),
        product_ids: Iterable[int] = (),
    ) -> ObservationTypeUI:
        existing: ObservationTypes | None = self.session.scalars(
            select(ObservationTypes).where(ObservationTypes.code == code)
        ).first()
        if existing is not None:
            raise DuplicateCodeError(f"Observation type with code {code!r} already exists")

        ts: str = now_iso()
        obs_type: ObservationTypes = ObservationTypes(
            code=code,
            title=title,
            label=label,
            kind=ObservationKind(kind).value,
            is_active=True,
            created_at=ts,
            updated_at=ts,
        )
        self.session.add(obs_type)
        self.session.flush()

        for cause_label in causes:
            if not cause_label.strip():
                continue
            self.session.add(
                ObservationCauses(
                    observation_type_id=obs_type.id,
                    label=cause_label.strip(),
                    is_active=True,
                    created_at=ts,
                    updated_at=ts,
                )
            )
        for product_id in product_ids:
            self.session.add(
                ProductObservationTypes(product_id=product_id, observation_type_id=obs_type.id)
            )
        self.session.flush()
        self.session.refresh(obs_type)

        logger.info("Added observation type", code=code, kind=obs_type.kind)
        return self._type_to_ui(obs_type)

    def list_request_configs(self) -> list[RequestConfigUI]:
        stmt = (
            select(RequestConfigs, Products.name)
            .join(Products, Products.id == RequestConfigs.product_id)
            .order_by(RequestConfigs.id)
        )
        return [self._config_to_ui(cfg, name) for cfg, name in self.session.execute(stmt).all()]

    def update_request_config(self, config_id: int, auto_approve: bool) -> RequestConfigUI:
        cfg: RequestConfigs | None = self.session.get(RequestConfigs, config_id)
        if cfg is None:
            raise NotFoundError(f"Request config {config_id} not found")
        cfg.auto_approve = auto_approve
        cfg.updated_at = now_iso()
        self.session.flush()

        product: Products | None = self.session.get(Products, cfg.product_id)
        logger.info("Updated request config", config_id=config_id, auto_approve=auto_approve)
        return self._config_to_ui(cfg, product.name if product else "")

    @staticmethod
    def _type_to_ui(t: ObservationTypes) -> ObservationTypeUI:
        return ObservationTypeUI(
            id=t.id,
            code=t.code,
            title=t.title,
            label=t.label,
            kind=t.kind,
            isActive=bool(t.is_active),
            causes=[
                ObservationCauseUI(
                    id=c.id,
                    observationTypeId=c.observation_type_id,
                    label=c.label,
                    isActive=bool(c.is_active),
                )
                for c in t.causes
                if c.is_active
            ],
        )

    @staticmethod
    def _config_to_ui(cfg: RequestConfigs, product_name: str) -> RequestConfigUI:
        return RequestConfigUI(
            id=cfg.id,
            productId=cfg.product_id,
            productName=product_name,
            autoApprove=bool(cfg.auto_approve),
            updatedAt=cfg.updated_at,
        )
