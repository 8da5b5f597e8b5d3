"""SQLAlchemy ORM models mirroring migrations/001_initial_schema.sql.

Table and column names are the durable contract; keep both in sync.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from sqlalchemy import (
    ForeignKey,
    MetaData,
    UniqueConstraint,
    inspect,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    metadata = MetaData(naming_convention=convention)

    def to_dict(self) -> dict[str, Any]:
        return {attr.key: getattr(self, attr.key) for attr in inspect(self).mapper.column_attrs}


def generate_affiliation_id() -> str:
    return f"aff_{uuid4().hex[:16]}"


def utc_now() -> str:
    return datetime.now(UTC).isoformat()


class Products(Base):
    __tablename__ = "t_mae_product"

    id: Mapped[int] = mapped_column(primary_key=True)
    name: Mapped[str] = mapped_column(nullable=False, unique=True)


class RequestConfigs(Base):
    __tablename__ = "t_affiliation_request_config"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_id: Mapped[int] = mapped_column(ForeignKey("t_mae_product.id"), nullable=False)
    auto_approve: Mapped[bool | None] = mapped_column(default=False)
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)
    product = relationship("Products")


class Affiliations(Base):
    __tablename__ = "t_affiliation"

    id: Mapped[str] = mapped_column(primary_key=True, default=generate_affiliation_id)
    customer_id: Mapped[str] = mapped_column(nullable=False)
    product_id: Mapped[int] = mapped_column(ForeignKey("t_mae_product.id"), nullable=False)
    channel_id: Mapped[int] = mapped_column(nullable=False)
    ruc: Mapped[str | None] = mapped_column()
    business_name: Mapped[str | None] = mapped_column()
    status: Mapped[str | None] = mapped_column(default="pending")
    current_step: Mapped[int | None] = mapped_column(default=0)
    created_by: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)
    product = relationship("Products")
    requests = relationship(
        "AffiliationRequests",
        back_populates="affiliation",
        order_by="AffiliationRequests.id",
    )


class AffiliationRequests(Base):
    __tablename__ = "t_affiliation_request"

    id: Mapped[int] = mapped_column(primary_key=True)
    affiliation_id: Mapped[str] = mapped_column(
        ForeignKey("t_affiliation.id"),
        nullable=False,
    )
    request_config_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_request_config.id"),
        nullable=False,
    )
    status: Mapped[str | None] = mapped_column()
    created_by: Mapped[str | None] = mapped_column()
    reviewed_by: Mapped[str | None] = mapped_column()
    reviewed_at: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)
    affiliation = relationship("Affiliations", back_populates="requests")
    request_config = relationship("RequestConfigs")


class ObservationTypes(Base):
    __tablename__ = "t_affiliation_observation_type"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str] = mapped_column(nullable=False, unique=True)
    title: Mapped[str] = mapped_column(nullable=False)
    is_active: Mapped[bool | None] = mapped_column(default=True)
    kind: Mapped[str] = mapped_column("type", nullable=False)
    label: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)
    causes = relationship(
        "ObservationCauses",
        back_populates="observation_type",
        order_by="ObservationCauses.id",
    )


class ProductObservationTypes(Base):
    __tablename__ = "t_product_observation_type"

    product_id: Mapped[int] = mapped_column(ForeignKey("t_mae_product.id"), primary_key=True)
    observation_type_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_observation_type.id"),
        primary_key=True,
    )


class ObservationCauses(Base):
    __tablename__ = "t_affiliation_observation_cause"

    id: Mapped[int] = mapped_column(primary_key=True)
    observation_type_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_observation_type.id"),
        nullable=False,
    )
    label: Mapped[str | None] = mapped_column()
    is_active: Mapped[bool | None] = mapped_column(default=True)
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)
    observation_type = relationship("ObservationTypes", back_populates="causes")


class Observations(Base):
    __tablename__ = "t_affiliation_observation"

    id: Mapped[int] = mapped_column(primary_key=True)
    affiliation_request_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_request.id"),
        nullable=False,
    )
    observation_type_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_observation_type.id"),
        nullable=False,
    )
    comment: Mapped[str | None] = mapped_column()
    status: Mapped[str] = mapped_column(nullable=False)
    reviewed_by: Mapped[str | None] = mapped_column()
    reviewed_at: Mapped[str | None] = mapped_column()
    created_by: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)
    observation_type = relationship("ObservationTypes")
    selected_causes = relationship(
        "ObservationSelectedCauses",
        order_by="ObservationSelectedCauses.id",
    )


class ObservationSelectedCauses(Base):
    __tablename__ = "t_affiliation_observation_selected_cause"

    id: Mapped[int] = mapped_column(primary_key=True)
    affiliation_observation_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_observation.id"),
        nullable=False,
    )
    observation_cause_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_observation_cause.id"),
        nullable=False,
    )
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    cause = relationship("ObservationCauses")


class RequestHistory(Base):
    __tablename__ = "t_affiliation_request_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    affiliation_request_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_request.id"),
        nullable=False,
    )
    event_type: Mapped[str | None] = mapped_column()
    details: Mapped[str | None] = mapped_column()
    previous_status: Mapped[str | None] = mapped_column()
    new_status: Mapped[str | None] = mapped_column()
    changed_by: Mapped[str | None] = mapped_column()
    changed_at: Mapped[str | None] = mapped_column(default=utc_now)


class ProviderResponses(Base):
    __tablename__ = "t_validation_provider_response"

    id: Mapped[int] = mapped_column(primary_key=True)
    provider_code: Mapped[str | None] = mapped_column()
    validation_code: Mapped[str | None] = mapped_column()
    document_number: Mapped[str | None] = mapped_column()
    document_type: Mapped[str | None] = mapped_column()
    account_number: Mapped[str | None] = mapped_column()
    product_id: Mapped[str | None] = mapped_column()
    channel_id: Mapped[str | None] = mapped_column()
    status: Mapped[str | None] = mapped_column()
    error_message: Mapped[str | None] = mapped_column()
    error_code: Mapped[str | None] = mapped_column()
    response_json: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)


class ValidationResults(Base):
    __tablename__ = "t_affiliation_validation_result"

    id: Mapped[int] = mapped_column(primary_key=True)
    code: Mapped[str | None] = mapped_column()
    affiliation_id: Mapped[str] = mapped_column(
        ForeignKey("t_affiliation.id"),
        nullable=False,
    )
    observation_type_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_observation_type.id"),
        nullable=False,
    )
    status: Mapped[str | None] = mapped_column()
    comment: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    updated_at: Mapped[str | None] = mapped_column(default=utc_now, onupdate=utc_now)

    __table_args__ = (UniqueConstraint("affiliation_id", "observation_type_id"),)
    history = relationship(
        "ValidationHistory",
        back_populates="validation_result",
        order_by="ValidationHistory.attempt_number",
    )


class ValidationHistory(Base):
    __tablename__ = "t_affiliation_validation_history"

    id: Mapped[int] = mapped_column(primary_key=True)
    validation_result_id: Mapped[int] = mapped_column(
        ForeignKey("t_affiliation_validation_result.id"),
        nullable=False,
    )
    provider_response_id: Mapped[int | None] = mapped_column(
        ForeignKey("t_validation_provider_response.id"),
    )
    attempt_number: Mapped[int | None] = mapped_column()
    status: Mapped[str | None] = mapped_column()
    comment: Mapped[str | None] = mapped_column()
    triggered_by: Mapped[str | None] = mapped_column()
    created_at: Mapped[str | None] = mapped_column(default=utc_now)
    validation_result = relationship("ValidationResults", back_populates="history")
    provider_response = relationship("ProviderResponses")
