"""Typed dicts for service-layer return values.

Keeps route-facing methods explicit about their shape instead of returning bare dicts.
"""

import sys

if sys.version_info >= (3, 12):
    from typing import TypedDict
else:
    from typing_extensions import TypedDict

from affiliations.services._helpers import JsonDict

# -- Catalog ---------------------------------------------------------------


class ObservationCauseUI(TypedDict):
    id: int
    observationTypeId: int
    label: str | None
    isActive: bool


class ObservationTypeUI(TypedDict):
    id: int
    code: str
    title: str
    label: str | None
    kind: str
    isActive: bool
    causes: list[ObservationCauseUI]


class RequestConfigUI(TypedDict):
    id: int
    productId: int
    productName: str
    autoApprove: bool
    updatedAt: str | None


# -- Affiliations ----------------------------------------------------------


class ValidationResultUI(TypedDict):
    id: int
    code: str | None
    affiliationId: str
    observationTypeId: int
    observationTypeLabel: str | None
    status: str | None
    comment: str | None
    createdAt: str | None
    updatedAt: str | None


class AffiliationUI(TypedDict):
    id: str
    customerId: str
    productId: int
    productName: str
    channelId: int
    ruc: str | None
    businessName: str | None
    status: str | None
    currentStep: int | None
    createdBy: str | None
    createdAt: str | None
    updatedAt: str | None


class AffiliationDetailUI(AffiliationUI):
    affiliationRequestId: int | None
    validations: list[ValidationResultUI]


# -- Requests --------------------------------------------------------------


class RequestUI(TypedDict):
    id: int
    affiliationId: str
    requestConfigId: int
    status: str | None
    createdBy: str | None
    reviewedBy: str | None
    reviewedAt: str | None
    createdAt: str | None
    updatedAt: str | None
    ruc: str | None
    productId: int
    businessName: str | None
    productName: str


class RequestDetailUI(RequestUI):
    canBeObserved: bool
    validations: list[ValidationResultUI]


class SelectedCauseUI(TypedDict):
    id: int
    causeId: int
    label: str | None


class ObservationUI(TypedDict):
    id: int
    affiliationRequestId: int
    observationTypeId: int
    observationCode: str
    observationTypeTitle: str
    observationTypeLabel: str | None
    kind: str
    isRetriable: bool
    comment: str | None
    status: str
    reviewedBy: str | None
    reviewedAt: str | None
    createdBy: str | None
    createdAt: str | None
    updatedAt: str | None
    causes: list[SelectedCauseUI]


class HistoryEntryUI(TypedDict):
    id: int
    affiliationRequestId: int
    eventType: str | None
    details: str | None
    previousStatus: str | None
    newStatus: str | None
    changedBy: str | None
    changedAt: str | None


# -- Validation ------------------------------------------------------------


class ValidationAttemptUI(TypedDict):
    id: int
    validationResultId: int
    providerResponseId: int | None
    attemptNumber: int | None
    status: str | None
    comment: str | None
    triggeredBy: str | None
    createdAt: str | None
    responseJson: JsonDict | None


class ProviderResponseUI(TypedDict):
    id: int
    providerCode: str | None
    validationCode: str | None
    documentNumber: str | None
    documentType: str | None
    accountNumber: str | None
    productId: str | None
    channelId: str | None
    status: str | None
    errorMessage: str | None
    errorCode: str | None
    responseJson: JsonDict | None
    createdAt: str | None


# -- Health ----------------------------------------------------------------


class DbInfoDict(TypedDict, total=False):
    backend_type: str
    database_url_or_path: str | None
    tables_present: list[str]
    tables_missing: list[str]
    schema_initialized: bool
    products: int
    observation_types: int
    migrations_applied: list[str]
    pid: int
    error: str
