"""Validation provider data transfer objects."""

from dataclasses import dataclass

from db.enums import ProviderResponseStatus


@dataclass
class ValidationCheck:
    validation_code: str
    document_number: str | None = None
    document_type: str | None = None
    account_number: str | None = None
    product_id: str | None = None
    channel_id: str | None = None


@dataclass
class ProviderOutcome:
    validation_code: str
    status: ProviderResponseStatus
    response_json: str = "{}"
    error_message: str | None = None
    error_code: str | None = None
    provider_code: str | None = None
    document_number: str | None = None
    document_type: str | None = None
    account_number: str | None = None
    product_id: str | None = None
    channel_id: str | None = None

    @property
    def is_error(self) -> bool:
        return self.status == ProviderResponseStatus.ERROR

    @classmethod
    def for_check(
        cls,
        check: ValidationCheck,
        status: ProviderResponseStatus,
        response_json: str,
        provider_code: str,
        error_message: str | None = None,
        error_code: str | None = None,
    ) -> "ProviderOutcome":
        return cls(
            validation_code=check.validation_code,
            status=status,
            response_json=response_json,
            error_message=error_message,
            error_code=error_code,
            provider_code=provider_code,
            document_number=check.document_number,
            document_type=check.document_type,
            account_number=check.account_number,
            product_id=check.product_id,
            channel_id=check.channel_id,
        )
