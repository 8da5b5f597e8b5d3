"""Outcome builders and a scripted provider shared by the test modules."""

from affiliations.services._helpers import dump_json
from affiliations.services.provider import SimulatedValidationProvider
from affiliations.services.schemas import ProviderOutcome, ValidationCheck
from db.enums import ProviderResponseStatus

TEST_PROVIDER_CODE = "TEST_PROVIDER"


def passed(code: str, **payload: object) -> ProviderOutcome:
    return ProviderOutcome(
        validation_code=code,
        status=ProviderResponseStatus.SUCCESS,
        response_json=dump_json(payload or {"risk_level": "low"}),
        provider_code=TEST_PROVIDER_CODE,
        document_number="20123456789",
        document_type="RUC",
    )


def flagged(code: str, level: str = "medium", message: str | None = "Risk detected") -> ProviderOutcome:
    return ProviderOutcome(
        validation_code=code,
        status=ProviderResponseStatus.SUCCESS,
        response_json=dump_json({"risk_level": level}),
        error_message=message,
        provider_code=TEST_PROVIDER_CODE,
        document_number="20123456789",
        document_type="RUC",
    )


def failed(code: str, message: str = "Provider rejected the document") -> ProviderOutcome:
    return ProviderOutcome(
        validation_code=code,
        status=ProviderResponseStatus.ERROR,
        response_json=dump_json({"error": message}),
        error_message=message,
        error_code="REJECTED",
        provider_code=TEST_PROVIDER_CODE,
        document_number="20123456789",
        document_type="RUC",
    )


class ScriptedProvider:
    """Simulated provider whose answers can be forced to fail per validation code."""

    def __init__(self) -> None:
        self.calls: list[ValidationCheck] = []
        self.failures: dict[str, tuple[str, str]] = {}
        self._simulated = SimulatedValidationProvider(TEST_PROVIDER_CODE)

    def fail(self, code: str, message: str = "Provider timeout", error_code: str = "TIMEOUT") -> None:
        self.failures[code] = (message, error_code)

    def check(self, check: ValidationCheck) -> ProviderOutcome:
        self.calls.append(check)
        if check.validation_code in self.failures:
            message, error_code = self.failures[check.validation_code]
            return ProviderOutcome.for_check(
                check,
                status=ProviderResponseStatus.ERROR,
                response_json=dump_json({"error": message}),
                provider_code=TEST_PROVIDER_CODE,
                error_message=message,
                error_code=error_code,
            )
        return self._simulated.check(check)
