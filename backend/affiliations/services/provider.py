"""Validation provider adapters.

The engine only depends on the ``ValidationProvider`` protocol: given a
``ValidationCheck`` it returns a ``ProviderOutcome`` and never raises. Raw
payloads are kept as JSON text and persisted verbatim; their shape varies by
validation code:

    PLAFT_RISK            {"risk_level": "low|medium|high", "details": str}
    BLACKLIST_MATCH       {"match": bool, "list": str}
    MATCH_VALIDATION      {"match": bool, "list": str}
    BANK_ACCOUNT_CHECK    {"valid": bool, "reason_code": str}
    RUC_INVALID           {"ruc_status": str, "condition": str}
    *                     {}  (unknown keys must be tolerated)
"""

import json
import socket
import urllib.error
import urllib.request
from collections.abc import Iterable
from typing import Protocol

import structlog

from config import ProviderSettings, get_settings
from db.enums import ProviderResponseStatus
from affiliations.services._helpers import dump_json, load_json
from affiliations.services.schemas.outcomes import ProviderOutcome, ValidationCheck

logger = structlog.get_logger(__name__)

SIMULATED_PROVIDER_CODE = "SIMULATED_PROVIDER"

PLAFT_MEDIUM_RISK_DOCUMENT = "87654321"
BLACKLISTED_DOCUMENT = "12345678"


class ValidationProvider(Protocol):
    def check(self, check: ValidationCheck) -> ProviderOutcome: ...


def is_risk_flagged(outcome: ProviderOutcome, risk_levels: Iterable[str]) -> bool:
    """A successful outcome whose payload reports a flagged risk level."""
    if outcome.is_error:
        return False
    payload = load_json(outcome.response_json)
    if payload is None:
        return False
    level: object = payload.get("risk_level")
    return isinstance(level, str) and level.lower() in {lvl.lower() for lvl in risk_levels}


class SimulatedValidationProvider:
    """Deterministic stand-in for the external checks, used by demos and tests."""

    def __init__(self, provider_code: str = SIMULATED_PROVIDER_CODE) -> None:
        self.provider_code = provider_code

    def check(self, check: ValidationCheck) -> ProviderOutcome:
        status, payload, error_message = self._simulate(check)
        return ProviderOutcome.for_check(
            check,
            status=status,
            response_json=dump_json(payload),
            provider_code=self.provider_code,
            error_message=error_message,
        )

    @staticmethod
    def _simulate(
        check: ValidationCheck,
    ) -> tuple[ProviderResponseStatus, dict[str, object], str | None]:
        match check.validation_code:
            case "PLAFT_RISK":
                if check.document_number == PLAFT_MEDIUM_RISK_DOCUMENT:
                    return (
                        ProviderResponseStatus.SUCCESS,
                        {
                            "risk_level": "medium",
                            "details": "Possible match with a politically exposed person (PEP).",
                        },
                        "Medium risk detected. Requires manual review.",
                    )
                return ProviderResponseStatus.SUCCESS, {"risk_level": "low"}, None
            case "BLACKLIST_MATCH":
                if check.document_number == BLACKLISTED_DOCUMENT:
                    return (
                        ProviderResponseStatus.ERROR,
                        {"match": True, "list": "Internal"},
                        "Document found in internal blacklist",
                    )
                return ProviderResponseStatus.SUCCESS, {"match": False}, None
            case "BANK_ACCOUNT_CHECK":
                if (check.account_number or "").endswith("000"):
                    return (
                        ProviderResponseStatus.ERROR,
                        {"valid": False, "reason_code": "INACTIVE_ACCOUNT"},
                        "Bank account does not exist or is inactive.",
                    )
                return ProviderResponseStatus.SUCCESS, {"valid": True}, None
            case _:
                return ProviderResponseStatus.SUCCESS, {}, None


class HttpValidationProvider:
    """Calls a remote validation service over HTTP.

    Timeouts and transport failures are reported as ``error`` outcomes so the
    engine never sees an exception from the provider.
    """

    def __init__(self, base_url: str, timeout: float, provider_code: str) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.provider_code = provider_code

    def check(self, check: ValidationCheck) -> ProviderOutcome:
        body = json.dumps(
            {
                "code": check.validation_code,
                "documentNumber": check.document_number,
                "documentType": check.document_type,
                "accountNumber": check.account_number,
                "productId": check.product_id,
                "channelId": check.channel_id,
            }
        ).encode()
        req = urllib.request.Request(
            f"{self.base_url}/{check.validation_code}", data=body, method="POST"
        )
        req.add_header("Content-Type", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self.timeout) as resp:
                data = load_json(resp.read().decode()) or {}
        except urllib.error.HTTPError as e:
            logger.warning("Provider returned HTTP error", code=check.validation_code, status=e.code)
            return self._error(check, f"Provider returned HTTP {e.code}", f"HTTP_{e.code}")
        except (TimeoutError, socket.timeout):
            logger.warning("Provider call timed out", code=check.validation_code)
            return self._error(check, "Validation provider timed out", "TIMEOUT")
        except urllib.error.URLError as e:
            logger.warning("Provider unreachable", code=check.validation_code, error=str(e.reason))
            return self._error(check, f"Validation provider unreachable: {e.reason}", "TRANSPORT")

        raw_status = str(data.get("status", "")).lower()
        status = (
            ProviderResponseStatus.SUCCESS
            if raw_status == ProviderResponseStatus.SUCCESS.value
            else ProviderResponseStatus.ERROR
        )
        payload = data.get("payload")
        error_message = data.get("errorMessage")
        error_code = data.get("errorCode")
        return ProviderOutcome.for_check(
            check,
            status=status,
            response_json=dump_json(payload if isinstance(payload, dict) else data),
            provider_code=self.provider_code,
            error_message=str(error_message) if error_message else None,
            error_code=str(error_code) if error_code else None,
        )

    def _error(self, check: ValidationCheck, message: str, code: str) -> ProviderOutcome:
        return ProviderOutcome.for_check(
            check,
            status=ProviderResponseStatus.ERROR,
            response_json=dump_json({"error": message}),
            provider_code=self.provider_code,
            error_message=message,
            error_code=code,
        )


def build_provider(settings: ProviderSettings | None = None) -> ValidationProvider:
    cfg: ProviderSettings = settings or get_settings().provider
    if cfg.mode == "http":
        return HttpValidationProvider(cfg.base_url, cfg.timeout, cfg.provider_code)
    return SimulatedValidationProvider(cfg.provider_code)
