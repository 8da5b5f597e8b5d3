"""Worker: run provider checks for a request and ingest the outcomes.

Usage:
    python -m worker.run_validations --request-id 12 --codes PLAFT_RISK BLACKLIST_MATCH
    python -m worker.run_validations -r 12 -c BANK_ACCOUNT_CHECK --account 1910000000
"""

import argparse

import structlog

from affiliations.services.onboarding import OnboardingService

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run validation checks for a request")
    parser.add_argument("--request-id", "-r", type=int, required=True, help="Affiliation request id")
    parser.add_argument(
        "--codes", "-c", nargs="+", required=True,
        help="Validation codes to run (e.g. PLAFT_RISK BLACKLIST_MATCH)",
    )
    parser.add_argument("--document", help="Document number (defaults to the affiliation RUC)")
    parser.add_argument("--account", help="Bank account number for account checks")
    args = parser.parse_args(argv)

    logger.info("Running validations", request_id=args.request_id, codes=args.codes)
    result = OnboardingService().submit_validations(
        args.request_id,
        args.codes,
        document_number=args.document,
        account_number=args.account,
    )

    logger.info(
        "Validations ingested",
        request_id=result.request_id,
        decision=result.decision,
        previous_status=result.previous_status.value,
        new_status=result.new_status.value,
        observations=result.observation_ids,
        failing_codes=result.failing_codes,
    )


if __name__ == "__main__":
    main()
