"""Worker: run the standard onboarding simulation against the configured database.

Usage:
    python -m worker.run_simulation
"""

import argparse

import structlog

from affiliations.services.onboarding import OnboardingService

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Seed two demo affiliations through the onboarding flow")
    parser.parse_args(argv)

    report = OnboardingService().run_standard_simulation()
    for level, message in report.log:
        logger.info(message, level=level)

    logger.info(
        "Simulation complete",
        affiliations=report.affiliation_ids,
        requests=report.request_ids,
    )


if __name__ == "__main__":
    main()
