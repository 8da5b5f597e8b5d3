"""Worker: operator-triggered retry of a system observation.

Usage:
    python -m worker.retry_observation --observation-id 7
    python -m worker.retry_observation -o 7 --actor supervisor
"""

import argparse
import sys

import structlog

from affiliations.services.errors import ProviderFailureError
from affiliations.services.lifecycle import LifecycleEngine

logger = structlog.get_logger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Retry the validation behind a system observation")
    parser.add_argument("--observation-id", "-o", type=int, required=True, help="Observation id")
    parser.add_argument("--actor", default=None, help="Reviewer recorded on the retry")
    args = parser.parse_args(argv)

    try:
        result = LifecycleEngine().retry_observation(args.observation_id, actor=args.actor)
    except ProviderFailureError as e:
        logger.error(
            "Retry failed",
            observation_id=args.observation_id,
            error=str(e),
            error_code=e.error_code,
        )
        sys.exit(1)

    logger.info(
        "Retry succeeded",
        observation_id=result.observation_id,
        request_id=result.request_id,
        attempt=result.attempt_number,
        request_status=result.request_status.value,
        cascaded=result.cascaded,
    )


if __name__ == "__main__":
    main()
