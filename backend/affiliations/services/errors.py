"""Shared exception hierarchy for the lifecycle services.

Every error aborts its unit of work; nothing is written when one is raised.
"""


class LifecycleError(Exception):
    """Base exception for lifecycle engine errors."""


class NotFoundError(LifecycleError):
    """Referenced affiliation, request, observation or validation result is absent."""


class AlreadyFinalizedError(LifecycleError):
    """The request already reached a terminal status."""


class DataIntegrityError(LifecycleError):
    """Catalog or linkage data is missing or inconsistent (seed/config drift)."""


class InvalidOperationError(LifecycleError):
    """The operation does not apply to the entity in its current state."""


class ProviderFailureError(LifecycleError):
    """The validation provider reported an error or timed out."""

    def __init__(self, message: str, error_code: str | None = None) -> None:
        super().__init__(message)
        self.error_code = error_code


# ── Catalog ───────────────────────────────────────────────────────────────────


class CatalogError(Exception):
    """Base exception for catalog administration errors."""


class DuplicateCodeError(CatalogError):
    """An observation type with the same code already exists."""
