"""Deduplication error hierarchy.

Errors fall into two groups:
- Validation/ambiguity errors: caller mistakes or bad configuration. Retrying
  will not help, so Temporal retry policies list them as non-retryable.
- Collaborator errors: the config store or match store was unavailable or
  timed out. These are raised to the caller as retryable.
"""

from typing import Optional


class DeduplicationError(Exception):
    """Base exception for deduplication errors."""
    pass


class ConfigValidationError(DeduplicationError, ValueError):
    """A config or dealer rule write carried invalid values."""
    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class AmbiguousConfigError(DeduplicationError):
    """More than one active DeduplicationConfig exists for a tenant."""
    def __init__(self, tenant_id: str, config_ids: list):
        super().__init__(
            f"Tenant {tenant_id} has {len(config_ids)} active deduplication configs: "
            f"{', '.join(config_ids)}"
        )
        self.tenant_id = tenant_id
        self.config_ids = config_ids


class RuleNotFoundError(DeduplicationError, LookupError):
    """Dealer rule lookup by id failed."""
    pass


class CollaboratorUnavailableError(DeduplicationError):
    """A storage/config collaborator failed (timeout, unavailable, I/O error).

    Retryable: the decision engine performs no retries itself.
    """
    def __init__(self, collaborator: str, message: str):
        super().__init__(f"{collaborator} unavailable: {message}")
        self.collaborator = collaborator


# Names used by Temporal RetryPolicy.non_retryable_error_types
NON_RETRYABLE_ERROR_TYPES = [
    "ConfigValidationError",
    "AmbiguousConfigError",
    "RuleNotFoundError",
    "ValidationError",
    "ValueError",
]
