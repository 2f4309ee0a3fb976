"""Domain-specific exceptions.

Quota and rate-limit rejections are expected outcomes, not errors: they are
reported through ``IngestOutcome.QUOTA_EXCEEDED`` and ``RateLimiter.admit``
returning ``False``.
"""


class ServiceError(Exception):
    pass


class TransientIOFailure(ServiceError):
    """Network-bound step failed; retrying the same input may succeed."""


class DownloadFailed(TransientIOFailure):
    pass


class StoreUnavailable(TransientIOFailure):
    pass


class ObjectNotFound(ServiceError):
    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"Object not found: {key}")


class PersistenceFailure(ServiceError):
    """The event cannot be completed because the database rejected a write or read."""
