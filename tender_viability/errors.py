"""
errors.py — Typed failures raised across the pipeline.

Only MalformedModelOutput, ServiceUnavailable and InvalidTenantScope ever
reach the caller. StoreUnavailable is raised by store adapters and caught
inside the retriever, which keeps going with whatever sources remain.
"""


class TenderViabilityError(Exception):
    """Base class for every error this package raises on purpose."""


class MalformedModelOutput(TenderViabilityError):
    """The completion service answered, but not with a JSON array of strings."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output


class StoreUnavailable(TenderViabilityError):
    """A certificate or chunk backend could not be reached or queried."""


class InvalidTenantScope(TenderViabilityError):
    """A tenant identifier is required for this operation but was not given."""


class ServiceUnavailable(TenderViabilityError):
    """An external collaborator kept failing after retries or ran out of budget."""


class AnalysisCancelled(TenderViabilityError):
    """The caller set the cancellation event."""
