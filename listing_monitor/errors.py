"""Error taxonomy shared by the scheduler, the poll worker and the lifecycle layer."""


class MonitorEngineError(Exception):
    """Base class for errors surfaced to lifecycle callers."""


class NotFoundError(MonitorEngineError):
    """A monitor or user does not exist. Permanent, never retried."""

    def __init__(self, kind: str, ident):
        super().__init__(f"{kind} {ident} not found")
        self.kind = kind
        self.ident = ident


class QuotaExceededError(MonitorEngineError):
    """A per-user quota is exhausted. Permanent, never retried."""


class InvalidIntervalError(MonitorEngineError, ValueError):
    pass


class TransientUpstreamError(MonitorEngineError):
    """Marketplace or store connectivity failure; retried by the job backoff policy."""


class ScheduleDriftWarning(UserWarning):
    """Logged by the maintenance sweeps when scheduler state is corrected."""


class InvalidFilterError(MonitorEngineError, ValueError):
    """Filter fields that can never match, such as a price floor above the ceiling."""
