"""Job payloads carried by schedule entries.

Each entry stores only `kind` plus the fields of its payload, so the durable
job store never holds anything but plain values.
"""
from dataclasses import asdict, dataclass
from typing import ClassVar, Union


@dataclass(frozen=True)
class PollMonitor:
    kind: ClassVar[str] = "poll-monitor"
    monitor_id: int
    attempt: int = 1


@dataclass(frozen=True)
class DisableInactiveMonitors:
    kind: ClassVar[str] = "disable-inactive-monitors"


@dataclass(frozen=True)
class CleanupOrphanedSchedules:
    kind: ClassVar[str] = "cleanup-orphaned-schedules"


Job = Union[PollMonitor, DisableInactiveMonitors, CleanupOrphanedSchedules]

JOB_KINDS = {cls.kind: cls for cls in (PollMonitor, DisableInactiveMonitors, CleanupOrphanedSchedules)}


def to_kwargs(job: Job) -> dict:
    return {"kind": job.kind, **asdict(job)}


def from_kwargs(kind: str, **data) -> Job:
    try:
        cls = JOB_KINDS[kind]
    except KeyError:
        raise ValueError(f"unknown job kind: {kind!r}") from None
    return cls(**data)
