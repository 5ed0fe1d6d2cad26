"""Work queue module."""

from job_discovery.queue.service import (
    WORK_UNIT_ACTOR,
    BackgroundLoop,
    QueueService,
    UnhandledWorkUnitError,
    WorkUnit,
    WorkUnitFailure,
    WorkUnitType,
)

__all__ = [
    "WORK_UNIT_ACTOR",
    "BackgroundLoop",
    "QueueService",
    "UnhandledWorkUnitError",
    "WorkUnit",
    "WorkUnitFailure",
    "WorkUnitType",
]
