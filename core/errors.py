"""Scheduler error types.

Skips are not errors and never raise. Transient errors come from the
generation and delivery collaborators and put the scheduler into cooldown.
"""

from __future__ import annotations


class SchedulerError(Exception):
    """Base class for scheduler errors."""


class ConfigurationError(SchedulerError, ValueError):
    """Invalid window, quiet-hours band or job catalog."""


class UnknownJobError(SchedulerError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(f"Unknown job: {job_id}")


class TransientError(SchedulerError):
    """A collaborator failed; recovered by entering cooldown."""


class GenerationError(TransientError):
    pass


class DeliveryError(TransientError):
    pass
