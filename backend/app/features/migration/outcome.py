"""
Result of one worker step.
"""

from dataclasses import dataclass
from typing import Optional

from .models import MigrationJob


@dataclass
class WorkOutcome:
    """
    What a worker did with the job it was handed.

    `job` is the user's job after the step (the same job, or the Streams
    job that replaced a finished Activities job), or None when the job
    is gone (completed or cancelled mid-flight).
    """

    job: Optional[MigrationJob] = None
    pressure: bool = False
    completed: bool = False
