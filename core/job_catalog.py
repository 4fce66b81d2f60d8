"""Static, ordered catalog of proactive jobs."""

from typing import Dict, List

from core.errors import ConfigurationError
from core.job_types import JobCategory, JobDefinition, TimeWindow

JOB_DEFINITIONS: List[JobDefinition] = [
    JobDefinition(
        id="morning-brief",
        category=JobCategory.BRIEF,
        window=TimeWindow.between((7, 45), (8, 45)),
        description="Morning brief with portfolio, goals and projects",
        notification_tag="brief",
    ),
    JobDefinition(
        id="evening-brief",
        category=JobCategory.BRIEF,
        window=TimeWindow.between((19, 15), (20, 15)),
        description="Evening brief with day summary and next-day preview",
        notification_tag="brief",
    ),
    JobDefinition(
        id="market-open",
        category=JobCategory.MARKET,
        window=TimeWindow.between((9, 25), (9, 50)),
        weekdays_only=True,
        description="Pre-market snapshot and key movers",
        notification_tag="trade",
    ),
    JobDefinition(
        id="market-midday",
        category=JobCategory.MARKET,
        window=TimeWindow.between((12, 0), (13, 0)),
        weekdays_only=True,
        conditional=True,
        description="Midday market update, only when a position moved past the threshold",
        notification_tag="alert",
    ),
    JobDefinition(
        id="market-close",
        category=JobCategory.MARKET,
        window=TimeWindow.between((16, 5), (16, 45)),
        weekdays_only=True,
        description="Market close recap and P&L",
        notification_tag="trade",
    ),
    JobDefinition(
        id="goal-check",
        category=JobCategory.GOALS,
        window=TimeWindow.between((10, 30), (11, 30)),
        conditional=True,
        description="Nudge about stalled or near-complete goals",
        notification_tag="reminder",
    ),
    JobDefinition(
        id="project-nudge",
        category=JobCategory.PROJECTS,
        window=TimeWindow.between((14, 0), (15, 30)),
        conditional=True,
        description="Remind about projects left untouched",
        notification_tag="reminder",
    ),
    JobDefinition(
        id="adhoc-intel",
        category=JobCategory.ADHOC,
        window=TimeWindow.between((11, 0), (17, 0)),
        conditional=True,
        description="Generator decides whether anything time-sensitive is worth sharing",
        notification_tag="system",
    ),
]


def index_jobs(definitions: List[JobDefinition]) -> Dict[str, JobDefinition]:
    """Index definitions by id, preserving catalog order."""
    jobs: Dict[str, JobDefinition] = {}
    for definition in definitions:
        if definition.id in jobs:
            raise ConfigurationError(f"Duplicate job id in catalog: {definition.id}")
        jobs[definition.id] = definition
    return jobs
