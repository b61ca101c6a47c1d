"""Type definitions shared by sync handlers and the backfill job."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from jobsync.source.documents import Jobsite


class SyncAction(str, Enum):
    """Change kinds carried in routing keys and message bodies."""

    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class SyncOutcome(str, Enum):
    """Terminal state of one handler invocation."""

    DONE = "DONE"
    DELETED = "DELETED"
    SKIPPED = "SKIPPED"


class RunStatus(str, Enum):
    """Status of a reconciliation run."""

    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    PARTIAL_SUCCESS = "PARTIAL_SUCCESS"
    SKIPPED = "SKIPPED"


@dataclass
class ReportScope:
    """Dimension keys and grain shared by every fact of one daily report."""

    daily_report_id: UUID
    jobsite_id: UUID
    crew_id: UUID
    crew_type: str
    work_date: datetime
    jobsite: Jobsite

    def fact_columns(self) -> dict:
        return {
            "daily_report_id": self.daily_report_id,
            "jobsite_id": self.jobsite_id,
            "crew_id": self.crew_id,
            "crew_type": self.crew_type,
            "work_date": self.work_date,
        }


@dataclass
class SyncResult:
    """Outcome of one handler invocation plus fact rows written, by table."""

    outcome: SyncOutcome
    counts: Counter = field(default_factory=Counter)
