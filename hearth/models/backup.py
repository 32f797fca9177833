"""Backup set metadata and Duplicati job descriptor models."""
import json
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hearth.core.cron import CronError, CronSchedule
from hearth.core.durations import DurationError, parse_size
from hearth.core.retention import (
    BackupVersion,
    RetentionPolicy,
    RetentionPolicyError,
    parse_timeframes,
)

MIRROR_SUFFIX = "-alt"

# duplicati-20240115T020000Z.dlist.zip.aes
DLIST_TIMESTAMP = re.compile(r"duplicati-(\d{8}T\d{6}Z)\.dlist\.")


class BackupFileKind(str, Enum):
    """Duplicati remote volume type inferred from a file name."""
    DBLOCK = "dblock"
    DINDEX = "dindex"
    DLIST = "dlist"
    OTHER = "other"

    @classmethod
    def from_name(cls, name: str) -> "BackupFileKind":
        for kind in (cls.DBLOCK, cls.DINDEX, cls.DLIST):
            if f".{kind.value}." in name or name.endswith(f".{kind.value}"):
                return kind
        return cls.OTHER


@dataclass
class BackupFile:
    """Filesystem metadata for one file inside a backup set."""
    path: Path
    name: str
    size: int
    mtime: datetime
    kind: BackupFileKind = BackupFileKind.OTHER

    @property
    def encrypted(self) -> bool:
        return self.name.endswith(".aes")

    def version_timestamp(self) -> datetime:
        """Timestamp encoded in a dlist file name, falling back to mtime."""
        match = DLIST_TIMESTAMP.search(self.name)
        if match:
            return datetime.strptime(match.group(1), "%Y%m%dT%H%M%SZ").replace(tzinfo=timezone.utc)
        return self.mtime


@dataclass
class BackupSetScan:
    """Result of scanning one backup directory."""
    name: str
    path: Path
    files: List[BackupFile] = field(default_factory=list)
    exists: bool = True

    @property
    def file_count(self) -> int:
        return len(self.files)

    @property
    def total_size(self) -> int:
        return sum(f.size for f in self.files)

    @property
    def newest(self) -> Optional[BackupFile]:
        return max(self.files, key=lambda f: f.mtime, default=None)

    @property
    def oldest(self) -> Optional[BackupFile]:
        return min(self.files, key=lambda f: f.mtime, default=None)

    @property
    def is_mirror(self) -> bool:
        return self.name.endswith(MIRROR_SUFFIX)

    def files_of(self, kind: BackupFileKind) -> List[BackupFile]:
        return [f for f in self.files if f.kind == kind]

    @property
    def is_duplicati(self) -> bool:
        return any(f.kind != BackupFileKind.OTHER for f in self.files)

    def versions(self) -> List[BackupVersion]:
        """Restorable versions: one per dlist, or one per plain file."""
        dlists = self.files_of(BackupFileKind.DLIST)
        source = dlists if dlists else self.files
        return [
            BackupVersion(
                name=f.name,
                timestamp=f.version_timestamp() if dlists else f.mtime,
                size=f.size,
                paths=(str(f.path),),
            )
            for f in source
        ]


SLUG = re.compile(r"^[a-z0-9][a-z0-9-]*$")


class BackupJob(BaseModel):
    """A Duplicati backup job descriptor (one JSON object).

    Example:
        {
          "name": "critical-data-daily",
          "backup_set": "critical-daily",
          "sources": ["/source/data"],
          "destination": "file:///backups/critical-daily",
          "schedule": "0 2 * * *",
          "retention": "1W:1D,4W:1W,12M:1M",
          "min_versions": 3,
          "storage_limit": "50GB"
        }
    """

    model_config = ConfigDict(extra='forbid')

    name: str
    backup_set: Optional[str] = None
    description: str = ""
    sources: List[str] = Field(..., min_length=1)
    destination: Optional[str] = None
    schedule: str = "0 2 * * *"
    retention: Optional[str] = Field(None, description="Duplicati timeframes, e.g. 1W:1D,4W:1W")
    keep_last: int = Field(0, ge=0)
    keep_daily: int = Field(0, ge=0)
    keep_weekly: int = Field(0, ge=0)
    keep_monthly: int = Field(0, ge=0)
    keep_yearly: int = Field(0, ge=0)
    max_age_days: Optional[int] = Field(None, gt=0)
    min_versions: int = Field(1, ge=0)
    storage_limit: Optional[str] = None
    encryption: bool = True
    compression: Literal["zip", "7z", "none"] = "zip"
    mirror: bool = False
    max_staleness_hours: Optional[int] = Field(None, gt=0)

    @field_validator('name', 'backup_set')
    @classmethod
    def validate_slug(cls, v):
        if v is not None and not SLUG.match(v):
            raise ValueError(
                f"'{v}' must be lowercase letters, numbers and hyphens"
            )
        return v

    @field_validator('sources')
    @classmethod
    def validate_sources(cls, v):
        for source in v:
            if not source.startswith('/'):
                raise ValueError(f"Source path must be absolute. Got: {source}")
        return v

    @field_validator('schedule')
    @classmethod
    def validate_schedule(cls, v):
        try:
            CronSchedule.parse(v).next_after(datetime.now())
        except CronError as e:
            raise ValueError(str(e)) from e
        return v

    @field_validator('retention')
    @classmethod
    def validate_retention(cls, v):
        if v is not None:
            try:
                parse_timeframes(v)
            except RetentionPolicyError as e:
                raise ValueError(str(e)) from e
        return v

    @field_validator('storage_limit')
    @classmethod
    def validate_storage_limit(cls, v):
        if v is not None:
            try:
                if parse_size(v) <= 0:
                    raise ValueError("storage_limit must be positive")
            except DurationError as e:
                raise ValueError(str(e)) from e
        return v

    @model_validator(mode='after')
    def default_backup_set(self) -> 'BackupJob':
        if self.backup_set is None:
            self.backup_set = self.name
        return self

    @property
    def mirror_set(self) -> Optional[str]:
        return f"{self.backup_set}{MIRROR_SUFFIX}" if self.mirror else None

    def to_policy(self) -> RetentionPolicy:
        """Build the retention policy described by this job."""
        return RetentionPolicy(
            keep_last=self.keep_last,
            keep_daily=self.keep_daily,
            keep_weekly=self.keep_weekly,
            keep_monthly=self.keep_monthly,
            keep_yearly=self.keep_yearly,
            timeframes=parse_timeframes(self.retention) if self.retention else [],
            max_age=timedelta(days=self.max_age_days) if self.max_age_days else None,
            min_versions=self.min_versions,
            storage_limit=parse_size(self.storage_limit) if self.storage_limit else None,
        )

    def freshness_window(self, now: Optional[datetime] = None) -> timedelta:
        """How old the newest backup may be before the set counts as stale.

        Uses max_staleness_hours when set, otherwise 1.5x the longest gap
        between scheduled runs.
        """
        if self.max_staleness_hours:
            return timedelta(hours=self.max_staleness_hours)
        interval = CronSchedule.parse(self.schedule).expected_interval(now)
        return interval * 1.5


DEFAULT_JOBS: List[BackupJob] = [
    BackupJob(
        name="critical-data-daily",
        backup_set="critical-daily",
        description="Application data for every service",
        sources=["/source/data", "/source/linkding", "/source/actual", "/source/filebrowser"],
        destination="file:///backups/critical-daily",
        schedule="0 2 * * *",
        max_age_days=30,
        min_versions=3,
        mirror=True,
    ),
    BackupJob(
        name="config-files-daily",
        backup_set="config-daily",
        description="Service configuration and dashboards",
        sources=["/source/grafana", "/source/portainer"],
        destination="file:///backups/config-daily",
        schedule="30 2 * * *",
        max_age_days=30,
        min_versions=3,
        mirror=True,
    ),
    BackupJob(
        name="metrics-weekly",
        backup_set="metrics-weekly",
        description="Prometheus and Loki storage",
        sources=["/source/prometheus", "/source/loki"],
        destination="file:///backups/metrics-weekly",
        schedule="0 3 * * 0",
        max_age_days=84,
        min_versions=2,
        mirror=True,
    ),
    BackupJob(
        name="system-backup-weekly",
        backup_set="system-weekly",
        description="Full system snapshot",
        sources=["/source/data"],
        destination="file:///backups/system-weekly",
        schedule="0 4 * * 0",
        max_age_days=84,
        min_versions=2,
        mirror=True,
    ),
]


def load_jobs(directory: Optional[Path]) -> List[BackupJob]:
    """Load job descriptors from ``*.json`` files in ``directory``.

    Each file holds one job object or a list of them. Falls back to
    DEFAULT_JOBS when the directory does not exist or has no descriptors.

    Raises:
        pydantic.ValidationError: If a descriptor is invalid
        ValueError: If a file is not valid JSON or names a set twice
    """
    if directory is None or not Path(directory).is_dir():
        return list(DEFAULT_JOBS)

    jobs: List[BackupJob] = []
    for path in sorted(Path(directory).glob("*.json")):
        try:
            data: Any = json.loads(path.read_text())
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e
        entries: List[Dict[str, Any]] = data if isinstance(data, list) else [data]
        jobs.extend(BackupJob.model_validate(entry) for entry in entries)

    if not jobs:
        return list(DEFAULT_JOBS)

    seen = set()
    for job in jobs:
        if job.backup_set in seen:
            raise ValueError(f"Backup set '{job.backup_set}' is defined by more than one job")
        seen.add(job.backup_set)

    return jobs
