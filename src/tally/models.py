"""Record types for projects, intents, availability and logged work."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta


def _parse_ts(value: str | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _format_ts(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


@dataclass
class PlannerConfig:
    """Forecast tunables stored alongside the records."""

    spare_hrs: float = 1.0  # remaining work at or below this is considered scheduled
    day_start_hour: int = 10
    day_end_hour: int = 18
    horizon_weeks: int = 52

    def __post_init__(self) -> None:
        if not 0 <= self.day_start_hour < self.day_end_hour <= 24:
            raise ValueError(
                f"Invalid work day {self.day_start_hour}:00-{self.day_end_hour}:00"
            )
        if self.horizon_weeks <= 0:
            raise ValueError("horizon_weeks must be positive")
        if self.spare_hrs < 0:
            raise ValueError("spare_hrs cannot be negative")

    @property
    def spare(self) -> timedelta:
        return timedelta(hours=self.spare_hrs)

    def to_dict(self) -> dict:
        return {
            "spare_hrs": self.spare_hrs,
            "day_start_hour": self.day_start_hour,
            "day_end_hour": self.day_end_hour,
            "horizon_weeks": self.horizon_weeks,
        }

    @classmethod
    def from_dict(cls, d: dict) -> PlannerConfig:
        return cls(
            spare_hrs=d.get("spare_hrs", 1.0),
            day_start_hour=d.get("day_start_hour", 10),
            day_end_hour=d.get("day_end_hour", 18),
            horizon_weeks=d.get("horizon_weeks", 52),
        )


@dataclass
class Project:
    """A named project that work is logged and forecast against."""

    name: str
    username: str
    start: datetime
    deadline: datetime | None = None
    provision_hrs: float | None = None  # budget only, never read by the planner
    completed: datetime | None = None
    is_meta: bool = False
    parent: str | None = None

    @property
    def is_open(self) -> bool:
        return self.completed is None

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "username": self.username,
            "start": self.start.isoformat(),
            "deadline": _format_ts(self.deadline),
            "provision_hrs": self.provision_hrs,
            "completed": _format_ts(self.completed),
            "is_meta": self.is_meta,
            "parent": self.parent,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Project:
        return cls(
            name=d["name"],
            username=d["username"],
            start=datetime.fromisoformat(d["start"]),
            deadline=_parse_ts(d.get("deadline")),
            provision_hrs=d.get("provision_hrs"),
            completed=_parse_ts(d.get("completed")),
            is_meta=d.get("is_meta", False),
            parent=d.get("parent"),
        )


@dataclass
class Intent:
    """A user's commitment to spend ``amount_hrs`` in total on a project."""

    username: str
    project: str
    amount_hrs: float
    expires: datetime | None = None

    @property
    def amount(self) -> timedelta:
        return timedelta(hours=self.amount_hrs)

    def is_active(self, now: datetime) -> bool:
        return self.expires is None or self.expires > now

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "project": self.project,
            "amount_hrs": self.amount_hrs,
            "expires": _format_ts(self.expires),
        }

    @classmethod
    def from_dict(cls, d: dict) -> Intent:
        return cls(
            username=d["username"],
            project=d["project"],
            amount_hrs=d["amount_hrs"],
            expires=_parse_ts(d.get("expires")),
        )


@dataclass
class Avail:
    """During [start, end) the user can work at most ``weekly_hrs`` a week."""

    username: str
    start: datetime
    end: datetime
    weekly_hrs: float

    def __post_init__(self) -> None:
        if self.end < self.start:
            raise ValueError(
                f"Availability ends ({self.end}) before it starts ({self.start})"
            )

    @property
    def weekly(self) -> timedelta:
        return timedelta(hours=self.weekly_hrs)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        return self.start < end and self.end > start

    def to_dict(self) -> dict:
        return {
            "username": self.username,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "weekly_hrs": self.weekly_hrs,
        }

    @classmethod
    def from_dict(cls, d: dict) -> Avail:
        return cls(
            username=d["username"],
            start=datetime.fromisoformat(d["start"]),
            end=datetime.fromisoformat(d["end"]),
            weekly_hrs=d["weekly_hrs"],
        )


@dataclass
class Done:
    """A logged (finished or ongoing) stretch of work."""

    username: str
    project: str
    start: datetime
    end: datetime
    task: str | None = None

    @property
    def duration(self) -> timedelta:
        return max(self.end - self.start, timedelta(0))

    def to_dict(self) -> dict:
        d = {
            "username": self.username,
            "project": self.project,
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
        }
        if self.task is not None:
            d["task"] = self.task
        return d

    @classmethod
    def from_dict(cls, d: dict) -> Done:
        return cls(
            username=d["username"],
            project=d["project"],
            start=datetime.fromisoformat(d["start"]),
            end=datetime.fromisoformat(d["end"]),
            task=d.get("task"),
        )
