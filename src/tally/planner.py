"""Week-by-week workload forecast from intents, availability and logged work."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta

from tally.models import Avail, Done, Intent, PlannerConfig, Project

logger = logging.getLogger(__name__)

# Mon..Sun -> working days left in the week, counting the day itself.
_WORKING_DAYS = (5, 4, 3, 2, 1, 0, 0)
_DAYS_PER_WORK_WEEK = 5
# Weekly view spans at least this far past "now".
_VIEW_DAYS = 361


@dataclass
class WorkLoad:
    """A forecast chunk of work for one user on one project, within one week."""

    start: datetime
    user: str
    project: str
    duration: timedelta

    @property
    def hours(self) -> float:
        return self.duration.total_seconds() / 3600

    def __str__(self) -> str:
        return f"{self.project} {self.user} {self.start:%Y-%m-%d} {self.hours:.1f}h"


@dataclass
class ProjectForecast:
    """Forecast loads for one project, in chronological order."""

    project: str
    loads: list[WorkLoad] = field(default_factory=list)
    truncated: bool = False  # horizon reached before the remaining work was placed

    @property
    def total(self) -> timedelta:
        return sum((load.duration for load in self.loads), timedelta(0))


WorkPlan = dict[str, list[ProjectForecast]]


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def working_days_remaining(d: date) -> int:
    """Working days from *d* through Friday of its week, *d* included."""
    return _WORKING_DAYS[d.weekday()]


def next_monday(d: datetime) -> datetime:
    """The Monday after *d*'s week. A Monday goes to the following Monday."""
    return d + timedelta(days=7 - d.weekday())


def week_start(d: date) -> datetime:
    """Midnight on the Monday of *d*'s week."""
    day = d.date() if isinstance(d, datetime) else d
    return datetime.combine(day - timedelta(days=day.weekday()), time())


def work_window(d: date, config: PlannerConfig) -> tuple[datetime, datetime]:
    day = d.date() if isinstance(d, datetime) else d
    return (
        datetime.combine(day, time(config.day_start_hour)),
        datetime.combine(day, time()) + timedelta(hours=config.day_end_hour),
    )


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


def daily_capacity(
    d: date,
    avails: Iterable[Avail],
    config: PlannerConfig,
) -> timedelta:
    """Most restrictive share of the weekly caps of windows covering *d*.

    Each window overlapping the day's work window offers a fifth of its
    weekly cap; the smallest offer wins. No window means no capacity.
    """
    start, end = work_window(d, config)
    offers = [
        a.weekly / _DAYS_PER_WORK_WEEK for a in avails if a.overlaps(start, end)
    ]
    return min(offers, default=timedelta(0))


def weekly_capacity(
    d: datetime,
    avails: Iterable[Avail],
    config: PlannerConfig,
) -> timedelta:
    """Capacity for the rest of *d*'s week, starting on *d* itself."""
    avails = list(avails)
    return sum(
        (
            daily_capacity(d + timedelta(days=i), avails, config)
            for i in range(working_days_remaining(d))
        ),
        timedelta(0),
    )


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def deadline_key(project: Project) -> tuple:
    """Sort key: dated projects by deadline, then undated ones by start."""
    if project.deadline is not None:
        return (0, project.deadline)
    return (1, project.start)


def sort_by_deadline(projects: Iterable[Project]) -> list[Project]:
    return sorted(projects, key=deadline_key)


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


def sum_done(username: str, project: str, dones: Iterable[Done]) -> timedelta:
    return sum(
        (d.duration for d in dones if d.username == username and d.project == project),
        timedelta(0),
    )


def find_intent(
    username: str,
    project: str,
    intents: Iterable[Intent],
    now: datetime,
) -> Intent | None:
    for intent in intents:
        if (
            intent.username == username
            and intent.project == project
            and intent.is_active(now)
        ):
            return intent
    return None


def allocate_user(
    username: str,
    projects: list[Project],
    intents: list[Intent],
    avails: list[Avail],
    dones: list[Done],
    now: datetime,
    config: PlannerConfig,
) -> list[ProjectForecast]:
    """Consume each intended project's remaining work against weekly capacity.

    *projects* must already be in deadline order. The cursor is shared by all
    of the user's projects: a project starts where the previous one left the
    calendar, so earlier deadlines take capacity first. *avails* and *dones*
    are expected to belong to *username*.
    """
    horizon = now + timedelta(weeks=config.horizon_weeks)
    spare = config.spare
    dt = now
    forecasts: list[ProjectForecast] = []

    for project in projects:
        intent = find_intent(username, project.name, intents, now)
        if intent is None:
            continue

        forecast = ProjectForecast(project=project.name)
        forecasts.append(forecast)

        done = sum_done(username, project.name, dones)
        if done >= intent.amount:
            logger.debug("%s/%s already satisfied", username, project.name)
            continue

        remaining = intent.amount - done
        while remaining > spare:
            if dt >= horizon:
                forecast.truncated = True
                logger.warning(
                    "Forecast for %s/%s stops at %s with %.1fh unplaced",
                    username,
                    project.name,
                    horizon.date(),
                    remaining.total_seconds() / 3600,
                )
                break

            week_cap = weekly_capacity(dt, avails, config)
            if week_cap > remaining:
                forecast.loads.append(WorkLoad(dt, username, project.name, remaining))
                # Land the cursor where the remaining work is expected to end.
                days = remaining * working_days_remaining(dt) // week_cap
                dt = dt + timedelta(days=days)
                break

            if week_cap > timedelta(0):
                forecast.loads.append(WorkLoad(dt, username, project.name, week_cap))
            dt = next_monday(dt)
            remaining -= week_cap

        logger.debug(
            "%s/%s: %d load(s), %.1fh",
            username,
            project.name,
            len(forecast.loads),
            forecast.total.total_seconds() / 3600,
        )

    return forecasts


def plan_all(
    projects: Iterable[Project],
    intents: Iterable[Intent],
    avails: Iterable[Avail],
    dones: Iterable[Done],
    now: datetime,
    config: PlannerConfig | None = None,
) -> WorkPlan:
    """Forecast every user with an active intent over all open projects."""
    config = config or PlannerConfig()
    intents = list(intents)
    avails = list(avails)
    dones = list(dones)

    open_projects = sort_by_deadline(p for p in projects if p.is_open)
    usernames = sorted({i.username for i in intents if i.is_active(now)})

    plan: WorkPlan = {}
    for username in usernames:
        plan[username] = allocate_user(
            username,
            open_projects,
            intents,
            [a for a in avails if a.username == username],
            [d for d in dones if d.username == username],
            now,
            config,
        )
    return plan


# ---------------------------------------------------------------------------
# Window queries
# ---------------------------------------------------------------------------


def _as_datetime(d: date) -> datetime:
    if isinstance(d, datetime):
        return d
    return datetime.combine(d, time())


def find_loads(plan: WorkPlan, start: date, end: date) -> list[WorkLoad]:
    """All loads in *plan* starting within [start, end)."""
    lo, hi = _as_datetime(start), _as_datetime(end)
    return [
        load
        for forecasts in plan.values()
        for forecast in forecasts
        for load in forecast.loads
        if lo <= load.start < hi
    ]


def iter_weeks(start: date, end: date) -> Iterator[tuple[datetime, datetime]]:
    """Calendar weeks (Monday midnight to Monday midnight) covering [start, end)."""
    current = week_start(start)
    stop = _as_datetime(end)
    while current < stop:
        following = current + timedelta(weeks=1)
        yield current, following
        current = following


def forecast_horizon(avails: Iterable[Avail], now: datetime) -> datetime:
    """End of the weekly view: a year out, or later if availability extends further."""
    return max([now + timedelta(days=_VIEW_DAYS), *(a.end for a in avails)])
