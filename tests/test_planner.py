from datetime import date, datetime, timedelta

import pytest

from tally.models import Avail, Done, Intent, PlannerConfig, Project
from tally.planner import (
    daily_capacity,
    find_loads,
    forecast_horizon,
    iter_weeks,
    next_monday,
    plan_all,
    sort_by_deadline,
    week_start,
    weekly_capacity,
    working_days_remaining,
)

MONDAY = datetime(2026, 3, 2, 9, 0)
WEDNESDAY = MONDAY + timedelta(days=2)
CONFIG = PlannerConfig()


def hours(h: float) -> timedelta:
    return timedelta(hours=h)


def project(name: str, deadline: datetime | None = None, **kw) -> Project:
    return Project(name=name, username="ada", start=kw.pop("start", datetime(2026, 1, 1)), deadline=deadline, **kw)


def weekly(h: float, start: datetime = MONDAY, weeks: int = 8, user: str = "ada") -> Avail:
    return Avail(user, start, start + timedelta(weeks=weeks), h)


# ---------------------------------------------------------------------------
# Calendar helpers
# ---------------------------------------------------------------------------


def test_working_days_remaining():
    days = [working_days_remaining(MONDAY + timedelta(days=i)) for i in range(7)]
    assert days == [5, 4, 3, 2, 1, 0, 0]


def test_next_monday_properties():
    for i in range(14):
        d = MONDAY + timedelta(days=i, hours=i)
        nm = next_monday(d)
        assert nm.weekday() == 0
        assert d < nm <= d + timedelta(days=7)


def test_next_monday_from_monday_is_a_week_later():
    assert next_monday(MONDAY) == MONDAY + timedelta(days=7)
    assert next_monday(datetime(2026, 3, 8, 23, 0)) == datetime(2026, 3, 9, 23, 0)


def test_week_start():
    assert week_start(datetime(2026, 3, 4, 15, 30)) == datetime(2026, 3, 2)
    assert week_start(date(2026, 3, 2)) == datetime(2026, 3, 2)


# ---------------------------------------------------------------------------
# Capacity
# ---------------------------------------------------------------------------


def test_daily_capacity_takes_the_most_restrictive_window():
    avails = [weekly(20.0), weekly(10.0)]
    assert daily_capacity(MONDAY, avails, CONFIG) == hours(2)
    assert daily_capacity(MONDAY, [], CONFIG) == timedelta(0)


def test_daily_capacity_only_counts_the_work_window():
    morning = Avail("ada", datetime(2026, 3, 2, 6), datetime(2026, 3, 2, 10), 40.0)
    evening = Avail("ada", datetime(2026, 3, 2, 18), datetime(2026, 3, 2, 23), 40.0)
    assert daily_capacity(MONDAY, [morning, evening], CONFIG) == timedelta(0)

    late = PlannerConfig(day_start_hour=17, day_end_hour=22)
    assert daily_capacity(MONDAY, [evening], late) == hours(8)


def test_weekly_capacity_covers_the_rest_of_the_week():
    avails = [weekly(20.0, start=datetime(2026, 2, 1), weeks=20)]
    assert weekly_capacity(MONDAY, avails, CONFIG) == hours(20)
    assert weekly_capacity(WEDNESDAY, avails, CONFIG) == hours(12)
    assert weekly_capacity(MONDAY + timedelta(days=5), avails, CONFIG) == timedelta(0)


def test_weekly_capacity_stops_with_the_window():
    ends_wednesday_noon = Avail("ada", MONDAY, datetime(2026, 3, 4, 12), 20.0)
    assert weekly_capacity(MONDAY, [ends_wednesday_noon], CONFIG) == hours(12)


# ---------------------------------------------------------------------------
# Ordering
# ---------------------------------------------------------------------------


def test_deadline_order():
    undated_late = project("undated-late", start=datetime(2026, 2, 1))
    undated_early = project("undated-early", start=datetime(2026, 1, 1))
    later = project("later", deadline=datetime(2026, 5, 1))
    sooner = project("sooner", deadline=datetime(2026, 4, 1))

    ordered = sort_by_deadline([undated_late, later, undated_early, sooner])
    assert [p.name for p in ordered] == ["sooner", "later", "undated-early", "undated-late"]


# ---------------------------------------------------------------------------
# Allocation and assembly
# ---------------------------------------------------------------------------


def test_thirty_hours_at_twenty_a_week():
    plan = plan_all([project("P")], [Intent("ada", "P", 30.0)], [weekly(20.0)], [], MONDAY)

    [forecast] = plan["ada"]
    assert forecast.project == "P"
    assert not forecast.truncated
    assert [(l.start, l.duration) for l in forecast.loads] == [
        (MONDAY, hours(20)),
        (MONDAY + timedelta(days=7), hours(10)),
    ]


def test_loads_sum_to_remaining_and_move_forward():
    avails = [Avail("ada", datetime(2026, 3, 1), datetime(2026, 6, 1), 20.0)]
    dones = [Done("ada", "P", datetime(2026, 2, 20, 10), datetime(2026, 2, 20, 13))]
    plan = plan_all([project("P")], [Intent("ada", "P", 50.0)], avails, dones, WEDNESDAY)

    [forecast] = plan["ada"]
    assert [l.hours for l in forecast.loads] == [12.0, 20.0, 15.0]
    assert forecast.total == hours(47)
    starts = [l.start for l in forecast.loads]
    assert starts == sorted(starts)
    assert starts[0] == WEDNESDAY
    assert all(s >= WEDNESDAY for s in starts)


def test_satisfied_intent_has_no_loads():
    dones = [Done("ada", "P", datetime(2026, 2, 2, 10), datetime(2026, 2, 2, 22))]
    plan = plan_all([project("P")], [Intent("ada", "P", 10.0)], [weekly(20.0)], dones, MONDAY)
    assert plan["ada"][0].loads == []
    assert not plan["ada"][0].truncated


def test_remainder_within_spare_hour_is_dropped():
    dones = [Done("ada", "P", datetime(2026, 2, 2, 10), datetime(2026, 2, 2, 19, 30))]
    plan = plan_all([project("P")], [Intent("ada", "P", 10.0)], [weekly(20.0)], dones, MONDAY)
    assert plan["ada"][0].loads == []


@pytest.mark.timeout(5)
def test_no_availability_is_truncated_not_hanging():
    plan = plan_all([project("P")], [Intent("ada", "P", 30.0)], [], [], MONDAY)
    [forecast] = plan["ada"]
    assert forecast.loads == []
    assert forecast.truncated


def test_horizon_cuts_off_after_availability_runs_out():
    config = PlannerConfig(horizon_weeks=4)
    plan = plan_all(
        [project("P")], [Intent("ada", "P", 30.0)], [weekly(10.0, weeks=1)], [], MONDAY, config
    )
    [forecast] = plan["ada"]
    assert [l.hours for l in forecast.loads] == [10.0]
    assert forecast.truncated


def test_earlier_deadline_takes_the_week_first():
    projects = [project("B"), project("A", deadline=datetime(2026, 4, 1))]
    intents = [Intent("ada", "B", 20.0), Intent("ada", "A", 10.0)]
    plan = plan_all(projects, intents, [weekly(20.0)], [], MONDAY)

    a, b = plan["ada"]
    assert (a.project, b.project) == ("A", "B")
    assert [(l.start, l.hours) for l in a.loads] == [(MONDAY, 10.0)]
    # A fills Monday and Tuesday, so B starts on Wednesday.
    assert [(l.start, l.hours) for l in b.loads] == [
        (WEDNESDAY, 12.0),
        (MONDAY + timedelta(days=7), 8.0),
    ]


def test_overlapping_windows_cap_each_day():
    plan = plan_all(
        [project("P")], [Intent("ada", "P", 25.0)], [weekly(20.0), weekly(10.0)], [], MONDAY
    )
    assert [l.hours for l in plan["ada"][0].loads] == [10.0, 10.0, 5.0]


def test_plan_skips_completed_projects_and_expired_intents():
    projects = [
        project("open"),
        project("closed", completed=datetime(2026, 2, 1)),
        project("other"),
    ]
    intents = [
        Intent("ada", "open", 5.0),
        Intent("ada", "closed", 5.0),
        Intent("ada", "other", 5.0, expires=MONDAY - timedelta(days=1)),
        Intent("bob", "open", 5.0, expires=MONDAY),
    ]
    plan = plan_all(projects, intents, [weekly(20.0)], [], MONDAY)

    assert list(plan) == ["ada"]
    assert [f.project for f in plan["ada"]] == ["open"]


def test_users_are_planned_independently():
    intents = [Intent("bob", "P", 8.0), Intent("ada", "P", 8.0)]
    avails = [weekly(20.0), weekly(10.0, user="bob")]
    dones = [Done("bob", "P", datetime(2026, 2, 2, 10), datetime(2026, 2, 2, 14))]
    plan = plan_all([project("P")], intents, avails, dones, MONDAY)

    assert list(plan) == ["ada", "bob"]
    assert plan["ada"][0].loads[0].hours == 8.0
    assert plan["bob"][0].loads[0].hours == 4.0
    assert plan["bob"][0].loads[0].user == "bob"


def test_plan_is_reproducible():
    args = ([project("P")], [Intent("ada", "P", 30.0)], [weekly(20.0)], [], MONDAY)
    assert plan_all(*args) == plan_all(*args)


# ---------------------------------------------------------------------------
# Window queries
# ---------------------------------------------------------------------------


def test_find_loads_is_half_open():
    projects = [project("P"), project("Q", deadline=datetime(2026, 3, 20))]
    intents = [Intent("ada", "P", 30.0), Intent("ada", "Q", 5.0)]
    plan = plan_all(projects, intents, [weekly(20.0)], [], MONDAY)
    everything = [l for f in plan["ada"] for l in f.loads]

    first_week = find_loads(plan, MONDAY, MONDAY + timedelta(days=7))
    assert all(MONDAY <= l.start < MONDAY + timedelta(days=7) for l in first_week)
    assert len(first_week) == len([l for l in everything if l.start < MONDAY + timedelta(days=7)])

    by_date = find_loads(plan, date(2026, 3, 2), date(2026, 3, 9))
    assert by_date == first_week

    assert find_loads(plan, MONDAY + timedelta(weeks=10), MONDAY + timedelta(weeks=11)) == []
    assert len(find_loads(plan, MONDAY, MONDAY + timedelta(weeks=52))) == len(everything)


def test_iter_weeks():
    weeks = list(iter_weeks(WEDNESDAY, WEDNESDAY + timedelta(weeks=2)))
    assert [w for w, _ in weeks] == [
        datetime(2026, 3, 2),
        datetime(2026, 3, 9),
        datetime(2026, 3, 16),
    ]
    assert all(e - s == timedelta(weeks=1) for s, e in weeks)


def test_forecast_horizon():
    assert forecast_horizon([], MONDAY) == MONDAY + timedelta(days=361)
    far = Avail("ada", MONDAY, MONDAY + timedelta(days=500), 10.0)
    assert forecast_horizon([weekly(10.0), far], MONDAY) == far.end


def test_week_capacity_equal_to_remaining_takes_one_full_week():
    plan = plan_all([project("P")], [Intent("ada", "P", 20.0)], [weekly(20.0)], [], MONDAY)
    [forecast] = plan["ada"]
    assert [(l.start, l.duration) for l in forecast.loads] == [(MONDAY, hours(20))]
    assert not forecast.truncated


def test_remaining_equal_to_spare_is_not_scheduled():
    dones = [Done("ada", "P", datetime(2026, 2, 2, 10), datetime(2026, 2, 2, 19))]
    plan = plan_all([project("P")], [Intent("ada", "P", 10.0)], [weekly(20.0)], dones, MONDAY)
    assert plan["ada"][0].loads == []
