"""Typer CLI for tally."""

from __future__ import annotations

import getpass
import logging
from datetime import datetime, timedelta
from typing import Annotated, Optional

import typer
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from rich.tree import Tree

from tally.models import Avail, Done, Intent, PlannerConfig, Project
from tally.persistence import Snapshot, Store
from tally.planner import (
    WorkPlan,
    find_loads,
    forecast_horizon,
    iter_weeks,
    plan_all,
    week_start,
)
from tally.projects import (
    UnknownProject,
    build_hierarchy,
    check_parent,
    find_project,
    has_open,
    roots,
    rollup,
)

app = typer.Typer(
    name="tally",
    help="Time tracking with a week-by-week workload forecast.",
    no_args_is_help=True,
)
console = Console()

UserOption = Annotated[
    Optional[str],
    typer.Option("--user", "-u", envvar="TALLY_USER", help="Acting username (defaults to login name)"),
]
NowOption = Annotated[
    Optional[str],
    typer.Option("--now", help="Reference time for the forecast (ISO date or datetime)"),
]


def _get_store() -> Store:
    return Store()


def _current_user(user: str | None) -> str:
    return user or getpass.getuser()


def _parse_when(value: str) -> datetime:
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        console.print(f"[red]Invalid date '{value}'. Use YYYY-MM-DD or YYYY-MM-DDTHH:MM.[/red]")
        raise typer.Exit(1)


def _resolve_now(now: str | None) -> datetime:
    return _parse_when(now) if now else datetime.now()


def _lookup(snapshot: Snapshot, name: str) -> Project:
    try:
        return find_project(snapshot.projects, name)
    except UnknownProject as e:
        console.print(f"[red]Project \"{e.name}\" does not exist.[/red]")
        if e.candidates:
            console.print("Similar project names are:")
            for c in e.candidates:
                console.print(f"  - {c}")
        raise typer.Exit(1)


def _require_owner(project: Project, user: str) -> None:
    if project.username != user:
        console.print(
            f"[red]{project.name} has been created by {project.username}, "
            f"only they can edit this bit.[/red]"
        )
        raise typer.Exit(1)


def _running(snapshot: Snapshot, username: str, now: datetime) -> Done | None:
    """The user's task whose planned end is still ahead of *now*, if any."""
    for d in snapshot.dones:
        if d.username == username and d.start <= now < d.end:
            return d
    return None


def _task_label(d: Done) -> str:
    return d.task or d.project


def _fmt_date(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d") if value else "-"


def _plan(snapshot: Snapshot, now: datetime) -> WorkPlan:
    return plan_all(
        snapshot.projects,
        snapshot.intents,
        snapshot.avails,
        snapshot.dones,
        now,
        snapshot.planner_config,
    )


@app.callback()
def main(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Show planner debug output")] = False,
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )


# ---------------------------------------------------------------------------
# Configuration and projects
# ---------------------------------------------------------------------------


@app.command()
def init(
    spare: Annotated[float, typer.Option(help="Hours of leftover work treated as scheduled")] = 1.0,
    day_start: Annotated[int, typer.Option(help="Hour the nominal work day starts")] = 10,
    day_end: Annotated[int, typer.Option(help="Hour the nominal work day ends")] = 18,
    horizon_weeks: Annotated[int, typer.Option(help="How many weeks ahead to forecast")] = 52,
) -> None:
    """Initialize (or reinitialize) planner configuration."""
    store = _get_store()
    snapshot = store.load()
    try:
        snapshot.config = PlannerConfig(
            spare_hrs=spare,
            day_start_hour=day_start,
            day_end_hour=day_end,
            horizon_weeks=horizon_weeks,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    store.save(snapshot)
    console.print(f"[green]Configuration saved to {store.db_path}[/green]")


@app.command()
def new(
    name: str,
    start: Annotated[Optional[str], typer.Option(help="Start date (YYYY-MM-DD), defaults to now")] = None,
    deadline: Annotated[Optional[str], typer.Option(help="Deadline (YYYY-MM-DD)")] = None,
    provision: Annotated[Optional[float], typer.Option(help="Budgeted hours")] = None,
    meta: Annotated[bool, typer.Option("--meta", help="Create as a meta project grouping others")] = False,
    user: UserOption = None,
) -> None:
    """Create a new project."""
    store = _get_store()
    snapshot = store.load()
    if any(p.name == name for p in snapshot.projects):
        console.print(f"[red]Project {name} already exists.[/red]")
        raise typer.Exit(1)

    snapshot.projects.append(
        Project(
            name=name,
            username=_current_user(user),
            start=_parse_when(start) if start else datetime.now(),
            deadline=_parse_when(deadline) if deadline else None,
            provision_hrs=provision,
            is_meta=meta,
        )
    )
    store.save(snapshot)
    console.print(f"[green]Created project '{name}'[/green]")


@app.command("deadline")
def set_deadline(name: str, when: str, user: UserOption = None) -> None:
    """Set a project's deadline."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, name)
    _require_owner(project, _current_user(user))
    project.deadline = _parse_when(when)
    store.save(snapshot)
    console.print(f"[green]Deadline of {name} set to {_fmt_date(project.deadline)}.[/green]")


@app.command()
def provision(name: str, hours: float, user: UserOption = None) -> None:
    """Set a project's budgeted hours."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, name)
    _require_owner(project, _current_user(user))
    project.provision_hrs = hours
    store.save(snapshot)
    console.print(f"[green]Provision of {name} set to {hours:.1f}h.[/green]")


@app.command()
def complete(name: str, user: UserOption = None) -> None:
    """Mark a project as completed; it leaves the forecast."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, name)
    _require_owner(project, _current_user(user))
    if project.completed is not None:
        console.print(f"[yellow]{name} was already completed on {_fmt_date(project.completed)}.[/yellow]")
        return
    project.completed = datetime.now()
    store.save(snapshot)
    console.print(f"[green]Completed {name}.[/green]")


@app.command()
def meta(name: str, user: UserOption = None) -> None:
    """Turn a project into a meta project."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, name)
    if project.is_meta:
        console.print("[yellow]This project is already a meta project.[/yellow]")
        return
    _require_owner(project, _current_user(user))
    if project.parent is not None:
        console.print(f"[red]{name} has a parent project, it can't become a meta project.[/red]")
        raise typer.Exit(1)
    project.is_meta = True
    store.save(snapshot)
    console.print(f"[green]{name} is now a meta project.[/green]")


@app.command()
def parent(child: str, parent_name: Annotated[str, typer.Argument(metavar="PARENT")], user: UserOption = None) -> None:
    """Attach a project to a meta project."""
    store = _get_store()
    snapshot = store.load()
    child_project = _lookup(snapshot, child)
    parent_project = _lookup(snapshot, parent_name)
    try:
        check_parent(child_project, parent_project)
    except ValueError as e:
        console.print(f"[red]{e}.[/red]")
        raise typer.Exit(1)
    _require_owner(child_project, _current_user(user))
    child_project.parent = parent_project.name
    store.save(snapshot)
    console.print(f"[green]{child} now belongs to {parent_name}.[/green]")


@app.command("projects")
def list_projects(
    now: NowOption = None,
    show_completed: Annotated[bool, typer.Option("--all", "-a", help="Include completed projects")] = False,
) -> None:
    """Show the project hierarchy with forecast hours rolled up."""
    store = _get_store()
    snapshot = store.load()
    if not snapshot.projects:
        console.print("No projects found.")
        return

    projects = {p.name: p for p in snapshot.projects}
    try:
        G = build_hierarchy(projects)
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    hours = rollup(G, _plan(snapshot, _resolve_now(now)))

    def label(name: str) -> str:
        p = projects[name]
        text = f"[bold]{name}[/bold] ({p.username})"
        if p.is_meta:
            text += " [cyan]meta[/cyan]"
        if p.deadline:
            text += f"  due {_fmt_date(p.deadline)}"
        if p.provision_hrs is not None:
            text += f"  provision {p.provision_hrs:.1f}h"
        if hours.get(name):
            text += f"  [yellow]{hours[name]:.1f}h ahead[/yellow]"
        if p.completed is not None:
            text = f"[dim]{text}  completed {_fmt_date(p.completed)}[/dim]"
        return text

    def visible(name: str) -> bool:
        return show_completed or has_open(G, name)

    def attach(branch: Tree, name: str) -> None:
        node = branch.add(label(name))
        for c in sorted(G.successors(name)):
            if visible(c):
                attach(node, c)

    tree = Tree("Projects")
    for name in sorted(roots(G)):
        if visible(name):
            attach(tree, name)
    console.print(tree)


# ---------------------------------------------------------------------------
# Intents, availability and logged work
# ---------------------------------------------------------------------------


@app.command()
def intent(
    project_name: Annotated[str, typer.Argument(metavar="PROJECT")],
    hours: float,
    until: Annotated[Optional[str], typer.Option(help="Date the intent expires")] = None,
    user: UserOption = None,
) -> None:
    """Declare how many hours in total you mean to spend on a project."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, project_name)
    if project.is_meta:
        console.print(
            f"[red]{project.name} is a meta project, commit to one of its child projects instead.[/red]"
        )
        raise typer.Exit(1)

    username = _current_user(user)
    snapshot.intents = [
        i for i in snapshot.intents if not (i.username == username and i.project == project.name)
    ]
    snapshot.intents.append(
        Intent(
            username=username,
            project=project.name,
            amount_hrs=hours,
            expires=_parse_when(until) if until else None,
        )
    )
    store.save(snapshot)
    console.print(f"[green]Intent of {hours:.1f}h on {project.name} recorded.[/green]")


@app.command()
def avail(
    start: str,
    end: str,
    weekly: Annotated[float, typer.Argument(help="Hours per week available")],
    user: UserOption = None,
) -> None:
    """Declare weekly availability between two dates."""
    store = _get_store()
    snapshot = store.load()
    try:
        window = Avail(
            username=_current_user(user),
            start=_parse_when(start),
            end=_parse_when(end),
            weekly_hrs=weekly,
        )
    except ValueError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)
    snapshot.avails.append(window)
    store.save(snapshot)
    console.print(f"[green]Registered {weekly:.1f}h/week from {_fmt_date(window.start)} to {_fmt_date(window.end)}.[/green]")


@app.command()
def done(
    project_name: Annotated[str, typer.Argument(metavar="PROJECT")],
    hours: float,
    task: Annotated[Optional[str], typer.Option("--task", "-t", help="What the work was")] = None,
    user: UserOption = None,
    now: NowOption = None,
) -> None:
    """Log work that just finished.

    The start is moved to the end of your previous entry when the two would
    overlap.
    """
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, project_name)
    username = _current_user(user)
    end = _resolve_now(now)

    running = _running(snapshot, username, end)
    if running is not None:
        console.print(f"[yellow]You are already doing {_task_label(running)}, you're covered.[/yellow]")
        raise typer.Exit(1)

    given_start = end - timedelta(hours=hours)
    latest_end = max((d.end for d in snapshot.dones if d.username == username), default=given_start)
    start = max(given_start, latest_end)
    if start >= end:
        console.print(f"[red]Your last task ended at {latest_end:%Y-%m-%d %H:%M}, there is nothing left to record.[/red]")
        raise typer.Exit(1)

    snapshot.dones.append(Done(username=username, project=project.name, start=start, end=end, task=task))
    store.save(snapshot)
    if start > given_start:
        actual = (end - start).total_seconds() / 3600
        console.print(
            f"[yellow]Recorded, but adjusted to the end of your last task. "
            f"Resulting in just {actual:.1f}h.[/yellow]"
        )
    else:
        console.print("[green]Well recorded.[/green]")


@app.command("start")
def start_task(
    project_name: Annotated[str, typer.Argument(metavar="PROJECT")],
    hours: Annotated[float, typer.Argument(help="Expected duration in hours")],
    task: Annotated[Optional[str], typer.Option("--task", "-t", help="What you are working on")] = None,
    user: UserOption = None,
    now: NowOption = None,
) -> None:
    """Start working on a project for the next few hours."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, project_name)
    username = _current_user(user)
    when = _resolve_now(now)

    running = _running(snapshot, username, when)
    if running is not None:
        console.print(
            f"[red]You are already doing {_task_label(running)}, you should stop it with 'tally stop'.[/red]"
        )
        raise typer.Exit(1)

    snapshot.dones.append(
        Done(username=username, project=project.name, start=when, end=when + timedelta(hours=hours), task=task)
    )
    store.save(snapshot)
    console.print(f"[green]Doing {project.name} until {when + timedelta(hours=hours):%H:%M}.[/green]")


@app.command("stop")
def stop_task(user: UserOption = None, now: NowOption = None) -> None:
    """Stop the running task now."""
    store = _get_store()
    snapshot = store.load()
    when = _resolve_now(now)

    running = _running(snapshot, _current_user(user), when)
    if running is None:
        console.print("[yellow]There's nothing to stop for you.[/yellow]")
        return
    running.end = when
    store.save(snapshot)
    console.print(f"[green]Stopped {_task_label(running)} after {running.duration.total_seconds() / 3600:.1f}h.[/green]")


@app.command()
def switch(
    project_name: Annotated[str, typer.Argument(metavar="PROJECT")],
    task: Annotated[Optional[str], typer.Option("--task", "-t", help="What you are switching to")] = None,
    user: UserOption = None,
    now: NowOption = None,
) -> None:
    """Stop the running task and spend its remaining time on another."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, project_name)
    username = _current_user(user)
    when = _resolve_now(now)

    running = _running(snapshot, username, when)
    if running is None:
        console.print("[red]There's nothing to switch from, you might want to 'tally start'.[/red]")
        raise typer.Exit(1)

    planned_end = running.end
    running.end = when
    snapshot.dones.append(Done(username=username, project=project.name, start=when, end=planned_end, task=task))
    store.save(snapshot)
    console.print(f"[green]Switched to {task or project.name}.[/green]")


# ---------------------------------------------------------------------------
# Logged work reports
# ---------------------------------------------------------------------------


@app.command()
def report(
    project_name: Annotated[str, typer.Argument(metavar="PROJECT")],
    now: NowOption = None,
) -> None:
    """Hours logged on a project per user and task, against its budget."""
    store = _get_store()
    snapshot = store.load()
    project = _lookup(snapshot, project_name)
    when = _resolve_now(now)

    per_task: dict[tuple[str, str], timedelta] = {}
    for d in snapshot.dones:
        if d.project == project.name:
            key = (d.username, d.task or "-")
            per_task[key] = per_task.get(key, timedelta(0)) + d.duration
    done_hrs = sum(per_task.values(), timedelta(0)).total_seconds() / 3600
    intended_hrs = sum(
        i.amount_hrs for i in snapshot.intents if i.project == project.name and i.is_active(when)
    )

    table = Table(title=f"Logged work on {project.name}")
    table.add_column("User")
    table.add_column("Task")
    table.add_column("Hours", justify="right")
    for (username, task), total in sorted(per_task.items()):
        table.add_row(username, task, f"{total.total_seconds() / 3600:.1f}")
    console.print(table)

    if project.provision_hrs is not None:
        console.print(f"  Provision: {project.provision_hrs:.1f}h")
    console.print(f"  Intended:  {intended_hrs:.1f}h")
    console.print(f"  Done:      {done_hrs:.1f}h")


@app.command()
def since(
    when: Annotated[str, typer.Argument(metavar="DATE")],
    user: UserOption = None,
) -> None:
    """List your logged work started on or after a date."""
    store = _get_store()
    snapshot = store.load()
    username = _current_user(user)
    cutoff = _parse_when(when)

    recent = sorted(
        (d for d in snapshot.dones if d.username == username and d.start >= cutoff),
        key=lambda d: d.start,
    )
    if not recent:
        console.print(f"Nothing logged since {_fmt_date(cutoff)}.")
        return

    table = Table(title=f"Work by {username} since {_fmt_date(cutoff)}")
    table.add_column("Started")
    table.add_column("Project")
    table.add_column("Task")
    table.add_column("Hours", justify="right")
    for d in recent:
        table.add_row(f"{d.start:%Y-%m-%d %H:%M}", d.project, d.task or "-", f"{d.duration.total_seconds() / 3600:.1f}")
    console.print(table)
    total = sum((d.duration for d in recent), timedelta(0))
    console.print(f"[dim]{total.total_seconds() / 3600:.1f}h in {len(recent)} entries[/dim]")


# ---------------------------------------------------------------------------
# Forecast views
# ---------------------------------------------------------------------------


@app.command()
def plan(
    now: NowOption = None,
    user_filter: Annotated[Optional[str], typer.Option("--user", "-u", help="Only this user")] = None,
) -> None:
    """Forecast, per user and project, the hours to be worked each week."""
    store = _get_store()
    snapshot = store.load()
    when = _resolve_now(now)
    work_plan = _plan(snapshot, when)
    if user_filter:
        work_plan = {u: f for u, f in work_plan.items() if u == user_filter}
    if not work_plan:
        console.print("Nothing to forecast.")
        return

    deadlines = {p.name: p.deadline for p in snapshot.projects}
    for username, forecasts in work_plan.items():
        table = Table(title=f"Forecast for {username} from {_fmt_date(when)}")
        table.add_column("Project")
        table.add_column("Deadline")
        table.add_column("Week of")
        table.add_column("Hours", justify="right")
        table.add_column("Flags")

        for forecast in forecasts:
            deadline = deadlines.get(forecast.project)
            if not forecast.loads:
                flags = "TRUNCATED" if forecast.truncated else "satisfied"
                table.add_row(forecast.project, _fmt_date(deadline), "-", "-", flags)
                continue
            for n, load in enumerate(forecast.loads):
                flags = []
                style = None
                if deadline and load.start > deadline:
                    flags.append("LATE")
                    style = "bold red"
                if forecast.truncated and n == len(forecast.loads) - 1:
                    flags.append("TRUNCATED")
                table.add_row(
                    forecast.project if n == 0 else "",
                    _fmt_date(deadline) if n == 0 else "",
                    _fmt_date(load.start),
                    f"{load.hours:.1f}",
                    " | ".join(flags),
                    style=style,
                )
        console.print(table)


@app.command()
def workload(
    now: NowOption = None,
    weeks: Annotated[Optional[int], typer.Option(help="Number of weeks to show")] = None,
) -> None:
    """Week-by-week view of everyone's forecast, grouped by month."""
    store = _get_store()
    snapshot = store.load()
    when = _resolve_now(now)
    work_plan = _plan(snapshot, when)

    start = week_start(when)
    if weeks is not None:
        end = start + timedelta(weeks=weeks)
    else:
        end = forecast_horizon(snapshot.avails, when)

    table: Table | None = None
    month = None
    for week, following in iter_weeks(start, end):
        if week.month != month:
            if table is not None:
                console.print(table)
            month = week.month
            table = Table(title=week.strftime("%B %Y"))
            table.add_column("Week of")
            table.add_column("Load")
            table.add_column("Hours", justify="right")
        loads = find_loads(work_plan, week, following)
        detail = ", ".join(f"{load.user} {load.project} {load.hours:.1f}h" for load in loads) or "-"
        total = sum(load.hours for load in loads)
        table.add_row(_fmt_date(week), detail, f"{total:.1f}" if loads else "-")
    if table is not None:
        console.print(table)
