"""Meta-project hierarchy, lookups and forecast roll-ups."""

from __future__ import annotations

import difflib
from collections.abc import Iterable
from datetime import timedelta

import networkx as nx

from tally.models import Project
from tally.planner import WorkPlan


class UnknownProject(ValueError):
    """Raised when a project name matches nothing; carries close matches."""

    def __init__(self, name: str, candidates: list[str]):
        self.name = name
        self.candidates = candidates
        message = f'Project "{name}" does not exist'
        if candidates:
            message += f", similar project names are: {', '.join(candidates)}"
        super().__init__(message)


def find_project(projects: Iterable[Project], name: str) -> Project:
    """Exact lookup by name, suggesting up to five close names on a miss."""
    by_name = {p.name: p for p in projects}
    if name in by_name:
        return by_name[name]
    raise UnknownProject(name, difflib.get_close_matches(name, list(by_name), n=5, cutoff=0.4))


def check_parent(child: Project, parent: Project) -> None:
    """Raise ValueError if *parent* cannot adopt *child*."""
    if child.name == parent.name:
        raise ValueError("A project cannot be its own parent")
    if not parent.is_meta:
        raise ValueError(f"{parent.name} is not a meta project, it can't have child projects")
    if child.is_meta:
        raise ValueError(f"{child.name} is a meta project, it can't have a parent project")


def build_hierarchy(projects: dict[str, Project]) -> nx.DiGraph:
    """Parent -> child graph. Raises ValueError on broken or cyclic links."""
    G = nx.DiGraph()
    for name, project in projects.items():
        G.add_node(name, project=project)
    for name, project in projects.items():
        if project.parent is None:
            continue
        if project.parent not in projects:
            raise ValueError(f"Project {name} has non-existent parent {project.parent}")
        check_parent(project, projects[project.parent])
        G.add_edge(project.parent, name)
    if not nx.is_directed_acyclic_graph(G):
        raise ValueError("Circular project hierarchy detected")
    return G


def roots(G: nx.DiGraph) -> list[str]:
    return [n for n in G.nodes if G.in_degree(n) == 0]


def forecast_hours(plan: WorkPlan) -> dict[str, float]:
    """Forecast hours per project, summed over users."""
    totals: dict[str, timedelta] = {}
    for forecasts in plan.values():
        for forecast in forecasts:
            totals[forecast.project] = totals.get(forecast.project, timedelta(0)) + forecast.total
    return {name: total.total_seconds() / 3600 for name, total in totals.items()}


def rollup(G: nx.DiGraph, plan: WorkPlan) -> dict[str, float]:
    """Forecast hours per project including everything beneath it."""
    own = forecast_hours(plan)
    return {
        name: own.get(name, 0.0) + sum(own.get(d, 0.0) for d in nx.descendants(G, name))
        for name in G.nodes
    }


def has_open(G: nx.DiGraph, name: str) -> bool:
    """True if *name* or any project beneath it is still open."""
    return any(G.nodes[n]["project"].is_open for n in {name, *nx.descendants(G, name)})
