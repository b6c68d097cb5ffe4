"""JSON file persistence for planner config and records."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from tally.models import Avail, Done, Intent, PlannerConfig, Project

logger = logging.getLogger(__name__)

DEFAULT_DB_FILE = "tally.json"


@dataclass
class Snapshot:
    """Everything in the store at one point in time."""

    config: PlannerConfig | None = None
    projects: list[Project] = field(default_factory=list)
    intents: list[Intent] = field(default_factory=list)
    avails: list[Avail] = field(default_factory=list)
    dones: list[Done] = field(default_factory=list)

    @property
    def planner_config(self) -> PlannerConfig:
        return self.config or PlannerConfig()


class Store:
    """Reads and writes the tally database (JSON file)."""

    def __init__(self, db_path: str | Path | None = None):
        if db_path is None:
            db_path = os.environ.get("TALLY_DB", DEFAULT_DB_FILE)
        self.db_path = Path(db_path)

    def load(self) -> Snapshot:
        if not self.db_path.exists():
            logger.debug("No database at %s, starting empty", self.db_path)
            return Snapshot()

        raw = json.loads(self.db_path.read_text())
        config = None
        if "config" in raw:
            config = PlannerConfig.from_dict(raw["config"])

        snapshot = Snapshot(
            config=config,
            projects=[Project.from_dict(d) for d in raw.get("projects", [])],
            intents=[Intent.from_dict(d) for d in raw.get("intents", [])],
            avails=[Avail.from_dict(d) for d in raw.get("avails", [])],
            dones=[Done.from_dict(d) for d in raw.get("dones", [])],
        )
        logger.debug(
            "Loaded %d project(s), %d intent(s), %d avail(s), %d done(s) from %s",
            len(snapshot.projects),
            len(snapshot.intents),
            len(snapshot.avails),
            len(snapshot.dones),
            self.db_path,
        )
        return snapshot

    def save(self, snapshot: Snapshot) -> None:
        """Persist the snapshot to disk."""
        raw: dict = {}
        if snapshot.config is not None:
            raw["config"] = snapshot.config.to_dict()
        raw["projects"] = [p.to_dict() for p in snapshot.projects]
        raw["intents"] = [i.to_dict() for i in snapshot.intents]
        raw["avails"] = [a.to_dict() for a in snapshot.avails]
        raw["dones"] = [d.to_dict() for d in snapshot.dones]
        self.db_path.write_text(json.dumps(raw, indent=4))
        logger.debug("Saved database to %s", self.db_path)
