from datetime import datetime

from tally.models import Avail, Done, Intent, PlannerConfig, Project
from tally.persistence import Snapshot, Store


def test_missing_file_loads_empty(tmp_path):
    snapshot = Store(tmp_path / "nothing.json").load()
    assert snapshot.config is None
    assert snapshot.projects == []
    assert snapshot.planner_config == PlannerConfig()


def test_store_round_trip(tmp_path):
    store = Store(tmp_path / "tally.json")
    start = datetime(2026, 3, 2, 9, 0)
    snapshot = Snapshot(
        config=PlannerConfig(horizon_weeks=26),
        projects=[Project("thesis", "ada", start, deadline=datetime(2026, 6, 1))],
        intents=[Intent("ada", "thesis", 40.0)],
        avails=[Avail("ada", start, datetime(2026, 5, 1), 20.0)],
        dones=[Done("ada", "thesis", start, datetime(2026, 3, 2, 11, 0), task="outline")],
    )
    store.save(snapshot)

    loaded = store.load()
    assert loaded == snapshot
    assert loaded.planner_config.horizon_weeks == 26


def test_store_path_from_environment(tmp_path, monkeypatch):
    monkeypatch.setenv("TALLY_DB", str(tmp_path / "env.json"))
    assert Store().db_path == tmp_path / "env.json"
