from __future__ import annotations

from api.app.services.stats import chart_data
from api.app.storage.memory import MemoryStorage


def test_chart_data_counts_by_status_and_state() -> None:
    storage = MemoryStorage()
    ka = storage.create_branch({"name": "Bengaluru", "email": "blr@example.com", "state": "Karnataka"})
    kl = storage.create_branch({"name": "Kochi", "email": "cok@example.com", "state": "Kerala"})
    gone = storage.create_branch({"name": "Closed", "email": "x@example.com", "state": "Goa"})

    def add(ext: str, status: str, branch_id: str | None) -> None:
        storage.create_device(
            {"external_device_id": ext, "name": ext, "serial": ext, "status": status, "branch_id": branch_id}
        )

    add("a", "online", ka.id)
    add("b", "offline", ka.id)
    add("c", "online", kl.id)
    add("d", "unknown", None)
    add("e", "offline", gone.id)
    storage.delete_branch(gone.id)

    out = chart_data(storage.list_devices(), storage.list_branches())

    assert out["deviceStatus"] == [{"name": "Online", "value": 2}, {"name": "Offline", "value": 2}]
    assert out["summary"] == {"total": 5, "online": 2, "offline": 2, "unknown": 1}

    by_state = {row["state"]: row for row in out["stateWise"]}
    assert by_state["Karnataka"] == {"state": "Karnataka", "online": 1, "offline": 1, "unknown": 0}
    assert by_state["Kerala"] == {"state": "Kerala", "online": 1, "offline": 0, "unknown": 0}
    # No branch and a deleted branch both land in the unassigned bucket.
    assert by_state["Unassigned"] == {"state": "Unassigned", "online": 0, "offline": 1, "unknown": 1}
    assert "Goa" not in by_state


def test_chart_data_empty_fleet() -> None:
    out = chart_data([], [])

    assert out["summary"]["total"] == 0
    assert out["stateWise"] == []
