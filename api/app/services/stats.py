from __future__ import annotations

from typing import Any, Iterable

from ..models import Branch, Device


UNASSIGNED_STATE = "Unassigned"


def chart_data(devices: Iterable[Device], branches: Iterable[Branch]) -> dict[str, Any]:
    """Online/offline counts overall and per branch state (jurisdiction).

    Devices with no branch, or whose branch no longer exists, count as "Unassigned".
    """

    state_by_branch = {b.id: b.state for b in branches}
    online = offline = unknown = 0
    by_state: dict[str, dict[str, int]] = {}

    for d in devices:
        state = state_by_branch.get(d.branch_id or "") or UNASSIGNED_STATE
        bucket = by_state.setdefault(state, {"online": 0, "offline": 0, "unknown": 0})
        if d.status == "online":
            online += 1
            bucket["online"] += 1
        elif d.status == "offline":
            offline += 1
            bucket["offline"] += 1
        else:
            unknown += 1
            bucket["unknown"] += 1

    return {
        "deviceStatus": [
            {"name": "Online", "value": online},
            {"name": "Offline", "value": offline},
        ],
        "stateWise": [{"state": state, **counts} for state, counts in by_state.items()],
        "summary": {
            "total": online + offline + unknown,
            "online": online,
            "offline": offline,
            "unknown": unknown,
        },
    }
