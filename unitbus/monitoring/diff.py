"""Snapshot diffing for unit subscriptions"""

import operator
from typing import Callable, Iterable

from ..models import Delta, Snapshot, UnitStatus

# Returns True when two records should be considered the same
Equality = Callable[[UnitStatus, UnitStatus], bool]


def build_snapshot(units: Iterable[UnitStatus]) -> Snapshot:
    """Index unit records by name; a later record with the same name wins"""
    return {unit.name: unit for unit in units}


def diff_snapshots(previous: Snapshot, current: Snapshot, equal: Equality = operator.eq) -> Delta:
    """
    Compute the changes between two snapshots

    Args:
        previous: Snapshot from the last successful poll
        current: Snapshot just fetched
        equal: Comparison deciding whether a unit changed

    Returns:
        Added and changed units mapped to their current record, removed
        units mapped to None. Unchanged units are left out.
    """
    delta: Delta = {}

    for name, unit in current.items():
        old = previous.get(name)
        if old is None or not equal(old, unit):
            delta[name] = unit

    for name in previous:
        if name not in current:
            delta[name] = None

    return delta


def ignore_job_fields(a: UnitStatus, b: UnitStatus) -> bool:
    """Equality that ignores queued-job churn (job id, type and path)"""
    return (
        a.name == b.name
        and a.description == b.description
        and a.load_state == b.load_state
        and a.active_state == b.active_state
        and a.sub_state == b.sub_state
        and a.followed == b.followed
        and a.path == b.path
    )
