"""Reduce time entries into chart series.

Each reducer takes the per-connection batches fetched for the dashboard and
returns a list of :class:`HoursBucket`. Missing input gives an empty series.
"""

from collections import defaultdict
from datetime import date, timedelta
from typing import Dict, List, Optional, Sequence

from .connections import Connection
from .models import HoursBucket, TimeEntry, TimeEntryBatch
from .projects import find_top_level_project

DAY_NAMES = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")

Batches = Optional[Sequence[TimeEntryBatch]]


def spent_on_date(entry: TimeEntry) -> date:
    """Calendar date of ``spent_on``; any time-of-day part is ignored."""
    return date.fromisoformat(entry.spent_on[:10])


def week_start(day: date) -> date:
    """Sunday starting the week that contains ``day``."""
    return day - timedelta(days=(day.weekday() + 1) % 7)


def hours_by_day(batches: Batches) -> List[HoursBucket]:
    totals: Dict[date, float] = defaultdict(float)
    for batch in batches or []:
        for entry in batch.data:
            totals[spent_on_date(entry)] += entry.hours
    return [
        HoursBucket(key=day.isoformat(), hours=hours, label=DAY_NAMES[day.weekday()])
        for day, hours in sorted(totals.items(), reverse=True)
    ]


def hours_by_week(batches: Batches) -> List[HoursBucket]:
    # dicts keep insertion order, which is the order weeks are first seen
    totals: Dict[date, float] = defaultdict(float)
    for batch in batches or []:
        for entry in batch.data:
            totals[week_start(spent_on_date(entry))] += entry.hours
    return [HoursBucket(key=week.isoformat(), hours=hours) for week, hours in totals.items()]


def hours_by_project(
    batches: Batches, connections: Sequence[Connection] = ()
) -> List[HoursBucket]:
    """Sum hours per top-level project.

    Entries booked on a sub-project count towards the parent found in the
    owning connection's cached project tree.
    """
    trees = {c.id: c.project_tree() for c in connections}
    totals: Dict[str, float] = defaultdict(float)
    for batch in batches or []:
        tree = trees.get(batch.connection_id, [])
        for entry in batch.data:
            name = entry.project.name
            top = find_top_level_project(tree, entry.project.id)
            if top is not None and top.id != entry.project.id:
                name = top.name
            totals[name] += entry.hours
    buckets = [HoursBucket(key=name, hours=hours) for name, hours in totals.items()]
    buckets.sort(key=lambda bucket: bucket.hours, reverse=True)
    return buckets


def hours_by_connection(
    batches: Batches, connections: Sequence[Connection] = ()
) -> List[HoursBucket]:
    names = {c.id: c.name for c in connections}
    totals: Dict[str, float] = defaultdict(float)
    for batch in batches or []:
        totals[batch.connection_id] += sum(entry.hours for entry in batch.data)
    return [
        HoursBucket(key=connection_id, hours=hours, label=names.get(connection_id, connection_id))
        for connection_id, hours in totals.items()
    ]
