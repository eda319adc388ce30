"""
Cardinality reduction for cost records.

Recurring batch jobs (e.g. CronJob instances) embed a creation timestamp
or a UUID in their names, so every run would show up as a brand new time
series. The functions here strip those ephemeral parts and merge the
records that end up sharing a name, keeping their cost.
"""

import dataclasses
import re
from typing import Iterable

from spotheus.models import CostRecord, ResourceKind

# uuid first so that its leading 8 hex digits are never taken
# for a timestamp
_EPHEMERAL_RE = re.compile(
    r"[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}|[0-9]{8}",
    re.IGNORECASE,
)
_SEPARATOR_RUN_RE = re.compile(r"([-_.])[-_.]+")
_SEPARATORS = "-_."


def _strip_once(name: "str") -> "str":
    stripped = _EPHEMERAL_RE.sub("", name)
    if stripped == name:
        return name

    stripped = _SEPARATOR_RUN_RE.sub(r"\1", stripped)
    return stripped.strip(_SEPARATORS)


def normalize_name(name: "str") -> "str":
    """
    strips 8 digit timestamps and UUIDs from a resource name, e.g.
    `foo-job-27752145` becomes `foo-job`. Separators are only cleaned
    up when something was stripped, so unaffected names are returned
    as they are. A name made only of ephemeral parts normalizes to
    an empty string.
    """
    # stripping can glue two fragments into a new match, repeat
    # until nothing changes
    while True:
        stripped = _strip_once(name)
        if stripped == name:
            return name
        name = stripped


def reduce_cardinality(records: "Iterable[CostRecord]") -> "list[CostRecord]":
    """
    merges the records whose normalized names collide within the same
    namespace and kind. The first record encountered survives under
    the normalized name, carrying the summed costs. Output order
    follows first encounter.
    """
    merged: "dict[tuple[str, ResourceKind, str], CostRecord]" = {}

    for record in records:
        name = normalize_name(record.name)
        key = (record.namespace, record.kind, name)

        current = merged.get(key)
        if current is None:
            merged[key] = (
                record
                if name == record.name
                else dataclasses.replace(record, name=name)
            )
            continue

        merged[key] = dataclasses.replace(
            current,
            total=current.total + record.total,
            storage=current.storage + record.storage,
            compute=current.compute + record.compute,
        )

    return list(merged.values())
