"""Dependency ordering of resources."""

from enum import Enum
from typing import Iterable

from .exceptions import CycleError, UnresolvedReference
from .models import ReconciliationPlan, ResourceKey, ResourceSpec
from .validation import index_specs


class _Mark(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


def _sort_key(key: ResourceKey) -> tuple[int, str, str]:
    return (key.kind.rank, key.name, key.namespace or "")


def order(specs: Iterable[ResourceSpec]) -> ReconciliationPlan:
    """
    Topologically sort resources so referenced resources come first.

    Depth-first traversal with three marks. Roots and dependencies are
    visited in (kind rank, name, namespace) order, which makes the result
    independent of input order.

    Args:
        specs: Resources to order

    Returns:
        ReconciliationPlan containing every spec exactly once

    Raises:
        CycleError: If references form a cycle
        UnresolvedReference: If a dependency is not in the set
        DuplicateResource: If two specs share a key
    """
    index = index_specs(specs)
    marks = {key: _Mark.UNVISITED for key in index}
    ordered: list[ResourceSpec] = []

    def visit(key: ResourceKey, path: list[ResourceKey]) -> None:
        mark = marks[key]
        if mark is _Mark.DONE:
            return
        if mark is _Mark.IN_PROGRESS:
            cycle = path[path.index(key):] + [key]
            raise CycleError([str(k) for k in cycle])

        marks[key] = _Mark.IN_PROGRESS
        spec = index[key]
        for dep in sorted(set(spec.dependencies()), key=_sort_key):
            if dep not in index:
                raise UnresolvedReference(str(key), str(dep), "not in the resource set")
            visit(dep, path + [key])
        marks[key] = _Mark.DONE
        ordered.append(spec)

    for key in sorted(index, key=_sort_key):
        visit(key, [])

    return ReconciliationPlan(resources=tuple(ordered))
