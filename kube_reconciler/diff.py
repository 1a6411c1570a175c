"""Structural diff between desired and observed resource bodies."""

from typing import Any

from kubernetes.utils import parse_quantity

# Metadata fields the reconciler owns; everything else is server-populated.
OWNED_METADATA = ("name", "namespace", "labels", "annotations")
IGNORED_TOP_LEVEL = ("status", "apiVersion", "kind")

# Maps compared as a whole: keys dropped from desired count as drift.
_DATA_SECTIONS = ("data", "stringData")

# Maps whose values are quantities the server rewrites to canonical form
_QUANTITY_SECTIONS = ("limits", "requests", "capacity")


def _is_empty(value: Any) -> bool:
    return value is None or value == {} or value == []


def _same_quantity(desired: Any, observed: Any) -> bool:
    try:
        return parse_quantity(desired) == parse_quantity(observed)
    except (ValueError, TypeError):
        return False


def _strip(body: dict[str, Any]) -> dict[str, Any]:
    stripped = {k: v for k, v in body.items() if k not in IGNORED_TOP_LEVEL}
    metadata = body.get("metadata") or {}
    stripped["metadata"] = {k: metadata[k] for k in OWNED_METADATA if k in metadata}
    return stripped


def _compare(
    desired: Any, observed: Any, path: str, changes: list[str], quantities: bool = False
) -> None:
    if isinstance(desired, dict):
        if not isinstance(observed, dict):
            if not (_is_empty(desired) and _is_empty(observed)):
                changes.append(path or "/")
            return
        for key, value in desired.items():
            child = f"{path}.{key}" if path else key
            if key not in observed:
                if not _is_empty(value):
                    changes.append(child)
                continue
            if quantities and _same_quantity(value, observed[key]):
                continue
            _compare(value, observed[key], child, changes, key in _QUANTITY_SECTIONS)
        return

    if isinstance(desired, list):
        if not isinstance(observed, list) or len(desired) != len(observed):
            if not (_is_empty(desired) and _is_empty(observed)):
                changes.append(path)
            return
        for i, (want, have) in enumerate(zip(desired, observed)):
            _compare(want, have, f"{path}[{i}]", changes)
        return

    if desired != observed:
        changes.append(path)


def diff(desired: dict[str, Any], observed: dict[str, Any]) -> list[str]:
    """
    Return the field paths where ``observed`` does not match ``desired``.

    Only fields set in ``desired`` are compared, so server defaults do not
    count as drift. Server-populated metadata and ``status`` are ignored, and
    resource quantities are compared by value (``0.5`` equals ``500m``).
    Paths never include values.
    """
    changes: list[str] = []
    _compare(_strip(desired), _strip(observed), "", changes)

    # Observed keys that desired dropped from Secret/ConfigMap data
    for section in _DATA_SECTIONS:
        want = desired.get(section) or {}
        have = observed.get(section) or {}
        if isinstance(want, dict) and isinstance(have, dict):
            changes.extend(f"{section}.{key}" for key in have if key not in want)

    return changes
