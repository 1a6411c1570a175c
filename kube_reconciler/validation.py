"""Validation of a submitted resource set."""

import logging
from typing import Iterable

from .exceptions import DuplicateResource, UnresolvedReference
from .models import DeploymentSpec, ResourceKey, ResourceSpec, ServiceSpec

logger = logging.getLogger(__name__)


def index_specs(specs: Iterable[ResourceSpec]) -> dict[ResourceKey, ResourceSpec]:
    """
    Index specs by key.

    Raises:
        DuplicateResource: If two specs share kind, namespace and name
    """
    index: dict[ResourceKey, ResourceSpec] = {}
    for spec in specs:
        if spec.key in index:
            raise DuplicateResource(spec.kind, spec.namespace, spec.name)
        index[spec.key] = spec
    return index


def validate(specs: Iterable[ResourceSpec]) -> dict[ResourceKey, ResourceSpec]:
    """
    Validate a resource set before any apply call is made.

    Checks that names are unique per (kind, namespace) and that every
    reference resolves to a resource (and key, where one is named) within
    the set.

    Args:
        specs: Resources submitted for one reconciliation pass

    Returns:
        The specs indexed by key

    Raises:
        DuplicateResource: On a name collision
        UnresolvedReference: On a reference that does not resolve
    """
    index = index_specs(specs)

    for spec in index.values():
        for ref in spec.references():
            target_key = ref.resolve(spec.namespace)
            target = index.get(target_key)
            if target is None:
                raise UnresolvedReference(
                    str(spec.key), str(ref), f"{target_key} is not in the resource set"
                )
            if ref.key is not None and ref.key not in target.provided_keys():
                raise UnresolvedReference(
                    str(spec.key), str(ref), f"key {ref.key!r} is not defined"
                )
            if isinstance(spec, ServiceSpec) and isinstance(target, DeploymentSpec):
                pod_labels = target.metadata_labels()
                if any(pod_labels.get(k) != v for k, v in spec.effective_selector.items()):
                    raise UnresolvedReference(
                        str(spec.key), str(ref), "selector does not match the pod labels"
                    )

    logger.debug(f"Validated {len(index)} resources")
    return index
