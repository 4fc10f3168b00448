# teardown/discovery.py
"""Enumerate what the cluster serves right now.

The set of resource types depends on installed CRDs and aggregated API
groups, and it can shrink while a run is in progress (another actor, or an
earlier stage, deletes a CRD). Anything that vanishes between discovery and
use is logged and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, FrozenSet, Iterator, List, Optional

from k8s import status_of
from teardown.objects import LiveObject

log = logging.getLogger("discovery")

# statuses that mean "this type is not (or no longer) served"
VANISHED_STATUSES = frozenset({404, 405, 410, 500, 502, 503, 504})


@dataclass(frozen=True)
class APIGroup:
    name: str
    version: str

    @property
    def group_version(self) -> str:
        return f"{self.name}/{self.version}" if self.name else self.version


@dataclass(frozen=True)
class ResourceType:
    group: str
    version: str
    name: str
    kind: str
    namespaced: bool
    verbs: FrozenSet[str] = field(default_factory=frozenset)

    @property
    def group_version(self) -> str:
        return f"{self.group}/{self.version}" if self.group else self.version

    @property
    def is_subresource(self) -> bool:
        return "/" in self.name

    @property
    def updatable(self) -> bool:
        return not self.is_subresource and "update" in self.verbs

    @property
    def listable(self) -> bool:
        return "list" in self.verbs

    @property
    def deletable(self) -> bool:
        return not self.is_subresource and "delete" in self.verbs

    def __str__(self) -> str:
        return f"{self.name}.{self.group}" if self.group else self.name


ALL_VERBS = frozenset({"create", "delete", "get", "list", "patch", "update", "watch"})

NAMESPACES = ResourceType("", "v1", "namespaces", "Namespace", False, ALL_VERBS)
DEPLOYMENTS = ResourceType("apps", "v1", "deployments", "Deployment", True, ALL_VERBS)
CLUSTER_ROLES = ResourceType("rbac.authorization.k8s.io", "v1", "clusterroles", "ClusterRole", False, ALL_VERBS)
CLUSTER_ROLE_BINDINGS = ResourceType(
    "rbac.authorization.k8s.io", "v1", "clusterrolebindings", "ClusterRoleBinding", False, ALL_VERBS
)
CRDS = ResourceType(
    "apiextensions.k8s.io", "v1", "customresourcedefinitions", "CustomResourceDefinition", False, ALL_VERBS
)


def is_vanished(err: BaseException) -> bool:
    return status_of(err) in VANISHED_STATUSES


class ResourceCatalog:
    def __init__(self, resources):
        self.resources = resources

    def groups(self) -> List[APIGroup]:
        return [APIGroup(g["name"], g["version"]) for g in self.resources.server_groups()]

    def resource_types(self, group: APIGroup, mutable_only: bool = False) -> List[ResourceType]:
        try:
            raw = self.resources.server_resources(group.name, group.version)
        except Exception as e:
            if not is_vanished(e):
                raise
            log.warning("API group [%s] is no longer served, skipping: %s", group.group_version, e)
            return []

        out: List[ResourceType] = []
        for r in raw:
            rtype = ResourceType(
                group=group.name,
                version=group.version,
                name=r.get("name", ""),
                kind=r.get("kind", ""),
                namespaced=bool(r.get("namespaced")),
                verbs=frozenset(r.get("verbs", []) or []),
            )
            if rtype.is_subresource:
                continue
            if mutable_only and not rtype.updatable:
                continue
            out.append(rtype)
        return out

    def walk(
        self,
        mutable_only: bool = False,
        group_filter: Optional[Callable[[APIGroup], bool]] = None,
    ) -> Iterator[ResourceType]:
        for group in self.groups():
            if group_filter and not group_filter(group):
                continue
            yield from self.resource_types(group, mutable_only=mutable_only)

    def list_objects(self, rtype: ResourceType, label_selector: Optional[str] = None) -> Optional[List[LiveObject]]:
        """All instances across namespaces, or None when the type cannot be listed anymore."""
        try:
            items = self.resources.list(rtype, label_selector=label_selector)
        except Exception as e:
            if not is_vanished(e):
                raise
            log.warning("can't list API resource [%s], skipping: %s", rtype, e)
            return None
        return [LiveObject(item) for item in items]
