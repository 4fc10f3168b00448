# teardown/classify.py
from __future__ import annotations

import enum
from typing import Iterable, Optional

from teardown.discovery import (
    CLUSTER_ROLE_BINDINGS,
    CLUSTER_ROLES,
    CRDS,
    DEPLOYMENTS,
    NAMESPACES,
    ResourceType,
)
from teardown.marks import carries, has_mark
from teardown.objects import LiveObject


class Verdict(str, enum.Enum):
    OWNED = "owned"
    MARKED = "marked"
    UNRELATED = "unrelated"


def _same_type(a: ResourceType, b: ResourceType) -> bool:
    return a.group == b.group and a.name == b.name


class Classifier:
    """Decides, from metadata alone, what the teardown may do to an object.

    owned_namespaces holds the namespaces backing management aggregates
    (one per project, cluster and user); the installation namespace is always
    owned.
    """

    def __init__(self, cfg, owned_namespaces: Iterable[str] = ()):
        self.cfg = cfg
        self.owned_namespaces = frozenset(owned_namespaces) | {cfg.namespace}

    def with_namespaces(self, names: Iterable[str]) -> "Classifier":
        return Classifier(self.cfg, self.owned_namespaces | frozenset(names))

    def is_installation_group(self, group: str) -> bool:
        return bool(group) and carries(group, self.cfg.label_base)

    def _is_owned(self, obj: LiveObject, rtype: ResourceType) -> bool:
        cfg = self.cfg
        if self.is_installation_group(rtype.group):
            # management aggregates fall in here too: every instance is owned
            return True
        if _same_type(rtype, NAMESPACES):
            return obj.name in self.owned_namespaces
        if _same_type(rtype, DEPLOYMENTS):
            return obj.namespace == cfg.namespace
        if _same_type(rtype, CLUSTER_ROLES) or _same_type(rtype, CLUSTER_ROLE_BINDINGS):
            if _same_type(rtype, CLUSTER_ROLES) and obj.name in cfg.static_cluster_roles:
                return True
            return obj.labels.get(cfg.creator_label) == cfg.creator_value
        if _same_type(rtype, CRDS):
            return self.is_installation_group(obj.spec.get("group", ""))
        return False

    def classify(self, obj: LiveObject, rtype: ResourceType) -> Verdict:
        if self._is_owned(obj, rtype):
            return Verdict.OWNED
        if has_mark(obj, self.cfg):
            return Verdict.MARKED
        return Verdict.UNRELATED


def describe(obj: LiveObject, rtype: Optional[ResourceType] = None) -> str:
    kind = rtype.kind if rtype else obj.kind
    return f"{kind} [{obj.ref()}]"
