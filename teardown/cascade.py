# teardown/cascade.py
from __future__ import annotations

import logging
import time
from typing import Callable, Iterator, List, Optional

from k8s import is_not_found
from teardown.classify import Classifier, Verdict, describe
from teardown.discovery import (
    CLUSTER_ROLE_BINDINGS,
    CLUSTER_ROLES,
    CRDS,
    DEPLOYMENTS,
    NAMESPACES,
    ResourceCatalog,
    ResourceType,
)
from teardown.management import ManagementClient
from teardown.objects import LiveObject
from teardown.retry import retry_until
from teardown.sweep import Batch, Sweep

log = logging.getLogger("teardown")

ORPHAN = "Orphan"
FOREGROUND = "Foreground"


class NotOwned(Exception):
    """Refusal to delete something the installation does not own."""

    def __init__(self, what: str, verdict: Verdict):
        self.verdict = verdict
        super().__init__(f"refusing to delete {what}: classified {verdict.value}")


def _owned(obj: LiveObject, verdict: Verdict) -> bool:
    return verdict is Verdict.OWNED


class CascadeDeleter:
    def __init__(self, resources, cfg, classifier: Classifier, sleep: Callable[[float], None] = time.sleep):
        self.resources = resources
        self.cfg = cfg
        self.classifier = classifier
        self.sleep = sleep

    def delete(
        self,
        rtype: ResourceType,
        obj: LiveObject,
        grace_period_seconds: Optional[int] = None,
        propagation_policy: Optional[str] = None,
        classifier: Optional[Classifier] = None,
    ) -> bool:
        """Delete one owned object. False when it was already gone."""
        verdict = (classifier or self.classifier).classify(obj, rtype)
        if verdict is not Verdict.OWNED:
            raise NotOwned(describe(obj, rtype), verdict)
        try:
            self.resources.delete(
                rtype,
                obj.name,
                obj.namespace,
                grace_period_seconds=grace_period_seconds,
                propagation_policy=propagation_policy,
            )
        except Exception as e:
            if is_not_found(e):
                log.debug("%s already gone", describe(obj, rtype))
                return False
            raise
        log.info("deleted %s", describe(obj, rtype))
        return True

    def delete_namespace(self, name: str, classifier: Optional[Classifier] = None) -> bool:
        ns = LiveObject({"kind": "Namespace", "metadata": {"name": name}})
        return retry_until(
            lambda: self.delete(NAMESPACES, ns, 0, ORPHAN, classifier=classifier),
            timeout=self.cfg.conflict_timeout,
            interval=self.cfg.conflict_interval,
            sleep=self.sleep,
        )

    def delete_aggregate(self, rtype: ResourceType, obj: LiveObject, grace: int, backing_namespace: bool) -> bool:
        """Delete the namespace named after the aggregate, then the aggregate itself."""
        if backing_namespace:
            log.info("deleting %s [%s]..", rtype.kind.lower(), obj.name)
            self.delete_namespace(obj.name, classifier=self.classifier.with_namespaces([obj.name]))
        return self.delete(rtype, obj, grace, ORPHAN)


# stage builders


def _one(rtype: ResourceType, objects: List[LiveObject]) -> Iterator[Batch]:
    yield rtype, objects


def _live(resources, rtype: ResourceType, namespace=None, label_selector=None) -> List[LiveObject]:
    return [LiveObject(i) for i in resources.list(rtype, namespace=namespace, label_selector=label_selector)]


def deployment_sweep(deleter: CascadeDeleter) -> Sweep:
    cfg = deleter.cfg
    return Sweep(
        name="deployments",
        action="delete",
        targets=lambda: _one(DEPLOYMENTS, _live(deleter.resources, DEPLOYMENTS, namespace=cfg.namespace)),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda rtype, o: deleter.delete(rtype, o),
        workers=cfg.workers,
    )


def cluster_role_binding_sweep(deleter: CascadeDeleter) -> Sweep:
    cfg = deleter.cfg
    return Sweep(
        name="cluster-role-bindings",
        action="delete",
        targets=lambda: _one(
            CLUSTER_ROLE_BINDINGS,
            _live(deleter.resources, CLUSTER_ROLE_BINDINGS, label_selector=cfg.creator_selector),
        ),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda rtype, o: deleter.delete(rtype, o, 0, ORPHAN),
        workers=cfg.workers,
    )


def _cluster_roles(deleter: CascadeDeleter) -> Iterator[Batch]:
    cfg = deleter.cfg
    found = {o.name: o for o in _live(deleter.resources, CLUSTER_ROLES, label_selector=cfg.creator_selector)}
    for name in sorted(cfg.static_cluster_roles - set(found)):
        try:
            found[name] = LiveObject(deleter.resources.get(CLUSTER_ROLES, name))
        except Exception as e:
            if not is_not_found(e):
                raise
    yield CLUSTER_ROLES, list(found.values())


def cluster_role_sweep(deleter: CascadeDeleter) -> Sweep:
    return Sweep(
        name="cluster-roles",
        action="delete",
        targets=lambda: _cluster_roles(deleter),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda rtype, o: deleter.delete(rtype, o, 0, ORPHAN),
        workers=deleter.cfg.workers,
    )


def aggregate_sweep(
    deleter: CascadeDeleter,
    name: str,
    rtype: ResourceType,
    lister: Callable[[], List[LiveObject]],
    grace: int,
    backing_namespace: bool = True,
) -> Sweep:
    """Projects, clusters, users and nodes: every instance is owned."""
    return Sweep(
        name=name,
        action="delete",
        targets=lambda: _one(rtype, lister()),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda t, o: deleter.delete_aggregate(t, o, grace, backing_namespace),
        workers=deleter.cfg.workers,
    )


def management_sweeps(deleter: CascadeDeleter, mgmt: ManagementClient) -> List[Sweep]:
    grace = deleter.cfg.aggregate_grace_seconds
    return [
        aggregate_sweep(deleter, "projects", mgmt.projects, mgmt.list_projects, grace),
        aggregate_sweep(deleter, "nodes", mgmt.nodes, mgmt.list_nodes, grace, backing_namespace=False),
        aggregate_sweep(deleter, "clusters", mgmt.clusters, mgmt.list_clusters, grace),
        aggregate_sweep(deleter, "users", mgmt.users, mgmt.list_users, 0),
    ]


def _installation_objects(deleter: CascadeDeleter) -> Iterator[Batch]:
    catalog = ResourceCatalog(deleter.resources)
    for rtype in catalog.walk(group_filter=lambda g: deleter.classifier.is_installation_group(g.name)):
        if not (rtype.listable and rtype.deletable):
            continue
        objects = catalog.list_objects(rtype)
        if objects is None:
            continue
        yield rtype, objects


def api_group_sweep(deleter: CascadeDeleter) -> Sweep:
    """Every object in an installation API group, marked or not."""
    return Sweep(
        name="api-group-resources",
        action="delete",
        targets=lambda: _installation_objects(deleter),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda rtype, o: deleter.delete(rtype, o, 0, FOREGROUND),
        workers=deleter.cfg.workers,
    )


def crd_sweep(deleter: CascadeDeleter) -> Sweep:
    return Sweep(
        name="crds",
        action="delete",
        targets=lambda: _one(CRDS, _live(deleter.resources, CRDS)),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda rtype, o: deleter.delete(rtype, o, 0, FOREGROUND),
        workers=deleter.cfg.workers,
    )


def _installation_namespace(deleter: CascadeDeleter) -> Iterator[Batch]:
    try:
        found = [LiveObject(deleter.resources.get(NAMESPACES, deleter.cfg.namespace))]
    except Exception as e:
        if not is_not_found(e):
            raise
        found = []
    yield NAMESPACES, found


def namespace_sweep(deleter: CascadeDeleter) -> Sweep:
    return Sweep(
        name="namespace",
        action="delete",
        targets=lambda: _installation_namespace(deleter),
        classify=deleter.classifier.classify,
        wants=_owned,
        act=lambda rtype, o: deleter.delete_namespace(o.name),
    )
