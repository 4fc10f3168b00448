from __future__ import annotations

import copy
from typing import Dict, List, Optional, Tuple

import pytest
from kubernetes.client.rest import ApiException

from config import TeardownConfig

VERBS = ["create", "delete", "get", "list", "patch", "update", "watch"]


def api_error(status: int, reason: str = "", body: str = "") -> ApiException:
    e = ApiException(status=status, reason=reason)
    e.body = body
    return e


def obj(kind: str, name: str, namespace: Optional[str] = None, labels=None, annotations=None, finalizers=None, **extra) -> dict:
    meta = {"name": name}
    if namespace:
        meta["namespace"] = namespace
    if labels:
        meta["labels"] = dict(labels)
    if annotations:
        meta["annotations"] = dict(annotations)
    if finalizers:
        meta["finalizers"] = list(finalizers)
    out = {"kind": kind, "metadata": meta}
    out.update(extra)
    return out


class FakeCluster:
    """In-memory stand-in for k8s.KubeResources.

    Objects are stored per (group, plural). Deleting a namespace removes
    everything inside it, deleting a CRD stops serving its type. Every
    mutating call is recorded in ``calls`` for ordering assertions.
    """

    def __init__(self):
        self.served: Dict[Tuple[str, str], List[dict]] = {}
        self.store: Dict[Tuple[str, str], Dict[Tuple[str, str], dict]] = {}
        self.calls: List[tuple] = []
        self.conflicts: Dict[Tuple[str, str], int] = {}
        self.list_errors: Dict[str, ApiException] = {}
        self.delete_errors: Dict[str, ApiException] = {}
        self.gone_groups: set = set()
        self._rv = 0

    # setup

    def serve(self, group: str, version: str, plural: str, kind: str, namespaced: bool, verbs=VERBS) -> None:
        self.served.setdefault((group, version), []).append(
            {"name": plural, "kind": kind, "namespaced": namespaced, "verbs": list(verbs)}
        )
        self.store.setdefault((group, plural), {})

    def add(self, group: str, plural: str, body: dict) -> dict:
        body = copy.deepcopy(body)
        meta = body.setdefault("metadata", {})
        meta.setdefault("uid", f"uid-{plural}-{meta['name']}")
        self._rv += 1
        meta["resourceVersion"] = str(self._rv)
        self.store.setdefault((group, plural), {})[(meta.get("namespace", ""), meta["name"])] = body
        return body

    def find(self, group: str, plural: str, name: str, namespace: str = "") -> Optional[dict]:
        return self.store.get((group, plural), {}).get((namespace or "", name))

    def names(self, group: str, plural: str) -> List[str]:
        return sorted(n for (_, n) in self.store.get((group, plural), {}))

    def _is_served(self, group: str, plural: str) -> bool:
        return any(g == group and any(r["name"] == plural for r in rs) for (g, _), rs in self.served.items())

    def _bucket(self, rtype) -> Dict[Tuple[str, str], dict]:
        if not self._is_served(rtype.group, rtype.name):
            raise api_error(404, "Not Found")
        return self.store.setdefault((rtype.group, rtype.name), {})

    # discovery

    def server_groups(self):
        out = []
        for group, version in self.served:
            entry = {"name": group, "version": version}
            if entry not in out:
                out.append(entry)
        out.sort(key=lambda g: g["name"] != "")
        return out

    def server_resources(self, group: str, version: str):
        if group in self.gone_groups or (group, version) not in self.served:
            raise api_error(404, "Not Found")
        return copy.deepcopy(self.served[(group, version)])

    # objects

    def list(self, rtype, namespace=None, label_selector=None):
        if rtype.name in self.list_errors:
            raise self.list_errors[rtype.name]
        bucket = self._bucket(rtype)
        items = []
        for (ns, _), body in sorted(bucket.items()):
            if namespace and ns != namespace:
                continue
            if label_selector:
                k, v = label_selector.split("=", 1)
                if (body["metadata"].get("labels") or {}).get(k) != v:
                    continue
            items.append(copy.deepcopy(body))
        return items

    def get(self, rtype, name, namespace=None):
        body = self._bucket(rtype).get((namespace or "", name))
        if body is None:
            raise api_error(404, "Not Found")
        return copy.deepcopy(body)

    def replace(self, rtype, body):
        meta = body["metadata"]
        key = (meta.get("namespace", ""), meta["name"])
        bucket = self._bucket(rtype)
        if key not in bucket:
            raise api_error(404, "Not Found")
        pending = self.conflicts.get((rtype.name, meta["name"]), 0)
        if pending:
            self.conflicts[(rtype.name, meta["name"])] = pending - 1
            self.calls.append(("conflict", rtype.name, meta["name"]))
            raise api_error(409, "Conflict", '{"reason":"Conflict"}')
        if bucket[key]["metadata"].get("resourceVersion") != meta.get("resourceVersion"):
            raise api_error(409, "Conflict", '{"reason":"Conflict"}')
        body = copy.deepcopy(body)
        self._rv += 1
        body["metadata"]["resourceVersion"] = str(self._rv)
        bucket[key] = body
        self.calls.append(("replace", rtype.name, meta["name"]))
        return copy.deepcopy(body)

    def delete(self, rtype, name, namespace=None, grace_period_seconds=None, propagation_policy=None):
        if rtype.name in self.delete_errors:
            raise self.delete_errors[rtype.name]
        bucket = self._bucket(rtype)
        body = bucket.pop((namespace or "", name), None)
        if body is None:
            raise api_error(404, "Not Found")
        self.calls.append(("delete", rtype.name, name, grace_period_seconds, propagation_policy))
        if rtype.name == "namespaces":
            for objects in self.store.values():
                for key in [k for k in objects if k[0] == name]:
                    del objects[key]
        if rtype.name == "customresourcedefinitions":
            group, plural = body["spec"]["group"], body["spec"]["names"]["plural"]
            for (g, v), resources in list(self.served.items()):
                if g == group:
                    resources[:] = [r for r in resources if r["name"] != plural]
                    if not resources:
                        del self.served[(g, v)]

    # assertions

    def deleted(self, plural: Optional[str] = None) -> List[str]:
        return [c[2] for c in self.calls if c[0] == "delete" and (plural is None or c[1] == plural)]

    def replaced(self) -> List[str]:
        return [c[2] for c in self.calls if c[0] == "replace"]

    def index(self, verb: str, plural: str, name: str) -> int:
        for i, c in enumerate(self.calls):
            if c[0] == verb and c[1] == plural and c[2] == name:
                return i
        raise AssertionError(f"no {verb} of {plural}/{name} in {self.calls}")


MGMT = "management.cattle.io"
RBAC = "rbac.authorization.k8s.io"
CRD_GROUP = "apiextensions.k8s.io"


def crd(group: str, plural: str, kind: str) -> dict:
    return obj(
        "CustomResourceDefinition",
        f"{plural}.{group}",
        spec={"group": group, "names": {"plural": plural, "kind": kind}},
    )


def standard_cluster() -> FakeCluster:
    """A cluster with one installation in cattle-system and some bystanders."""
    c = FakeCluster()
    c.serve("", "v1", "namespaces", "Namespace", False)
    c.serve("", "v1", "secrets", "Secret", True)
    c.serve("", "v1", "configmaps", "ConfigMap", True)
    c.serve("", "v1", "pods/log", "Pod", True, verbs=["get"])
    c.serve("apps", "v1", "deployments", "Deployment", True)
    c.serve(RBAC, "v1", "clusterroles", "ClusterRole", False)
    c.serve(RBAC, "v1", "clusterrolebindings", "ClusterRoleBinding", False)
    c.serve(CRD_GROUP, "v1", "customresourcedefinitions", "CustomResourceDefinition", False)
    c.serve(MGMT, "v3", "projects", "Project", True)
    c.serve(MGMT, "v3", "clusters", "Cluster", False)
    c.serve(MGMT, "v3", "users", "User", False)
    c.serve(MGMT, "v3", "nodes", "Node", True)
    c.serve(MGMT, "v3", "settings", "Setting", False)
    c.serve("example.com", "v1", "widgets", "Widget", True)

    creator = {"cattle.io/creator": "norman"}
    for name in ("cattle-system", "kube-system", "team-b", "p-abc12", "c-xyz", "u-admin"):
        c.add("", "namespaces", obj("Namespace", name))
    c.add("apps", "deployments", obj("Deployment", "cattle", "cattle-system"))
    c.add("apps", "deployments", obj("Deployment", "coredns", "kube-system"))
    c.add(RBAC, "clusterroles", obj("ClusterRole", "cluster-owner"))
    c.add(RBAC, "clusterroles", obj("ClusterRole", "p-abc12-view", labels=creator))
    c.add(RBAC, "clusterroles", obj("ClusterRole", "admin"))
    c.add(RBAC, "clusterrolebindings", obj("ClusterRoleBinding", "crb-u-admin", labels=creator))
    c.add(RBAC, "clusterrolebindings", obj("ClusterRoleBinding", "cluster-admin"))
    c.add(MGMT, "projects", obj("Project", "p-abc12", "c-xyz", finalizers=["controller.cattle.io/project-precan"]))
    c.add(MGMT, "clusters", obj("Cluster", "c-xyz", finalizers=["controller.cattle.io/cluster-agent-controller"]))
    c.add(MGMT, "users", obj("User", "u-admin"))
    c.add(MGMT, "nodes", obj("Node", "m-1", "c-xyz"))
    c.add(MGMT, "settings", obj("Setting", "server-url"))
    c.add("example.com", "widgets", obj("Widget", "w1", "team-b"))
    c.add(CRD_GROUP, "customresourcedefinitions", crd(MGMT, "settings", "Setting"))
    c.add(CRD_GROUP, "customresourcedefinitions", crd("example.com", "widgets", "Widget"))
    c.add("", "secrets", obj(
        "Secret", "db", "team-b",
        labels={"cattle.io/creator": "norman", "app": "db"},
        annotations={"field.cattle.io/projectId": "c-xyz:p-abc12", "note": "keep"},
        finalizers=["controller.cattle.io/secrets-controller", "example.com/protect"],
        data={"password": "c2VjcmV0"},
    ))
    c.add("", "secrets", obj("Secret", "project-secret", "p-abc12", labels=creator))
    c.add("", "configmaps", obj("ConfigMap", "plain", "team-b", labels={"app": "x"}))
    return c


@pytest.fixture
def cfg() -> TeardownConfig:
    return TeardownConfig(workers=1, stage_interval=0.0, conflict_interval=0.0)


@pytest.fixture
def cluster() -> FakeCluster:
    return standard_cluster()


@pytest.fixture
def no_sleep():
    slept = []
    return slept.append
