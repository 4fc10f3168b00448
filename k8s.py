# k8s.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.stream import stream

log = logging.getLogger("k8s")

NOT_FOUND = 404
CONFLICT = 409


def status_of(err: BaseException) -> Optional[int]:
    if isinstance(err, ApiException):
        return err.status
    return None


def is_not_found(err: BaseException) -> bool:
    return status_of(err) == NOT_FOUND


def is_conflict(err: BaseException) -> bool:
    # AlreadyExists is also a 409; it is told apart by the Status reason in the body.
    if status_of(err) != CONFLICT:
        return False
    return "AlreadyExists" not in str(getattr(err, "body", "") or "")


def is_already_exists(err: BaseException) -> bool:
    return status_of(err) == CONFLICT and not is_conflict(err)


def load_kube(kubeconfig: Optional[str] = None) -> client.ApiClient:
    if kubeconfig:
        config.load_kube_config(config_file=kubeconfig)
        log.info("using kubeconfig %s", kubeconfig)
        return client.ApiClient()
    try:
        config.load_incluster_config()
        log.info("using in-cluster config")
    except config.ConfigException:
        config.load_kube_config()
        log.info("using kubeconfig (local)")
    return client.ApiClient()


class KubeResources:
    """Discovery plus generic CRUD keyed by group/version/resource/namespace.

    Objects travel as plain dicts, the same way custom objects do in the
    kubernetes client, so unknown fields survive a get/replace round trip.
    """

    def __init__(self, api_client: client.ApiClient):
        self.api_client = api_client

    def _call(self, method: str, path: str, query=None, body=None) -> Any:
        return self.api_client.call_api(
            path,
            method,
            query_params=query or [],
            header_params={"Accept": "application/json", "Content-Type": "application/json"},
            body=body,
            response_type="object",
            auth_settings=["BearerToken"],
            _return_http_data_only=True,
            _preload_content=True,
        )

    # discovery

    def server_groups(self) -> List[Dict[str, str]]:
        """Every served API group with its preferred version; core group first."""
        groups: List[Dict[str, str]] = []
        core = self._call("GET", "/api") or {}
        versions = core.get("versions") or []
        if versions:
            groups.append({"name": "", "version": versions[0]})
        for g in (self._call("GET", "/apis") or {}).get("groups", []) or []:
            preferred = g.get("preferredVersion") or (g.get("versions") or [{}])[0]
            version = preferred.get("version")
            if version:
                groups.append({"name": g.get("name", ""), "version": version})
        return groups

    def server_resources(self, group: str, version: str) -> List[Dict[str, Any]]:
        path = "/api/v1" if not group else f"/apis/{group}/{version}"
        return (self._call("GET", path) or {}).get("resources", []) or []

    # objects

    @staticmethod
    def _path(rtype, namespace: Optional[str] = None, name: Optional[str] = None) -> str:
        base = f"/api/{rtype.version}" if not rtype.group else f"/apis/{rtype.group}/{rtype.version}"
        if rtype.namespaced and namespace:
            base = f"{base}/namespaces/{namespace}"
        path = f"{base}/{rtype.name}"
        if name:
            path = f"{path}/{name}"
        return path

    def list(self, rtype, namespace: Optional[str] = None, label_selector: Optional[str] = None) -> List[dict]:
        query = [("labelSelector", label_selector)] if label_selector else []
        res = self._call("GET", self._path(rtype, namespace), query=query) or {}
        items = res.get("items", []) or []
        for item in items:
            item.setdefault("apiVersion", rtype.group_version)
            item.setdefault("kind", rtype.kind)
        return items

    def get(self, rtype, name: str, namespace: Optional[str] = None) -> dict:
        return self._call("GET", self._path(rtype, namespace, name))

    def replace(self, rtype, body: dict) -> dict:
        meta = body.get("metadata", {}) or {}
        return self._call("PUT", self._path(rtype, meta.get("namespace"), meta.get("name")), body=body)

    def delete(
        self,
        rtype,
        name: str,
        namespace: Optional[str] = None,
        grace_period_seconds: Optional[int] = None,
        propagation_policy: Optional[str] = None,
    ) -> None:
        body: Dict[str, Any] = {"apiVersion": "v1", "kind": "DeleteOptions"}
        if grace_period_seconds is not None:
            body["gracePeriodSeconds"] = grace_period_seconds
        if propagation_policy:
            body["propagationPolicy"] = propagation_policy
        self._call("DELETE", self._path(rtype, namespace, name), body=body)


class PodExecError(Exception):
    def __init__(self, pod, returncode: int, stderr: str = ""):
        self.pod = pod
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            f"command terminated with exit code {returncode} on pod "
            f"[{pod.metadata.namespace}/{pod.metadata.name}]: {stderr.strip()}"
        )


def pod_exec(corev1, pod, command: List[str], timeout: Optional[float] = None) -> str:
    """Run a command in the pod's first container and return its stdout."""
    resp = stream(
        corev1.connect_get_namespaced_pod_exec,
        pod.metadata.name,
        pod.metadata.namespace,
        container=pod.spec.containers[0].name,
        command=command,
        stderr=True,
        stdin=False,
        stdout=True,
        tty=False,
        _preload_content=False,
    )
    try:
        resp.run_forever(timeout=timeout)
        out = resp.read_stdout()
        err = resp.read_stderr()
        code = resp.returncode
    finally:
        resp.close()
    if code:
        raise PodExecError(pod, code, err)
    return out
