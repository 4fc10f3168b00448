# collect/collector.py
"""Ephemeral per-node DaemonSets used to gather logs and stats.

A collector is deployed, waited on until every scheduled pod is ready, used
through pod exec, and always deleted again, even when collection fails or
the operator interrupts the run.
"""

from __future__ import annotations

import contextlib
import enum
import logging
import signal
import threading
import time
from typing import Callable, Iterator, List, Optional

from kubernetes.client.rest import ApiException

from collect.templates import render_daemonset
from config import CollectorConfig
from k8s import PodExecError, is_already_exists, is_not_found, pod_exec

log = logging.getLogger("collector")


class CollectorError(Exception):
    pass


class CollectorTimeout(CollectorError):
    pass


class CollectorCancelled(CollectorError):
    pass


class State(str, enum.Enum):
    ABSENT = "absent"
    DEPLOYING = "deploying"
    READY = "ready"
    COLLECTING = "collecting"
    TEARING_DOWN = "tearing-down"


class CancelToken:
    """Cooperative cancellation shared between signal handlers and polling loops."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; True if cancelled meanwhile."""
        return self._event.wait(seconds)


def install_signal_handlers(token: CancelToken) -> Callable[[], None]:
    """Cancel ``token`` on SIGINT/SIGTERM. Returns a function restoring the old handlers."""

    def _handler(signum, frame):
        log.info("user interrupt..cleaning up..")
        token.cancel()

    previous = {sig: signal.signal(sig, _handler) for sig in (signal.SIGINT, signal.SIGTERM)}

    def restore() -> None:
        for sig, handler in previous.items():
            signal.signal(sig, handler)

    return restore


def agent_image(corev1, cfg: CollectorConfig) -> str:
    pods = corev1.list_namespaced_pod(cfg.agent_namespace, label_selector=cfg.agent_selector).items
    for pod in pods:
        return pod.spec.containers[0].image
    raise CollectorError("can't find node agent image on this cluster")


def still_starting(err: BaseException) -> bool:
    """The pod exists but its container can't run commands yet."""
    if isinstance(err, PodExecError) and err.returncode == 127:
        return True
    msg = str(err)
    return "exit code 127" in msg or "unable to upgrade connection" in msg


class CollectorJobSet:
    def __init__(
        self,
        appsv1,
        corev1,
        cfg: CollectorConfig,
        image: str,
        cancel: Optional[CancelToken] = None,
        exec_fn: Callable = pod_exec,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.appsv1 = appsv1
        self.corev1 = corev1
        self.cfg = cfg
        self.image = image
        self.cancel = cancel or CancelToken()
        self.exec_fn = exec_fn
        self.clock = clock
        self.state = State.ABSENT
        self.uid: Optional[str] = None

    def _enter(self, state: State) -> None:
        log.debug("DaemonSet [%s]: %s -> %s", self.cfg.name, self.state.value, state.value)
        self.state = state

    def manifest(self) -> dict:
        return render_daemonset(self.cfg.template, self.image, namespace=self.cfg.namespace)

    def deploy(self) -> None:
        self._enter(State.DEPLOYING)
        log.info("deploying DaemonSet [%s]..", self.cfg.name)
        try:
            self.appsv1.create_namespaced_daemon_set(self.cfg.namespace, self.manifest())
        except ApiException as e:
            if not is_already_exists(e):
                raise
            log.info("DaemonSet [%s] already exists, reusing it", self.cfg.name)

    def _poll(self, what: str, done: Callable[[], bool]) -> None:
        deadline = self.clock() + self.cfg.ready_timeout
        while True:
            if self.cancel.cancelled:
                raise CollectorCancelled(f"cancelled while waiting for {what}")
            if done():
                return
            if self.clock() >= deadline:
                raise CollectorTimeout(f"timed out after {self.cfg.ready_timeout:.0f}s waiting for {what}")
            self.cancel.wait(self.cfg.poll_interval)

    def _scheduled(self) -> bool:
        ds = self.appsv1.read_namespaced_daemon_set(self.cfg.name, self.cfg.namespace)
        self.uid = ds.metadata.uid
        status = ds.status
        if status is None or status.desired_number_scheduled is None:
            return False
        return (status.number_ready or 0) == status.desired_number_scheduled

    def _marker_present(self, pod) -> bool:
        path = self.cfg.ready_marker.format(node=pod.spec.node_name)
        try:
            self.exec_fn(self.corev1, pod, ["test", "-f", path])
        except (PodExecError, ApiException) as e:
            log.debug("pod [%s] not done yet: %s", pod.metadata.name, e)
            return False
        return True

    def wait_ready(self) -> None:
        log.info("waiting for DaemonSet [%s] to be ready..", self.cfg.name)
        self._poll(f"DaemonSet [{self.cfg.name}]", self._scheduled)
        if self.cfg.ready_marker:
            self._poll(
                f"{self.cfg.ready_marker} in [{self.cfg.name}] pods",
                lambda: all(self._marker_present(p) for p in self.pods()),
            )
        self._enter(State.READY)
        log.info("DaemonSet [%s] deployed successfully..", self.cfg.name)

    def pods(self, node: Optional[str] = None) -> List:
        """Pods this DaemonSet runs, optionally only the one on ``node``."""
        out = []
        items = self.corev1.list_namespaced_pod(self.cfg.namespace, label_selector=self.cfg.selector).items
        for pod in items:
            refs = pod.metadata.owner_references or []
            # ignore pods that we didn't run
            if not any(r.uid == self.uid for r in refs):
                continue
            if node and pod.spec.node_name != node:
                continue
            out.append(pod)
        return out

    def exec(self, pod, command: List[str]) -> str:
        return self.exec_fn(self.corev1, pod, command)

    def remove(self) -> None:
        self._enter(State.TEARING_DOWN)
        log.info("removing DaemonSet [%s]..", self.cfg.name)
        try:
            self.appsv1.delete_namespaced_daemon_set(self.cfg.name, self.cfg.namespace)
        except ApiException as e:
            if not is_not_found(e):
                raise
        self._enter(State.ABSENT)
        log.info("DaemonSet [%s] removed successfully..", self.cfg.name)

    @contextlib.contextmanager
    def deployed(self) -> Iterator["CollectorJobSet"]:
        try:
            self.deploy()
            self.wait_ready()
            self._enter(State.COLLECTING)
            yield self
        finally:
            self.remove()
