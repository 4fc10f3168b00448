# config.py
from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from typing import FrozenSet

DEFAULT_NAMESPACE = "cattle-system"

STATIC_CLUSTER_ROLES = frozenset({
    "cluster-owner",
    "create-ns",
    "project-owner",
    "project-owner-promoted",
})

PROTECTED_NAMESPACES = frozenset({
    "kube-system",
    "kube-public",
    "kube-node-lease",
    "default",
})


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if not raw:
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    return float(raw)


@dataclass(frozen=True)
class TeardownConfig:
    """Identity of the installation being removed, plus run tuning.

    Built once per run and passed to every component.
    """

    namespace: str = DEFAULT_NAMESPACE
    controller_name: str = "controller.cattle.io"
    label_base: str = "cattle.io"
    creator_label: str = "cattle.io/creator"
    creator_value: str = "norman"
    management_group: str = "management.cattle.io"
    management_version: str = "v3"
    static_cluster_roles: FrozenSet[str] = STATIC_CLUSTER_ROLES
    protected_namespaces: FrozenSet[str] = PROTECTED_NAMESPACES

    stage_attempts: int = 3
    stage_interval: float = 2.0
    conflict_timeout: float = 60.0
    conflict_interval: float = 2.0
    aggregate_grace_seconds: int = 120
    workers: int = 4

    def __post_init__(self):
        if self.stage_attempts < 1:
            raise ValueError(f"stage attempts must be at least 1, got {self.stage_attempts}")
        if self.workers < 1:
            raise ValueError(f"workers must be at least 1, got {self.workers}")
        for name in ("stage_interval", "conflict_timeout", "conflict_interval", "aggregate_grace_seconds"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")

    @property
    def creator_selector(self) -> str:
        return f"{self.creator_label}={self.creator_value}"

    def with_namespace(self, namespace: str) -> "TeardownConfig":
        return replace(self, namespace=namespace)

    @classmethod
    def from_env(cls, **overrides) -> "TeardownConfig":
        """Defaults, then TEARDOWN_* / CATTLE_* environment, then explicit overrides."""
        base = cls()
        values = dict(
            label_base=os.environ.get("CATTLE_LABEL_BASE", base.label_base),
            controller_name=os.environ.get("CATTLE_CONTROLLER_NAME", base.controller_name),
            stage_attempts=_env_int("TEARDOWN_STAGE_ATTEMPTS", base.stage_attempts),
            stage_interval=_env_float("TEARDOWN_STAGE_INTERVAL", base.stage_interval),
            conflict_timeout=_env_float("TEARDOWN_CONFLICT_TIMEOUT", base.conflict_timeout),
            workers=_env_int("TEARDOWN_WORKERS", base.workers),
        )
        if values["label_base"] != base.label_base:
            values["creator_label"] = f"{values['label_base']}/creator"
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)


@dataclass(frozen=True)
class CollectorConfig:
    """One ephemeral per-node DaemonSet."""

    name: str
    namespace: str = DEFAULT_NAMESPACE
    # manifest template; rendered with the agent image
    template: str = ""
    # file each pod must hold before collection starts; {node} is the pod's node
    ready_marker: str = ""
    poll_interval: float = 1.0
    ready_timeout: float = field(default_factory=lambda: _env_float("COLLECTOR_READY_TIMEOUT", 300.0))
    agent_selector: str = "app=cattle-agent"
    agent_namespace: str = DEFAULT_NAMESPACE

    @property
    def selector(self) -> str:
        return f"k8s-app={self.name}"
