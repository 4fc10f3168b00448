# gate.py
from __future__ import annotations

from dataclasses import dataclass
from typing import List

from teardown.marks import carries

# label bases that would match Kubernetes' own keys
RESERVED_BASES = ("kubernetes.io", "k8s.io")


@dataclass
class GateResult:
    ok: bool
    errors: List[str]
    warnings: List[str]


def validate_remove_gate(cfg, namespace_exists: bool) -> GateResult:
    """Refuse a removal whose target would reach past the installation.

    This gate is intentionally conservative. It catches the settings that turn
    a teardown into an outage:
    - the target namespace is empty or one the cluster itself depends on
    - the label base or controller name would match Kubernetes' own keys
    """

    errors: List[str] = []
    warnings: List[str] = []

    ns = (cfg.namespace or "").strip()
    if not ns:
        errors.append("No installation namespace given.")
    elif ns in cfg.protected_namespaces:
        errors.append(f"Namespace {ns} belongs to the cluster itself and will not be removed.")

    for what, value in (("label base", cfg.label_base), ("controller name", cfg.controller_name)):
        if not value:
            errors.append(f"Empty {what}: every key would count as an installation mark.")
            continue
        for reserved in RESERVED_BASES:
            if carries(value, reserved) or carries(reserved, value):
                errors.append(f"The {what} {value} overlaps {reserved}; cluster objects would be stripped.")

    if ns and not namespace_exists:
        warnings.append(f"Namespace {ns} is already gone; sweeping leftovers only.")

    ok = len(errors) == 0
    return GateResult(ok=ok, errors=errors, warnings=warnings)
