# teardown/marks.py
from __future__ import annotations

from typing import Dict, Iterable, List


def key_domain(key: str) -> str:
    """Prefix part of a label/annotation/finalizer key ("a.b.io/x" -> "a.b.io")."""
    return key.split("/", 1)[0] if "/" in key else key


def carries(key: str, base: str) -> bool:
    domain = key_domain(key)
    return domain == base or domain.endswith("." + base)


def marked_finalizers(finalizers: Iterable[str], controller_name: str) -> List[str]:
    return [f for f in finalizers if carries(f, controller_name)]


def marked_keys(m: Dict[str, str], label_base: str, keep: Iterable[str] = ()) -> List[str]:
    keep = set(keep)
    return [k for k in m if carries(k, label_base) and k not in keep]


def has_mark(obj, cfg) -> bool:
    """Any installation finalizer, label or annotation, the creator label included."""
    if marked_finalizers(obj.finalizers, cfg.controller_name):
        return True
    if marked_keys(obj.labels, cfg.label_base):
        return True
    return bool(marked_keys(obj.annotations, cfg.label_base))
