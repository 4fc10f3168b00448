# teardown/objects.py
from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple


@dataclass(frozen=True)
class OwnerRef:
    uid: str
    kind: str
    name: str = ""


class LiveObject:
    """Read-only view of the metadata this tool cares about.

    The raw document is kept whole so an update writes back every field the
    tool does not understand.
    """

    __slots__ = ("raw",)

    def __init__(self, raw: dict):
        self.raw = raw or {}

    def _meta(self) -> dict:
        return self.raw.get("metadata", {}) or {}

    @property
    def name(self) -> str:
        return self._meta().get("name", "")

    @property
    def namespace(self) -> Optional[str]:
        return self._meta().get("namespace") or None

    @property
    def uid(self) -> str:
        return self._meta().get("uid", "")

    @property
    def resource_version(self) -> str:
        return self._meta().get("resourceVersion", "")

    @property
    def kind(self) -> str:
        return self.raw.get("kind", "")

    @property
    def labels(self) -> Dict[str, str]:
        return dict(self._meta().get("labels", {}) or {})

    @property
    def annotations(self) -> Dict[str, str]:
        return dict(self._meta().get("annotations", {}) or {})

    @property
    def finalizers(self) -> Tuple[str, ...]:
        return tuple(self._meta().get("finalizers", []) or [])

    @property
    def owner_references(self) -> List[OwnerRef]:
        return [
            OwnerRef(uid=r.get("uid", ""), kind=r.get("kind", ""), name=r.get("name", ""))
            for r in self._meta().get("ownerReferences", []) or []
        ]

    @property
    def spec(self) -> dict:
        return self.raw.get("spec", {}) or {}

    def ref(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def with_metadata(self, labels=None, annotations=None, finalizers=None) -> dict:
        """Copy of the raw document with only the given metadata fields replaced."""
        out = copy.deepcopy(self.raw)
        meta = out.setdefault("metadata", {})
        for key, value in (("labels", labels), ("annotations", annotations), ("finalizers", finalizers)):
            if value is None:
                continue
            if value:
                meta[key] = dict(value) if isinstance(value, dict) else list(value)
            else:
                meta.pop(key, None)
        return out

    def __repr__(self) -> str:
        return f"LiveObject({self.kind or '?'} {self.ref()})"
