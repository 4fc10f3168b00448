# teardown/strip.py
from __future__ import annotations

import logging
import time
from typing import Callable, Iterator

from k8s import is_not_found
from teardown.classify import Classifier, Verdict
from teardown.discovery import ResourceCatalog
from teardown.marks import marked_finalizers, marked_keys
from teardown.objects import LiveObject
from teardown.retry import retry_until
from teardown.sweep import Batch, Sweep

log = logging.getLogger("teardown")


def strip_marks(obj: LiveObject, cfg) -> dict:
    """Raw document without installation finalizers, labels and annotations.

    The creator-attribution label survives; see release_creator().
    """
    drop_fin = set(marked_finalizers(obj.finalizers, cfg.controller_name))
    labels = obj.labels
    for k in marked_keys(labels, cfg.label_base, keep=[cfg.creator_label]):
        del labels[k]
    annotations = obj.annotations
    for k in marked_keys(annotations, cfg.label_base):
        del annotations[k]
    return obj.with_metadata(
        labels=labels,
        annotations=annotations,
        finalizers=[f for f in obj.finalizers if f not in drop_fin],
    )


def release_creator(obj: LiveObject, cfg) -> dict:
    labels = obj.labels
    labels.pop(cfg.creator_label, None)
    return obj.with_metadata(labels=labels)


def _unchanged(before: LiveObject, after: dict) -> bool:
    a = LiveObject(after)
    return (
        before.labels == a.labels
        and before.annotations == a.annotations
        and before.finalizers == a.finalizers
    )


class MarkStripper:
    """Writes stripped objects back, refetching on every conflict."""

    def __init__(self, resources, cfg, rewrite: Callable[[LiveObject, object], dict] = strip_marks,
                 sleep: Callable[[float], None] = time.sleep):
        self.resources = resources
        self.cfg = cfg
        self.rewrite = rewrite
        self.sleep = sleep

    def strip(self, rtype, obj: LiveObject) -> bool:
        """True when the object was written, False when nothing needed to change."""
        written = []

        def attempt():
            current = LiveObject(self.resources.get(rtype, obj.name, obj.namespace))
            body = self.rewrite(current, self.cfg)
            if _unchanged(current, body):
                return
            log.debug("writing %s at resourceVersion %s", current.ref(), current.resource_version)
            self.resources.replace(rtype, body)
            written.append(True)

        try:
            retry_until(
                attempt,
                timeout=self.cfg.conflict_timeout,
                interval=self.cfg.conflict_interval,
                sleep=self.sleep,
            )
        except Exception as e:
            if not is_not_found(e):
                raise
            log.info("%s is already gone", obj.ref())
            return False
        if written:
            log.info("cleaned %s", obj.ref())
        return bool(written)


def _discovered(catalog: ResourceCatalog) -> Iterator[Batch]:
    for rtype in catalog.walk(mutable_only=True):
        if not rtype.listable:
            continue
        objects = catalog.list_objects(rtype)
        if objects is None:
            continue
        yield rtype, objects


def mark_sweep(resources, cfg, classifier: Classifier, sleep=time.sleep) -> Sweep:
    """Strip installation marks from every object of every updatable type.

    Owned objects are stripped too so their deletion in a later stage is not
    held up by an installation finalizer nobody will ever remove.
    """
    stripper = MarkStripper(resources, cfg, strip_marks, sleep=sleep)
    catalog = ResourceCatalog(resources)
    return Sweep(
        name="marks",
        action="strip",
        targets=lambda: _discovered(catalog),
        classify=classifier.classify,
        wants=lambda o, v: v is not Verdict.UNRELATED and not _unchanged(o, strip_marks(o, cfg)),
        act=stripper.strip,
        workers=cfg.workers,
    )


def creator_sweep(resources, cfg, classifier: Classifier, sleep=time.sleep) -> Sweep:
    """Remove the creator-attribution label from whatever survived the teardown."""
    stripper = MarkStripper(resources, cfg, release_creator, sleep=sleep)
    catalog = ResourceCatalog(resources)
    return Sweep(
        name="creator-labels",
        action="strip",
        targets=lambda: _discovered(catalog),
        classify=classifier.classify,
        wants=lambda o, v: cfg.creator_label in o.labels,
        act=stripper.strip,
        workers=cfg.workers,
    )
