# teardown/sweep.py
from __future__ import annotations

import logging
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, Tuple

from teardown.classify import Verdict, describe
from teardown.discovery import ResourceType
from teardown.objects import LiveObject

log = logging.getLogger("teardown")

Batch = Tuple[ResourceType, List[LiveObject]]


@dataclass
class SweepResult:
    name: str
    action: str
    seen: int = 0
    # "Kind [ns/name]" for every object acted on (or that would be, in a dry run)
    affected: List[str] = field(default_factory=list)
    untouched: int = 0


class Sweep:
    """List a family of objects, classify each one and act on the chosen ones.

    Every stage of the teardown is one of these; only the lister, the
    predicate and the action differ. Objects of one resource type are acted
    on concurrently by up to ``workers`` threads. The first failure cancels
    the queued work and propagates.
    """

    def __init__(
        self,
        name: str,
        action: str,
        targets: Callable[[], Iterable[Batch]],
        classify: Callable[[LiveObject, ResourceType], Verdict],
        wants: Callable[[LiveObject, Verdict], bool],
        act: Callable[[ResourceType, LiveObject], bool],
        workers: int = 1,
    ):
        self.name = name
        self.action = action
        self.targets = targets
        self.classify = classify
        self.wants = wants
        self.act = act
        self.workers = max(1, workers)

    def select(self, rtype: ResourceType, objects: Iterable[LiveObject]) -> List[LiveObject]:
        return [o for o in objects if self.wants(o, self.classify(o, rtype))]

    def run(self, dry_run: bool = False) -> SweepResult:
        result = SweepResult(self.name, self.action)
        for rtype, objects in self.targets():
            log.debug("checking API resource [%s]", rtype)
            result.seen += len(objects)
            chosen = self.select(rtype, objects)
            result.untouched += len(objects) - len(chosen)
            if dry_run:
                result.affected.extend(describe(o, rtype) for o in chosen)
                continue
            for obj in self._act_all(rtype, chosen):
                result.affected.append(describe(obj, rtype))
        return result

    def _act_one(self, rtype: ResourceType, obj: LiveObject) -> Optional[LiveObject]:
        try:
            changed = self.act(rtype, obj)
        except Exception as e:
            log.error("failed to %s %s: %s", self.action, describe(obj, rtype), e)
            raise
        return obj if changed else None

    def _act_all(self, rtype: ResourceType, objects: List[LiveObject]) -> List[LiveObject]:
        if self.workers == 1 or len(objects) < 2:
            done = [self._act_one(rtype, o) for o in objects]
            return [o for o in done if o is not None]

        with ThreadPoolExecutor(max_workers=self.workers) as executor:
            futures = [executor.submit(self._act_one, rtype, o) for o in objects]
            _, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for f in pending:
                f.cancel()
        out: List[LiveObject] = []
        for f in futures:
            if f.cancelled():
                continue
            obj = f.result()
            if obj is not None:
                out.append(obj)
        return out
