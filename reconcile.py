# reconcile.py
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, List

from teardown.cascade import (
    CascadeDeleter,
    api_group_sweep,
    cluster_role_binding_sweep,
    cluster_role_sweep,
    crd_sweep,
    deployment_sweep,
    management_sweeps,
    namespace_sweep,
)
from teardown.classify import Classifier
from teardown.management import ManagementClient
from teardown.retry import RetryPolicy, run_with_policy
from teardown.strip import creator_sweep, mark_sweep
from teardown.sweep import Sweep, SweepResult

log = logging.getLogger("teardown")


class TeardownReport(dict):
    """A small, json-serializable summary of one run (or one preview)."""

    # kept as dict subclass for easy printing/JSON dumping


class StageFailed(Exception):
    def __init__(self, stage: str, cause: BaseException):
        self.stage = stage
        self.cause = cause
        super().__init__(f"stage [{stage}] failed: {cause}")


@dataclass
class Stage:
    name: str
    action: str
    sweep: Sweep
    policy: RetryPolicy


TeardownPlan = List[Stage]


class Teardown:
    """Removes one installation: builds the ordered stages and runs them."""

    def __init__(self, cfg, resources, sleep: Callable[[float], None] = time.sleep):
        self.cfg = cfg
        self.resources = resources
        self.sleep = sleep
        self.classifier = Classifier(cfg)
        self.deleter = CascadeDeleter(resources, cfg, self.classifier, sleep=sleep)
        self.management = ManagementClient(resources, cfg)

    def stages(self) -> TeardownPlan:
        cfg = self.cfg
        policy = RetryPolicy(attempts=cfg.stage_attempts, interval=cfg.stage_interval)
        sweeps = [
            deployment_sweep(self.deleter),
            cluster_role_binding_sweep(self.deleter),
            cluster_role_sweep(self.deleter),
            # marks go before any namespace delete so nothing hangs on a finalizer
            mark_sweep(self.resources, cfg, self.classifier, sleep=self.sleep),
            *management_sweeps(self.deleter, self.management),
            api_group_sweep(self.deleter),
            crd_sweep(self.deleter),
            creator_sweep(self.resources, cfg, self.classifier, sleep=self.sleep),
            namespace_sweep(self.deleter),
        ]
        return [Stage(s.name, s.action, s, policy) for s in sweeps]

    def _run_stage(self, stage: Stage, dry_run: bool) -> SweepResult:
        log.info("%s stage [%s]..", "previewing" if dry_run else "running", stage.name)
        try:
            result = run_with_policy(lambda: stage.sweep.run(dry_run=dry_run), stage.policy, sleep=self.sleep)
        except Exception as e:
            log.error("stage [%s] failed: %s", stage.name, e)
            raise StageFailed(stage.name, e) from e
        if result is None:
            # the stage's listing itself came back not-found: nothing left to do
            result = SweepResult(stage.name, stage.action)
        log.info("stage [%s] done: %d %s", stage.name, len(result.affected), _verb(stage.action, dry_run))
        return result

    def run(self, dry_run: bool = False) -> TeardownReport:
        results = [self._run_stage(stage, dry_run) for stage in self.stages()]
        counts = {"delete": 0, "strip": 0}
        for r in results:
            counts[r.action] = counts.get(r.action, 0) + len(r.affected)
        return TeardownReport(
            namespace=self.cfg.namespace,
            dry_run=dry_run,
            counts=counts,
            stages=[
                {
                    "name": r.name,
                    "action": r.action,
                    "seen": r.seen,
                    "untouched": r.untouched,
                    "affected": list(r.affected),
                }
                for r in results
            ],
        )


def _verb(action: str, dry_run: bool) -> str:
    past = {"delete": "deleted", "strip": "stripped"}.get(action, action)
    return f"would be {past}" if dry_run else past


def print_report(report: TeardownReport) -> None:
    tag = "plan" if report.get("dry_run") else "remove"
    counts = report.get("counts", {})
    print(f"[{tag}] namespace={report.get('namespace')} delete={counts.get('delete', 0)} strip={counts.get('strip', 0)}")
    for stage in report.get("stages", []) or []:
        items = stage.get("affected", []) or []
        if not items:
            continue
        print(f"[{tag}] {stage['name']} ({_verb(stage['action'], bool(report.get('dry_run')))}):")
        for name in items:
            print(f"  - {name}")
