# collect/stats.py
from __future__ import annotations

import logging
from typing import Callable, Optional

from collect import templates
from collect.collector import CancelToken, CollectorJobSet, agent_image, still_starting
from config import CollectorConfig
from k8s import pod_exec

log = logging.getLogger("collector")

DEFAULT_STATS_COMMAND = "/usr/bin/sar -u -r -F 1 1"
STATS_INTERVAL = 5.0

STATS_COLLECTOR = CollectorConfig(name="stats-collector", template=templates.STATS_COLLECTOR)


def collect_stats(
    appsv1,
    corev1,
    node: Optional[str] = None,
    command: str = DEFAULT_STATS_COMMAND,
    image: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
    exec_fn=pod_exec,
    out: Callable[[str], None] = print,
    interval: float = STATS_INTERVAL,
    rounds: Optional[int] = None,
    cfg: CollectorConfig = STATS_COLLECTOR,
) -> int:
    """Print ``command`` output from every collector pod until cancelled.

    ``rounds`` bounds the number of passes; None runs until the token is
    cancelled. Returns the number of passes made.
    """
    image = image or agent_image(corev1, cfg)
    jobs = CollectorJobSet(appsv1, corev1, cfg, image, cancel=cancel, exec_fn=exec_fn)
    done = 0
    with jobs.deployed():
        pods = jobs.pods(node)
        while not jobs.cancel.cancelled:
            for pod in pods:
                if jobs.cancel.cancelled:
                    break
                node_name = pod.spec.node_name
                log.info("node stats for [%s]..", node_name)
                try:
                    text = jobs.exec(pod, ["sh", "-c", command])
                except Exception as e:
                    if still_starting(e):
                        log.info(
                            "waiting for collector pod [%s/%s] on [%s] to be ready..",
                            pod.metadata.namespace, pod.metadata.name, node_name,
                        )
                    else:
                        log.warning(
                            "error executing command on pod [%s/%s] on [%s]: %s",
                            pod.metadata.namespace, pod.metadata.name, node_name, e,
                        )
                    continue
                out(f"{text}\n")
            done += 1
            if rounds is not None and done >= rounds:
                break
            jobs.cancel.wait(interval)
    return done
