# collect/logs.py
from __future__ import annotations

import base64
import io
import logging
import tarfile
from typing import Optional

from collect import templates
from collect.collector import CancelToken, CollectorError, CollectorJobSet, agent_image
from config import CollectorConfig
from k8s import pod_exec
from teardown.marks import carries

log = logging.getLogger("collector")

RKE_CLUSTER = "RKE"
RKE_ANNOTATION_BASE = "rke.cattle.io"

LOG_COLLECTOR = CollectorConfig(
    name="log-collector",
    template=templates.LOG_COLLECTOR,
    ready_marker="/tmp/{node}.tar",
)


def is_rke_node(node) -> bool:
    annotations = node.metadata.annotations or {}
    return any(carries(k, RKE_ANNOTATION_BASE) for k in annotations)


def cluster_provider(corev1) -> str:
    # nodes are the only place the provider shows up
    for node in corev1.list_node().items:
        if is_rke_node(node):
            return RKE_CLUSTER
    raise CollectorError("can't figure out cluster provider, only RKE clusters are supported")


def add_to_tarball(out: tarfile.TarFile, data: bytes) -> int:
    """Append every member of the tar archive ``data`` to ``out``."""
    n = 0
    with tarfile.open(fileobj=io.BytesIO(data), mode="r:") as src:
        for member in src:
            fileobj = src.extractfile(member) if member.isfile() else None
            out.addfile(member, fileobj)
            n += 1
    return n


def read_file_from_pod(jobs: CollectorJobSet, pod, path: str) -> bytes:
    # exec output is text; base64 keeps the archive intact
    encoded = jobs.exec(pod, ["sh", "-c", f"base64 < {path}"])
    return base64.b64decode("".join(encoded.split()))


def collect_logs(
    appsv1,
    corev1,
    output: str,
    node: Optional[str] = None,
    image: Optional[str] = None,
    cancel: Optional[CancelToken] = None,
    exec_fn=pod_exec,
    cfg: CollectorConfig = LOG_COLLECTOR,
) -> int:
    """Gather node logs into ``output``; returns how many nodes were fetched."""
    if not output:
        raise CollectorError("please choose an output file name for the logs tarball")
    cluster_provider(corev1)
    image = image or agent_image(corev1, cfg)

    jobs = CollectorJobSet(appsv1, corev1, cfg, image, cancel=cancel, exec_fn=exec_fn)
    fetched = 0
    with jobs.deployed(), tarfile.open(output, mode="w") as out:
        log.info("starting log collection..")
        for pod in jobs.pods(node):
            if jobs.cancel.cancelled:
                log.info("log collection interrupted after %d node(s)", fetched)
                break
            node_name = pod.spec.node_name
            log.info("fetching logs from node [%s]..", node_name)
            data = read_file_from_pod(jobs, pod, f"/tmp/{node_name}.tar")
            add_to_tarball(out, data)
            fetched += 1
    log.info("wrote logs of %d node(s) to %s", fetched, output)
    return fetched
