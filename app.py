# app.py
from __future__ import annotations

import argparse
import logging
import os
import sys
from typing import List, Optional

from kubernetes import client
from kubernetes.client.rest import ApiException

from collect.collector import CancelToken, CollectorError, install_signal_handlers
from collect.logs import collect_logs
from collect.stats import DEFAULT_STATS_COMMAND, collect_stats
from config import DEFAULT_NAMESPACE, TeardownConfig
from gate import validate_remove_gate
from k8s import KubeResources, is_not_found, load_kube
from reconcile import StageFailed, Teardown, print_report
from teardown.discovery import NAMESPACES

log = logging.getLogger("teardown")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_REFUSED = 2


# ─────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────
def setup_logging(debug: bool) -> None:
    level = logging.DEBUG if debug else os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(levelname)s [%(name)s] %(message)s")
    # the client's urllib3 pool is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def namespace_exists(resources: KubeResources, name: str) -> bool:
    try:
        resources.get(NAMESPACES, name)
    except Exception as e:
        if is_not_found(e):
            return False
        raise
    return True


def confirm(namespace: str) -> bool:
    print(f"Are you sure you want to remove the management plane installed in namespace [{namespace}]")
    answer = input("and every object it created from this cluster? [y/N]: ")
    return answer.strip().lower() in ("y", "yes")


# ─────────────────────────────────────────────
# Commands
# ─────────────────────────────────────────────
def do_remove(args) -> int:
    try:
        cfg = TeardownConfig.from_env(namespace=args.namespace)
    except ValueError as e:
        log.error("invalid configuration: %s", e)
        return EXIT_REFUSED
    resources = KubeResources(load_kube(args.kubeconfig))

    gate = validate_remove_gate(cfg, namespace_exists(resources, cfg.namespace))
    for w in gate.warnings:
        log.warning("gate warning: %s", w)
    if not gate.ok:
        log.error("remove gate FAILED; refusing to touch the cluster")
        for e in gate.errors:
            log.error("gate error:   %s", e)
        return EXIT_REFUSED

    if not args.dry_run and not args.force and not confirm(cfg.namespace):
        log.info("nothing removed")
        return EXIT_OK

    teardown = Teardown(cfg, resources)
    try:
        report = teardown.run(dry_run=args.dry_run)
    except StageFailed as e:
        log.error("removal stopped at stage [%s]: %s", e.stage, e.cause)
        return EXIT_FAILED
    print_report(report)
    if not args.dry_run:
        log.info("management plane removed from namespace [%s]", cfg.namespace)
    return EXIT_OK


def _collector_apis(args):
    api_client = load_kube(args.kubeconfig)
    return client.AppsV1Api(api_client), client.CoreV1Api(api_client)


def do_logs(args) -> int:
    appsv1, corev1 = _collector_apis(args)
    token = CancelToken()
    restore = install_signal_handlers(token)
    try:
        collect_logs(appsv1, corev1, args.output, node=args.node, image=args.image, cancel=token)
    except CollectorError as e:
        log.error("%s", e)
        return EXIT_FAILED
    finally:
        restore()
    return EXIT_OK


def do_stats(args) -> int:
    appsv1, corev1 = _collector_apis(args)
    token = CancelToken()
    restore = install_signal_handlers(token)
    try:
        collect_stats(appsv1, corev1, node=args.node, command=args.stats_command, image=args.image, cancel=token)
    except CollectorError as e:
        log.error("%s", e)
        return EXIT_FAILED
    finally:
        restore()
    return EXIT_OK


# ─────────────────────────────────────────────
# Main
# ─────────────────────────────────────────────
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cattle-cleanup",
        description="Remove a management-plane installation from a cluster, or collect node logs and stats.",
    )
    parser.add_argument(
        "-c", "--kubeconfig",
        default=os.environ.get("KUBECONFIG"),
        help="cluster kubeconfig (default: $KUBECONFIG, then in-cluster, then ~/.kube/config)",
    )
    parser.add_argument("--debug", action="store_true", help="enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    remove = sub.add_parser("remove", help="remove the management plane and everything it created")
    remove.add_argument("-n", "--namespace", default=DEFAULT_NAMESPACE, help="installation namespace")
    remove.add_argument("--force", action="store_true", help="skip the confirmation prompt")
    remove.add_argument("--dry-run", action="store_true", help="print what would be removed and change nothing")
    remove.set_defaults(func=do_remove)

    logs = sub.add_parser("logs", help="fetch node logs into a tarball")
    logs.add_argument("-o", "--output", default="cluster-logs.tar", help="cluster logs tarball")
    logs.add_argument("-n", "--node", help="fetch logs for a single node")
    logs.add_argument("--image", help="collector image (default: the cluster agent image)")
    logs.set_defaults(func=do_logs)

    stats = sub.add_parser("stats", help="show live node stats until interrupted")
    stats.add_argument("-n", "--node", help="show stats for a single node")
    stats.add_argument("-s", "--stats-command", default=DEFAULT_STATS_COMMAND,
                       help="alternative command to run on the nodes")
    stats.add_argument("--image", help="collector image (default: the cluster agent image)")
    stats.set_defaults(func=do_stats)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.debug)
    try:
        return args.func(args)
    except KeyboardInterrupt:
        log.info("interrupted")
        return EXIT_FAILED
    except ApiException as e:
        log.error("kubernetes API error: %s %s", e.status, e.reason)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
