# teardown/management.py
from __future__ import annotations

import logging
from typing import List

from k8s import is_not_found
from teardown.discovery import ALL_VERBS, ResourceType
from teardown.objects import LiveObject

log = logging.getLogger("teardown")


class ManagementClient:
    """Typed access to the aggregates of the management API.

    Projects, clusters, users and nodes are custom objects of the management
    group; once their CRDs are gone every list is simply empty.
    """

    def __init__(self, resources, cfg):
        self.resources = resources
        g, v = cfg.management_group, cfg.management_version
        self.projects = ResourceType(g, v, "projects", "Project", True, ALL_VERBS)
        self.clusters = ResourceType(g, v, "clusters", "Cluster", False, ALL_VERBS)
        self.users = ResourceType(g, v, "users", "User", False, ALL_VERBS)
        self.nodes = ResourceType(g, v, "nodes", "Node", True, ALL_VERBS)

    def _list(self, rtype: ResourceType) -> List[LiveObject]:
        try:
            items = self.resources.list(rtype)
        except Exception as e:
            if not is_not_found(e):
                raise
            log.info("no %s served by the management API", rtype.name)
            return []
        return [LiveObject(i) for i in items]

    def list_projects(self) -> List[LiveObject]:
        return self._list(self.projects)

    def list_clusters(self) -> List[LiveObject]:
        return self._list(self.clusters)

    def list_users(self) -> List[LiveObject]:
        return self._list(self.users)

    def list_nodes(self) -> List[LiveObject]:
        return self._list(self.nodes)
