from __future__ import annotations

import logging

import pytest
from conftest import api_error

from teardown.discovery import APIGroup, ResourceCatalog


def test_core_group_first_and_subresources_dropped(cluster) -> None:
    catalog = ResourceCatalog(cluster)
    groups = catalog.groups()
    assert groups[0] == APIGroup("", "v1")
    names = [r.name for r in catalog.resource_types(groups[0])]
    assert "pods/log" not in names
    assert {"namespaces", "secrets", "configmaps"} <= set(names)


def test_mutable_only_skips_types_without_update(cluster) -> None:
    cluster.serve("metrics.k8s.io", "v1beta1", "nodes", "NodeMetrics", False, verbs=["get", "list"])
    catalog = ResourceCatalog(cluster)
    group = APIGroup("metrics.k8s.io", "v1beta1")
    assert [r.name for r in catalog.resource_types(group)] == ["nodes"]
    assert catalog.resource_types(group, mutable_only=True) == []


def test_walk_with_group_filter(cluster) -> None:
    catalog = ResourceCatalog(cluster)
    names = {r.name for r in catalog.walk(group_filter=lambda g: g.name == "management.cattle.io")}
    assert names == {"projects", "clusters", "users", "nodes", "settings"}


def test_vanished_group_is_skipped_with_warning(cluster, caplog) -> None:
    cluster.gone_groups.add("example.com")
    catalog = ResourceCatalog(cluster)
    with caplog.at_level(logging.WARNING, logger="discovery"):
        names = {r.name for r in catalog.walk()}
    assert "widgets" not in names
    assert "secrets" in names
    assert "example.com/v1" in caplog.text


@pytest.mark.parametrize("status", [404, 405, 500, 503])
def test_unlistable_type_returns_none(cluster, caplog, status) -> None:
    cluster.list_errors["widgets"] = api_error(status)
    catalog = ResourceCatalog(cluster)
    widgets = [r for r in catalog.walk() if r.name == "widgets"][0]
    with caplog.at_level(logging.WARNING, logger="discovery"):
        assert catalog.list_objects(widgets) is None
    assert "widgets.example.com" in caplog.text


def test_forbidden_list_propagates(cluster) -> None:
    cluster.list_errors["secrets"] = api_error(403)
    catalog = ResourceCatalog(cluster)
    secrets = [r for r in catalog.walk() if r.name == "secrets"][0]
    with pytest.raises(Exception) as exc:
        catalog.list_objects(secrets)
    assert exc.value.status == 403
