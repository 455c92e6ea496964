"""Tests for descendant discovery."""

import pytest

from cluster_controller.descendants import ClusterDescendants, DescendantGraph, split_machines
from cluster_controller.exceptions import KubernetesError
from cluster_controller.models.cluster import Cluster
from cluster_controller.models.machine import Machine, MachineDeployment, MachinePool, MachineSet


def load_cluster(store, name="test-cluster"):
    return Cluster.model_validate(store.get("cluster.x-k8s.io/v1alpha4", "Cluster", "default", name))


@pytest.fixture
def populated(store, make_cluster, make_descendant):
    store.create(make_cluster())
    store.create(make_descendant("MachineDeployment", "md-1"))
    store.create(make_descendant("MachineSet", "ms-1"))
    store.create(make_descendant("Machine", "worker-1"))
    store.create(make_descendant("Machine", "cp-1", control_plane=True))
    store.create(make_descendant("MachinePool", "mp-1"))
    store.create(make_descendant("Machine", "other-1", cluster="other-cluster"))
    return store


def test_split_machines(make_descendant):
    machines = [
        Machine.model_validate(make_descendant("Machine", "cp-1", control_plane=True)),
        Machine.model_validate(make_descendant("Machine", "w-1")),
        Machine.model_validate(make_descendant("Machine", "w-2")),
    ]

    control_plane, workers = split_machines(machines)

    assert [m.name for m in control_plane] == ["cp-1"]
    assert [m.name for m in workers] == ["w-1", "w-2"]


def test_list_descendants_by_cluster_label(populated):
    cluster = load_cluster(populated)

    found = DescendantGraph(populated).list_descendants(cluster)

    assert [m.name for m in found.machine_deployments] == ["md-1"]
    assert [m.name for m in found.machine_sets] == ["ms-1"]
    assert [m.name for m in found.worker_machines] == ["worker-1"]
    assert [m.name for m in found.control_plane_machines] == ["cp-1"]
    assert found.machine_pools == []
    assert found.length() == 4


def test_machine_pools_follow_feature_gate(populated):
    cluster = load_cluster(populated)

    found = DescendantGraph(populated, machine_pools_enabled=True).list_descendants(cluster)

    assert [p.name for p in found.machine_pools] == ["mp-1"]
    assert found.length() == 5


def test_control_plane_machines_hidden_behind_control_plane_ref(store, make_cluster, make_descendant):
    store.create(make_cluster(control_plane_ref={"kind": "KubeadmControlPlane", "name": "cp"}))
    store.create(make_descendant("Machine", "cp-1", control_plane=True))
    store.create(make_descendant("Machine", "worker-1"))

    found = DescendantGraph(store).list_descendants(load_cluster(store))

    assert found.control_plane_machines == []
    assert [m.name for m in found.worker_machines] == ["worker-1"]
    assert found.length() == 1


def test_list_failure_is_wrapped(populated):
    cluster = load_cluster(populated)
    populated.fail("list", "MachineSet")

    with pytest.raises(KubernetesError) as exc_info:
        DescendantGraph(populated).list_descendants(cluster)

    assert "MachineSet" in exc_info.value.message


def test_filter_owned_descendants_in_deletion_order(store, make_cluster, make_descendant):
    store.create(make_cluster())
    cluster = load_cluster(store)
    descendants = ClusterDescendants(
        machine_deployments=[MachineDeployment.model_validate(make_descendant("MachineDeployment", "md-1"))],
        machine_sets=[
            MachineSet.model_validate(make_descendant("MachineSet", "ms-1")),
            MachineSet.model_validate(make_descendant("MachineSet", "ms-orphan", owned=False)),
        ],
        control_plane_machines=[
            Machine.model_validate(make_descendant("Machine", "cp-1", control_plane=True))
        ],
        worker_machines=[Machine.model_validate(make_descendant("Machine", "w-1"))],
        machine_pools=[MachinePool.model_validate(make_descendant("MachinePool", "mp-1"))],
    )

    owned = descendants.filter_owned_descendants(cluster)

    assert [(o.kind, o.name) for o in owned] == [
        ("MachinePool", "mp-1"),
        ("MachineDeployment", "md-1"),
        ("MachineSet", "ms-1"),
        ("Machine", "w-1"),
        ("Machine", "cp-1"),
    ]
    assert descendants.length() == 6


def test_owner_reference_version_is_ignored(store, make_cluster, make_descendant):
    store.create(make_cluster())
    cluster = load_cluster(store)
    data = make_descendant("MachineSet", "ms-1")
    data["metadata"]["ownerReferences"][0]["apiVersion"] = "cluster.x-k8s.io/v1alpha3"
    descendants = ClusterDescendants(machine_sets=[MachineSet.model_validate(data)])

    assert [o.name for o in descendants.filter_owned_descendants(cluster)] == ["ms-1"]


def test_descendant_names(make_descendant):
    descendants = ClusterDescendants(
        machine_sets=[
            MachineSet.model_validate(make_descendant("MachineSet", "ms-1")),
            MachineSet.model_validate(make_descendant("MachineSet", "ms-2")),
        ],
        worker_machines=[Machine.model_validate(make_descendant("Machine", "w-1"))],
    )

    assert descendants.descendant_names() == "Machine sets: ms-1,ms-2;Worker machines: w-1"
    assert ClusterDescendants().descendant_names() == ""
