"""Property-based tests for cascading deletion.

Feature: cluster-controller, Property 4: Descendants are drained before the finalizer is released
Feature: cluster-controller, Property 5: Control plane machines are deleted last
"""

from hypothesis import given
from hypothesis import strategies as st

from cluster_controller.deletion import DELETE_REQUEUE_AFTER, CascadingDeletionCoordinator
from cluster_controller.descendants import DescendantGraph
from cluster_controller.external import ExternalReferenceResolver
from cluster_controller.models.cluster import CLUSTER_FINALIZER, Cluster
from cluster_controller.models.meta import (
    CLUSTER_API_VERSION,
    CLUSTER_LABEL,
    CONTROL_PLANE_LABEL,
    EXP_API_VERSION,
)
from cluster_controller.result import Result
from cluster_controller.store import InMemoryObjectStore

# (kind, control plane) in deletion order
DELETION_ORDER = [
    ("MachinePool", False),
    ("MachineDeployment", False),
    ("MachineSet", False),
    ("Machine", False),
    ("Machine", True),
]


def build_world(counts, machine_pools_enabled):
    """Create a deleting Cluster with counts[i] descendants of DELETION_ORDER[i]."""
    store = InMemoryObjectStore()
    store.create(
        {
            "apiVersion": CLUSTER_API_VERSION,
            "kind": "Cluster",
            "metadata": {"name": "c1", "namespace": "default", "finalizers": [CLUSTER_FINALIZER]},
        }
    )
    for (kind, control_plane), count in zip(DELETION_ORDER, counts):
        for n in range(count):
            labels = {CLUSTER_LABEL: "c1"}
            if control_plane:
                labels[CONTROL_PLANE_LABEL] = ""
            store.create(
                {
                    "apiVersion": EXP_API_VERSION if kind == "MachinePool" else CLUSTER_API_VERSION,
                    "kind": kind,
                    "metadata": {
                        "name": f"{'cp' if control_plane else kind.lower()}-{n}",
                        "namespace": "default",
                        "labels": labels,
                        "ownerReferences": [
                            {"apiVersion": CLUSTER_API_VERSION, "kind": "Cluster", "name": "c1"}
                        ],
                    },
                }
            )
    store.delete(CLUSTER_API_VERSION, "Cluster", "default", "c1")
    cluster = Cluster.model_validate(store.get(CLUSTER_API_VERSION, "Cluster", "default", "c1"))
    coordinator = CascadingDeletionCoordinator(
        store,
        DescendantGraph(store, machine_pools_enabled=machine_pools_enabled),
        ExternalReferenceResolver(store),
    )
    return store, cluster, coordinator


def order_index(kind, name):
    if kind == "Machine":
        return 4 if name.startswith("cp-") else 3
    return [k for k, _ in DELETION_ORDER].index(kind)


@given(
    counts=st.lists(st.integers(min_value=0, max_value=2), min_size=5, max_size=5),
    machine_pools_enabled=st.booleans(),
)
def test_property_4_descendants_block_finalizer_removal(counts, machine_pools_enabled):
    """
    Feature: cluster-controller, Property 4: Descendants are drained before the finalizer is released

    A pass that sees descendants requeues after exactly five seconds and
    leaves the finalizer alone; a pass that sees none releases it.
    """
    store, cluster, coordinator = build_world(counts, machine_pools_enabled)
    visible = sum(counts) - (0 if machine_pools_enabled else counts[0])

    result = coordinator.reconcile_delete(cluster)

    if visible:
        assert result == Result(requeue_after=DELETE_REQUEUE_AFTER)
        assert cluster.metadata.has_finalizer(CLUSTER_FINALIZER)
    else:
        assert result == Result()
        assert not cluster.metadata.has_finalizer(CLUSTER_FINALIZER)


@given(
    counts=st.lists(st.integers(min_value=0, max_value=2), min_size=5, max_size=5),
    machine_pools_enabled=st.booleans(),
)
def test_property_4_finalizer_removed_exactly_once(counts, machine_pools_enabled):
    """Once released the finalizer is never re-added by later passes."""
    store, cluster, coordinator = build_world(counts, machine_pools_enabled)

    coordinator.reconcile_delete(cluster)
    coordinator.reconcile_delete(cluster)
    coordinator.reconcile_delete(cluster)

    assert cluster.metadata.finalizers.count(CLUSTER_FINALIZER) == 0


@given(
    counts=st.lists(st.integers(min_value=1, max_value=2), min_size=5, max_size=5),
    machine_pools_enabled=st.booleans(),
)
def test_property_5_deletion_order(counts, machine_pools_enabled):
    """
    Feature: cluster-controller, Property 5: Control plane machines are deleted last

    Delete calls follow MachinePools, MachineDeployments, MachineSets,
    worker Machines and control plane Machines, pools only when enabled.
    """
    store, cluster, coordinator = build_world(counts, machine_pools_enabled)

    coordinator.reconcile_delete(cluster)

    deleted = store.deleted()[1:]
    indexes = [order_index(kind, name) for kind, name in deleted]
    assert indexes == sorted(indexes)
    assert deleted[-1][1].startswith("cp-")
    assert (("MachinePool", "machinepool-0") in deleted) == machine_pools_enabled
    assert len(deleted) == sum(counts) - (0 if machine_pools_enabled else counts[0])
